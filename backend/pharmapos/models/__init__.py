from pharmapos.models.customer import Customer
from pharmapos.models.invoice import Invoice, InvoiceItem, InvoiceStatus
from pharmapos.models.medicine import Medicine

__all__ = ["Customer", "Invoice", "InvoiceItem", "InvoiceStatus", "Medicine"]
