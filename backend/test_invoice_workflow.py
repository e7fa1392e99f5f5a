"""
Invoice workflow engine tests.

Each test runs against its own SQLite database and inspects the stores
through a fresh session, so "no side effects" is checked against what is
actually committed.
"""
import logging
from decimal import Decimal

import pytest
from sqlalchemy.exc import IntegrityError, OperationalError

from pharmapos.core.exceptions import (
    DuplicateInvoiceNumber,
    InsufficientStock,
    InvalidInput,
    NotFound,
    StoreUnavailable,
    TotalMismatch,
)
from pharmapos.models.customer import Customer
from pharmapos.models.invoice import InvoiceStatus
from pharmapos.models.medicine import Medicine
from pharmapos.schemas.invoice import DraftInvoice
from pharmapos.services import invoice_workflow
from pharmapos.services.invoice_service import get_invoice
from pharmapos.services.invoice_workflow import compute_total, submit


def draft(items, customer="Ravi", phone=None, total=None, notes=None):
    return DraftInvoice.model_validate({
        "customer": {"name": customer, "phone": phone},
        "items": [{"name": n, "quantity": q, "price": p} for n, q, p in items],
        "total_amount": total,
        "notes": notes,
    })


def fixed_numbers(*numbers):
    it = iter(numbers)
    return lambda: next(it)


# ==============================================================================
# SCENARIOS
# ==============================================================================

def test_ravi_buys_two_paracetamol(db, seed_stock, stock_snapshot):
    seed_stock({"Paracetamol": (50, "10.00")})

    invoice = submit(db, draft([("Paracetamol", 2, 10)]))

    assert invoice.total_amount == Decimal("20")
    assert invoice.status == InvoiceStatus.PENDING
    assert invoice.customer.name == "Ravi"
    assert invoice.invoice_number.startswith("INV-")
    assert stock_snapshot() == {"Paracetamol": 48}


def test_unknown_medicine_is_not_found(db, seed_stock, stock_snapshot, invoice_numbers):
    seed_stock({"Paracetamol": (50, "10.00")})

    with pytest.raises(NotFound) as exc:
        submit(db, draft([("Unknown Drug", 1, 5)]))

    assert "Unknown Drug" in exc.value.message
    assert exc.value.field == "items[0].name"
    assert stock_snapshot() == {"Paracetamol": 50}
    assert invoice_numbers() == []


def test_insufficient_stock_changes_nothing(db, seed_stock, stock_snapshot, invoice_numbers):
    seed_stock({"Paracetamol": (50, "10.00"), "Cetirizine": (5, "1.75")})

    with pytest.raises(InsufficientStock) as exc:
        submit(db, draft([("Paracetamol", 3, 10), ("Cetirizine", 6, "1.75")]))

    assert exc.value.name == "Cetirizine"
    assert exc.value.requested == 6
    assert exc.value.available == 5
    assert exc.value.item == 1
    assert stock_snapshot() == {"Paracetamol": 50, "Cetirizine": 5}
    assert invoice_numbers() == []


def test_quantity_equal_to_stock_empties_it(db, seed_stock, stock_snapshot):
    seed_stock({"ORS Sachet": (4, "18.00")})

    submit(db, draft([("ORS Sachet", 4, 18)]))

    assert stock_snapshot() == {"ORS Sachet": 0}


def test_lines_for_same_medicine_are_checked_together(db, seed_stock, stock_snapshot, invoice_numbers):
    seed_stock({"Paracetamol": (50, "10.00")})

    with pytest.raises(InsufficientStock) as exc:
        submit(db, draft([("Paracetamol", 30, 10), ("Paracetamol", 30, 10)]))

    assert exc.value.requested == 60
    assert exc.value.item == 0
    assert stock_snapshot() == {"Paracetamol": 50}
    assert invoice_numbers() == []

    invoice = submit(db, draft([("Paracetamol", 20, 10), ("Paracetamol", 5, "9.50")]))
    assert invoice.total_amount == Decimal("247.50")
    assert stock_snapshot() == {"Paracetamol": 25}


# ==============================================================================
# TOTALS
# ==============================================================================

def test_total_is_server_computed_with_or_without_declared_total(db, seed_stock):
    seed_stock({"Dolo 650": (100, "3.00"), "Crocin Advance": (100, "4.50")})
    items = [("Dolo 650", 3, "3.00"), ("Crocin Advance", 7, "4.45")]

    without = submit(db, draft(items))
    declared = submit(db, draft(items, total="40.15"))

    assert without.total_amount == declared.total_amount == Decimal("40.15")


def test_mismatched_declared_total_is_rejected(db, seed_stock, stock_snapshot, invoice_numbers):
    seed_stock({"Paracetamol": (50, "10.00")})

    with pytest.raises(TotalMismatch) as exc:
        submit(db, draft([("Paracetamol", 2, 10)], total=25))

    assert exc.value.declared == Decimal("25")
    assert exc.value.computed == Decimal("20.00")
    assert exc.value.field == "total_amount"
    assert stock_snapshot() == {"Paracetamol": 50}
    assert invoice_numbers() == []


def test_compute_total_rounds_to_cents():
    items = draft([("A", 3, "0.35"), ("B", 1, "0.01")]).items
    assert compute_total(items) == Decimal("1.06")
    assert str(compute_total(items)) == "1.06"


def test_total_beyond_invoice_capacity_is_rejected(db, seed_stock, stock_snapshot, invoice_numbers):
    seed_stock({"Insulin Pump": (1000, "99999999.99")})

    with pytest.raises(InvalidInput) as exc:
        submit(db, draft([("Insulin Pump", 1000, "99999999.99")]))

    assert exc.value.field == "total_amount"
    assert stock_snapshot() == {"Insulin Pump": 1000}
    assert invoice_numbers() == []


# ==============================================================================
# VALIDATION
# ==============================================================================

@pytest.mark.parametrize(
    "payload, field, item",
    [
        ({"customer": {"name": "  "}, "items": [{"name": "Paracetamol", "quantity": 1, "price": 10}]},
         "customer.name", None),
        ({"customer": {"name": "Ravi"}, "items": []}, "items", None),
        ({"customer": {"name": "Ravi"}, "items": [{"name": "", "quantity": 1, "price": 10}]},
         "items[0].name", 0),
        ({"customer": {"name": "Ravi"},
          "items": [{"name": "Paracetamol", "quantity": 1, "price": 10},
                    {"name": "Dolo 650", "quantity": 0, "price": 3}]},
         "items[1].quantity", 1),
        ({"customer": {"name": "Ravi"}, "items": [{"name": "Paracetamol", "quantity": -2, "price": 10}]},
         "items[0].quantity", 0),
        ({"customer": {"name": "Ravi"}, "items": [{"name": "Paracetamol", "quantity": 1, "price": -1}]},
         "items[0].price", 0),
        ({"customer": {"name": "Ravi"}, "items": [{"name": "Paracetamol", "quantity": 1, "price": "9.999"}]},
         "items[0].price", 0),
        ({"customer": {"name": "Ravi"}, "items": [{"name": "Paracetamol", "quantity": 1, "price": "1E+30"}]},
         "items[0].price", 0),
        ({"customer": {"name": "Ravi"}, "items": [{"name": "Paracetamol", "quantity": 1, "price": "100000000"}]},
         "items[0].price", 0),
        ({"customer": {"name": "Ravi", "phone": "98765"},
          "items": [{"name": "Paracetamol", "quantity": 1, "price": 10}]},
         "customer.phone", None),
    ],
)
def test_invalid_drafts_name_the_offending_field(db, seed_stock, stock_snapshot, payload, field, item):
    seed_stock({"Paracetamol": (50, "10.00"), "Dolo 650": (10, "3.00")})

    with pytest.raises(InvalidInput) as exc:
        submit(db, DraftInvoice.model_validate(payload))

    assert exc.value.field == field
    assert exc.value.item == item
    assert stock_snapshot() == {"Paracetamol": 50, "Dolo 650": 10}


def test_validation_messages():
    with pytest.raises(InvalidInput, match="customer name required"):
        invoice_workflow.validate_draft(draft([("Paracetamol", 1, 10)], customer=""))
    with pytest.raises(InvalidInput, match="at least one item required"):
        invoice_workflow.validate_draft(draft([]))


def test_free_items_are_allowed(db, seed_stock):
    seed_stock({"Sample Strip": (10, "0.00")})

    invoice = submit(db, draft([("Sample Strip", 1, 0)]))

    assert invoice.total_amount == Decimal("0")


def test_failing_twice_gives_identical_error_and_no_side_effects(db, seed_stock, stock_snapshot, invoice_numbers):
    seed_stock({"Paracetamol": (50, "10.00")})
    bad = draft([("Paracetamol", 51, 10)])

    with pytest.raises(InsufficientStock) as first:
        submit(db, bad)
    with pytest.raises(InsufficientStock) as second:
        submit(db, bad)

    assert first.value == second.value
    assert first.value.to_dict() == second.value.to_dict()
    assert stock_snapshot() == {"Paracetamol": 50}
    assert invoice_numbers() == []


# ==============================================================================
# PERSISTENCE
# ==============================================================================

def test_finalized_invoice_round_trips(db, seed_stock):
    seed_stock({"Paracetamol": (50, "10.00"), "Cetirizine": (20, "1.75")})
    d = draft(
        [("Cetirizine", 4, "1.75"), ("Paracetamol", 2, 10)],
        customer="Meena Iyer",
        phone="9876543210",
        notes="home delivery",
    )

    created = submit(db, d)
    stored = get_invoice(db, created.invoice_number)

    assert stored is not None
    assert stored.customer_name == "Meena Iyer"
    assert stored.customer_phone == "9876543210"
    assert [(i.name, i.quantity, i.price) for i in stored.items] == [
        (i.name, i.quantity, i.price) for i in d.items
    ]
    assert stored.total_amount == Decimal("27.00")
    assert stored.status == "pending"
    assert stored.notes == "home delivery"
    assert created.items == d.items


def test_customer_record_is_reused(db, seed_stock):
    seed_stock({"Paracetamol": (50, "10.00")})

    submit(db, draft([("Paracetamol", 1, 10)], customer="Ravi"))
    submit(db, draft([("Paracetamol", 1, 10)], customer=" Ravi ", phone="9123456780"))

    customers = db.query(Customer).all()
    assert [(c.name, c.phone) for c in customers] == [("Ravi", "9123456780")]


def test_invoice_keeps_customer_name_as_written(db, seed_stock):
    seed_stock({"Paracetamol": (50, "10.00")})

    created = submit(db, draft([("Paracetamol", 1, 10)], customer="  Ravi  Kumar "))

    assert created.customer.name == "Ravi  Kumar"
    assert get_invoice(db, created.invoice_number).customer_name == "Ravi  Kumar"
    # The customer record is keyed on the collapsed name
    assert [c.name for c in db.query(Customer).all()] == ["Ravi Kumar"]


def test_audit_log_records_created_and_rejected(db, seed_stock, caplog):
    seed_stock({"Paracetamol": (50, "10.00")})
    caplog.set_level(logging.INFO, logger="audit")

    invoice = submit(db, draft([("Paracetamol", 2, 10)]), principal="cashier-7")
    with pytest.raises(NotFound):
        submit(db, draft([("Unknown Drug", 1, 5)]), principal="cashier-7")

    audit = [r.getMessage() for r in caplog.records if r.name == "audit"]
    assert any("invoice.create" in m and invoice.invoice_number in m and "cashier-7" in m for m in audit)
    assert any("invoice.rejected" in m and "NotFound" in m for m in audit)


# ==============================================================================
# ATOMICITY
# ==============================================================================

def test_losing_a_race_rolls_back_earlier_decrements(db, seed_stock, stock_snapshot, invoice_numbers,
                                                      session_factory, monkeypatch):
    """Stock passes the pre-check, then a concurrent sale takes the last unit."""
    seed_stock({"Amoxicillin": (10, "12.00"), "Zinc Tablets": (1, "2.00")})
    real_precheck = invoice_workflow._precheck_stock

    def precheck_then_competitor_sells(session, requested):
        real_precheck(session, requested)
        other = session_factory()
        try:
            other.query(Medicine).filter_by(name="Zinc Tablets").update({"quantity": 0})
            other.commit()
        finally:
            other.close()

    monkeypatch.setattr(invoice_workflow, "_precheck_stock", precheck_then_competitor_sells)

    with pytest.raises(InsufficientStock) as exc:
        submit(db, draft([("Amoxicillin", 3, 12), ("Zinc Tablets", 1, 2)]))

    assert exc.value.name == "Zinc Tablets"
    assert exc.value.available == 0
    # Amoxicillin is decremented first (sorted order) and must be restored
    assert stock_snapshot() == {"Amoxicillin": 10, "Zinc Tablets": 0}
    assert invoice_numbers() == []


def test_store_failure_mid_unit_commits_nothing(db, seed_stock, stock_snapshot, invoice_numbers, monkeypatch):
    seed_stock({"Paracetamol": (50, "10.00")})

    def broken_insert(session, invoice):
        raise OperationalError("INSERT INTO invoices", {}, Exception("database is locked"))

    monkeypatch.setattr(invoice_workflow, "insert_unique", broken_insert)

    with pytest.raises(StoreUnavailable) as exc:
        submit(db, draft([("Paracetamol", 2, 10)]))

    assert exc.value.retriable
    assert stock_snapshot() == {"Paracetamol": 50}
    assert invoice_numbers() == []


def test_store_failure_during_stock_check(db, seed_stock, monkeypatch):
    seed_stock({"Paracetamol": (50, "10.00")})

    def unreachable(session, name):
        raise OperationalError("SELECT", {}, Exception("connection refused"))

    monkeypatch.setattr(invoice_workflow, "find_stock_entry", unreachable)

    with pytest.raises(StoreUnavailable):
        submit(db, draft([("Paracetamol", 2, 10)]))


def test_refused_decrement_never_reports_enough_available(db, seed_stock, stock_snapshot, monkeypatch):
    """The update is refused, but a restock lands before the stock is re-read."""
    seed_stock({"Paracetamol": (50, "10.00")})
    monkeypatch.setattr(invoice_workflow, "conditional_decrement", lambda session, name, amount: False)

    with pytest.raises(InsufficientStock) as exc:
        submit(db, draft([("Paracetamol", 2, 10)]))

    assert exc.value.requested == 2
    assert exc.value.available < exc.value.requested
    assert stock_snapshot() == {"Paracetamol": 50}


def test_customer_constraint_failure_is_not_retried(db, seed_stock, stock_snapshot, invoice_numbers, monkeypatch):
    seed_stock({"Paracetamol": (50, "10.00")})
    calls = []

    def rejected(session, name, phone=None):
        calls.append(name)
        raise IntegrityError("INSERT INTO customers", {}, Exception("NOT NULL constraint failed: customers.name"))

    monkeypatch.setattr(invoice_workflow, "get_or_create_customer", rejected)

    with pytest.raises(StoreUnavailable):
        submit(db, draft([("Paracetamol", 2, 10)]))

    assert calls == ["Ravi"]
    assert stock_snapshot() == {"Paracetamol": 50}
    assert invoice_numbers() == []


def test_customer_created_concurrently_is_retried(db, seed_stock, session_factory, stock_snapshot, monkeypatch):
    seed_stock({"Paracetamol": (50, "10.00")})
    other = session_factory()
    other.add(Customer(name="Ravi"))
    other.commit()
    other.close()
    real_get_or_create = invoice_workflow.get_or_create_customer
    calls = []

    def lost_insert_race(session, name, phone=None):
        calls.append(name)
        if len(calls) == 1:
            raise IntegrityError("INSERT INTO customers", {}, Exception("UNIQUE constraint failed: customers.name"))
        return real_get_or_create(session, name, phone)

    monkeypatch.setattr(invoice_workflow, "get_or_create_customer", lost_insert_race)

    invoice = submit(db, draft([("Paracetamol", 2, 10)]))

    assert len(calls) == 2
    assert invoice.customer.name == "Ravi"
    assert stock_snapshot() == {"Paracetamol": 48}
    assert db.query(Customer).count() == 1


def test_invoice_constraint_failure_on_fresh_number_is_not_retried(db, seed_stock, stock_snapshot,
                                                                   invoice_numbers, monkeypatch):
    seed_stock({"Paracetamol": (50, "10.00")})
    calls = []

    def rejected(session, invoice):
        calls.append(invoice.invoice_number)
        raise DuplicateInvoiceNumber(f"Invoice number {invoice.invoice_number} already exists")

    monkeypatch.setattr(invoice_workflow, "insert_unique", rejected)

    with pytest.raises(StoreUnavailable):
        submit(db, draft([("Paracetamol", 2, 10)]), number_generator=fixed_numbers("INV-000009-zzzz"))

    assert calls == ["INV-000009-zzzz"]
    assert stock_snapshot() == {"Paracetamol": 50}
    assert invoice_numbers() == []


# ==============================================================================
# INVOICE NUMBERS
# ==============================================================================

def test_duplicate_invoice_number_is_regenerated(db, seed_stock, stock_snapshot, invoice_numbers):
    seed_stock({"Paracetamol": (50, "10.00")})
    submit(db, draft([("Paracetamol", 1, 10)]), number_generator=fixed_numbers("INV-000001-aaaa"))

    second = submit(
        db,
        draft([("Paracetamol", 2, 10)]),
        number_generator=fixed_numbers("INV-000001-aaaa", "INV-000002-bbbb"),
    )

    assert second.invoice_number == "INV-000002-bbbb"
    assert invoice_numbers() == ["INV-000001-aaaa", "INV-000002-bbbb"]
    # The collided attempt was rolled back: 50 - 1 - 2
    assert stock_snapshot() == {"Paracetamol": 47}


def test_duplicate_invoice_number_surfaces_after_bounded_attempts(db, seed_stock, stock_snapshot, invoice_numbers):
    seed_stock({"Paracetamol": (50, "10.00")})
    submit(db, draft([("Paracetamol", 1, 10)]), number_generator=fixed_numbers("INV-000001-aaaa"))
    calls = []

    def always_taken():
        calls.append(1)
        return "INV-000001-aaaa"

    with pytest.raises(DuplicateInvoiceNumber) as exc:
        submit(db, draft([("Paracetamol", 2, 10)]), number_generator=always_taken, max_attempts=3)

    assert len(calls) == 3
    assert exc.value.retriable
    assert stock_snapshot() == {"Paracetamol": 49}
    assert invoice_numbers() == ["INV-000001-aaaa"]
