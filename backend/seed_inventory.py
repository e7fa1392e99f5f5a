"""Seed the stock store with common medicines.

Usage: python seed_inventory.py [--reset]

Existing entries are left alone unless --reset is given, in which case their
quantity and price are overwritten with the seed values.
"""
import sys
from datetime import date
from decimal import Decimal

from pharmapos.db.init_db import init_db
from pharmapos.db.session import SessionLocal
from pharmapos.models.medicine import Medicine

MEDICINES = [
    {"name": "Paracetamol", "price": "10.00", "units": 50, "expiry": date(2027, 6, 30)},
    {"name": "Paracetamol 500mg", "price": "2.50", "units": 200, "expiry": date(2027, 3, 31)},
    {"name": "Dolo 650", "price": "3.00", "units": 180, "expiry": date(2027, 1, 31)},
    {"name": "Crocin Advance", "price": "4.50", "units": 150, "expiry": date(2026, 12, 31)},
    {"name": "Cetirizine 10mg", "price": "1.75", "units": 120, "expiry": date(2027, 8, 31)},
    {"name": "Azithromycin 500mg", "price": "22.00", "units": 40, "expiry": date(2026, 11, 30)},
    {"name": "ORS Sachet", "price": "18.00", "units": 75, "expiry": date(2027, 9, 30)},
    {"name": "Benadryl Cough Syrup", "price": "95.00", "units": 25, "expiry": date(2026, 12, 15)},
]


def seed_inventory(reset: bool = False):
    init_db()
    db = SessionLocal()
    created, updated = 0, 0
    try:
        for med in MEDICINES:
            entry = db.query(Medicine).filter(Medicine.name == med["name"]).first()
            if entry and not reset:
                continue
            if entry:
                entry.quantity = med["units"]
                entry.price = Decimal(med["price"])
                entry.expiry = med["expiry"]
                updated += 1
            else:
                db.add(Medicine(
                    name=med["name"],
                    quantity=med["units"],
                    price=Decimal(med["price"]),
                    expiry=med["expiry"],
                ))
                created += 1
        db.commit()
    finally:
        db.close()

    print(f"Seeded stock: {created} created, {updated} reset, {len(MEDICINES)} total")
    print("=" * 60)
    for med in MEDICINES:
        print(f"  {med['name']:<24} ₹{med['price']:>7} | {med['units']:>4} units | exp {med['expiry']}")


if __name__ == "__main__":
    seed_inventory(reset="--reset" in sys.argv[1:])
