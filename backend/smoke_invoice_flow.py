#!/usr/bin/env python3
"""
Invoice workflow smoke run against a live server.
Steps: 1. Check stock 2. Create invoice 3. Fetch it back 4. Verify stock 5. Over-order 6. Unknown medicine

Start the server (python run_server.py) and seed stock (python seed_inventory.py --reset) first.
"""
import os
import sys

import requests

BASE_URL = os.getenv("PHARMAPOS_URL", "http://localhost:8000")
HEADERS = {"Content-Type": "application/json", "Authorization": "Bearer smoke-test"}
MEDICINE = "Paracetamol"


def step(title):
    print("\n" + "=" * 60)
    print(title)
    print("=" * 60)


def main() -> int:
    failures = 0

    step("STEP 1: CHECK STOCK")
    stock_resp = requests.get(f"{BASE_URL}/stock/{MEDICINE}", headers=HEADERS)
    print(f"✓ Stock Status: {stock_resp.status_code}")
    if stock_resp.status_code != 200:
        print(f"  Response: {stock_resp.text}")
        return 1
    before = stock_resp.json()["quantity"]
    print(f"  {MEDICINE}: {before} on hand")

    step("STEP 2: CREATE INVOICE")
    invoice_resp = requests.post(
        f"{BASE_URL}/invoices",
        json={
            "customer": {"name": "Ravi", "phone": "9876543210"},
            "items": [{"name": MEDICINE, "quantity": 2, "price": 10}],
            "total_amount": 20,
        },
        headers=HEADERS,
    )
    print(f"✓ Create Invoice Status: {invoice_resp.status_code}")
    if invoice_resp.status_code != 201:
        print(f"  Error: {invoice_resp.text}")
        return 1
    invoice = invoice_resp.json()
    print(f"  Invoice: {invoice['invoice_number']}")
    print(f"  Total: ₹{invoice['total_amount']}")
    print(f"  Status: {invoice['status']}")

    step("STEP 3: FETCH INVOICE")
    get_resp = requests.get(f"{BASE_URL}/invoices/{invoice['invoice_number']}", headers=HEADERS)
    print(f"✓ Get Invoice Status: {get_resp.status_code}")
    if get_resp.status_code != 200 or get_resp.json()["items"] != invoice["items"]:
        print(f"  Mismatch: {get_resp.text}")
        failures += 1

    step("STEP 4: VERIFY STOCK")
    after = requests.get(f"{BASE_URL}/stock/{MEDICINE}", headers=HEADERS).json()["quantity"]
    print(f"  {MEDICINE}: {before} -> {after}")
    if after != before - 2:
        print("  ✗ Stock was not decremented by 2")
        failures += 1

    step("STEP 5: OVER-ORDER (expect 409 InsufficientStock)")
    over_resp = requests.post(
        f"{BASE_URL}/invoices",
        json={"customer": {"name": "Ravi"}, "items": [{"name": MEDICINE, "quantity": after + 1, "price": 10}]},
        headers=HEADERS,
    )
    print(f"✓ Status: {over_resp.status_code} {over_resp.json().get('error')}")
    if over_resp.status_code != 409:
        failures += 1

    step("STEP 6: UNKNOWN MEDICINE (expect 404 NotFound)")
    unknown_resp = requests.post(
        f"{BASE_URL}/invoices",
        json={"customer": {"name": "Ravi"}, "items": [{"name": "Unknown Drug", "quantity": 1, "price": 5}]},
        headers=HEADERS,
    )
    print(f"✓ Status: {unknown_resp.status_code} {unknown_resp.json().get('error')}")
    if unknown_resp.status_code != 404:
        failures += 1

    step("SMOKE RUN COMPLETE ✓" if not failures else f"SMOKE RUN FAILED ({failures} check(s))")
    return 1 if failures else 0


if __name__ == "__main__":
    sys.exit(main())
