"""
Dine-in ordering through billing, settle-now, printing and later payments.
Order-scope rules from dev-bootstrap: Service Charge 10% and VAT 13%.
"""
from conftest import jprint


def _order(client, base_url, h, items, **extra):
    body = {"order_type": "dine-in", "table_code": "T4", "items": items, **extra}
    r = client.post(f"{base_url}/restaurant/orders", json=body, headers=h)
    jprint("order", r)
    assert r.status_code == 200, r.text
    return r.json()


MOMO = {"dish_name": "Chicken momo", "quantity": 2, "unit_price": "250"}
THALI = {"dish_name": "Thakali set", "quantity": 1, "unit_price": "500", "special_instructions": "no chilli"}


def test_bill_settled_at_the_counter(client, base_url, auth_headers, rng_suffix):
    o = _order(client, base_url, auth_headers, [MOMO, THALI], customer_name=f"Walk-in {rng_suffix}")
    assert o["items_total"] == "1000.00"
    assert o["items"][1]["special_instructions"] == "no chilli"

    bill_body = {
        "order_id": o["id"],
        "discount": {"type": "percentage", "value": 10, "reason": "happy hour"},
        "payment_method": "cash",
    }
    r = client.post(f"{base_url}/restaurant/bills", json={**bill_body, "tendered_amount": "1000"},
                    headers=auth_headers)
    assert r.status_code == 422
    assert r.json()["field"] == "tendered_amount"

    r = client.post(f"{base_url}/restaurant/bills", json={**bill_body, "tendered_amount": "1200"},
                    headers=auth_headers)
    jprint("bill", r)
    assert r.status_code == 200, r.text
    bill = r.json()
    assert bill["billing"]["snapshot"] == {
        "subtotal": "1000.00",
        "tax_breakdown": [
            {"name": "Service Charge", "rate": "10.00", "amount": "100.00"},
            {"name": "VAT", "rate": "13.00", "amount": "130.00"},
        ],
        "tax_total": "230.00",
        "discount_amount": "100.00",
        "total": "1130.00",
    }
    assert bill["billing"]["discount"] == {"type": "percentage", "value": "10.00", "reason": "happy hour"}
    assert bill["change_amount"] == "70.00"
    assert bill["paid_amount"] == "1130.00"
    assert bill["payment_status"] == "paid"
    assert bill["payment_method"] == "cash"
    assert bill["billing"]["snapshot_matches"] is True
    assert bill["customer_name"] == f"Walk-in {rng_suffix}"

    r = client.get(f"{base_url}/restaurant/orders/{o['id']}", headers=auth_headers)
    assert r.json()["status"] == "completed"

    # one bill per order
    r = client.post(f"{base_url}/restaurant/bills", json={"order_id": o["id"]}, headers=auth_headers)
    assert r.status_code == 409
    r = client.post(f"{base_url}/restaurant/orders/{o['id']}/items", json={"items": [MOMO]}, headers=auth_headers)
    assert r.status_code == 409

    r = client.get(f"{base_url}/restaurant/bills/{bill['id']}/payments", headers=auth_headers)
    assert [(p["payment_type"], p["amount"]) for p in r.json()["items"]] == [("full", "1130.00")]
    assert r.json()["summary"]["remaining"] == "0.00"

    r = client.post(f"{base_url}/restaurant/bills/{bill['id']}/payments", headers=auth_headers,
                    json={"payment_type": "partial", "payment_method": "cash", "amount": "1"})
    assert r.status_code == 409
    assert r.json()["error"] == "OverpaymentError"


def test_print_bill(client, base_url, auth_headers):
    o = _order(client, base_url, auth_headers, [MOMO, THALI])
    r = client.post(f"{base_url}/restaurant/bills", headers=auth_headers, json={
        "order_id": o["id"], "customer_name": "Anita & Co", "customer_phone": "9811111111",
        "discount": {"type": "percentage", "value": 10}, "payment_method": "card", "transaction_reference": "POS-77",
    })
    assert r.status_code == 200, r.text
    bill = r.json()
    assert bill["is_printed"] is False

    r = client.get(f"{base_url}/restaurant/bills/{bill['id']}/print", headers=auth_headers)
    assert r.status_code == 200
    assert r.headers["content-type"].startswith("text/html")
    html = r.text
    assert bill["bill_number"] in html
    assert "Rs. 1,130.00" in html
    assert "Discount (10%)" in html
    assert "VAT (13.00%)" in html
    assert "Anita &amp; Co" in html
    assert "Payment: card" in html

    r = client.get(f"{base_url}/restaurant/bills/{bill['id']}", headers=auth_headers)
    assert r.json()["is_printed"] is True


def test_unpaid_bill_then_partial_payment(client, base_url, auth_headers):
    o = _order(client, base_url, auth_headers, [{"dish_name": "Dal bhat", "quantity": 1, "unit_price": "400"}])
    r = client.post(f"{base_url}/restaurant/bills", json={"order_id": o["id"]}, headers=auth_headers)
    assert r.status_code == 200, r.text
    bill = r.json()
    # 400 + 40 service + 52 VAT
    assert bill["total_amount"] == "492.00"
    assert bill["payment_status"] == "pending"
    assert bill["billing"]["ledger"]["suggestions"]["advance"] == "148.00"

    url = f"{base_url}/restaurant/bills/{bill['id']}/payments"
    r = client.post(url, json={"payment_type": "partial", "payment_method": "online", "amount": "246",
                               "expected_remaining": "492"}, headers=auth_headers)
    assert r.status_code == 200, r.text
    assert r.json()["payment_status"] == "partial"
    assert r.json()["summary"]["remaining"] == "246.00"
    assert "reservation_status" not in r.json()

    r = client.post(url, json={"payment_type": "full", "payment_method": "cash", "amount": "246"},
                    headers=auth_headers)
    assert r.json()["payment_status"] == "paid"

    r = client.get(f"{base_url}/restaurant/bills", params={"size": 200}, headers=auth_headers)
    listed = {b["id"]: b for b in r.json()["items"]}
    assert listed[bill["id"]]["paid_amount"] == "492.00"


def test_only_dine_in_orders_with_items_are_billed(client, base_url, auth_headers):
    o = _order(client, base_url, auth_headers, [MOMO], order_type="takeaway")
    r = client.post(f"{base_url}/restaurant/bills", json={"order_id": o["id"]}, headers=auth_headers)
    assert r.status_code == 422
    assert r.json()["field"] == "order_id"

    empty = _order(client, base_url, auth_headers, [])
    r = client.post(f"{base_url}/restaurant/bills", json={"order_id": empty["id"]}, headers=auth_headers)
    assert r.status_code == 422

    r = client.post(f"{base_url}/restaurant/orders", headers=auth_headers,
                    json={"order_type": "room", "items": [MOMO]})
    assert r.status_code == 422
    assert r.json()["field"] == "reservation_id"

    r = client.post(f"{base_url}/restaurant/bills", json={"order_id": "missing"}, headers=auth_headers)
    assert r.status_code == 404


def test_bad_item_values_are_rejected(client, base_url, auth_headers):
    r = client.post(f"{base_url}/restaurant/orders", headers=auth_headers, json={
        "order_type": "dine-in", "items": [MOMO, {"dish_name": "Lassi", "quantity": 1, "unit_price": "abc"}],
    })
    assert r.status_code == 422
    assert r.json()["field"] == "lines[1].unit_amount"
