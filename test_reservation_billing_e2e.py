"""
Reservation billing over HTTP: snapshot, room service, payments, credit,
auto-checkout. Uses the VAT 13% reservation rule seeded by dev-bootstrap.
"""
from datetime import date, timedelta

from conftest import jprint
from hms.models.core import User
from hms.routers import admin
from hms.util.security import hash_pw


def _guest(client, base_url, h, suffix):
    r = client.post(f"{base_url}/guests", json={"name": f"Guest {suffix}", "phone": "9800000000"}, headers=h)
    assert r.status_code == 200, r.text
    return r.json()["id"]


def _reserve(client, base_url, h, guest_id, **extra):
    body = {
        "guest_id": guest_id,
        "status": "confirmed",
        "lines": [{"description": "Room 101 - Deluxe", "quantity": 2, "unit_amount": "5000"}],
        **extra,
    }
    r = client.post(f"{base_url}/reservations", json=body, headers=h)
    jprint("reservation", r)
    assert r.status_code == 200, r.text
    return r.json()


def test_auth_required(client, base_url):
    r = client.get(f"{base_url}/reservations")
    assert r.status_code == 401
    r = client.post(f"{base_url}/auth/login", params={"mobile": "9999999999", "password": "wrong"})
    assert r.status_code == 401


def test_request_id_is_echoed(client, base_url):
    r = client.get(f"{base_url}/healthz", headers={"X-Request-ID": "req-123"})
    assert r.headers["X-Request-ID"] == "req-123"
    assert client.get(f"{base_url}/healthz").headers["X-Request-ID"]


def test_preview_uses_registry_rules(client, base_url, auth_headers):
    body = {"lines": [{"quantity": 1, "unit_amount": 1000}], "scope": "order",
            "discount": {"type": "percentage", "value": 10}}
    r = client.post(f"{base_url}/billing/preview", json=body, headers=auth_headers)
    assert r.status_code == 200, r.text
    out = r.json()
    assert [t["name"] for t in out["tax_breakdown"]] == ["Service Charge", "VAT"]
    assert out["tax_total"] == "230.00"
    assert out["total"] == "1130.00"

    body = {"lines": [{"quantity": 1, "unit_amount": 1000}], "rules": [{"name": "VAT", "rate": 13}]}
    assert client.post(f"{base_url}/billing/preview", json=body, headers=auth_headers).json()["total"] == "1130.00"


def test_preview_rejects_bad_input(client, base_url, auth_headers):
    body = {"lines": [{"quantity": "abc", "unit_amount": 10}]}
    r = client.post(f"{base_url}/billing/preview", json=body, headers=auth_headers)
    assert r.status_code == 422
    assert r.json() == {
        "detail": "lines[0].quantity: must be a number, got 'abc'",
        "error": "ValidationError",
        "field": "lines[0].quantity",
    }


def test_reservation_snapshot_and_listing(client, base_url, auth_headers, rng_suffix):
    res = _reserve(client, base_url, auth_headers, _guest(client, base_url, auth_headers, rng_suffix))
    b = res["billing"]
    assert b["snapshot"] == {
        "subtotal": "10000.00",
        "tax_breakdown": [{"name": "VAT", "rate": "13.00", "amount": "1300.00"}],
        "tax_total": "1300.00",
        "discount_amount": "0.00",
        "total": "11300.00",
    }
    assert b["snapshot_matches"] is True
    assert b["ledger"]["remaining"] == "11300.00"
    assert b["ledger"]["suggestions"] == {
        "advance": "3390.00", "partial": "5650.00", "full": "11300.00", "credit": "11300.00",
    }
    assert res["payment_status"] == "pending"

    r = client.get(f"{base_url}/reservations", params={"status": "confirmed", "size": 200}, headers=auth_headers)
    assert r.status_code == 200
    assert res["id"] in [i["id"] for i in r.json()["items"]]
    assert r.json()["total"] >= 1

    r = client.get(f"{base_url}/reservations/does-not-exist", headers=auth_headers)
    assert r.status_code == 404
    assert r.json()["error"] == "NotFoundError"


def test_payments_credit_and_checkout(client, base_url, auth_headers, rng_suffix):
    guest_id = _guest(client, base_url, auth_headers, rng_suffix)
    res = _reserve(client, base_url, auth_headers, guest_id)
    pay_url = f"{base_url}/reservations/{res['id']}/payments"

    r = client.post(pay_url, json={"payment_type": "advance", "payment_method": "cash", "amount": "3390",
                                   "expected_remaining": "11300.00"}, headers=auth_headers)
    jprint("advance", r)
    assert r.status_code == 200, r.text
    assert r.json()["summary"]["remaining"] == "7910.00"
    assert r.json()["payment_status"] == "partial"

    # a second cashier still looking at the old balance
    r = client.post(pay_url, json={"payment_type": "full", "payment_method": "card", "amount": "11300",
                                   "expected_remaining": "11300.00"}, headers=auth_headers)
    assert r.status_code == 409
    assert r.json()["error"] == "ConcurrencyConflict"

    r = client.post(pay_url, json={"payment_type": "full", "payment_method": "card", "amount": "8000"},
                    headers=auth_headers)
    assert r.status_code == 409
    assert r.json() == {
        "detail": "amount 8000.00 exceeds remaining balance 7910.00",
        "error": "OverpaymentError",
        "amount": "8000.00",
        "remaining": "7910.00",
    }

    r = client.post(pay_url, json={"payment_type": "credit", "payment_method": "cash", "amount": "2910"},
                    headers=auth_headers)
    assert r.status_code == 422
    assert r.json()["field"] == "due_date"

    due = (date.today() + timedelta(days=15)).isoformat()
    r = client.post(pay_url, json={"payment_type": "credit", "payment_method": "cash", "amount": "2910",
                                   "due_date": due, "notes": "settles at month end"}, headers=auth_headers)
    assert r.status_code == 200, r.text
    assert r.json()["summary"]["paid"] == "3390.00"
    assert r.json()["summary"]["credit"] == "2910.00"
    assert r.json()["reservation_status"] == "confirmed"

    r = client.get(f"{base_url}/guests/{guest_id}", headers=auth_headers)
    assert r.json()["credit_balance"] == "2910.00"

    r = client.post(pay_url, json={"payment_type": "full", "payment_method": "online", "amount": "5000",
                                   "transaction_reference": "TXN-1"}, headers=auth_headers)
    assert r.status_code == 200, r.text
    # paid + credit covers the total
    assert r.json()["reservation_status"] == "checked-out"
    r = client.get(f"{base_url}/guests/{guest_id}", headers=auth_headers)
    assert r.json()["credit_balance"] == "0.00"

    r = client.get(pay_url, headers=auth_headers)
    items = r.json()["items"]
    assert [p["payment_type"] for p in items] == ["advance", "credit", "full"]
    assert items[1]["due_date"] == due
    assert r.json()["summary"]["paid"] == "8390.00"
    assert r.json()["summary"]["remaining"] == "2910.00"


def test_pending_payment_status_change(client, base_url, auth_headers, rng_suffix):
    res = _reserve(client, base_url, auth_headers, _guest(client, base_url, auth_headers, rng_suffix))
    pay_url = f"{base_url}/reservations/{res['id']}/payments"
    r = client.post(pay_url, json={"payment_type": "partial", "payment_method": "bank-transfer",
                                   "amount": "1000", "status": "pending"}, headers=auth_headers)
    assert r.status_code == 200, r.text
    pid = r.json()["payment"]["id"]
    assert r.json()["summary"]["paid"] == "0.00"

    r = client.patch(f"{base_url}/payments/{pid}/status", json={"status": "completed"}, headers=auth_headers)
    assert r.status_code == 200, r.text
    assert r.json()["summary"]["paid"] == "1000.00"

    r = client.patch(f"{base_url}/payments/{pid}/status", json={"status": "failed"}, headers=auth_headers)
    assert r.status_code == 409


def test_room_service_and_line_changes(client, base_url, auth_headers, rng_suffix):
    res = _reserve(client, base_url, auth_headers, _guest(client, base_url, auth_headers, rng_suffix))
    rid = res["id"]

    r = client.post(f"{base_url}/restaurant/orders", headers=auth_headers, json={
        "order_type": "room", "reservation_id": rid,
        "items": [{"dish_name": "Club sandwich", "quantity": 2, "unit_price": "450"}],
    })
    assert r.status_code == 200, r.text
    order_id = r.json()["id"]

    r = client.get(f"{base_url}/reservations/{rid}", headers=auth_headers)
    body = r.json()
    assert [l["description"] for l in body["lines"]] == ["Room 101 - Deluxe", "Club sandwich"]
    # 10900 + 13%
    assert body["billing"]["snapshot"]["total"] == "12317.00"
    assert body["billing"]["snapshot_matches"] is True

    # room orders are billed with the stay, never on their own
    r = client.post(f"{base_url}/restaurant/bills", json={"order_id": order_id}, headers=auth_headers)
    assert r.status_code == 422

    r = client.patch(f"{base_url}/restaurant/orders/{order_id}/status", json={"status": "cancelled"},
                     headers=auth_headers)
    assert r.status_code == 200
    r = client.get(f"{base_url}/reservations/{rid}", headers=auth_headers)
    assert r.json()["billing"]["snapshot"]["total"] == "11300.00"

    r = client.put(f"{base_url}/reservations/{rid}/lines", headers=auth_headers, json={"lines": [
        {"description": "Room 101 - Deluxe", "quantity": 3, "unit_amount": "5000"},
        {"description": "Extra bed", "quantity": 3, "unit_amount": "800"},
    ]})
    assert r.status_code == 200, r.text
    assert r.json()["billing"]["snapshot"]["subtotal"] == "17400.00"
    assert r.json()["billing"]["snapshot"]["total"] == "19662.00"

    r = client.put(f"{base_url}/reservations/{rid}/lines", headers=auth_headers,
                   json={"lines": [{"description": "Room", "quantity": -1, "unit_amount": "5000"}]})
    assert r.status_code == 422
    r = client.get(f"{base_url}/reservations/{rid}", headers=auth_headers)
    assert r.json()["billing"]["snapshot"]["total"] == "19662.00"


def test_status_transitions(client, base_url, auth_headers, rng_suffix):
    res = _reserve(client, base_url, auth_headers, _guest(client, base_url, auth_headers, rng_suffix),
                   status="pending")
    url = f"{base_url}/reservations/{res['id']}/status"
    assert client.patch(url, json={"status": "checked-out"}, headers=auth_headers).status_code == 409
    assert client.patch(url, json={"status": "confirmed"}, headers=auth_headers).json()["status"] == "confirmed"
    assert client.patch(url, json={"status": "checked-in"}, headers=auth_headers).json()["status"] == "checked-in"

    r = client.post(f"{base_url}/reservations/{res['id']}/payments", headers=auth_headers,
                    json={"payment_type": "full", "payment_method": "card", "amount": "11300"})
    assert r.json()["reservation_status"] == "checked-out"

    r = client.post(f"{base_url}/restaurant/orders", headers=auth_headers, json={
        "order_type": "room", "reservation_id": res["id"],
        "items": [{"dish_name": "Tea", "quantity": 1, "unit_price": "100"}],
    })
    assert r.status_code == 409


def test_preview_matches_saved_snapshot(client, base_url, auth_headers, rng_suffix):
    line = {"description": "Late checkout", "quantity": "1.005", "unit_amount": "1000"}
    r = client.post(f"{base_url}/billing/preview", json={"lines": [line], "scope": "reservation"},
                    headers=auth_headers)
    assert r.status_code == 200, r.text
    preview = r.json()

    res = _reserve(client, base_url, auth_headers, _guest(client, base_url, auth_headers, rng_suffix),
                   lines=[line])
    snap = res["billing"]["snapshot"]
    # quantity is stored as 1.01
    assert snap["subtotal"] == "1010.00"
    assert snap["total"] == "1141.30"
    assert preview == snap


def test_fully_comped_stay_is_settled(client, base_url, auth_headers, rng_suffix):
    res = _reserve(client, base_url, auth_headers, _guest(client, base_url, auth_headers, rng_suffix))
    r = client.put(f"{base_url}/reservations/{res['id']}/discount",
                   json={"type": "fixed", "value": "20000", "reason": "comp"}, headers=auth_headers)
    assert r.status_code == 200, r.text
    body = r.json()
    assert body["billing"]["snapshot"]["total"] == "0.00"
    assert body["payment_status"] == "paid"
    assert body["status"] == "checked-out"
    assert body["billing"]["ledger"]["remaining"] == "0.00"

    r = client.post(f"{base_url}/reservations/{res['id']}/payments", headers=auth_headers,
                    json={"payment_type": "full", "payment_method": "cash", "amount": "0.01"})
    assert r.status_code == 409
    assert r.json()["error"] == "OverpaymentError"


def test_guarded_routes_need_their_permission(client, base_url, auth_headers, db, rng_suffix):
    assert set(admin.PERMISSIONS) == {"DISCOUNT", "SETTINGS_EDIT", "PAYMENT_STATUS"}

    mobile = "97" + "".join(str(ord(c) % 10) for c in rng_suffix) + "00"
    db.add(User(name=f"Clerk {rng_suffix}", mobile=mobile, pass_hash=hash_pw("clerk")))
    db.commit()
    r = client.post(f"{base_url}/auth/login", params={"mobile": mobile, "password": "clerk"})
    assert r.status_code == 200, r.text
    clerk = {"Authorization": f"Bearer {r.json()['access_token']}"}

    res = _reserve(client, base_url, clerk, _guest(client, base_url, clerk, rng_suffix))
    r = client.put(f"{base_url}/reservations/{res['id']}/discount",
                   json={"type": "fixed", "value": "100"}, headers=clerk)
    assert r.status_code == 403
    r = client.post(f"{base_url}/charges", json={"name": "City tax", "rate": 2, "apply_to_reservations": True},
                    headers=clerk)
    assert r.status_code == 403
    r = client.post(f"{base_url}/reservations/{res['id']}/payments", headers=auth_headers,
                    json={"payment_type": "partial", "payment_method": "bank-transfer",
                          "amount": "100", "status": "pending"})
    r = client.patch(f"{base_url}/payments/{r.json()['payment']['id']}/status",
                     json={"status": "completed"}, headers=clerk)
    assert r.status_code == 403
