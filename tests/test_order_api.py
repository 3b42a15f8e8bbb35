from order_service import models
from order_service.database import SessionLocal
from tests.conftest import OTHER_BRANCH, make_headers, table_status


def bill(order_api, order_id, headers, **body):
    body.setdefault("payment_method", "Cash")
    return order_api.post(f"/orders/{order_id}/bill", headers=headers, json=body)


# --- creating orders ---
def test_dine_in_order_takes_the_table(order_api, table_api, running_order, dine_in_table, published):
    assert running_order["status"] == "Running"
    assert running_order["display_id"] == f"ORD-{running_order['id']}"
    assert running_order["subtotal"] == 1300
    assert [i["line_total"] for i in running_order["items"]] == [1000, 300]
    assert table_status(table_api, dine_in_table["id"]) == "Running"
    assert published[-1]["event"] == "ORDER_CREATED"


def test_take_away_has_no_table(order_api, admin, sample_items):
    res = order_api.post("/orders", headers=admin, json={"order_type": "Take Away", "items": sample_items})
    body = res.json()
    assert body["ok"]
    assert body["result"]["status"] == "Pending"
    assert body["result"]["table_id"] is None


def test_dine_in_requires_table(order_api, admin):
    res = order_api.post("/orders", headers=admin, json={"order_type": "Dine In", "items": []})
    assert res.status_code == 400
    assert res.json()["error"]["code"] == "validation"


def test_take_away_rejects_table(order_api, admin, dine_in_table):
    res = order_api.post("/orders", headers=admin, json={
        "order_type": "Take Away", "hall_id": dine_in_table["hall_id"], "table_id": dine_in_table["id"],
    })
    assert res.status_code == 400


def test_busy_table_is_a_conflict(order_api, admin, running_order, dine_in_table):
    res = order_api.post("/orders", headers=admin, json={
        "order_type": "Dine In", "hall_id": dine_in_table["hall_id"], "table_id": dine_in_table["id"],
    })
    assert res.status_code == 409
    assert res.json()["error"] == {"code": "conflict", "message": res.json()["error"]["message"], "retryable": True}


def test_table_from_another_hall(order_api, table_api, admin, dine_in_table):
    other = table_api.post("/halls", json={"name": "Rooftop"}, headers=admin).json()["result"]
    res = order_api.post("/orders", headers=admin, json={
        "order_type": "Dine In", "hall_id": other["id"], "table_id": dine_in_table["id"],
    })
    assert res.status_code == 400


def test_unknown_table(order_api, admin, dine_in_table):
    res = order_api.post("/orders", headers=admin, json={
        "order_type": "Dine In", "hall_id": dine_in_table["hall_id"], "table_id": 999,
    })
    assert res.status_code == 404


def test_new_orders_cannot_start_billed(order_api, admin):
    res = order_api.post("/orders", headers=admin, json={"order_type": "Take Away", "status": "Complete"})
    assert res.status_code == 422
    assert res.json()["error"]["code"] == "validation"


def test_missing_token(order_api):
    res = order_api.get("/orders")
    assert res.status_code == 401
    assert res.json()["error"]["code"] == "unauthenticated"


def test_kitchen_cannot_take_orders(order_api):
    res = order_api.post("/orders", headers=make_headers("kitchen"), json={"order_type": "Take Away"})
    assert res.status_code == 403


def test_orders_are_scoped_to_branch(order_api, admin, running_order):
    other = make_headers("branch-admin", branch_id=OTHER_BRANCH)
    assert order_api.get(f"/orders/{running_order['id']}", headers=other).status_code == 404
    assert order_api.get("/orders", headers=other).json()["result"] == []
    assert len(order_api.get("/orders", headers=admin).json()["result"]) == 1
    boss = make_headers("super-admin", branch_id=None)
    assert len(order_api.get("/orders", headers=boss).json()["result"]) == 1
    assert order_api.get(f"/orders?branch_id={OTHER_BRANCH}", headers=boss).json()["result"] == []


def test_list_filters_by_status(order_api, admin, running_order):
    assert len(order_api.get("/orders?status=Running", headers=admin).json()["result"]) == 1
    assert order_api.get("/orders?status=Pending", headers=admin).json()["result"] == []
    assert order_api.get("/orders?status=Nope", headers=admin).status_code == 400


# --- items ---
def test_item_edits_recalculate(order_api, admin, running_order):
    order_id = running_order["id"]
    res = order_api.post(f"/orders/{order_id}/items", headers=admin, json={
        "dish_id": 3, "dish_name": "Naan", "unit_price": 50, "quantity": 4,
    })
    order = res.json()["result"]
    assert order["subtotal"] == 1500

    naan = order["items"][-1]
    order = order_api.put(f"/order-items/{naan['id']}", headers=admin, json={"quantity": 1}).json()["result"]
    assert order["subtotal"] == 1350

    order = order_api.delete(f"/order-items/{naan['id']}", headers=admin).json()["result"]
    assert order["subtotal"] == 1300
    assert len(order["items"]) == 2


def test_quantity_must_be_positive(order_api, admin, running_order):
    item_id = running_order["items"][0]["id"]
    assert order_api.put(f"/order-items/{item_id}", headers=admin, json={"quantity": 0}).status_code == 422


def test_completed_order_cannot_be_edited(order_api, admin, running_order):
    order_id = running_order["id"]
    bill_id = bill(order_api, order_id, admin, service_charge=100, discount_percentage=10).json()["result"]["id"]
    order_api.post(f"/bills/{bill_id}/pay", headers=admin, json={"payment_method": "Card"})

    res = order_api.post(f"/orders/{order_id}/items", headers=admin, json={
        "dish_id": 3, "dish_name": "Naan", "unit_price": 50, "quantity": 1,
    })
    assert res.status_code == 409
    assert res.json()["error"]["code"] == "invalid_state"
    order = order_api.get(f"/orders/{order_id}", headers=admin).json()["result"]
    assert order["status"] == "Complete"
    assert len(order["items"]) == 2


# --- status ---
def test_pending_to_running(order_api, admin, published):
    order = order_api.post("/orders", headers=admin, json={"order_type": "Delivery"}).json()["result"]
    res = order_api.post(f"/orders/{order['id']}/status", headers=admin, json={"new_status": "Running"})
    assert res.json()["result"]["status"] == "Running"
    assert published[-1]["previous"] == "Pending"


def test_unlisted_transition_keeps_state(order_api, admin, running_order):
    order_id = running_order["id"]
    res = order_api.post(f"/orders/{order_id}/status", headers=admin, json={"new_status": "Pending"})
    assert res.status_code == 409
    assert order_api.get(f"/orders/{order_id}", headers=admin).json()["result"]["status"] == "Running"


def test_billing_statuses_need_billing(order_api, admin, running_order):
    res = order_api.post(f"/orders/{running_order['id']}/status", headers=admin,
                         json={"new_status": "Bill Generated"})
    assert res.status_code == 409


def test_cancel_frees_table(order_api, table_api, admin, running_order, dine_in_table):
    res = order_api.post(f"/orders/{running_order['id']}/status", headers=admin, json={"new_status": "Cancelled"})
    assert res.json()["result"]["status"] == "Cancelled"
    assert table_status(table_api, dine_in_table["id"]) == "Available"


# --- transfer ---
def test_transfer_moves_table(order_api, table_api, admin, running_order, dine_in_table, second_table):
    res = order_api.post(f"/orders/{running_order['id']}/transfer", headers=admin, json={
        "hall_id": second_table["hall_id"], "table_id": second_table["id"],
    })
    order = res.json()["result"]
    assert order["table_id"] == second_table["id"]
    assert order["status"] == "Running"
    assert table_status(table_api, dine_in_table["id"]) == "Available"
    assert table_status(table_api, second_table["id"]) == "Running"


def test_transfer_to_busy_table(order_api, admin, running_order, second_table, sample_items):
    order_api.post("/orders", headers=admin, json={
        "order_type": "Dine In", "hall_id": second_table["hall_id"], "table_id": second_table["id"],
        "items": sample_items,
    })
    res = order_api.post(f"/orders/{running_order['id']}/transfer", headers=admin, json={
        "hall_id": second_table["hall_id"], "table_id": second_table["id"],
    })
    assert res.status_code == 409


# --- delete ---
def test_delete_pending_order_frees_table(order_api, table_api, admin, dine_in_table):
    order = order_api.post("/orders", headers=admin, json={
        "order_type": "Dine In", "hall_id": dine_in_table["hall_id"], "table_id": dine_in_table["id"],
    }).json()["result"]
    assert order_api.delete(f"/orders/{order['id']}", headers=admin).json()["ok"]
    assert order_api.get(f"/orders/{order['id']}", headers=admin).status_code == 404
    assert table_status(table_api, dine_in_table["id"]) == "Available"


def test_running_order_cannot_be_deleted(order_api, admin, running_order):
    res = order_api.delete(f"/orders/{running_order['id']}", headers=admin)
    assert res.status_code == 409


# --- billing & payment ---
def test_bill_and_cash_payment(order_api, table_api, admin, running_order, dine_in_table, published):
    res = bill(order_api, running_order["id"], admin, service_charge=100, discount_percentage=10)
    generated = res.json()["result"]
    assert generated["total_amount"] == 1300
    assert generated["discount"] == 140
    assert generated["grand_total"] == 1260
    assert generated["payment_status"] == "Unpaid"

    order = order_api.get(f"/orders/{running_order['id']}", headers=admin).json()["result"]
    assert order["status"] == "Bill Generated"
    assert order["net_total"] == 1260
    # Table stays busy until payment
    assert table_status(table_api, dine_in_table["id"]) == "Running"

    paid = order_api.post(f"/bills/{generated['id']}/pay", headers=admin,
                          json={"payment_method": "Cash", "cash_received": 1500}).json()["result"]
    assert paid["payment_status"] == "Paid"
    assert paid["change_amount"] == 240
    assert paid["cash_received"] == 1500

    order = order_api.get(f"/orders/{running_order['id']}", headers=admin).json()["result"]
    assert order["status"] == "Complete"
    assert table_status(table_api, dine_in_table["id"]) == "Available"
    assert published[-1]["event"] == "ORDER_PAID"


def test_short_cash_changes_nothing(order_api, admin, running_order):
    bill_id = bill(order_api, running_order["id"], admin, service_charge=100,
                   discount_percentage=10).json()["result"]["id"]
    res = order_api.post(f"/bills/{bill_id}/pay", headers=admin, json={"payment_method": "Cash", "cash_received": 1000})
    assert res.status_code == 400
    assert res.json()["error"]["code"] == "insufficient_payment"
    assert order_api.get(f"/bills/{bill_id}", headers=admin).json()["result"]["payment_status"] == "Unpaid"
    assert order_api.get(f"/orders/{running_order['id']}", headers=admin).json()["result"]["status"] == "Bill Generated"


def test_bill_can_only_be_paid_once(order_api, admin, running_order):
    bill_id = bill(order_api, running_order["id"], admin).json()["result"]["id"]
    assert order_api.post(f"/bills/{bill_id}/pay", headers=admin, json={"payment_method": "Online"}).json()["ok"]
    res = order_api.post(f"/bills/{bill_id}/pay", headers=admin, json={"payment_method": "Online"})
    assert res.status_code == 409


def test_regenerating_keeps_bill_id(order_api, admin, running_order):
    first = bill(order_api, running_order["id"], admin, service_charge=100).json()["result"]
    second = bill(order_api, running_order["id"], admin, service_charge=0, discount_percentage=50,
                  bill_id=first["id"]).json()["result"]
    assert second["id"] == first["id"]
    assert second["grand_total"] == 650
    assert order_api.get(f"/orders/{running_order['id']}/bill", headers=admin).json()["result"]["id"] == first["id"]


def test_second_bill_without_id_conflicts(order_api, admin, running_order):
    bill(order_api, running_order["id"], admin)
    res = bill(order_api, running_order["id"], admin)
    assert res.status_code == 409
    assert res.json()["error"]["code"] == "conflict"


def test_wrong_bill_id(order_api, admin, running_order):
    assert bill(order_api, running_order["id"], admin, bill_id=77).status_code == 404


def test_empty_order_cannot_be_billed(order_api, admin):
    order = order_api.post("/orders", headers=admin, json={"order_type": "Take Away", "status": "Running"}).json()
    res = bill(order_api, order["result"]["id"], admin)
    assert res.status_code == 409


def test_pending_order_cannot_be_billed(order_api, admin, sample_items):
    order = order_api.post("/orders", headers=admin, json={"order_type": "Take Away", "items": sample_items}).json()
    assert bill(order_api, order["result"]["id"], admin).status_code == 409


def test_discount_over_100_is_rejected(order_api, admin, running_order):
    assert bill(order_api, running_order["id"], admin, discount_percentage=120).status_code == 422


def test_kitchen_cannot_bill(order_api, running_order):
    assert bill(order_api, running_order["id"], make_headers("kitchen")).status_code == 403


def test_credit_bill_releases_table(order_api, table_api, admin, running_order, dine_in_table, customer):
    res = bill(order_api, running_order["id"], admin, service_charge=100, discount_percentage=10,
               payment_method="Credit", customer_id=customer["id"])
    generated = res.json()["result"]
    assert generated["payment_status"] == "Credit"
    assert generated["customer_id"] == customer["id"]

    order = order_api.get(f"/orders/{running_order['id']}", headers=admin).json()["result"]
    assert order["status"] == "Credit"
    assert table_status(table_api, dine_in_table["id"]) == "Available"

    balance = order_api.get(f"/customers/{customer['id']}", headers=admin).json()["result"]["balance"]
    assert balance == 1260
    # Credit bills are settled through receivings, not payment
    assert order_api.post(f"/bills/{generated['id']}/pay", headers=admin,
                          json={"payment_method": "Cash", "cash_received": 5000}).status_code == 409


def test_credit_needs_customer(order_api, admin, running_order):
    res = bill(order_api, running_order["id"], admin, payment_method="Credit")
    assert res.status_code == 400


def test_billed_order_cannot_switch_to_credit(order_api, admin, running_order, customer):
    first = bill(order_api, running_order["id"], admin).json()["result"]
    res = bill(order_api, running_order["id"], admin, payment_method="Credit",
               customer_id=customer["id"], bill_id=first["id"])
    assert res.status_code == 409
    assert order_api.get(f"/customers/{customer['id']}", headers=admin).json()["result"]["balance"] == 0


# --- idempotency ---
def test_idempotent_payment_replays(order_api, admin, running_order):
    bill_id = bill(order_api, running_order["id"], admin).json()["result"]["id"]
    key = {**admin, "Idempotency-Key": "pay-1"}
    first = order_api.post(f"/bills/{bill_id}/pay", headers=key, json={"payment_method": "Cash", "cash_received": 2000})
    second = order_api.post(f"/bills/{bill_id}/pay", headers=key, json={"payment_method": "Cash", "cash_received": 2000})
    assert first.status_code == second.status_code == 200
    assert first.json() == second.json()
    assert second.json()["result"]["change_amount"] == 700


def test_idempotency_key_is_bound_to_request(order_api, admin, running_order):
    key = {**admin, "Idempotency-Key": "k-1"}
    bill_id = bill(order_api, running_order["id"], key).json()["result"]["id"]
    res = order_api.post(f"/bills/{bill_id}/pay", headers=key, json={"payment_method": "Card"})
    assert res.status_code == 409
    assert res.json()["error"]["code"] == "conflict"


# --- table service failures ---
def test_table_failure_keeps_payment(order_api, table_api, admin, running_order, dine_in_table, break_tables):
    bill_id = bill(order_api, running_order["id"], admin).json()["result"]["id"]
    break_tables()

    res = order_api.post(f"/bills/{bill_id}/pay", headers=admin, json={"payment_method": "Card"})
    assert res.status_code == 502
    body = res.json()
    assert body["error"]["code"] == "upstream"
    assert body["error"]["retryable"] is True
    assert body["result"]["payment_status"] == "Paid"

    order = order_api.get(f"/orders/{running_order['id']}", headers=admin).json()["result"]
    assert order["status"] == "Complete"
    assert table_status(table_api, dine_in_table["id"]) == "Running"

    db = SessionLocal()
    try:
        pending = db.query(models.PendingTableSync).all()
        assert [(p.table_id, p.target_status, p.resolved) for p in pending] == [
            (dine_in_table["id"], "Available", False)
        ]
    finally:
        db.close()


def test_reconcile_applies_parked_updates(order_api, table_api, admin, running_order, dine_in_table,
                                          break_tables, monkeypatch, table_backend):
    from order_service import main as order_main

    bill_id = bill(order_api, running_order["id"], admin).json()["result"]["id"]
    break_tables()
    order_api.post(f"/bills/{bill_id}/pay", headers=admin, json={"payment_method": "Card"})

    res = order_api.post("/tables/reconcile", headers=admin)
    assert res.json()["result"] == {"resolved": 0, "pending": 1}

    monkeypatch.setattr(order_main, "table_client", table_backend)
    res = order_api.post("/tables/reconcile", headers=admin)
    assert res.json()["result"] == {"resolved": 1, "pending": 0}
    assert table_status(table_api, dine_in_table["id"]) == "Available"


def test_table_service_down_blocks_new_dine_in(order_api, admin, dine_in_table, break_tables):
    break_tables()
    res = order_api.post("/orders", headers=admin, json={
        "order_type": "Dine In", "hall_id": dine_in_table["hall_id"], "table_id": dine_in_table["id"],
    })
    assert res.status_code == 502
    assert order_api.get("/orders", headers=admin).json()["result"] == []
