import datetime

from tests.conftest import make_headers

ITEMS = [
    {"dish_id": 1, "dish_name": "Chicken Karahi", "unit_price": 500, "quantity": 2},
    {"dish_id": 2, "dish_name": "Mint Lemonade", "unit_price": 300, "quantity": 1},
]


def today():
    return datetime.datetime.utcnow().date()


def place(order_api, admin, items=ITEMS):
    return order_api.post("/orders", headers=admin, json={
        "order_type": "Take Away", "status": "Running", "items": items,
    }).json()["result"]


def seed_sales(order_api, admin, customer):
    # Cash sale: 1300 + 100 - 10% = 1260
    paid = place(order_api, admin)
    bill = order_api.post(f"/orders/{paid['id']}/bill", headers=admin, json={
        "service_charge": 100, "discount_percentage": 10, "payment_method": "Cash",
    }).json()["result"]
    order_api.post(f"/bills/{bill['id']}/pay", headers=admin, json={"payment_method": "Cash", "cash_received": 1500})

    # Credit sale: 700
    credit = place(order_api, admin, [{"dish_id": 3, "dish_name": "Naan", "unit_price": 50, "quantity": 14}])
    order_api.post(f"/orders/{credit['id']}/bill", headers=admin, json={
        "payment_method": "Credit", "customer_id": customer["id"],
    })

    # Billed, not yet paid by card: 300
    card = place(order_api, admin, [{"dish_id": 2, "dish_name": "Mint Lemonade", "unit_price": 300, "quantity": 1}])
    order_api.post(f"/orders/{card['id']}/bill", headers=admin, json={"payment_method": "Card"})

    # Never billed
    place(order_api, admin)


def test_sales_report(order_api, admin, customer):
    seed_sales(order_api, admin, customer)
    span = {"date_from": str(today() - datetime.timedelta(days=1)), "date_to": str(today())}
    report = order_api.get("/reports/sales", headers=admin, params=span).json()["result"]

    assert len(report["rows"]) == 3
    assert [r["is_credit"] for r in report["rows"]] == [False, True, False]
    assert report["totals"] == {
        "bill_amount": 2300,
        "service_charge": 100,
        "discount": 140,
        "net_total": 2260,
        "credit_sales": 700,
    }


def test_day_end(order_api, admin, customer):
    seed_sales(order_api, admin, customer)
    order_api.post(f"/customers/{customer['id']}/receivings", headers=admin, json={"amount": 200})

    report = order_api.get("/reports/day-end", headers=admin, params={"day": str(today())}).json()["result"]
    assert report["order_count"] == 4
    assert report["total_cash"] == 1260
    assert report["total_card"] == 0
    assert report["total_credit"] == 700
    assert report["total_sales"] == 1960
    assert report["total_receivings"] == 200


def test_menu_sales(order_api, admin, customer):
    seed_sales(order_api, admin, customer)
    span = {"date_from": str(today()), "date_to": str(today())}
    rows = order_api.get("/reports/menu-sales", headers=admin, params=span).json()["result"]

    assert [r["dish_name"] for r in rows] == ["Chicken Karahi", "Naan", "Mint Lemonade"]
    assert rows[0] == {"dish_id": 1, "dish_name": "Chicken Karahi", "quantity": 2, "revenue": 1000}
    assert rows[2]["quantity"] == 2


def test_reports_are_branch_scoped(order_api, admin, customer):
    seed_sales(order_api, admin, customer)
    other = make_headers("accountant", branch_id=2)
    report = order_api.get("/reports/sales", headers=other).json()["result"]
    assert report["rows"] == []
    assert report["totals"]["net_total"] == 0


def test_kitchen_cannot_read_reports(order_api):
    assert order_api.get("/reports/sales", headers=make_headers("kitchen")).status_code == 403
