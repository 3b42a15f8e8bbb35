"""Seed a demo branch through the gateway.

Run against a running docker-compose stack: ``python init_data.py``.
"""
import asyncio
import os

import httpx

from pos_common.security import create_access_token

# --- CONFIG ---
GATEWAY_URL = os.getenv("GATEWAY_URL", "http://localhost:8000")
STRONG_PASS = "Admin@123"
BRANCH_ID = 1
TERMINAL = 1


# --- HELPERS ---
def create_headers(user_id, role="super-admin", branch_id=None, terminal=None):
    token = create_access_token({
        "sub": f"seed_{user_id}",
        "id": user_id,
        "role": role,
        "branch_id": branch_id,
        "terminal": terminal,
    }, expires_minutes=10)
    return {"Authorization": f"Bearer {token}"}


def result_of(res: httpx.Response):
    body = res.json()
    if not body.get("ok"):
        error = body.get("error") or {}
        raise RuntimeError(f"{res.request.method} {res.request.url.path}: {error.get('message')}")
    return body["result"]


async def seed_accounts(client: httpx.AsyncClient, admin_headers: dict):
    print("\n[1] ACCOUNTS...")
    await client.post(f"{GATEWAY_URL}/bootstrap", json={
        "email": "owner@pos.local", "password": STRONG_PASS, "name": "Owner",
    })
    staff = [
        ("manager@pos.local", "Branch Manager", "branch-admin"),
        ("cashier@pos.local", "Cashier", "accountant"),
        ("waiter@pos.local", "Waiter", "order-taker"),
        ("chef@pos.local", "Chef", "kitchen"),
    ]
    for email, name, role in staff:
        res = await client.post(f"{GATEWAY_URL}/accounts", headers=admin_headers, json={
            "email": email, "password": STRONG_PASS, "name": name, "role": role,
            "branch_id": BRANCH_ID, "terminal": TERMINAL,
        })
        if res.status_code == 200:
            print(f"   + {role}: {email}")
        else:
            print(f"   = {email} already there")


async def seed_tables(client: httpx.AsyncClient, headers: dict) -> list:
    print("\n[2] HALLS & TABLES...")
    tables = []
    for hall_name, count in (("Ground Floor", 6), ("Rooftop", 4)):
        hall = result_of(await client.post(f"{GATEWAY_URL}/halls", headers=headers,
                                           json={"name": hall_name, "capacity": count * 4}))
        for n in range(1, count + 1):
            res = await client.post(f"{GATEWAY_URL}/tables", headers=headers,
                                    json={"hall_id": hall["id"], "table_number": f"T{n}"})
            if res.status_code == 200:
                tables.append(result_of(res))
        print(f"   + {hall_name}: {count} tables")
    return tables


async def seed_orders(client: httpx.AsyncClient, headers: dict, tables: list):
    print("\n[3] CUSTOMERS & ORDERS...")
    customer = result_of(await client.post(f"{GATEWAY_URL}/customers", headers=headers, json={
        "name": "Acme Corp", "phone": "0901000001", "credit_limit": 50000,
    }))
    menu = [
        {"dish_id": 1, "dish_name": "Chicken Karahi", "unit_price": 500},
        {"dish_id": 2, "dish_name": "Naan", "unit_price": 50},
        {"dish_id": 3, "dish_name": "Mint Lemonade", "unit_price": 300},
    ]

    # Paid dine-in order
    table = tables[0]
    order = result_of(await client.post(f"{GATEWAY_URL}/orders", headers=headers, json={
        "order_type": "Dine In", "hall_id": table["hall_id"], "table_id": table["id"], "status": "Running",
        "items": [dict(menu[0], quantity=2), dict(menu[2], quantity=1)],
    }))
    bill = result_of(await client.post(f"{GATEWAY_URL}/orders/{order['id']}/bill", headers=headers, json={
        "service_charge": 100, "discount_percentage": 10, "payment_method": "Cash",
    }))
    result_of(await client.post(f"{GATEWAY_URL}/bills/{bill['id']}/pay", headers=headers, json={
        "payment_method": "Cash", "cash_received": 1500,
    }))
    print(f"   + {order['display_id']} paid ({bill['grand_total']})")

    # Credit take-away
    order = result_of(await client.post(f"{GATEWAY_URL}/orders", headers=headers, json={
        "order_type": "Take Away", "items": [dict(menu[1], quantity=10)],
    }))
    result_of(await client.post(f"{GATEWAY_URL}/orders/{order['id']}/bill", headers=headers, json={
        "payment_method": "Credit", "customer_id": customer["id"],
    }))
    print(f"   + {order['display_id']} on credit for {customer['name']}")

    # Still running, shows up in the kitchen
    table = tables[1]
    order = result_of(await client.post(f"{GATEWAY_URL}/orders", headers=headers, json={
        "order_type": "Dine In", "hall_id": table["hall_id"], "table_id": table["id"], "status": "Running",
        "items": [dict(menu[0], quantity=1), dict(menu[1], quantity=3)],
    }))
    print(f"   + {order['display_id']} running on table {table['table_number']}")


async def seed_data():
    print("Seeding demo data...")
    admin_headers = create_headers(0)
    branch_headers = create_headers(0, role="branch-admin", branch_id=BRANCH_ID, terminal=TERMINAL)

    async with httpx.AsyncClient(timeout=30.0) as client:
        await seed_accounts(client, admin_headers)
        tables = await seed_tables(client, branch_headers)
        if len(tables) < 2:
            print("Tables already seeded, skipping orders")
        else:
            await seed_orders(client, branch_headers, tables)

    print("\n-------------------------------------")
    print("Done.")
    print(f"Manager: manager@pos.local / {STRONG_PASS}")
    print(f"Cashier: cashier@pos.local / {STRONG_PASS}")
    print("-------------------------------------")


if __name__ == "__main__":
    asyncio.run(seed_data())
