import json

from walletpoint.app import create_app
from walletpoint.testing import auth_headers, balance_of, row_count, seed_product, seed_user, stock_of


def _admin(conn):
    return seed_user(conn, full_name="Admin", role="admin", balance=0)


def test_requests_without_identity_are_rejected(client):
    rv = client.get("/products")
    assert rv.status_code == 401
    body = rv.get_json()
    assert body["error"] == "Unauthorized"
    assert "details" in body


def test_non_admin_cannot_manage_products(client, conn):
    uid = seed_user(conn)
    rv = client.post("/products", json={"name": "Pen", "price": 5, "stock": 1}, headers=auth_headers(uid))
    assert rv.status_code == 403
    rv = client.get("/transactions", headers=auth_headers(uid))
    assert rv.status_code == 403


def test_admin_product_crud(client, conn):
    admin = _admin(conn)
    headers = auth_headers(admin, "admin")

    rv = client.post("/products", json={"name": "Tote Bag", "description": "Canvas", "price": 40, "stock": 3}, headers=headers)
    assert rv.status_code == 201
    created = rv.get_json()
    assert created["status"] == "active"
    pid = created["id"]

    rv = client.put(f"/products/{pid}", json={"stock": 9}, headers=headers)
    assert rv.status_code == 200
    assert rv.get_json()["stock"] == 9
    assert rv.get_json()["name"] == "Tote Bag"

    rv = client.delete(f"/products/{pid}", headers=headers)
    assert rv.status_code == 200

    # still fetchable by id for historical display
    rv = client.get(f"/products/{pid}", headers=headers)
    assert rv.status_code == 200
    assert rv.get_json()["status"] == "inactive"

    # re-enable through update
    rv = client.put(f"/products/{pid}", json={"status": "active"}, headers=headers)
    assert rv.get_json()["status"] == "active"


def test_product_errors(client, conn):
    headers = auth_headers(_admin(conn), "admin")

    rv = client.get("/products/9999", headers=headers)
    assert rv.status_code == 404
    assert rv.get_json()["details"] == "product not found"

    rv = client.get("/products/abc", headers=headers)
    assert rv.status_code == 400

    rv = client.put("/products/9999", json={"price": 3}, headers=headers)
    assert rv.status_code == 404

    rv = client.delete("/products/9999", headers=headers)
    assert rv.status_code == 404

    rv = client.post("/products", json={"name": "X", "price": -1, "stock": 1}, headers=headers)
    assert rv.status_code == 400
    assert rv.get_json()["errors"]

    rv = client.put("/products/1", json={"id": 5}, headers=headers)
    assert rv.status_code == 400

    rv = client.post("/products", data="not json", content_type="application/json", headers=headers)
    assert rv.status_code == 400


def test_student_only_sees_active_products(client, conn):
    student = seed_user(conn)
    admin = _admin(conn)
    seed_product(conn, name="Live")
    seed_product(conn, name="Retired", status="inactive")

    rv = client.get("/products?status=inactive", headers=auth_headers(student))
    body = rv.get_json()
    assert rv.status_code == 200
    assert [p["name"] for p in body["products"]] == ["Live"]
    assert body["total"] == 1

    # an unknown filter is ignored for students rather than rejected
    rv = client.get("/products?status=archived", headers=auth_headers(student))
    assert rv.status_code == 200
    assert [p["name"] for p in rv.get_json()["products"]] == ["Live"]

    rv = client.get("/products", headers=auth_headers(admin, "admin"))
    assert rv.get_json()["total"] == 2

    rv = client.get("/products?status=inactive", headers=auth_headers(admin, "admin"))
    assert [p["name"] for p in rv.get_json()["products"]] == ["Retired"]


def test_product_listing_pagination(client, conn):
    admin = _admin(conn)
    ids = [seed_product(conn, name=f"P{i:02d}") for i in range(1, 26)]

    rv = client.get("/products?page=2&limit=10", headers=auth_headers(admin, "admin"))
    body = rv.get_json()
    assert body["page"] == 2
    assert body["limit"] == 10
    assert body["total"] == 25
    assert body["total_pages"] == 3
    assert [p["id"] for p in body["products"]] == list(reversed(ids))[10:20]

    rv = client.get("/products?status=archived", headers=auth_headers(admin, "admin"))
    assert rv.status_code == 400


def test_out_of_range_numbers_are_client_errors(client, conn):
    uid = seed_user(conn, balance=100)
    admin = _admin(conn)
    huge = "99999999999999999999"

    assert client.get(f"/products/{huge}", headers=auth_headers(uid)).status_code == 400
    assert client.delete(f"/cart/{huge}", headers=auth_headers(uid)).status_code == 400

    rv = client.post("/purchase", json={"product_id": int(huge), "quantity": 1}, headers=auth_headers(uid))
    assert rv.status_code == 400
    rv = client.post("/cart/checkout", json={"cart_item_ids": [int(huge)]}, headers=auth_headers(uid))
    assert rv.status_code == 400

    rv = client.get(f"/products?page={huge}", headers=auth_headers(uid))
    assert rv.status_code == 200
    assert rv.get_json()["products"] == []
    rv = client.get(f"/transactions?page={huge}", headers=auth_headers(admin, "admin"))
    assert rv.status_code == 200

    assert client.get("/cart", headers={"X-User-Id": huge}).status_code == 401


def test_purchase_endpoint(client, conn):
    uid = seed_user(conn, balance=100)
    pid = seed_product(conn, price=30, stock=5)

    rv = client.post("/purchase", json={"product_id": pid, "quantity": 2}, headers=auth_headers(uid))
    assert rv.status_code == 200
    receipt = rv.get_json()["receipt"]
    assert receipt["total_amount"] == 60
    assert receipt["balance"] == 40
    assert balance_of(conn, uid) == 40
    assert stock_of(conn, pid) == 3

    rv = client.post("/purchase", json={"product_id": pid, "quantity": 10}, headers=auth_headers(uid))
    assert rv.status_code == 400
    assert "insufficient stock" in rv.get_json()["details"]

    rv = client.post("/purchase", json={"product_id": 9999, "quantity": 1}, headers=auth_headers(uid))
    assert rv.status_code == 404


def test_purchase_idempotency_header(client, conn):
    uid = seed_user(conn, balance=100)
    pid = seed_product(conn, price=30, stock=5)
    headers = dict(auth_headers(uid), **{"Idempotency-Key": "abc-123"})

    first = client.post("/purchase", json={"product_id": pid, "quantity": 1}, headers=headers)
    second = client.post("/purchase", json={"product_id": pid, "quantity": 1}, headers=headers)

    assert first.status_code == second.status_code == 200
    assert second.get_json()["receipt"]["replayed"] is True
    assert balance_of(conn, uid) == 70


def test_cart_flow_and_checkout(client, conn):
    uid = seed_user(conn, balance=100)
    pid = seed_product(conn, price=30, stock=5)
    headers = auth_headers(uid)

    rv = client.post("/cart", json={"product_id": pid, "quantity": 1}, headers=headers)
    assert rv.status_code == 200
    item_id = rv.get_json()["cart_item_id"]
    client.post("/cart", json={"product_id": pid, "quantity": 1}, headers=headers)

    rv = client.get("/cart", headers=headers)
    cart = rv.get_json()
    assert len(cart["items"]) == 1
    assert cart["items"][0]["quantity"] == 2
    assert cart["items"][0]["product"]["name"] == "Sticker"
    assert cart["total_price"] == 60

    rv = client.put(f"/cart/{item_id}", json={"quantity": 0}, headers=headers)
    assert rv.status_code == 400

    rv = client.post("/cart/checkout", headers=headers)
    assert rv.status_code == 200
    assert rv.get_json()["receipt"]["total_amount"] == 60
    assert balance_of(conn, uid) == 40
    assert stock_of(conn, pid) == 3
    assert client.get("/cart", headers=headers).get_json() == {"items": [], "total_price": 0}

    rv = client.post("/cart/checkout", headers=headers)
    assert rv.status_code == 400


def test_cart_items_of_other_users_are_not_found(client, conn):
    alice = seed_user(conn, full_name="Alice")
    bob = seed_user(conn, full_name="Bob")
    pid = seed_product(conn)
    item_id = client.post("/cart", json={"product_id": pid, "quantity": 1}, headers=auth_headers(alice)).get_json()["cart_item_id"]

    assert client.put(f"/cart/{item_id}", json={"quantity": 2}, headers=auth_headers(bob)).status_code == 404
    assert client.delete(f"/cart/{item_id}", headers=auth_headers(bob)).status_code == 404
    assert client.delete(f"/cart/{item_id}", headers=auth_headers(alice)).status_code == 200


def test_transactions_listing_for_admin(client, conn):
    admin = _admin(conn)
    uid = seed_user(conn, full_name="Siti Rahma", email="siti@kampus.ac.id", balance=100)
    pid = seed_product(conn, name="Coffee Voucher", price=15, stock=10)
    client.post("/purchase", json={"product_id": pid, "quantity": 2}, headers=auth_headers(uid))

    rv = client.get("/transactions?page=1&limit=5", headers=auth_headers(admin, "admin"))
    body = rv.get_json()
    assert rv.status_code == 200
    assert body["total"] == 1
    assert body["page"] == 1
    assert body["limit"] == 5
    tx = body["transactions"][0]
    assert tx["product_name"] == "Coffee Voucher"
    assert tx["user_name"] == "Siti Rahma"
    assert tx["total_amount"] == 30


def test_mutations_are_audited_after_response(client, conn):
    admin = _admin(conn)
    headers = dict(auth_headers(admin, "admin"), **{"User-Agent": "pytest-agent", "X-Forwarded-For": "10.0.0.7"})

    rv = client.post("/products", json={"name": "Hoodie", "price": 150, "stock": 2}, headers=headers, buffered=True)
    assert rv.status_code == 201
    pid = rv.get_json()["id"]

    row = conn.execute("SELECT user_id, action, entity, entity_id, details, ip_address, user_agent FROM audit_log").fetchone()
    assert row["user_id"] == admin
    assert row["action"] == "CREATE_PRODUCT"
    assert row["entity"] == "PRODUCT"
    assert row["entity_id"] == pid
    assert "Hoodie" in row["details"]
    # no trusted proxy configured, so X-Forwarded-For is ignored
    assert row["ip_address"] == "127.0.0.1"
    assert row["user_agent"] == "pytest-agent"


def test_audit_ip_uses_forwarded_for_behind_trusted_proxy(db_path, conn):
    client = create_app({"DB_PATH": db_path, "TESTING": True, "TRUSTED_PROXY_HOPS": 1}).test_client()
    admin = _admin(conn)
    headers = dict(auth_headers(admin, "admin"), **{"X-Forwarded-For": "10.0.0.7"})

    rv = client.post("/products", json={"name": "Hoodie", "price": 150, "stock": 2}, headers=headers, buffered=True)
    assert rv.status_code == 201
    assert conn.execute("SELECT ip_address FROM audit_log").fetchone()[0] == "10.0.0.7"


def test_failed_mutations_are_not_audited(client, conn):
    uid = seed_user(conn, balance=0)
    pid = seed_product(conn, price=30, stock=5)
    rv = client.post("/purchase", json={"product_id": pid, "quantity": 1}, headers=auth_headers(uid), buffered=True)
    assert rv.status_code == 400
    assert row_count(conn, "audit_log") == 0


def test_audit_failure_does_not_fail_request(client, conn):
    admin = _admin(conn)
    conn.execute("DROP TABLE audit_log")
    rv = client.post("/products", json={"name": "Pen", "price": 5, "stock": 1}, headers=auth_headers(admin, "admin"), buffered=True)
    assert rv.status_code == 201
    assert row_count(conn, "product") == 1


def test_unknown_route_returns_json_error(client):
    rv = client.get("/nope")
    assert rv.status_code == 404
    body = json.loads(rv.data)
    assert body["error"] == "Not Found"


def test_health_and_metrics(client, conn):
    uid = seed_user(conn, balance=100)
    pid = seed_product(conn, price=10, stock=5)
    client.post("/purchase", json={"product_id": pid, "quantity": 1}, headers=auth_headers(uid))

    assert client.get("/healthz").get_json() == {"status": "ok"}
    rv = client.get("/metrics")
    assert rv.status_code == 200
    text = rv.data.decode()
    assert "marketplace_purchases_total" in text
    assert "http_requests_total" in text
