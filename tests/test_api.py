"""HTTP-level tests for the Verity Gem API."""

import pytest

import settings

ADDRESS = {
    "full_name": "Ada Obi",
    "address_line1": "12 Marina Road",
    "city": "Lagos",
    "country": "Nigeria",
}


@pytest.fixture(autouse=True)
def checkout_rates(monkeypatch):
    monkeypatch.setattr(settings, "SHIPPING_COST", 50.0)
    monkeypatch.setattr(settings, "TAX_RATE", 0.10)


class TestRoot:
    def test_root(self, client):
        response = client.get("/")
        assert response.status_code == 200
        assert "running" in response.json()["message"]

    def test_shipping_info(self, client):
        assert client.get("/shipping-info").json()["international"]["cost"] == 50.0


class TestErrors:
    def test_not_found_shape(self, client):
        response = client.get("/products/no-such-ring")
        assert response.status_code == 404
        assert response.json()["error_type"] == "NotFoundError"

    def test_protected_route_without_token(self, client):
        response = client.get("/orders")
        assert response.status_code == 401
        assert response.headers["www-authenticate"] == "Bearer"

    def test_bad_token(self, client):
        response = client.get("/auth/me", headers={"Authorization": "Bearer not-a-jwt"})
        assert response.status_code == 401

    def test_admin_only(self, client, make_user):
        _, headers = make_user()
        payload = {"name": "Opal Ring", "price": 80.0, "images": [{"url": "https://img.example.com/o.jpg"}]}
        response = client.post("/products", json=payload, headers=headers)
        assert response.status_code == 403
        assert response.json() == {"detail": "Admins only", "error_type": "ForbiddenError"}


class TestAuth:
    def test_register_login_me(self, client, mailer):
        response = client.post("/auth/register", json={
            "name": "Ada", "email": "ada@example.com", "password": "secret123",
        })
        assert response.status_code == 200
        assert response.json()["user"]["email"] == "ada@example.com"
        assert mailer.sent[0]["subject"] == "Welcome to Verity Gem"

        client.cookies.clear()
        login = client.post("/auth/login", data={"username": "ada@example.com", "password": "secret123"})
        assert login.status_code == 200
        token = login.json()["access_token"]

        client.cookies.clear()
        me = client.get("/auth/me", headers={"Authorization": f"Bearer {token}"})
        assert me.json()["user"]["name"] == "Ada"

    def test_cookie_session(self, client):
        client.post("/auth/register", json={"name": "Ada", "email": "ada@example.com", "password": "secret123"})
        assert client.get("/auth/me").status_code == 200
        client.post("/auth/logout")
        assert client.get("/auth/me").status_code == 401

    def test_duplicate_registration(self, client):
        body = {"name": "Ada", "email": "ada@example.com", "password": "secret123"}
        client.post("/auth/register", json=body)
        response = client.post("/auth/register", json=body)
        assert response.status_code == 400
        assert response.json()["error_type"] == "ValidationError"

    def test_bad_login(self, client):
        response = client.post("/auth/login", data={"username": "nobody@example.com", "password": "secret123"})
        assert response.status_code == 401


class TestProducts:
    def test_list_and_detail(self, client, make_product):
        ring = make_product(price=250.0, discount={"is_active": True, "type": "percentage", "value": 20})
        listing = client.get("/products", params={"category": "ring", "limit": 5}).json()
        assert listing["pagination"]["total_products"] == 1
        assert listing["products"][0]["final_price"] == 200.0

        detail = client.get(f"/products/{ring.slug}").json()["product"]
        assert detail["final_price"] == 200.0

    def test_invalid_page(self, client):
        assert client.get("/products", params={"page": 0}).status_code == 422

    def test_admin_creates_product(self, client, make_user):
        _, headers = make_user(role="admin")
        payload = {"name": "Opal Ring", "price": 80.0, "images": [{"url": "https://img.example.com/o.jpg"}]}
        response = client.post("/products", json=payload, headers=headers)
        assert response.status_code == 201
        assert response.json()["product"]["slug"] == "opal-ring"


class TestGuestCart:
    def test_session_cart(self, client, make_product):
        ring = make_product(price=120.0)
        response = client.post("/cart", json={"product_id": ring.id, "quantity": 2, "session_id": "s-1"})
        assert response.status_code == 200
        assert response.json()["cart"]["subtotal"] == 240.0

        cart = client.get("/cart", params={"session_id": "s-1"}).json()["cart"]
        line_id = cart["items"][0]["id"]
        updated = client.put(f"/cart/{line_id}", params={"session_id": "s-1"}, json={"quantity": 1}).json()
        assert updated["cart"]["item_count"] == 1

        removed = client.delete(f"/cart/{line_id}", params={"session_id": "s-1"}).json()
        assert removed["cart"]["items"] == []

    def test_missing_session(self, client, make_product):
        response = client.post("/cart", json={"product_id": make_product().id})
        assert response.status_code == 400

    def test_inactive_product(self, client, make_product):
        ring = make_product(is_active=False)
        response = client.post("/cart", json={"product_id": ring.id, "session_id": "s-1"})
        assert response.status_code == 404

    def test_sync_requires_login(self, client):
        assert client.post("/cart/sync", json={"guest_cart": []}).status_code == 401

    def test_sync_merges_session_cart(self, client, make_product, make_user):
        ring = make_product()
        client.post("/cart", json={"product_id": ring.id, "quantity": 2, "session_id": "s-9"})
        _, headers = make_user()
        merged = client.post("/cart/sync", headers=headers, json={
            "session_id": "s-9",
            "guest_cart": [{"product_id": ring.id, "quantity": 1, "price": 100.0}],
        }).json()["cart"]
        assert merged["items"][0]["quantity"] == 3
        assert client.get("/cart", params={"session_id": "s-9"}).json()["cart"]["items"] == []


class TestCheckout:
    def test_guest_checkout_and_lookup(self, client, make_product, mailer):
        ring = make_product(price=150.0)
        chain = make_product(price=80.0)
        response = client.post("/orders", json={
            "items": [{"product_id": ring.id, "quantity": 2}, {"product_id": chain.id, "quantity": 1}],
            "shipping_address": ADDRESS,
            "guest_email": "guest@example.com",
            "payment_method": "bank_transfer",
        })
        assert response.status_code == 201
        body = response.json()
        assert body["email_sent"] is True
        assert body["order"]["total"] == 468.0
        number = body["order"]["order_number"]

        found = client.get(f"/orders/{number}", params={"email": "guest@example.com"})
        assert found.status_code == 200
        assert client.get(f"/orders/{number}", params={"email": "x@example.com"}).status_code == 404
        assert client.get(f"/orders/{number}").status_code == 404

    def test_guest_needs_email(self, client, make_product):
        response = client.post("/orders", json={
            "items": [{"product_id": make_product().id, "quantity": 1}],
            "shipping_address": ADDRESS,
        })
        assert response.status_code == 400

    def test_mail_outage_still_places_order(self, client, make_product, mailer):
        mailer.fail = True
        response = client.post("/orders", json={
            "items": [{"product_id": make_product().id, "quantity": 1}],
            "shipping_address": ADDRESS,
            "guest_email": "guest@example.com",
        })
        assert response.status_code == 201
        assert response.json()["email_sent"] is False

    def test_user_checkout_clears_cart(self, client, make_product, make_user):
        ring = make_product()
        _, headers = make_user()
        client.post("/cart", headers=headers, json={"product_id": ring.id, "quantity": 1})
        response = client.post("/orders", headers=headers, json={
            "items": [{"product_id": ring.id, "quantity": 1}],
            "shipping_address": ADDRESS,
        })
        assert response.status_code == 201
        assert client.get("/cart", headers=headers).json()["cart"]["items"] == []
        assert len(client.get("/orders", headers=headers).json()["orders"]) == 1

    def test_admin_ships_order(self, client, make_product, make_user, mailer):
        _, customer = make_user(email="buyer@example.com")
        _, admin = make_user(role="admin")
        number = client.post("/orders", headers=customer, json={
            "items": [{"product_id": make_product().id, "quantity": 1}],
            "shipping_address": ADDRESS,
        }).json()["order"]["order_number"]

        client.put(f"/admin/orders/{number}/status", headers=admin, json={"status": "processing"})
        shipped = client.put(f"/admin/orders/{number}/status", headers=admin,
                             json={"status": "shipped", "tracking_number": "TRK42"})
        assert shipped.json()["order"]["tracking_number"] == "TRK42"
        assert mailer.sent[-1]["to"] == "buyer@example.com"
        assert "TRK42" in mailer.sent[-1]["html"]

        illegal = client.put(f"/admin/orders/{number}/status", headers=admin, json={"status": "pending"})
        assert illegal.status_code == 400

    def test_customer_cannot_manage_orders(self, client, make_user):
        _, headers = make_user()
        response = client.put("/admin/orders/VG20260101-000001/status", headers=headers, json={"status": "shipped"})
        assert response.status_code == 403


class TestCurrency:
    def test_convert(self, client):
        response = client.post("/currency/convert", json={"amount": 10, "from_currency": "usd", "to_currency": "NGN"})
        assert response.json() == {"original": 10.0, "converted": 15000.0, "from": "USD", "to": "NGN"}

    def test_rates_outage(self, client):
        assert client.get("/currency/rates", params={"base": "XYZ"}).status_code == 503


class TestGiftCards:
    def test_issue_and_check_balance(self, client, mailer):
        response = client.post("/gift-cards", json={
            "amount": 75,
            "purchaser": {"name": "Tobi"},
            "recipient": {"name": "Ada", "email": "ada@example.com"},
        })
        assert response.status_code == 201
        body = response.json()
        assert body["email_sent"] is True
        code = body["gift_card"]["code"]
        assert mailer.sent[0]["to"] == "ada@example.com"

        balance = client.get(f"/gift-cards/{code}").json()
        assert balance["balance"] == 75.0
        assert balance["currency"] == "USD"

    def test_unknown_code(self, client):
        response = client.get("/gift-cards/VGMISSING")
        assert response.status_code == 404
        assert response.json()["error_type"] == "NotFoundError"

    def test_missing_recipient_email(self, client):
        response = client.post("/gift-cards", json={"amount": 75, "recipient": {"name": "Ada"}})
        assert response.status_code == 422


class TestStorefrontInfo:
    def test_size_guides(self, client):
        guides = client.get("/size-guides").json()
        assert guides["rings"]["us"][0] == {"size": "4", "diameter": "14.9mm", "circumference": "46.8mm"}
        assert [n["name"] for n in guides["necklaces"]["lengths"]][:2] == ["Choker", "Princess"]
        assert len(guides["bracelets"]["sizes"]) == 5

    def test_payment_methods_only_active(self, client, db):
        db["paymentmethod"].insert_many([
            {"method": "bank_transfer", "display_name": "Bank Transfer",
             "account_details": {"bank": "GTBank"}, "is_active": True},
            {"method": "crypto", "is_active": False},
        ])
        methods = client.get("/payment-methods").json()["methods"]
        assert [m["method"] for m in methods] == ["bank_transfer"]
        assert methods[0]["account_details"] == {"bank": "GTBank"}
        assert isinstance(methods[0]["id"], str)
