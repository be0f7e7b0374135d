"""
API tests for order tracking, order status updates and payment callbacks.
"""
import pytest

import shop_bot.config as config_mod
from shop_bot.flow.draft import LineItem, OrderDraft
from shop_bot.models import PaymentTransaction
from shop_bot.services.order_materializer import OrderMaterializer


def make_order(session_factory, session_id="s-1"):
    draft = OrderDraft(items=[LineItem(product_id="jeu-awale", name="Awalé Deluxe", price=15000, quantity=1)])
    draft.metadata.extra.update({"productId": "jeu-awale", "storeId": "store-1"})
    draft.first_name = "Awa"
    draft.last_name = "Diop"
    draft.phone = "+221771234567"
    draft.city = "Dakar"
    draft.address = "Sacré-Coeur 3, villa 12"
    draft.payment_method = "CASH_ON_DELIVERY"
    draft.set_delivery_cost(1000)

    db_sess = session_factory()
    try:
        return OrderMaterializer(db_sess).materialize(session_id, draft)
    finally:
        db_sess.close()


@pytest.fixture
def order_id(session_factory):
    return make_order(session_factory)


# =============================================================================
# Order tracking
# =============================================================================


def test_track_order(client, order_id):
    resp = client.get(f"/orders/{order_id}")
    assert resp.status_code == 200

    data = resp.json()
    assert data["id"] == order_id
    assert data["status"] == "pending"
    assert data["total_amount"] == 16000
    assert data["items"][0]["name"] == "Awalé Deluxe"
    # Contact details are not exposed
    assert "phone" not in data
    assert "address" not in data


def test_track_unknown_order(client):
    assert client.get("/orders/ORD-0000-0000").status_code == 404


# =============================================================================
# Status updates (admin)
# =============================================================================


class TestStatusUpdate:
    def test_requires_auth(self, client, order_id):
        resp = client.post(f"/orders/{order_id}/status", json={"status": "confirmed"})
        assert resp.status_code == 401

    def test_wrong_password(self, client, order_id):
        resp = client.post(
            f"/orders/{order_id}/status", json={"status": "confirmed"}, auth=("testadmin", "wrong"),
        )
        assert resp.status_code == 401

    def test_not_configured(self, client, order_id, admin_auth, monkeypatch):
        monkeypatch.setattr(config_mod, "ADMIN_PASSWORD", "")
        resp = client.post(f"/orders/{order_id}/status", json={"status": "confirmed"}, auth=admin_auth)
        assert resp.status_code == 503

    def test_confirm(self, client, order_id, admin_auth):
        resp = client.post(f"/orders/{order_id}/status", json={"status": "confirmed"}, auth=admin_auth)
        assert resp.status_code == 200
        assert resp.json()["status"] == "confirmed"

    def test_invalid_transition(self, client, order_id, admin_auth):
        resp = client.post(f"/orders/{order_id}/status", json={"status": "delivered"}, auth=admin_auth)
        assert resp.status_code == 409

    def test_unknown_status_value(self, client, order_id, admin_auth):
        resp = client.post(f"/orders/{order_id}/status", json={"status": "lost"}, auth=admin_auth)
        assert resp.status_code == 422

    def test_unknown_order(self, client, admin_auth):
        resp = client.post("/orders/ORD-0000-0000/status", json={"status": "confirmed"}, auth=admin_auth)
        assert resp.status_code == 404


# =============================================================================
# Payment callback
# =============================================================================


class TestPaymentCallback:
    @pytest.fixture
    def transaction(self, session_factory):
        db_sess = session_factory()
        db_sess.add(PaymentTransaction(
            order_id="s-2", provider="WAVE", amount=14500, status="pending", reference="ref-1", meta={},
        ))
        db_sess.commit()
        db_sess.close()
        return "ref-1"

    def test_records_status(self, client, admin_auth, session_factory, transaction):
        resp = client.post(
            "/payments/callback",
            json={"session_id": "s-2", "reference": transaction, "status": "completed", "payload": {"fee": 145}},
            auth=admin_auth,
        )
        assert resp.status_code == 200
        assert resp.json() == {"status": "completed", "order_id": None}

        db_sess = session_factory()
        row = db_sess.query(PaymentTransaction).filter_by(reference="ref-1").one()
        assert row.status == "completed"
        assert row.meta["callback"] == {"fee": 145}
        db_sess.close()

    def test_returns_order_id_when_session_has_an_order(self, client, admin_auth, session_factory, transaction):
        order_id = make_order(session_factory, session_id="s-2")
        resp = client.post(
            "/payments/callback",
            json={"session_id": "s-2", "reference": transaction, "status": "completed"},
            auth=admin_auth,
        )
        assert resp.json()["order_id"] == order_id

    def test_unknown_reference(self, client, admin_auth):
        resp = client.post(
            "/payments/callback",
            json={"session_id": "s-2", "reference": "nope", "status": "completed"},
            auth=admin_auth,
        )
        assert resp.status_code == 404

    def test_requires_auth(self, client, transaction):
        resp = client.post(
            "/payments/callback", json={"session_id": "s-2", "reference": transaction, "status": "completed"},
        )
        assert resp.status_code == 401
