import asyncio
import base64
import json
import time

import httpx
import pytest

from storefront import config, crud, lifecycle, models, payments
from storefront.clients import card_client
from storefront.errors import ProviderError


@pytest.fixture
def order(db, customer, service):
    return lifecycle.create_order(db, customer, service.id, 29900)


@pytest.fixture
def fake_intents(monkeypatch):
    created = []

    async def fake_create_payment_intent(amount, currency="usd", metadata=None, transport=None):
        intent_id = f"pi_fake_{len(created) + 1}"
        created.append({"id": intent_id, "amount": amount, "currency": currency, "metadata": metadata})
        return {"id": intent_id, "client_secret": f"{intent_id}_secret_abc"}

    monkeypatch.setattr(card_client, "create_payment_intent", fake_create_payment_intent)
    return created


# --- Webhooks ---

def test_succeeded_webhook_confirms_payment_but_not_status(
    client, db, customer, order, notifications_for, intent_event, post_signed_event
):
    response = post_signed_event(intent_event("payment_intent.succeeded", "pi_100", order.id))

    assert response.status_code == 200
    assert response.json() == {"received": True, "processed": True}
    db.expire_all()
    stored = crud.get_order(db, order.id)
    assert stored.payment_state == "confirmed"
    assert stored.status == "pending"
    notes = notifications_for(customer.id)
    assert [n.title for n in notes] == ["Payment Confirmed"]


def test_replayed_webhook_is_applied_once(
    client, db, customer, order, notifications_for, intent_event, post_signed_event
):
    event = intent_event("payment_intent.succeeded", "pi_101", order.id)

    assert post_signed_event(event).status_code == 200
    assert post_signed_event(event).status_code == 200

    assert len(notifications_for(customer.id)) == 1
    assert db.query(models.Payment).filter(models.Payment.provider_order_id == "pi_101").count() == 1


def test_failed_webhook_marks_payment_failed(
    client, db, customer, order, notifications_for, intent_event, post_signed_event
):
    response = post_signed_event(intent_event("payment_intent.payment_failed", "pi_102", order.id))

    assert response.json()["processed"] is True
    db.expire_all()
    assert crud.get_order(db, order.id).payment_state == "failed"
    assert crud.get_payment_by_provider_ref(db, "stripe", "pi_102").status == "failed"
    assert [n.title for n in notifications_for(customer.id)] == ["Payment Failed"]


def test_webhook_for_unknown_order_is_acknowledged(client, db, order, intent_event, post_signed_event):
    response = post_signed_event(intent_event("payment_intent.succeeded", "pi_103", order_id=424242))

    assert response.status_code == 200
    assert response.json() == {"received": True, "processed": False}
    assert db.query(models.Payment).count() == 0
    db.expire_all()
    assert crud.get_order(db, order.id).payment_state == "unverified"


def test_unhandled_event_type_is_acknowledged(client, order, intent_event, post_signed_event):
    response = post_signed_event(intent_event("charge.refunded", "pi_104", order.id))

    assert response.status_code == 200
    assert response.json()["processed"] is False


def test_webhook_rejects_bad_signatures(client, db, order, intent_event, post_signed_event):
    event = intent_event("payment_intent.succeeded", "pi_105", order.id)

    wrong_secret = post_signed_event(event, secret="whsec_someone_else")
    stale = post_signed_event(event, timestamp=int(time.time()) - 3600)
    unsigned = client.post("/webhooks/stripe", content=json.dumps(event).encode())

    assert wrong_secret.status_code == 400
    assert stale.status_code == 400
    assert unsigned.status_code == 400
    db.expire_all()
    assert crud.get_order(db, order.id).payment_state == "unverified"


def test_webhook_for_unknown_provider_is_404(client, order, intent_event):
    response = client.post("/webhooks/paypal", json=intent_event("payment_intent.succeeded", "pi_106", order.id))

    assert response.status_code == 404


# --- Card payments ---

def test_create_intent_creates_order_and_pending_payment(
    client, db, admin, customer, service, fake_intents, auth_headers, notifications_for
):
    response = client.post(
        "/payments/create-intent",
        json={"amount": 29900, "items": [{"id": service.id, "name": service.name}]},
        headers=auth_headers(customer),
    )

    assert response.status_code == 200
    body = response.json()
    assert body["clientSecret"] == "pi_fake_1_secret_abc"
    order_id = body["orderId"]

    assert fake_intents[0]["amount"] == 29900
    assert fake_intents[0]["metadata"]["orderId"] == str(order_id)
    assert json.loads(fake_intents[0]["metadata"]["items"]) == [{"id": service.id, "name": service.name}]

    db.expire_all()
    order = crud.get_order(db, order_id)
    assert order.status == "pending"
    assert order.user_id == customer.id
    assert [n.title for n in notifications_for(admin.id)] == ["New Order Received"]

    payment = crud.get_payment_by_correlation(db, str(order_id))
    assert (payment.status, payment.provider_order_id, payment.order_id) == ("pending", "pi_fake_1", order_id)


def test_payment_status_polling_follows_webhook(
    client, customer, service, fake_intents, auth_headers, intent_event, post_signed_event
):
    order_id = client.post(
        "/payments/create-intent",
        json={"amount": 29900, "items": [{"id": service.id}]},
        headers=auth_headers(customer),
    ).json()["orderId"]

    before = client.get(f"/payments/{order_id}/status")
    assert before.status_code == 200
    assert before.json()["status"] == "pending"
    assert before.json()["orderId"] == str(order_id)

    post_signed_event(intent_event("payment_intent.succeeded", "pi_fake_1", order_id))

    after = client.get(f"/payments/{order_id}/status").json()
    assert after["status"] == "confirmed"
    assert after["updatedAt"]


def test_payment_status_unknown_id(client):
    response = client.get("/payments/does-not-exist/status")

    assert response.status_code == 404
    assert response.json() == {"detail": "Payment not found"}


def test_create_intent_provider_failure(client, db, customer, service, monkeypatch, auth_headers):
    async def unreachable(amount, currency="usd", metadata=None, transport=None):
        raise httpx.ConnectError("connection refused")

    monkeypatch.setattr(card_client, "create_payment_intent", unreachable)

    response = client.post(
        "/payments/create-intent",
        json={"amount": 29900, "items": [{"id": service.id}]},
        headers=auth_headers(customer),
    )

    assert response.status_code == 502
    assert db.query(models.Payment).count() == 0


def test_create_intent_validation(client, customer, service, fake_intents, auth_headers):
    headers = auth_headers(customer)

    empty_cart = client.post("/payments/create-intent", json={"amount": 100, "items": []}, headers=headers)
    zero_amount = client.post("/payments/create-intent", json={"amount": 0, "items": [{"id": service.id}]}, headers=headers)
    unknown_service = client.post("/payments/create-intent", json={"amount": 100, "items": [{"id": 999}]}, headers=headers)

    assert empty_cart.status_code == 400
    assert zero_amount.status_code == 400
    assert unknown_service.status_code == 400
    assert fake_intents == []


def test_publishable_key_endpoint(client, monkeypatch):
    assert client.get("/config/stripe").json() == {"publishableKey": "pk_test_storefront"}

    monkeypatch.setattr(config, "STRIPE_PUBLISHABLE_KEY", "")
    assert client.get("/config/stripe").status_code == 500


# --- Crypto payments ---

def test_crypto_claim_endpoint(client, db, customer, auth_headers):
    response = client.post(
        "/payments/verify",
        json={"transactionHash": "0xfeedbeef", "method": "usdt", "amount": "150.00"},
        headers=auth_headers(customer),
    )

    assert response.status_code == 200
    body = response.json()
    assert body["status"] == "pending"
    assert body["orderId"].startswith("CRYPTO-")

    polled = client.get(f"/payments/{body['orderId']}/status").json()
    assert polled["status"] == "pending"

    claim = crud.get_payment_by_correlation(db, body["orderId"])
    assert claim.order_id is None
    assert claim.amount == 15000
    assert claim.extra["cryptoMethod"] == "USDT"


def test_crypto_claim_rejections(client, customer, auth_headers):
    headers = auth_headers(customer)
    claim = {"transactionHash": "0xcafe", "method": "BTC", "amount": 0.002}

    assert client.post("/payments/verify", json=claim, headers=headers).status_code == 200
    duplicate = client.post("/payments/verify", json=claim, headers=headers)
    assert duplicate.status_code == 400
    assert duplicate.json()["detail"] == "Transaction hash already submitted"

    unsupported = client.post("/payments/verify", json={**claim, "transactionHash": "0x1", "method": "DOGE"}, headers=headers)
    assert unsupported.status_code == 400

    zero = client.post("/payments/verify", json={**claim, "transactionHash": "0x2", "amount": 0}, headers=headers)
    assert zero.status_code == 400

    assert client.post("/payments/verify", json={**claim, "transactionHash": "0x3"}).status_code == 401


def test_crypto_methods_listing(client):
    methods = {m["symbol"]: m for m in client.get("/payments/crypto/methods").json()}

    assert set(methods) == {"BTC", "ETH", "USDT"}
    assert methods["BTC"]["payment_link"] == f"bitcoin:{config.BTC_ADDRESS}"
    assert methods["USDT"]["network"] == "ERC20"
    assert methods["ETH"]["min_confirmations"] == 12


def test_payment_link_amounts():
    btc = payments.CRYPTO_METHODS["BTC"]
    eth = payments.CRYPTO_METHODS["ETH"]

    assert payments.payment_link(btc, amount="0.5") == f"bitcoin:{btc.address}?amount=0.5"
    assert payments.payment_link(eth, amount="1.0") == f"ethereum:{eth.address}"


# --- Signature verification ---

class TestVerifySignature:
    payload = b'{"type": "payment_intent.succeeded"}'
    secret = "whsec_unit"
    now = 1_700_000_000

    def header(self, timestamp=None, secret=None):
        timestamp = self.now if timestamp is None else timestamp
        signature = payments.compute_signature(self.payload, secret or self.secret, timestamp)
        return f"t={timestamp},v1={signature}"

    def test_valid_signature(self):
        payments.verify_signature(self.payload, self.header(), self.secret, now=self.now)

    def test_any_matching_v1_is_accepted(self):
        header = f"t={self.now},v1=deadbeef," + self.header().split(",")[1]
        payments.verify_signature(self.payload, header, self.secret, now=self.now)

    def test_tampered_payload(self):
        with pytest.raises(ProviderError, match="does not match"):
            payments.verify_signature(self.payload + b" ", self.header(), self.secret, now=self.now)

    def test_outside_tolerance(self):
        with pytest.raises(ProviderError, match="tolerance"):
            payments.verify_signature(self.payload, self.header(self.now - 301), self.secret, now=self.now)

    @pytest.mark.parametrize("header", [None, "", "v1=abc", "t=notanumber,v1=abc", f"t={now}"])
    def test_malformed_headers(self, header):
        with pytest.raises(ProviderError) as exc:
            payments.verify_signature(self.payload, header, self.secret, now=self.now)
        assert exc.value.status_code == 400

    def test_missing_secret_is_a_server_error(self):
        with pytest.raises(ProviderError) as exc:
            payments.verify_signature(self.payload, self.header(), "", now=self.now)
        assert exc.value.status_code == 500


def test_parse_payment_intent_event(intent_event):
    parsed = payments.parse_payment_intent_event(intent_event("payment_intent.succeeded", "pi_9", 12, amount=500))

    assert parsed.provider_order_id == "pi_9"
    assert parsed.outcome is payments.PaymentOutcome.SUCCEEDED
    assert parsed.order_ref == "12"
    assert parsed.amount == 500
    assert payments.parse_payment_intent_event({"type": "customer.created", "data": {}}) is None
    with pytest.raises(ProviderError):
        payments.parse_payment_intent_event({"type": "payment_intent.succeeded", "data": {"object": {}}})


# --- Card provider client ---

def test_card_client_posts_form_with_basic_auth():
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["url"] = str(request.url)
        seen["body"] = request.content.decode()
        seen["auth"] = request.headers["authorization"]
        return httpx.Response(200, json={"id": "pi_123", "client_secret": "pi_123_secret"})

    intent = asyncio.run(card_client.create_payment_intent(
        500, metadata={"orderId": "7"}, transport=httpx.MockTransport(handler)
    ))

    assert intent["id"] == "pi_123"
    assert seen["url"] == f"{config.STRIPE_API_URL}/payment_intents"
    assert "amount=500" in seen["body"]
    assert "currency=usd" in seen["body"]
    assert "metadata%5BorderId%5D=7" in seen["body"]
    expected = base64.b64encode(f"{config.STRIPE_SECRET_KEY}:".encode()).decode()
    assert seen["auth"] == f"Basic {expected}"


def test_card_client_raises_on_provider_rejection():
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(402, json={"error": {"message": "card_declined"}})

    with pytest.raises(httpx.HTTPStatusError):
        asyncio.run(card_client.create_payment_intent(500, transport=httpx.MockTransport(handler)))


def test_card_client_requires_secret_key(monkeypatch):
    monkeypatch.setattr(config, "STRIPE_SECRET_KEY", "")

    with pytest.raises(ProviderError) as exc:
        asyncio.run(card_client.create_payment_intent(500))
    assert exc.value.status_code == 500
