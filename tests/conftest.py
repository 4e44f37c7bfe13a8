"""
Shared fixtures: an app over in-memory SQLite, a stubbed payment gateway
behind httpx.MockTransport and a change feed that records instead of
publishing.
"""

import base64
import hashlib
import hmac
import json

import httpx
import pytest
from httpx import ASGITransport, AsyncClient

from eventfund.config import Settings
from eventfund.infra.changefeed import ChangeFeed
from eventfund.model.contributions import ContributionStore
from eventfund.model.orm import Base
from eventfund.server import create_app

SECRET = "cf-test-secret"
GATEWAY_URL = "https://gateway.test/pg/orders"
APP_URL = "https://fund.test"
ADMIN = "admin@fund.test"


def make_settings(**overrides) -> Settings:
    kw = dict(
        cashfree_app_id="cf-app-id",
        cashfree_secret_key=SECRET,
        cashfree_api_url=GATEWAY_URL,
        app_url=APP_URL,
        database_url="sqlite+aiosqlite:///:memory:",
        admin_identities=f"{ADMIN}:admin,viewer@fund.test:viewer",
        log_level="DEBUG",
    )
    kw.update(overrides)
    return Settings(**kw)


def sign(body: bytes, ts: str = "1700000000000", secret: str = SECRET) -> dict:
    mac = hmac.new(secret.encode(), ts.encode() + body, hashlib.sha256)
    return {
        "x-webhook-timestamp": ts,
        "x-webhook-signature": base64.b64encode(mac.digest()).decode(),
        "content-type": "application/json",
    }


def webhook_body(order_id="order_42_1700000000000", status="SUCCESS") -> bytes:
    return json.dumps({
        "type": "PAYMENT_SUCCESS_WEBHOOK",
        "data": {
            "order": {"order_id": order_id, "order_amount": 500},
            "payment": {"payment_status": status, "cf_payment_id": 981},
        },
    }).encode()


class RecordingFeed(ChangeFeed):
    def __init__(self):
        super().__init__(None)
        self.events = []

    async def publish(self, table, kind, record):
        self.events.append((table, kind, record))
        return 1


class GatewayStub:
    """Answers order-creation calls with whatever ``reply`` holds."""

    def __init__(self):
        self.calls = []
        self.reply = (200, {
            "cf_order_id": 2149460581,
            "order_status": "ACTIVE",
            "payment_session_id": "session_Xyz123-unchanged",
        })
        self.raise_exc = None

    def handle(self, request: httpx.Request) -> httpx.Response:
        self.calls.append(request)
        if self.raise_exc is not None:
            raise self.raise_exc
        status, body = self.reply
        if isinstance(body, (bytes, str)):
            return httpx.Response(status, content=body)
        if status == 200 and "order_id" not in body:
            body = {**body, "order_id": json.loads(request.content)["order_id"]}
        return httpx.Response(status, json=body)


@pytest.fixture
def gateway():
    return GatewayStub()


@pytest.fixture
def feed():
    return RecordingFeed()


@pytest.fixture
def settings():
    return make_settings()


@pytest.fixture
async def app(settings, gateway, feed):
    http = httpx.AsyncClient(transport=httpx.MockTransport(gateway.handle))
    application = create_app(settings, http=http, changes=feed)
    async with application.state.engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield application
    await http.aclose()
    await application.state.engine.dispose()


@pytest.fixture
async def client(app):
    async with AsyncClient(
        transport=ASGITransport(app=app), base_url="http://test"
    ) as ac:
        yield ac


@pytest.fixture
async def ledger(app, feed):
    async with app.state.SessionAsync() as db:
        yield ContributionStore(db=db, gated=app.state.gated, feed=feed)
