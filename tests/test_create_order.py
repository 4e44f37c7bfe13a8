import json
import re

import httpx
import pytest

from eventfund.server import create_app

from conftest import APP_URL, GATEWAY_URL, make_settings

URL = "/functions/create-cashfree-order"
VALID = {"amount": 501, "contributor": "Asha", "contribution_id": "42"}


async def test_success_forwards_gateway_body_verbatim(client, gateway):
    resp = await client.post(URL, json=VALID)
    assert resp.status_code == 200
    body = resp.json()
    assert body["payment_session_id"] == "session_Xyz123-unchanged"
    assert body["cf_order_id"] == 2149460581
    assert len(gateway.calls) == 1


async def test_gateway_request_contents(client, gateway):
    await client.post(URL, json=VALID)
    req = gateway.calls[0]
    assert str(req.url) == GATEWAY_URL
    sent = json.loads(req.content)
    assert re.fullmatch(r"order_42_\d{13}", sent["order_id"])
    assert sent["order_amount"] == 501
    assert sent["order_currency"] == "INR"
    assert sent["customer_details"] == {
        "customer_id": "user_42",
        "customer_name": "Asha",
        "customer_phone": "9999999999",
    }
    assert sent["order_meta"]["return_url"] == (
        f"{APP_URL}/payment-status?order_id={{order_id}}"
    )


@pytest.mark.parametrize("amount", [0, -1, -0.01, "100", None, True, [5]])
async def test_non_positive_amount_rejected_without_gateway_call(
    client, gateway, amount
):
    resp = await client.post(URL, json={**VALID, "amount": amount})
    assert resp.status_code == 400
    assert "amount" in resp.json()["error"]
    assert gateway.calls == []


@pytest.mark.parametrize("contributor", ["", "   ", None, 12])
async def test_blank_contributor_rejected(client, gateway, contributor):
    resp = await client.post(URL, json={**VALID, "contributor": contributor})
    assert resp.status_code == 400
    assert "contributor" in resp.json()["error"]
    assert gateway.calls == []


@pytest.mark.parametrize("payload", [
    {"amount": 10, "contributor": "A"},
    {"amount": 10, "contributor": "A", "contribution_id": "  "},
    {"amount": 10, "contributor": "A", "contribution_id": 42},
])
async def test_missing_contribution_id_rejected(client, gateway, payload):
    resp = await client.post(URL, json=payload)
    assert resp.status_code == 400
    assert "contribution_id" in resp.json()["error"]
    assert gateway.calls == []


@pytest.mark.parametrize("raw", [b"", b"{not json", b"[1, 2]", b'"text"'])
async def test_malformed_body_rejected(client, gateway, raw):
    resp = await client.post(
        URL, content=raw, headers={"content-type": "application/json"}
    )
    assert resp.status_code == 400
    assert resp.json()["error"]
    assert gateway.calls == []


async def test_validation_order_amount_first(client):
    resp = await client.post(URL, json={"amount": 0, "contributor": ""})
    assert "amount" in resp.json()["error"]


async def test_missing_configuration_is_fatal(gateway, feed):
    http = httpx.AsyncClient(transport=httpx.MockTransport(gateway.handle))
    app = create_app(make_settings(app_url=None), http=http, changes=feed)
    async with httpx.AsyncClient(
        transport=httpx.ASGITransport(app=app), base_url="http://test"
    ) as ac:
        # config is checked before the body is even looked at
        resp = await ac.post(URL, content=b"{not json")
    await http.aclose()
    assert resp.status_code == 500
    assert resp.json() == {"error": "Server configuration error."}
    assert gateway.calls == []


async def test_gateway_error_is_502_with_upstream_message(client, gateway):
    gateway.reply = (400, {"message": "order_amount : invalid value",
                           "code": "order_amount_invalid"})
    resp = await client.post(URL, json=VALID)
    assert resp.status_code == 502
    assert resp.json() == {
        "error": "Payment gateway error: order_amount : invalid value"
    }


async def test_gateway_error_without_message(client, gateway):
    gateway.reply = (503, b"upstream down")
    resp = await client.post(URL, json=VALID)
    assert resp.status_code == 502
    assert resp.json()["error"] == (
        "Payment gateway error: Cashfree API returned status 503"
    )


async def test_gateway_unreachable_is_502_single_attempt(client, gateway):
    gateway.raise_exc = httpx.ConnectError("connection refused")
    resp = await client.post(URL, json=VALID)
    assert resp.status_code == 502
    assert resp.json()["error"].startswith("Payment gateway error")
    assert len(gateway.calls) == 1


async def test_unexpected_fault_becomes_structured_500(
    client, app, monkeypatch
):
    async def boom(order):
        raise RuntimeError("kaput")

    monkeypatch.setattr(app.state.gateway, "create_order", boom)
    resp = await client.post(URL, json=VALID)
    assert resp.status_code == 500
    assert resp.json() == {
        "error": "An unexpected internal server error occurred."
    }


async def test_options_preflight(client):
    resp = await client.options(URL)
    assert resp.status_code == 200
    assert resp.text == "ok"

    resp = await client.options(URL, headers={
        "origin": "https://fund.test",
        "access-control-request-method": "POST",
        "access-control-request-headers": "content-type",
    })
    assert resp.status_code == 200
    assert resp.headers["access-control-allow-origin"] in (
        "*", "https://fund.test"
    )
