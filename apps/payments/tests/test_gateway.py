import json
from unittest.mock import MagicMock

import pytest
import requests

from apps.payments.gateway import (
    FAILED,
    SUCCEEDED,
    PaymentGatewayClient,
    PaymentGatewayError,
    SimulatedPaymentGateway,
    get_payment_gateway,
)


def make_response(status_code, payload=None):
    response = requests.Response()
    response.status_code = status_code
    response._content = json.dumps(payload).encode() if payload is not None else b""
    return response


@pytest.fixture
def session():
    return MagicMock(spec=requests.Session)


@pytest.fixture
def client(session):
    return PaymentGatewayClient("https://pay.example.com/v1/", "sk_test", timeout=5, session=session)


def test_refund_posts_amount_with_idempotency_key(client, session):
    session.request.return_value = make_response(
        200, {"id": "re_1", "status": "succeeded", "amount": 15000, "created": 1700000000}
    )

    refund = client.refund("pay_1", 15000, idempotency_key="booking-7-refund-0")

    assert refund.id == "re_1"
    assert refund.succeeded
    assert refund.amount == 15000
    method, url = session.request.call_args.args
    kwargs = session.request.call_args.kwargs
    assert (method, url) == ("POST", "https://pay.example.com/v1/refunds")
    assert kwargs["json"] == {"payment": "pay_1", "amount": 15000}
    assert kwargs["headers"]["Idempotency-Key"] == "booking-7-refund-0"
    assert kwargs["headers"]["Authorization"] == "Bearer sk_test"
    assert kwargs["timeout"] == 5


def test_api_error_carries_gateway_code(client, session):
    session.request.return_value = make_response(
        402, {"error": {"code": "charge_already_refunded", "message": "Charge already refunded"}}
    )

    with pytest.raises(PaymentGatewayError) as excinfo:
        client.refund("pay_1", 100)

    assert excinfo.value.gateway_code == "charge_already_refunded"
    assert excinfo.value.message == "Charge already refunded"


def test_http_error_without_body(client, session):
    session.request.return_value = make_response(503)

    with pytest.raises(PaymentGatewayError) as excinfo:
        client.retrieve_refund("re_1")

    assert excinfo.value.gateway_code == "http_503"


def test_network_failure_is_wrapped(client, session):
    session.request.side_effect = requests.exceptions.ConnectTimeout("timed out")

    with pytest.raises(PaymentGatewayError) as excinfo:
        client.refund("pay_1", 100)

    assert excinfo.value.gateway_code == "network_error"


def test_malformed_refund_response(client, session):
    session.request.return_value = make_response(200, {"status": "succeeded"})

    with pytest.raises(PaymentGatewayError) as excinfo:
        client.refund("pay_1", 100)

    assert excinfo.value.gateway_code == "invalid_response"


def test_retrieve_payment_exposes_latest_refund(client, session):
    session.request.return_value = make_response(
        200,
        {
            "id": "pay_1",
            "status": "succeeded",
            "refunds": [
                {"id": "re_1", "status": "failed", "amount": 100, "created": 10},
                {"id": "re_2", "status": "succeeded", "amount": 100, "created": 20},
            ],
        },
    )

    payment = client.retrieve_payment("pay_1")

    assert session.request.call_args.args == ("GET", "https://pay.example.com/v1/payments/pay_1")
    assert [refund.status for refund in payment.refunds] == [FAILED, SUCCEEDED]
    assert payment.latest_refund().id == "re_2"


def test_payment_without_refunds_has_no_latest_refund(client, session):
    session.request.return_value = make_response(200, {"id": "pay_1", "status": "succeeded"})

    assert client.retrieve_payment("pay_1").latest_refund() is None


def test_simulated_gateway_is_used_in_debug_without_key(settings):
    settings.DEBUG = True
    settings.PAYMENT_GATEWAY_API_KEY = ""

    gateway = get_payment_gateway()

    assert isinstance(gateway, SimulatedPaymentGateway)
    assert gateway.refund("pay_1", 500).succeeded


def test_missing_key_outside_debug_is_an_error(settings):
    settings.DEBUG = False
    settings.PAYMENT_GATEWAY_API_KEY = ""

    with pytest.raises(PaymentGatewayError) as excinfo:
        get_payment_gateway()

    assert excinfo.value.gateway_code == "not_configured"


def test_configured_client(settings):
    settings.PAYMENT_GATEWAY_API_KEY = "sk_live"
    settings.PAYMENT_GATEWAY_BASE_URL = "https://pay.example.com/v2"
    settings.PAYMENT_GATEWAY_TIMEOUT = 12

    gateway = get_payment_gateway()

    assert isinstance(gateway, PaymentGatewayClient)
    assert gateway.base_url == "https://pay.example.com/v2"
    assert gateway.timeout == 12.0
