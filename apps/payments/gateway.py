"""
Payment gateway client.

HTTP client for the card processor that captured the booking payment. The
booking core needs three calls from it: issue a refund, look a refund up,
and look a payment up together with the refunds issued against it.

Every transport, HTTP and API failure is raised as PaymentGatewayError so
callers only have to handle one exception type.
"""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass, field
from typing import Any, Optional

import requests
from django.conf import settings

from shared.domain.exceptions import ExternalDependencyError

logger = logging.getLogger(__name__)

SUCCEEDED = "succeeded"
PENDING = "pending"
FAILED = "failed"


class PaymentGatewayError(ExternalDependencyError):
    """The gateway rejected the request or could not be reached."""

    code = "payment_gateway_error"
    default_message = "Payment provider error."

    def __init__(self, message: str, gateway_code: Optional[str] = None):
        self.gateway_code = gateway_code
        super().__init__(message, gateway_code=gateway_code)


@dataclass
class RefundResult:
    id: str
    status: str
    amount: int
    failure_reason: Optional[str] = None
    created: Optional[int] = None

    @property
    def succeeded(self) -> bool:
        return self.status == SUCCEEDED

    @classmethod
    def from_payload(cls, payload: dict[str, Any]) -> "RefundResult":
        return cls(
            id=str(payload["id"]),
            status=str(payload.get("status", PENDING)),
            amount=int(payload.get("amount", 0)),
            failure_reason=payload.get("failure_reason"),
            created=payload.get("created"),
        )


@dataclass
class PaymentInfo:
    reference: str
    status: str
    refunds: list[RefundResult] = field(default_factory=list)

    def latest_refund(self) -> Optional[RefundResult]:
        if not self.refunds:
            return None
        return max(self.refunds, key=lambda refund: refund.created or 0)


class PaymentGatewayClient:
    """requests-based client for the payment provider REST API."""

    def __init__(
        self,
        base_url: str,
        api_key: str,
        *,
        timeout: float = 30,
        session: Optional[requests.Session] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.api_key = api_key
        self.timeout = timeout
        self.session = session or requests.Session()

    def _request(self, method: str, path: str, *, json: Optional[dict] = None, headers: Optional[dict] = None) -> dict:
        request_headers = {
            "Authorization": f"Bearer {self.api_key}",
            "Content-Type": "application/json",
            "Accept": "application/json",
        }
        request_headers.update(headers or {})
        url = f"{self.base_url}/{path.lstrip('/')}"

        try:
            response = self.session.request(
                method,
                url,
                json=json,
                headers=request_headers,
                timeout=self.timeout,
            )
        except requests.exceptions.RequestException as exc:
            logger.error(f"Payment gateway request {method} {path} failed: {exc}")
            raise PaymentGatewayError(f"Gateway unreachable: {exc}", "network_error") from exc

        try:
            payload = response.json() if response.content else {}
        except ValueError:
            payload = {}

        if response.status_code >= 400:
            error = payload.get("error") if isinstance(payload, dict) else None
            error = error if isinstance(error, dict) else {}
            message = error.get("message") or f"HTTP {response.status_code}"
            code = error.get("code") or f"http_{response.status_code}"
            logger.warning(f"Payment gateway returned {response.status_code} for {method} {path}: {message}")
            raise PaymentGatewayError(message, code)

        if not isinstance(payload, dict):
            raise PaymentGatewayError("Unexpected gateway response", "invalid_response")
        return payload

    def refund(self, payment_reference: str, amount: int, *, idempotency_key: Optional[str] = None) -> RefundResult:
        """Refund `amount` minor units of the payment."""

        logger.info(f"Requesting refund of {amount} for payment {payment_reference}")
        payload = self._request(
            "POST",
            "refunds",
            json={"payment": payment_reference, "amount": amount},
            headers={"Idempotency-Key": idempotency_key or uuid.uuid4().hex},
        )
        try:
            return RefundResult.from_payload(payload)
        except (KeyError, TypeError, ValueError) as exc:
            raise PaymentGatewayError("Malformed refund response", "invalid_response") from exc

    def retrieve_refund(self, refund_id: str) -> RefundResult:
        payload = self._request("GET", f"refunds/{refund_id}")
        try:
            return RefundResult.from_payload(payload)
        except (KeyError, TypeError, ValueError) as exc:
            raise PaymentGatewayError("Malformed refund response", "invalid_response") from exc

    def retrieve_payment(self, payment_reference: str) -> PaymentInfo:
        payload = self._request("GET", f"payments/{payment_reference}")
        try:
            refunds = [RefundResult.from_payload(item) for item in payload.get("refunds", [])]
            return PaymentInfo(
                reference=str(payload.get("id", payment_reference)),
                status=str(payload.get("status", "")),
                refunds=refunds,
            )
        except (KeyError, TypeError, ValueError) as exc:
            raise PaymentGatewayError("Malformed payment response", "invalid_response") from exc


class SimulatedPaymentGateway:
    """Answers every refund with success; used in DEBUG without an API key."""

    def refund(self, payment_reference: str, amount: int, *, idempotency_key: Optional[str] = None) -> RefundResult:
        logger.warning(f"[DEBUG] Simulating refund of {amount} for payment {payment_reference}")
        return RefundResult(id=f"re_sim_{uuid.uuid4().hex[:16]}", status=SUCCEEDED, amount=amount)

    def retrieve_refund(self, refund_id: str) -> RefundResult:
        return RefundResult(id=refund_id, status=SUCCEEDED, amount=0)

    def retrieve_payment(self, payment_reference: str) -> PaymentInfo:
        return PaymentInfo(reference=payment_reference, status=SUCCEEDED)


def get_payment_gateway():
    """Build the gateway configured in settings."""

    api_key = getattr(settings, "PAYMENT_GATEWAY_API_KEY", "")
    if not api_key:
        if settings.DEBUG:
            return SimulatedPaymentGateway()
        raise PaymentGatewayError("Payment gateway is not configured", "not_configured")

    return PaymentGatewayClient(
        base_url=getattr(settings, "PAYMENT_GATEWAY_BASE_URL", "https://api.payments.example.com/v1"),
        api_key=api_key,
        timeout=float(getattr(settings, "PAYMENT_GATEWAY_TIMEOUT", 30)),
    )
