"""
Payment Gateway Abstraction
=============================
Each gateway implements create_session() and parse_webhook().
Registry pattern for gateway lookup by name.

Gateways never raise for processor-side problems; they return a result
with success=False and an error_message, like a declined request.
"""

import json
import logging
import time
from typing import Dict, Any, Optional, List
from dataclasses import dataclass, field
from datetime import datetime

from common.security import hmac_sha256_hex, signatures_match

logger = logging.getLogger("plateful.gateway")


@dataclass
class SessionLineItem:
    name: str
    unit_amount_cents: int
    quantity: int = 1


@dataclass
class PaymentSessionRequest:
    """Input for creating a hosted checkout session."""
    line_items: List[SessionLineItem]
    customer_email: str
    success_url: str
    cancel_url: str
    expires_at: datetime
    idempotency_key: str
    metadata: Dict[str, str] = field(default_factory=dict)

    @property
    def amount_cents(self) -> int:
        return sum(li.unit_amount_cents * li.quantity for li in self.line_items)


@dataclass
class PaymentSessionResult:
    """Result of create_session()."""
    success: bool
    session_id: Optional[str] = None
    redirect_url: Optional[str] = None
    error_message: Optional[str] = None


@dataclass
class WebhookEvent:
    type: str
    session_id: str
    data: Dict[str, Any] = field(default_factory=dict)


class BaseGateway:
    """Abstract gateway interface."""
    name: str = ""
    label: str = ""
    webhook_tolerance_seconds: int = 300

    def create_session(self, req: PaymentSessionRequest) -> PaymentSessionResult:
        raise NotImplementedError

    def webhook_secret(self) -> str:
        raise NotImplementedError

    # ------------------------------------------
    # Webhooks (signed "t=<unix>,v1=<hex hmac of '<t>.<payload>'>")
    # ------------------------------------------

    def verify_signature(self, payload: bytes, header: Optional[str], now: Optional[int] = None) -> bool:
        secret = self.webhook_secret()
        if not secret or not header:
            return False

        parts: Dict[str, List[str]] = {}
        for item in header.split(","):
            key, _, value = item.strip().partition("=")
            if key and value:
                parts.setdefault(key, []).append(value)

        try:
            timestamp = int(parts.get("t", [""])[0])
        except ValueError:
            return False

        now = int(time.time()) if now is None else now
        if abs(now - timestamp) > self.webhook_tolerance_seconds:
            logger.warning(f"[{self.name}] webhook timestamp outside tolerance")
            return False

        expected = hmac_sha256_hex(secret, f"{timestamp}.{payload.decode('utf-8', errors='replace')}")
        return any(signatures_match(expected, sig) for sig in parts.get("v1", []))

    def sign(self, payload: bytes, timestamp: Optional[int] = None) -> str:
        """Build a signature header for payload (sandbox tooling and tests)."""
        timestamp = int(time.time()) if timestamp is None else timestamp
        sig = hmac_sha256_hex(self.webhook_secret(), f"{timestamp}.{payload.decode('utf-8', errors='replace')}")
        return f"t={timestamp},v1={sig}"

    def parse_webhook(self, payload: bytes, signature_header: Optional[str]) -> Optional[WebhookEvent]:
        """Verified event, or None when the signature or body is not acceptable."""
        if not self.verify_signature(payload, signature_header):
            return None
        try:
            body = json.loads(payload)
            obj = body["data"]["object"]
            return WebhookEvent(type=str(body["type"]), session_id=str(obj["id"]), data=obj)
        except (ValueError, KeyError, TypeError) as e:
            logger.warning(f"[{self.name}] malformed webhook body: {e}")
            return None


# ── Registry ──

_GATEWAYS: Dict[str, BaseGateway] = {}


def register_gateway(gw: BaseGateway):
    _GATEWAYS[gw.name] = gw


def get_gateway(name: str) -> Optional[BaseGateway]:
    return _GATEWAYS.get(name)


def get_all_gateway_names() -> List[str]:
    return list(_GATEWAYS.keys())
