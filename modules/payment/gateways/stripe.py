"""
Stripe Gateway
================
Hosted Checkout Sessions over the REST API (form-encoded, basic auth).
"""

import httpx
import logging
from typing import Dict

from config.settings import (
    STRIPE_SECRET_KEY, STRIPE_WEBHOOK_SECRET, STRIPE_API_URL,
    STRIPE_WEBHOOK_TOLERANCE_SECONDS, PAYMENT_CURRENCY, PAYMENT_TIMEOUT_SECONDS,
)
from modules.payment.gateways import (
    BaseGateway, PaymentSessionRequest, PaymentSessionResult, register_gateway,
)

logger = logging.getLogger("plateful.gateway.stripe")


def with_session_placeholder(url: str) -> str:
    """Ask Stripe to append the session id to the success redirect."""
    if "{CHECKOUT_SESSION_ID}" in url:
        return url
    sep = "&" if "?" in url else "?"
    return f"{url}{sep}session_id={{CHECKOUT_SESSION_ID}}"


def build_session_form(req: PaymentSessionRequest, currency: str = PAYMENT_CURRENCY) -> Dict[str, str]:
    """Flatten a session request into Stripe's bracketed form keys."""
    form = {
        "mode": "payment",
        "success_url": with_session_placeholder(req.success_url),
        "cancel_url": req.cancel_url,
        "customer_email": req.customer_email,
        "expires_at": str(int(req.expires_at.timestamp())),
    }
    for i, li in enumerate(req.line_items):
        prefix = f"line_items[{i}]"
        form[f"{prefix}[price_data][currency]"] = currency
        form[f"{prefix}[price_data][product_data][name]"] = li.name
        form[f"{prefix}[price_data][unit_amount]"] = str(int(li.unit_amount_cents))
        form[f"{prefix}[quantity]"] = str(int(li.quantity))
    for key, value in req.metadata.items():
        form[f"metadata[{key}]"] = str(value)
    return form


class StripeGateway(BaseGateway):
    name = "stripe"
    label = "Stripe"
    webhook_tolerance_seconds = STRIPE_WEBHOOK_TOLERANCE_SECONDS

    def webhook_secret(self) -> str:
        return STRIPE_WEBHOOK_SECRET

    def create_session(self, req: PaymentSessionRequest) -> PaymentSessionResult:
        ref = req.metadata.get("pending_cart_id", "")
        try:
            resp = httpx.post(
                f"{STRIPE_API_URL}/checkout/sessions",
                data=build_session_form(req),
                auth=(STRIPE_SECRET_KEY, ""),
                headers={"Idempotency-Key": req.idempotency_key},
                timeout=PAYMENT_TIMEOUT_SECONDS,
            )
            data = resp.json()

            if resp.status_code == 200 and data.get("id") and data.get("url"):
                logger.info(f"Stripe session created [{ref}]: {data['id']}")
                return PaymentSessionResult(success=True, session_id=data["id"], redirect_url=data["url"])

            msg = (data.get("error") or {}).get("message", f"HTTP {resp.status_code}")
            logger.error(f"Stripe create failed [{ref}]: {msg}")
            return PaymentSessionResult(success=False, error_message=msg)

        except httpx.TimeoutException:
            logger.error(f"Stripe create timed out [{ref}]")
            return PaymentSessionResult(success=False, error_message="Payment processor timed out")
        except (httpx.HTTPError, ValueError) as e:
            logger.error(f"Stripe create failed [{ref}]: {e}")
            return PaymentSessionResult(success=False, error_message=f"Payment processor error: {e}")


register_gateway(StripeGateway())
