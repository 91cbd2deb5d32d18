"""
Sandbox Gateway
================
Local/dev stand-in for the hosted checkout page. Always succeeds with a
`cs_test_...` id; webhooks are signed with SANDBOX_WEBHOOK_SECRET.
"""

import logging
import uuid

from config.settings import SANDBOX_CHECKOUT_URL, SANDBOX_WEBHOOK_SECRET
from modules.payment.gateways import (
    BaseGateway, PaymentSessionRequest, PaymentSessionResult, register_gateway,
)

logger = logging.getLogger("plateful.gateway.sandbox")


class SandboxGateway(BaseGateway):
    name = "sandbox"
    label = "Sandbox"

    def webhook_secret(self) -> str:
        return SANDBOX_WEBHOOK_SECRET

    def create_session(self, req: PaymentSessionRequest) -> PaymentSessionResult:
        session_id = f"cs_test_{uuid.uuid4().hex}"
        logger.info(f"Sandbox session {session_id} amount_cents={req.amount_cents}")
        return PaymentSessionResult(
            success=True,
            session_id=session_id,
            redirect_url=f"{SANDBOX_CHECKOUT_URL.rstrip('/')}/{session_id}",
        )


register_gateway(SandboxGateway())
