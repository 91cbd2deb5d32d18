"""
Payment Service
=================
Gateway selection and processor webhooks.
Active gateway is selected via the PAYMENT_GATEWAY setting.
"""

import logging
from typing import Optional

from sqlalchemy.orm import Session

from common.exceptions import InfrastructureError, ValidationError
from config.settings import PAYMENT_GATEWAY
from modules.checkout.service import checkout_service

# Import gateway modules to trigger register_gateway() calls
from modules.payment.gateways import BaseGateway, get_gateway, get_all_gateway_names
import modules.payment.gateways.stripe    # noqa: F401
import modules.payment.gateways.sandbox   # noqa: F401

logger = logging.getLogger("plateful.payment")

EVENT_COMPLETED = "checkout.session.completed"
EVENT_EXPIRED = "checkout.session.expired"


class PaymentService:

    # ==========================================
    # Gateway Selection
    # ==========================================

    def get_active_gateway(self, name: Optional[str] = None) -> BaseGateway:
        name = name or PAYMENT_GATEWAY
        gw = get_gateway(name)
        if not gw:
            logger.error(f"Unknown payment gateway '{name}' (registered: {', '.join(get_all_gateway_names())})")
            raise InfrastructureError()
        return gw

    # ==========================================
    # Webhooks
    # ==========================================

    def handle_webhook(
        self, db: Session, payload: bytes, signature_header: Optional[str],
        gateway: Optional[BaseGateway] = None,
    ) -> dict:
        """
        Apply a signed processor event to its checkout session.
        Unknown event types and replays are acknowledged without changes.
        """
        gw = gateway or self.get_active_gateway()
        event = gw.parse_webhook(payload, signature_header)
        if event is None:
            logger.warning(f"[{gw.name}] rejected webhook (bad signature or body)")
            raise ValidationError("Invalid signature")

        if event.type == EVENT_COMPLETED:
            changed = checkout_service.mark_complete(db, event.session_id)
        elif event.type == EVENT_EXPIRED:
            changed = checkout_service.mark_expired(db, event.session_id)
        else:
            logger.info(f"[{gw.name}] ignoring webhook event {event.type}")
            return {"received": True, "handled": False}

        if not changed:
            logger.info(f"[{gw.name}] webhook {event.type} for {event.session_id} was a no-op")
        return {"received": True, "handled": changed}


payment_service = PaymentService()
