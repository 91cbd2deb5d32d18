"""
Checkout Module - Orchestrator
================================
Server-side checkout pipeline. Never trusts a client price or total.

  VALIDATING -> PRICING -> RESERVING_PROMO -> RESERVING_CREDIT
             -> CEILING_CHECK -> SESSION_CREATE -> COMMITTED
  any failure after a reservation: ROLLBACK -> FAILED

Steps run sequentially: the promo discount feeds the credit's remaining
total, and both feed the ceiling. Every reservation is recorded in a
CompensationLedger the moment it succeeds; on failure the ledger is unwound
in reverse order before the error leaves this module.

Errors leaving run() are always PlatefulError subclasses. Anything else
(database, gateway bug) is logged and surfaced as InfrastructureError.
"""

import enum
import logging
import math
import uuid
from dataclasses import dataclass, field
from datetime import timedelta
from decimal import Decimal
from typing import Any, Dict, List, Optional, Sequence, Tuple
from urllib.parse import urlsplit

from sqlalchemy.orm import Session

from common.exceptions import PlatefulError, ValidationError, InfrastructureError
from common.helpers import clean_str, format_usd, now_utc, round_cents, safe_int, to_cents
from config.settings import (
    ALLOWED_ORIGINS, FRONTEND_TOTAL_TOLERANCE_CENTS, MAX_AMOUNT_CENTS, MAX_DISCOUNT_FRACTION,
    MAX_ITEMS, MAX_QUANTITY, MIN_AMOUNT_CENTS, SESSION_EXPIRES_MINUTES, TAX_RATE,
)
from modules.catalog.service import catalog_service
from modules.checkout.models import CheckoutSession, PendingCart, SessionStatus
from modules.checkout.rate_limit import RateLimiter, checkout_limiter
from modules.checkout.saga import CompensationLedger
from modules.credit.service import CreditReservation, credit_service
from modules.modifiers.conditions import apply_visibility, evaluate_conditions, filter_selections_to_visible
from modules.modifiers.types import CartItemModifier
from modules.modifiers.validation import validate_item_configuration, validate_special_instructions
from modules.payment.gateways import BaseGateway, PaymentSessionRequest, SessionLineItem
from modules.pricing.engine import (
    PricingEngine, build_cart_modifiers, compute_fingerprint_sha256, modifier_breakdown, normalize_quantity,
)
from modules.promo.service import PromoReservation, promo_service

logger = logging.getLogger("plateful.checkout")


class CheckoutState(str, enum.Enum):
    VALIDATING = "VALIDATING"
    PRICING = "PRICING"
    RESERVING_PROMO = "RESERVING_PROMO"
    RESERVING_CREDIT = "RESERVING_CREDIT"
    CEILING_CHECK = "CEILING_CHECK"
    SESSION_CREATE = "SESSION_CREATE"
    COMMITTED = "COMMITTED"
    ROLLBACK = "ROLLBACK"
    FAILED = "FAILED"


# ==========================================
# Data
# ==========================================

@dataclass
class CheckoutRequest:
    """Untrusted client input. Prices are never part of it."""
    items: List[Dict[str, Any]]
    email: str
    success_url: str
    cancel_url: str
    name: Optional[str] = None
    phone: Optional[str] = None
    promo_code: Optional[str] = None
    credit_id: Optional[str] = None
    frontend_total: Optional[float] = None
    idempotency_key: Optional[str] = None


@dataclass
class ValidatedCartLine:
    item_id: int
    name: str
    unit_price_cents: int
    quantity: int
    line_subtotal_cents: int
    notes: Optional[str] = None
    modifiers: List[CartItemModifier] = field(default_factory=list)
    fingerprint: str = ""
    audit_fingerprint: str = ""

    def to_dict(self) -> dict:
        return {
            "item_id": self.item_id,
            "name": self.name,
            "unit_price_cents": self.unit_price_cents,
            "quantity": self.quantity,
            "line_subtotal_cents": self.line_subtotal_cents,
            "notes": self.notes,
            "modifiers": [
                {
                    "group_id": m.group_id,
                    "group_name": m.group_name,
                    "selections": [
                        {"id": s.id, "name": s.name, "price_adjustment": str(s.price_adjustment)}
                        for s in m.selections
                    ],
                }
                for m in self.modifiers
            ],
            "fingerprint": self.fingerprint,
        }


@dataclass
class DiscountReservation:
    """What this attempt has reserved, and how much of it survived the ceiling."""
    promo: Optional[PromoReservation] = None
    credit: Optional[CreditReservation] = None
    promo_applied_cents: int = 0
    credit_applied_cents: int = 0
    committed: bool = False

    @property
    def total_cents(self) -> int:
        return self.promo_applied_cents + self.credit_applied_cents


@dataclass(frozen=True)
class CeilingResult:
    final_promo: int
    final_credit: int
    total_discount: int


@dataclass(frozen=True)
class CheckoutTotals:
    subtotal_cents: int
    discount_cents: int
    discounted_subtotal_cents: int
    tax_cents: int
    total_cents: int


@dataclass
class CheckoutResult:
    id: str
    url: str
    status: str
    totals: CheckoutTotals
    reservation: DiscountReservation

    def to_response(self) -> dict:
        return {"id": self.id, "url": self.url, "status": self.status}


# ==========================================
# Pure computations
# ==========================================

def enforce_discount_ceiling(
    subtotal_cents: int,
    promo_cents: int,
    credit_cents: int,
    max_fraction=MAX_DISCOUNT_FRACTION,
) -> CeilingResult:
    """
    max = floor(subtotal × max_fraction). Promo is clamped first,
    credit gets whatever budget is left.
    """
    max_discount = max(0, math.floor(Decimal(subtotal_cents) * Decimal(str(max_fraction))))
    final_promo = max(0, min(promo_cents, max_discount))
    remaining = max(0, max_discount - final_promo)
    final_credit = max(0, min(credit_cents, remaining))
    return CeilingResult(final_promo, final_credit, final_promo + final_credit)


def compute_final_totals(subtotal_cents: int, total_discount_cents: int, tax_rate=TAX_RATE) -> CheckoutTotals:
    discounted = max(0, subtotal_cents - total_discount_cents)
    tax = round_cents(Decimal(discounted) * Decimal(str(tax_rate)))
    return CheckoutTotals(
        subtotal_cents=subtotal_cents,
        discount_cents=subtotal_cents - discounted,
        discounted_subtotal_cents=discounted,
        tax_cents=tax,
        total_cents=discounted + tax,
    )


def validate_redirect_url(url, allowed_origins: Sequence[str]) -> str:
    url = clean_str(url, 2048)
    try:
        parts = urlsplit(url)
    except ValueError:
        raise ValidationError("Invalid redirect URL")
    if parts.scheme not in ("http", "https") or not parts.netloc:
        raise ValidationError("Invalid redirect URL")
    if f"{parts.scheme}://{parts.netloc}" not in allowed_origins:
        raise ValidationError("Invalid redirect origin")
    return url


def normalize_email(email) -> str:
    email = clean_str(email, 254).lower()
    if "@" not in email or len(email) < 5:
        raise ValidationError("Invalid email address")
    return email


def build_line_items(lines: Sequence[ValidatedCartLine], totals: CheckoutTotals) -> List[SessionLineItem]:
    """
    Processor line items. Amounts must be positive, so a discounted order is
    sent as one 'Order (after discounts)' line instead of a negative line.
    """
    if totals.discount_cents > 0:
        items = [SessionLineItem("Order (after discounts)", totals.discounted_subtotal_cents, 1)]
    else:
        items = [SessionLineItem(line.name, line.unit_price_cents, line.quantity) for line in lines]
    if totals.tax_cents > 0:
        items.append(SessionLineItem("Tax", totals.tax_cents, 1))
    return items


# ==========================================
# Orchestrator
# ==========================================

class CheckoutOrchestrator:
    """One instance per checkout attempt."""

    def __init__(
        self,
        db: Session,
        gateway: BaseGateway,
        tax_rate=TAX_RATE,
        max_discount_fraction=MAX_DISCOUNT_FRACTION,
        rate_limiter: Optional[RateLimiter] = checkout_limiter,
        allowed_origins: Sequence[str] = ALLOWED_ORIGINS,
    ):
        self.db = db
        self.gateway = gateway
        self.pricing = PricingEngine(tax_rate)
        self.tax_rate = tax_rate
        self.max_discount_fraction = max_discount_fraction
        self.rate_limiter = rate_limiter
        self.allowed_origins = list(allowed_origins)

        self.ledger = CompensationLedger()
        self.reservation = DiscountReservation()
        self.history: List[CheckoutState] = []
        self.state: Optional[CheckoutState] = None

    def _enter(self, state: CheckoutState) -> None:
        self.state = state
        self.history.append(state)

    # ------------------------------------------
    # Entry point
    # ------------------------------------------

    def run(self, user_id: str, req: CheckoutRequest) -> CheckoutResult:
        try:
            return self._run(user_id, req)
        except PlatefulError as e:
            self._fail(user_id, e)
            raise
        except Exception as e:
            logger.exception(f"checkout_unexpected_error user={user_id} state={self.state}")
            self._fail(user_id, e)
            raise InfrastructureError() from e

    def _run(self, user_id: str, req: CheckoutRequest) -> CheckoutResult:
        self._enter(CheckoutState.VALIDATING)
        if self.rate_limiter is not None:
            self.rate_limiter.check(self.db, user_id)

        email = normalize_email(req.email)
        success_url = validate_redirect_url(req.success_url, self.allowed_origins)
        cancel_url = validate_redirect_url(req.cancel_url, self.allowed_origins)

        self._enter(CheckoutState.PRICING)
        lines, subtotal = self.validate_items(req.items)
        self._check_frontend_total(user_id, req.frontend_total, subtotal)

        promo_code = clean_str(req.promo_code, 50)
        if promo_code:
            self._enter(CheckoutState.RESERVING_PROMO)
            promo = promo_service.apply_promo_code(self.db, promo_code, user_id, subtotal)
            self.reservation.promo = promo
            self.ledger.record(
                "promo",
                lambda: promo_service.rollback_promo_reservation(self.db, promo.promo_id),
                f"promo_id={promo.promo_id}",
            )

        credit_id = clean_str(req.credit_id, 100)
        if credit_id:
            self._enter(CheckoutState.RESERVING_CREDIT)
            promo_cents = self.reservation.promo.discount_cents if self.reservation.promo else 0
            remaining = max(0, subtotal - promo_cents)
            credit = credit_service.apply_stored_credit(self.db, credit_id, user_id, remaining)
            self.reservation.credit = credit
            self.ledger.record(
                "credit",
                lambda: credit_service.rollback_credit_reservation(self.db, credit.credit_id),
                f"credit_id={credit.credit_id}",
            )

        self._enter(CheckoutState.CEILING_CHECK)
        totals = self._apply_ceiling(user_id, subtotal)

        self._enter(CheckoutState.SESSION_CREATE)
        session = self._create_session(user_id, req, lines, totals, email, success_url, cancel_url)

        self.ledger.commit()
        self.reservation.committed = True
        self._enter(CheckoutState.COMMITTED)
        logger.info(
            f"checkout_session_created session={session.id} user={user_id} total_cents={totals.total_cents}"
        )
        return CheckoutResult(
            id=session.id,
            url=session.redirect_url,
            status=SessionStatus.OPEN.value,
            totals=totals,
            reservation=self.reservation,
        )

    # ------------------------------------------
    # Validation & pricing
    # ------------------------------------------

    def validate_items(self, raw_items) -> Tuple[List[ValidatedCartLine], int]:
        """Re-price every line from the catalog. Returns (lines, subtotal_cents)."""
        if not isinstance(raw_items, list) or not raw_items:
            raise ValidationError("Invalid cart", {"items": "Cart is empty"})
        if len(raw_items) > MAX_ITEMS:
            raise ValidationError("Invalid cart", {"items": f"Cart cannot contain more than {MAX_ITEMS} lines"})

        item_ids = []
        for raw in raw_items:
            item_id = safe_int(raw.get("id")) if isinstance(raw, dict) else None
            if item_id is None:
                raise ValidationError("Invalid cart", {"items": "Item not found"})
            item_ids.append(item_id)

        catalog = catalog_service.get_items(self.db, item_ids)

        lines: List[ValidatedCartLine] = []
        errors: Dict[str, Any] = {}
        for idx, (raw, item_id) in enumerate(zip(raw_items, item_ids)):
            item = catalog.get(item_id)
            if item is None:
                raise ValidationError("Invalid cart", {f"items[{idx}]": "Item not found"})

            line, line_errors = self._price_line(item, raw)
            if line_errors:
                errors[f"items[{idx}]"] = line_errors
                continue
            lines.append(line)

        if errors:
            raise ValidationError("Invalid cart", errors)

        subtotal = sum(line.line_subtotal_cents for line in lines)
        if subtotal < MIN_AMOUNT_CENTS or subtotal > MAX_AMOUNT_CENTS:
            raise ValidationError("Invalid cart", {
                "subtotal": f"Order subtotal must be between {format_usd(MIN_AMOUNT_CENTS)} "
                            f"and {format_usd(MAX_AMOUNT_CENTS)}",
            })
        return lines, subtotal

    def _price_line(self, item, raw: dict) -> Tuple[Optional[ValidatedCartLine], Dict[str, str]]:
        quantity = min(MAX_QUANTITY, normalize_quantity(raw.get("quantity")))
        notes = clean_str(raw.get("notes"), 1000) or None

        note_check = validate_special_instructions(notes)
        if not note_check.valid:
            return None, {"notes": note_check.error}

        groups = catalog_service.group_specs(item)
        raw_mods = self._raw_modifier_map(raw.get("modifiers"))
        unknown = [gid for gid in raw_mods if gid not in {g.id for g in groups}]
        if unknown:
            return None, {gid: "Option group is not available for this item" for gid in unknown}

        selections = catalog_service.resolve_selections(groups, raw_mods)
        visibility = evaluate_conditions(catalog_service.condition_rules(item), selections)
        selections = filter_selections_to_visible(selections, visibility)
        effective = apply_visibility(groups, visibility)

        check = validate_item_configuration(effective, selections)
        if not check.valid:
            return None, check.errors

        modifiers = build_cart_modifiers(effective, selections)
        breakdown = self.pricing.calculate(str(item.id), item.price, modifiers, quantity)
        if breakdown.unit_price < 0:
            logger.warning(f"negative_unit_price item_id={item.id} unit_price={breakdown.unit_price}")
            return None, {"price": "Item price cannot be negative"}

        client_hash = clean_str(raw.get("pricing_hash"), 64)
        if client_hash and client_hash != breakdown.pricing_fingerprint:
            logger.warning(
                f"stale_pricing_hash item_id={item.id} client={client_hash} server={breakdown.pricing_fingerprint}"
            )

        name = item.name
        detail = modifier_breakdown(modifiers)
        if detail:
            name = f"{name} ({detail})"

        return ValidatedCartLine(
            item_id=item.id,
            name=name,
            unit_price_cents=to_cents(breakdown.unit_price),
            quantity=breakdown.quantity,
            line_subtotal_cents=to_cents(breakdown.subtotal),
            notes=notes,
            modifiers=modifiers,
            fingerprint=breakdown.pricing_fingerprint,
            audit_fingerprint=compute_fingerprint_sha256(str(item.id), item.price, modifiers, quantity),
        ), {}

    @staticmethod
    def _raw_modifier_map(raw_mods) -> Dict[str, List[str]]:
        """Accept {group_id: [modifier_id]} or [{"group_id", "modifier_ids"}]."""
        result: Dict[str, List[str]] = {}
        if isinstance(raw_mods, dict):
            pairs = raw_mods.items()
        elif isinstance(raw_mods, list):
            pairs = [
                (m.get("group_id"), m.get("modifier_ids") or [])
                for m in raw_mods if isinstance(m, dict)
            ]
        else:
            return result
        for group_id, modifier_ids in pairs:
            if group_id is None or not isinstance(modifier_ids, list):
                continue
            bucket = result.setdefault(str(group_id), [])
            for mid in modifier_ids:
                # a modifier counts once per group, first occurrence wins
                if mid is not None and str(mid) not in bucket:
                    bucket.append(str(mid))
        return result

    def _check_frontend_total(self, user_id: str, frontend_total, subtotal: int) -> None:
        """Soft fraud signal only; the server total is authoritative."""
        if frontend_total is None:
            return
        try:
            frontend_cents = to_cents(frontend_total)
        except (ArithmeticError, ValueError):
            logger.warning(f"frontend_total_unparseable user={user_id}")
            return
        estimate = subtotal + self.pricing.tax_cents(subtotal)
        if abs(frontend_cents - estimate) > FRONTEND_TOTAL_TOLERANCE_CENTS:
            logger.warning(
                f"frontend_total_mismatch user={user_id} frontend_cents={frontend_cents} server_estimate={estimate}"
            )

    # ------------------------------------------
    # Ceiling & totals
    # ------------------------------------------

    def _apply_ceiling(self, user_id: str, subtotal: int) -> CheckoutTotals:
        promo_cents = self.reservation.promo.discount_cents if self.reservation.promo else 0
        credit_cents = self.reservation.credit.applied_cents if self.reservation.credit else 0

        ceiling = enforce_discount_ceiling(subtotal, promo_cents, credit_cents, self.max_discount_fraction)
        self.reservation.promo_applied_cents = ceiling.final_promo
        self.reservation.credit_applied_cents = ceiling.final_credit

        if self.reservation.credit and ceiling.final_credit == 0:
            # nothing left of the credit under the ceiling; hand it back
            self.ledger.release("credit")
            self.reservation.credit = None

        totals = compute_final_totals(subtotal, ceiling.total_discount, self.tax_rate)
        logger.info(
            f"checkout_totals user={user_id} subtotal_cents={subtotal} promo_cents={ceiling.final_promo} "
            f"credit_cents={ceiling.final_credit} discounted_cents={totals.discounted_subtotal_cents} "
            f"tax_cents={totals.tax_cents} total_cents={totals.total_cents}"
        )

        if totals.total_cents <= 0:
            raise ValidationError("Order total must be greater than $0 after discounts")
        return totals

    # ------------------------------------------
    # Session
    # ------------------------------------------

    def _create_session(
        self, user_id: str, req: CheckoutRequest, lines: List[ValidatedCartLine],
        totals: CheckoutTotals, email: str, success_url: str, cancel_url: str,
    ) -> CheckoutSession:
        db = self.db
        promo = self.reservation.promo
        credit = self.reservation.credit

        cart = PendingCart(
            user_id=user_id,
            items=[line.to_dict() for line in lines],
            subtotal_cents=totals.subtotal_cents,
            discount_cents=totals.discount_cents,
            tax_cents=totals.tax_cents,
            total_cents=totals.total_cents,
            promo_id=promo.promo_id if promo else None,
            credit_id=credit.credit_id if credit else None,
            customer_email=email,
            customer_name=clean_str(req.name, 200) or None,
            customer_phone=clean_str(req.phone, 50) or None,
        )
        db.add(cart)
        db.commit()
        cart_id = cart.id
        self.ledger.record("pending_cart", lambda: self._delete_pending_cart(cart_id), f"pending_cart_id={cart_id}")

        idempotency_key = clean_str(req.idempotency_key, 255) or str(uuid.uuid4())
        expires_at = now_utc() + timedelta(minutes=SESSION_EXPIRES_MINUTES)
        result = self.gateway.create_session(PaymentSessionRequest(
            line_items=build_line_items(lines, totals),
            customer_email=email,
            success_url=success_url,
            cancel_url=cancel_url,
            expires_at=expires_at,
            idempotency_key=idempotency_key,
            metadata={
                "customer_uid": user_id,
                "pending_cart_id": str(cart_id),
                "server_total": str(totals.total_cents),
                "subtotal_cents": str(totals.subtotal_cents),
                "discount_cents": str(totals.discount_cents),
                "promo_code": promo.code if promo else "",
                "promo_id": str(promo.promo_id) if promo else "",
                "credit_id": str(credit.credit_id) if credit else "",
                "credit_applied": str(self.reservation.credit_applied_cents),
            },
        ))
        if not result.success or not result.session_id or not result.redirect_url:
            logger.error(f"payment_session_failed gateway={self.gateway.name} user={user_id}: {result.error_message}")
            raise InfrastructureError()

        session = CheckoutSession(
            id=result.session_id,
            user_id=user_id,
            pending_cart_id=cart_id,
            status=SessionStatus.OPEN.value,
            subtotal_cents=totals.subtotal_cents,
            discount_cents=totals.discount_cents,
            promo_discount_cents=self.reservation.promo_applied_cents,
            credit_discount_cents=self.reservation.credit_applied_cents,
            tax_cents=totals.tax_cents,
            total_cents=totals.total_cents,
            promo_id=promo.promo_id if promo else None,
            credit_id=credit.credit_id if credit else None,
            redirect_url=result.redirect_url,
            gateway=self.gateway.name,
            idempotency_key=idempotency_key,
            fingerprints=[line.audit_fingerprint for line in lines],
            expires_at=expires_at,
        )
        db.add(session)
        if promo:
            promo_service.record_redemption(
                db, promo.promo_id, user_id, self.reservation.promo_applied_cents, result.session_id,
            )
        if credit:
            credit_service.attach_session(db, credit.credit_id, result.session_id)
        db.commit()
        return session

    def _delete_pending_cart(self, cart_id: int) -> None:
        self.db.query(PendingCart).filter(PendingCart.id == cart_id).delete(synchronize_session=False)
        self.db.commit()

    # ------------------------------------------
    # Failure path
    # ------------------------------------------

    def _fail(self, user_id: str, error: Exception) -> None:
        self.db.rollback()
        if self.ledger.steps:
            steps = ",".join(self.ledger.steps)
            self._enter(CheckoutState.ROLLBACK)
            report = self.ledger.unwind()
            if report.complete:
                logger.warning(f"checkout_rolled_back user={user_id} steps={steps} error={error}")
            else:
                logger.error(
                    f"checkout_rollback_incomplete user={user_id} steps={steps} "
                    f"failed={','.join(report.failed_steps)} error={error}"
                )
        self._enter(CheckoutState.FAILED)
