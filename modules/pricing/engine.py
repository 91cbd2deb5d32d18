"""
Pricing Module - Engine
=========================
Deterministic, auditable item pricing with a tamper-detection fingerprint.

Rules:
  - Every monetary value is rounded to 2 decimals (half-up) after EACH step,
    never only at the end, so chained operations cannot drift.
  - unit_price = base_price + modifier_total
  - subtotal   = unit_price × quantity
  - total      = subtotal + tax
  - Cart totals: sum line subtotals first, then tax once.

Fingerprint:
  canonical form (groups sorted by id, selections sorted by id) → hash.
  djb2 (8 hex chars) for interactive use, SHA-256 for audit persistence.
"""

import hashlib
import json
import math
from dataclasses import dataclass, asdict
from decimal import Decimal
from typing import Dict, Iterable, List, Sequence

from common.helpers import money, round_cents
from modules.modifiers.types import CartItemModifier, ModifierGroupSpec, SelectionMap


@dataclass(frozen=True)
class PriceBreakdown:
    base_price: Decimal
    modifier_total: Decimal
    unit_price: Decimal
    quantity: int
    subtotal: Decimal
    tax: Decimal
    total: Decimal
    pricing_fingerprint: str

    def to_dict(self) -> dict:
        data = asdict(self)
        for key in ("base_price", "modifier_total", "unit_price", "subtotal", "tax", "total"):
            data[key] = str(data[key])
        return data


# ------------------------------------------
# Hashing
# ------------------------------------------

def djb2(text: str) -> str:
    """Fast 32-bit djb2-xor hash, 8 hex chars. Not cryptographic."""
    h = 5381
    for ch in text:
        h = (((h << 5) + h) ^ ord(ch)) & 0xFFFFFFFF
    return f"{h:08x}"


def sha256_hex(text: str) -> str:
    return hashlib.sha256(text.encode("utf-8")).hexdigest()


def normalize_quantity(quantity) -> int:
    """Floor to an integer and clamp to >= 1. Garbage defaults to 1."""
    try:
        q = float(quantity)
    except (ValueError, TypeError):
        return 1
    if math.isnan(q) or math.isinf(q):
        return 1
    return max(1, int(math.floor(q)))


def canonical_input(
    item_id: str,
    base_price,
    modifiers: Sequence[CartItemModifier],
    quantity,
) -> str:
    """Serialize pricing inputs independent of group/selection insertion order."""
    mods = [
        {
            "g": m.group_id,
            "s": [
                f"{sel.id}:{money(sel.price_adjustment)}"
                for sel in sorted(m.selections, key=lambda s: s.id)
            ],
        }
        for m in sorted(modifiers, key=lambda m: m.group_id)
    ]
    payload = {
        "itemId": str(item_id),
        "basePrice": str(money(base_price)),
        "mods": mods,
        "quantity": normalize_quantity(quantity),
    }
    return json.dumps(payload, separators=(",", ":"))


def compute_fingerprint(item_id, base_price, modifiers, quantity) -> str:
    """Fast fingerprint for cart integrity checks."""
    return djb2(canonical_input(item_id, base_price, modifiers, quantity))


def compute_fingerprint_sha256(item_id, base_price, modifiers, quantity) -> str:
    """Cryptographic fingerprint for audit logging."""
    return sha256_hex(canonical_input(item_id, base_price, modifiers, quantity))


# ------------------------------------------
# Engine
# ------------------------------------------

class PricingEngine:
    """Pure pricing; the tax rate is injected so the engine is reusable."""

    def __init__(self, tax_rate):
        self.tax_rate = Decimal(str(tax_rate))

    def calculate(
        self,
        item_id: str,
        base_price,
        modifiers: Sequence[CartItemModifier],
        quantity,
    ) -> PriceBreakdown:
        qty = normalize_quantity(quantity)

        modifier_total = money(sum(
            (money(sel.price_adjustment) for mod in modifiers for sel in mod.selections),
            Decimal("0"),
        ))

        base = money(base_price)
        unit_price = money(base + modifier_total)
        subtotal = money(unit_price * qty)
        tax = money(subtotal * self.tax_rate)
        total = money(subtotal + tax)

        return PriceBreakdown(
            base_price=base,
            modifier_total=modifier_total,
            unit_price=unit_price,
            quantity=qty,
            subtotal=subtotal,
            tax=tax,
            total=total,
            pricing_fingerprint=compute_fingerprint(item_id, base_price, modifiers, qty),
        )

    def cart_totals(self, line_subtotals: Iterable) -> Dict[str, Decimal]:
        """Sum first, then tax once at cart level."""
        subtotal = money(sum((money(s) for s in line_subtotals), Decimal("0")))
        tax = money(subtotal * self.tax_rate)
        return {"subtotal": subtotal, "tax": tax, "total": money(subtotal + tax)}

    def tax_cents(self, amount_cents: int) -> int:
        """Tax on an integer-cents amount, rounded to whole cents."""
        return round_cents(Decimal(int(amount_cents)) * self.tax_rate)


# ------------------------------------------
# Modifier builders & display
# ------------------------------------------

def build_cart_modifiers(
    groups: Sequence[ModifierGroupSpec],
    selected: SelectionMap,
) -> List[CartItemModifier]:
    """Selection map → per-group list in catalog order, groups with ≥1 selection only."""
    result = []
    for group in groups:
        selections = list(selected.get(group.id, []))
        if selections:
            result.append(CartItemModifier(group_id=group.id, group_name=group.name, selections=selections))
    return result


def format_price(amount) -> str:
    return f"${money(amount):,.2f}"


def modifier_breakdown(modifiers: Sequence[CartItemModifier]) -> str:
    """'Size: Large (+$1.50) • Extras: Bacon (+$2.00), Onion'"""
    parts = []
    for mod in modifiers:
        if not mod.selections:
            continue
        sels = ", ".join(
            f"{s.name} (+{format_price(s.price_adjustment)})" if money(s.price_adjustment) > 0 else s.name
            for s in mod.selections
        )
        parts.append(f"{mod.group_name}: {sels}")
    return " • ".join(parts)


def modifier_summary(modifiers: Sequence[CartItemModifier]) -> str:
    n = sum(len(m.selections) for m in modifiers)
    if not n:
        return "No customizations"
    return f"{n} customization{'s' if n != 1 else ''}"
