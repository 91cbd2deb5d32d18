"""
Modifiers Module - Domain Types
=================================
Plain dataclasses shared by the pricing, validation and conditions engines.
These are not DB rows; the catalog service maps rows into them.
"""

from dataclasses import dataclass, field
from decimal import Decimal
from typing import Dict, List, Optional


class GroupType:
    RADIO = "radio"          # choose one
    CHECKBOX = "checkbox"    # choose many
    QUANTITY = "quantity"    # how many of each


@dataclass(frozen=True)
class ModifierOption:
    """A modifier currently offered by a group."""
    id: str
    name: str
    price_adjustment: Decimal = Decimal("0")
    available: bool = True


@dataclass
class ModifierGroupSpec:
    """Selection rules for one modifier group on an item."""
    id: str
    name: str
    required: bool = False
    min_selections: int = 0
    max_selections: Optional[int] = None
    sort_order: int = 0
    type: str = GroupType.RADIO
    modifiers: List[ModifierOption] = field(default_factory=list)


@dataclass(frozen=True)
class SelectedModifier:
    """A customer's selection inside a group."""
    id: str
    name: str = ""
    price_adjustment: Decimal = Decimal("0")


@dataclass
class CartItemModifier:
    """Selections for one group, as stored on a cart line."""
    group_id: str
    group_name: str
    selections: List[SelectedModifier] = field(default_factory=list)


SelectionMap = Dict[str, List[SelectedModifier]]
