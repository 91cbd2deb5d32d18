"""
Modifiers Module - Validation Engine
======================================
Checks a customer's selections against each modifier group's rules.

Per group, first failing check wins:
  1. REQUIRED_MISSING  required group, nothing selected
  2. (empty selection on an optional group is valid)
  3. UNAVAILABLE       a selection is no longer offered by the group
  4. MIN_NOT_MET       fewer than min_selections
  5. MAX_EXCEEDED      more than max_selections
"""

from dataclasses import dataclass, field
from typing import Dict, Optional, Sequence

from modules.modifiers.types import ModifierGroupSpec, SelectedModifier, SelectionMap

MAX_INSTRUCTIONS_LENGTH = 200


class ValidationCode:
    REQUIRED_MISSING = "REQUIRED_MISSING"
    UNAVAILABLE = "UNAVAILABLE"
    MIN_NOT_MET = "MIN_NOT_MET"
    MAX_EXCEEDED = "MAX_EXCEEDED"
    TOO_LONG = "TOO_LONG"


@dataclass(frozen=True)
class SelectionResult:
    valid: bool
    error: Optional[str] = None
    code: Optional[str] = None


@dataclass
class ItemValidationResult:
    valid: bool
    errors: Dict[str, str] = field(default_factory=dict)
    codes: Dict[str, str] = field(default_factory=dict)


_OK = SelectionResult(valid=True)


def validate_group_selection(
    group: ModifierGroupSpec,
    selections: Sequence[SelectedModifier],
) -> SelectionResult:
    selections = list(selections or [])

    if group.required and not selections:
        return SelectionResult(False, f"{group.name} is required", ValidationCode.REQUIRED_MISSING)

    if not selections:
        return _OK

    offered = {m.id for m in group.modifiers}
    if any(sel.id not in offered for sel in selections):
        return SelectionResult(
            False,
            "One or more selected options are no longer available",
            ValidationCode.UNAVAILABLE,
        )

    count = len(selections)
    if group.min_selections > 0 and count < group.min_selections:
        noun = "option" if group.min_selections == 1 else "options"
        return SelectionResult(
            False,
            f"Please select at least {group.min_selections} {noun}",
            ValidationCode.MIN_NOT_MET,
        )

    if group.max_selections is not None and count > group.max_selections:
        noun = "option" if group.max_selections == 1 else "options"
        return SelectionResult(
            False,
            f"Please select at most {group.max_selections} {noun}",
            ValidationCode.MAX_EXCEEDED,
        )

    return _OK


def validate_item_configuration(
    groups: Sequence[ModifierGroupSpec],
    selections_by_group: SelectionMap,
) -> ItemValidationResult:
    """Validate every group; collect all failures, not just the first."""
    errors: Dict[str, str] = {}
    codes: Dict[str, str] = {}

    for group in groups:
        result = validate_group_selection(group, selections_by_group.get(group.id, []))
        if not result.valid:
            errors[group.id] = result.error
            codes[group.id] = result.code

    return ItemValidationResult(valid=not errors, errors=errors, codes=codes)


def get_first_invalid_group_id(
    groups: Sequence[ModifierGroupSpec],
    errors: Dict[str, str],
) -> Optional[str]:
    """First failing group in catalog order (sort_order, then declaration order)."""
    ordered = sorted(
        enumerate(groups), key=lambda pair: (pair[1].sort_order, pair[0])
    )
    for _, group in ordered:
        if group.id in errors:
            return group.id
    return None


def validate_special_instructions(text: Optional[str]) -> SelectionResult:
    if text and len(text) > MAX_INSTRUCTIONS_LENGTH:
        return SelectionResult(
            False,
            f"Special instructions must be {MAX_INSTRUCTIONS_LENGTH} characters or less",
            ValidationCode.TOO_LONG,
        )
    return _OK
