from decimal import Decimal

from modules.modifiers.types import ModifierGroupSpec, ModifierOption, SelectedModifier
from modules.modifiers.validation import (
    ValidationCode, get_first_invalid_group_id, validate_group_selection,
    validate_item_configuration, validate_special_instructions,
)


def group(gid="size", name="Size", required=False, min_selections=0, max_selections=None, sort_order=0):
    return ModifierGroupSpec(
        id=gid, name=name, required=required, min_selections=min_selections,
        max_selections=max_selections, sort_order=sort_order,
        modifiers=[
            ModifierOption("a", "A", Decimal("0")),
            ModifierOption("b", "B", Decimal("1.00")),
            ModifierOption("c", "C", Decimal("2.00")),
        ],
    )


def sel(*ids):
    return [SelectedModifier(i) for i in ids]


def test_required_group_missing():
    result = validate_group_selection(group(required=True, min_selections=1), [])
    assert not result.valid
    assert result.error == "Size is required"
    assert result.code == ValidationCode.REQUIRED_MISSING


def test_optional_empty_group_is_valid():
    assert validate_group_selection(group(min_selections=2), []).valid


def test_unavailable_selection():
    result = validate_group_selection(group(), sel("a", "zzz"))
    assert result.code == ValidationCode.UNAVAILABLE
    assert result.error == "One or more selected options are no longer available"


def test_min_not_met():
    result = validate_group_selection(group(min_selections=2), sel("a"))
    assert result.code == ValidationCode.MIN_NOT_MET
    assert result.error == "Please select at least 2 options"


def test_max_exceeded_singular():
    result = validate_group_selection(group(max_selections=1), sel("a", "b"))
    assert result.code == ValidationCode.MAX_EXCEEDED
    assert result.error == "Please select at most 1 option"


def test_unavailable_checked_before_counts():
    result = validate_group_selection(group(max_selections=1), sel("a", "gone"))
    assert result.code == ValidationCode.UNAVAILABLE


def test_within_bounds_is_valid():
    assert validate_group_selection(group(min_selections=1, max_selections=2), sel("a", "c")).valid


def test_item_configuration_collects_every_failure():
    groups = [
        group("size", "Size", required=True, min_selections=1),
        group("extras", "Extras", max_selections=1),
        group("sauce", "Sauce"),
    ]
    result = validate_item_configuration(groups, {"extras": sel("a", "b"), "sauce": sel("a")})
    assert not result.valid
    assert result.errors == {"size": "Size is required", "extras": "Please select at most 1 option"}
    assert result.codes == {"size": ValidationCode.REQUIRED_MISSING, "extras": ValidationCode.MAX_EXCEEDED}


def test_item_configuration_valid():
    groups = [group("size", "Size", required=True, min_selections=1, max_selections=1)]
    result = validate_item_configuration(groups, {"size": sel("b")})
    assert result.valid
    assert result.errors == {}


def test_first_invalid_group_follows_sort_order():
    groups = [
        group("late", sort_order=5),
        group("early", sort_order=1),
        group("tie_first", sort_order=3),
        group("tie_second", sort_order=3),
    ]
    errors = {"late": "x", "tie_second": "x", "tie_first": "x"}
    assert get_first_invalid_group_id(groups, errors) == "tie_first"
    assert get_first_invalid_group_id(groups, {}) is None


def test_special_instructions_length():
    assert validate_special_instructions(None).valid
    assert validate_special_instructions("x" * 200).valid
    too_long = validate_special_instructions("x" * 201)
    assert too_long.code == ValidationCode.TOO_LONG
    assert too_long.error == "Special instructions must be 200 characters or less"
