"""
Modifiers Module - Conditional Visibility
===========================================
Declarative rules decide which modifier groups are shown, required or
disabled given the current selections.
Example: "show 'Extra Sauce' only if 'Chicken' is selected".

A rule fires when ALL of its conditions hold. Per controlled group:
  - visible:  show/hide overwrite it, last matching rule wins
  - required, disabled: sticky, once a matching rule sets them they stay set

Stateless: rules + selections in, visibility map out.
"""

from dataclasses import dataclass, field
from typing import Dict, List, Optional, Sequence

from modules.modifiers.types import ModifierGroupSpec, SelectionMap


class ConditionOperator:
    MODIFIER_SELECTED = "modifier_selected"
    MODIFIER_NOT_SELECTED = "modifier_not_selected"
    GROUP_HAS_ANY_SELECTION = "group_has_any_selection"
    GROUP_HAS_NO_SELECTION = "group_has_no_selection"


class ConditionEffect:
    SHOW = "show"
    HIDE = "hide"
    REQUIRE = "require"
    DISABLE = "disable"

    ALL = (SHOW, HIDE, REQUIRE, DISABLE)


@dataclass(frozen=True)
class ModifierCondition:
    operator: str
    target_group_id: str
    target_modifier_id: Optional[str] = None


@dataclass
class ModifierConditionRule:
    controlled_group_id: str
    effect: str
    conditions: List[ModifierCondition] = field(default_factory=list)
    id: Optional[str] = None


@dataclass
class GroupVisibility:
    group_id: str
    visible: bool = True
    required: bool = False
    disabled: bool = False


VisibilityMap = Dict[str, GroupVisibility]


# ------------------------------------------
# Evaluation
# ------------------------------------------

def evaluate_condition(condition: ModifierCondition, selections: SelectionMap) -> bool:
    chosen = selections.get(condition.target_group_id) or []
    op = condition.operator

    if op == ConditionOperator.MODIFIER_SELECTED:
        if not condition.target_modifier_id:
            return False
        return any(s.id == condition.target_modifier_id for s in chosen)

    if op == ConditionOperator.MODIFIER_NOT_SELECTED:
        if not condition.target_modifier_id:
            return True
        return not any(s.id == condition.target_modifier_id for s in chosen)

    if op == ConditionOperator.GROUP_HAS_ANY_SELECTION:
        return len(chosen) > 0

    if op == ConditionOperator.GROUP_HAS_NO_SELECTION:
        return len(chosen) == 0

    # unknown operators never block a rule
    return True


def rule_matches(rule: ModifierConditionRule, selections: SelectionMap) -> bool:
    return all(evaluate_condition(c, selections) for c in rule.conditions)


def _reduce_visibility(current: bool, effect: str) -> bool:
    """Last write wins."""
    if effect == ConditionEffect.HIDE:
        return False
    if effect == ConditionEffect.SHOW:
        return True
    return current


def _reduce_flag(current: bool, effect: str, flag_effect: str) -> bool:
    """Monotonic OR."""
    return current or effect == flag_effect


def evaluate_conditions(
    rules: Sequence[ModifierConditionRule],
    selections: SelectionMap,
) -> VisibilityMap:
    """Visibility state for every group controlled by at least one rule."""
    result: VisibilityMap = {}

    for rule in rules:
        state = result.setdefault(rule.controlled_group_id, GroupVisibility(rule.controlled_group_id))
        if not rule_matches(rule, selections):
            continue
        state.visible = _reduce_visibility(state.visible, rule.effect)
        state.required = _reduce_flag(state.required, rule.effect, ConditionEffect.REQUIRE)
        state.disabled = _reduce_flag(state.disabled, rule.effect, ConditionEffect.DISABLE)

    return result


# ------------------------------------------
# Dependency checks
# ------------------------------------------

def detect_circular_dependencies(rules: Sequence[ModifierConditionRule]) -> List[str]:
    """
    Direct self-reference only: a rule whose condition targets the group
    it controls. Use find_rule_cycles() for cycles spanning several rules.
    """
    warnings = []
    for rule in rules:
        for condition in rule.conditions:
            if condition.target_group_id == rule.controlled_group_id:
                warnings.append(
                    f'Group "{rule.controlled_group_id}" has a self-referencing rule '
                    f"(condition targets itself)"
                )
    return warnings


def find_rule_cycles(rules: Sequence[ModifierConditionRule]) -> List[List[str]]:
    """
    Full cycle detection over the rule graph.

    Edge target_group -> controlled_group for every condition. Each cycle is
    returned once, as a list of group ids starting from its smallest id,
    e.g. A hides B and B requires A -> [["A", "B"]].
    """
    graph: Dict[str, List[str]] = {}
    for rule in rules:
        for condition in rule.conditions:
            edges = graph.setdefault(condition.target_group_id, [])
            if rule.controlled_group_id not in edges:
                edges.append(rule.controlled_group_id)
            graph.setdefault(rule.controlled_group_id, [])

    cycles: List[List[str]] = []
    seen = set()

    # iterative DFS from each node; only record cycles whose smallest node is the start
    for start in sorted(graph):
        stack = [(start, [start])]
        while stack:
            node, path = stack.pop()
            for nxt in sorted(graph.get(node, []), reverse=True):
                if nxt == start:
                    key = tuple(path)
                    if key not in seen:
                        seen.add(key)
                        cycles.append(list(path))
                elif nxt > start and nxt not in path:
                    stack.append((nxt, path + [nxt]))

    cycles.sort(key=lambda c: (len(c), c))
    return cycles


# ------------------------------------------
# Applying visibility
# ------------------------------------------

def filter_selections_to_visible(selections: SelectionMap, visibility: VisibilityMap) -> SelectionMap:
    """Drop selections of groups resolved as hidden. Uncontrolled groups are kept."""
    filtered = {}
    for group_id, sels in selections.items():
        state = visibility.get(group_id)
        if state is None or state.visible:
            filtered[group_id] = sels
    return filtered


def apply_visibility(
    groups: Sequence[ModifierGroupSpec],
    visibility: VisibilityMap,
) -> List[ModifierGroupSpec]:
    """
    Effective group rules for validation: hidden groups are dropped and a
    matching `require` rule makes a group required.
    """
    effective = []
    for group in groups:
        state = visibility.get(group.id)
        if state is None:
            effective.append(group)
            continue
        if not state.visible:
            continue
        if state.required and not group.required:
            group = ModifierGroupSpec(
                id=group.id,
                name=group.name,
                required=True,
                min_selections=max(group.min_selections, 1),
                max_selections=group.max_selections,
                sort_order=group.sort_order,
                type=group.type,
                modifiers=list(group.modifiers),
            )
        effective.append(group)
    return effective
