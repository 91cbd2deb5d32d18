"""
Catalog Module - Service Layer
================================
Read side of the menu for checkout: fetch items by id and map rows to the
pure engine types (ModifierGroupSpec, ModifierConditionRule).
Also a small write helper used by the seed script and tests.
"""

from decimal import Decimal
from typing import Dict, Iterable, List, Optional

from sqlalchemy.orm import Session, selectinload

from common.helpers import money
from modules.catalog.models import MenuItem, ModifierGroup, Modifier, ModifierRule
from modules.modifiers.conditions import ModifierCondition, ModifierConditionRule
from modules.modifiers.types import ModifierGroupSpec, ModifierOption, SelectedModifier, SelectionMap


class CatalogService:

    # ------------------------------------------
    # Lookup
    # ------------------------------------------

    def get_items(self, db: Session, item_ids: Iterable[int]) -> Dict[int, MenuItem]:
        """Available items by id. Duplicate ids are fetched once."""
        ids = sorted(set(item_ids))
        if not ids:
            return {}
        rows = (
            db.query(MenuItem)
            .options(
                selectinload(MenuItem.modifier_groups).selectinload(ModifierGroup.modifiers),
                selectinload(MenuItem.rules),
            )
            .filter(MenuItem.id.in_(ids), MenuItem.available == True)  # noqa: E712
            .all()
        )
        return {row.id: row for row in rows}

    def get_item(self, db: Session, item_id: int) -> Optional[MenuItem]:
        return self.get_items(db, [item_id]).get(item_id)

    # ------------------------------------------
    # Row -> engine types
    # ------------------------------------------

    def group_specs(self, item: MenuItem) -> List[ModifierGroupSpec]:
        """Active groups in catalog order; only currently available modifiers are offered."""
        specs = []
        for g in sorted(item.modifier_groups, key=lambda g: (g.sort_order, g.id)):
            if not g.active:
                continue
            specs.append(ModifierGroupSpec(
                id=str(g.id),
                name=g.name,
                required=bool(g.required),
                min_selections=g.min_selections or 0,
                max_selections=g.max_selections,
                sort_order=g.sort_order or 0,
                type=g.type,
                modifiers=[
                    ModifierOption(
                        id=str(m.id),
                        name=m.name,
                        price_adjustment=money(m.price_adjustment),
                        available=True,
                    )
                    for m in g.modifiers if m.available
                ],
            ))
        return specs

    def condition_rules(self, item: MenuItem) -> List[ModifierConditionRule]:
        rules = []
        for r in sorted(item.rules, key=lambda r: (r.sort_order, r.id)):
            rules.append(ModifierConditionRule(
                id=str(r.id),
                controlled_group_id=str(r.controlled_group_id),
                effect=r.effect,
                conditions=[
                    ModifierCondition(
                        operator=c.get("operator", ""),
                        target_group_id=str(c.get("target_group_id", "")),
                        target_modifier_id=(
                            str(c["target_modifier_id"]) if c.get("target_modifier_id") is not None else None
                        ),
                    )
                    for c in (r.conditions or [])
                ],
            ))
        return rules

    def resolve_selections(
        self,
        groups: List[ModifierGroupSpec],
        raw: Dict[str, List[str]],
    ) -> SelectionMap:
        """
        Attach authoritative names and prices to client-sent modifier ids.
        Ids the group no longer offers keep a zero price so validation
        reports them as UNAVAILABLE. Repeated ids are priced once.
        """
        by_group = {g.id: g for g in groups}
        resolved: SelectionMap = {}
        for group_id, modifier_ids in raw.items():
            group = by_group.get(group_id)
            offered = {m.id: m for m in group.modifiers} if group else {}
            selections = []
            for mod_id in dict.fromkeys(modifier_ids):
                opt = offered.get(mod_id)
                if opt:
                    selections.append(SelectedModifier(opt.id, opt.name, opt.price_adjustment))
                else:
                    selections.append(SelectedModifier(mod_id, "", Decimal("0")))
            resolved[group_id] = selections
        return resolved

    # ------------------------------------------
    # Write (seed / tests)
    # ------------------------------------------

    def create_item(self, db: Session, name: str, price, groups: Optional[list] = None) -> MenuItem:
        """
        groups: [{"name", "required", "min_selections", "max_selections",
                  "modifiers": [{"name", "price_adjustment"}]}]
        """
        item = MenuItem(name=name, price=money(price))
        for idx, g in enumerate(groups or []):
            group = ModifierGroup(
                name=g["name"],
                type=g.get("type", "radio"),
                required=g.get("required", False),
                min_selections=g.get("min_selections", 0),
                max_selections=g.get("max_selections"),
                sort_order=g.get("sort_order", idx),
            )
            for m_idx, m in enumerate(g.get("modifiers", [])):
                group.modifiers.append(Modifier(
                    name=m["name"],
                    price_adjustment=money(m.get("price_adjustment", 0)),
                    available=m.get("available", True),
                    sort_order=m_idx,
                ))
            item.modifier_groups.append(group)
        db.add(item)
        db.flush()
        return item

    def add_rule(self, db: Session, item: MenuItem, controlled_group_id: int, effect: str, conditions: list) -> ModifierRule:
        rule = ModifierRule(
            controlled_group_id=controlled_group_id,
            effect=effect,
            conditions=conditions,
            sort_order=len(item.rules),
        )
        item.rules.append(rule)
        db.flush()
        return rule


catalog_service = CatalogService()
