"""
Modifiers Module - Configuration Hashes
=========================================
Version hashes for modifier group configuration. A change to prices,
availability or selection rules changes the hash; renames and re-ordering
do not.
"""

import json
from typing import Sequence

from common.helpers import money
from modules.modifiers.types import ModifierGroupSpec
from modules.pricing.engine import djb2, sha256_hex


def _canonical_group(group: ModifierGroupSpec) -> dict:
    return {
        "id": group.id,
        "type": group.type,
        "required": group.required,
        "min_selections": group.min_selections,
        "max_selections": group.max_selections,
        "modifiers": [
            {"id": m.id, "price_adjustment": str(money(m.price_adjustment)), "available": m.available}
            for m in sorted(group.modifiers, key=lambda m: m.id)
        ],
    }


def _dumps(obj) -> str:
    return json.dumps(obj, separators=(",", ":"))


def hash_modifier_group(group: ModifierGroupSpec) -> str:
    return djb2(_dumps(_canonical_group(group)))


def hash_modifier_group_sha256(group: ModifierGroupSpec) -> str:
    return sha256_hex(_dumps(_canonical_group(group)))


def hash_item_modifier_config(item_id: str, groups: Sequence[ModifierGroupSpec]) -> str:
    """Whole-item config hash, used to spot a stale cart at checkout."""
    canonical = [_canonical_group(g) for g in sorted(groups, key=lambda g: g.id)]
    return djb2(_dumps({"itemId": str(item_id), "groups": canonical}))


def configs_match(hash_a: str, hash_b: str) -> bool:
    return bool(hash_a) and hash_a == hash_b
