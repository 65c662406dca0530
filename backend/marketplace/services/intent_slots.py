"""
Intent slots
────────────
What the customer has told us so far, as a sparse mapping over three slots:
brand, type and packageInfo.

    key absent     → not known yet (ask / let the extractor fill it)
    key → None     → known to have no value
    key → "500ml"  → resolved

Slots are immutable values. `merge_slots` returns a new value and only
touches keys the patch actually carries, so merging the same patch twice is
a no-op the second time.
"""
import json
from dataclasses import dataclass, field
from typing import Mapping, Optional, Sequence

from marketplace.database.models.catalog import Product
from marketplace.database.models.conversation import SearchIntent
from marketplace.utils.text import normalize_text

BRAND = "brand"
TYPE = "type"
PACKAGE = "packageInfo"
SLOT_NAMES = (BRAND, TYPE, PACKAGE)


@dataclass(frozen=True)
class IntentSlots:
    known: Mapping[str, Optional[str]] = field(default_factory=dict)

    def is_known(self, slot: str) -> bool:
        return slot in self.known

    def value(self, slot: str) -> Optional[str]:
        return self.known.get(slot)

    @property
    def brand(self) -> Optional[str]:
        return self.known.get(BRAND)

    @property
    def type(self) -> Optional[str]:
        return self.known.get(TYPE)

    @property
    def package_info(self) -> Optional[str]:
        return self.known.get(PACKAGE)

    def as_dict(self) -> dict:
        return dict(self.known)


def _clean(value) -> Optional[str]:
    if value is None:
        return None
    value = str(value).strip()
    return value or None


def merge_slots(previous: IntentSlots, patch: Mapping) -> IntentSlots:
    """New slots = `previous` overridden by every slot key present in `patch`."""
    merged = dict(previous.known)
    for slot in SLOT_NAMES:
        if slot in patch:
            merged[slot] = _clean(patch[slot])
    return IntentSlots(merged)


def filter_by_intent(candidates: Sequence[Product], slots: IntentSlots) -> list[Product]:
    """Keep candidates matching every constrained slot (exact, case-insensitive).

    Brand constrains only when it has a value. Package constrains whenever it
    is known, so a known-empty package keeps products without a package.
    """
    result = list(candidates)
    if slots.brand:
        wanted = normalize_text(slots.brand)
        result = [p for p in result if normalize_text(p.brand_name) == wanted]
    if slots.is_known(PACKAGE):
        wanted = normalize_text(slots.package_info)
        result = [p for p in result if normalize_text(p.package_info) == wanted]
    return result


# ── Persistence helpers ───────────────────────────────────────────────────────

def load_slots(intent: SearchIntent) -> IntentSlots:
    raw = json.loads(intent.slots_json or "{}")
    return IntentSlots({k: raw[k] for k in SLOT_NAMES if k in raw})


def store_slots(intent: SearchIntent, slots: IntentSlots) -> None:
    intent.slots_json = json.dumps(slots.as_dict(), ensure_ascii=False)


def load_candidate_ids(intent: SearchIntent) -> list[str] | None:
    if intent.candidate_ids_json is None:
        return None
    return json.loads(intent.candidate_ids_json)


def store_candidate_ids(intent: SearchIntent, product_ids: list[str]) -> None:
    intent.candidate_ids_json = json.dumps(product_ids)
