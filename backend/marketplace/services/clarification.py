from dataclasses import dataclass, field
from typing import Sequence

from marketplace.config.settings import settings
from marketplace.database.models.catalog import Product
from marketplace.services.intent_slots import BRAND, PACKAGE, IntentSlots
from marketplace.utils.text import unique_in_order

BRAND_QUESTION = "Which brand would you like?"
PACKAGE_QUESTION = "Which package size would you like?"
LOCATION_QUESTION = "Please share your location and search radius."
NOT_FOUND_QUESTION = "I couldn't find that product. Please refine the name or brand."
REFINE_QUESTION = "Please specify the brand or package."


@dataclass
class Clarification:
    questions: list[str] = field(default_factory=list)
    quick_replies: list[str] = field(default_factory=list)

    def __bool__(self) -> bool:
        return bool(self.questions)


def needs_clarification(
    candidates: Sequence[Product],
    known: IntentSlots,
    sample_size: int | None = None,
) -> Clarification:
    """Questions for every slot that is still unknown and still ambiguous among `candidates`.

    All questions are returned together; quick replies are the concatenated
    samples in question order.
    """
    sample_size = sample_size or settings.clarification_sample_size
    clarification = Clarification()
    if len(candidates) <= 1:
        return clarification

    brands = unique_in_order(p.brand_name for p in candidates)
    packages = unique_in_order(p.package_info for p in candidates)

    if not known.is_known(BRAND) and len(brands) > 1:
        clarification.questions.append(BRAND_QUESTION)
        clarification.quick_replies.extend(brands[:sample_size])
    if not known.is_known(PACKAGE) and len(packages) > 1:
        clarification.questions.append(PACKAGE_QUESTION)
        clarification.quick_replies.extend(packages[:sample_size])
    return clarification
