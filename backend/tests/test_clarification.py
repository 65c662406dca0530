from marketplace.database.models import Product
from marketplace.services.clarification import BRAND_QUESTION, PACKAGE_QUESTION, needs_clarification
from marketplace.services.intent_slots import IntentSlots


def _product(pid, brand, package):
    return Product(id=pid, name=f"Item {pid}", sku=pid, brand_name=brand, package_info=package)


def test_two_brands_same_package_asks_brand_only():
    candidates = [_product("1", "A", "500ml"), _product("2", "B", "500ml")]
    result = needs_clarification(candidates, IntentSlots())
    assert result.questions == [BRAND_QUESTION]
    assert "A" in result.quick_replies and "B" in result.quick_replies


def test_single_brand_never_asks_brand():
    candidates = [_product("1", "A", "500ml"), _product("2", "A", "1L")]
    result = needs_clarification(candidates, IntentSlots())
    assert BRAND_QUESTION not in result.questions
    assert result.questions == [PACKAGE_QUESTION]
    assert result.quick_replies == ["500ml", "1L"]


def test_both_questions_returned_together():
    candidates = [_product("1", "A", "500ml"), _product("2", "B", "1L")]
    result = needs_clarification(candidates, IntentSlots())
    assert result.questions == [BRAND_QUESTION, PACKAGE_QUESTION]
    assert result.quick_replies == ["A", "B", "500ml", "1L"]


def test_known_slots_are_not_asked_again():
    candidates = [_product("1", "A", "500ml"), _product("2", "B", "1L")]
    result = needs_clarification(candidates, IntentSlots({"brand": "A", "packageInfo": None}))
    assert not result
    assert result.questions == []


def test_single_candidate_needs_nothing():
    assert not needs_clarification([_product("1", "A", "500ml")], IntentSlots())
    assert not needs_clarification([], IntentSlots())


def test_quick_replies_capped_per_question():
    candidates = [_product(str(i), f"Brand {i}", "500ml") for i in range(8)]
    result = needs_clarification(candidates, IntentSlots())
    assert result.quick_replies == [f"Brand {i}" for i in range(5)]


def test_null_values_do_not_count_as_distinct():
    candidates = [_product("1", "A", None), _product("2", None, "1L"), _product("3", "A", None)]
    assert not needs_clarification(candidates, IntentSlots())
