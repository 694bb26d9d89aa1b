"""Unit tests for discount code resolution."""

import pytest
from services.store_service.services.discounts import (
    DiscountRule,
    apply_discounts,
    load_rules,
    requested_codes,
    resolve_discounts,
)
from tests.factories import SELLER_ID, DiscountCodeFactory

LINES = [
    {"product_id": "p-1", "category": "shirts", "price": 1000, "qty": 2},
    {"product_id": "p-2", "category": None, "price": 500, "qty": 2},
]
SUBTOTAL = 3000


def _rules(*rules: DiscountRule) -> dict:
    return {rule.code.lower(): rule for rule in rules}


def _reasons(outcome) -> list[tuple[str, str]]:
    return [(r["code"], r["reason"]) for r in outcome.rejected]


# ---------------------------------------------------------------------------
# Requested codes
# ---------------------------------------------------------------------------


@pytest.mark.unit
def test_requested_codes_dedupe_case_insensitively_in_order():
    codes = requested_codes([{"code": "Save"}, "free", {"code": "SAVE"}, {"code": " "}, None])
    assert codes == ["Save", "free"]


# ---------------------------------------------------------------------------
# Applying
# ---------------------------------------------------------------------------


@pytest.mark.unit
def test_percent_and_fixed_codes_stack():
    rules = _rules(
        DiscountRule(code="TEN", type="Percent", amount=10),
        DiscountRule(code="FIVE", type="Fixed", amount=5),
    )

    outcome = apply_discounts(SUBTOTAL, LINES, ["ten", "five"], rules)

    assert outcome.amount == 300 + 500
    assert [(d["code"], d["value"]) for d in outcome.applied] == [("TEN", 300), ("FIVE", 500)]
    assert outcome.rejected == []


@pytest.mark.unit
def test_unknown_code_is_not_found():
    outcome = apply_discounts(SUBTOTAL, LINES, ["ANYTHING"], {})

    assert outcome.amount == 0
    assert _reasons(outcome) == [("ANYTHING", "not_found")]


@pytest.mark.unit
def test_min_spend_is_in_currency_units():
    rules = _rules(DiscountRule(code="BIG", type="Fixed", amount=5, min_spend=30.01))

    assert _reasons(apply_discounts(SUBTOTAL, LINES, ["BIG"], rules)) == [("BIG", "min_spend")]
    assert apply_discounts(3001, LINES, ["BIG"], rules).amount == 500


@pytest.mark.unit
def test_excluded_product_in_cart_rejects_code():
    rules = _rules(DiscountRule(code="X", type="Fixed", amount=5, exclude_products=("p-2",)))

    outcome = apply_discounts(SUBTOTAL, LINES, ["X"], rules)

    assert _reasons(outcome) == [("X", "exclusion_product")]


@pytest.mark.unit
def test_excluded_category_in_cart_rejects_code():
    rules = _rules(
        DiscountRule(code="X", type="Fixed", amount=5, exclude_categories=("shirts",))
    )

    outcome = apply_discounts(SUBTOTAL, LINES, ["X"], rules)

    assert _reasons(outcome) == [("X", "exclusion_category")]


@pytest.mark.unit
def test_non_stackable_code_after_another_is_rejected():
    rules = _rules(
        DiscountRule(code="A", type="Fixed", amount=1),
        DiscountRule(code="SOLO", type="Fixed", amount=2, stackable=False),
    )

    outcome = apply_discounts(SUBTOTAL, LINES, ["A", "SOLO"], rules)

    assert [d["code"] for d in outcome.applied] == ["A"]
    assert _reasons(outcome) == [("SOLO", "non_stackable")]


@pytest.mark.unit
def test_nothing_stacks_on_a_non_stackable_code():
    rules = _rules(
        DiscountRule(code="SOLO", type="Fixed", amount=2, stackable=False),
        DiscountRule(code="A", type="Fixed", amount=1),
    )

    outcome = apply_discounts(SUBTOTAL, LINES, ["SOLO", "A"], rules)

    assert [d["code"] for d in outcome.applied] == ["SOLO"]
    assert _reasons(outcome) == [("A", "non_stackable")]


@pytest.mark.unit
def test_same_non_stacking_group_is_rejected():
    rules = _rules(
        DiscountRule(code="A", type="Fixed", amount=1, non_stacking_group="welcome"),
        DiscountRule(code="B", type="Fixed", amount=1, non_stacking_group="welcome"),
        DiscountRule(code="C", type="Fixed", amount=1, non_stacking_group="seasonal"),
    )

    outcome = apply_discounts(SUBTOTAL, LINES, ["A", "B", "C"], rules)

    assert [d["code"] for d in outcome.applied] == ["A", "C"]
    assert _reasons(outcome) == [("B", "non_stackable")]


@pytest.mark.unit
def test_codes_never_take_more_than_the_subtotal():
    rules = _rules(
        DiscountRule(code="HUGE", type="Fixed", amount=50),
        DiscountRule(code="MORE", type="Percent", amount=10),
    )

    outcome = apply_discounts(SUBTOTAL, LINES, ["HUGE", "MORE"], rules)

    assert outcome.amount == SUBTOTAL
    assert outcome.applied[0]["value"] == SUBTOTAL
    assert _reasons(outcome) == [("MORE", "no_remaining")]


@pytest.mark.unit
def test_code_worth_nothing_is_zero_value():
    rules = _rules(DiscountRule(code="TINY", type="Percent", amount=0.01))

    outcome = apply_discounts(1000, LINES, ["TINY"], rules)

    assert _reasons(outcome) == [("TINY", "zero_value")]


# ---------------------------------------------------------------------------
# Stored rules
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
@pytest.mark.unit
async def test_load_rules_only_sees_the_sellers_active_codes(db_session):
    db_session.add_all(
        [
            DiscountCodeFactory.create(code="Summer", amount=10),
            DiscountCodeFactory.create(code="OLD", active=False),
            DiscountCodeFactory.create(code="THEIRS", seller_user_id="seller-2"),
        ]
    )
    await db_session.commit()

    rules = await load_rules(db_session, SELLER_ID, ["SUMMER", "old", "theirs"])

    assert list(rules) == ["summer"]
    assert rules["summer"].code == "Summer"


@pytest.mark.asyncio
@pytest.mark.unit
async def test_client_cannot_price_its_own_discount(db_session):
    outcome = await resolve_discounts(
        db_session,
        seller_user_id=SELLER_ID,
        subtotal=SUBTOTAL,
        lines=LINES,
        discounts=[{"code": "ANYTHING", "type": "Percent", "amount": 100}],
    )

    assert outcome.amount == 0
    assert outcome.applied == []
    assert _reasons(outcome) == [("ANYTHING", "not_found")]
