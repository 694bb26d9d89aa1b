"""Discount codes: resolve requested codes against a seller's stored rules.

Clients only ever name codes. Type, amount and conditions come from the
seller's ``DiscountCode`` rows, so a buyer cannot price their own discount.

Codes are tried in the order requested (duplicates dropped, case-insensitive).
Each code is checked in turn and either applied or rejected with a reason:

    not_found           no active code with that name for the seller
    min_spend           subtotal below the code's minimum spend
    exclusion_product   a cart line is an excluded product
    exclusion_category  a cart line is in an excluded category
    non_stackable       conflicts with a code already applied
    no_remaining        earlier codes already cover the whole subtotal
    zero_value          the code is worth nothing on this cart
"""

from dataclasses import dataclass, field
from typing import Iterable, Optional, Sequence, Union

from libs.common.logging import get_logger
from services.store_service.models import DiscountCode
from services.store_service.services.estimator import round_half_up
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

logger = get_logger(__name__)

PERCENT = "Percent"
FIXED = "Fixed"


@dataclass
class DiscountRule:
    code: str
    type: str
    amount: float
    stackable: bool = True
    min_spend: Optional[float] = None
    non_stacking_group: Optional[str] = None
    exclude_products: Sequence[str] = ()
    exclude_categories: Sequence[str] = ()

    @classmethod
    def from_model(cls, row: DiscountCode) -> "DiscountRule":
        return cls(
            code=row.code,
            type=row.type,
            amount=row.amount,
            stackable=row.stackable is not False,
            min_spend=row.min_spend,
            non_stacking_group=row.non_stacking_group,
            exclude_products=tuple(row.exclude_products or ()),
            exclude_categories=tuple(row.exclude_categories or ()),
        )

    def value_for(self, subtotal: int) -> int:
        """Worth of this code in cents on a cart with ``subtotal``."""
        if self.type == PERCENT:
            return round_half_up(subtotal * (self.amount / 100))
        return round_half_up(self.amount * 100)


@dataclass
class DiscountOutcome:
    applied: list[dict] = field(default_factory=list)
    rejected: list[dict] = field(default_factory=list)
    amount: int = 0


def requested_codes(discounts: Optional[Iterable[Union[str, dict]]]) -> list[str]:
    """Codes named by the client, deduplicated case-insensitively, order kept."""
    seen: set[str] = set()
    ordered: list[str] = []
    for entry in discounts or []:
        code = entry.get("code") if isinstance(entry, dict) else entry
        code = (code or "").strip()
        if not code or code.lower() in seen:
            continue
        seen.add(code.lower())
        ordered.append(code)
    return ordered


def _conflicts(rule: DiscountRule, applied: list[DiscountRule]) -> bool:
    if not applied:
        return False
    if not rule.stackable or any(not other.stackable for other in applied):
        return True
    return bool(rule.non_stacking_group) and any(
        other.non_stacking_group == rule.non_stacking_group for other in applied
    )


def apply_discounts(
    subtotal: int,
    lines: Sequence[dict],
    codes: Sequence[str],
    rules: dict[str, DiscountRule],
) -> DiscountOutcome:
    """Apply ``codes`` to a cart; ``rules`` is keyed by lower-cased code.

    Percent codes take their share of the full subtotal. The running total
    never exceeds the subtotal.
    """
    outcome = DiscountOutcome()
    applied_rules: list[DiscountRule] = []
    product_ids = {str(line.get("product_id")) for line in lines}
    categories = {line.get("category") for line in lines if line.get("category")}

    for code in codes:
        rule = rules.get(code.lower())
        if rule is None:
            outcome.rejected.append({"code": code, "reason": "not_found"})
            continue
        if rule.min_spend and subtotal < round_half_up(rule.min_spend * 100):
            outcome.rejected.append({"code": rule.code, "reason": "min_spend"})
            continue
        if product_ids.intersection(str(p) for p in rule.exclude_products):
            outcome.rejected.append({"code": rule.code, "reason": "exclusion_product"})
            continue
        if categories.intersection(rule.exclude_categories):
            outcome.rejected.append({"code": rule.code, "reason": "exclusion_category"})
            continue
        if _conflicts(rule, applied_rules):
            outcome.rejected.append({"code": rule.code, "reason": "non_stackable"})
            continue

        remaining = subtotal - outcome.amount
        if remaining <= 0:
            outcome.rejected.append({"code": rule.code, "reason": "no_remaining"})
            continue
        value = min(rule.value_for(subtotal), remaining)
        if value <= 0:
            outcome.rejected.append({"code": rule.code, "reason": "zero_value"})
            continue

        applied_rules.append(rule)
        outcome.amount += value
        outcome.applied.append(
            {
                "code": rule.code,
                "type": rule.type,
                "amount": rule.amount,
                "stackable": rule.stackable,
                "non_stacking_group": rule.non_stacking_group,
                "value": value,
            }
        )
    return outcome


async def load_rules(
    db: AsyncSession, seller_user_id: str, codes: Sequence[str]
) -> dict[str, DiscountRule]:
    """Active codes of ``seller_user_id`` among ``codes``, keyed by lower-cased code."""
    if not codes:
        return {}
    rows = (
        await db.execute(
            select(DiscountCode).where(
                DiscountCode.seller_user_id == seller_user_id,
                DiscountCode.active.is_(True),
                func.lower(DiscountCode.code).in_([code.lower() for code in codes]),
            )
        )
    ).scalars().all()
    return {row.code.lower(): DiscountRule.from_model(row) for row in rows}


async def resolve_discounts(
    db: AsyncSession,
    *,
    seller_user_id: str,
    subtotal: int,
    lines: Sequence[dict],
    discounts: Optional[Iterable[Union[str, dict]]],
) -> DiscountOutcome:
    """Look up the requested codes for the seller and apply them to the cart."""
    codes = requested_codes(discounts)
    if not codes:
        return DiscountOutcome()
    rules = await load_rules(db, seller_user_id, codes)
    outcome = apply_discounts(subtotal, lines, codes, rules)
    if outcome.rejected:
        logger.info(
            "Rejected discount codes for seller %s: %s",
            seller_user_id,
            ", ".join(f"{r['code']} ({r['reason']})" for r in outcome.rejected),
        )
    return outcome
