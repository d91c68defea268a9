"""
commissions.py — Commission Attribution Model

Runs once per order transition into `paid`. For every order item:
    1. Resolve the purchaser's sponsor. No sponsor, no commissions.
    2. Direct commission for the sponsor: line_total × direct_rate.
    3. Referral commission for each ancestor above the sponsor, one per
       configured referral level: line_total × referral_rates[level].

Records are keyed by (order_item_id, type, beneficiary_user_id). The ledger
rejects duplicates with `AlreadyExists`, which is counted as success, so running
attribution again for the same order creates nothing new.
"""

import logging
from dataclasses import dataclass, field
from decimal import Decimal
from typing import List, Tuple

from .errors import AlreadyExists, InvalidStatusTransition
from .models import (
    CommissionDraft,
    CommissionStatus,
    CommissionSummary,
    CommissionTotals,
    CommissionType,
    OrderStatus,
    money,
    utcnow,
)
from .orders import PAID_STATUSES

log = logging.getLogger(__name__)


@dataclass(frozen=True)
class CommissionSchedule:
    """Rates in effect at attribution time, as fractions (0.10 == 10%)."""
    direct_rate: Decimal
    referral_rates: Tuple[Decimal, ...] = ()

    def __post_init__(self):
        object.__setattr__(self, "direct_rate", Decimal(self.direct_rate))
        object.__setattr__(self, "referral_rates", tuple(Decimal(rate) for rate in self.referral_rates))

    @property
    def referral_depth(self):
        return len(self.referral_rates)


@dataclass
class AttributionResult:
    order_id: int
    created: List = field(default_factory=list)
    skipped: List = field(default_factory=list)

    @property
    def total_created(self):
        return money(sum((commission.amount for commission in self.created), Decimal("0")))


def _percentage(rate):
    return money(rate * 100)


class CommissionService:
    """
    Args:
        sponsorship (SponsorshipClient): Sponsorship graph lookups.
        ledger (CommissionLedgerClient): Commission persistence.
        schedule (CommissionSchedule): Rates supplied by the deployment.
    """

    def __init__(self, sponsorship, ledger, schedule):
        self.sponsorship = sponsorship
        self.ledger = ledger
        self.schedule = schedule

    async def _beneficiaries(self, purchaser_id):
        sponsor_id = await self.sponsorship.get_sponsor(purchaser_id)
        if sponsor_id is None:
            return []

        beneficiaries = [(CommissionType.DIRECT, 1, sponsor_id, self.schedule.direct_rate)]
        if self.schedule.referral_depth:
            chain = await self.sponsorship.get_upstream_chain(sponsor_id, self.schedule.referral_depth)
            seen = {purchaser_id, sponsor_id}
            for level, (ancestor_id, rate) in enumerate(zip(chain, self.schedule.referral_rates), start=2):
                # a malformed graph may loop back onto the purchaser or repeat a node
                if ancestor_id in seen:
                    break
                seen.add(ancestor_id)
                beneficiaries.append((CommissionType.REFERRAL, level, ancestor_id, rate))
        return beneficiaries

    def _drafts(self, order, beneficiaries):
        for item in order.order_items:
            for commission_type, level, beneficiary_id, rate in beneficiaries:
                yield CommissionDraft(
                    type=commission_type,
                    order_id=order.id,
                    order_item_id=item.id,
                    beneficiary_user_id=beneficiary_id,
                    source_user_id=order.user_id,
                    level=level,
                    amount=money(item.line_total * rate),
                    percentage=_percentage(rate),
                )

    async def attribute(self, order):
        """
        Creates the commissions of a paid order.

        Returns:
            AttributionResult: created commissions and drafts skipped as already recorded.

        Raises:
            InvalidStatusTransition: If the order has not been paid (or was cancelled).
            UpstreamUnavailable: If the graph or the ledger fails; safe to retry.
        """
        log_prefix = f"[Order: {order.id}]"
        if order.status not in PAID_STATUSES:
            raise InvalidStatusTransition(
                order.status.value,
                OrderStatus.PAID.value,
                f"Commissions are generated only for paid orders (order is '{order.status.value}')",
            )

        result = AttributionResult(order_id=order.id)
        beneficiaries = await self._beneficiaries(order.user_id)
        if not beneficiaries:
            log.info(f"{log_prefix} Purchaser {order.user_id} has no sponsor; no commissions")
            return result

        for draft in self._drafts(order, beneficiaries):
            try:
                commission = await self.ledger.create_commission(draft)
            except AlreadyExists:
                log.info(
                    f"{log_prefix} Commission {draft.type.value} for item {draft.order_item_id} "
                    f"-> user {draft.beneficiary_user_id} already recorded"
                )
                result.skipped.append(draft)
                continue
            result.created.append(commission)

        log.info(
            f"{log_prefix} Commission attribution done: created={len(result.created)} "
            f"skipped={len(result.skipped)} amount={result.total_created}"
        )
        return result

    async def list_for(self, ctx):
        commissions = await self.ledger.list_commissions(ctx.user_id)
        return sorted(commissions, key=lambda commission: commission.created_at, reverse=True)


def summarize_commissions(commissions, now=None):
    """Totals by type and status, for the current month and all time."""
    now = now or utcnow()
    current_month = CommissionTotals()
    all_time = CommissionTotals()

    for commission in commissions:
        buckets = [all_time]
        created = commission.created_at
        if created.year == now.year and created.month == now.month:
            buckets.append(current_month)
        for bucket in buckets:
            bucket.total += commission.amount
            if commission.type is CommissionType.DIRECT:
                bucket.direct += commission.amount
            else:
                bucket.referral += commission.amount
            if commission.status is CommissionStatus.PENDING:
                bucket.pending += commission.amount
            elif commission.status is CommissionStatus.APPROVED:
                bucket.approved += commission.amount
            else:
                bucket.paid += commission.amount

    return CommissionSummary(current_month=current_month, all_time=all_time)
