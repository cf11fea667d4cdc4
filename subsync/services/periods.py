from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple

from dateutil.relativedelta import relativedelta

from subsync.core.time import dt_from_ts, to_epoch
from subsync.services.identity import first_item, safe_str
from subsync.services.stripe_api import StripeGateway

logger = logging.getLogger(__name__)

# Stripe statuses that carry a billing period; anything else (incomplete,
# incomplete_expired, checkout_pending, unknown values) is pre-activation.
ACTIVATED_STATUSES = frozenset({"active", "trialing", "past_due", "unpaid", "canceled", "paused"})

INTERVALS = {
    "day": lambda n: relativedelta(days=n),
    "week": lambda n: relativedelta(weeks=n),
    "month": lambda n: relativedelta(months=n),
    "year": lambda n: relativedelta(years=n),
}


class PeriodUnavailable(Exception):
    pass


@dataclass(frozen=True)
class NormalizedPeriod:
    start: Optional[int]
    end: Optional[int]
    source: str
    # the object the period was read from; a re-fetch replaces the payload copy
    subscription: Dict[str, Any] = field(default_factory=dict, compare=False, repr=False)


def is_pre_activation(stripe_status: Any) -> bool:
    return safe_str(stripe_status).lower() not in ACTIVATED_STATUSES


def direct_period(sub: Dict[str, Any]) -> Tuple[Optional[int], Optional[int]]:
    item = first_item(sub)
    start = to_epoch(sub.get("current_period_start")) or to_epoch(item.get("current_period_start"))
    end = to_epoch(sub.get("current_period_end")) or to_epoch(item.get("current_period_end"))
    if end is None:
        end = to_epoch(sub.get("cancel_at")) or to_epoch(sub.get("ended_at"))
    return start, end


def invoice_lines(invoice: Dict[str, Any]) -> List[Dict[str, Any]]:
    lines = invoice.get("lines")
    data = lines.get("data") if isinstance(lines, dict) else None
    return [ln for ln in (data or []) if isinstance(ln, dict)]


def period_from_lines(lines: List[Dict[str, Any]]) -> Tuple[Optional[int], Optional[int]]:
    starts: List[int] = []
    ends: List[int] = []
    for line in lines:
        p = line.get("period") if isinstance(line.get("period"), dict) else {}
        s = to_epoch(p.get("start"))
        e = to_epoch(p.get("end"))
        if s is not None:
            starts.append(s)
        if e is not None:
            ends.append(e)
    return (min(starts) if starts else None), (max(ends) if ends else None)


def recurring_of(sub: Dict[str, Any]) -> Tuple[Optional[str], int]:
    price = first_item(sub).get("price")
    recurring = price.get("recurring") if isinstance(price, dict) else None
    if isinstance(recurring, dict):
        return safe_str(recurring.get("interval")) or None, int(recurring.get("interval_count") or 1)
    # legacy ``plan`` object on older API versions
    plan = sub.get("plan") if isinstance(sub.get("plan"), dict) else first_item(sub).get("plan")
    if isinstance(plan, dict):
        return safe_str(plan.get("interval")) or None, int(plan.get("interval_count") or 1)
    return None, 1


def add_interval(start: int, interval: str, count: int) -> Optional[int]:
    step = INTERVALS.get(interval)
    if step is None or count <= 0:
        return None
    return int((dt_from_ts(start) + step(count)).timestamp())


class PeriodNormalizer:
    """Derives a (start, end) pair with end > start, or (None, None) before activation.

    Fallbacks, first success wins: fields on the object in hand, the same
    fields on a fresh fetch, the latest invoice's line periods, and finally
    period start plus the recurring price interval.
    """

    def __init__(self, gateway: StripeGateway, *, repair_seconds: int = 60) -> None:
        self.gateway = gateway
        self.repair_seconds = repair_seconds

    def normalize(
        self,
        subscription: Dict[str, Any],
        *,
        tenant_account_id: Optional[str] = None,
        fetched: bool = False,
    ) -> NormalizedPeriod:
        sub = subscription
        sub_id = safe_str(sub.get("id"))
        if is_pre_activation(sub.get("status")):
            return NormalizedPeriod(None, None, "pre_activation", sub)

        start, end = direct_period(sub)
        source = "direct"

        if end is None and not fetched and sub_id:
            sub = self.gateway.retrieve_subscription(sub_id, stripe_account=tenant_account_id)
            fetched = True
            if is_pre_activation(sub.get("status")):
                return NormalizedPeriod(None, None, "pre_activation", sub)
            start, end = direct_period(sub)
            source = "refetch"

        if end is None:
            line_start, line_end = period_from_lines(invoice_lines(self._latest_invoice(sub, tenant_account_id)))
            if line_end is not None:
                end = line_end
                start = start if start is not None else line_start
                source = "invoice_lines"

        if end is None and start is not None:
            interval, count = recurring_of(sub)
            if interval:
                end = add_interval(start, interval, count)
                if end is not None:
                    source = "price_interval"

        if end is None:
            raise PeriodUnavailable(f"no billing period for subscription {sub_id or '?'}")

        if start is None or end <= start:
            start = end - self.repair_seconds
        return NormalizedPeriod(start, end, source, sub)

    def _latest_invoice(self, sub: Dict[str, Any], tenant_account_id: Optional[str]) -> Dict[str, Any]:
        inv = sub.get("latest_invoice")
        if isinstance(inv, dict) and invoice_lines(inv):
            return inv
        inv_id = inv.get("id") if isinstance(inv, dict) else inv
        inv_id = safe_str(inv_id)
        if not inv_id:
            return {}
        logger.debug(f"fetching invoice {inv_id} for period derivation")
        return self.gateway.retrieve_invoice(inv_id, stripe_account=tenant_account_id)
