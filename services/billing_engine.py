# services/billing_engine.py
from __future__ import annotations
import asyncio
import logging
from datetime import date, datetime, time, timezone, tzinfo
from typing import Optional, Tuple, Union

from schemas import AssembledBill, MeteringNode, RateSet, month_key
from services import config
from services.bill_assembly import assemble
from services.config_checks import check_billing_config
from services.maturity import apply_maturity_gate, is_mature, window_days
from services.signal_aggregation import aggregate
from services.stores import BillingStore
from services.tariff_eval import evaluate
from services.topology import resolve

logger = logging.getLogger(__name__)
UTC = timezone.utc

Instant = Union[datetime, date]


# -------------------------
# Window helpers
# -------------------------
def _aware(dt: datetime, tz: tzinfo) -> datetime:
    # naive datetimes are wall time in the billing zone
    return dt.replace(tzinfo=tz) if dt.tzinfo is None else dt


def normalize_window(
    start: Instant,
    end: Instant,
    *,
    tz: tzinfo,
    now: Optional[datetime] = None,
) -> Tuple[datetime, datetime, datetime, datetime]:
    """
    Returns (start, end, query_end, maturity_end).

    A bare date as ``start`` means 00:00 of that day and as ``end`` the last
    instant of that day. ``query_end`` is ``end`` capped at ``now``: samples
    are only queried up to the present. ``maturity_end`` is the requested end
    as given (midnight for a bare date), so a window of whole days is judged on
    its calendar length.
    """
    if isinstance(start, datetime):
        s = _aware(start, tz)
    else:
        s = datetime.combine(start, time.min, tzinfo=tz)

    if isinstance(end, datetime):
        e = _aware(end, tz)
        maturity_end = e
    else:
        e = datetime.combine(end, time.max, tzinfo=tz)
        maturity_end = datetime.combine(end, time.min, tzinfo=tz)

    now = _aware(now, tz) if now is not None else datetime.now(tz=UTC)
    query_end = min(e, now)
    return s, e, query_end, maturity_end


# -------------------------
# Main entry point
# -------------------------
async def compute_bill(
    node: MeteringNode,
    start: Instant,
    end: Instant,
    *,
    store: BillingStore,
    now: Optional[datetime] = None,
    currency: Optional[str] = None,
    tz: Optional[tzinfo] = None,
) -> AssembledBill:
    """
    Resolve -> aggregate -> maturity gate -> evaluate -> assemble for one node
    and window. Store failures propagate; a bill is never built from partial data.
    """
    tz = tz or config.BILLING_TZ
    currency = currency or config.BILL_CURRENCY
    s, e, query_end, maturity_end = normalize_window(start, end, tz=tz, now=now)
    month = month_key(s.astimezone(tz))

    mappings, components, categories, rates = await asyncio.gather(
        store.get_signal_mappings(),
        store.get_components(),
        store.get_categories(),
        store.get_latest_rate_set(month),
    )
    if rates is None:
        logger.warning(f"[billing] no rates committed for {month}; all rates are 0")
        rates = RateSet.empty(month)

    warnings = check_billing_config(components, categories)
    for w in warnings:
        logger.warning(f"[billing] {w}")

    samples = await resolve(node, s, query_end, store)

    mature = is_mature(s, maturity_end)
    if not mature:
        days = window_days(s, maturity_end)
        msg = (
            f"Window is {round(days)} days; peak demand ({config.DEMAND_UNIT}) "
            f"is only billed for windows longer than {config.MATURITY_DAYS:g} days"
        )
        warnings.append(msg)
        logger.info(f"[billing] {node.path}: {msg}")

    agg = aggregate(samples, mappings, components, tz=tz)
    agg = apply_maturity_gate(agg, components, mature)

    evaluation = evaluate(
        components, rates, agg.unit_quantities, agg.tou_quantities, currency=currency, mature=mature
    )
    by_category, grand_total = assemble(categories, components, evaluation, mature=mature)

    logger.info(
        f"[billing] {node.path} {s.isoformat()}..{e.isoformat()}: "
        f"{len(samples)} samples, total {currency} {grand_total:.2f}"
    )
    return AssembledBill(
        node_id=node.id,
        node_name=node.name,
        start=s,
        end=e,
        month=month,
        currency=currency,
        mature=mature,
        unit_quantities=agg.unit_quantities,
        tou_quantities=agg.tou_quantities,
        by_category=by_category,
        grand_total=grand_total,
        warnings=warnings,
    )


async def compute_bill_for_path(
    path: str,
    start: Instant,
    end: Instant,
    *,
    store: BillingStore,
    now: Optional[datetime] = None,
    currency: Optional[str] = None,
    tz: Optional[tzinfo] = None,
) -> AssembledBill:
    node = await store.get_node(path)
    if node is None:
        logger.warning(f"[billing] node {path} not found")
        return AssembledBill(
            currency=currency or config.BILL_CURRENCY,
            warnings=[f"Node {path} not found"],
        )
    return await compute_bill(node, start, end, store=store, now=now, currency=currency, tz=tz)
