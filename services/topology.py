# services/topology.py
from __future__ import annotations
import asyncio
import logging
from datetime import datetime
from typing import FrozenSet, List, Optional

from schemas import LinkedMeter, MeteringNode, TelemetrySample
from services import config
from services.stores import ResolverStore

logger = logging.getLogger(__name__)


# -------------------------
# Metered
# -------------------------
async def _samples_for_link(
    link: LinkedMeter,
    start: datetime,
    end: datetime,
    store: ResolverStore,
) -> List[TelemetrySample]:
    address = await store.get_linked_meter_address(link.meter_id)
    if not address:
        logger.warning(f"[topology] meter {link.meter_id} has no address; skipped")
        return []
    rows = await store.query_samples(address, start, end)
    sign = link.sign
    return [s if s.sign == sign else s.model_copy(update={"sign": sign}) for s in rows]


async def _resolve_metered(node, start, end, store, fan_out) -> List[TelemetrySample]:
    if not node.linked_meters:
        return []
    if fan_out:
        parts = await asyncio.gather(*(_samples_for_link(l, start, end, store) for l in node.linked_meters))
    else:
        parts = [await _samples_for_link(l, start, end, store) for l in node.linked_meters]
    return [s for part in parts for s in part]


# -------------------------
# Manual
# -------------------------
async def _resolve_manual(node, start, end, store) -> List[TelemetrySample]:
    entries = await store.query_manual_entries(node.id, start, end)
    return [TelemetrySample(timestamp=e.timestamp, fields=dict(e.readings), sign=1) for e in entries]


# -------------------------
# Summation / dispatch
# -------------------------
async def _resolve(
    node: MeteringNode,
    start: datetime,
    end: datetime,
    store: ResolverStore,
    fan_out: bool,
    ancestors: FrozenSet[str],
) -> List[TelemetrySample]:
    if node.path in ancestors:
        logger.warning(f"[topology] cycle at {node.path}; node skipped")
        return []

    if node.metering_type == "Metered":
        return await _resolve_metered(node, start, end, store, fan_out)

    if node.metering_type == "Manual":
        return await _resolve_manual(node, start, end, store)

    if node.metering_type == "Summation":
        children = await store.get_children(node.path)
        if not children:
            return []
        chain = ancestors | {node.path}
        if fan_out:
            parts = await asyncio.gather(*(_resolve(c, start, end, store, fan_out, chain) for c in children))
        else:
            parts = [await _resolve(c, start, end, store, fan_out, chain) for c in children]
        return [s for part in parts for s in part]

    # Unconfigured node
    return []


async def resolve(
    node: MeteringNode,
    start: datetime,
    end: datetime,
    store: ResolverStore,
    *,
    fan_out: Optional[bool] = None,
) -> List[TelemetrySample]:
    """
    Flatten every telemetry sample that belongs to ``node`` in [start, end].

    Metered nodes read their linked meters (sign taken from the link's
    add/subtract operation), Summation nodes recurse into their children and
    Manual nodes turn each manual entry into a +1 sample. Results are
    concatenated in declaration order, so sequential and concurrent traversal
    return the same list.
    """
    if end < start:
        return []
    fan_out = config.TOPOLOGY_FAN_OUT if fan_out is None else fan_out
    samples = await _resolve(node, start, end, store, fan_out, frozenset())
    logger.debug(f"[topology] {node.path}: {len(samples)} samples")
    return samples


async def resolve_path(
    path: str,
    start: datetime,
    end: datetime,
    store: ResolverStore,
    *,
    fan_out: Optional[bool] = None,
) -> List[TelemetrySample]:
    node = await store.get_node(path)
    if node is None:
        logger.warning(f"[topology] node {path} not found")
        return []
    return await resolve(node, start, end, store, fan_out=fan_out)
