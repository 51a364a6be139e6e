# services/bill_assembly.py
from __future__ import annotations
from typing import List, Optional, Sequence, Tuple

from schemas import (
    AssembledBill,
    BillingComponent,
    BillLine,
    Category,
    CategoryBlock,
    Evaluation,
)
from services import config

BLOCKED_DETAIL = "Peak demand logic excluded for short duration"

# holds components whose category_id matches no configured category
UNCATEGORIZED = Category(id="_uncategorized", name="Uncategorized", order=2**31 - 1)


def _is_demand_basis(comp: BillingComponent, unit: str) -> bool:
    return getattr(comp, "unit_basis", None) == unit


def assemble(
    categories: Sequence[Category],
    components: Sequence[BillingComponent],
    evaluation: Evaluation,
    *,
    mature: bool = True,
    demand_unit: Optional[str] = None,
) -> Tuple[List[CategoryBlock], float]:
    """
    Group evaluated components by category (category order, then component
    order). Categories without enabled components are left out. Components
    pointing at an unknown category are listed last under ``UNCATEGORIZED``
    so the block subtotals add up to the grand total. Totals are taken from
    ``evaluation`` as-is.
    """
    demand_unit = demand_unit or config.DEMAND_UNIT
    ordered = sorted(components, key=lambda c: c.order)

    known = {c.id for c in categories}
    groups = sorted(categories, key=lambda c: c.order)
    if any(c.category_id not in known for c in ordered):
        groups.append(UNCATEGORIZED)

    blocks: List[CategoryBlock] = []
    for cat in groups:
        lines: List[BillLine] = []
        for comp in ordered:
            if not comp.enabled:
                continue
            if cat is UNCATEGORIZED:
                if comp.category_id in known:
                    continue
            elif comp.category_id != cat.id:
                continue
            res = evaluation.results.get(comp.id)
            if res is None:
                continue
            blocked = not mature and _is_demand_basis(comp, demand_unit)
            lines.append(
                BillLine(
                    component=comp,
                    total=res.total,
                    detail=BLOCKED_DETAIL if blocked else res.detail,
                    blocked=blocked,
                )
            )
        if not lines:
            continue
        blocks.append(CategoryBlock(category=cat, subtotal=sum(l.total for l in lines), lines=lines))

    return blocks, evaluation.grand_total


def render_lines(bill: AssembledBill) -> List[str]:
    """Plain-text statement: one header per category, one row per line item, then the total."""
    cur = bill.currency
    out: List[str] = []
    for block in bill.by_category:
        out.append(f"{block.category.name}: {cur} {block.subtotal:,.2f}")
        for line in block.lines:
            tag = " [immature]" if line.blocked else ""
            out.append(f"  {line.component.name}{tag}: {cur} {line.total:,.2f} ({line.detail})")
    out.append(f"Total: {cur} {bill.grand_total:,.2f}")
    return out
