# services/rate_import.py
"""
Read a monthly rate sheet (Excel or CSV) into the flat rate map of a RateSet.

Expected columns (header row, case-insensitive):
    component   component id or name
    index       tier / TOU slot index (only for Tiered and TimeOfUse rows)
    rate        numeric rate; "," is accepted as decimal separator
"""
from __future__ import annotations
import logging
from pathlib import Path
from typing import Any, Dict, Optional, Sequence, Union

import pandas as pd

from schemas import BillingComponent, TieredComponent, TimeOfUseComponent, component_key

logger = logging.getLogger(__name__)

COL_COMPONENT = "component"
COL_INDEX = "index"
COL_RATE = "rate"


class RateSheetError(ValueError):
    pass


def _norm(s: Any) -> str:
    if s is None:
        return ""
    return str(s).strip()


def _to_float(v: Any) -> Optional[float]:
    if v is None or pd.isna(v):
        return None
    try:
        return float(str(v).replace(",", "."))
    except ValueError:
        return None


def _lookup(components: Sequence[BillingComponent], ref: str) -> Optional[BillingComponent]:
    for c in components:
        if c.id == ref:
            return c
    lowered = ref.lower()
    for c in components:
        if c.name.strip().lower() == lowered:
            return c
    return None


def rates_from_frame(df: pd.DataFrame, components: Sequence[BillingComponent]) -> Dict[str, float]:
    columns = {_norm(c).lower(): c for c in df.columns}
    if COL_COMPONENT not in columns or COL_RATE not in columns:
        raise RateSheetError(f"rate sheet needs '{COL_COMPONENT}' and '{COL_RATE}' columns, got {list(df.columns)}")
    comp_col = columns[COL_COMPONENT]
    rate_col = columns[COL_RATE]
    idx_col = columns.get(COL_INDEX)

    values: Dict[str, float] = {}
    for row_no, row in df.iterrows():
        ref = _norm(row[comp_col])
        if not ref or ref.lower() == "nan":
            continue
        comp = _lookup(components, ref)
        if comp is None:
            logger.warning(f"[rates] row {row_no}: unknown component {ref!r}; skipped")
            continue
        rate = _to_float(row[rate_col])
        if rate is None:
            logger.warning(f"[rates] row {row_no}: rate {row[rate_col]!r} is not a number; skipped")
            continue

        if isinstance(comp, (TieredComponent, TimeOfUseComponent)):
            idx = _to_float(row[idx_col]) if idx_col is not None else None
            if idx is None:
                logger.warning(f"[rates] row {row_no}: {comp.name} needs a tier/slot index; skipped")
                continue
            values[component_key(comp.id, int(idx))] = rate
        else:
            values[comp.id] = rate
    return values


def load_rate_sheet(
    path: Union[str, Path],
    components: Sequence[BillingComponent],
    *,
    sheet: Union[str, int] = 0,
) -> Dict[str, float]:
    path = Path(path)
    if not path.exists():
        raise RateSheetError(f"rate sheet not found: {path}")
    if path.suffix.lower() == ".csv":
        df = pd.read_csv(path, dtype=object)
    else:
        df = pd.read_excel(path, sheet_name=sheet, dtype=object)
    if df.empty:
        raise RateSheetError(f"rate sheet is empty: {path}")
    values = rates_from_frame(df, components)
    logger.info(f"[rates] {path.name}: {len(values)} rates")
    return values
