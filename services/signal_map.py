# services/signal_map.py
from __future__ import annotations
import logging
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml

from schemas import SignalMapping
from services import config

logger = logging.getLogger(__name__)


def mappings_from_dict(data: Dict[str, Any]) -> List[SignalMapping]:
    """
    {"mappings": {"kWh": {"parameterId": "...", "method": "Sum"}, ...}}
    Units without a parameter id are left out.
    """
    out: List[SignalMapping] = []
    for unit, entry in ((data or {}).get("mappings") or {}).items():
        entry = entry or {}
        parameter_id = entry.get("parameterId") or entry.get("parameter_id")
        if not parameter_id:
            logger.warning(f"[signal-map] {unit}: no parameterId; ignored")
            continue
        out.append(
            SignalMapping(
                unit=str(unit),
                parameter_id=str(parameter_id),
                method=entry.get("method") or "Sum",
                enabled=entry.get("enabled", True),
                custom_label=entry.get("customLabel") or entry.get("custom_label"),
            )
        )
    return out


def load_signal_mappings(path: Optional[str] = None) -> List[SignalMapping]:
    p = Path(path or config.SIGNAL_MAP_FILE)
    if not p.exists():
        logger.warning(f"[signal-map] {p} not found; no signals mapped")
        return []
    with p.open("r", encoding="utf-8") as f:
        return mappings_from_dict(yaml.safe_load(f) or {})
