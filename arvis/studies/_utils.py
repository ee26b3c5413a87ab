"""
Shared helpers for the study runners: console headers, JSON checkpoints and
the final item list handed from one study to the next.
"""

from __future__ import annotations

import json
from pathlib import Path
from typing import Dict, Optional, Sequence, Tuple

import numpy as np
import pandas as pd

from ..items import ItemSet

FINAL_ITEMS_FILE = "final_items.json"


def print_section_header(title: str, width: int = 70) -> None:
    """Print formatted section header."""
    print("\n" + "=" * width)
    print(title)
    print("=" * width)


def format_pvalue(p: float, threshold: float = 0.001) -> str:
    """Format p-value for publication."""
    if pd.isna(p):
        return "NA"
    if p < threshold:
        return f"< {threshold}"
    return f"{p:.3f}"


def _to_builtin(value):
    if isinstance(value, (np.integer,)):
        return int(value)
    if isinstance(value, (np.floating,)):
        return None if np.isnan(value) else float(value)
    if isinstance(value, float) and np.isnan(value):
        return None
    if isinstance(value, np.ndarray):
        return [_to_builtin(v) for v in value.tolist()]
    if isinstance(value, dict):
        return {str(k): _to_builtin(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [_to_builtin(v) for v in value]
    if isinstance(value, (np.bool_,)):
        return bool(value)
    if isinstance(value, Path):
        return str(value)
    return value


def write_json(payload: dict, path: Path) -> Path:
    """Write a summary dict as UTF-8 JSON (NaN written as null)."""
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    with open(path, 'w', encoding='utf-8') as f:
        json.dump(_to_builtin(payload), f, indent=2, ensure_ascii=False)
    return path


def save_final_items(
    items: ItemSet,
    factor_map: Dict[str, Sequence[str]],
    output_dir: Path,
    source: str,
) -> Path:
    payload = items.to_dict()
    payload['factors'] = {factor: list(members) for factor, members in factor_map.items()}
    payload['source'] = source
    return write_json(payload, Path(output_dir) / FINAL_ITEMS_FILE)


def load_final_items(path: Path) -> Tuple[ItemSet, Dict[str, Tuple[str, ...]]]:
    """Read a final item list written by ``save_final_items``."""
    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"Final item list not found: {path} (run the earlier study first)")
    with open(path, 'r', encoding='utf-8') as f:
        payload = json.load(f)
    items = ItemSet.from_dict(payload)
    factors = {factor: tuple(members) for factor, members in payload.get('factors', {}).items()}
    if not factors:
        factors = {'ARVIS': items.items}
    return items, factors


def factor_map_from_primary(primary: pd.Series, items: Sequence[str]) -> Dict[str, Tuple[str, ...]]:
    """Group items by their primary factor, keeping item order."""
    factor_map: Dict[str, Tuple[str, ...]] = {}
    for item in items:
        factor = primary[item]
        factor_map[factor] = factor_map.get(factor, ()) + (item,)
    return dict(sorted(factor_map.items()))


def find_study_items(
    output_dir: Path,
    studies: Sequence[str] = ('study2', 'study1'),
) -> Optional[Path]:
    """Most recent final item list among the given study output folders."""
    for study in studies:
        candidate = Path(output_dir) / study / FINAL_ITEMS_FILE
        if candidate.exists():
            return candidate
    return None
