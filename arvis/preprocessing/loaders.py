"""
Survey loaders and cleaning steps.

Loads the wide survey exports (one row per subject), validates their schema,
drops incomplete rows and applies the attention-check filter.
"""

from __future__ import annotations

from pathlib import Path
from typing import Iterable, List, Optional, Sequence, Tuple

import pandas as pd

from ..errors import SchemaError
from .constants import (
    ATTENTION_CHECK_COL,
    ATTENTION_CHECK_VALUE,
    ITEM_PREFIX,
    RAW_DIR,
    STUDY_FILES,
    SUBJECT_ID_COL,
)


def check_schema(df: pd.DataFrame, columns: Iterable[str], context: str = "dataset") -> None:
    """Raise SchemaError if any of ``columns`` is absent from ``df``."""
    missing = [col for col in columns if col not in df.columns]
    if missing:
        raise SchemaError(f"{context}: missing expected columns {missing}", missing=missing)


def load_dataset(
    path: Path,
    id_column: str = SUBJECT_ID_COL,
    required_columns: Optional[Sequence[str]] = None,
    verbose: bool = False,
) -> pd.DataFrame:
    """
    Load a wide survey table.

    Parameters
    ----------
    path : Path
        CSV file with a header row, one row per subject.
    id_column : str
        Subject identifier column; must be present.
    required_columns : sequence of str, optional
        Additional columns that must be present.

    Returns
    -------
    pd.DataFrame
        The table as read, with the subject id cast to str.
    """
    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"Survey file not found: {path}")

    df = pd.read_csv(path, encoding='utf-8-sig')
    check_schema(df, [id_column, *(required_columns or [])], context=path.name)
    df[id_column] = df[id_column].astype(str)

    if df[id_column].duplicated().any():
        dupes = sorted(df.loc[df[id_column].duplicated(), id_column].unique())
        raise SchemaError(f"{path.name}: duplicated subject ids {dupes[:10]}")

    if verbose:
        print(f"  Loaded {path.name}: N={len(df)}, columns={len(df.columns)}")

    return df


def load_study(
    study: str,
    data_dir: Optional[Path] = None,
    id_column: str = SUBJECT_ID_COL,
    verbose: bool = False,
) -> pd.DataFrame:
    """Load one of the named input files (see STUDY_FILES)."""
    if study not in STUDY_FILES:
        raise ValueError(f"Unknown input: {study}. Available: {sorted(STUDY_FILES)}")
    data_dir = data_dir or RAW_DIR
    return load_dataset(data_dir / STUDY_FILES[study], id_column=id_column, verbose=verbose)


def item_columns(df: pd.DataFrame, prefix: str = ITEM_PREFIX) -> List[str]:
    """Return item columns (matching ``prefix``) in file order."""
    items = [col for col in df.columns if str(col).startswith(prefix)]
    if not items:
        raise SchemaError(f"No item columns with prefix '{prefix}' found")
    return items


def ensure_numeric(df: pd.DataFrame, items: Sequence[str]) -> pd.DataFrame:
    """Coerce item columns to numeric; non-numeric responses are a schema error."""
    check_schema(df, items, context="item columns")
    df = df.copy()
    for col in items:
        converted = pd.to_numeric(df[col], errors='coerce')
        bad = converted.isna() & df[col].notna()
        if bad.any():
            raise SchemaError(
                f"Item '{col}' has {int(bad.sum())} non-numeric responses",
                missing=[col],
            )
        df[col] = converted
    return df


def drop_incomplete(df: pd.DataFrame, verbose: bool = False) -> pd.DataFrame:
    """Remove every row that has a missing value in any column."""
    cleaned = df.dropna(how='any')
    if verbose:
        print(f"  Incomplete rows removed: {len(df) - len(cleaned)} (N={len(cleaned)})")
    return cleaned.reset_index(drop=True)


def apply_attention_check(
    df: pd.DataFrame,
    check_column: str = ATTENTION_CHECK_COL,
    required_value=ATTENTION_CHECK_VALUE,
    verbose: bool = False,
) -> Tuple[pd.DataFrame, int]:
    """
    Keep rows that passed the attention check.

    Parameters
    ----------
    df : pd.DataFrame
        Dataset containing ``check_column``.
    check_column : str
        Attention-check item.
    required_value
        Response that counts as passing.

    Returns
    -------
    tuple
        (filtered dataset without ``check_column``, number of rows excluded)
    """
    check_schema(df, [check_column], context="attention check")
    passed = df[check_column] == required_value
    n_excluded = int((~passed).sum())

    filtered = df.loc[passed].drop(columns=[check_column]).reset_index(drop=True)

    if verbose:
        print(f"  [INFO] excluded by attention check: {n_excluded} (N={len(filtered)})")

    return filtered, n_excluded


def clean_dataset(
    df: pd.DataFrame,
    check_column: Optional[str] = ATTENTION_CHECK_COL,
    required_value=ATTENTION_CHECK_VALUE,
    prefix: str = ITEM_PREFIX,
    verbose: bool = False,
) -> Tuple[pd.DataFrame, dict]:
    """
    Drop incomplete rows, apply the attention check and coerce items to numbers.

    Pass ``check_column=None`` for samples without an attention-check item.

    Returns
    -------
    tuple
        (cleaned dataset, cleaning summary dict)
    """
    n_raw = len(df)
    items = item_columns(df, prefix=prefix)
    if check_column is not None:
        check_schema(df, [check_column], context="attention check")

    cleaned = drop_incomplete(df, verbose=verbose)
    n_incomplete = n_raw - len(cleaned)

    n_attention = 0
    if check_column is not None:
        cleaned, n_attention = apply_attention_check(
            cleaned, check_column=check_column, required_value=required_value, verbose=verbose
        )

    cleaned = ensure_numeric(cleaned, items)

    summary = {
        'n_raw': n_raw,
        'n_incomplete': n_incomplete,
        'n_attention_failed': n_attention,
        'n_clean': len(cleaned),
        'n_items': len(items),
    }
    return cleaned, summary


def save_table(df: pd.DataFrame, path: Path, index: bool = False) -> Path:
    """Write a result table as UTF-8 CSV (with BOM, for spreadsheet tools)."""
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    df.to_csv(path, index=index, encoding='utf-8-sig')
    return path
