"""Excel/CSV export of output rows."""

from __future__ import annotations

import os
from typing import Any, Dict, Iterable, List, Optional, Sequence

import pandas as pd

from .logging_utils import _log_step, _log_warn


def _as_dicts(rows: Iterable[Any]) -> List[Dict[str, Any]]:
    out = []
    for r in rows:
        out.append(r.as_dict() if hasattr(r, "as_dict") else dict(r))
    return out


def rows_to_frame(rows: Iterable[Any]) -> pd.DataFrame:
    """Columns are the union of row keys in first-seen order; missing cells become ""."""
    records = _as_dicts(rows)
    columns: List[str] = []
    seen = set()
    for rec in records:
        for key in rec:
            if key not in seen:
                seen.add(key)
                columns.append(key)
    df = pd.DataFrame(records, columns=columns, dtype=object)
    return df.where(df.notna(), "")


def export_excel(rows: Sequence[Any], path: str, *, sheet_name: str = "Results") -> Optional[str]:
    if not rows:
        _log_warn(f"nothing to export to {path}")
        return None
    df = rows_to_frame(rows)
    os.makedirs(os.path.dirname(os.path.abspath(path)), exist_ok=True)
    with pd.ExcelWriter(path, engine="openpyxl") as writer:
        df.to_excel(writer, sheet_name=sheet_name[:31], index=False)
    _log_step(f"wrote {len(df)} rows to {path}")
    return path


def export_csv(rows: Sequence[Any], path: str) -> Optional[str]:
    if not rows:
        _log_warn(f"nothing to export to {path}")
        return None
    df = rows_to_frame(rows)
    os.makedirs(os.path.dirname(os.path.abspath(path)), exist_ok=True)
    df.to_csv(path, index=False, encoding="utf-8")
    _log_step(f"wrote {len(df)} rows to {path}")
    return path


def export_rows(rows: Sequence[Any], *, out_dir: str, basename: str, sheet_name: str = "Results") -> List[str]:
    written = []
    xlsx = export_excel(rows, os.path.join(out_dir, f"{basename}.xlsx"), sheet_name=sheet_name)
    if xlsx:
        written.append(xlsx)
    csv_path = export_csv(rows, os.path.join(out_dir, f"{basename}.csv"))
    if csv_path:
        written.append(csv_path)
    return written
