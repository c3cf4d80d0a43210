"""Excel export of the currently filtered records.

Records are partitioned by kind into one sheet each.  Every sheet ends with a
summary row holding the record count and the monetary grand total.
"""
from __future__ import annotations

import logging
from pathlib import Path
from typing import Iterable, Optional

import pandas as pd
from openpyxl.utils import get_column_letter

from .models import SYSTEM_OPERATOR, Transaction, TransactionKind

logger = logging.getLogger(__name__)

SHEET_ORDER: tuple[TransactionKind, ...] = (
    TransactionKind.INBOUND,
    TransactionKind.USAGE,
    TransactionKind.CONSTRUCTION,
    TransactionKind.REPAIR,
)

LEDGER_COLUMNS: tuple[str, ...] = (
    "id", "日期", "類別", "料件名稱", "料件編號(PN)", "機台編號", "數量", "單價",
    "總額", "備註", "機台種類", "帳目類別", "操作人員",
)
REPAIR_COLUMNS: tuple[str, ...] = (
    "id", "單據日期", "類別", "料件名稱", "料件編號(PN)", "機台編號", "設備序號(SN)",
    "故障原因", "數量", "總額", "送修日期", "完修日期", "備註", "上機日期", "操作人員",
)
COLUMN_WIDTHS: tuple[int, ...] = (15, 12, 10, 25, 20, 15, 10, 12, 15)
SUMMARY_ID = "---"


def _ledger_row(tx: Transaction) -> dict[str, object]:
    return {
        "id": tx.id,
        "日期": tx.date,
        "類別": tx.kind.value,
        "料件名稱": tx.material_name,
        "料件編號(PN)": tx.material_number,
        "機台編號": tx.machine_number,
        "數量": tx.quantity,
        "單價": tx.unit_price,
        "總額": tx.total,
        "備註": tx.note,
        "機台種類": tx.machine_category,
        "帳目類別": tx.account_category,
        "操作人員": tx.operator or SYSTEM_OPERATOR,
    }


def _repair_row(tx: Transaction) -> dict[str, object]:
    return {
        "id": tx.id,
        "單據日期": tx.date,
        "類別": tx.kind.value,
        "料件名稱": tx.material_name,
        "料件編號(PN)": tx.material_number,
        "機台編號": tx.machine_number,
        "設備序號(SN)": tx.sn,
        "故障原因": tx.fault_reason,
        "數量": tx.quantity,
        "總額": tx.total,
        "送修日期": tx.sent_date,
        "完修日期": tx.repair_date,
        "備註": tx.note,
        "上機日期": tx.install_date,
        "操作人員": tx.operator or SYSTEM_OPERATOR,
    }


def build_report_frames(records: Iterable[Transaction]) -> dict[str, pd.DataFrame]:
    """Return one DataFrame per non-empty kind, keyed by the kind label."""

    records = list(records)
    frames: dict[str, pd.DataFrame] = {}
    for kind in SHEET_ORDER:
        items = [tx for tx in records if tx.kind is kind]
        if not items:
            continue
        grand_total = sum(tx.total for tx in items)
        if kind is TransactionKind.REPAIR:
            columns = REPAIR_COLUMNS
            rows = [_repair_row(tx) for tx in items]
            rows.append(
                {
                    "id": SUMMARY_ID,
                    "單據日期": "總計",
                    "總額": grand_total,
                    "備註": f"共計 {len(items)} 筆維修案件",
                }
            )
        else:
            columns = LEDGER_COLUMNS
            rows = [_ledger_row(tx) for tx in items]
            rows.append(
                {
                    "id": SUMMARY_ID,
                    "日期": "★ 總計 ★",
                    "料件名稱": f"項目共計 {len(items)} 筆",
                    "總額": grand_total,
                    "備註": f"{kind.value} 結算總金額",
                }
            )
        frames[kind.value] = pd.DataFrame.from_records(rows, columns=list(columns)).fillna("")
    return frames


def export_report(
    records: Iterable[Transaction],
    filename: str,
    output_dir: Path,
    current_date: str,
) -> Optional[Path]:
    """Write ``<filename>_<date>.xlsx`` and return its path.

    Returns ``None`` without touching the filesystem when there is nothing to
    export.
    """

    frames = build_report_frames(records)
    if not frames:
        logger.info("Nothing to export for %s", filename)
        return None

    output_dir.mkdir(parents=True, exist_ok=True)
    path = output_dir / f"{filename}_{current_date}.xlsx"
    with pd.ExcelWriter(path, engine="openpyxl") as writer:
        for sheet_name, frame in frames.items():
            frame.to_excel(writer, sheet_name=sheet_name, index=False)
            worksheet = writer.sheets[sheet_name]
            for index, width in enumerate(COLUMN_WIDTHS, start=1):
                worksheet.column_dimensions[get_column_letter(index)].width = width
    logger.info("Exported %d sheet(s) to %s", len(frames), path)
    return path


__all__ = ["LEDGER_COLUMNS", "REPAIR_COLUMNS", "build_report_frames", "export_report"]
