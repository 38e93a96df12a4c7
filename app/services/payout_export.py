from __future__ import annotations

from datetime import datetime, timezone
from io import BytesIO

from openpyxl import Workbook
from openpyxl.styles import Alignment, Border, Font, PatternFill, Side
from openpyxl.utils import get_column_letter
from openpyxl.worksheet.worksheet import Worksheet
from sqlalchemy.orm import Session

from app.models import PayoutSnapshot
from app.services.billing_cycle import BillingCycle
from app.services.payouts import list_payout_snapshots

PAYOUT_HEADERS = [
    "User ID",
    "Name",
    "Output Score",
    "Availability Score",
    "Stability Score",
    "Working Days",
    "Base (INR)",
    "Expected Payout (INR)",
    "Difference (INR)",
    "Snapshot Date (UTC)",
]
SCORE_COLUMNS = range(3, 6)
MONEY_COLUMNS = range(7, 10)

HEADER_FILL = PatternFill(fill_type="solid", fgColor="0B4F73")
ZEBRA_FILL = PatternFill(fill_type="solid", fgColor="F7FBFE")
ALERT_FILL = PatternFill(fill_type="solid", fgColor="FDE2E4")
SUMMARY_FILL = PatternFill(fill_type="solid", fgColor="E9F1F7")

HEADER_FONT = Font(bold=True, color="FFFFFF")
BOLD_FONT = Font(bold=True, color="0F172A")
TITLE_FONT = Font(bold=True, color="0B4F73", size=14)

THIN_SIDE = Side(style="thin", color="D5E2EC")
THIN_BORDER = Border(left=THIN_SIDE, right=THIN_SIDE, top=THIN_SIDE, bottom=THIN_SIDE)

TITLE_ROW = 1
HEADER_ROW = 3


def _to_excel_datetime(value: datetime | None) -> datetime | None:
    # openpyxl rejects tz-aware datetimes.
    if value is None or value.tzinfo is None:
        return value
    return value.astimezone(timezone.utc).replace(tzinfo=None)


def _style_header(ws: Worksheet, row: int) -> None:
    for cell in ws[row]:
        cell.font = HEADER_FONT
        cell.fill = HEADER_FILL
        cell.alignment = Alignment(horizontal="center", vertical="center", wrap_text=True)
        cell.border = THIN_BORDER


def _auto_width(ws: Worksheet) -> None:
    for column_cells in ws.iter_cols(min_row=HEADER_ROW, max_row=ws.max_row, min_col=1, max_col=ws.max_column):
        max_len = 0
        col_letter = get_column_letter(column_cells[0].column)
        for cell in column_cells:
            value = "" if cell.value is None else str(cell.value)
            max_len = max(max_len, len(value))
        ws.column_dimensions[col_letter].width = min(max_len + 2, 45)


def _append_snapshot_row(ws: Worksheet, snapshot: PayoutSnapshot, *, zebra: bool) -> None:
    ws.append(
        [
            snapshot.user_id,
            snapshot.user.name if snapshot.user is not None else "",
            snapshot.monthly_output_score,
            snapshot.availability_score,
            snapshot.stability_score,
            snapshot.working_days_in_cycle,
            snapshot.base_compensation_inr,
            snapshot.expected_payout_inr,
            snapshot.difference_inr,
            _to_excel_datetime(snapshot.snapshot_date),
        ]
    )
    row = ws.max_row
    for column in range(1, len(PAYOUT_HEADERS) + 1):
        cell = ws.cell(row=row, column=column)
        cell.border = THIN_BORDER
        if zebra:
            cell.fill = ZEBRA_FILL
        if column in SCORE_COLUMNS:
            cell.number_format = "0.00"
        elif column in MONEY_COLUMNS:
            cell.number_format = "#,##0.00"
    if snapshot.difference_inr < 0:
        ws.cell(row=row, column=9).fill = ALERT_FILL
    ws.cell(row=row, column=10).number_format = "yyyy-mm-dd hh:mm"


def _append_totals_row(ws: Worksheet, snapshots: list[PayoutSnapshot]) -> None:
    ws.append(
        [
            "Total",
            f"{len(snapshots)} users",
            None,
            None,
            None,
            None,
            sum(item.base_compensation_inr for item in snapshots),
            sum(item.expected_payout_inr for item in snapshots),
            sum(item.difference_inr for item in snapshots),
            None,
        ]
    )
    row = ws.max_row
    for column in range(1, len(PAYOUT_HEADERS) + 1):
        cell = ws.cell(row=row, column=column)
        cell.font = BOLD_FONT
        cell.fill = SUMMARY_FILL
        cell.border = THIN_BORDER
        if column in MONEY_COLUMNS:
            cell.number_format = "#,##0.00"


def build_payout_xlsx_bytes(db: Session, *, cycle: BillingCycle) -> bytes:
    snapshots = list_payout_snapshots(db, cycle=cycle)

    wb = Workbook()
    ws = wb.active
    ws.title = "Payouts"

    ws.merge_cells(start_row=TITLE_ROW, start_column=1, end_row=TITLE_ROW, end_column=len(PAYOUT_HEADERS))
    title_cell = ws.cell(row=TITLE_ROW, column=1, value=f"Payout snapshots - {cycle.label}")
    title_cell.font = TITLE_FONT
    title_cell.alignment = Alignment(horizontal="left", vertical="center")

    for column, header in enumerate(PAYOUT_HEADERS, start=1):
        ws.cell(row=HEADER_ROW, column=column, value=header)
    _style_header(ws, HEADER_ROW)

    for index, snapshot in enumerate(snapshots):
        _append_snapshot_row(ws, snapshot, zebra=index % 2 == 1)
    if snapshots:
        _append_totals_row(ws, snapshots)

    ws.freeze_panes = ws.cell(row=HEADER_ROW + 1, column=1)
    _auto_width(ws)

    stream = BytesIO()
    wb.save(stream)
    return stream.getvalue()
