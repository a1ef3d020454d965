import io
import logging
from datetime import datetime, timezone

from openpyxl import Workbook
from openpyxl.styles import Alignment, Border, Font, PatternFill, Side
from openpyxl.utils import get_column_letter

from lunamanager.services.business_entity_service import build_list_query

logger = logging.getLogger(__name__)

HEADER_FILL = PatternFill(start_color="354A5F", end_color="354A5F", fill_type="solid")
HEADER_FONT = Font(color="FFFFFF", bold=True, size=11)
THIN_BORDER = Border(
    left=Side(style="thin"),
    right=Side(style="thin"),
    top=Side(style="thin"),
    bottom=Side(style="thin"),
)
STATUS_FILLS = {
    "active": PatternFill(start_color="C6EFCE", end_color="C6EFCE", fill_type="solid"),
    "blocked": PatternFill(start_color="FFC7CE", end_color="FFC7CE", fill_type="solid"),
    "suspended": PatternFill(start_color="FFEB9C", end_color="FFEB9C", fill_type="solid"),
}

# (header, attribute)
ENTITY_COLUMNS = [
    ("Code", "entity_code"),
    ("Name", "name"),
    ("Type", "entity_type"),
    ("Category", "entity_category"),
    ("Status", "status"),
    ("Priority", "priority"),
    ("Industry", "industry"),
    ("Phone", "phone"),
    ("Email", "email"),
    ("City", "city"),
    ("Country", "country"),
    ("Tax Office", "tax_office"),
    ("Tax Number", "tax_number"),
    ("Currency", "default_currency"),
    ("Credit Limit", "credit_limit"),
    ("Payment Terms (days)", "payment_terms"),
    ("Primary Contact", "primary_contact_name"),
    ("Contact Email", "primary_contact_email"),
    ("Created", "created_at"),
]


def _apply_header_style(ws, row: int, col_count: int) -> None:
    for col in range(1, col_count + 1):
        cell = ws.cell(row=row, column=col)
        cell.fill = HEADER_FILL
        cell.font = HEADER_FONT
        cell.border = THIN_BORDER
        cell.alignment = Alignment(horizontal="center", vertical="center", wrap_text=True)


def _auto_width(ws) -> None:
    """Size columns to content (capped at 60 chars)."""
    for col in ws.columns:
        max_len = 0
        col_letter = get_column_letter(col[0].column)
        for cell in col:
            if cell.value:
                max_len = max(max_len, min(len(str(cell.value)), 60))
        ws.column_dimensions[col_letter].width = max(max_len + 4, 12)


def _cell_value(entity, attr):
    value = getattr(entity, attr)
    if isinstance(value, datetime):
        return value.strftime("%Y-%m-%d %H:%M")
    if value is not None and attr in ("credit_limit",):
        return float(value)
    return value


def export_business_entities_xlsx(workspace_id: int, company_id: int, filters: dict, view: str | None = None) -> bytes:
    """
    Build an .xlsx of the entities matching the list filters.

    Returns the workbook bytes, ready for a Flask Response.
    """
    entities = build_list_query(workspace_id, company_id, filters, view).all()

    wb = Workbook()
    ws = wb.active
    ws.title = {"customers": "Customers", "suppliers": "Suppliers"}.get(view, "Business Entities")

    ws["A1"] = ws.title
    ws["A1"].font = Font(size=16, bold=True, color="354A5F")
    ws["A2"] = f"Generated: {datetime.now(timezone.utc).strftime('%Y-%m-%d %H:%M UTC')} | {len(entities)} records"
    ws["A2"].font = Font(size=10, italic=True, color="666666")

    header_row = 4
    for col, (header, _) in enumerate(ENTITY_COLUMNS, start=1):
        ws.cell(row=header_row, column=col, value=header)
    _apply_header_style(ws, header_row, len(ENTITY_COLUMNS))

    status_col = [attr for _, attr in ENTITY_COLUMNS].index("status") + 1
    for row_i, entity in enumerate(entities, start=header_row + 1):
        for col, (_, attr) in enumerate(ENTITY_COLUMNS, start=1):
            cell = ws.cell(row=row_i, column=col, value=_cell_value(entity, attr))
            cell.border = THIN_BORDER
        fill = STATUS_FILLS.get(entity.status)
        if fill:
            ws.cell(row=row_i, column=status_col).fill = fill

    ws.freeze_panes = ws.cell(row=header_row + 1, column=1)
    _auto_width(ws)

    buf = io.BytesIO()
    wb.save(buf)
    buf.seek(0)
    logger.info("Exported %d business entities for company %s", len(entities), company_id)
    return buf.getvalue()
