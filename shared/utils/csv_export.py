"""
shared/utils/csv_export.py
CSV rendering for admin exports.
"""

import csv
import io
from datetime import date, datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Any, Iterable, Sequence

from fastapi.responses import StreamingResponse

AGENT_COLUMNS = [
    "Company", "Contact", "Email", "Status", "Subscription",
    "Revenue", "Packages", "Bookings", "Join_Date",
]
PACKAGE_COLUMNS = [
    "Title", "Agent", "Destination", "Price", "Status",
    "Published", "Bookings", "Submitted",
]
BOOKING_COLUMNS = [
    "Booking_ID", "Package", "Customer", "Email", "Travel_Date",
    "Travelers", "Amount", "Status", "Created",
]


def _cell(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, Enum):
        return str(value.value)
    if isinstance(value, datetime):
        return value.date().isoformat()
    if isinstance(value, date):
        return value.isoformat()
    if isinstance(value, Decimal):
        return f"{value:.2f}"
    return str(value)


def render_csv(columns: Sequence[str], rows: Iterable[Sequence[Any]]) -> str:
    """One header row, then one line per row. Quoting follows RFC 4180."""
    buffer = io.StringIO()
    writer = csv.writer(buffer, lineterminator="\r\n")
    writer.writerow(columns)
    for row in rows:
        if len(row) != len(columns):
            raise ValueError(f"Row has {len(row)} values, expected {len(columns)}")
        writer.writerow([_cell(v) for v in row])
    return buffer.getvalue()


def csv_response(kind: str, columns: Sequence[str], rows: Iterable[Sequence[Any]]) -> StreamingResponse:
    filename = f"{kind}-{datetime.now(timezone.utc).date().isoformat()}.csv"
    return StreamingResponse(
        io.BytesIO(render_csv(columns, rows).encode("utf-8")),
        media_type="text/csv",
        headers={"Content-Disposition": f"attachment; filename={filename}"},
    )
