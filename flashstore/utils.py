import html
import math
from decimal import ROUND_HALF_UP, Decimal
from typing import Optional

import bleach
from sqlalchemy import func, select
from sqlalchemy.orm import Session

from .schemas import Pagination


def sanitize_input(value: Optional[str]) -> str:
    """Clean a user-supplied string before it is stored or searched.

    - Removes NULL bytes
    - Strips HTML tags using bleach.clean(..., strip=True)
    - Turns the entities bleach leaves behind back into plain characters
    - Trims whitespace
    """
    if value is None:
        return ""
    val = value.replace("\x00", "")
    val = bleach.clean(val, tags=set(), strip=True)
    # the API speaks JSON, not HTML: "Tom > Jerry" and "Ratchet & Clank" stay as typed
    val = html.unescape(val)
    return val.strip()


def search_pattern(term: Optional[str]) -> Optional[str]:
    """Build an ILIKE pattern for a substring search, or None for "no filter".

    A blank term behaves exactly like an omitted one. ``%`` and ``_`` typed by
    the caller are matched literally (escape character is a backslash).
    """
    term = sanitize_input(term)
    if not term:
        return None
    escaped = term.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")
    return f"%{escaped}%"


def round_gb(value) -> Decimal:
    # sizes are kept with 2 decimals, rounded half up
    return Decimal(str(value)).quantize(Decimal("0.01"), rounding=ROUND_HALF_UP)


def format_gb(value) -> str:
    """Human form of a size: 7.50 -> "7.5", 7.00 -> "7.0"."""
    text = f"{round_gb(value):.2f}".rstrip("0")
    if text.endswith("."):
        text += "0"
    return text


def build_pagination(page: int, limit: int, total: int) -> Pagination:
    total_pages = math.ceil(total / limit) if limit else 0
    return Pagination(
        current_page=page,
        total_pages=total_pages,
        total_items=total,
        items_per_page=limit,
        has_next_page=page < total_pages,
        has_prev_page=page > 1,
    )


def paginate(db: Session, stmt, page: int, limit: int):
    """Run ``stmt`` for one 1-based page and count the full filtered result."""
    count_stmt = select(func.count()).select_from(stmt.order_by(None).subquery())
    total = db.execute(count_stmt).scalar_one()
    rows = db.execute(stmt.limit(limit).offset((page - 1) * limit)).unique().scalars().all()
    return rows, build_pagination(page, limit, total)
