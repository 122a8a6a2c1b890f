"""Offset pagination shared by the list endpoints."""
from __future__ import annotations

import math
from typing import Any

from sqlmodel import Session, func, select


def paginate(session: Session, stmt, page: int, limit: int) -> tuple[list[Any], dict]:
    """
    Run ``stmt`` for one page and count the full result.

    Returns ``(rows, pagination)`` where ``pagination`` is the
    ``{currentPage, totalPages, totalItems, itemsPerPage}`` block of the
    list envelope.
    """
    page = max(page, 1)
    limit = max(limit, 1)
    total = session.exec(select(func.count()).select_from(stmt.subquery())).one()
    rows = session.exec(stmt.offset((page - 1) * limit).limit(limit)).all()
    return list(rows), {
        "currentPage": page,
        "totalPages": math.ceil(total / limit) if total else 0,
        "totalItems": total,
        "itemsPerPage": limit,
    }
