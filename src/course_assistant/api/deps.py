"""Request-scoped dependencies shared by the routers."""
from __future__ import annotations

from typing import Optional

from fastapi import Header

from ..errors import UnauthorizedError


def get_current_user_id(x_user_id: Optional[str] = Header(None)) -> str:
    """Identity is asserted by the fronting gateway in the ``X-User-Id`` header."""

    if not x_user_id or not x_user_id.strip():
        raise UnauthorizedError("Authentication required")
    return x_user_id.strip()
