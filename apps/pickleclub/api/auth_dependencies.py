"""
Authentication dependencies for administrative routes.
"""

import secrets
from typing import Optional

from fastapi import Header, HTTPException, status

from pickleclub.utils import constants


async def require_staff_token(
    x_admin_token: Optional[str] = Header(default=None, alias="X-Admin-Token"),
) -> str:
    """Require the shared staff token configured in OPEN_PLAY_ADMIN_TOKEN."""
    expected = constants.OPEN_PLAY_ADMIN_TOKEN
    if not expected:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Administrative open play routes are not configured",
        )
    if not x_admin_token or not secrets.compare_digest(x_admin_token, expected):
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Staff access required")
    return x_admin_token
