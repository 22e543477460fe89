# app/utils/validators.py
"""
Input validation utilities for path parameters.
"""

import re

from fastapi import HTTPException, status

DROP_ID_PATTERN = re.compile(r'^drp_[a-z0-9]{12}$')


def validate_drop_id(drop_id: str) -> str:
    """
    Validate drop_id format before it reaches the database.

    Expected format: drp_[12 lowercase alphanumeric chars]
    Example: drp_3f9a0c1b2d4e

    Raises:
        HTTPException: If format is invalid
    """
    if not drop_id:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="drop_id is required"
        )

    if not DROP_ID_PATTERN.match(drop_id):
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Invalid drop_id format. Expected: drp_[12 alphanumeric chars]"
        )

    return drop_id
