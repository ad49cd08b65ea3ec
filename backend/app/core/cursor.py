"""
Pagination cursors.

A cursor is a signed token carrying the last-seen sort values and id of a
page, the sort mode it was issued for, and a fingerprint of the filter set.
Anything that does not verify (garbage, tampering, a cursor from another
search) decodes to None so the caller restarts from the first page.
"""

import logging
from typing import Optional, List, Any, Tuple

from jose import JWTError, jwt

logger = logging.getLogger(__name__)


def encode_cursor(
    sort: str,
    fingerprint: str,
    values: List[Any],
    row_id: str,
    secret: str,
    algorithm: str = "HS256",
) -> str:
    payload = {
        "s": sort,
        "f": fingerprint,
        "v": values,
        "id": str(row_id),
    }
    return jwt.encode(payload, secret, algorithm=algorithm)


def decode_cursor(
    token: str,
    sort: str,
    fingerprint: str,
    secret: str,
    algorithm: str = "HS256",
) -> Optional[Tuple[List[Any], str]]:
    """Return (values, id) for a cursor issued for this search, else None."""
    try:
        payload = jwt.decode(token, secret, algorithms=[algorithm])
    except JWTError:
        logger.info("Ignoring unverifiable cursor, restarting from first page")
        return None

    if payload.get("s") != sort or payload.get("f") != fingerprint:
        logger.info("Ignoring cursor issued for a different search")
        return None

    values = payload.get("v")
    row_id = payload.get("id")
    if not isinstance(values, list) or not row_id:
        return None
    return values, row_id
