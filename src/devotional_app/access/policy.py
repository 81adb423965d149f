#!filepath: src/devotional_app/access/policy.py
from __future__ import annotations

import sqlite3
from dataclasses import dataclass

from devotional_app.errors import AccessDenied
from devotional_app.utils.logger import get_logger

logger = get_logger(__name__)


def is_admin(conn: sqlite3.Connection, user_id: str) -> bool:
    """Trusted admin lookup.

    Reads user_profiles directly, outside the ownership checks, so checking
    admin status never depends on the policy it grants.

    Args:
        conn: Open connection.
        user_id: User to check.

    Returns:
        bool: Whether the user has the admin flag.
    """
    row = conn.execute(
        "SELECT 1 FROM user_profiles WHERE id = ? AND is_admin = 1 LIMIT 1;",
        (str(user_id),),
    ).fetchone()
    return row is not None


@dataclass(frozen=True, slots=True)
class Caller:
    """Authenticated identity performing an operation.

    Attributes:
        user_id: Caller's user id.
        is_admin: Admin capability, resolved once by the trusted lookup.
    """

    user_id: str
    is_admin: bool = False

    @classmethod
    def resolve(cls, conn: sqlite3.Connection, user_id: str) -> Caller:
        return cls(user_id=str(user_id), is_admin=is_admin(conn, user_id))

    def owns(self, owner_id: str) -> bool:
        return str(owner_id) == self.user_id


def require_owner(
    caller: Caller, owner_id: str, table: str, action: str = "modify"
) -> None:
    """Only the owner touches its rows, admins included.

    Raises:
        AccessDenied: If the caller does not own the rows.
    """
    if not caller.owns(owner_id):
        logger.warning(
            f"Owner check failed, action={action}, table={table}, caller={caller.user_id}, owner={owner_id}"
        )
        raise AccessDenied(f"Cannot {action} {table} rows of another user")


def require_read(caller: Caller, owner_id: str, table: str) -> None:
    """Owners read their rows; admins read everyone's.

    Raises:
        AccessDenied: If the caller is neither owner nor admin.
    """
    if caller.owns(owner_id) or caller.is_admin:
        return
    logger.warning(
        f"Read denied, table={table}, caller={caller.user_id}, owner={owner_id}"
    )
    raise AccessDenied(f"Cannot read {table} rows of another user")


def require_admin(caller: Caller, action: str) -> None:
    if not caller.is_admin:
        logger.warning(f"Admin action denied, action={action}, caller={caller.user_id}")
        raise AccessDenied(f"Access denied: admin privileges required for {action}")
