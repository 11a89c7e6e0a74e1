"""
UserStore: dashboard accounts kept next to the logs.

Passwords are stored as bcrypt hashes. Hashing and checking are CPU-bound, so
they run in a worker thread and never stall the event loop (flushes and sweeps
keep going while a login is checked). Existing files written with $2a$ hashes
verify unchanged.
"""

import asyncio
import logging
import sqlite3
from typing import List, Optional

import bcrypt

from logkeeper.database import Database
from logkeeper.errors import AuthenticationError, DuplicateUserError, StorageError
from logkeeper.types import TableNames, User

logger = logging.getLogger(__name__)

DEFAULT_SALT_ROUNDS = 10

# Columns update_user_by_email() may change. id and hashed_password never.
UPDATABLE_FIELDS = ("name", "email", "role")

_USER_COLUMNS = "id, name, email, role"


async def hash_password(password: str, rounds: int = DEFAULT_SALT_ROUNDS) -> str:
    """bcrypt hash of *password*, as text."""
    hashed = await asyncio.to_thread(
        bcrypt.hashpw, password.encode("utf-8"), bcrypt.gensalt(rounds=rounds)
    )
    return hashed.decode("utf-8")


async def check_password(password: str, hashed: str) -> bool:
    """True if *password* matches the stored bcrypt *hashed*."""
    return await asyncio.to_thread(
        bcrypt.checkpw, password.encode("utf-8"), hashed.encode("utf-8")
    )


def _require(**values: Optional[str]) -> None:
    missing = [name for name, value in values.items() if not value]
    if missing:
        raise ValueError(f"missing required value(s): {', '.join(missing)}")


class UserStore:
    """CRUD and credential checks on the users table."""

    def __init__(
        self, db: Database, tables: TableNames, *, salt_rounds: int = DEFAULT_SALT_ROUNDS
    ) -> None:
        self._db = db
        self._table = tables.users
        self.salt_rounds = salt_rounds

    async def create_user(
        self, email: str, password: str, role: str, name: Optional[str] = None
    ) -> User:
        """Store a new user. Raises DuplicateUserError if the email is taken."""
        _require(email=email, password=password, role=role)
        hashed = await hash_password(password, self.salt_rounds)
        try:
            async with self._db.transaction() as tx:
                await tx.execute(
                    f"INSERT INTO {self._table} (name, email, hashed_password, role) "
                    "VALUES (?, ?, ?, ?)",
                    (name, email, hashed, role),
                )
                row = await tx.fetchone("SELECT last_insert_rowid() AS id")
        except StorageError as e:
            if isinstance(e.__cause__, sqlite3.IntegrityError):
                raise DuplicateUserError(
                    f"a user with email {email!r} already exists"
                ) from e
            raise
        logger.info("user %s created (role=%s)", email, role)
        return User(id=row["id"], name=name, email=email, role=role)

    async def verify_user(self, email: str, password: str) -> User:
        """The user for *email* if *password* matches; AuthenticationError otherwise."""
        _require(email=email, password=password)
        row = await self._db.fetchone(
            f"SELECT {_USER_COLUMNS}, hashed_password FROM {self._table} WHERE email = ?",
            (email,),
        )
        if row is None or not await check_password(password, row["hashed_password"]):
            logger.info("failed login for %s", email)
            raise AuthenticationError("invalid email or password")
        return User.from_row(row)

    async def get_user_count(self) -> int:
        row = await self._db.fetchone(f"SELECT COUNT(*) AS n FROM {self._table}")
        return row["n"] if row is not None else 0

    async def get_all_users(self) -> List[User]:
        rows = await self._db.fetchall(
            f"SELECT {_USER_COLUMNS} FROM {self._table} ORDER BY id"
        )
        return [User.from_row(row) for row in rows]

    async def get_user_by_email(self, email: str) -> User:
        """Raises KeyError if no user has *email*."""
        _require(email=email)
        row = await self._db.fetchone(
            f"SELECT {_USER_COLUMNS} FROM {self._table} WHERE email = ?", (email,)
        )
        if row is None:
            raise KeyError(email)
        return User.from_row(row)

    async def update_user_by_email(self, email: str, **updates: str) -> User:
        """
        Change name, email and/or role of the user with *email*. Any other field
        (id, hashed_password, unknown names) is rejected with ValueError.
        """
        _require(email=email)
        if not updates:
            raise ValueError("no updates given")
        unknown = sorted(set(updates) - set(UPDATABLE_FIELDS))
        if unknown:
            raise ValueError(f"fields cannot be updated: {', '.join(unknown)}")
        columns = [name for name in UPDATABLE_FIELDS if name in updates]
        assignments = ", ".join(f"{name} = ?" for name in columns)
        values = [updates[name] for name in columns]
        try:
            changed = await self._db.execute(
                f"UPDATE {self._table} SET {assignments} WHERE email = ?",
                (*values, email),
            )
        except StorageError as e:
            if isinstance(e.__cause__, sqlite3.IntegrityError):
                raise DuplicateUserError(
                    f"a user with email {updates.get('email')!r} already exists"
                ) from e
            raise
        if changed == 0:
            raise KeyError(email)
        return await self.get_user_by_email(updates.get("email") or email)

    async def update_password(
        self, email: str, current_password: str, new_password: str
    ) -> User:
        """Replace the password after checking the current one."""
        _require(new_password=new_password)
        user = await self.verify_user(email, current_password)
        hashed = await hash_password(new_password, self.salt_rounds)
        await self._db.execute(
            f"UPDATE {self._table} SET hashed_password = ? WHERE id = ?",
            (hashed, user.id),
        )
        logger.info("password changed for %s", email)
        return user

    async def delete_user(self, user_id: int) -> None:
        """Raises KeyError if no user has *user_id*."""
        deleted = await self._db.execute(
            f"DELETE FROM {self._table} WHERE id = ?", (user_id,)
        )
        if deleted == 0:
            raise KeyError(user_id)
        logger.info("user %d deleted", user_id)
