from __future__ import annotations

"""
Admin accounts.

Passwords are stored as ``salt_hex:hash_hex`` using PBKDF2-HMAC-SHA512
(16-byte salt, 64-byte derived key, iteration count from ``SecurityConfig``).
"""

import hashlib
import hmac
import re
import secrets
import sqlite3
from typing import List, Optional

from ..clock import Clock, to_db, utcnow
from ..config import SecurityConfig
from ..errors import ConflictError, Forbidden, NotFound, Unauthorized, ValidationError
from ..logging import get_logger
from ..models.records import AdminAccount
from ..storage.sqlite import Database

log = get_logger(__name__)

USERNAME_MIN, USERNAME_MAX = 3, 50
PASSWORD_MIN = 6
_EMAIL_RE = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")


def hash_password(password: str, *, iterations: int, salt: Optional[bytes] = None) -> str:
    salt = salt or secrets.token_bytes(16)
    digest = hashlib.pbkdf2_hmac("sha512", password.encode("utf-8"), salt, iterations, dklen=64)
    return f"{salt.hex()}:{digest.hex()}"


def verify_password(password: str, stored: str, *, iterations: int) -> bool:
    try:
        salt_hex, hash_hex = stored.split(":", 1)
        salt = bytes.fromhex(salt_hex)
    except ValueError:
        return False
    candidate = hashlib.pbkdf2_hmac("sha512", password.encode("utf-8"), salt, iterations, dklen=64)
    return hmac.compare_digest(candidate.hex(), hash_hex)


def _check_username(value: Optional[str]) -> str:
    value = (value or "").strip()
    if not USERNAME_MIN <= len(value) <= USERNAME_MAX:
        raise ValidationError(
            f"username must be {USERNAME_MIN}-{USERNAME_MAX} characters",
            details={"field": "username"},
        )
    return value


def _check_password(value: Optional[str]) -> str:
    if not value or len(value) < PASSWORD_MIN:
        raise ValidationError(f"password must be at least {PASSWORD_MIN} characters", details={"field": "password"})
    return value


def _check_email(value: Optional[str]) -> Optional[str]:
    value = (value or "").strip()
    if not value:
        return None
    if not _EMAIL_RE.match(value):
        raise ValidationError("email is not valid", details={"field": "email"})
    return value.lower()


class AdminStore:
    def __init__(self, db: Database, config: Optional[SecurityConfig] = None, *, clock: Clock = utcnow) -> None:
        self.db = db
        self.config = config or SecurityConfig()
        self.clock = clock

    def count(self) -> int:
        return self.db.fetch_one("SELECT COUNT(*) AS n FROM admins")["n"]

    def get(self, admin_id: int) -> Optional[AdminAccount]:
        row = self.db.fetch_one("SELECT * FROM admins WHERE id = ?", (admin_id,))
        return AdminAccount.from_row(row) if row else None

    def list(self) -> List[AdminAccount]:
        return [AdminAccount.from_row(r) for r in self.db.fetch_all("SELECT * FROM admins ORDER BY id")]

    def register(
        self,
        username: str,
        password: str,
        email: Optional[str] = None,
        qq_number: Optional[str] = None,
    ) -> AdminAccount:
        username = _check_username(username)
        password = _check_password(password)
        email = _check_email(email)
        pw_hash = hash_password(password, iterations=self.config.password_iterations)
        now = to_db(self.clock())
        try:
            with self.db.transaction() as conn:
                cur = conn.execute(
                    """
                    INSERT INTO admins (username, password_hash, email, qq_number, created_at, updated_at)
                    VALUES (?, ?, ?, ?, ?, ?)
                    """,
                    (username, pw_hash, email, (qq_number or "").strip() or None, now, now),
                )
                row = conn.execute("SELECT * FROM admins WHERE id = ?", (cur.lastrowid,)).fetchone()
        except sqlite3.IntegrityError as e:
            raise ConflictError("Username or email already registered") from e
        admin = AdminAccount.from_row(row)
        log.info("admin_registered", admin_id=admin.id, username=admin.username)
        return admin

    def authenticate(self, username: str, password: str) -> Optional[AdminAccount]:
        row = self.db.fetch_one("SELECT * FROM admins WHERE username = ?", ((username or "").strip(),))
        if row is None or not verify_password(password or "", row["password_hash"], iterations=self.config.password_iterations):
            log.info("admin_login_failed", username=username)
            return None
        self.db.execute("UPDATE admins SET last_login_at = ? WHERE id = ?", (to_db(self.clock()), row["id"]))
        return self.get(row["id"])

    def update_profile(
        self,
        admin_id: int,
        *,
        username: Optional[str] = None,
        email: Optional[str] = None,
    ) -> AdminAccount:
        sets, params = [], []
        if username is not None:
            sets.append("username = ?")
            params.append(_check_username(username))
        if email is not None:
            sets.append("email = ?")
            params.append(_check_email(email))
        if sets:
            try:
                cur = self.db.execute(
                    f"UPDATE admins SET {', '.join(sets)}, updated_at = ? WHERE id = ?",
                    [*params, to_db(self.clock()), admin_id],
                )
            except sqlite3.IntegrityError as e:
                raise ConflictError("Username or email already in use") from e
            if cur.rowcount == 0:
                raise NotFound("Admin")
        admin = self.get(admin_id)
        if admin is None:
            raise NotFound("Admin")
        return admin

    def change_password(self, admin_id: int, current: str, new: str) -> None:
        admin = self.get(admin_id)
        if admin is None:
            raise NotFound("Admin")
        if not verify_password(current or "", admin.password_hash, iterations=self.config.password_iterations):
            raise Unauthorized("Current password is incorrect")
        pw_hash = hash_password(_check_password(new), iterations=self.config.password_iterations)
        self.db.execute(
            "UPDATE admins SET password_hash = ?, updated_at = ? WHERE id = ?",
            (pw_hash, to_db(self.clock()), admin_id),
        )
        log.info("admin_password_changed", admin_id=admin_id)

    def delete(self, admin_id: int, *, acting_id: int) -> None:
        if admin_id == acting_id:
            raise Forbidden("Cannot delete your own account")
        with self.db.transaction() as conn:
            if conn.execute("SELECT 1 FROM admins WHERE id = ?", (admin_id,)).fetchone() is None:
                raise NotFound("Admin")
            if conn.execute("SELECT COUNT(*) FROM admins").fetchone()[0] <= 1:
                raise Forbidden("Cannot delete the last admin")
            conn.execute("DELETE FROM admins WHERE id = ?", (admin_id,))
        log.info("admin_deleted", admin_id=admin_id, by=acting_id)


__all__ = ["AdminStore", "hash_password", "verify_password"]
