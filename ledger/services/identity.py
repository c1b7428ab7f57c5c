"""
Identity Manager

Registration, login and lookup of users on top of the keyed store.

Passwords are stored as a single SHA-256 hex digest. That is a
deliberate simplification for a single-machine store, not a hardened
password scheme.
"""

import hashlib
import random
import string
from datetime import datetime
from typing import Any, Optional

from ledger.audit import AuditLogger
from ledger.clock import Clock, SystemClock
from ledger.errors import (
    InvalidPassword,
    UserNotFound,
    UsernameTaken,
    ValidationError,
)
from ledger.models.audit import AuditEventBuilder
from ledger.models.ledger import User, UserAccount
from ledger.services.storage import (
    Collection,
    ConstraintViolation,
    KeyedStoreInterface,
)


BASE36_ALPHABET = string.digits + string.ascii_uppercase

# Fields a caller may change through update_fields
UPDATABLE_FIELDS = frozenset({"login_time", "avatar"})


def hash_password(password: str) -> str:
    """Deterministic one-way digest of a password."""
    return hashlib.sha256(password.encode("utf-8")).hexdigest()


def to_base36(value: int) -> str:
    if value == 0:
        return "0"
    digits = []
    while value:
        value, remainder = divmod(value, 36)
        digits.append(BASE36_ALPHABET[remainder])
    return "".join(reversed(digits))


def generate_user_id(now: datetime, rng: Optional[random.Random] = None) -> str:
    """
    Human-readable user id: USR- followed by 6 random base-36 characters
    and the last 4 base-36 digits of the millisecond timestamp.

    Unique enough for one local store; not a cryptographic identifier.
    """
    rng = rng or random.Random()
    random_segment = "".join(rng.choice(BASE36_ALPHABET) for _ in range(6))
    time_segment = to_base36(int(now.timestamp() * 1000))[-4:]
    return f"USR-{random_segment}{time_segment}"


class IdentityManager:
    """Users: register, log in, look up, update, and check existence."""

    def __init__(
        self,
        store: KeyedStoreInterface,
        clock: Optional[Clock] = None,
        audit_logger: Optional[AuditLogger] = None,
    ):
        self._store = store
        self._clock = clock or SystemClock()
        self._audit_logger = audit_logger

    async def _load_account(self, username: str) -> Optional[UserAccount]:
        record = await self._store.get(Collection.USERS, username)
        return UserAccount.model_validate(record) if record else None

    async def register(self, username: str, password: str) -> User:
        """
        Create a new user.

        Raises:
            ValidationError: If username or password is empty
            UsernameTaken: If the username is already registered
        """
        username = (username or "").strip()
        if not username or not password:
            raise ValidationError("Username and password are required")

        now = self._clock.now()
        account = UserAccount(
            username=username,
            password_hash=hash_password(password),
            user_id=generate_user_id(now),
            created_at=now,
            login_time=now,
            avatar=None,
        )

        try:
            await self._store.add(Collection.USERS, account.model_dump(mode="json"))
        except ConstraintViolation as e:
            raise UsernameTaken() from e

        if self._audit_logger:
            await self._audit_logger.log(
                AuditEventBuilder.user_registered(account.user_id, username)
            )
        return account.to_public()

    async def login(self, username: str, password: str) -> User:
        """
        Check credentials and stamp the login time.

        Raises:
            UserNotFound: If no user has this username
            InvalidPassword: If the password digest does not match
        """
        account = await self._load_account((username or "").strip())
        if account is None:
            if self._audit_logger:
                await self._audit_logger.log(
                    AuditEventBuilder.login_failed(username, "user_not_found")
                )
            raise UserNotFound()

        if account.password_hash != hash_password(password or ""):
            if self._audit_logger:
                await self._audit_logger.log(
                    AuditEventBuilder.login_failed(username, "invalid_password")
                )
            raise InvalidPassword()

        account.login_time = self._clock.now()
        await self._store.put(Collection.USERS, account.model_dump(mode="json"))

        if self._audit_logger:
            await self._audit_logger.log(
                AuditEventBuilder.user_logged_in(account.user_id, account.username)
            )
        return account.to_public()

    async def get_by_username(self, username: str) -> Optional[User]:
        account = await self._load_account(username)
        return account.to_public() if account else None

    async def update_fields(self, username: str, fields: dict[str, Any]) -> User:
        """
        Merge profile fields into a user record.

        Only the login time and avatar can change; identity fields
        (username, user id, password digest) cannot.

        Raises:
            ValidationError: If a field outside the updatable set is given
            UserNotFound: If no user has this username
        """
        unknown = set(fields) - UPDATABLE_FIELDS
        if unknown:
            raise ValidationError(f"Cannot update fields: {', '.join(sorted(unknown))}")

        account = await self._load_account(username)
        if account is None:
            raise UserNotFound()

        merged = UserAccount.model_validate({**account.model_dump(), **fields})
        await self._store.put(Collection.USERS, merged.model_dump(mode="json"))
        return merged.to_public()

    async def user_id_exists(self, user_id: str) -> bool:
        """Existence check through the unique user_id index."""
        if not user_id:
            return False
        record = await self._store.get_one_by_index(Collection.USERS, "user_id", user_id)
        return record is not None
