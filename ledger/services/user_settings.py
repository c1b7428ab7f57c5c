"""Per-user settings records (owe limit, currency, the legacy import flag)."""

from typing import Any, Optional

from ledger.clock import Clock, SystemClock
from ledger.errors import ValidationError
from ledger.models.ledger import UserSettings
from ledger.services.storage import Collection, KeyedStoreInterface


class UserSettingsStore:
    """One settings record per user id, merged on every save."""

    def __init__(
        self,
        store: KeyedStoreInterface,
        clock: Optional[Clock] = None,
        default_currency: str = "INR",
    ):
        self._store = store
        self._clock = clock or SystemClock()
        self._default_currency = default_currency.upper()

    async def get(self, user_id: str) -> UserSettings:
        """The stored settings, or an empty record if none were saved."""
        record = await self._store.get(Collection.SETTINGS, user_id)
        if record is None:
            return UserSettings(user_id=user_id)
        return UserSettings.model_validate(record)

    async def currency(self, user_id: str) -> str:
        """The user's chosen currency code, else the configured default."""
        return (await self.get(user_id)).currency or self._default_currency

    async def save(self, user_id: str, **fields: Any) -> UserSettings:
        """
        Merge `fields` into the user's settings and stamp `updated_at`.

        Passing a field as None clears it.
        """
        if not user_id:
            raise ValidationError("A user id is required")
        if "user_id" in fields:
            raise ValidationError("Settings cannot be moved to another user")

        current = await self.get(user_id)
        merged = UserSettings.model_validate({
            **current.model_dump(),
            **fields,
            "updated_at": self._clock.now(),
        })
        await self._store.put(Collection.SETTINGS, merged.model_dump(mode="json"))
        return merged
