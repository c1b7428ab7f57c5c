"""
Main Orchestrator for Split Ledger

This module ties together all the components and defines the
end-to-end flows for:
1. Access (register / login → an explicit LedgerSession)
2. Session start (legacy import once → recurring materialization)
3. Recording entries (transaction → optional recurring rule)

DESIGN DECISION: There is no ambient "current user". Every flow runs
against a LedgerSession value that carries the logged-in user, and every
service call passes that user's id explicitly.
"""

from datetime import date
from typing import Optional, Sequence

import structlog

from ledger.audit import AuditLogger, configure_logging
from ledger.clock import Clock, IdGenerator, SystemClock, UUIDGenerator
from ledger.config import Settings, get_settings
from ledger.models.ledger import (
    Counterparty,
    LedgerSummary,
    SessionReport,
    SplitDirection,
    SplitMode,
    SplitResult,
    Transaction,
    TransactionFilter,
    User,
)
from ledger.services.identity import IdentityManager
from ledger.services.ledger_store import LedgerStore
from ledger.services.migration import LegacyImporter
from ledger.services.recurrence import OnMaterialized, RecurrenceEngine
from ledger.services.splits import AmountLike, SplitLedger
from ledger.services.storage import FallbackCache, KeyedStoreInterface, SQLiteKeyedStore
from ledger.services.user_settings import UserSettingsStore


logger = structlog.get_logger(__name__)


class LedgerSession:
    """
    The logged-in user plus the services acting on their behalf.

    Created by LedgerApp.login / LedgerApp.register. Holds no state of
    its own beyond the user; everything else lives in the store.
    """

    def __init__(
        self,
        user: User,
        ledger: LedgerStore,
        recurrence: RecurrenceEngine,
        splits: SplitLedger,
        importer: LegacyImporter,
        user_settings: UserSettingsStore,
    ):
        self._user = user
        self._user_settings = user_settings
        self._ledger = ledger
        self._recurrence = recurrence
        self._splits = splits
        self._importer = importer

    @property
    def user(self) -> User:
        return self._user

    @property
    def user_id(self) -> str:
        return self._user.user_id

    async def start(self, on_materialized: Optional[OnMaterialized] = None) -> SessionReport:
        """
        Run the start-of-session work: the one-time legacy import, then
        this month's recurring entries.
        """
        legacy_import = await self._importer.run(self.user_id)
        recurrence = await self._recurrence.run(self.user_id, on_materialized)

        report = SessionReport(legacy_import=legacy_import, recurrence=recurrence)
        logger.info(
            "session_started",
            user_id=self.user_id,
            imported=legacy_import.imported,
            materialized=len(recurrence.materialized),
            failed_rules=len(recurrence.failed_rule_ids),
        )
        return report

    # -------------------------------------------------------------------------
    # Transactions
    # -------------------------------------------------------------------------

    async def record_transaction(self, transaction: Transaction) -> Transaction:
        """
        Save a transaction; if it is new and flagged recurring, also create
        the rule that repeats it from next month on.

        Edits of an existing entry, including entries the recurrence engine
        materialized, never register another rule.
        """
        is_new = not transaction.id or await self._ledger.get(self.user_id, transaction.id) is None
        saved = await self._ledger.save(self.user_id, transaction)
        if saved.is_recurring and is_new:
            await self._recurrence.register_rule_from_transaction(self.user_id, saved)
        return saved

    async def transactions(self, filter: Optional[TransactionFilter] = None) -> list[Transaction]:
        return await self._ledger.query(self.user_id, filter)

    async def delete_transaction(self, transaction_id: str) -> None:
        await self._ledger.delete(self.user_id, transaction_id)

    async def summary(self) -> LedgerSummary:
        return await self._ledger.summarize(self.user_id)

    async def currency(self) -> str:
        return await self._user_settings.currency(self.user_id)

    # -------------------------------------------------------------------------
    # Splits
    # -------------------------------------------------------------------------

    async def split(
        self,
        title: str,
        total_amount: AmountLike,
        split_date: date,
        counterparties: Sequence[Counterparty],
        direction: SplitDirection = SplitDirection.COUNTERPARTIES_OWE_YOU,
        mode: SplitMode = SplitMode.EVEN,
        description: Optional[str] = None,
        manual_shares: Optional[Sequence[AmountLike]] = None,
        creator_share: Optional[AmountLike] = None,
        add_as_expense: bool = False,
        expense_category: Optional[str] = None,
    ) -> SplitResult:
        return await self._splits.create_split(
            creator_user_id=self.user_id,
            creator_name=self._user.username,
            title=title,
            total_amount=total_amount,
            split_date=split_date,
            description=description,
            direction=direction,
            mode=mode,
            counterparties=counterparties,
            manual_shares=manual_shares,
            creator_share=creator_share,
            add_as_expense=add_as_expense,
            expense_category=expense_category,
        )


class LedgerApp:
    """All services over one store, plus the flows that open sessions."""

    def __init__(
        self,
        store: KeyedStoreInterface,
        identity: IdentityManager,
        ledger: LedgerStore,
        recurrence: RecurrenceEngine,
        splits: SplitLedger,
        user_settings: UserSettingsStore,
        importer: LegacyImporter,
        audit_logger: Optional[AuditLogger] = None,
    ):
        self.store = store
        self.identity = identity
        self.ledger = ledger
        self.recurrence = recurrence
        self.splits = splits
        self.user_settings = user_settings
        self.importer = importer
        self.audit_logger = audit_logger

    def _session(self, user: User) -> LedgerSession:
        return LedgerSession(
            user=user,
            ledger=self.ledger,
            recurrence=self.recurrence,
            splits=self.splits,
            importer=self.importer,
            user_settings=self.user_settings,
        )

    async def register(self, username: str, password: str) -> LedgerSession:
        """Register a new user and open a session for them."""
        user = await self.identity.register(username, password)
        return self._session(user)

    async def login(self, username: str, password: str) -> LedgerSession:
        """Check credentials and open a session. Raises on bad credentials."""
        user = await self.identity.login(username, password)
        return self._session(user)

    async def close(self) -> None:
        await self.store.close()


def create_app_components(
    settings: Optional[Settings] = None,
    store: Optional[KeyedStoreInterface] = None,
    clock: Optional[Clock] = None,
    id_generator: Optional[IdGenerator] = None,
    use_fallback: bool = True,
) -> LedgerApp:
    """
    Factory function to create all application components.

    Args:
        settings: Settings to use; defaults to get_settings()
        store: Keyed store to use; defaults to SQLite at the configured path
        clock: Clock shared by every service
        id_generator: Id generator shared by every service
        use_fallback: Whether to keep the flat fallback mirror.
                      Set to False for testing without it.

    Returns:
        A LedgerApp. The store opens lazily on first use.
    """
    settings = settings or get_settings()
    app_settings = settings.app
    store_settings = settings.store
    configure_logging(app_settings.log_level)

    clock = clock or SystemClock()
    id_generator = id_generator or UUIDGenerator()
    store = store or SQLiteKeyedStore(
        store_settings.db_path,
        open_attempts=store_settings.open_attempts,
    )
    cache = FallbackCache(store_settings.fallback_path) if use_fallback else None
    audit_logger = AuditLogger()

    identity = IdentityManager(store, clock=clock, audit_logger=audit_logger)
    user_settings = UserSettingsStore(
        store,
        clock=clock,
        default_currency=settings.splits.default_currency,
    )
    ledger = LedgerStore(
        store,
        cache=cache,
        clock=clock,
        id_generator=id_generator,
        audit_logger=audit_logger,
    )
    recurrence = RecurrenceEngine(
        store,
        ledger,
        clock=clock,
        id_generator=id_generator,
        audit_logger=audit_logger,
    )
    splits = SplitLedger(
        store,
        identity,
        ledger,
        user_settings,
        cache=cache,
        id_generator=id_generator,
        settings=settings.splits,
        audit_logger=audit_logger,
    )
    importer = LegacyImporter(
        ledger,
        user_settings,
        legacy_path=store_settings.legacy_path,
        migration_key=app_settings.migration_settings_key,
        audit_logger=audit_logger,
    )

    return LedgerApp(
        store=store,
        identity=identity,
        ledger=ledger,
        recurrence=recurrence,
        splits=splits,
        user_settings=user_settings,
        importer=importer,
        audit_logger=audit_logger,
    )
