from __future__ import annotations

import logging
from dataclasses import asdict, dataclass
from datetime import datetime, timezone
from typing import Any, Callable

from sqlalchemy import case, func, select
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.core.errors import UpstreamUnavailable
from app.db.session import AsyncSessionLocal
from app.models.loan_application import TERMINAL_STATUSES, LoanApplication
from app.services import settings as settings_service
from app.services.form_source import FormSourceClient, MappedEntry, map_entry


logger = logging.getLogger(__name__)

# Fields the reconciler owns; status and assignment belong to staff.
OWNED_FIELDS = ("first_name", "last_name", "email", "mobile", "details", "verification_status")


@dataclass(slots=True)
class SyncResult:
    synced: int = 0
    errors: int = 0

    def as_dict(self) -> dict[str, int]:
        return asdict(self)


def _insert_for(db: AsyncSession):
    dialect = db.get_bind().dialect.name
    if dialect == "postgresql":
        return postgresql.insert
    if dialect == "sqlite":
        return sqlite.insert
    raise RuntimeError(f"Upsert is not supported on dialect {dialect}")


async def upsert_application(db: AsyncSession, mapped: MappedEntry) -> int:
    """Insert or refresh one application keyed by ``wp_entry_id``; returns the local id."""
    values: dict[str, Any] = {
        "wp_entry_id": mapped.wp_entry_id,
        "first_name": mapped.first_name,
        "last_name": mapped.last_name,
        "email": mapped.email,
        "mobile": mapped.mobile,
        "branch": mapped.branch,
        "details": mapped.details,
        "status": "pending",
    }
    if mapped.verification_status is not None:
        values["verification_status"] = mapped.verification_status
    if mapped.created_at is not None:
        values["created_at"] = mapped.created_at

    insert = _insert_for(db)
    insert_stmt = insert(LoanApplication).values(**values)
    excluded = insert_stmt.excluded
    update_values: dict[str, Any] = {
        name: getattr(excluded, name) for name in OWNED_FIELDS if name in values
    }
    # Closed applications keep the branch they were closed under.
    update_values["branch"] = case(
        (LoanApplication.status.in_(TERMINAL_STATUSES), LoanApplication.branch),
        else_=excluded.branch,
    )
    update_values["updated_at"] = func.now()
    stmt = insert_stmt.on_conflict_do_update(
        index_elements=[LoanApplication.wp_entry_id],
        set_=update_values,
    ).returning(LoanApplication.id)
    result = await db.execute(stmt)
    return result.scalar_one()


class SyncReconciler:
    """Pull entries from the form source and reconcile them into the store."""

    def __init__(
        self,
        *,
        session_factory: async_sessionmaker[AsyncSession] | None = None,
        source: FormSourceClient | None = None,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self.session_factory = session_factory or AsyncSessionLocal
        self.source = source or FormSourceClient()
        self.clock = clock or (lambda: datetime.now(timezone.utc))

    async def run(self) -> SyncResult:
        logger.info("Starting form source sync")
        try:
            entries = await self.source.fetch_entries()
        except UpstreamUnavailable as exc:
            logger.warning("Form source unavailable, sync skipped: %s", exc.message)
            return SyncResult()
        if not entries:
            logger.info("No entries to sync")
            return SyncResult()

        result = SyncResult()
        async with self.session_factory() as db:
            for entry in entries:
                entry_id = entry.get("id")
                try:
                    await upsert_application(db, map_entry(entry))
                    await db.commit()
                except Exception:
                    # One bad entry must not abort the batch.
                    await db.rollback()
                    result.errors += 1
                    logger.exception("Failed to sync form entry %s", entry_id)
                else:
                    result.synced += 1

            await settings_service.stamp_last_sync(db, self.clock())
            await db.commit()

        logger.info("Form source sync complete synced=%s errors=%s", result.synced, result.errors)
        return result


async def sync_status(db: AsyncSession) -> dict[str, Any]:
    total = (await db.execute(select(func.count(LoanApplication.id)))).scalar_one()
    app_settings = await settings_service.get_app_settings(db)
    return {
        "total_entries": total,
        "last_sync_time": app_settings.last_sync_time,
        "sync_interval": app_settings.sync_interval,
    }
