from __future__ import annotations

import asyncio
from dataclasses import asdict
from datetime import datetime, timedelta
import logging

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from taskflow.core.config import Settings, get_settings
from taskflow.domain.entities import SweepReport
from taskflow.persistence.repos import ledger as ledger_repo
from taskflow.services.audit import record_event
from taskflow.services.soft_delete import Clock, utc_now
from taskflow.services.telemetry import increment_counter


logger = logging.getLogger(__name__)


def _is_missing_table_error(exc: Exception) -> bool:
    # Allow the sweeper to start before migrations by treating missing-table errors as a degraded state.
    message = str(exc).lower()
    return "undefinedtableerror" in message or "does not exist" in message or "no such table" in message


class ExpirySweeper:
    # One conditional delete per record; no shared lock with recoveries or other sweepers.
    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        *,
        clock: Clock = utc_now,
        settings: Settings | None = None,
    ) -> None:
        self._session_factory = session_factory
        self._clock = clock
        self._settings = settings or get_settings()

    async def run_cycle(self) -> SweepReport:
        report = SweepReport()
        now = self._clock()
        lease = timedelta(seconds=max(1, int(self._settings.ledger_claim_lease_s)))
        batch_size = max(1, int(self._settings.expiry_sweep_batch_size))
        cursor: tuple[datetime, str] | None = None

        while True:
            try:
                async with self._session_factory() as session:
                    page = await ledger_repo.list_expired_page(session, now=now, limit=batch_size, after=cursor)
            except SQLAlchemyError as exc:
                if _is_missing_table_error(exc):
                    logger.warning("expiry_sweep_waiting_for_migrations")
                    return report
                raise
            if not page:
                break
            for record_id, deadline in page:
                report.scanned += 1
                try:
                    async with self._session_factory() as session:
                        purged = await ledger_repo.delete_unclaimed(
                            session, record_id, now=now, lease=lease, expired_only=True
                        )
                        await session.commit()
                except Exception:  # noqa: BLE001 - one bad record must not abort the batch
                    report.failed += 1
                    logger.exception("expiry_sweep_record_failed record_id=%s", record_id)
                    continue
                if purged:
                    report.purged += 1
                    logger.info("deleted_item_purged record_id=%s source=sweeper", record_id)
                else:
                    # Recovered, purged elsewhere, or held by an in-progress recovery.
                    report.skipped += 1
            last_id, last_deadline = page[-1]
            cursor = (last_deadline, last_id)
            if len(page) < batch_size:
                break

        increment_counter("sweeper.purged", report.purged)
        increment_counter("sweeper.failed", report.failed)
        logger.info(
            "expiry_sweep_complete scanned=%s purged=%s skipped=%s failed=%s",
            report.scanned,
            report.purged,
            report.skipped,
            report.failed,
        )
        if report.scanned:
            await record_event(
                self._session_factory,
                event_type="deleted_items.swept",
                outcome="success" if report.failed == 0 else "partial",
                actor_type="system",
                actor_id="expiry_sweeper",
                metadata=asdict(report),
                occurred_at=now,
            )
        return report

    async def run_loop(self) -> None:
        # Fixed cadence independent of request traffic; failures are logged and the loop continues.
        interval = max(1, int(self._settings.expiry_sweep_interval_s))
        while True:
            try:
                await self.run_cycle()
            except Exception:  # noqa: BLE001 - keep loop alive while surfacing errors in logs.
                logger.exception("expiry sweep cycle failed")
            await asyncio.sleep(interval)
