from __future__ import annotations

import asyncio

from taskflow.core.logging import configure_logging
from taskflow.persistence.db import SessionLocal
from taskflow.services.sweeper import ExpirySweeper


async def sweep() -> None:
    configure_logging()
    report = await ExpirySweeper(SessionLocal).run_cycle()
    print(
        f"scanned={report.scanned} purged={report.purged} "
        f"skipped={report.skipped} failed={report.failed}"
    )


if __name__ == "__main__":
    asyncio.run(sweep())
