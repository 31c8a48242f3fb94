from __future__ import annotations

import asyncio

from taskflow.core.logging import configure_logging
from taskflow.persistence.db import SessionLocal
from taskflow.services.sweeper import ExpirySweeper


async def _main() -> None:
    # Dedicated sweeper process so expired items are purged without request traffic.
    configure_logging()
    await ExpirySweeper(SessionLocal).run_loop()


if __name__ == "__main__":
    asyncio.run(_main())
