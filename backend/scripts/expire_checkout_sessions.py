"""Expire pending checkout sessions past their expiry.

Standalone maintenance script, meant for a periodic scheduler (cron or a
Kubernetes CronJob). The admin endpoint POST /admin/checkout/expire-stale
runs the same sweep on demand.

Usage:
    cd backend && python -m scripts.expire_checkout_sessions

Sessions that were paid but not yet verified are unaffected once the
buyer returns: verification settles a paid session even after expiry.
"""

import logging

logger = logging.getLogger(__name__)


async def main() -> None:
    """CLI entry point: run the sweep against the configured database."""
    import sys

    from credit_ledger.core.config import settings
    from credit_ledger.core.database import async_session_factory, engine
    from credit_ledger.services.checkout_service import expire_stale_sessions

    logging.basicConfig(
        level=settings.log_level,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    async with async_session_factory() as session:
        expired = await expire_stale_sessions(session)

    await engine.dispose()

    logger.info("Expired %d checkout sessions", expired)
    sys.exit(0)


if __name__ == "__main__":
    import asyncio

    asyncio.run(main())
