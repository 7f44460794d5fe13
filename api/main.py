"""HTTP service entrypoint (aiohttp)."""
import asyncio
import logging
from datetime import datetime, timezone
from typing import Optional

from aiohttp import web
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from api.config import settings
from api.handlers import payments, referrals
from api.logging_config import setup_logging
from api.middlewares import error_middleware, logging_middleware
from services.notifications import Notifier
from services.paystack_service import PaystackService
from services.scheduler import create_scheduler

logger = logging.getLogger(__name__)


async def health_check(request: web.Request):
    """Health check endpoint."""
    return web.json_response({
        "status": "ok",
        "time": datetime.now(timezone.utc).isoformat()
    })


async def _start_scheduler(app: web.Application):
    scheduler = create_scheduler(app["db"])
    scheduler.start()
    app["scheduler"] = scheduler
    logger.info("Referral expiry job scheduled (daily at 03:00 UTC)")


async def _stop_scheduler(app: web.Application):
    scheduler = app.get("scheduler")
    if scheduler:
        scheduler.shutdown(wait=False)


def build_app(
    session_maker: Optional[async_sessionmaker[AsyncSession]] = None,
    gateway: Optional[PaystackService] = None,
    notifier: Optional[Notifier] = None,
    with_scheduler: bool = False,
) -> web.Application:
    """Assemble the web application; collaborators can be injected for tests."""
    if session_maker is None:
        from database import async_session_maker
        session_maker = async_session_maker

    app = web.Application(middlewares=[logging_middleware, error_middleware])
    app["db"] = session_maker
    app["gateway"] = gateway or PaystackService()
    app["notifier"] = notifier or Notifier()

    app.router.add_get('/health', health_check)
    payments.setup_routes(app)
    referrals.setup_routes(app)

    if with_scheduler:
        app.on_startup.append(_start_scheduler)
        app.on_cleanup.append(_stop_scheduler)
    return app


async def main():
    from database import init_db, close_db

    setup_logging()
    await init_db()
    app = build_app(with_scheduler=True)
    runner = web.AppRunner(app)
    await runner.setup()
    site = web.TCPSite(runner, settings.host, settings.port)
    await site.start()
    logger.info(f"Mindsta payments API listening on {settings.host}:{settings.port}")

    try:
        await asyncio.Event().wait()
    finally:
        await runner.cleanup()
        await close_db()


if __name__ == "__main__":
    asyncio.run(main())
