from apscheduler.schedulers.asyncio import AsyncIOScheduler
import logging
from fastapi import FastAPI
from contextlib import asynccontextmanager
from typing import Callable

from ln_dice.domain.dice_rules import REFRESH_POT_INTERVAL
from ln_dice.lnbits_client import LNbitsClient
from ln_dice.manager import EXPIRE_SESSIONS_INTERVAL, SessionManager
from ln_dice.routers import game

logging.basicConfig(level=logging.INFO)


def create_app(client_factory: Callable[[], LNbitsClient] = LNbitsClient, **manager_options) -> FastAPI:
    """Build the application.

    Args:
        client_factory (Callable[[], LNbitsClient], optional): Builds the backend client at startup.
        **manager_options: Passed to SessionManager (e.g. sleep, random_source_factory).
    """

    @asynccontextmanager
    async def lifespan(app):
        """Read the pot once, then keep it fresh on an interval job for the
        lifetime of the server.
        """
        client = client_factory()
        scheduler = AsyncIOScheduler()
        manager = SessionManager(client, scheduler, **manager_options)
        app.state.session_manager = manager

        await manager.pot_ledger.refresh_pot()
        scheduler.add_job(
            manager.refresh_pot,
            "interval",
            seconds=REFRESH_POT_INTERVAL,
            id="pot-refresh",
            max_instances=1,
        )
        # Sessions whose browser went away without deleting them
        scheduler.add_job(
            manager.expire_idle_sessions,
            "interval",
            seconds=EXPIRE_SESSIONS_INTERVAL,
            id="expire-sessions",
        )
        scheduler.start()
        try:
            yield
        finally:
            await manager.shutdown()
            scheduler.shutdown(wait=False)
            await client.aclose()
            logging.info("Stop Server")

    app = FastAPI(lifespan=lifespan)
    app.include_router(game.game_router)
    return app


app = create_app()
