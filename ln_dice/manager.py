import asyncio
import logging
import time
from typing import Awaitable, Callable, Dict, List, Optional
from uuid import UUID

import numpy as np
from apscheduler.schedulers.base import BaseScheduler
from uuid6 import uuid7

from ln_dice.lnbits_client import LNbitsClient
from ln_dice.models.dc_models import SessionState
from ln_dice.services.invoices import InvoiceIssuer
from ln_dice.services.payment_watcher import PaymentWatcher
from ln_dice.services.payout_watcher import PayoutWatcher
from ln_dice.services.payouts import PayoutIssuer
from ln_dice.services.pot_ledger import PotLedger
from ln_dice.session_machine import GameSessionMachine

SESSION_IDLE_TIMEOUT = 30 * 60
EXPIRE_SESSIONS_INTERVAL = 5 * 60


class SessionManager:
    """Holds one GameSessionMachine per connected player. The pot is shared."""

    def __init__(
        self,
        client: LNbitsClient,
        scheduler: BaseScheduler,
        pot_ledger: Optional[PotLedger] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        random_source_factory: Callable[[], np.random.Generator] = np.random.default_rng,
        idle_timeout: float = SESSION_IDLE_TIMEOUT,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.client = client
        self.scheduler = scheduler
        self.pot_ledger = pot_ledger or PotLedger(client)
        self.invoice_issuer = InvoiceIssuer(client)
        self.payment_watcher = PaymentWatcher(client, sleep=sleep)
        self.payout_issuer = PayoutIssuer(client)
        self.payout_watcher = PayoutWatcher(client, scheduler)
        self.random_source_factory = random_source_factory
        self.idle_timeout = idle_timeout
        self.clock = clock
        self.sessions: Dict[UUID, GameSessionMachine] = {}

    def create_session(self) -> GameSessionMachine:
        session_id = uuid7()
        machine = GameSessionMachine(
            session_id,
            pot_ledger=self.pot_ledger,
            invoice_issuer=self.invoice_issuer,
            payment_watcher=self.payment_watcher,
            payout_issuer=self.payout_issuer,
            payout_watcher=self.payout_watcher,
            random_source=self.random_source_factory(),
        )
        machine.touch(self.clock())
        self.sessions[session_id] = machine
        logging.info(f"Session {session_id} created")
        return machine

    def get_session(self, session_id: UUID) -> Optional[GameSessionMachine]:
        """Look up a session and mark it as used now."""
        machine = self.sessions.get(session_id)
        if machine is not None:
            machine.touch(self.clock())
        return machine

    def remove_session(self, session_id: UUID) -> bool:
        machine = self.sessions.pop(session_id, None)
        if machine is None:
            return False
        machine.reset()
        logging.info(f"Session {session_id} removed")
        return True

    async def refresh_pot(self):
        """Interval job body: read the pot and let every session's listeners
        see the new reading, or the error if the read failed."""
        await self.pot_ledger.refresh_pot()
        for machine in list(self.sessions.values()):
            machine.notifier.notify()

    async def expire_idle_sessions(self) -> List[UUID]:
        """Remove sessions nobody has used for idle_timeout seconds.

        A session with a roll in flight or a payout waiting to be claimed is
        kept, so its payout watch keeps running.

        Returns:
            List[UUID]: ids of the removed sessions
        """
        now = self.clock()
        expired = [
            session_id
            for session_id, machine in self.sessions.items()
            if now - machine.last_activity >= self.idle_timeout
            and machine.state != SessionState.awaiting_payout
            and not machine.session.roll_in_flight
        ]
        for session_id in expired:
            self.remove_session(session_id)
        if expired:
            logging.info(f"Expired {len(expired)} idle sessions")
        return expired

    async def shutdown(self):
        """Stop every poller and wait for the cancelled tasks. Called when the application stops."""
        tasks = [
            machine.payment_task
            for machine in self.sessions.values()
            if machine.payment_task is not None
        ]
        for session_id in list(self.sessions):
            self.remove_session(session_id)
        await asyncio.gather(*tasks, return_exceptions=True)
