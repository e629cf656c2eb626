import asyncio
import logging
from typing import Optional
from uuid import UUID

import numpy as np

from ln_dice.domain.dice_rules import draw, is_win, validate_guess
from ln_dice.errors import (
    IssuanceError,
    PaymentTimeoutError,
    PotTooLowError,
    SessionBusyError,
    TransientQueryError,
)
from ln_dice.models.dc_models import (
    ErrorKind,
    GameSession,
    GameSessionModel,
    PaymentWatchResult,
    SessionErrorModel,
    SessionState,
)
from ln_dice.services.invoices import InvoiceIssuer
from ln_dice.services.payment_watcher import PaymentWatch, PaymentWatcher
from ln_dice.services.payout_watcher import PayoutWatcher
from ln_dice.services.payouts import PayoutIssuer
from ln_dice.services.pot_ledger import PotLedger
from ln_dice.state_notifier import StateNotifier

WIN_MESSAGE = "Correct! You won!"
PAYMENT_CHECK_ERROR_MESSAGE = "Error checking payment status. Please refresh."
PAYOUT_CHECK_ERROR_MESSAGE = "Error checking withdrawal. Please try again later."

GUESS_ALLOWED_STATES = (SessionState.idle, SessionState.guess_selected)


class GameSessionMachine:
    """Drives one player's game from guess to payout.

    Idle -> GuessSelected -> AwaitingPayment -> Rolling -> Lost | AwaitingPayout -> Idle

    Everything runs on one event loop. Results of background work (payment
    polls, payout polls, awaited backend calls) are applied only if they still
    belong to the current game: payment results are matched by payment hash,
    payout results by link id, and awaited calls by an epoch counter that every
    reset and every new guess bumps.
    """

    def __init__(
        self,
        session_id: UUID,
        pot_ledger: PotLedger,
        invoice_issuer: InvoiceIssuer,
        payment_watcher: PaymentWatcher,
        payout_issuer: PayoutIssuer,
        payout_watcher: PayoutWatcher,
        random_source: Optional[np.random.Generator] = None,
        notifier: Optional[StateNotifier] = None,
    ):
        self.session_id = session_id
        self.pot_ledger = pot_ledger
        self.invoice_issuer = invoice_issuer
        self.payment_watcher = payment_watcher
        self.payout_issuer = payout_issuer
        self.payout_watcher = payout_watcher
        self.random_source = random_source if random_source is not None else np.random.default_rng()
        self.notifier = notifier or StateNotifier()

        self.session = GameSession()
        self.state = SessionState.idle
        self._epoch = 0
        self._payment_watch: Optional[PaymentWatch] = None
        self._payout_job_id: Optional[str] = None
        self.last_activity = 0.0

    def touch(self, now: float):
        self.last_activity = now

    @property
    def payment_task(self) -> Optional[asyncio.Task]:
        if self._payment_watch is None:
            return None
        return self._payment_watch.task

    # ==== Player actions ======================================================

    async def select_guess(self, guess: int):
        """Commit to a number and request the entry invoice.

        Raises:
            ValueError: guess is not in 1..6
            SessionBusyError: a game is already past the guess stage
        """
        validate_guess(guess)
        if self.state not in GUESS_ALLOWED_STATES:
            raise SessionBusyError("Finish or cancel the current game first.")

        self._epoch += 1
        epoch = self._epoch
        self.session = GameSession(guess=guess)
        self.state = SessionState.guess_selected
        logging.info(f"Session {self.session_id}: guess {guess} selected")
        self._changed()

        try:
            invoice = await self.invoice_issuer.issue_invoice()
        except IssuanceError as e:
            if epoch == self._epoch:
                self._set_error(ErrorKind.issuance, e.message)
                self._changed()
            return

        if epoch != self._epoch:
            logging.info(f"Session {self.session_id}: discarding invoice {invoice.correlation_id}")
            return
        self.session.invoice_ref = invoice.invoice_ref
        self.session.correlation_id = invoice.correlation_id
        self.state = SessionState.awaiting_payment
        self._start_payment_watch()
        self._changed()

    def check_payment(self):
        """Restart the payment watch for the current invoice, e.g. after a timeout."""
        if self.state != SessionState.awaiting_payment:
            raise SessionBusyError("There is no invoice awaiting payment.")
        self.session.last_error = None
        self._start_payment_watch()
        self._changed()

    async def roll(self):
        """Draw the outcome for a paid game. A second call while a roll runs is a no-op."""
        session = self.session
        if session.roll_in_flight:
            logging.debug(f"Session {self.session_id}: roll already in flight")
            return
        if not session.payment_confirmed or session.outcome is not None:
            return

        session.roll_in_flight = True
        epoch = self._epoch
        self.state = SessionState.rolling
        try:
            outcome = draw(self.random_source)
            session.outcome = outcome
            logging.info(f"Session {self.session_id}: rolled {outcome}, guess {session.guess}")
            if is_win(outcome, session.guess):
                session.result = WIN_MESSAGE
                session.awaiting_payout = True
                self._changed()
                await self._issue_payout(epoch)
            else:
                session.result = f"Wrong! It was {outcome}."
                self._changed()
                await self._refresh_pot(epoch)
                if epoch == self._epoch:
                    self.state = SessionState.lost
        finally:
            session.roll_in_flight = False
            if epoch == self._epoch:
                self._changed()

    async def retry_payout(self):
        """Try again to create the withdraw link after a failed attempt.

        Raises:
            SessionBusyError: there is no failed payout, or the pot is too low
        """
        session = self.session
        if self.state != SessionState.payout_failed or session.roll_in_flight:
            raise SessionBusyError("There is no payout to retry.")
        if session.last_error is not None and session.last_error.kind == ErrorKind.pot_too_low:
            raise SessionBusyError(session.last_error.message)

        session.roll_in_flight = True
        session.last_error = None
        session.awaiting_payout = True
        epoch = self._epoch
        self.state = SessionState.rolling
        self._changed()
        try:
            await self._issue_payout(epoch)
        finally:
            session.roll_in_flight = False
            if epoch == self._epoch:
                self._changed()

    def reset(self):
        """Cancel whatever is pending and return to Idle."""
        self._stop_payment_watch()
        self._stop_payout_watch()
        self._epoch += 1
        self.session = GameSession()
        self.state = SessionState.idle
        logging.info(f"Session {self.session_id}: reset")
        self._changed()

    # ==== Payment ============================================================

    def _start_payment_watch(self):
        self._stop_payment_watch()
        self._payment_watch = self.payment_watcher.start(
            self.session.correlation_id, self._on_payment_result, self._on_payment_error
        )

    def _stop_payment_watch(self):
        if self._payment_watch is not None:
            self._payment_watch.cancel()
            self._payment_watch = None

    def _is_current_invoice(self, correlation_id: str) -> bool:
        return (
            self.state == SessionState.awaiting_payment
            and not self.session.payment_confirmed
            and self.session.correlation_id == correlation_id
        )

    async def _on_payment_result(self, correlation_id: str, result: PaymentWatchResult):
        if not self._is_current_invoice(correlation_id):
            logging.debug(f"Session {self.session_id}: stale payment result for {correlation_id}")
            return
        if result == PaymentWatchResult.timed_out:
            self._set_error(ErrorKind.payment_timeout, PaymentTimeoutError().message)
            self._changed()
            return
        self.session.payment_confirmed = True
        self.session.last_error = None
        await self.roll()

    def _on_payment_error(self, correlation_id: str, error: TransientQueryError):
        if not self._is_current_invoice(correlation_id):
            return
        self._set_error(ErrorKind.transient, PAYMENT_CHECK_ERROR_MESSAGE)
        self._changed()

    # ==== Payout =============================================================

    async def _issue_payout(self, epoch: int):
        session = self.session
        try:
            pot = await self.pot_ledger.refresh_pot(strict=True)
            if epoch != self._epoch:
                return
            payout = await self.payout_issuer.issue_payout(pot)
        except PotTooLowError as e:
            self._fail_payout(epoch, ErrorKind.pot_too_low, e.message)
            return
        except TransientQueryError as e:
            self._fail_payout(epoch, ErrorKind.transient, e.message)
            return
        except IssuanceError as e:
            self._fail_payout(epoch, ErrorKind.issuance, e.message)
            return

        if epoch != self._epoch:
            logging.warning(
                f"Session {self.session_id}: reset before payout {payout.payout_id} was stored"
            )
            return
        session.payout_auth_ref = payout.payout_auth_ref
        session.payout_id = payout.payout_id
        session.payout_amount = payout.amount
        session.awaiting_payout = True
        self.state = SessionState.awaiting_payout
        self._start_payout_watch(payout.payout_id)

    def _fail_payout(self, epoch: int, kind: ErrorKind, message: str):
        if epoch != self._epoch:
            return
        self.session.awaiting_payout = False
        self.state = SessionState.payout_failed
        self._set_error(kind, message)

    def _start_payout_watch(self, payout_id: str):
        self._stop_payout_watch()
        self._payout_job_id = self.payout_watcher.start(
            f"payout:{self.session_id}:{payout_id}",
            payout_id,
            self._on_payout_claimed,
            self._on_payout_error,
        )

    def _stop_payout_watch(self):
        if self._payout_job_id is not None:
            self.payout_watcher.stop(self._payout_job_id)
            self._payout_job_id = None

    def _is_current_payout(self, payout_id: str) -> bool:
        return self.state == SessionState.awaiting_payout and self.session.payout_id == payout_id

    async def _on_payout_claimed(self, payout_id: str):
        if not self._is_current_payout(payout_id):
            return
        self._stop_payout_watch()
        epoch = self._epoch
        await self._refresh_pot(epoch)
        if epoch != self._epoch:
            return
        self.reset()

    def _on_payout_error(self, payout_id: str, error: TransientQueryError):
        if not self._is_current_payout(payout_id):
            return
        self._set_error(ErrorKind.transient, PAYOUT_CHECK_ERROR_MESSAGE)
        self._changed()

    # ==== Helpers ============================================================

    async def _refresh_pot(self, epoch: int):
        await self.pot_ledger.refresh_pot()
        if epoch == self._epoch and self.pot_ledger.state.last_error is not None:
            self._set_error(ErrorKind.transient, self.pot_ledger.state.last_error)

    def _set_error(self, kind: ErrorKind, message: str):
        logging.info(f"Session {self.session_id}: {kind.value} error: {message}")
        self.session.last_error = SessionErrorModel(kind=kind, message=message)

    def _changed(self):
        self.notifier.notify()

    def snapshot(self) -> GameSessionModel:
        session = self.session
        return GameSessionModel(
            session_id=self.session_id,
            state=self.state,
            guess=session.guess,
            invoice_ref=session.invoice_ref,
            payment_confirmed=session.payment_confirmed,
            outcome=session.outcome,
            result=session.result,
            payout_auth_ref=session.payout_auth_ref,
            payout_amount=session.payout_amount,
            awaiting_payout=session.awaiting_payout,
            rolling=session.roll_in_flight,
            last_error=session.last_error,
            pot=self.pot_ledger.snapshot(),
        )
