import asyncio
import logging
from typing import Awaitable, Callable, Optional

from ln_dice.domain.dice_rules import (
    INITIAL_BACKOFF_SECONDS,
    MAX_BACKOFF_SECONDS,
    MAX_PAYMENT_ATTEMPTS,
    backoff_delay,
)
from ln_dice.errors import TransientQueryError
from ln_dice.lnbits_client import LNbitsClient
from ln_dice.models.dc_models import PaymentWatchResult

OnPaymentResult = Callable[[str, PaymentWatchResult], Awaitable[None]]
OnPaymentError = Callable[[str, TransientQueryError], None]


class PaymentWatch:
    """Handle on one running watch, identified by the payment hash it polls."""

    def __init__(self, correlation_id: str, task: asyncio.Task):
        self.correlation_id = correlation_id
        self.task = task

    @property
    def done(self) -> bool:
        return self.task.done()

    def cancel(self):
        if not self.task.done():
            self.task.cancel()


class PaymentWatcher:
    def __init__(
        self,
        client: LNbitsClient,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        initial_backoff: float = INITIAL_BACKOFF_SECONDS,
        max_backoff: float = MAX_BACKOFF_SECONDS,
        max_attempts: int = MAX_PAYMENT_ATTEMPTS,
    ):
        self.client = client
        self.sleep = sleep
        self.initial_backoff = initial_backoff
        self.max_backoff = max_backoff
        self.max_attempts = max_attempts

    async def watch(
        self, correlation_id: str, on_error: Optional[OnPaymentError] = None
    ) -> PaymentWatchResult:
        """Poll the invoice until it is paid or the retries run out.

        The first check happens immediately. Each unpaid (or failed) check is
        followed by a backoff delay, up to max_attempts retries.

        Args:
            correlation_id (str): Payment hash of the invoice
            on_error (Optional[OnPaymentError], optional): Called for every failed check.
                A failed check counts as an attempt. Defaults to None.

        Returns:
            PaymentWatchResult: confirmed or timed_out
        """
        attempt = 0
        while True:
            try:
                if await self.client.get_payment(correlation_id):
                    logging.info(f"Payment {correlation_id} confirmed")
                    return PaymentWatchResult.confirmed
            except TransientQueryError as e:
                logging.error(f"Payment check failed for {correlation_id}: {e}")
                if on_error is not None:
                    on_error(correlation_id, e)

            attempt += 1
            if attempt > self.max_attempts:
                logging.info(f"Payment {correlation_id} not seen after {self.max_attempts} retries")
                return PaymentWatchResult.timed_out
            delay = backoff_delay(attempt, self.initial_backoff, self.max_backoff)
            logging.debug(f"Payment {correlation_id} unpaid, retry {attempt} in {delay}s")
            await self.sleep(delay)

    def start(
        self,
        correlation_id: str,
        on_result: OnPaymentResult,
        on_error: Optional[OnPaymentError] = None,
    ) -> PaymentWatch:
        """Run watch() as a task and hand its result to on_result.

        Cancelling the returned handle stops the polls and on_result is never called.
        """

        async def run():
            result = await self.watch(correlation_id, on_error)
            await on_result(correlation_id, result)

        task = asyncio.create_task(run(), name=f"payment-watch:{correlation_id}")
        return PaymentWatch(correlation_id, task)
