import logging
from typing import Awaitable, Callable

from apscheduler.jobstores.base import JobLookupError
from apscheduler.schedulers.base import BaseScheduler

from ln_dice.domain.dice_rules import REFRESH_WITHDRAWAL_INTERVAL
from ln_dice.errors import TransientQueryError
from ln_dice.lnbits_client import LNbitsClient

OnClaimed = Callable[[str], Awaitable[None]]
OnPayoutError = Callable[[str, TransientQueryError], None]


class PayoutWatcher:
    """Polls a withdraw link on a fixed interval until it has been used.

    Each watch is one interval job on the shared scheduler; the job keeps
    running through failed checks until it is stopped.
    """

    def __init__(
        self,
        client: LNbitsClient,
        scheduler: BaseScheduler,
        interval: float = REFRESH_WITHDRAWAL_INTERVAL,
    ):
        self.client = client
        self.scheduler = scheduler
        self.interval = interval

    async def check(self, payout_id: str) -> bool:
        return await self.client.get_withdraw_link(payout_id)

    async def tick(self, payout_id: str, on_claimed: OnClaimed, on_error: OnPayoutError):
        try:
            used = await self.check(payout_id)
        except TransientQueryError as e:
            logging.error(f"Failed to check withdrawal status of {payout_id}: {e}")
            on_error(payout_id, e)
            return
        if used:
            logging.info(f"Withdrawal {payout_id} claimed")
            await on_claimed(payout_id)

    def start(
        self, job_id: str, payout_id: str, on_claimed: OnClaimed, on_error: OnPayoutError
    ) -> str:
        self.scheduler.add_job(
            self.tick,
            "interval",
            seconds=self.interval,
            id=job_id,
            args=[payout_id, on_claimed, on_error],
            replace_existing=True,
            max_instances=1,
        )
        logging.debug(f"Payout watch {job_id} scheduled every {self.interval}s")
        return job_id

    def stop(self, job_id: str):
        try:
            self.scheduler.remove_job(job_id)
        except JobLookupError:
            logging.debug(f"Payout watch {job_id} already stopped")
