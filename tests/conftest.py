"""
Pytest fixtures for ln_dice tests.

The LNbits backend and the scheduler are replaced by in-process fakes so the
session machine can be driven step by step without a network or timers.
"""

import asyncio
from uuid import uuid4

import pytest
from apscheduler.jobstores.base import JobLookupError

from ln_dice.errors import TransientQueryError
from ln_dice.services.invoices import InvoiceIssuer
from ln_dice.services.payment_watcher import PaymentWatcher
from ln_dice.services.payout_watcher import PayoutWatcher
from ln_dice.services.payouts import PayoutIssuer
from ln_dice.services.pot_ledger import PotLedger
from ln_dice.session_machine import GameSessionMachine


class FakeLNbits:
    """Stands in for LNbitsClient. Methods listed in ``fail`` raise."""

    def __init__(self):
        self.balance_msats = 0
        self.paid = {}
        self.used = {}
        self.fail = set()
        self.calls = []
        self.wallet_gate = None
        self._counter = 0

    def _enter(self, name, *args):
        self.calls.append((name, args))
        if name in self.fail:
            raise TransientQueryError(f"{name} failed")

    def count(self, name):
        return sum(1 for call, _ in self.calls if call == name)

    def names(self):
        return [call for call, _ in self.calls]

    async def create_payment(self, amount, memo):
        self._enter("create_payment", amount, memo)
        self._counter += 1
        return f"lnbc{self._counter}", f"hash{self._counter}"

    async def get_payment(self, payment_hash):
        self._enter("get_payment", payment_hash)
        return self.paid.get(payment_hash, False)

    async def get_wallet(self):
        if self.wallet_gate is not None:
            await self.wallet_gate.wait()
        self._enter("get_wallet")
        return self.balance_msats

    async def create_withdraw_link(self, title, amount, wait_time):
        self._enter("create_withdraw_link", title, amount, wait_time)
        self._counter += 1
        return f"lnurl{self._counter}", f"link{self._counter}"

    async def get_withdraw_link(self, link_id):
        self._enter("get_withdraw_link", link_id)
        return self.used.get(link_id, False)

    async def aclose(self):
        pass


class FakeScheduler:
    """Records interval jobs instead of running them; tests fire them by hand."""

    def __init__(self):
        self.jobs = {}

    def add_job(self, func, trigger, seconds=None, id=None, args=None, **kwargs):
        self.jobs[id] = {"func": func, "trigger": trigger, "seconds": seconds, "args": args or []}

    def remove_job(self, job_id):
        if job_id not in self.jobs:
            raise JobLookupError(job_id)
        del self.jobs[job_id]

    async def run(self, job_id):
        job = self.jobs[job_id]
        await job["func"](*job["args"])


class FixedSource:
    """Random source that returns the given faces in order, repeating the last."""

    def __init__(self, *values):
        self.values = list(values)
        self.calls = 0

    def integers(self, low, high):
        self.calls += 1
        if len(self.values) > 1:
            return self.values.pop(0)
        return self.values[0]


class RecordingSleep:
    """Replacement for asyncio.sleep that returns at once. With ``block`` set
    it parks until released, like a timer that has not fired yet."""

    def __init__(self, block=False):
        self.delays = []
        self.block = block
        self.release = asyncio.Event()

    async def __call__(self, delay):
        self.delays.append(delay)
        if self.block:
            await self.release.wait()
        else:
            await asyncio.sleep(0)


async def wait_until(predicate, rounds=200):
    """Let background tasks run until predicate() holds."""
    for _ in range(rounds):
        if predicate():
            return
        await asyncio.sleep(0)
    raise AssertionError("condition not reached")


async def finish_payment_watch(machine):
    """Wait for the machine's payment watch task, including the roll it triggers."""
    watch = machine._payment_watch
    if watch is not None:
        await asyncio.gather(watch.task, return_exceptions=True)


@pytest.fixture
def backend():
    return FakeLNbits()


@pytest.fixture
def scheduler():
    return FakeScheduler()


@pytest.fixture
def sleep():
    return RecordingSleep()


@pytest.fixture
def make_machine(backend, scheduler, sleep):
    """Build a machine wired to the fakes."""

    def _make(random_source=None, payment_sleep=None):
        return GameSessionMachine(
            uuid4(),
            pot_ledger=PotLedger(backend),
            invoice_issuer=InvoiceIssuer(backend),
            payment_watcher=PaymentWatcher(backend, sleep=payment_sleep or sleep),
            payout_issuer=PayoutIssuer(backend),
            payout_watcher=PayoutWatcher(backend, scheduler),
            random_source=random_source if random_source is not None else FixedSource(1),
        )

    return _make
