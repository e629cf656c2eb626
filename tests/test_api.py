"""
Tests for the HTTP layer.

The app runs its real lifespan (scheduler, pot refresh job) against an
LNbits backend faked with httpx.MockTransport.
"""

import asyncio
import time

import httpx
import pytest
from fastapi.testclient import TestClient

from ln_dice.lnbits_client import LNbitsClient
from ln_dice.main import create_app
from ln_dice.services.pot_ledger import POT_ERROR_MESSAGE
from tests.conftest import FixedSource

BASE_URL = "http://lnbits.test"


class MockLNbits:
    def __init__(self, balance_msats=250_000, paid=False):
        self.balance_msats = balance_msats
        self.paid = paid
        self.wallet_fails = False
        self.invoices = 0

    def handler(self, request: httpx.Request) -> httpx.Response:
        path = request.url.path
        if path == "/api/v1/wallet":
            if self.wallet_fails:
                return httpx.Response(503, json={"detail": "wallet unavailable"})
            return httpx.Response(200, json={"balance": self.balance_msats})
        if path == "/api/v1/payments" and request.method == "POST":
            self.invoices += 1
            return httpx.Response(
                201, json={"bolt11": f"lnbc{self.invoices}", "payment_hash": f"hash{self.invoices}"}
            )
        if path.startswith("/api/v1/payments/"):
            return httpx.Response(200, json={"paid": self.paid})
        return httpx.Response(404, json={"detail": "not found"})

    def client(self) -> LNbitsClient:
        http_client = httpx.AsyncClient(
            transport=httpx.MockTransport(self.handler), base_url=BASE_URL
        )
        return LNbitsClient(base_url=BASE_URL, api_key="secret", client=http_client)


async def never(delay):
    await asyncio.Event().wait()


@pytest.fixture
def lnbits():
    return MockLNbits()


@pytest.fixture
def client(lnbits):
    app = create_app(client_factory=lnbits.client, sleep=never)
    with TestClient(app) as test_client:
        yield test_client


def create_session(client) -> str:
    response = client.post("/sessions")
    assert response.status_code == 201
    return response.json()["session_id"]


def test_pot_is_read_at_startup(client):
    response = client.get("/pot")
    assert response.status_code == 200
    assert response.json() == {"balance_sats": 250, "display_sats": 240, "last_error": None}


def test_failed_pot_read_is_shown():
    lnbits = MockLNbits()
    lnbits.wallet_fails = True
    with TestClient(create_app(client_factory=lnbits.client, sleep=never)) as client:
        assert client.get("/pot").json()["last_error"] == POT_ERROR_MESSAGE
        session_id = create_session(client)
        data = client.get(f"/sessions/{session_id}").json()
        assert data["pot"]["last_error"] == POT_ERROR_MESSAGE


def test_new_session_is_idle(client):
    session_id = create_session(client)
    data = client.get(f"/sessions/{session_id}").json()
    assert data["state"] == "idle"
    assert data["guess"] is None
    assert data["pot"]["display_sats"] == 240


def test_guess_returns_invoice(client):
    session_id = create_session(client)
    response = client.post(f"/sessions/{session_id}/guess/4")
    assert response.status_code == 200
    data = response.json()
    assert data["state"] == "awaiting_payment"
    assert data["guess"] == 4
    assert data["invoice_ref"] == "lnbc1"


@pytest.mark.parametrize("guess", [0, 7])
def test_guess_out_of_range(client, guess):
    session_id = create_session(client)
    assert client.post(f"/sessions/{session_id}/guess/{guess}").status_code == 422


def test_second_guess_conflicts(client):
    session_id = create_session(client)
    client.post(f"/sessions/{session_id}/guess/4")
    response = client.post(f"/sessions/{session_id}/guess/2")
    assert response.status_code == 409


def test_reset_clears_session(client):
    session_id = create_session(client)
    client.post(f"/sessions/{session_id}/guess/4")
    data = client.post(f"/sessions/{session_id}/reset").json()
    assert data["state"] == "idle"
    assert data["invoice_ref"] is None
    assert data["guess"] is None


def test_check_payment_and_retry_payout_need_the_right_state(client):
    session_id = create_session(client)
    assert client.post(f"/sessions/{session_id}/check-payment").status_code == 409
    assert client.post(f"/sessions/{session_id}/retry-payout").status_code == 409


def test_unknown_session(client):
    missing = "00000000-0000-7000-8000-000000000000"
    assert client.get(f"/sessions/{missing}").status_code == 404
    assert client.post(f"/sessions/{missing}/guess/1").status_code == 404
    assert client.delete(f"/sessions/{missing}").status_code == 404


def test_delete_session(client):
    session_id = create_session(client)
    assert client.delete(f"/sessions/{session_id}").status_code == 204
    assert client.get(f"/sessions/{session_id}").status_code == 404


def test_paid_losing_game():
    lnbits = MockLNbits(paid=True)
    app = create_app(
        client_factory=lnbits.client,
        random_source_factory=lambda: FixedSource(1),
    )
    with TestClient(app) as client:
        session_id = create_session(client)
        client.post(f"/sessions/{session_id}/guess/6")

        data = None
        for _ in range(100):
            data = client.get(f"/sessions/{session_id}").json()
            if data["state"] == "lost":
                break
            time.sleep(0.01)

        assert data["state"] == "lost"
        assert data["outcome"] == 1
        assert data["payment_confirmed"] is True
        assert data["result"] == "Wrong! It was 1."
