import logging
from typing import Any

import httpx

from ln_dice.errors import TransientQueryError
from ln_dice.load_secrets import admin_key, lnbits_url, request_timeout

PAYMENTS_PATH = "/api/v1/payments"
WALLET_PATH = "/api/v1/wallet"
WITHDRAW_LINKS_PATH = "/withdraw/api/v1/links"


class LNbitsClient:
    """Thin async wrapper around the LNbits endpoints the game needs.

    Every failure (transport error, non-2xx status, body without the expected
    field) is raised as TransientQueryError. Callers decide whether that means
    "retry on the next tick" or "issuance failed".
    """

    def __init__(
        self,
        base_url: str = lnbits_url,
        api_key: str = admin_key,
        timeout: float = request_timeout,
        client: httpx.AsyncClient | None = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.api_key = api_key
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(base_url=self.base_url, timeout=timeout)

    @property
    def headers(self) -> dict:
        return {"X-Api-Key": self.api_key, "Content-Type": "application/json"}

    async def aclose(self):
        if self._owns_client:
            await self._client.aclose()

    async def _request(self, method: str, path: str, json_body: dict | None = None) -> dict:
        try:
            response = await self._client.request(
                method, path, json=json_body, headers=self.headers
            )
            response.raise_for_status()
            data = response.json()
        except (httpx.HTTPError, ValueError) as e:
            logging.error(f"LNbits {method} {path} failed: {e}")
            raise TransientQueryError(f"{method} {path} failed: {e}") from e
        if not isinstance(data, dict):
            logging.error(f"LNbits {method} {path} returned {type(data).__name__}")
            raise TransientQueryError(f"{method} {path} returned a non-object body")
        return data

    @staticmethod
    def _field(data: dict, key: str, path: str) -> Any:
        if key not in data:
            raise TransientQueryError(f"{path} response is missing '{key}'")
        return data[key]

    async def create_payment(self, amount: int, memo: str) -> tuple[str, str]:
        """Create an incoming invoice.

        Args:
            amount (int): Invoice amount in sats
            memo (str): Text shown in the payer's wallet

        Returns:
            tuple[str, str]: bolt11 payment request and payment hash
        """
        body = {"out": False, "amount": amount, "memo": memo}
        data = await self._request("POST", PAYMENTS_PATH, body)
        return (
            self._field(data, "bolt11", PAYMENTS_PATH),
            self._field(data, "payment_hash", PAYMENTS_PATH),
        )

    async def get_payment(self, payment_hash: str) -> bool:
        """Return True once the invoice identified by payment_hash is paid."""
        path = f"{PAYMENTS_PATH}/{payment_hash}"
        data = await self._request("GET", path)
        return bool(self._field(data, "paid", path))

    async def get_wallet(self) -> int:
        """Return the wallet balance in millisats."""
        data = await self._request("GET", WALLET_PATH)
        balance = self._field(data, "balance", WALLET_PATH)
        try:
            return int(balance)
        except (TypeError, ValueError) as e:
            raise TransientQueryError(f"wallet balance is not a number: {balance!r}") from e

    async def create_withdraw_link(
        self, title: str, amount: int, wait_time: int
    ) -> tuple[str, str]:
        """Create a single-use LNURL-withdraw link for exactly ``amount`` sats.

        Returns:
            tuple[str, str]: lnurl and link id
        """
        body = {
            "title": title,
            "min_withdrawable": amount,
            "max_withdrawable": amount,
            "uses": 1,
            "wait_time": wait_time,
            "is_unique": True,
        }
        data = await self._request("POST", WITHDRAW_LINKS_PATH, body)
        return (
            self._field(data, "lnurl", WITHDRAW_LINKS_PATH),
            str(self._field(data, "id", WITHDRAW_LINKS_PATH)),
        )

    async def get_withdraw_link(self, link_id: str) -> bool:
        """Return True once the withdraw link has been used."""
        path = f"{WITHDRAW_LINKS_PATH}/{link_id}"
        data = await self._request("GET", path)
        return bool(self._field(data, "used", path))
