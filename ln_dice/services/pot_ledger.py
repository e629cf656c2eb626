import logging

from ln_dice.domain.dice_rules import display_pot, msats_to_sats
from ln_dice.errors import TransientQueryError
from ln_dice.lnbits_client import LNbitsClient
from ln_dice.models.dc_models import PotModel, PotState

POT_ERROR_MESSAGE = "Unable to fetch pot balance. Please try again later."


class PotLedger:
    """Keeps the latest pot reading. The wallet is the source of truth; the
    balance is never adjusted locally.

    Reads are numbered when they start. A read that finishes after a later
    one has already been stored is returned to its caller but not stored.
    """

    def __init__(self, client: LNbitsClient):
        self.client = client
        self.state = PotState()
        self._started = 0
        self._stored = 0

    @property
    def balance_sats(self) -> int:
        return self.state.balance_sats

    async def refresh_pot(self, strict: bool = False) -> int:
        """Read the wallet balance and store it as whole sats.

        Args:
            strict (bool, optional): Raise instead of falling back to the previous
                reading. Used where a decision must rest on a fresh balance. Defaults to False.

        Raises:
            TransientQueryError: The wallet could not be read and strict is set

        Returns:
            int: The fresh balance, or the previous one if the read failed
        """
        self._started += 1
        sequence = self._started
        try:
            balance_msats = await self.client.get_wallet()
        except TransientQueryError as e:
            logging.error(f"Failed to fetch wallet balance: {e}")
            if sequence > self._stored:
                self._stored = sequence
                self.state.last_error = POT_ERROR_MESSAGE
            if strict:
                raise TransientQueryError(POT_ERROR_MESSAGE) from e
            return self.state.balance_sats

        sats = msats_to_sats(balance_msats)
        if sequence < self._stored:
            logging.debug(f"Dropping pot read #{sequence}: read #{self._stored} is newer")
            return sats
        self._stored = sequence
        self.state = PotState(balance_sats=sats)
        logging.debug(f"Pot refreshed: {sats} sats")
        return sats

    def snapshot(self) -> PotModel:
        return PotModel(
            balance_sats=self.state.balance_sats,
            display_sats=display_pot(self.state.balance_sats),
            last_error=self.state.last_error,
        )
