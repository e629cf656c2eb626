import logging

from ln_dice.domain.dice_rules import (
    FEE_BUFFER_SATS,
    WITHDRAW_TITLE,
    WITHDRAW_WAIT_TIME,
    claimable_amount,
)
from ln_dice.errors import IssuanceError, PotTooLowError, TransientQueryError
from ln_dice.lnbits_client import LNbitsClient
from ln_dice.models.dc_models import PayoutModel

PAYOUT_ERROR_MESSAGE = "Unable to create withdrawal link. Please try again later."


class PayoutIssuer:
    def __init__(self, client: LNbitsClient, fee_buffer: int = FEE_BUFFER_SATS):
        self.client = client
        self.fee_buffer = fee_buffer

    async def issue_payout(self, pot_sats: int) -> PayoutModel:
        """Create a single-use withdraw link for the winner.

        The pot must be a reading taken after the win was detected. The wait time
        before the link may be claimed is enforced by the backend.

        Args:
            pot_sats (int): Fresh pot balance in sats

        Raises:
            PotTooLowError: pot minus fee buffer is not positive; no backend call is made
            IssuanceError: The backend did not return a link

        Returns:
            PayoutModel: lnurl, link id and the exact claimable amount
        """
        amount = claimable_amount(pot_sats, self.fee_buffer)
        if amount <= 0:
            logging.info(f"Pot too low for payout: pot={pot_sats}, claimable={amount}")
            raise PotTooLowError(amount)

        try:
            lnurl, link_id = await self.client.create_withdraw_link(
                WITHDRAW_TITLE, amount, WITHDRAW_WAIT_TIME
            )
        except TransientQueryError as e:
            logging.error(f"Failed to create LNURL-withdraw: {e}")
            raise IssuanceError(PAYOUT_ERROR_MESSAGE) from e
        logging.info(f"Payout link {link_id} issued for {amount} sats")
        return PayoutModel(payout_auth_ref=lnurl, payout_id=link_id, amount=amount)
