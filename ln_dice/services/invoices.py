import logging

from ln_dice.domain.dice_rules import INVOICE_AMOUNT, INVOICE_MEMO
from ln_dice.errors import IssuanceError, TransientQueryError
from ln_dice.lnbits_client import LNbitsClient
from ln_dice.models.dc_models import InvoiceModel

INVOICE_ERROR_MESSAGE = "Failed to create payment invoice. Please try again."


class InvoiceIssuer:
    def __init__(self, client: LNbitsClient, amount: int = INVOICE_AMOUNT, memo: str = INVOICE_MEMO):
        self.client = client
        self.amount = amount
        self.memo = memo

    async def issue_invoice(self) -> InvoiceModel:
        """Request a fixed-amount entry invoice.

        Raises:
            IssuanceError: The backend did not return an invoice

        Returns:
            InvoiceModel: Payable reference and the hash used to poll its status
        """
        try:
            bolt11, payment_hash = await self.client.create_payment(self.amount, self.memo)
        except TransientQueryError as e:
            logging.error(f"Invoice creation failed: {e}")
            raise IssuanceError(INVOICE_ERROR_MESSAGE) from e
        logging.info(f"Invoice issued: payment_hash={payment_hash}")
        return InvoiceModel(invoice_ref=bolt11, correlation_id=payment_hash)
