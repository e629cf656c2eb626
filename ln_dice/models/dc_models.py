from pydantic import BaseModel, Field
from enum import Enum
from uuid import UUID
from typing import Optional


class SessionState(str, Enum):
    idle = "idle"
    guess_selected = "guess_selected"
    awaiting_payment = "awaiting_payment"
    rolling = "rolling"
    lost = "lost"
    awaiting_payout = "awaiting_payout"
    payout_failed = "payout_failed"  # win that could not be turned into a withdraw link


class ErrorKind(str, Enum):
    transient = "transient"
    issuance = "issuance"
    payment_timeout = "payment_timeout"
    pot_too_low = "pot_too_low"


class PaymentWatchResult(str, Enum):
    confirmed = "confirmed"
    timed_out = "timed_out"


class SessionErrorModel(BaseModel):
    kind: ErrorKind
    message: str


class InvoiceModel(BaseModel):
    invoice_ref: str  # bolt11 payment request
    correlation_id: str  # payment hash


class PayoutModel(BaseModel):
    payout_auth_ref: str  # lnurl-withdraw
    payout_id: str
    amount: int


class PotState(BaseModel):
    """Process-wide pot reading. Only the pot ledger writes it."""

    balance_sats: int = Field(default=0, ge=0)
    last_error: Optional[str] = None


class GameSession(BaseModel):
    """Mutable record of one player's game, cleared on reset."""

    guess: Optional[int] = None
    invoice_ref: Optional[str] = None
    correlation_id: Optional[str] = None
    payment_confirmed: bool = False
    outcome: Optional[int] = None
    result: Optional[str] = None
    payout_auth_ref: Optional[str] = None
    payout_id: Optional[str] = None
    payout_amount: Optional[int] = None
    awaiting_payout: bool = False
    last_error: Optional[SessionErrorModel] = None
    roll_in_flight: bool = False


class PotModel(BaseModel):
    balance_sats: int
    display_sats: int
    last_error: Optional[str] = None  # last failed wallet read, cleared by the next good one


class GameSessionModel(BaseModel):
    """Snapshot of a session sent to clients."""

    session_id: UUID
    state: SessionState
    guess: Optional[int] = None
    invoice_ref: Optional[str] = None
    payment_confirmed: bool
    outcome: Optional[int] = None
    result: Optional[str] = None
    payout_auth_ref: Optional[str] = None
    payout_amount: Optional[int] = None
    awaiting_payout: bool
    rolling: bool
    last_error: Optional[SessionErrorModel] = None
    pot: PotModel
