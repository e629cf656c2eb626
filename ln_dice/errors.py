class DiceGameError(Exception):
    """Base class for failures the session turns into a user-facing message."""

    default_message = "Something went wrong."

    def __init__(self, message: str | None = None):
        self.message = message or self.default_message
        super().__init__(self.message)


class TransientQueryError(DiceGameError):
    """A backend query failed (network, status code, malformed body). Safe to retry."""

    default_message = "Unable to reach the payment backend. Please try again later."


class IssuanceError(DiceGameError):
    """An invoice or withdrawal link could not be created. Needs an explicit retry."""

    default_message = "Failed to create payment request. Please try again."


class PaymentTimeoutError(DiceGameError):
    """Payment was not observed within the bounded number of checks."""

    default_message = "Payment is taking longer than expected. Please check your wallet."


class PotTooLowError(DiceGameError):
    """The winner's claimable amount is not positive. Terminal for that win."""

    default_message = "Pot too low to cover withdrawal fee."

    def __init__(self, claimable: int, message: str | None = None):
        self.claimable = claimable
        super().__init__(message)


class SessionBusyError(DiceGameError):
    """The requested player action is not allowed in the current session state."""

    default_message = "A game is already in progress."
