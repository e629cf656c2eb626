"""Dice game rules that are independent from HTTP and the wallet backend.

Rule of thumb:
- OK: constants, the dice draw, payout sizing, backoff arithmetic.
- Not OK: touching the LNbits client, the scheduler, asyncio.sleep(), etc.
"""

import numpy as np

DICE_FACES = 6
INVOICE_AMOUNT = 100
INVOICE_MEMO = "Pay to Roll Dice Game"
FEE_BUFFER_SATS = 10
WITHDRAW_TITLE = "Dice Game Winnings"
WITHDRAW_WAIT_TIME = 1
MSATS_PER_SAT = 1000

# ==== Polling =================================================================
INITIAL_BACKOFF_SECONDS = 3.0
MAX_BACKOFF_SECONDS = 30.0
MAX_PAYMENT_ATTEMPTS = 5
REFRESH_WITHDRAWAL_INTERVAL = 5
REFRESH_POT_INTERVAL = 10


def validate_guess(guess: int) -> int:
    """Return the guess unchanged, or raise ValueError if it is not a die face."""
    if isinstance(guess, bool) or not isinstance(guess, int):
        raise ValueError("guess must be an integer")
    if guess < 1 or guess > DICE_FACES:
        raise ValueError(f"guess must be between 1 and {DICE_FACES}")
    return guess


def draw(random_source: np.random.Generator) -> int:
    """Draw one die face from the given random source.

    Args:
        random_source (np.random.Generator): Anything exposing ``integers(low, high)``
            with numpy's half-open semantics. Seeded generators make the draw reproducible.

    Returns:
        int: Value in 1..6
    """
    value = int(random_source.integers(1, DICE_FACES + 1))
    if value < 1 or value > DICE_FACES:
        raise ValueError(f"random source produced {value}, outside 1..{DICE_FACES}")
    return value


def is_win(value: int, guess: int) -> bool:
    return value == guess


def msats_to_sats(balance_msats: int) -> int:
    """Convert a wallet balance in millisats to whole sats, flooring."""
    return max(int(balance_msats) // MSATS_PER_SAT, 0)


def claimable_amount(pot_sats: int, fee_buffer: int = FEE_BUFFER_SATS) -> int:
    """Amount a winner may withdraw. Can be zero or negative; callers must check."""
    return pot_sats - fee_buffer


def display_pot(pot_sats: int, fee_buffer: int = FEE_BUFFER_SATS) -> int:
    """Pot shown to players: what a winner could actually claim, never negative."""
    return max(claimable_amount(pot_sats, fee_buffer), 0)


def backoff_delay(
    attempt: int,
    initial: float = INITIAL_BACKOFF_SECONDS,
    cap: float = MAX_BACKOFF_SECONDS,
) -> float:
    """Delay before retry number ``attempt`` (counted from 1).

    delay = min(initial * 2 ** (attempt - 1), cap)
    """
    if attempt < 1:
        raise ValueError("attempt is counted from 1")
    return min(initial * 2 ** (attempt - 1), cap)
