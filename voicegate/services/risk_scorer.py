"""
Transaction risk scoring.

The score is additive and capped at 100. It is informational only: the band
is shown to the caller, but nothing in the workflow gates on it.
"""

from datetime import datetime
from typing import Callable, Iterable, Optional, Union
from zoneinfo import ZoneInfo

from voicegate.models.internal_models import RiskBand, utcnow

HIGH_AMOUNT = 5000
VERY_HIGH_AMOUNT = 10000
QUIET_HOURS_START = 6
QUIET_HOURS_END = 22

TYPE_WEIGHTS = {
    "INTERNATIONAL": 25,
    "CRYPTO": 35,
}

TransactionType = Union[str, Iterable[str], None]


def _type_flags(transaction_type: TransactionType) -> set:
    if transaction_type is None:
        return set()
    if isinstance(transaction_type, str):
        return {transaction_type.upper()}
    return {t.upper() for t in transaction_type}


def score(transaction_type: TransactionType, amount: float, hour_of_day: int) -> int:
    """
    Compute the risk score of a transaction.

    Args:
        transaction_type: A type name, or an iterable of type flags when a
            transaction is flagged as more than one type
        amount: Transaction amount, non-negative
        hour_of_day: Local hour, 0-23

    Returns:
        Integer risk score in [0, 100]
    """
    if amount is None or amount < 0:
        raise ValueError(f"Amount must be non-negative, got {amount}")
    if not 0 <= hour_of_day <= 23:
        raise ValueError(f"Hour of day must be between 0 and 23, got {hour_of_day}")

    total = 0
    if amount > HIGH_AMOUNT:
        total += 30
    if amount > VERY_HIGH_AMOUNT:
        total += 20

    for flag in _type_flags(transaction_type):
        total += TYPE_WEIGHTS.get(flag, 0)

    if hour_of_day < QUIET_HOURS_START or hour_of_day > QUIET_HOURS_END:
        total += 15

    return min(total, 100)


def risk_band(risk_score: int) -> RiskBand:
    if risk_score > 70:
        return RiskBand.HIGH
    if risk_score > 40:
        return RiskBand.MEDIUM
    return RiskBand.LOW


class RiskScorer:
    """Scores transactions using the hour in a configured timezone."""

    def __init__(self, timezone_name: str = "America/Lima", clock: Optional[Callable[[], datetime]] = None):
        self.timezone = ZoneInfo(timezone_name)
        self._clock = clock or utcnow

    def local_hour(self) -> int:
        return self._clock().astimezone(self.timezone).hour

    def score(self, transaction_type: TransactionType, amount: float, hour_of_day: Optional[int] = None) -> int:
        if hour_of_day is None:
            hour_of_day = self.local_hour()
        return score(transaction_type, amount, hour_of_day)

    def score_now(self, transaction_type: TransactionType, amount: float) -> int:
        return self.score(transaction_type, amount)

    @staticmethod
    def band(risk_score: int) -> RiskBand:
        return risk_band(risk_score)
