"""
Operation Picker

Chooses what the bot does each cycle: wrap or unwrap, how much, and how
long to wait before the next cycle.
"""

import random
from enum import Enum
from dataclasses import dataclass
from decimal import Decimal, ROUND_DOWN
from typing import Optional


class OperationKind(Enum):
    WRAP = "wrap"
    UNWRAP = "unwrap"


@dataclass(frozen=True)
class OperationRequest:
    """A single wrap or unwrap of ``amount`` base-asset units."""
    kind: OperationKind
    amount: Decimal


class OperationPicker:
    """Bounded randomization with an injectable random source."""

    def __init__(self, rng: Optional[random.Random] = None):
        self.rng = rng or random.Random()

    def pick_kind(self) -> OperationKind:
        return OperationKind.WRAP if self.rng.random() < 0.5 else OperationKind.UNWRAP

    def pick_amount(self, minimum: float, maximum: float) -> float:
        """Uniform value in [minimum, maximum)."""
        amount = minimum + (maximum - minimum) * self.rng.random()
        # Float rounding can land exactly on the upper bound
        if amount >= maximum and maximum > minimum:
            return minimum
        return amount

    def pick_interval_millis(self, min_minutes: float, max_minutes: float) -> float:
        return self.pick_amount(min_minutes, max_minutes) * 60 * 1000

    def pick_operation(self, minimum: float, maximum: float, decimals: int = 6) -> OperationRequest:
        """Pick kind and amount, truncating the amount to ``decimals`` places."""
        kind = self.pick_kind()
        raw = Decimal(repr(self.pick_amount(minimum, maximum)))
        amount = raw.quantize(Decimal(1).scaleb(-decimals), rounding=ROUND_DOWN)
        return OperationRequest(kind, amount)
