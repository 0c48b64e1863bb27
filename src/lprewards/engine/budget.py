"""Run-scoped budget enforcement."""

import logging
from decimal import Decimal

from . import decimal_math as dm
from .decimal_math import ZERO

logger = logging.getLogger(__name__)


class BudgetTracker:
    """Clamp per-user rewards against the remaining game budget.

    Users are granted in call order; the user whose reward crosses the limit
    receives exactly what is left, everyone after receives zero.
    """

    def __init__(self, max_budget: Decimal, already_paid: Decimal = ZERO):
        """
        Initialize the tracker for one run.

        Args:
            max_budget: Total reward budget of the game
            already_paid: Cumulative reward paid by previous runs
        """
        self.max_budget = max_budget
        self.paid = already_paid
        self.granted_this_run = ZERO

    @property
    def remaining(self) -> Decimal:
        remaining = dm.sub(self.max_budget, self.paid)
        return remaining if remaining > ZERO else ZERO

    @property
    def exhausted(self) -> bool:
        return self.paid >= self.max_budget

    def grant(self, reward: Decimal) -> Decimal:
        """
        Grant a user's reward within the remaining budget.

        Args:
            reward: Summed three-pool reward computed for the user

        Returns:
            Amount actually granted
        """
        if self.exhausted or reward <= ZERO:
            return ZERO

        remaining = self.remaining
        if reward < remaining:
            granted = reward
        else:
            granted = remaining
            logger.debug("Budget truncation: reward %s clamped to remaining %s", reward, remaining)

        self.paid = dm.add(self.paid, granted)
        self.granted_this_run = dm.add(self.granted_this_run, granted)
        return granted
