"""
SMS cost tracking against user balances.
"""

import logging
import math
from abc import ABC, abstractmethod

from alertwatch.database.models import User
from alertwatch.database.repository import UserRepository

logger = logging.getLogger(__name__)


SINGLE_SEGMENT_LENGTH = 160
MULTIPART_SEGMENT_LENGTH = 153


class InsufficientBalanceError(Exception):
    """Raised when a user's balance cannot cover an SMS."""

    def __init__(self, user_id: int, required: float, available: float):
        self.user_id = user_id
        self.required = required
        self.available = available
        super().__init__(
            f"User {user_id} balance {available:.2f} is below required {required:.2f}"
        )


def count_segments(message: str) -> int:
    """Number of SMS segments needed for a message body."""
    if len(message) <= SINGLE_SEGMENT_LENGTH:
        return 1
    return math.ceil(len(message) / MULTIPART_SEGMENT_LENGTH)


class SmsBilling(ABC):
    """Charges for outgoing SMS."""

    @abstractmethod
    def charge(self, user: User, message: str) -> float:
        """
        Reserve the cost of a message.

        Returns:
            Amount charged

        Raises:
            InsufficientBalanceError: If the user cannot afford it
        """
        pass

    @abstractmethod
    def refund(self, user: User, amount: float) -> None:
        """Return a charge after a failed send."""
        pass


class BalanceBilling(SmsBilling):
    """Deducts a per-segment cost from users.sms_balance."""

    def __init__(self, users: UserRepository, cost_per_segment: float = 0.04):
        self.users = users
        self.cost_per_segment = cost_per_segment

    def cost(self, message: str) -> float:
        return round(count_segments(message) * self.cost_per_segment, 4)

    def charge(self, user: User, message: str) -> float:
        amount = self.cost(message)
        if not self.users.adjust_sms_balance(user.id, -amount):
            current = self.users.get_by_id(user.id)
            available = current.sms_balance if current else 0.0
            raise InsufficientBalanceError(user.id, amount, available)

        user.sms_balance = round(user.sms_balance - amount, 4)
        logger.debug(f"Charged user {user.id} {amount:.4f} for SMS")
        return amount

    def refund(self, user: User, amount: float) -> None:
        if amount <= 0:
            return
        self.users.adjust_sms_balance(user.id, amount)
        user.sms_balance = round(user.sms_balance + amount, 4)
        logger.debug(f"Refunded user {user.id} {amount:.4f} for failed SMS")


class UnmeteredBilling(SmsBilling):
    """No-op billing used when billing is disabled."""

    def charge(self, user: User, message: str) -> float:
        return 0.0

    def refund(self, user: User, amount: float) -> None:
        pass
