"""Admission control for new agent registrations.

The registration fee is a spam deterrent: it is checked before anything is
written and retained by the identity registry. There is no refund path.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Protocol

from .errors import InsufficientFeeError


class AdmissionPolicy(Protocol):
    def admit(self, address: str, fee: int) -> int:
        """Raise if the registration is not admitted, else return the fee to retain."""
        ...


@dataclass(frozen=True)
class FeeAdmissionPolicy:
    """Require at least ``registration_fee`` wei with every registration."""

    registration_fee: int = 0

    def __post_init__(self):
        if self.registration_fee < 0:
            raise ValueError("registration_fee must be >= 0")

    def admit(self, address: str, fee: int) -> int:
        if isinstance(fee, bool) or not isinstance(fee, int) or fee < 0:
            raise ValueError("fee must be a non-negative integer amount of wei")
        if fee < self.registration_fee:
            raise InsufficientFeeError(fee, self.registration_fee)
        return fee
