"""
Account and wallet models.

A ``UserAccount`` lives at ``users/{id}``. Its ``balance`` is the cached
ledger value; the reconciliation coordinator is the only writer of it.
"""

from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field, field_serializer

from stableflow.models.record import StoreRecord, utc_now


class AccountType(str, Enum):
    """How the account was registered."""
    PERSONAL = "PERSONAL"
    GOOGLE = "GOOGLE"


class UserAccount(StoreRecord):
    """A claimant's profile and cached ledger balance."""

    id: str = Field(..., min_length=1)
    email: Optional[str] = None
    display_name: Optional[str] = None
    photo_url: Optional[str] = None
    balance: Decimal = Field(
        default=Decimal("0"),
        description="Last known ledger balance in USDC"
    )
    wallet_address: Optional[str] = None
    department: Optional[str] = None
    position: Optional[str] = None
    created_at: Optional[datetime] = None
    last_login_at: Optional[datetime] = None
    is_verified: bool = Field(default=False, alias="verified")
    account_type: AccountType = AccountType.PERSONAL

    @field_serializer("balance")
    def serialize_balance(self, balance: Decimal) -> float:
        return float(balance)

    @property
    def has_wallet(self) -> bool:
        return bool(self.wallet_address)

    @property
    def initials(self) -> str:
        """Two-letter initials from the display name, falling back to email."""
        if self.display_name:
            parts = self.display_name.split()
            if len(parts) >= 2:
                return (parts[0][0] + parts[1][0]).upper()
            return self.display_name[0].upper()
        if self.email:
            return self.email[0].upper()
        return "?"


class WalletBalanceSnapshot(BaseModel):
    """
    One complete reconciliation result.

    Ephemeral: recomputed on every refresh and never stored as its own
    entity. Only ``usdc_balance`` is written back (as the ledger balance).
    """

    sol_balance: Decimal = Decimal("0")
    usdc_balance: Decimal = Decimal("0")
    fetched_at: datetime = Field(default_factory=utc_now)

    @classmethod
    def zero(cls) -> "WalletBalanceSnapshot":
        return cls()
