"""
Domain Records

Users, their accounts and the transactions posted to those accounts, plus the
value objects exchanged between the service and its callers. All monetary
values are Decimal quantized to cents and serialized as strings.
"""

from decimal import Decimal
from datetime import datetime, timezone
from dataclasses import dataclass, field
from typing import Any, Dict, Union
from enum import Enum


CENTS = Decimal("0.01")


def to_amount(value: Union[str, int, Decimal]) -> Decimal:
    """Convert a stored amount to a two-decimal Decimal"""
    return Decimal(str(value)).quantize(CENTS)


def parse_timestamp(value: Union[str, datetime]) -> datetime:
    """Parse an ISO timestamp from storage, assuming UTC when naive"""
    if isinstance(value, str):
        value = datetime.fromisoformat(value)
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value


class TransactionDirection(Enum):
    """Which way money moved; amounts themselves are unsigned"""
    DEBIT = "debit"
    CREDIT = "credit"


@dataclass
class UserSummary:
    """Public view of a user"""
    id: int
    email: str
    full_name: str


@dataclass
class User:
    """Registered user. The password hash never leaves the service."""
    id: int
    email: str
    password_hash: str = field(repr=False)
    full_name: str = ""
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def summary(self) -> UserSummary:
        return UserSummary(id=self.id, email=self.email, full_name=self.full_name)

    @classmethod
    def from_row(cls, row: Dict[str, Any]) -> 'User':
        return cls(
            id=row['id'],
            email=row['email'],
            password_hash=row['password_hash'],
            full_name=row['full_name'],
            created_at=parse_timestamp(row['created_at'])
        )


@dataclass
class Account:
    """Bank account owned by exactly one user"""
    id: int
    user_id: int
    account_number: str
    balance: Decimal
    account_type: str
    created_at: datetime

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "account_number": self.account_number,
            "balance": str(self.balance),
            "account_type": self.account_type,
            "created_at": self.created_at.isoformat()
        }

    @classmethod
    def from_row(cls, row: Dict[str, Any]) -> 'Account':
        return cls(
            id=row['id'],
            user_id=row['user_id'],
            account_number=row['account_number'],
            balance=to_amount(row['balance']),
            account_type=row['account_type'],
            created_at=parse_timestamp(row['created_at'])
        )


@dataclass
class Transaction:
    """Transaction posted to an account by an external process"""
    id: int
    account_id: int
    description: str
    amount: Decimal
    direction: TransactionDirection
    created_at: datetime

    def __post_init__(self):
        if self.amount < 0:
            raise ValueError("Transaction amount must be an unsigned magnitude")

    @property
    def signed_amount(self) -> Decimal:
        return -self.amount if self.direction == TransactionDirection.DEBIT else self.amount

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "description": self.description,
            "amount": str(self.amount),
            "type": self.direction.value,
            "created_at": self.created_at.isoformat()
        }

    @classmethod
    def from_row(cls, row: Dict[str, Any]) -> 'Transaction':
        return cls(
            id=row['id'],
            account_id=row['account_id'],
            description=row['description'],
            amount=to_amount(row['amount']),
            direction=TransactionDirection(row['type']),
            created_at=parse_timestamp(row['created_at'])
        )


@dataclass(frozen=True)
class SessionIdentity:
    """Identity carried inside a session token"""
    user_id: int
    email: str
    issued_at: datetime


@dataclass
class AuthResult:
    """Outcome of a successful signup or signin"""
    token: str
    user: UserSummary
