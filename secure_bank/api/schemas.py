"""
Pydantic schemas for API requests and responses
"""

from typing import Optional
from pydantic import BaseModel, Field

from ..models import Account, Transaction, UserSummary


# Request fields are optional so missing values surface as ValidationError
class SignupRequest(BaseModel):
    email: Optional[str] = None
    password: Optional[str] = None
    full_name: Optional[str] = Field(None, alias="fullName")

    class Config:
        populate_by_name = True


class SigninRequest(BaseModel):
    email: Optional[str] = None
    password: Optional[str] = None


class UserSummaryModel(BaseModel):
    id: int
    email: str
    full_name: str = Field(..., alias="fullName")

    class Config:
        populate_by_name = True

    @classmethod
    def from_summary(cls, summary: UserSummary) -> 'UserSummaryModel':
        return cls(id=summary.id, email=summary.email, full_name=summary.full_name)


class AuthResponse(BaseModel):
    token: str
    user: UserSummaryModel


class ProfileResponse(BaseModel):
    id: int
    email: str
    full_name: str

    @classmethod
    def from_summary(cls, summary: UserSummary) -> 'ProfileResponse':
        return cls(id=summary.id, email=summary.email, full_name=summary.full_name)


class AccountModel(BaseModel):
    id: int
    account_number: str
    balance: str = Field(..., description="Decimal amount as string")
    account_type: str
    created_at: str

    @classmethod
    def from_account(cls, account: Account) -> 'AccountModel':
        return cls(**account.to_dict())


class TransactionModel(BaseModel):
    id: int
    description: str
    amount: str = Field(..., description="Unsigned decimal amount as string")
    type: str = Field(..., description="debit or credit")
    created_at: str

    @classmethod
    def from_transaction(cls, transaction: Transaction) -> 'TransactionModel':
        return cls(**transaction.to_dict())


class ErrorResponse(BaseModel):
    error: str
    code: str
