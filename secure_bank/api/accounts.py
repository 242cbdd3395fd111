"""
Account endpoints
"""

from typing import List
from fastapi import APIRouter, Depends

from .auth import get_service, require_user
from .schemas import AccountModel
from ..logging_config import request_user_context
from ..service import IdentityLedgerService


router = APIRouter()


@router.get("", response_model=List[AccountModel])
def list_accounts(
    user_id: int = Depends(require_user),
    service: IdentityLedgerService = Depends(get_service)
):
    """Accounts owned by the authenticated user"""
    with request_user_context(user_id):
        accounts = service.list_accounts(user_id)
    return [AccountModel.from_account(account) for account in accounts]
