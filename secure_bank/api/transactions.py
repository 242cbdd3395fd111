"""
Transaction history endpoints
"""

from typing import List
from fastapi import APIRouter, Depends

from .auth import get_service, require_user
from .schemas import TransactionModel
from ..logging_config import request_user_context
from ..service import IdentityLedgerService


router = APIRouter()


@router.get("/{account_id}", response_model=List[TransactionModel])
def list_transactions(
    account_id: str,
    user_id: int = Depends(require_user),
    service: IdentityLedgerService = Depends(get_service)
):
    """Most recent transactions of one of the caller's accounts, newest first"""
    with request_user_context(user_id):
        transactions = service.list_transactions(user_id, account_id)
    return [TransactionModel.from_transaction(txn) for txn in transactions]
