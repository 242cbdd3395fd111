"""
User profile endpoints
"""

from fastapi import APIRouter, Depends

from .auth import get_service, require_user
from .schemas import ProfileResponse
from ..logging_config import request_user_context
from ..service import IdentityLedgerService


router = APIRouter()


@router.get("/profile", response_model=ProfileResponse)
def get_profile(
    user_id: int = Depends(require_user),
    service: IdentityLedgerService = Depends(get_service)
):
    """Profile of the authenticated user"""
    with request_user_context(user_id):
        return ProfileResponse.from_summary(service.get_profile(user_id))
