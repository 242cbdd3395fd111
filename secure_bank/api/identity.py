"""
Signup and signin endpoints
"""

from fastapi import APIRouter, Depends

from .auth import get_service
from .schemas import SignupRequest, SigninRequest, AuthResponse, UserSummaryModel
from ..service import IdentityLedgerService


router = APIRouter()


@router.post("/signup", response_model=AuthResponse)
def signup(
    request: SignupRequest,
    service: IdentityLedgerService = Depends(get_service)
):
    """Register a user, open their first account and return a session token"""
    result = service.signup(request.email, request.password, request.full_name)
    return AuthResponse(token=result.token, user=UserSummaryModel.from_summary(result.user))


@router.post("/signin", response_model=AuthResponse)
def signin(
    request: SigninRequest,
    service: IdentityLedgerService = Depends(get_service)
):
    """Authenticate with email and password"""
    result = service.signin(request.email, request.password)
    return AuthResponse(token=result.token, user=UserSummaryModel.from_summary(result.user))
