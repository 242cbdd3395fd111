"""
Authentication and authorization dependencies
"""

from typing import Optional
from fastapi import Depends, Header, Request

from ..auth import AuthenticationGate
from ..config import BankConfig
from ..service import IdentityLedgerService
from ..storage import CredentialStore, create_store


class BankingSystem:
    """Store, service and authentication gate wired from one configuration"""

    def __init__(self, config: BankConfig, store: Optional[CredentialStore] = None):
        self.config = config
        self.store = store or create_store(
            config.database_url,
            pool_size=config.database_pool_size,
            pool_timeout=config.database_pool_timeout
        )
        self.service = IdentityLedgerService.from_config(self.store, config)
        self.gate = AuthenticationGate(self.service.tokens)

    def close(self) -> None:
        self.store.close()


def get_banking_system(request: Request) -> BankingSystem:
    """Banking system attached to the running application"""
    return request.app.state.banking_system


def get_service(system: BankingSystem = Depends(get_banking_system)) -> IdentityLedgerService:
    return system.service


def require_user(
    request: Request,
    authorization: Optional[str] = Header(None),
    system: BankingSystem = Depends(get_banking_system)
) -> int:
    """Dependency that validates the bearer token and returns the caller's user id"""
    identity = system.gate.authenticate(authorization)
    request.state.user_id = identity.user_id
    return identity.user_id
