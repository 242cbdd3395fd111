"""
Identity & Ledger Service

Signup, signin and the read-only views of a user's profile, accounts and
recent transactions. Every operation checks a connection out of the store's
pool for its own duration; business errors propagate as BankError subclasses
and anything else is reported as InternalError with a generic message.
"""

from decimal import Decimal
from functools import wraps
from typing import List, Optional, Union
import secrets
import string

from .config import BankConfig
from .errors import (
    BankError, ValidationError, DuplicateEmail, InvalidCredentials,
    Unauthenticated, AccessDenied, InternalError
)
from .models import User, Account, Transaction, UserSummary, AuthResult, to_amount
from .passwords import PasswordHasher
from .storage import CredentialStore, StoreConnection, StorageError, UniqueViolation
from .tokens import TokenService
from .logging_config import get_logger, log_action


ACCOUNT_NUMBER_ALPHABET = string.digits + string.ascii_uppercase

# Largest value of a SQLite INTEGER primary key
MAX_ROW_ID = 2 ** 63 - 1


def _is_utf8(value: str) -> bool:
    """False for strings holding lone surrogates, which cannot be stored"""
    try:
        value.encode("utf-8")
    except UnicodeEncodeError:
        return False
    return True


def operation(failure_message: str):
    """Map unexpected failures of a service operation to InternalError"""
    def decorator(func):
        @wraps(func)
        def wrapper(self, *args, **kwargs):
            try:
                return func(self, *args, **kwargs)
            except BankError:
                raise
            except Exception as e:
                self.logger.error(f"{func.__name__} failed: {e}", exc_info=True)
                raise InternalError(failure_message) from e
        return wrapper
    return decorator


class IdentityLedgerService:
    """
    Request handlers of the banking API.

    Callers are identified by the user id of a verified session token; no
    operation accepts another user's id.
    """

    def __init__(
        self,
        store: CredentialStore,
        hasher: PasswordHasher,
        tokens: TokenService,
        opening_balance: Union[str, Decimal] = "5000.00",
        account_type: str = "Compte Courant",
        account_number_prefix: str = "FR",
        account_number_length: int = 9,
        account_number_attempts: int = 5,
        transactions_page_size: int = 10
    ):
        self.store = store
        self.hasher = hasher
        self.tokens = tokens
        self.opening_balance = to_amount(opening_balance)
        self.account_type = account_type
        self.account_number_prefix = account_number_prefix
        self.account_number_length = account_number_length
        self.account_number_attempts = account_number_attempts
        self.transactions_page_size = transactions_page_size
        self.logger = get_logger("secure_bank.service")

    @classmethod
    def from_config(cls, store: CredentialStore, config: BankConfig) -> 'IdentityLedgerService':
        """Wire a service from configuration"""
        return cls(
            store=store,
            hasher=PasswordHasher(config.scrypt_n, config.scrypt_r, config.scrypt_p),
            tokens=TokenService(config.jwt_secret, config.jwt_algorithm, config.jwt_expiry_hours),
            opening_balance=config.opening_balance,
            account_type=config.default_account_type,
            account_number_prefix=config.account_number_prefix,
            account_number_length=config.account_number_length,
            account_number_attempts=config.account_number_attempts,
            transactions_page_size=config.transactions_page_size
        )

    @operation("Registration failed")
    def signup(self, email: Optional[str], password: Optional[str],
               full_name: Optional[str]) -> AuthResult:
        """
        Register a user with one opening account and sign them in.

        The user row and the account row are written in a single store
        transaction, so a failed account insert leaves no user behind.

        Raises:
            ValidationError: a field is missing, empty or not valid UTF-8 text
            DuplicateEmail: the email is already registered
        """
        if not email or not password or not full_name:
            raise ValidationError("Missing required fields")
        if not all(_is_utf8(value) for value in (email, password, full_name)):
            raise ValidationError("Fields must be valid UTF-8 text")

        password_hash = self.hasher.hash(password)

        with self.store.connection() as conn:
            try:
                with conn.atomic():
                    user_id = conn.insert_user(email, password_hash, full_name)
                    account_number = self._open_account(conn, user_id)
            except UniqueViolation as e:
                if e.table != "users" or e.field != "email":
                    raise
                log_action(self.logger, "info", "Signup rejected: email already registered",
                           action="signup_failed", resource="user")
                raise DuplicateEmail()

        log_action(self.logger, "info", "User registered",
                   user_id=user_id, action="signup", resource=f"user:{user_id}",
                   extra={"account_number": account_number})

        token = self.tokens.issue(user_id, email)
        return AuthResult(token=token, user=UserSummary(id=user_id, email=email, full_name=full_name))

    @operation("Login failed")
    def signin(self, email: Optional[str], password: Optional[str]) -> AuthResult:
        """
        Authenticate with email and password.

        Unknown email and wrong password both raise InvalidCredentials.
        """
        if not email or not password:
            raise ValidationError("Missing email or password")

        row = None
        if _is_utf8(email):
            with self.store.connection() as conn:
                row = conn.find_user_by_email(email)

        if row is None:
            self.hasher.dummy_verify(password)
            log_action(self.logger, "warning", "Signin rejected",
                       action="signin_failed", resource="auth")
            raise InvalidCredentials()

        user = User.from_row(row)
        if not self.hasher.verify(password, user.password_hash):
            log_action(self.logger, "warning", "Signin rejected",
                       user_id=user.id, action="signin_failed", resource="auth")
            raise InvalidCredentials()

        log_action(self.logger, "info", "User signed in",
                   user_id=user.id, action="signin", resource=f"user:{user.id}")

        token = self.tokens.issue(user.id, user.email)
        return AuthResult(token=token, user=user.summary())

    @operation("Failed to fetch profile")
    def get_profile(self, user_id: int) -> UserSummary:
        """Public fields of the authenticated user"""
        with self.store.connection() as conn:
            row = conn.get_user(user_id)

        if row is None:
            # Token outlived its user
            raise Unauthenticated("Unknown user")
        return User.from_row(row).summary()

    @operation("Failed to fetch accounts")
    def list_accounts(self, user_id: int) -> List[Account]:
        """All accounts owned by the authenticated user"""
        with self.store.connection() as conn:
            rows = conn.find_accounts_by_user(user_id)
        return [Account.from_row(row) for row in rows]

    @operation("Failed to fetch transactions")
    def list_transactions(self, user_id: int, account_id: Union[int, str]) -> List[Transaction]:
        """
        Most recent transactions of one of the caller's accounts, newest first.

        Raises:
            AccessDenied: the account does not exist or belongs to someone else
        """
        parsed_id = self._parse_id(account_id)

        with self.store.connection() as conn:
            account = conn.get_account(parsed_id) if parsed_id is not None else None
            if account is None or account['user_id'] != user_id:
                log_action(self.logger, "warning", "Transaction listing denied",
                           user_id=user_id, action="list_transactions_denied",
                           resource=f"account:{account_id}")
                raise AccessDenied()

            rows = conn.recent_transactions(parsed_id, self.transactions_page_size)

        return [Transaction.from_row(row) for row in rows]

    def _open_account(self, conn: StoreConnection, user_id: int) -> str:
        """Insert the opening account, regenerating the number on collision"""
        for attempt in range(1, self.account_number_attempts + 1):
            account_number = self.generate_account_number()
            try:
                conn.insert_account(user_id, account_number, self.opening_balance, self.account_type)
                return account_number
            except UniqueViolation as e:
                if e.field != "account_number":
                    raise
                self.logger.warning(
                    f"Account number collision on attempt {attempt}/{self.account_number_attempts}"
                )
        raise StorageError("Could not allocate a unique account number")

    def generate_account_number(self) -> str:
        """Country-style prefix followed by an uppercase alphanumeric suffix"""
        suffix = "".join(
            secrets.choice(ACCOUNT_NUMBER_ALPHABET) for _ in range(self.account_number_length)
        )
        return f"{self.account_number_prefix}{suffix}"

    @staticmethod
    def _parse_id(value: Union[int, str]) -> Optional[int]:
        if isinstance(value, bool):
            return None
        if isinstance(value, int):
            return value if 0 < value <= MAX_ROW_ID else None
        if isinstance(value, str) and value.isascii() and value.isdigit():
            parsed = int(value)
            return parsed if 0 < parsed <= MAX_ROW_ID else None
        return None
