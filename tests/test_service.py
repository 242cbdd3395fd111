"""
Test suite for the identity & ledger service

Tests signup, signin, profile, account and transaction access rules,
including atomic signup and connection release on every exit path.
"""

import pytest
import re
from decimal import Decimal
from datetime import datetime, timezone, timedelta
from unittest.mock import patch

from secure_bank.errors import (
    ValidationError, DuplicateEmail, InvalidCredentials,
    Unauthenticated, AccessDenied, InternalError
)
from secure_bank.models import TransactionDirection
from secure_bank.passwords import PasswordHasher
from secure_bank.service import IdentityLedgerService
from secure_bank.storage import InMemoryStore, InMemoryConnection, SQLiteStore, StorageError
from secure_bank.tokens import TokenService


@pytest.fixture
def store():
    """Create in-memory store for tests"""
    store = InMemoryStore(pool_size=2, pool_timeout=0.1)
    store.initialize()
    return store


@pytest.fixture
def tokens():
    return TokenService("test-secret")


@pytest.fixture
def service(store, tokens):
    """Create service with a low-cost hasher"""
    return IdentityLedgerService(store, PasswordHasher(n=1024, r=8, p=1), tokens)


@pytest.fixture
def sqlite_service(tmp_path, tokens):
    """Service over a SQLite database file"""
    store = SQLiteStore(tmp_path / "bank.db", pool_size=2, pool_timeout=0.1)
    store.initialize()
    yield IdentityLedgerService(store, PasswordHasher(n=1024, r=8, p=1), tokens)
    store.close()


def _user_count(store):
    return len(store._db.tables["users"])


def _account_count(store):
    return len(store._db.tables["accounts"])


def _seed(store, account_id, count, start=None):
    start = start or datetime(2024, 3, 1, tzinfo=timezone.utc)
    with store.connection() as conn:
        for i in range(count):
            direction = "debit" if i % 3 else "credit"
            conn.insert_transaction(account_id, f"Operation {i}", Decimal("12.50"), direction,
                                    created_at=start + timedelta(hours=i))


class TestSignup:
    """Test user registration"""

    def test_signup_creates_user_and_one_account(self, service, store, tokens):
        """Test signup returns a token and summary and opens one account"""
        result = service.signup("a@x.com", "p", "Jean")

        assert result.user.email == "a@x.com"
        assert result.user.full_name == "Jean"
        assert tokens.verify(result.token).user_id == result.user.id
        assert _user_count(store) == 1
        assert _account_count(store) == 1

        accounts = service.list_accounts(result.user.id)
        assert len(accounts) == 1
        assert accounts[0].balance == Decimal("5000.00")
        assert accounts[0].account_type == "Compte Courant"
        assert re.fullmatch(r"FR[0-9A-Z]{9}", accounts[0].account_number)

    def test_password_stored_hashed(self, service, store):
        """Test the stored password is a digest, not the plaintext"""
        service.signup("a@x.com", "p", "Jean")
        with store.connection() as conn:
            row = conn.find_user_by_email("a@x.com")
        assert row["password_hash"] != "p"
        assert row["password_hash"].startswith("scrypt$")

    @pytest.mark.parametrize("email,password,full_name", [
        (None, "p", "Jean"),
        ("a@x.com", None, "Jean"),
        ("a@x.com", "p", None),
        ("", "p", "Jean"),
        ("a@x.com", "", "Jean"),
        ("a@x.com", "p", ""),
    ])
    def test_missing_fields_rejected(self, service, store, email, password, full_name):
        """Test every field is required"""
        with pytest.raises(ValidationError):
            service.signup(email, password, full_name)
        assert _user_count(store) == 0

    @pytest.mark.parametrize("email,password,full_name", [
        ("a@x.com", "\ud800", "Jean"),
        ("\udfff@x.com", "p", "Jean"),
        ("a@x.com", "p", "Je\ud83dan"),
    ])
    def test_unencodable_text_rejected(self, sqlite_service, email, password, full_name):
        """Test lone surrogates are a validation error rather than a failure"""
        with pytest.raises(ValidationError):
            sqlite_service.signup(email, password, full_name)

    def test_duplicate_email_rejected(self, service, store):
        """Test a second signup with the same email creates nothing"""
        first = service.signup("a@x.com", "p", "Jean")

        with pytest.raises(DuplicateEmail) as exc_info:
            service.signup("a@x.com", "other", "Marie")

        assert exc_info.value.message == "Email already exists"
        assert _user_count(store) == 1
        assert _account_count(store) == 1
        assert service.signin("a@x.com", "p").user.id == first.user.id

    def test_account_failure_rolls_back_user(self, service, store):
        """Test signup is atomic when the account insert fails"""
        with patch.object(InMemoryConnection, "insert_account", side_effect=StorageError("disk full")):
            with pytest.raises(InternalError) as exc_info:
                service.signup("a@x.com", "p", "Jean")

        assert exc_info.value.message == "Registration failed"
        assert "disk full" not in str(exc_info.value)
        assert _user_count(store) == 0
        assert store.pool.checked_out == 0

    def test_account_number_collision_retried(self, service):
        """Test a colliding account number is regenerated"""
        numbers = ["FRAAAAAAAAA", "FRAAAAAAAAA", "FRBBBBBBBBB"]
        with patch.object(service, "generate_account_number", side_effect=numbers):
            first = service.signup("a@x.com", "p", "Jean")
            second = service.signup("b@x.com", "p", "Marie")

        assert service.list_accounts(first.user.id)[0].account_number == "FRAAAAAAAAA"
        assert service.list_accounts(second.user.id)[0].account_number == "FRBBBBBBBBB"

    def test_account_number_attempts_exhausted(self, store, tokens):
        """Test signup fails cleanly when no unique number can be found"""
        service = IdentityLedgerService(
            store, PasswordHasher(n=1024, r=8, p=1), tokens, account_number_attempts=2
        )
        with patch.object(service, "generate_account_number", return_value="FRAAAAAAAAA"):
            service.signup("a@x.com", "p", "Jean")
            with pytest.raises(InternalError):
                service.signup("b@x.com", "p", "Marie")

        assert _user_count(store) == 1

    def test_hashing_failure_is_internal_error(self, service, store):
        """Test KDF failures surface as InternalError"""
        with patch.object(service.hasher, "hash", side_effect=MemoryError()):
            with pytest.raises(InternalError):
                service.signup("a@x.com", "p", "Jean")
        assert _user_count(store) == 0

    def test_custom_opening_balance(self, store, tokens):
        """Test opening balance and account labels are configurable"""
        service = IdentityLedgerService(
            store, PasswordHasher(n=1024, r=8, p=1), tokens,
            opening_balance="100", account_type="Livret A", account_number_prefix="BE",
            account_number_length=4
        )
        result = service.signup("a@x.com", "p", "Jean")
        account = service.list_accounts(result.user.id)[0]

        assert account.balance == Decimal("100.00")
        assert account.account_type == "Livret A"
        assert re.fullmatch(r"BE[0-9A-Z]{4}", account.account_number)


class TestSignin:
    """Test authentication with email and password"""

    def test_signin_success(self, service, tokens):
        """Test correct credentials yield a token for the user"""
        registered = service.signup("a@x.com", "p", "Jean")
        result = service.signin("a@x.com", "p")

        assert result.user == registered.user
        identity = tokens.verify(result.token)
        assert identity.user_id == registered.user.id
        assert identity.email == "a@x.com"

    def test_wrong_password(self, service):
        """Test a wrong password is InvalidCredentials, not ValidationError"""
        service.signup("a@x.com", "p", "Jean")
        with pytest.raises(InvalidCredentials):
            service.signin("a@x.com", "wrong")

    def test_unknown_email_indistinguishable(self, service):
        """Test unknown email and wrong password fail identically"""
        service.signup("a@x.com", "p", "Jean")

        with pytest.raises(InvalidCredentials) as unknown:
            service.signin("nobody@x.com", "p")
        with pytest.raises(InvalidCredentials) as wrong:
            service.signin("a@x.com", "wrong")

        assert unknown.value.to_dict() == wrong.value.to_dict()

    def test_unknown_email_still_runs_hash(self, service):
        """Test unknown emails spend a password verification"""
        with patch.object(service.hasher, "dummy_verify", wraps=service.hasher.dummy_verify) as dummy:
            with pytest.raises(InvalidCredentials):
                service.signin("nobody@x.com", "p")
        dummy.assert_called_once_with("p")

    def test_email_match_is_case_sensitive(self, service):
        """Test emails are matched exactly as stored"""
        service.signup("a@x.com", "p", "Jean")
        with pytest.raises(InvalidCredentials):
            service.signin("A@X.COM", "p")

    @pytest.mark.parametrize("email,password", [(None, "p"), ("a@x.com", None), ("", "p"), ("a@x.com", "")])
    def test_missing_fields(self, service, email, password):
        with pytest.raises(ValidationError) as exc_info:
            service.signin(email, password)
        assert exc_info.value.message == "Missing email or password"

    @pytest.mark.parametrize("email,password", [("\ud800@x.com", "p"), ("a@x.com", "\ud800")])
    def test_unencodable_text_is_invalid_credentials(self, sqlite_service, email, password):
        sqlite_service.signup("a@x.com", "p", "Jean")
        with pytest.raises(InvalidCredentials):
            sqlite_service.signin(email, password)

    def test_storage_failure_is_internal_error(self, service):
        """Test store errors are generalized"""
        with patch.object(InMemoryConnection, "find_user_by_email", side_effect=StorageError("db gone")):
            with pytest.raises(InternalError) as exc_info:
                service.signin("a@x.com", "p")
        assert exc_info.value.message == "Login failed"


class TestProfileAndAccounts:
    """Test read access to the caller's own records"""

    def test_get_profile(self, service):
        """Test profile returns public fields only"""
        registered = service.signup("a@x.com", "p", "Jean")
        profile = service.get_profile(registered.user.id)

        assert profile.id == registered.user.id
        assert profile.email == "a@x.com"
        assert profile.full_name == "Jean"
        assert not hasattr(profile, "password_hash")

    def test_get_profile_of_deleted_user(self, service, store):
        """Test a token that outlived its user is unauthenticated"""
        registered = service.signup("a@x.com", "p", "Jean")
        with store.connection() as conn:
            conn.delete_user(registered.user.id)

        with pytest.raises(Unauthenticated):
            service.get_profile(registered.user.id)

    def test_list_accounts_only_own(self, service):
        """Test each user sees only their own accounts"""
        jean = service.signup("a@x.com", "p", "Jean")
        marie = service.signup("b@x.com", "p", "Marie")

        jean_accounts = service.list_accounts(jean.user.id)
        marie_accounts = service.list_accounts(marie.user.id)

        assert len(jean_accounts) == len(marie_accounts) == 1
        assert jean_accounts[0].user_id == jean.user.id
        assert jean_accounts[0].id != marie_accounts[0].id

    def test_list_accounts_unknown_user(self, service):
        assert service.list_accounts(999) == []

    def test_list_accounts_storage_failure(self, service):
        """Test raw storage errors never reach the caller"""
        with patch.object(InMemoryConnection, "find_accounts_by_user", side_effect=StorageError("secret detail")):
            with pytest.raises(InternalError) as exc_info:
                service.list_accounts(1)
        assert exc_info.value.message == "Failed to fetch accounts"
        assert "secret detail" not in exc_info.value.message


class TestListTransactions:
    """Test ownership checks and paging of transaction history"""

    @pytest.fixture
    def jean(self, service):
        result = service.signup("a@x.com", "p", "Jean")
        account = service.list_accounts(result.user.id)[0]
        return result.user.id, account.id

    def test_returns_at_most_ten_newest_first(self, service, store, jean):
        """Test the page holds the 10 most recent transactions"""
        user_id, account_id = jean
        _seed(store, account_id, 15)

        transactions = service.list_transactions(user_id, account_id)

        assert len(transactions) == 10
        assert [t.description for t in transactions] == [f"Operation {i}" for i in range(14, 4, -1)]
        for newer, older in zip(transactions, transactions[1:]):
            assert newer.created_at >= older.created_at

    def test_direction_and_unsigned_amount(self, service, store, jean):
        """Test amounts are magnitudes with a separate direction"""
        user_id, account_id = jean
        _seed(store, account_id, 2)

        newest, oldest = service.list_transactions(user_id, account_id)
        assert newest.direction == TransactionDirection.DEBIT
        assert newest.amount == Decimal("12.50")
        assert newest.signed_amount == Decimal("-12.50")
        assert oldest.direction == TransactionDirection.CREDIT
        assert oldest.signed_amount == Decimal("12.50")

    def test_fewer_than_page(self, service, store, jean):
        user_id, account_id = jean
        _seed(store, account_id, 3)
        assert len(service.list_transactions(user_id, account_id)) == 3

    def test_string_account_id(self, service, store, jean):
        """Test path-style string ids are accepted"""
        user_id, account_id = jean
        _seed(store, account_id, 1)
        assert len(service.list_transactions(user_id, str(account_id))) == 1

    def test_foreign_account_denied(self, service, store, jean):
        """Test another user's account is denied"""
        _, account_id = jean
        marie = service.signup("b@x.com", "p", "Marie")
        _seed(store, account_id, 3)

        with pytest.raises(AccessDenied):
            service.list_transactions(marie.user.id, account_id)

    def test_foreign_and_missing_indistinguishable(self, service, jean):
        """Test a nonexistent account fails exactly like a foreign one"""
        _, account_id = jean
        marie = service.signup("b@x.com", "p", "Marie")

        with pytest.raises(AccessDenied) as foreign:
            service.list_transactions(marie.user.id, account_id)
        with pytest.raises(AccessDenied) as missing:
            service.list_transactions(marie.user.id, 9999)

        assert foreign.value.to_dict() == missing.value.to_dict()

    @pytest.mark.parametrize("account_id", [
        "abc", "", "-1", "0", "1.5", "²", 0, -3, True, "9" * 25, 2 ** 63
    ])
    def test_malformed_account_id_denied(self, service, jean, account_id):
        """Test ids that cannot name an account are denied"""
        user_id, _ = jean
        with pytest.raises(AccessDenied):
            service.list_transactions(user_id, account_id)

    @pytest.mark.parametrize("account_id", ["9" * 25, str(2 ** 63), 2 ** 63])
    def test_out_of_range_account_id_denied_on_sqlite(self, sqlite_service, account_id):
        """Test ids beyond the SQLite integer range are denied, not failures"""
        result = sqlite_service.signup("a@x.com", "p", "Jean")

        with pytest.raises(AccessDenied):
            sqlite_service.list_transactions(result.user.id, account_id)

    def test_page_size_configurable(self, store, tokens):
        service = IdentityLedgerService(
            store, PasswordHasher(n=1024, r=8, p=1), tokens, transactions_page_size=3
        )
        result = service.signup("a@x.com", "p", "Jean")
        account_id = service.list_accounts(result.user.id)[0].id
        _seed(store, account_id, 5)

        assert len(service.list_transactions(result.user.id, account_id)) == 3


class TestConnectionDiscipline:
    """Test every operation returns its connection"""

    def test_released_after_success(self, service, store):
        result = service.signup("a@x.com", "p", "Jean")
        service.signin("a@x.com", "p")
        service.get_profile(result.user.id)
        account_id = service.list_accounts(result.user.id)[0].id
        service.list_transactions(result.user.id, account_id)
        assert store.pool.checked_out == 0

    def test_released_after_business_error(self, service, store):
        service.signup("a@x.com", "p", "Jean")
        with pytest.raises(DuplicateEmail):
            service.signup("a@x.com", "p", "Jean")
        with pytest.raises(AccessDenied):
            service.list_transactions(1, 9999)
        assert store.pool.checked_out == 0

    def test_released_after_unexpected_failure(self, service, store):
        with patch.object(InMemoryConnection, "get_account", side_effect=RuntimeError("bug")):
            with pytest.raises(InternalError) as exc_info:
                service.list_transactions(1, 1)
        assert exc_info.value.message == "Failed to fetch transactions"
        assert store.pool.checked_out == 0

    def test_pool_exhaustion_is_internal_error(self, service, store):
        """Test a saturated pool surfaces as InternalError"""
        held = [store.pool.acquire(), store.pool.acquire()]
        try:
            with pytest.raises(InternalError):
                service.list_accounts(1)
        finally:
            for conn in held:
                store.pool.release(conn)

    def test_many_signups_do_not_leak(self, service, store):
        for i in range(5):
            service.signup(f"user{i}@x.com", "p", f"User {i}")
        assert store.pool.checked_out == 0
        assert _account_count(store) == 5
