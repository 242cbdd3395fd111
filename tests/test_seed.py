"""
Tests for demo data seeding
"""

import pytest

from secure_bank.passwords import PasswordHasher
from secure_bank.seed import seed_demo_data, seed_transactions
from secure_bank.service import IdentityLedgerService
from secure_bank.storage import InMemoryStore
from secure_bank.tokens import TokenService


@pytest.fixture
def service():
    store = InMemoryStore()
    store.initialize()
    return IdentityLedgerService(store, PasswordHasher(n=1024, r=8, p=1), TokenService("seed-secret"))


class TestSeed:
    """Test seeded data is readable through the service"""

    def test_seed_demo_data(self, service):
        user_id = seed_demo_data(service, transactions_per_account=12)

        account = service.list_accounts(user_id)[0]
        transactions = service.list_transactions(user_id, account.id)
        assert len(transactions) == 10
        for newer, older in zip(transactions, transactions[1:]):
            assert newer.created_at >= older.created_at
        assert all(t.amount > 0 for t in transactions)

    def test_seed_is_rerunnable(self, service):
        """Test seeding twice reuses the demo user"""
        first = seed_demo_data(service, transactions_per_account=2)
        second = seed_demo_data(service, transactions_per_account=2)

        assert first == second
        account = service.list_accounts(first)[0]
        assert len(service.list_transactions(first, account.id)) == 4

    def test_seed_transactions_returns_ids(self, service):
        result = service.signup("a@x.com", "p", "Jean")
        account = service.list_accounts(result.user.id)[0]

        ids = seed_transactions(service.store, account.id, count=3)
        assert len(ids) == len(set(ids)) == 3
