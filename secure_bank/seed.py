#!/usr/bin/env python3
"""Seed script for SecureBank demo data

Transactions are never created through the API; this script plays the part
of the external process that posts them. It registers a demo user (or reuses
an existing one) and posts random debits and credits to each of their
accounts over the last 30 days.

Run with: python -m secure_bank.seed [email] [password] [full name]
"""

import sys
from decimal import Decimal
from datetime import datetime, timedelta, timezone
import random
from typing import List

from .config import get_config
from .errors import DuplicateEmail
from .models import TransactionDirection
from .service import IdentityLedgerService
from .storage import CredentialStore, create_store
from .logging_config import setup_logging, log_action


DEMO_EMAIL = "demo@securebank.example"
DEMO_PASSWORD = "demo-password"
DEMO_FULL_NAME = "Jean Dupont"

TRANSACTION_DESCRIPTIONS = {
    TransactionDirection.DEBIT: [
        "Carrefour Market", "SNCF Voyageurs", "Loyer", "EDF Electricite",
        "Boulangerie Paul", "Pharmacie", "Retrait DAB", "Abonnement Netflix"
    ],
    TransactionDirection.CREDIT: [
        "Salaire", "Remboursement CPAM", "Virement recu", "Remboursement ami"
    ]
}


def random_moment(start: datetime, end: datetime) -> datetime:
    """Random instant between start and end"""
    span = (end - start).total_seconds()
    return start + timedelta(seconds=random.uniform(0, span))


def seed_transactions(store: CredentialStore, account_id: int, count: int = 15,
                      days: int = 30) -> List[int]:
    """Post random transactions to an account, returning their ids"""
    end = datetime.now(timezone.utc)
    start = end - timedelta(days=days)
    transaction_ids = []

    with store.connection() as conn:
        with conn.atomic():
            for _ in range(count):
                direction = random.choices(
                    [TransactionDirection.DEBIT, TransactionDirection.CREDIT],
                    weights=[75, 25]
                )[0]
                amount = Decimal(str(round(random.uniform(5, 1500), 2))).quantize(Decimal("0.01"))
                transaction_ids.append(conn.insert_transaction(
                    account_id,
                    random.choice(TRANSACTION_DESCRIPTIONS[direction]),
                    amount,
                    direction.value,
                    created_at=random_moment(start, end)
                ))

    return transaction_ids


def seed_demo_data(service: IdentityLedgerService, email: str = DEMO_EMAIL,
                   password: str = DEMO_PASSWORD, full_name: str = DEMO_FULL_NAME,
                   transactions_per_account: int = 15) -> int:
    """Register the demo user if needed and post transactions to their accounts"""
    try:
        result = service.signup(email, password, full_name)
    except DuplicateEmail:
        result = service.signin(email, password)

    user_id = result.user.id
    for account in service.list_accounts(user_id):
        seed_transactions(service.store, account.id, count=transactions_per_account)

    return user_id


def main(argv: List[str]) -> int:
    config = get_config()
    logger = setup_logging(config.log_level)

    store = create_store(config.database_url, config.database_pool_size, config.database_pool_timeout)
    store.initialize()
    try:
        service = IdentityLedgerService.from_config(store, config)
        email, password, full_name = (argv + [DEMO_EMAIL, DEMO_PASSWORD, DEMO_FULL_NAME][len(argv):])[:3]
        user_id = seed_demo_data(service, email, password, full_name)
        log_action(logger, "info", "Demo data seeded", user_id=user_id,
                   action="seed", resource=f"user:{user_id}")
        print(f"Seeded demo data for {email} (user {user_id})")
    finally:
        store.close()
    return 0


if __name__ == "__main__":
    sys.exit(main(sys.argv[1:]))
