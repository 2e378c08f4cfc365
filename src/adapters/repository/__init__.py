"""Repository adapters - Database and in-process implementations."""

from .memory import (
    InMemoryAccountRepository,
    InMemoryPaymentIntentRepository,
    InMemoryRegistrationRepository,
    InMemoryState,
)
from .postgres import (
    PostgresAccountRepository,
    PostgresPaymentIntentRepository,
    PostgresRegistrationRepository,
    run_migrations,
)

__all__ = [
    "InMemoryAccountRepository",
    "InMemoryPaymentIntentRepository",
    "InMemoryRegistrationRepository",
    "InMemoryState",
    "PostgresAccountRepository",
    "PostgresPaymentIntentRepository",
    "PostgresRegistrationRepository",
    "run_migrations",
]
