"""
Shared fixtures.

Every flow runs against the in-memory backends; no spreadsheet or
network access happens in tests.
"""

from datetime import date
from decimal import Decimal

import pytest

from family_finance.audit import AuditLogger
from family_finance.models.obligation import Obligation, ObligationKind
from family_finance.orchestrator import ObligationFlow, PiggyBankFlow
from family_finance.services.storage import (
    InMemoryAuditStorage,
    InMemoryCardTransactionStorage,
    InMemoryObligationStorage,
    InMemoryPiggyBankStorage,
)


CARD_PAYMENT_TYPE = "cartao"
OWNER = "user-ana"
PARTNER = "user-bruno"


@pytest.fixture
def obligation_storage():
    return InMemoryObligationStorage()


@pytest.fixture
def card_storage():
    return InMemoryCardTransactionStorage()


@pytest.fixture
def piggy_bank_storage():
    return InMemoryPiggyBankStorage()


@pytest.fixture
def audit_storage():
    return InMemoryAuditStorage()


@pytest.fixture
def audit_logger(audit_storage):
    return AuditLogger(audit_storage)


@pytest.fixture
def flow(obligation_storage, card_storage, audit_logger):
    return ObligationFlow(
        obligation_storage=obligation_storage,
        card_storage=card_storage,
        audit_logger=audit_logger,
        card_payment_type_id=CARD_PAYMENT_TYPE,
        rollback_on_link_failure=True,
    )


@pytest.fixture
def piggy_bank_flow(piggy_bank_storage, audit_logger):
    return PiggyBankFlow(piggy_bank_storage, audit_logger)


@pytest.fixture
def make_obligation():
    """Factory for obligations with sensible defaults."""

    def _make(**overrides) -> Obligation:
        fields = {
            "kind": ObligationKind.PAYABLE,
            "owner_id": OWNER,
            "description": "Internet",
            "amount": Decimal("100.00"),
            "anchor_date": date(2024, 1, 31),
        }
        fields.update(overrides)
        return Obligation(**fields)

    return _make
