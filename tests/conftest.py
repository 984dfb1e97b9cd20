"""
conftest.py - Shared pytest fixtures for chainsim tests

Provides common fixtures used across unit, conformance and functional tests:
- Named addresses (john, alice, bob funded; elon unfunded)
- Funded ledgers and executors
- An asset and a counter application
"""

import pytest

from chainsim import (
    Ledger, GroupExecutor, StateSchema,
    address_from_name, accept_all,
)

from tests.fake_evaluator import CounterEvaluator
from tests.ledger_builders import INITIAL_BALANCE, make_ledger


# =============================================================================
# ADDRESSES
# =============================================================================

@pytest.fixture
def john():
    return address_from_name("john")


@pytest.fixture
def alice():
    return address_from_name("alice")


@pytest.fixture
def bob():
    return address_from_name("bob")


@pytest.fixture
def elon():
    """Account that is never funded."""
    return address_from_name("elon")


# =============================================================================
# LEDGERS
# =============================================================================

@pytest.fixture
def empty_ledger():
    return Ledger("test", verbose=False, test_mode=True)


@pytest.fixture
def ledger(john, alice, bob, elon):
    """john, alice and bob hold INITIAL_BALANCE; elon exists with balance 0."""
    return make_ledger({john: INITIAL_BALANCE, alice: INITIAL_BALANCE, bob: INITIAL_BALANCE, elon: 0})


@pytest.fixture
def executor(ledger):
    """Executor whose default evaluator accepts every call."""
    return GroupExecutor(ledger, evaluator=accept_all)


@pytest.fixture
def asset_id(ledger, john):
    """Asset 'gold' created by john, who holds the full supply."""
    return ledger.create_asset(john, total=1_000_000, name="gold", unit_name="GLD")


@pytest.fixture
def app_id(ledger, john):
    """Counter application with one uint and one byte slice in each schema."""
    return ledger.create_app(john, StateSchema(1, 1), StateSchema(1, 1), name="counter")


@pytest.fixture
def counter(executor, app_id):
    """CounterEvaluator registered for app_id."""
    evaluator = CounterEvaluator()
    executor.register(app_id, evaluator)
    return evaluator
