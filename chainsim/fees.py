"""
fees.py - Pooled Fee Validation

The network pools fee obligations across a transaction group: any subset of
signers may pay for the others, and only the aggregate is checked against
n times the per-transaction minimum. Which transaction carries the fee is
irrelevant here; whether the carrier can afford it is decided later, in
order, by the executor.

All functions are pure and never touch a ledger.
"""

from __future__ import annotations
from typing import Sequence

from .core import FeesNotEnough, ProtocolParams, TransactionSpec, DEFAULT_PARAMS


def required_group_fee(group_size: int, params: ProtocolParams = DEFAULT_PARAMS) -> int:
    """Minimum aggregate fee for a group of group_size transactions."""
    return group_size * params.min_txn_fee


def provided_group_fee(transactions: Sequence[TransactionSpec]) -> int:
    """Sum of the fees declared by every transaction in the group."""
    return sum(tx.fee for tx in transactions)


def validate_group_fees(
    transactions: Sequence[TransactionSpec],
    params: ProtocolParams = DEFAULT_PARAMS,
) -> None:
    """
    Check that a group's declared fees cover the pooled minimum.

    Args:
        transactions: The whole group, in any order
        params: Protocol configuration (provides min_txn_fee)

    Raises:
        FeesNotEnough: If provided < required
    """
    required = required_group_fee(len(transactions), params)
    provided = provided_group_fee(transactions)
    if provided < required:
        raise FeesNotEnough(required, provided)
