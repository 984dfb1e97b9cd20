"""
chainsim - Local Transaction-Group Simulator

Simulates a ledger's transaction-processing rules (pooled fees, atomic
groups, opt-in lifecycle, application calls) so contract deployments can be
tested without a live network.

Usage:
    from chainsim import Ledger, GroupExecutor, TransferAlgo, address_from_name

    ledger = Ledger("local")
    john, alice, bob = (address_from_name(n) for n in ("john", "alice", "bob"))
    ledger.fund(john, 10_000_000)
    ledger.fund(alice, 10_000_000)

    executor = GroupExecutor(ledger)

    # john pays the pooled fee for both transactions
    result = executor.execute_group([
        TransferAlgo(john, alice, 10_122, fee=2000),
        TransferAlgo(alice, bob, 10_122, fee=0),
    ])
    assert result.ok
    ledger.get(bob).balance  # 10122
"""

# Core types
from .core import (
    # Configuration
    ProtocolParams,
    DEFAULT_PARAMS,
    OptInPolicy,
    # Enums
    ErrorKind,
    GroupState,
    # Account data
    Account,
    AccountSnapshot,
    AssetHolding,
    AppLocalState,
    StateSchema,
    AssetParams,
    AppParams,
    # Transactions
    TransferAlgo,
    TransferAsset,
    OptInAsset,
    OptInApp,
    CallApp,
    TransactionSpec,
    TRANSACTION_TYPES,
    # Results
    StagedChange,
    CommitResult,
    AbortResult,
    GroupResult,
    # Exceptions
    LedgerError,
    FeesNotEnough,
    InsufficientBalance,
    LogicReject,
    AlreadyOptedIn,
    NotOptedIn,
    GroupSizeExceeded,
    InvalidTransaction,
    AssetNotFound,
    AppNotFound,
    AssetFrozen,
    BalanceOverflow,
    SchemaViolation,
    MinBalanceViolation,
    IllegalStateTransition,
    # Helpers
    address_from_name,
    compute_group_id,
    compute_min_balance,
    # Constants
    MAX_UINT64,
    MIN_TXN_FEE,
    MAX_GROUP_SIZE,
)

# Fee pool validation
from .fees import (
    required_group_fee,
    provided_group_fee,
    validate_group_fees,
)

# Ledger
from .ledger import AccountStore, Ledger

# Opt-in
from .optin import OptInManager

# Evaluator contract
from .evaluator import (
    SmartContractEvaluator,
    AppCallContext,
    StateDelta,
    Accept,
    Reject,
    Verdict,
    accept_all,
    run_evaluator,
    apply_state_delta,
)

# Executor
from .executor import GroupExecutor, GroupExecution, StagedState


__all__ = [
    # Configuration
    'ProtocolParams', 'DEFAULT_PARAMS', 'OptInPolicy',
    # Enums
    'ErrorKind', 'GroupState',
    # Account data
    'Account', 'AccountSnapshot', 'AssetHolding', 'AppLocalState', 'StateSchema',
    'AssetParams', 'AppParams',
    # Transactions
    'TransferAlgo', 'TransferAsset', 'OptInAsset', 'OptInApp', 'CallApp',
    'TransactionSpec', 'TRANSACTION_TYPES',
    # Results
    'StagedChange', 'CommitResult', 'AbortResult', 'GroupResult',
    # Exceptions
    'LedgerError', 'FeesNotEnough', 'InsufficientBalance', 'LogicReject',
    'AlreadyOptedIn', 'NotOptedIn', 'GroupSizeExceeded', 'InvalidTransaction',
    'AssetNotFound', 'AppNotFound', 'AssetFrozen', 'BalanceOverflow',
    'SchemaViolation', 'MinBalanceViolation', 'IllegalStateTransition',
    # Helpers
    'address_from_name', 'compute_group_id', 'compute_min_balance',
    # Constants
    'MAX_UINT64', 'MIN_TXN_FEE', 'MAX_GROUP_SIZE',
    # Fees
    'required_group_fee', 'provided_group_fee', 'validate_group_fees',
    # Ledger
    'AccountStore', 'Ledger',
    # Opt-in
    'OptInManager',
    # Evaluator
    'SmartContractEvaluator', 'AppCallContext', 'StateDelta', 'Accept', 'Reject',
    'Verdict', 'accept_all', 'run_evaluator', 'apply_state_delta',
    # Executor
    'GroupExecutor', 'GroupExecution', 'StagedState',
]

__version__ = '0.1.0'
