"""
Core types and pure functions for the transaction-group simulator.

This module provides the foundational data structures for the simulator:
1. Configuration: ProtocolParams and the network defaults it is built from
2. Enums: ErrorKind, GroupState, OptInPolicy
3. Exceptions: LedgerError and one error type per failure kind
4. Account data: Account, AssetHolding, AppLocalState, StateSchema, AccountSnapshot
5. Registry records: AssetParams, AppParams
6. Transaction variants: TransferAlgo, TransferAsset, OptInAsset, OptInApp, CallApp
7. Results: StagedChange, CommitResult, AbortResult
8. Helpers: address_from_name, canonical hashing of groups

Nothing in this module touches a ledger. Mutation lives in ledger.py and
executor.py.
"""

from __future__ import annotations
from dataclasses import dataclass, field, fields, is_dataclass, replace
from enum import Enum
import base64
import hashlib
from typing import (
    Dict, Optional, Any, Mapping, Tuple, Union, ClassVar, Sequence
)


# ============================================================================
# CONSTANTS
# ============================================================================

# Balances, amounts and fees are unsigned 64-bit integers on the network.
MAX_UINT64 = 2 ** 64 - 1

# Minimum fee per transaction, in the smallest currency denomination.
MIN_TXN_FEE = 1000

# Maximum number of transactions in one atomic group.
MAX_GROUP_SIZE = 16

# Application call limits.
MAX_APP_ARGS = 16
MAX_APP_ACCOUNTS = 4
MAX_STATE_KEY_LENGTH = 64

# Minimum balance requirements (only enforced when ProtocolParams asks for it).
BASE_MIN_BALANCE = 100_000
ASSET_MIN_BALANCE = 100_000
APP_MIN_BALANCE = 100_000
SCHEMA_UINT_MIN_BALANCE = 28_500
SCHEMA_BYTES_MIN_BALANCE = 50_000


# ============================================================================
# TYPE ALIASES
# ============================================================================

# Application state values are either uint64 integers or byte strings.
StateValue = Union[int, bytes]

# Key/value storage of an application (global) or of an account's local state.
KeyValueStore = Dict[str, StateValue]


# ============================================================================
# ENUMS
# ============================================================================

class ErrorKind(Enum):
    """
    Classification of a group failure.

    Every LedgerError subclass carries exactly one kind, and AbortResult
    reports it so callers can branch without matching exception types.
    """
    FEES_NOT_ENOUGH = "fees_not_enough"
    INSUFFICIENT_BALANCE = "insufficient_balance"
    LOGIC_REJECT = "logic_reject"
    ALREADY_OPTED_IN = "already_opted_in"
    NOT_OPTED_IN = "not_opted_in"
    GROUP_SIZE_EXCEEDED = "group_size_exceeded"
    INVALID_TRANSACTION = "invalid_transaction"
    ASSET_NOT_FOUND = "asset_not_found"
    APP_NOT_FOUND = "app_not_found"
    ASSET_FROZEN = "asset_frozen"
    BALANCE_OVERFLOW = "balance_overflow"
    SCHEMA_VIOLATION = "schema_violation"
    MIN_BALANCE_VIOLATION = "min_balance_violation"


class GroupState(Enum):
    """
    Lifecycle of one group submission.

    PENDING -> VALIDATING -> APPLYING -> COMMITTED
    PENDING -> VALIDATING -> ABORTED
    PENDING -> VALIDATING -> APPLYING -> ABORTED
    """
    PENDING = "pending"
    VALIDATING = "validating"
    APPLYING = "applying"
    COMMITTED = "committed"
    ABORTED = "aborted"


class OptInPolicy(Enum):
    """
    What to do when an account opts into an asset or app it already holds.

    IGNORE: the duplicate opt-in succeeds and leaves the existing record alone.
    REJECT: the duplicate opt-in fails with AlreadyOptedIn.
    """
    IGNORE = "ignore"
    REJECT = "reject"


# ============================================================================
# EXCEPTIONS
# ============================================================================

class LedgerError(Exception):
    """Base exception for every rule violation detected by the simulator."""
    kind: ClassVar[Optional[ErrorKind]] = None


class FeesNotEnough(LedgerError):
    """Raised when a group's declared fees do not cover the pooled minimum."""
    kind = ErrorKind.FEES_NOT_ENOUGH

    def __init__(self, required: int, provided: int):
        self.required = required
        self.provided = provided
        super().__init__(
            f"Fee required {required} is greater than fee collected {provided}"
        )


class InsufficientBalance(LedgerError):
    """Raised when a sender cannot cover amount + fee at the point of application."""
    kind = ErrorKind.INSUFFICIENT_BALANCE

    def __init__(self, address: str, required: int, available: int, asset_id: Optional[int] = None):
        self.address = address
        self.required = required
        self.available = available
        self.asset_id = asset_id
        what = "balance" if asset_id is None else f"asset {asset_id} holding"
        super().__init__(
            f"Account {address} {what} {available} is less than required {required}"
        )


class LogicReject(LedgerError):
    """Raised when the smart-contract evaluator rejects an application call."""
    kind = ErrorKind.LOGIC_REJECT


class AlreadyOptedIn(LedgerError):
    """Raised on a duplicate opt-in when OptInPolicy.REJECT is configured."""
    kind = ErrorKind.ALREADY_OPTED_IN


class NotOptedIn(LedgerError):
    """Raised when an account uses an asset or app local state it never opted into."""
    kind = ErrorKind.NOT_OPTED_IN


class GroupSizeExceeded(LedgerError):
    """Raised when a group holds more transactions than the protocol allows."""
    kind = ErrorKind.GROUP_SIZE_EXCEEDED


class InvalidTransaction(LedgerError, ValueError):
    """Raised when a transaction or group is malformed."""
    kind = ErrorKind.INVALID_TRANSACTION


class AssetNotFound(LedgerError):
    """Raised when referencing an asset id that was never created."""
    kind = ErrorKind.ASSET_NOT_FOUND


class AppNotFound(LedgerError):
    """Raised when referencing an application id that was never created."""
    kind = ErrorKind.APP_NOT_FOUND


class AssetFrozen(LedgerError):
    """Raised when a frozen asset holding is asked to send or receive."""
    kind = ErrorKind.ASSET_FROZEN


class BalanceOverflow(LedgerError):
    """Raised when a credit would push a balance above MAX_UINT64."""
    kind = ErrorKind.BALANCE_OVERFLOW


class SchemaViolation(LedgerError):
    """Raised when a state delta does not fit the application's declared schema."""
    kind = ErrorKind.SCHEMA_VIOLATION


class MinBalanceViolation(LedgerError):
    """Raised when an opt-in would leave an account below its minimum balance."""
    kind = ErrorKind.MIN_BALANCE_VIOLATION


class IllegalStateTransition(RuntimeError):
    """Raised when a group execution attempts a transition its state machine forbids."""
    pass


# ============================================================================
# CONFIGURATION
# ============================================================================

@dataclass(frozen=True, slots=True)
class ProtocolParams:
    """
    Ambient protocol configuration for a ledger and its executors.

    Attributes:
        min_txn_fee: Minimum fee per transaction; a group needs n times this in total.
        max_group_size: Largest allowed group.
        duplicate_opt_in: Behavior of a repeated opt-in (IGNORE or REJECT).
        enforce_min_balance: Check the minimum-balance rule when opting in.
        base_min_balance: Minimum balance of any account.
        asset_min_balance: Extra minimum balance per asset holding.
        app_min_balance: Extra minimum balance per application local state.
        schema_uint_min_balance: Extra minimum balance per local uint slot.
        schema_bytes_min_balance: Extra minimum balance per local byte-slice slot.
    """
    min_txn_fee: int = MIN_TXN_FEE
    max_group_size: int = MAX_GROUP_SIZE
    duplicate_opt_in: OptInPolicy = OptInPolicy.IGNORE
    enforce_min_balance: bool = False
    base_min_balance: int = BASE_MIN_BALANCE
    asset_min_balance: int = ASSET_MIN_BALANCE
    app_min_balance: int = APP_MIN_BALANCE
    schema_uint_min_balance: int = SCHEMA_UINT_MIN_BALANCE
    schema_bytes_min_balance: int = SCHEMA_BYTES_MIN_BALANCE

    def __post_init__(self):
        if self.min_txn_fee < 0:
            raise ValueError(f"min_txn_fee must be non-negative, got {self.min_txn_fee}")
        if self.max_group_size < 1:
            raise ValueError(f"max_group_size must be at least 1, got {self.max_group_size}")

    def replace(self, **changes: Any) -> ProtocolParams:
        """Return a copy with the given fields changed."""
        return replace(self, **changes)


DEFAULT_PARAMS = ProtocolParams()


# ============================================================================
# VALIDATION HELPERS
# ============================================================================

def is_uint64(value: Any) -> bool:
    """Return True if value is an int (not bool) in [0, MAX_UINT64]."""
    return isinstance(value, int) and not isinstance(value, bool) and 0 <= value <= MAX_UINT64


def _check_uint64(value: Any, name: str) -> None:
    if not is_uint64(value):
        raise InvalidTransaction(f"{name} must be an unsigned 64-bit integer, got {value!r}")


def _check_address(value: Any, name: str) -> None:
    if not isinstance(value, str) or not value.strip():
        raise InvalidTransaction(f"{name} must be a non-empty address, got {value!r}")


def address_from_name(name: str) -> str:
    """
    Derive a deterministic 58-character address from a human-readable name.

    The layout mirrors the network's: base32 of a 32-byte public-key-sized
    digest followed by a 4-byte checksum, with padding stripped.
    """
    digest = hashlib.sha256(name.encode()).digest()
    checksum = hashlib.sha256(digest).digest()[-4:]
    return base64.b32encode(digest + checksum).decode().rstrip("=")


# ============================================================================
# ACCOUNT DATA
# ============================================================================

@dataclass(frozen=True, slots=True)
class StateSchema:
    """Number of uint and byte-slice slots an application may use."""
    num_uints: int = 0
    num_byte_slices: int = 0

    def __post_init__(self):
        if not is_uint64(self.num_uints) or not is_uint64(self.num_byte_slices):
            raise ValueError(f"Schema slot counts must be non-negative integers: {self}")

    def fits(self, store: Mapping[str, StateValue]) -> bool:
        """Return True if the key/value store uses no more slots than declared."""
        uints = sum(1 for v in store.values() if isinstance(v, int))
        byte_slices = len(store) - uints
        return uints <= self.num_uints and byte_slices <= self.num_byte_slices


@dataclass(slots=True)
class AssetHolding:
    """An account's balance of one asset."""
    asset_id: int
    amount: int = 0
    is_frozen: bool = False

    def copy(self) -> AssetHolding:
        return AssetHolding(self.asset_id, self.amount, self.is_frozen)


@dataclass(slots=True)
class AppLocalState:
    """Per-account storage slots owned by one application."""
    app_id: int
    schema: StateSchema
    key_values: KeyValueStore = field(default_factory=dict)

    def copy(self) -> AppLocalState:
        return AppLocalState(self.app_id, self.schema, dict(self.key_values))


def compute_min_balance(
    assets: Mapping[int, AssetHolding],
    apps_local: Mapping[int, AppLocalState],
    params: ProtocolParams,
) -> int:
    """Minimum balance an account must keep for its holdings and local states."""
    total = params.base_min_balance + params.asset_min_balance * len(assets)
    for local in apps_local.values():
        total += (
            params.app_min_balance
            + params.schema_uint_min_balance * local.schema.num_uints
            + params.schema_bytes_min_balance * local.schema.num_byte_slices
        )
    return total


@dataclass(slots=True)
class Account:
    """
    Mutable account record owned by a ledger or a staged working set.

    Never handed to callers directly; reads go through AccountSnapshot.
    """
    address: str
    balance: int = 0
    assets: Dict[int, AssetHolding] = field(default_factory=dict)
    apps_local: Dict[int, AppLocalState] = field(default_factory=dict)

    def copy(self) -> Account:
        return Account(
            address=self.address,
            balance=self.balance,
            assets={k: h.copy() for k, h in self.assets.items()},
            apps_local={k: s.copy() for k, s in self.apps_local.items()},
        )

    def min_balance(self, params: ProtocolParams = DEFAULT_PARAMS) -> int:
        return compute_min_balance(self.assets, self.apps_local, params)

    def snapshot(self) -> AccountSnapshot:
        copied = self.copy()
        return AccountSnapshot(
            address=copied.address,
            balance=copied.balance,
            assets=copied.assets,
            apps_local=copied.apps_local,
        )


@dataclass(frozen=True, slots=True)
class AccountSnapshot:
    """
    Read-only copy of an account as of the last committed group.

    Mutating the contained dicts has no effect on the ledger.
    """
    address: str
    balance: int
    assets: Dict[int, AssetHolding]
    apps_local: Dict[int, AppLocalState]

    def get_asset_holding(self, asset_id: int) -> Optional[AssetHolding]:
        return self.assets.get(asset_id)

    def get_local_state(self, app_id: int) -> Optional[KeyValueStore]:
        local = self.apps_local.get(app_id)
        return None if local is None else dict(local.key_values)

    def is_opted_in_asset(self, asset_id: int) -> bool:
        return asset_id in self.assets

    def is_opted_in_app(self, app_id: int) -> bool:
        return app_id in self.apps_local

    def min_balance(self, params: ProtocolParams = DEFAULT_PARAMS) -> int:
        return compute_min_balance(self.assets, self.apps_local, params)


# ============================================================================
# REGISTRY RECORDS
# ============================================================================

@dataclass(frozen=True, slots=True)
class AssetParams:
    """Definition of an asset; owned by the ledger's management layer."""
    asset_id: int
    creator: str
    total: int
    decimals: int = 0
    name: str = ""
    unit_name: str = ""
    default_frozen: bool = False


@dataclass(slots=True)
class AppParams:
    """Definition and global state of an application."""
    app_id: int
    creator: str
    global_schema: StateSchema
    local_schema: StateSchema
    name: str = ""
    global_state: KeyValueStore = field(default_factory=dict)

    def copy(self) -> AppParams:
        return AppParams(
            app_id=self.app_id,
            creator=self.creator,
            global_schema=self.global_schema,
            local_schema=self.local_schema,
            name=self.name,
            global_state=dict(self.global_state),
        )


# ============================================================================
# TRANSACTION VARIANTS
# ============================================================================
#
# Closed set of transaction kinds. Each variant is an immutable record that
# validates its own fields; the executor dispatches on the concrete type.
# Every variant carries a sender and an explicit fee (zero is allowed, the
# group's pooled fee decides feasibility).

@dataclass(frozen=True, slots=True)
class TransferAlgo:
    """
    Payment of native currency.

    If close_remainder_to is set, whatever remains in the sender's account
    after the payment and fee is swept to that address.
    """
    TYPE: ClassVar[str] = "pay"

    sender: str
    receiver: str
    amount: int
    fee: int
    close_remainder_to: Optional[str] = None

    def __post_init__(self):
        _check_address(self.sender, "sender")
        _check_address(self.receiver, "receiver")
        _check_uint64(self.amount, "amount")
        _check_uint64(self.fee, "fee")
        if self.close_remainder_to is not None:
            _check_address(self.close_remainder_to, "close_remainder_to")
            if self.close_remainder_to == self.sender:
                raise InvalidTransaction("close_remainder_to cannot be the sender")


@dataclass(frozen=True, slots=True)
class TransferAsset:
    """Transfer of an asset between two opted-in accounts."""
    TYPE: ClassVar[str] = "axfer"

    sender: str
    receiver: str
    asset_id: int
    amount: int
    fee: int

    def __post_init__(self):
        _check_address(self.sender, "sender")
        _check_address(self.receiver, "receiver")
        _check_uint64(self.asset_id, "asset_id")
        _check_uint64(self.amount, "amount")
        _check_uint64(self.fee, "fee")


@dataclass(frozen=True, slots=True)
class OptInAsset:
    """Create a zero holding of an asset on the sender's account."""
    TYPE: ClassVar[str] = "axfer-optin"

    sender: str
    asset_id: int
    fee: int

    def __post_init__(self):
        _check_address(self.sender, "sender")
        _check_uint64(self.asset_id, "asset_id")
        _check_uint64(self.fee, "fee")


@dataclass(frozen=True, slots=True)
class OptInApp:
    """Create an empty local state of an application on the sender's account."""
    TYPE: ClassVar[str] = "appl-optin"

    sender: str
    app_id: int
    fee: int

    def __post_init__(self):
        _check_address(self.sender, "sender")
        _check_uint64(self.app_id, "app_id")
        _check_uint64(self.fee, "fee")


@dataclass(frozen=True, slots=True)
class CallApp:
    """
    Application call evaluated by the smart-contract evaluator.

    Attributes:
        args: Application arguments, passed through to the evaluator.
        accounts: Extra accounts whose local state the call may read and write.
    """
    TYPE: ClassVar[str] = "appl"

    sender: str
    app_id: int
    fee: int
    args: Tuple[Any, ...] = ()
    accounts: Tuple[str, ...] = ()

    def __post_init__(self):
        _check_address(self.sender, "sender")
        _check_uint64(self.app_id, "app_id")
        _check_uint64(self.fee, "fee")
        # Accept lists from callers but store tuples so the record stays hashable
        object.__setattr__(self, "args", tuple(self.args))
        object.__setattr__(self, "accounts", tuple(self.accounts))
        if len(self.args) > MAX_APP_ARGS:
            raise InvalidTransaction(f"at most {MAX_APP_ARGS} app args allowed, got {len(self.args)}")
        if len(self.accounts) > MAX_APP_ACCOUNTS:
            raise InvalidTransaction(
                f"at most {MAX_APP_ACCOUNTS} foreign accounts allowed, got {len(self.accounts)}"
            )
        for address in self.accounts:
            _check_address(address, "accounts entry")


TransactionSpec = Union[TransferAlgo, TransferAsset, OptInAsset, OptInApp, CallApp]

TRANSACTION_TYPES: Tuple[type, ...] = (TransferAlgo, TransferAsset, OptInAsset, OptInApp, CallApp)


# ============================================================================
# RESULTS
# ============================================================================

@dataclass(frozen=True, slots=True)
class StagedChange:
    """
    One buffered mutation recorded while a group is applying.

    Attributes:
        index: Position of the transaction that caused the change.
        kind: "balance", "asset_holding", "local_state", "global_state" or "fee".
        target: Address, "address/asset_id", "address/app_id" or "app_id".
        before: Value before the change (None if the record did not exist).
        after: Value after the change.
    """
    index: int
    kind: str
    target: str
    before: Any
    after: Any


@dataclass(frozen=True, slots=True)
class CommitResult:
    """Acknowledgement of a committed group, with its inspectable delta set."""
    group_id: str
    sequence_number: int
    transactions: Tuple[TransactionSpec, ...]
    changes: Tuple[StagedChange, ...]
    fees_collected: int
    transitions: Tuple[GroupState, ...]

    ok: ClassVar[bool] = True

    @property
    def state(self) -> GroupState:
        return GroupState.COMMITTED

    def raise_for_error(self) -> None:
        return None


@dataclass(frozen=True, slots=True)
class AbortResult:
    """
    Outcome of a group that failed; the ledger is unchanged.

    Attributes:
        kind: Failure classification.
        index: Index of the offending transaction, or None for group-level failures.
        detail: Human-readable description.
        error: The exception that caused the abort.
        group_id: Content hash of the group, if the group was well-formed enough to hash.
        transitions: States visited, ending in ABORTED.
    """
    kind: ErrorKind
    index: Optional[int]
    detail: str
    error: LedgerError
    group_id: Optional[str]
    transitions: Tuple[GroupState, ...]

    ok: ClassVar[bool] = False

    @property
    def state(self) -> GroupState:
        return GroupState.ABORTED

    def raise_for_error(self) -> None:
        """Re-raise the typed exception for callers that prefer exceptions."""
        raise self.error

    def __repr__(self) -> str:
        where = "group" if self.index is None else f"tx[{self.index}]"
        return f"AbortResult({self.kind.value} at {where}: {self.detail})"


GroupResult = Union[CommitResult, AbortResult]


# ============================================================================
# CANONICAL HASHING
# ============================================================================

def _canonicalize(value: Any) -> str:
    """
    Produce a canonical string representation of a value for hashing.

    Output does not depend on dict insertion order, so semantically equal
    content always hashes identically.
    """
    if value is None:
        return "null"
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, int):
        return f"N:{value}"
    if isinstance(value, bytes):
        return f"B:{value.hex()}"
    if isinstance(value, str):
        return f"S:{value}"
    if isinstance(value, Enum):
        return f"E:{value.value}"
    if isinstance(value, dict):
        items = sorted(value.items(), key=lambda kv: str(kv[0]))
        serialized = ",".join(f"{_canonicalize(k)}:{_canonicalize(v)}" for k, v in items)
        return f"{{{serialized}}}"
    if isinstance(value, (list, tuple)):
        serialized = ",".join(_canonicalize(item) for item in value)
        return f"[{serialized}]"
    if is_dataclass(value) and not isinstance(value, type):
        body = {f.name: getattr(value, f.name) for f in fields(value)}
        return f"{type(value).__name__}{_canonicalize(body)}"
    return f"R:{repr(value)}"


def compute_group_id(transactions: Sequence[TransactionSpec]) -> str:
    """
    Content hash of a group, independent of when or where it executes.

    Order matters: the same transactions in a different order are a different group.
    """
    parts = [f"{i}:{tx.TYPE}:{_canonicalize(tx)}" for i, tx in enumerate(transactions)]
    return hashlib.sha256("|".join(parts).encode()).hexdigest()[:16]
