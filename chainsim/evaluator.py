"""
evaluator.py - Smart-Contract Evaluator Contract

The bytecode evaluator that decides whether an application call passes is
an external collaborator. The executor only needs its verdict:

    Accept(delta)   - the call passes; delta is applied before the next transaction
    Reject(reason)  - the call fails; the whole group aborts with LogicReject

Evaluators receive an AppCallContext built from the group's staged state,
so a call sees every effect of the transactions before it in the group.
Both objects with an evaluate() method and plain callables are accepted.
"""

from __future__ import annotations
from dataclasses import dataclass, field
from typing import Dict, Mapping, Optional, Protocol, Tuple, Union, Any, runtime_checkable

from .core import (
    KeyValueStore, StateValue, StateSchema,
    LogicReject, NotOptedIn, SchemaViolation,
    MAX_STATE_KEY_LENGTH, is_uint64,
)
from .ledger import AccountStore


@dataclass(frozen=True, slots=True)
class StateDelta:
    """
    Changes an accepted call makes to application state.

    A value of None deletes the key.

    Attributes:
        global_delta: key -> new value for the application's global state
        local_delta: address -> (key -> new value) for local states
    """
    global_delta: Mapping[str, Optional[StateValue]] = field(default_factory=dict)
    local_delta: Mapping[str, Mapping[str, Optional[StateValue]]] = field(default_factory=dict)

    def is_empty(self) -> bool:
        return not self.global_delta and not any(self.local_delta.values())


@dataclass(frozen=True, slots=True)
class Accept:
    delta: StateDelta = field(default_factory=StateDelta)


@dataclass(frozen=True, slots=True)
class Reject:
    reason: str


Verdict = Union[Accept, Reject]


@dataclass(frozen=True, slots=True)
class AppCallContext:
    """
    Read-only view of the state an application call may inspect.

    Attributes:
        app_id: Application being called
        sender: Caller
        global_state: Copy of the application's global state
        local_states: address -> copy of its local state, or None if not opted in.
                      Covers the sender and every account listed in the call.
        accounts: Extra accounts listed by the call
        group_index: Position of the call within its group
        group_size: Number of transactions in the group
    """
    app_id: int
    sender: str
    global_state: KeyValueStore
    local_states: Dict[str, Optional[KeyValueStore]]
    accounts: Tuple[str, ...] = ()
    group_index: int = 0
    group_size: int = 1


@runtime_checkable
class SmartContractEvaluator(Protocol):
    """Decides whether an application call is accepted."""

    def evaluate(
        self,
        sender: str,
        app_id: int,
        args: Tuple[Any, ...],
        state: AppCallContext,
    ) -> Verdict:
        ...


def accept_all(sender: str, app_id: int, args: Tuple[Any, ...], state: AppCallContext) -> Verdict:
    """Evaluator that accepts every call without changing state."""
    return Accept()


def run_evaluator(
    evaluator: Any,
    sender: str,
    app_id: int,
    args: Tuple[Any, ...],
    state: AppCallContext,
) -> Verdict:
    """
    Invoke an evaluator and check that it returned a verdict.

    Raises:
        LogicReject: If the evaluator returns anything other than Accept or Reject,
            or accepts with something other than a StateDelta
    """
    if hasattr(evaluator, 'evaluate'):
        verdict = evaluator.evaluate(sender, app_id, args, state)
    else:
        verdict = evaluator(sender, app_id, args, state)
    if not isinstance(verdict, (Accept, Reject)):
        raise LogicReject(
            f"Evaluator for app {app_id} must return Accept or Reject, got {type(verdict).__name__}"
        )
    if isinstance(verdict, Accept) and not isinstance(verdict.delta, StateDelta):
        raise LogicReject(
            f"Evaluator for app {app_id} must accept with a StateDelta, "
            f"got {type(verdict.delta).__name__}"
        )
    return verdict


def build_call_context(
    store: AccountStore,
    app_id: int,
    sender: str,
    accounts: Tuple[str, ...],
    group_index: int,
    group_size: int,
) -> AppCallContext:
    """Snapshot the state visible to an application call from store."""
    app = store.get_app(app_id)
    local_states: Dict[str, Optional[KeyValueStore]] = {}
    for address in (sender,) + tuple(accounts):
        account = store.peek_account(address)
        local = None if account is None else account.apps_local.get(app_id)
        local_states[address] = None if local is None else dict(local.key_values)
    return AppCallContext(
        app_id=app_id,
        sender=sender,
        global_state=dict(app.global_state),
        local_states=local_states,
        accounts=tuple(accounts),
        group_index=group_index,
        group_size=group_size,
    )


def _merge(current: KeyValueStore, changes: Mapping[str, Optional[StateValue]], schema: StateSchema,
           where: str) -> KeyValueStore:
    merged = dict(current)
    for key, value in changes.items():
        if not isinstance(key, str) or not key or len(key.encode()) > MAX_STATE_KEY_LENGTH:
            raise SchemaViolation(f"{where}: invalid state key {key!r}")
        if value is None:
            merged.pop(key, None)
        elif isinstance(value, bytes) or is_uint64(value):
            merged[key] = value
        else:
            raise SchemaViolation(f"{where}: value for {key!r} must be uint64 or bytes, got {value!r}")
    if not schema.fits(merged):
        raise SchemaViolation(f"{where}: state exceeds schema {schema}")
    return merged


def apply_state_delta(
    store: AccountStore,
    app_id: int,
    delta: StateDelta,
    allowed_accounts: Optional[Tuple[str, ...]] = None,
) -> None:
    """
    Apply an accepted call's delta to store.

    The whole delta is validated before anything is written.

    Args:
        store: Working set to write into
        app_id: Application whose state changes
        delta: Changes returned by the evaluator
        allowed_accounts: Addresses whose local state the call may write (default: any)

    Raises:
        LogicReject: If the delta writes an account the call did not reference
        NotOptedIn: If a local delta targets an account without local state for app_id
        SchemaViolation: If a key, value, or the resulting slot counts are invalid
    """
    app = store.get_app(app_id)
    new_global = None
    if delta.global_delta:
        new_global = _merge(app.global_state, delta.global_delta, app.global_schema,
                            f"app {app_id} global state")

    new_locals: Dict[str, KeyValueStore] = {}
    for address, changes in delta.local_delta.items():
        if not changes:
            continue
        if allowed_accounts is not None and address not in allowed_accounts:
            raise LogicReject(f"App {app_id} wrote local state of unreferenced account {address}")
        account = store.peek_account(address)
        if account is None or app_id not in account.apps_local:
            raise NotOptedIn(f"Account {address} is not opted in to application {app_id}")
        local = account.apps_local[app_id]
        new_locals[address] = _merge(local.key_values, changes, local.schema,
                                     f"app {app_id} local state of {address}")

    if new_global is not None:
        writable = store.load_app(app_id)
        before = dict(writable.global_state)
        writable.global_state = new_global
        store.record_change("global_state", str(app_id), before, dict(new_global))
    for address, key_values in new_locals.items():
        local = store.load_account(address).apps_local[app_id]
        before = dict(local.key_values)
        local.key_values = key_values
        store.record_change("local_state", f"{address}/{app_id}", before, dict(key_values))
