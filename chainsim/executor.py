"""
executor.py - Atomic Group Executor

Validates a transaction group as one unit, applies it in order against a
staged working set, and either commits every change or none of them.

Execution of one group:
1. Take the ledger's writer lock (held until a terminal state is reached)
2. VALIDATING: group shape, transaction types, pooled fees
3. APPLYING: each transaction in caller order, dispatched by type, against
   a StagedState that buffers every mutation
4. COMMITTED: the staged accounts and apps replace the committed ones in a
   single step; or ABORTED: the staged state is dropped

The executor never reorders transactions: a sender that is funded later in
the group cannot spend that funding earlier.
"""

from __future__ import annotations
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple
import logging

from .core import (
    # Types
    Account, AppParams, AssetParams, GroupState, StagedChange,
    CommitResult, AbortResult, GroupResult, TransactionSpec,
    TransferAlgo, TransferAsset, OptInAsset, OptInApp, CallApp,
    AccountSnapshot,
    # Exceptions
    LedgerError, InvalidTransaction, GroupSizeExceeded, LogicReject,
    AppNotFound, IllegalStateTransition,
    # Helpers
    compute_group_id,
)
from .evaluator import (
    Reject, apply_state_delta, build_call_context, run_evaluator,
)
from .fees import validate_group_fees
from .ledger import AccountStore, Ledger
from .optin import OptInManager

logger = logging.getLogger(__name__)


# ============================================================================
# STATE MACHINE
# ============================================================================

_ALLOWED_TRANSITIONS: Dict[GroupState, Tuple[GroupState, ...]] = {
    GroupState.PENDING: (GroupState.VALIDATING,),
    GroupState.VALIDATING: (GroupState.APPLYING, GroupState.ABORTED),
    GroupState.APPLYING: (GroupState.COMMITTED, GroupState.ABORTED),
    GroupState.COMMITTED: (),
    GroupState.ABORTED: (),
}


class GroupExecution:
    """Tracks one group's progress through its lifecycle."""

    def __init__(self, transactions: Sequence[TransactionSpec]):
        self.transactions: Tuple[TransactionSpec, ...] = tuple(transactions)
        self.state = GroupState.PENDING
        self.history: List[GroupState] = [GroupState.PENDING]
        self.group_id: Optional[str] = None

    def transition(self, new_state: GroupState) -> None:
        """
        Move to new_state.

        Raises:
            IllegalStateTransition: If the move is not allowed from the current state
        """
        if new_state not in _ALLOWED_TRANSITIONS[self.state]:
            raise IllegalStateTransition(f"{self.state.value} -> {new_state.value}")
        self.state = new_state
        self.history.append(new_state)

    @property
    def is_terminal(self) -> bool:
        return not _ALLOWED_TRANSITIONS[self.state]


# ============================================================================
# STAGED WORKING SET
# ============================================================================

class StagedState(AccountStore):
    """
    Buffered view of a ledger used while a group is applying.

    Reads fall through to committed state; the first write to an account or
    application takes a private copy. Every mutation is appended to
    `changes`, so the full delta set can be inspected before commit.
    Dropping the object discards the group.
    """

    def __init__(self, ledger: Ledger):
        self.ledger = ledger
        self.params = ledger.params
        self.accounts: Dict[str, Account] = {}
        self.apps: Dict[int, AppParams] = {}
        self.changes: List[StagedChange] = []
        self.fees_collected: int = 0
        self.current_index: int = 0

    def peek_account(self, address: str) -> Optional[Account]:
        if address in self.accounts:
            return self.accounts[address]
        return self.ledger.accounts.get(address)

    def load_account(self, address: str) -> Account:
        account = self.accounts.get(address)
        if account is None:
            committed = self.ledger.accounts.get(address)
            account = committed.copy() if committed is not None else Account(address)
            self.accounts[address] = account
        return account

    def get_asset(self, asset_id: int) -> AssetParams:
        return self.ledger.get_asset(asset_id)

    def get_app(self, app_id: int) -> AppParams:
        if app_id in self.apps:
            return self.apps[app_id]
        if app_id not in self.ledger.apps:
            raise AppNotFound(f"Application {app_id} not found")
        return self.ledger.apps[app_id]

    def load_app(self, app_id: int) -> AppParams:
        app = self.apps.get(app_id)
        if app is None:
            app = self.get_app(app_id).copy()
            self.apps[app_id] = app
        return app

    def record_change(self, kind: str, target: str, before: Any, after: Any) -> None:
        self.changes.append(StagedChange(self.current_index, kind, target, before, after))

    def collect_fee(self, fee: int) -> None:
        self.fees_collected += fee
        self.changes.append(StagedChange(self.current_index, "fee", "", self.fees_collected - fee,
                                         self.fees_collected))


# ============================================================================
# TRANSACTION HANDLERS
# ============================================================================
#
# One function per transaction type, all called as handler(tx, staged, step).
# Each charges the declared fee (together with the payment where there is
# one) and then applies its effect. Any LedgerError raised aborts the group.

@dataclass(frozen=True, slots=True)
class GroupStep:
    """Where a transaction sits in its group, and who is executing it."""
    executor: GroupExecutor
    index: int
    group_size: int


def _apply_transfer_algo(tx: TransferAlgo, staged: StagedState, step: GroupStep) -> None:
    staged.apply_transfer(tx.sender, tx.receiver, tx.amount, tx.fee)
    if tx.close_remainder_to is None:
        return
    account = staged.peek_account(tx.sender)
    if account.assets or account.apps_local:
        raise InvalidTransaction(
            f"Account {tx.sender} cannot be closed while holding assets or app local state"
        )
    if account.balance:
        staged.apply_transfer(tx.sender, tx.close_remainder_to, account.balance, 0)


def _apply_transfer_asset(tx: TransferAsset, staged: StagedState, step: GroupStep) -> None:
    staged.apply_fee_only(tx.sender, tx.fee)
    staged.apply_asset_transfer(tx.sender, tx.receiver, tx.asset_id, tx.amount)


def _apply_opt_in_asset(tx: OptInAsset, staged: StagedState, step: GroupStep) -> None:
    staged.apply_fee_only(tx.sender, tx.fee)
    step.executor.opt_in_manager.opt_in_asset(staged, tx.sender, tx.asset_id)


def _apply_opt_in_app(tx: OptInApp, staged: StagedState, step: GroupStep) -> None:
    staged.apply_fee_only(tx.sender, tx.fee)
    app = staged.get_app(tx.app_id)
    step.executor.opt_in_manager.opt_in_application(staged, tx.sender, tx.app_id, app.local_schema)


def _apply_call_app(tx: CallApp, staged: StagedState, step: GroupStep) -> None:
    staged.apply_fee_only(tx.sender, tx.fee)
    context = build_call_context(staged, tx.app_id, tx.sender, tx.accounts,
                                 step.index, step.group_size)
    evaluator = step.executor.evaluator_for(tx.app_id)
    if evaluator is None:
        raise LogicReject(f"No evaluator registered for application {tx.app_id}")
    verdict = run_evaluator(evaluator, tx.sender, tx.app_id, tx.args, context)
    if isinstance(verdict, Reject):
        raise LogicReject(f"Application {tx.app_id} rejected call: {verdict.reason}")
    apply_state_delta(staged, tx.app_id, verdict.delta,
                      allowed_accounts=(tx.sender,) + tx.accounts)


_HANDLERS: Dict[type, Callable[..., None]] = {
    TransferAlgo: _apply_transfer_algo,
    TransferAsset: _apply_transfer_asset,
    OptInAsset: _apply_opt_in_asset,
    OptInApp: _apply_opt_in_app,
    CallApp: _apply_call_app,
}


# ============================================================================
# EXECUTOR
# ============================================================================

class GroupExecutor:
    """
    Executes transaction groups atomically against one ledger.

    Features:
    - Pooled fee validation before any mutation
    - Strictly ordered application with staged, discardable mutations
    - Per-application evaluators with an optional default
    - Serialization of concurrent submissions through the ledger's lock
    """

    def __init__(
        self,
        ledger: Ledger,
        evaluator: Optional[Any] = None,
        opt_in_manager: Optional[OptInManager] = None,
    ):
        """
        Initialize executor.

        Args:
            ledger: The ledger to operate on
            evaluator: Default evaluator for application calls (None rejects every call
                       to an application without its own registered evaluator)
            opt_in_manager: Opt-in manager (created from the ledger's params if not provided)
        """
        self.ledger = ledger
        self.params = ledger.params
        self.default_evaluator = evaluator
        self.evaluators: Dict[int, Any] = {}
        self.opt_in_manager = opt_in_manager or OptInManager(ledger.params)
        self.verbose = ledger.verbose

    def register(self, app_id: int, evaluator: Any) -> None:
        """
        Register the evaluator for one application.

        Args:
            app_id: Application id
            evaluator: SmartContractEvaluator or callable with the same signature
        """
        self.evaluators[app_id] = evaluator

    def evaluator_for(self, app_id: int) -> Optional[Any]:
        return self.evaluators.get(app_id, self.default_evaluator)

    def get_account(self, address: str) -> AccountSnapshot:
        """Committed state of an account."""
        return self.ledger.get(address)

    def execute_group(self, transactions: Sequence[TransactionSpec]) -> GroupResult:
        """
        Execute a group atomically.

        Args:
            transactions: Ordered transactions; all commit or none do

        Returns:
            CommitResult if every transaction applied
            AbortResult (ledger unchanged) on the first failure
        """
        execution = GroupExecution(transactions)
        with self.ledger.lock:
            execution.transition(GroupState.VALIDATING)
            # The lock is re-entrant, so a group submitted from inside an
            # evaluator would otherwise commit under the outer group's staging.
            if self.ledger.group_in_progress:
                return self._abort(execution, InvalidTransaction(
                    "Cannot submit a group while another group on this ledger is applying"
                ), None)
            self.ledger.group_in_progress = True
            try:
                result = self._run(execution)
            finally:
                self.ledger.group_in_progress = False

        if self.verbose and result.ok:
            logger.info(
                "COMMITTED group %s (%d txns, %d changes, fees %d)",
                result.group_id, len(result.transactions), len(result.changes),
                result.fees_collected,
            )
        return result

    executeGroup = execute_group

    def _run(self, execution: GroupExecution) -> GroupResult:
        try:
            self._validate(execution)
        except _IndexedFailure as failure:
            return self._abort(execution, failure.error, failure.index)
        except LedgerError as e:
            return self._abort(execution, e, None)

        execution.transition(GroupState.APPLYING)
        staged = StagedState(self.ledger)
        group_size = len(execution.transactions)
        for index, tx in enumerate(execution.transactions):
            staged.current_index = index
            logger.debug("Applying tx[%d] %s from %s", index, type(tx).__name__, tx.sender)
            try:
                _HANDLERS[type(tx)](tx, staged, GroupStep(self, index, group_size))
            except LedgerError as e:
                return self._abort(execution, e, index)

        execution.transition(GroupState.COMMITTED)
        sequence = self.ledger.commit_group(staged.accounts, staged.apps, staged.fees_collected)
        result = CommitResult(
            group_id=execution.group_id,
            sequence_number=sequence,
            transactions=execution.transactions,
            changes=tuple(staged.changes),
            fees_collected=staged.fees_collected,
            transitions=tuple(execution.history),
        )
        self.ledger.group_log.append(result)
        return result

    def _validate(self, execution: GroupExecution) -> None:
        transactions = execution.transactions
        if not transactions:
            raise InvalidTransaction("Transaction group is empty")
        if len(transactions) > self.params.max_group_size:
            raise GroupSizeExceeded(
                f"Group has {len(transactions)} transactions, maximum is {self.params.max_group_size}"
            )
        for index, tx in enumerate(transactions):
            if type(tx) not in _HANDLERS:
                raise _IndexedFailure(
                    InvalidTransaction(f"Unsupported transaction type {type(tx).__name__}"),
                    index,
                )
        execution.group_id = compute_group_id(transactions)
        validate_group_fees(transactions, self.params)

    def _abort(self, execution: GroupExecution, error: LedgerError, index: Optional[int]) -> AbortResult:
        execution.transition(GroupState.ABORTED)
        result = AbortResult(
            kind=error.kind,
            index=index,
            detail=str(error),
            error=error,
            group_id=execution.group_id,
            transitions=tuple(execution.history),
        )
        if self.verbose:
            logger.info("ABORTED group %s: %r", execution.group_id, result)
        return result


class _IndexedFailure(Exception):
    """Carries a validation error together with the offending transaction index."""

    def __init__(self, error: LedgerError, index: int):
        super().__init__(str(error))
        self.error = error
        self.index = index
