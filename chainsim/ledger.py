"""
ledger.py - Account Ledger

The Ledger class holds every account balance, asset holding and application
local state of a simulated network, together with the asset/application
registry. Group execution never mutates it directly: the executor stages
changes in a working set and hands them to commit_group() only once the
whole group has succeeded.

Key responsibilities:
    - Balance mutation primitives with unsigned, non-wrapping arithmetic
    - Lazy account creation on first reference
    - Asset/application registry (the management layer)
    - Single-writer lock shared with GroupExecutor
    - Conservation checks and a canonical state digest for audits
"""

from __future__ import annotations
from typing import Dict, List, Optional, Any
import hashlib
import logging
import threading

from .core import (
    # Types
    Account, AccountSnapshot, AssetHolding, AssetParams, AppParams,
    StateSchema, ProtocolParams, CommitResult, KeyValueStore,
    # Constants
    MAX_UINT64, DEFAULT_PARAMS,
    # Exceptions
    LedgerError, InsufficientBalance, BalanceOverflow, InvalidTransaction,
    AssetNotFound, AppNotFound, AssetFrozen, NotOptedIn,
    # Helpers
    is_uint64, _canonicalize,
)

logger = logging.getLogger(__name__)


class AccountStore:
    """
    Balance and holding primitives shared by the committed ledger and by
    staged working sets.

    Subclasses provide storage through peek_account(), load_account(),
    get_asset(), get_app(), load_app(), record_change() and collect_fee().
    Every primitive checks all of its preconditions before touching
    anything, so a raised error always means nothing was mutated.
    """

    params: ProtocolParams

    # -- storage hooks -------------------------------------------------------

    def peek_account(self, address: str) -> Optional[Account]:
        """Return the current account record without creating it."""
        raise NotImplementedError

    def load_account(self, address: str) -> Account:
        """Return a writable account record, creating it with balance 0 if unseen."""
        raise NotImplementedError

    def get_asset(self, asset_id: int) -> AssetParams:
        raise NotImplementedError

    def get_app(self, app_id: int) -> AppParams:
        raise NotImplementedError

    def load_app(self, app_id: int) -> AppParams:
        """Return a writable application record."""
        raise NotImplementedError

    def record_change(self, kind: str, target: str, before: Any, after: Any) -> None:
        """Hook for audit of each mutation; the committed ledger ignores it."""
        pass

    def collect_fee(self, fee: int) -> None:
        raise NotImplementedError

    # -- primitives ----------------------------------------------------------

    def balance_of(self, address: str) -> int:
        account = self.peek_account(address)
        return 0 if account is None else account.balance

    def apply_transfer(self, sender: str, receiver: str, amount: int, fee: int) -> None:
        """
        Move amount from sender to receiver and charge fee to sender.

        Requires balance(sender) >= amount + fee. The receiver is created
        with balance 0 if it has never been seen.

        Raises:
            InvalidTransaction: If amount or fee is not a uint64
            InsufficientBalance: If the sender cannot cover amount + fee
            BalanceOverflow: If the receiver's balance would exceed MAX_UINT64
        """
        if not is_uint64(amount) or not is_uint64(fee):
            raise InvalidTransaction(f"amount and fee must be uint64, got {amount!r} and {fee!r}")
        required = amount + fee
        available = self.balance_of(sender)
        if available < required:
            raise InsufficientBalance(sender, required, available)

        if receiver == sender:
            credited = available - required + amount
        else:
            credited = self.balance_of(receiver) + amount
        if credited > MAX_UINT64:
            raise BalanceOverflow(f"Account {receiver} balance would exceed {MAX_UINT64}")

        src = self.load_account(sender)
        before = src.balance
        src.balance -= required
        self.record_change("balance", sender, before, src.balance)

        if amount:
            dst = self.load_account(receiver)
            before = dst.balance
            dst.balance += amount
            self.record_change("balance", receiver, before, dst.balance)
        elif receiver != sender:
            # A zero payment still brings the receiver into existence
            self.load_account(receiver)

        if fee:
            self.collect_fee(fee)

    def apply_fee_only(self, sender: str, fee: int) -> None:
        """
        Charge fee to sender with no accompanying transfer.

        A zero fee consumes nothing and succeeds even for an empty account.

        Raises:
            InsufficientBalance: If the sender cannot cover the fee
        """
        if not is_uint64(fee):
            raise InvalidTransaction(f"fee must be uint64, got {fee!r}")
        if fee == 0:
            return
        available = self.balance_of(sender)
        if available < fee:
            raise InsufficientBalance(sender, fee, available)
        account = self.load_account(sender)
        before = account.balance
        account.balance -= fee
        self.record_change("balance", sender, before, account.balance)
        self.collect_fee(fee)

    def apply_asset_transfer(self, sender: str, receiver: str, asset_id: int, amount: int) -> None:
        """
        Move amount units of an asset between two opted-in accounts.

        Raises:
            AssetNotFound: If the asset does not exist
            NotOptedIn: If either side holds no record for the asset
            AssetFrozen: If either holding is frozen
            InsufficientBalance: If the sender's holding is below amount
        """
        self.get_asset(asset_id)
        src = self.peek_account(sender)
        if src is None or asset_id not in src.assets:
            raise NotOptedIn(f"Account {sender} is not opted in to asset {asset_id}")
        dst = self.peek_account(receiver)
        if dst is None or asset_id not in dst.assets:
            raise NotOptedIn(f"Account {receiver} is not opted in to asset {asset_id}")
        if src.assets[asset_id].is_frozen:
            raise AssetFrozen(f"Asset {asset_id} holding of {sender} is frozen")
        if dst.assets[asset_id].is_frozen:
            raise AssetFrozen(f"Asset {asset_id} holding of {receiver} is frozen")
        available = src.assets[asset_id].amount
        if available < amount:
            raise InsufficientBalance(sender, amount, available, asset_id=asset_id)
        if sender == receiver or amount == 0:
            return

        src_holding = self.load_account(sender).assets[asset_id]
        dst_holding = self.load_account(receiver).assets[asset_id]
        before = src_holding.amount
        src_holding.amount -= amount
        self.record_change("asset_holding", f"{sender}/{asset_id}", before, src_holding.amount)
        before = dst_holding.amount
        dst_holding.amount += amount
        self.record_change("asset_holding", f"{receiver}/{asset_id}", before, dst_holding.amount)


class Ledger(AccountStore):
    """
    Committed account state of one simulated network.

    Implements the AccountStore primitives directly against committed
    state; GroupExecutor wraps it in a staged working set instead.

    Thread Safety:
        Every public read and write takes self.lock (a re-entrant lock).
        GroupExecutor holds the same lock for the whole of a group's
        validation, application and commit, so groups are serialized and
        readers never observe a partially committed group.

    Example:
        ledger = Ledger("main")
        alice = address_from_name("alice")
        ledger.fund(alice, 1_000_000)
        asset_id = ledger.create_asset(alice, total=1000, name="gold")
        ledger.get(alice).get_asset_holding(asset_id).amount  # 1000
    """

    def __init__(
        self,
        name: str,
        params: Optional[ProtocolParams] = None,
        verbose: bool = True,
        test_mode: bool = False,
    ):
        """
        Create a ledger.

        Args:
            name: Ledger identifier
            params: Protocol configuration (default: network defaults)
            verbose: Log registrations, funding and group outcomes at INFO (default: True)
            test_mode: Allow set_balance() calls (default: False)
        """
        self.name = name
        self.params = params or DEFAULT_PARAMS
        self.verbose = verbose
        self._test_mode = test_mode
        self.lock = threading.RLock()
        self.group_in_progress = False
        self.accounts: Dict[str, Account] = {}
        self.assets: Dict[int, AssetParams] = {}
        self.apps: Dict[int, AppParams] = {}
        self.fees_collected: int = 0
        self.total_minted: int = 0
        self.group_log: List[CommitResult] = []
        # Assets and apps share one id space, as on the network
        self._next_index: int = 1
        self._next_sequence: int = 0

    # ========================================================================
    # READS
    # ========================================================================

    def get(self, address: str) -> AccountSnapshot:
        """
        Snapshot of an account's committed state.

        An address never seen before reads as an empty account with balance 0;
        reading does not create it.
        """
        with self.lock:
            account = self.accounts.get(address)
            if account is None:
                return Account(address).snapshot()
            return account.snapshot()

    get_account = get

    def get_balance(self, address: str) -> int:
        with self.lock:
            return self.balance_of(address)

    def get_asset(self, asset_id: int) -> AssetParams:
        with self.lock:
            if asset_id not in self.assets:
                raise AssetNotFound(f"Asset {asset_id} not found")
            return self.assets[asset_id]

    def get_app(self, app_id: int) -> AppParams:
        """Return a copy of the application's definition and global state."""
        with self.lock:
            if app_id not in self.apps:
                raise AppNotFound(f"Application {app_id} not found")
            return self.apps[app_id].copy()

    def get_global_state(self, app_id: int) -> KeyValueStore:
        return self.get_app(app_id).global_state

    def list_accounts(self) -> List[str]:
        """List all known addresses, sorted."""
        with self.lock:
            return sorted(self.accounts.keys())

    def total_balance(self) -> int:
        """Sum of all account balances, in sorted address order."""
        with self.lock:
            return sum(self.accounts[a].balance for a in sorted(self.accounts))

    def verify_conservation(self) -> Dict[str, Any]:
        """
        Verify that no currency was created or destroyed outside of minting.

        Every unit ever minted is either held by some account or was
        removed as a fee:

            Σ balances + fees_collected = total_minted

        Returns:
            Dict with keys:
            - 'valid': bool - True if the law holds
            - 'total_minted': int
            - 'total_balances': int
            - 'fees_collected': int
            - 'discrepancy': int - total_minted - (total_balances + fees_collected)
        """
        with self.lock:
            balances = self.total_balance()
            discrepancy = self.total_minted - (balances + self.fees_collected)
            return {
                'valid': discrepancy == 0,
                'total_minted': self.total_minted,
                'total_balances': balances,
                'fees_collected': self.fees_collected,
                'discrepancy': discrepancy,
            }

    def state_digest(self) -> str:
        """
        Canonical hash of the entire committed state.

        Two ledgers (or one ledger at two points in time) with identical
        accounts, registry, minted total and collected fees produce the same
        digest. Used to prove a failed group left state byte-for-byte unchanged.
        """
        with self.lock:
            content = {
                'accounts': {
                    address: {
                        'balance': account.balance,
                        'assets': {
                            asset_id: (h.amount, h.is_frozen)
                            for asset_id, h in account.assets.items()
                        },
                        'apps_local': {
                            app_id: (local.schema, dict(local.key_values))
                            for app_id, local in account.apps_local.items()
                        },
                    }
                    for address, account in self.accounts.items()
                },
                'assets': dict(self.assets),
                'apps': {app_id: app for app_id, app in self.apps.items()},
                'fees_collected': self.fees_collected,
                'total_minted': self.total_minted,
                'next_index': self._next_index,
            }
            return hashlib.sha256(_canonicalize(content).encode()).hexdigest()

    # ========================================================================
    # ACCOUNT STORE HOOKS (committed state)
    # ========================================================================

    def peek_account(self, address: str) -> Optional[Account]:
        return self.accounts.get(address)

    def load_account(self, address: str) -> Account:
        account = self.accounts.get(address)
        if account is None:
            account = Account(address)
            self.accounts[address] = account
        return account

    def load_app(self, app_id: int) -> AppParams:
        if app_id not in self.apps:
            raise AppNotFound(f"Application {app_id} not found")
        return self.apps[app_id]

    def collect_fee(self, fee: int) -> None:
        self.fees_collected += fee

    def apply_transfer(self, sender: str, receiver: str, amount: int, fee: int) -> None:
        with self.lock:
            super().apply_transfer(sender, receiver, amount, fee)

    def apply_fee_only(self, sender: str, fee: int) -> None:
        with self.lock:
            super().apply_fee_only(sender, fee)

    def apply_asset_transfer(self, sender: str, receiver: str, asset_id: int, amount: int) -> None:
        with self.lock:
            super().apply_asset_transfer(sender, receiver, asset_id, amount)

    # ========================================================================
    # MANAGEMENT LAYER (outside of groups)
    # ========================================================================

    def fund(self, address: str, amount: int) -> None:
        """
        Mint amount new units of currency into an account.

        This is the simulator's faucet: it increases total_minted, so
        conservation still holds afterwards.

        Raises:
            InvalidTransaction: If amount is not a uint64
            BalanceOverflow: If the balance would exceed MAX_UINT64
        """
        if not is_uint64(amount):
            raise InvalidTransaction(f"amount must be uint64, got {amount!r}")
        with self.lock:
            if self.balance_of(address) + amount > MAX_UINT64:
                raise BalanceOverflow(f"Account {address} balance would exceed {MAX_UINT64}")
            account = self.load_account(address)
            account.balance += amount
            self.total_minted += amount
            if self.verbose:
                logger.info("Funded %s with %d (balance %d)", address, amount, account.balance)

    def set_balance(self, address: str, amount: int) -> None:
        """
        Overwrite an account's balance directly.

        WARNING: This bypasses transaction rules and is only available in
        test mode. total_minted is adjusted by the difference so that
        verify_conservation() keeps holding.

        Raises:
            LedgerError: If called when test_mode is False
        """
        if not self._test_mode:
            raise LedgerError(
                "set_balance() is disabled in production mode. "
                "Use fund() or execute a group to modify balances. "
                "Set test_mode=True when creating Ledger for testing."
            )
        if not is_uint64(amount):
            raise InvalidTransaction(f"amount must be uint64, got {amount!r}")
        with self.lock:
            account = self.load_account(address)
            self.total_minted += amount - account.balance
            account.balance = amount

    def _allocate_index(self) -> int:
        index = self._next_index
        self._next_index += 1
        return index

    def create_asset(
        self,
        creator: str,
        total: int,
        decimals: int = 0,
        name: str = "",
        unit_name: str = "",
        default_frozen: bool = False,
    ) -> int:
        """
        Register a new asset; the creator is opted in and holds the full supply.

        Returns:
            The new asset id
        """
        if not is_uint64(total):
            raise InvalidTransaction(f"asset total must be uint64, got {total!r}")
        with self.lock:
            asset_id = self._allocate_index()
            self.assets[asset_id] = AssetParams(
                asset_id=asset_id,
                creator=creator,
                total=total,
                decimals=decimals,
                name=name,
                unit_name=unit_name,
                default_frozen=default_frozen,
            )
            # The creator's holding is never frozen, whatever the default
            self.load_account(creator).assets[asset_id] = AssetHolding(asset_id, total, False)
            if self.verbose:
                logger.info("Registered asset %d (%s) total=%d creator=%s", asset_id, name, total, creator)
            return asset_id

    def create_app(
        self,
        creator: str,
        global_schema: StateSchema,
        local_schema: StateSchema,
        name: str = "",
    ) -> int:
        """
        Register a new application with empty global state.

        The creator is not opted in; local state requires an OptInApp.

        Returns:
            The new application id
        """
        with self.lock:
            app_id = self._allocate_index()
            self.apps[app_id] = AppParams(
                app_id=app_id,
                creator=creator,
                global_schema=global_schema,
                local_schema=local_schema,
                name=name,
            )
            self.load_account(creator)
            if self.verbose:
                logger.info("Registered app %d (%s) creator=%s", app_id, name, creator)
            return app_id

    def set_asset_frozen(self, address: str, asset_id: int, frozen: bool) -> None:
        """Freeze or unfreeze an account's holding (management layer)."""
        with self.lock:
            self.get_asset(asset_id)
            account = self.peek_account(address)
            if account is None or asset_id not in account.assets:
                raise NotOptedIn(f"Account {address} is not opted in to asset {asset_id}")
            account.assets[asset_id].is_frozen = frozen

    # ========================================================================
    # COMMIT
    # ========================================================================

    def commit_group(
        self,
        accounts: Dict[str, Account],
        apps: Dict[int, AppParams],
        fees_collected: int,
    ) -> int:
        """
        Install the working set of a successful group as committed state.

        The staged records are private copies, so they replace the
        committed records wholesale. Caller must hold self.lock.

        Returns:
            Sequence number assigned to the committed group
        """
        self.accounts.update(accounts)
        self.apps.update(apps)
        self.fees_collected += fees_collected
        sequence = self._next_sequence
        self._next_sequence += 1
        return sequence

    # ========================================================================
    # LEDGER OPERATIONS
    # ========================================================================

    def clone(self) -> Ledger:
        """
        Create a deep copy of this ledger.

        All state is fully independent: modifications to the clone will not
        affect the original ledger, and vice versa. The group log is shared
        by reference to its (immutable) records.
        """
        with self.lock:
            cloned = Ledger(
                name=self.name,
                params=self.params,
                verbose=self.verbose,
                test_mode=self._test_mode,
            )
            cloned.accounts = {a: acc.copy() for a, acc in self.accounts.items()}
            cloned.assets = dict(self.assets)
            cloned.apps = {i: app.copy() for i, app in self.apps.items()}
            cloned.fees_collected = self.fees_collected
            cloned.total_minted = self.total_minted
            cloned.group_log = list(self.group_log)
            cloned._next_index = self._next_index
            cloned._next_sequence = self._next_sequence
            return cloned
