"""
optin.py - Opt-In Manager

Creates the per-account records that let an account hold an asset or keep
local state for an application. Works on any AccountStore, so the same
code serves the committed Ledger and a group's staged working set.

Simplifications relative to the network, both configurable through
ProtocolParams:
    - A duplicate opt-in is a no-op by default (OptInPolicy.IGNORE);
      OptInPolicy.REJECT turns it into AlreadyOptedIn.
    - No minimum-balance reservation is made unless enforce_min_balance
      is set, so unfunded accounts may opt in freely.

Fees are not handled here: the executor charges the declared fee before
delegating, under the same rules as any other transaction.
"""

from __future__ import annotations
from typing import Optional
import logging

from .core import (
    Account, AssetHolding, AppLocalState, StateSchema, ProtocolParams,
    OptInPolicy, AlreadyOptedIn, MinBalanceViolation,
    compute_min_balance, DEFAULT_PARAMS,
)
from .ledger import AccountStore

logger = logging.getLogger(__name__)


class OptInManager:
    """Creates and reads asset-holding and application-local-state records."""

    def __init__(self, params: Optional[ProtocolParams] = None):
        self.params = params or DEFAULT_PARAMS

    def opt_in_asset(self, store: AccountStore, address: str, asset_id: int) -> bool:
        """
        Give address a zero holding of asset_id.

        The holding starts frozen if the asset is default-frozen.

        Returns:
            True if a holding was created, False if one already existed

        Raises:
            AssetNotFound: If the asset does not exist
            AlreadyOptedIn: On a duplicate under OptInPolicy.REJECT
            MinBalanceViolation: If enforced and the account cannot carry the holding
        """
        asset = store.get_asset(asset_id)
        existing = store.peek_account(address)
        if existing is not None and asset_id in existing.assets:
            return self._duplicate(address, f"asset {asset_id}")

        self._check_min_balance(existing, extra=self.params.asset_min_balance, address=address)
        account = store.load_account(address)
        holding = AssetHolding(asset_id, 0, asset.default_frozen)
        account.assets[asset_id] = holding
        store.record_change("asset_holding", f"{address}/{asset_id}", None, holding.amount)
        logger.debug("Opted %s in to asset %d", address, asset_id)
        return True

    def opt_in_application(
        self,
        store: AccountStore,
        address: str,
        app_id: int,
        schema: Optional[StateSchema] = None,
    ) -> bool:
        """
        Give address an empty local state for app_id.

        Args:
            store: Committed ledger or staged working set
            address: Account opting in
            app_id: Application id
            schema: Local schema to bound the state (default: the app's declared local schema)

        Returns:
            True if a local state was created, False if one already existed

        Raises:
            AppNotFound: If the application does not exist
            AlreadyOptedIn: On a duplicate under OptInPolicy.REJECT
            MinBalanceViolation: If enforced and the account cannot carry the local state
        """
        app = store.get_app(app_id)
        schema = schema or app.local_schema
        existing = store.peek_account(address)
        if existing is not None and app_id in existing.apps_local:
            return self._duplicate(address, f"application {app_id}")

        extra = (
            self.params.app_min_balance
            + self.params.schema_uint_min_balance * schema.num_uints
            + self.params.schema_bytes_min_balance * schema.num_byte_slices
        )
        self._check_min_balance(existing, extra=extra, address=address)
        account = store.load_account(address)
        account.apps_local[app_id] = AppLocalState(app_id, schema)
        store.record_change("local_state", f"{address}/{app_id}", None, {})
        logger.debug("Opted %s in to application %d", address, app_id)
        return True

    def is_opted_in_asset(self, store: AccountStore, address: str, asset_id: int) -> bool:
        account = store.peek_account(address)
        return account is not None and asset_id in account.assets

    def is_opted_in_application(self, store: AccountStore, address: str, app_id: int) -> bool:
        account = store.peek_account(address)
        return account is not None and app_id in account.apps_local

    def _duplicate(self, address: str, what: str) -> bool:
        if self.params.duplicate_opt_in is OptInPolicy.REJECT:
            raise AlreadyOptedIn(f"Account {address} is already opted in to {what}")
        logger.debug("Account %s already opted in to %s; ignoring", address, what)
        return False

    def _check_min_balance(self, account: Optional[Account], extra: int, address: str) -> None:
        if not self.params.enforce_min_balance:
            return
        if account is None:
            balance, current = 0, self.params.base_min_balance
        else:
            balance = account.balance
            current = compute_min_balance(account.assets, account.apps_local, self.params)
        required = current + extra
        if balance < required:
            raise MinBalanceViolation(
                f"Account {address} balance {balance} below min {required} after opt-in"
            )
