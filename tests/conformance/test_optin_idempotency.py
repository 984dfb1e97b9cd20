"""
Opt-In Idempotency Conformance Tests

INVARIANT: Opting in twice yields the same record as opting in once.

    opt_in(opt_in(S, x)) = opt_in(S, x)   (up to the fee charged)

Under the default OptInPolicy.IGNORE a repeated opt-in is a no-op. With
OptInPolicy.REJECT it aborts the group with ALREADY_OPTED_IN instead.
"""

import pytest
from hypothesis import given, settings
from hypothesis import strategies as st

from chainsim import (
    GroupExecutor, ErrorKind, OptInPolicy, ProtocolParams, StateSchema,
    OptInAsset, OptInApp, TransferAsset, CallApp, accept_all,
)

from tests.conformance.group_strategies import make_world, ASSET_ID, APP_ID
from tests.ledger_builders import make_ledger


def _opt_in(target, fee):
    if target == "asset":
        return OptInAsset("b", ASSET_ID, fee=fee)
    return OptInApp("b", APP_ID, fee=fee)


class TestOptInIdempotencyProperties:

    @given(st.integers(min_value=1, max_value=5), st.sampled_from(["asset", "app"]))
    @settings(max_examples=40, deadline=None)
    def test_repeated_opt_in_same_record(self, repeats, target):
        """
        PROPERTY: N opt-ins in one group leave exactly the record of one.
        """
        once = make_world([50_000] * 4)
        many = make_world([50_000] * 4)

        assert GroupExecutor(once).execute_group([_opt_in(target, 1000)]).ok
        assert GroupExecutor(many).execute_group(
            [_opt_in(target, 1000) for _ in range(repeats + 1)]
        ).ok

        assert once.get("b").assets == many.get("b").assets
        assert once.get("b").apps_local == many.get("b").apps_local

    @given(st.integers(min_value=1, max_value=5))
    @settings(max_examples=20, deadline=None)
    def test_repeated_groups_same_record(self, repeats):
        """
        PROPERTY: Opt-ins in separate groups also collapse to one record.
        """
        ledger = make_world([50_000] * 4)
        executor = GroupExecutor(ledger)
        for _ in range(repeats):
            assert executor.execute_group([_opt_in("asset", 1000), _opt_in("app", 1000)]).ok

        snap = ledger.get("b")
        assert list(snap.assets) == [ASSET_ID]
        assert list(snap.apps_local) == [APP_ID]
        assert snap.get_asset_holding(ASSET_ID).amount == 0
        assert snap.get_local_state(APP_ID) == {}


class TestOptInIdempotencyScenarios:

    def test_repeat_after_commit_keeps_holding(self, ledger, executor, john, alice, asset_id):
        executor.execute_group([OptInAsset(alice, asset_id, fee=1000)])
        executor.execute_group([TransferAsset(john, alice, asset_id, 40, fee=1000)])
        result = executor.execute_group([OptInAsset(alice, asset_id, fee=1000)])
        assert result.ok
        assert ledger.get(alice).get_asset_holding(asset_id).amount == 40

    def test_repeat_keeps_local_state(self, ledger, executor, alice, app_id, counter):
        executor.execute_group([OptInApp(alice, app_id, fee=1000), CallApp(alice, app_id, fee=1000)])
        result = executor.execute_group([OptInApp(alice, app_id, fee=1000)])
        assert result.ok
        assert ledger.get(alice).get_local_state(app_id) == {"count": 1}

    def test_repeat_still_pays_fee(self, ledger, executor, alice, asset_id):
        executor.execute_group([OptInAsset(alice, asset_id, fee=1000)])
        before = ledger.get_balance(alice)
        executor.execute_group([OptInAsset(alice, asset_id, fee=1000)])
        assert ledger.get_balance(alice) == before - 1000

    @pytest.mark.parametrize("kind", ["asset", "app"])
    def test_reject_policy_aborts(self, kind):
        params = ProtocolParams(duplicate_opt_in=OptInPolicy.REJECT)
        ledger = make_ledger({"a": 50_000, "b": 50_000}, params=params)
        asset_id = ledger.create_asset("a", total=10)
        app_id = ledger.create_app("a", StateSchema(), StateSchema())
        executor = GroupExecutor(ledger, evaluator=accept_all)
        if kind == "asset":
            tx = OptInAsset("b", asset_id, fee=1000)
        else:
            tx = OptInApp("b", app_id, fee=1000)

        assert executor.execute_group([tx]).ok
        digest = ledger.state_digest()
        result = executor.execute_group([tx])
        assert result.kind is ErrorKind.ALREADY_OPTED_IN
        assert result.index == 0
        assert ledger.state_digest() == digest
