"""
Tests for GroupExecutor: validation, ordered application, commit and abort.
"""

import pytest

from chainsim import (
    GroupExecutor, GroupExecution, GroupState, ErrorKind,
    TransferAlgo, TransferAsset, OptInAsset, OptInApp, CallApp,
    Accept, Reject, StateDelta, StagedChange, compute_group_id,
    LogicReject, IllegalStateTransition,
)

from tests.fake_evaluator import RejectingEvaluator, ScriptedEvaluator


FULL_COMMIT = (GroupState.PENDING, GroupState.VALIDATING, GroupState.APPLYING, GroupState.COMMITTED)


class TestGroupExecution:

    def test_happy_path_transitions(self):
        execution = GroupExecution([])
        for state in FULL_COMMIT[1:]:
            execution.transition(state)
        assert tuple(execution.history) == FULL_COMMIT
        assert execution.is_terminal

    def test_illegal_transition(self):
        execution = GroupExecution([])
        with pytest.raises(IllegalStateTransition):
            execution.transition(GroupState.COMMITTED)

    def test_terminal_states_are_final(self):
        execution = GroupExecution([])
        execution.transition(GroupState.VALIDATING)
        execution.transition(GroupState.ABORTED)
        with pytest.raises(IllegalStateTransition):
            execution.transition(GroupState.APPLYING)


class TestValidation:

    def test_empty_group(self, executor, ledger):
        digest = ledger.state_digest()
        result = executor.execute_group([])
        assert not result.ok
        assert result.kind is ErrorKind.INVALID_TRANSACTION
        assert result.index is None
        assert result.transitions == (GroupState.PENDING, GroupState.VALIDATING, GroupState.ABORTED)
        assert ledger.state_digest() == digest

    def test_group_too_large(self, executor, john, alice):
        group = [TransferAlgo(john, alice, 1, fee=1000) for _ in range(17)]
        result = executor.execute_group(group)
        assert result.kind is ErrorKind.GROUP_SIZE_EXCEEDED

    def test_max_size_group_commits(self, executor, john, alice):
        group = [TransferAlgo(john, alice, 1, fee=1000) for _ in range(16)]
        assert executor.execute_group(group).ok

    def test_unsupported_transaction_type(self, executor, john, alice):
        result = executor.execute_group([TransferAlgo(john, alice, 1, fee=2000), "not a transaction"])
        assert result.kind is ErrorKind.INVALID_TRANSACTION
        assert result.index == 1

    def test_fees_not_enough(self, executor, ledger, john, alice):
        digest = ledger.state_digest()
        group = [TransferAlgo(john, alice, 1, fee=1000), TransferAlgo(alice, john, 1, fee=999)]
        result = executor.execute_group(group)
        assert result.kind is ErrorKind.FEES_NOT_ENOUGH
        assert result.index is None
        assert result.group_id == compute_group_id(group)
        assert result.error.required == 2000
        assert result.error.provided == 1999
        assert ledger.state_digest() == digest


class TestCommit:

    def test_payment_commits(self, executor, ledger, john, alice):
        before = ledger.get_balance(john), ledger.get_balance(alice)
        result = executor.execute_group([TransferAlgo(john, alice, 100, fee=1000)])
        assert result.ok
        assert result.state is GroupState.COMMITTED
        assert result.transitions == FULL_COMMIT
        assert ledger.get_balance(john) == before[0] - 1100
        assert ledger.get_balance(alice) == before[1] + 100
        assert result.fees_collected == 1000
        assert ledger.verify_conservation()['valid']

    def test_changes_are_recorded_in_order(self, executor, john, alice, ledger):
        john_before = ledger.get_balance(john)
        alice_before = ledger.get_balance(alice)
        result = executor.execute_group([TransferAlgo(john, alice, 100, fee=1000)])
        assert result.changes == (
            StagedChange(0, "balance", john, john_before, john_before - 1100),
            StagedChange(0, "balance", alice, alice_before, alice_before + 100),
            StagedChange(0, "fee", "", 0, 1000),
        )

    def test_sequence_numbers_and_log(self, executor, ledger, john, alice):
        first = executor.execute_group([TransferAlgo(john, alice, 1, fee=1000)])
        failed = executor.execute_group([TransferAlgo(john, alice, 1, fee=0)])
        second = executor.execute_group([TransferAlgo(john, alice, 2, fee=1000)])
        assert not failed.ok
        assert (first.sequence_number, second.sequence_number) == (0, 1)
        assert ledger.group_log == [first, second]

    def test_execute_group_alias(self, executor, john, alice):
        assert executor.executeGroup([TransferAlgo(john, alice, 1, fee=1000)]).ok

    def test_get_account_reads_committed(self, executor, ledger, john):
        assert executor.get_account(john).balance == ledger.get_balance(john)

    def test_raise_for_error_noop_on_commit(self, executor, john, alice):
        executor.execute_group([TransferAlgo(john, alice, 1, fee=1000)]).raise_for_error()


class TestAbort:

    def test_second_transaction_fails_first_reverted(self, executor, ledger, john, alice, elon):
        digest = ledger.state_digest()
        group = [
            TransferAlgo(john, alice, 500, fee=2000),
            TransferAlgo(elon, john, 1, fee=0),
        ]
        result = executor.execute_group(group)
        assert result.kind is ErrorKind.INSUFFICIENT_BALANCE
        assert result.index == 1
        assert result.transitions[-1] is GroupState.ABORTED
        assert GroupState.APPLYING in result.transitions
        assert ledger.state_digest() == digest
        assert ledger.group_log == []

    def test_abort_creates_no_accounts(self, executor, ledger, john):
        accounts = ledger.list_accounts()
        result = executor.execute_group([
            TransferAlgo(john, "fresh-address", 1, fee=2000),
            TransferAlgo("other-fresh", john, 1, fee=0),
        ])
        assert not result.ok
        assert ledger.list_accounts() == accounts

    def test_raise_for_error(self, executor, john, alice):
        result = executor.execute_group([TransferAlgo(john, alice, 1, fee=0)])
        with pytest.raises(type(result.error)):
            result.raise_for_error()


class TestAssetTransactions:

    def test_opt_in_then_transfer_in_one_group(self, executor, ledger, john, alice, asset_id):
        result = executor.execute_group([
            OptInAsset(alice, asset_id, fee=1000),
            TransferAsset(john, alice, asset_id, 250, fee=1000),
        ])
        assert result.ok
        assert ledger.get(alice).get_asset_holding(asset_id).amount == 250
        assert ledger.get(john).get_asset_holding(asset_id).amount == 1_000_000 - 250

    def test_transfer_before_opt_in_fails(self, executor, ledger, john, alice, asset_id):
        result = executor.execute_group([
            TransferAsset(john, alice, asset_id, 250, fee=1000),
            OptInAsset(alice, asset_id, fee=1000),
        ])
        assert result.kind is ErrorKind.NOT_OPTED_IN
        assert result.index == 0
        assert not ledger.get(alice).is_opted_in_asset(asset_id)

    def test_unknown_asset(self, executor, alice):
        result = executor.execute_group([OptInAsset(alice, 9999, fee=1000)])
        assert result.kind is ErrorKind.ASSET_NOT_FOUND

    def test_frozen_holding(self, executor, ledger, john, alice, asset_id):
        executor.execute_group([OptInAsset(alice, asset_id, fee=1000)])
        ledger.set_asset_frozen(alice, asset_id, True)
        result = executor.execute_group([TransferAsset(john, alice, asset_id, 1, fee=1000)])
        assert result.kind is ErrorKind.ASSET_FROZEN


class TestCloseRemainder:

    def test_close_sweeps_balance(self, executor, ledger, alice, bob):
        alice_before = ledger.get_balance(alice)
        bob_before = ledger.get_balance(bob)
        result = executor.execute_group([
            TransferAlgo(alice, bob, 100, fee=1000, close_remainder_to=bob),
        ])
        assert result.ok
        assert ledger.get_balance(alice) == 0
        assert ledger.get_balance(bob) == bob_before + alice_before - 1000
        assert ledger.verify_conservation()['valid']

    def test_close_with_holdings_rejected(self, executor, ledger, alice, bob, asset_id):
        executor.execute_group([OptInAsset(alice, asset_id, fee=1000)])
        result = executor.execute_group([
            TransferAlgo(alice, bob, 0, fee=1000, close_remainder_to=bob),
        ])
        assert result.kind is ErrorKind.INVALID_TRANSACTION
        assert result.index == 0


class TestApplicationCalls:

    def test_no_evaluator_rejects(self, ledger, john, app_id):
        executor = GroupExecutor(ledger)
        result = executor.execute_group([CallApp(john, app_id, fee=1000)])
        assert result.kind is ErrorKind.LOGIC_REJECT

    def test_unknown_app(self, executor, john):
        result = executor.execute_group([CallApp(john, 9999, fee=1000)])
        assert result.kind is ErrorKind.APP_NOT_FOUND

    def test_counter_increments(self, executor, ledger, john, app_id, counter):
        executor.execute_group([CallApp(john, app_id, fee=1000)])
        executor.execute_group([CallApp(john, app_id, fee=1000)])
        assert ledger.get_global_state(app_id) == {"counter": 2}
        assert len(counter.calls) == 2

    def test_call_sees_earlier_opt_in(self, executor, ledger, alice, app_id, counter):
        result = executor.execute_group([
            OptInApp(alice, app_id, fee=1000),
            CallApp(alice, app_id, fee=1000),
        ])
        assert result.ok
        assert ledger.get(alice).get_local_state(app_id) == {"count": 1}
        context = counter.calls[0]
        assert context.local_states[alice] == {}
        assert (context.group_index, context.group_size) == (1, 2)

    def test_reject_reverts_whole_group(self, executor, ledger, john, alice, app_id, counter):
        digest = ledger.state_digest()
        result = executor.execute_group([
            TransferAlgo(john, alice, 5_000, fee=1000),
            OptInApp(alice, app_id, fee=1000),
            CallApp(alice, app_id, fee=1000, args=["fail"]),
        ])
        assert result.kind is ErrorKind.LOGIC_REJECT
        assert result.index == 2
        assert "counter asked to fail" in result.detail
        assert ledger.state_digest() == digest

    def test_registered_evaluator_overrides_default(self, executor, john, app_id):
        rejecting = RejectingEvaluator()
        executor.register(app_id, rejecting)
        result = executor.execute_group([CallApp(john, app_id, fee=1000)])
        assert result.kind is ErrorKind.LOGIC_REJECT
        assert rejecting.call_count == 1

    def test_reject_stops_later_calls(self, executor, john, app_id):
        scripted = ScriptedEvaluator([Reject("first"), Accept()])
        executor.register(app_id, scripted)
        result = executor.execute_group([
            CallApp(john, app_id, fee=1000),
            CallApp(john, app_id, fee=1000),
        ])
        assert result.index == 0
        assert len(scripted.contexts) == 1

    def test_delta_for_unreferenced_account(self, executor, ledger, john, alice, app_id):
        executor.execute_group([OptInApp(alice, app_id, fee=1000)])
        executor.register(app_id, ScriptedEvaluator([
            Accept(StateDelta(local_delta={alice: {"count": 1}})),
        ]))
        result = executor.execute_group([CallApp(john, app_id, fee=1000)])
        assert result.kind is ErrorKind.LOGIC_REJECT
        assert ledger.get(alice).get_local_state(app_id) == {}

    def test_delta_for_listed_account(self, executor, ledger, john, alice, app_id):
        executor.execute_group([OptInApp(alice, app_id, fee=1000)])
        executor.register(app_id, ScriptedEvaluator([
            Accept(StateDelta(local_delta={alice: {"count": 4}})),
        ]))
        result = executor.execute_group([CallApp(john, app_id, fee=1000, accounts=[alice])])
        assert result.ok
        assert ledger.get(alice).get_local_state(app_id) == {"count": 4}

    def test_schema_violation_aborts(self, executor, ledger, john, app_id):
        executor.register(app_id, ScriptedEvaluator([
            Accept(StateDelta(global_delta={"a": 1, "b": 2})),
        ]))
        result = executor.execute_group([CallApp(john, app_id, fee=1000)])
        assert result.kind is ErrorKind.SCHEMA_VIOLATION
        assert ledger.get_global_state(app_id) == {}

    def test_evaluator_returning_garbage(self, executor, john, app_id):
        executor.register(app_id, lambda *args: None)
        result = executor.execute_group([CallApp(john, app_id, fee=1000)])
        assert result.kind is ErrorKind.LOGIC_REJECT
        with pytest.raises(LogicReject):
            result.raise_for_error()

    def test_accept_with_plain_dict_is_logic_reject(self, executor, ledger, john, app_id):
        executor.register(app_id, lambda *args: Accept({"counter": 1}))
        result = executor.execute_group([CallApp(john, app_id, fee=1000)])
        assert result.kind is ErrorKind.LOGIC_REJECT
        assert "StateDelta" in result.detail
        assert ledger.get_global_state(app_id) == {}


class TestNestedSubmission:

    def test_group_submitted_from_evaluator_is_refused(self, executor, ledger, john, alice, bob, app_id):
        inner_results = []

        def submit_inner(sender, app, args, state):
            inner_results.append(executor.execute_group([TransferAlgo(john, bob, 500, fee=1000)]))
            return Accept()

        executor.register(app_id, submit_inner)
        john_before = ledger.get_balance(john)
        result = executor.execute_group([
            TransferAlgo(john, alice, 10, fee=1000),
            CallApp(john, app_id, fee=1000),
        ])

        assert result.ok
        inner = inner_results[0]
        assert inner.kind is ErrorKind.INVALID_TRANSACTION
        assert inner.index is None
        assert inner.transitions[-1] is GroupState.ABORTED
        assert ledger.get_balance(john) == john_before - 10 - 2000
        assert ledger.verify_conservation()['valid']
        assert len(ledger.group_log) == 1

    def test_ledger_accepts_groups_after_refusal(self, executor, ledger, john, alice, app_id):
        def submit_inner(sender, app, args, state):
            executor.execute_group([TransferAlgo(john, alice, 1, fee=1000)])
            return Accept()

        executor.register(app_id, submit_inner)
        assert executor.execute_group([CallApp(john, app_id, fee=1000)]).ok
        assert not ledger.group_in_progress
        assert executor.execute_group([TransferAlgo(john, alice, 1, fee=1000)]).ok
        assert len(ledger.group_log) == 2
