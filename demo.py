#!/usr/bin/env python3
"""
demo.py - Interactive Tutorial: Transaction Groups Step by Step

A walkthrough of how the simulator executes transaction groups. Each step
builds on the previous one. Press Enter to advance.

WHAT YOU'LL LEARN:
  1-3:  Foundation     - Funding accounts, a single payment, the fee
  4-6:  Pooled Fees    - One signer paying for a group, underfunded pools
  7-8:  Opt-In         - Sponsored opt-ins for accounts with no balance
  9-10: App Calls      - Evaluators, rejects and all-or-nothing rollback
  11:   Audit          - Conservation proof and the group log

Run:
    python demo.py           # Interactive mode (press Enter for each step)
    python demo.py --quick   # Run all steps without pausing
"""

from dataclasses import dataclass
import logging
import sys

from chainsim import (
    # Core classes
    Ledger, GroupExecutor, StateSchema,
    # Transactions
    TransferAlgo, OptInAsset, OptInApp, CallApp,
    # Evaluator contract
    Accept, Reject, StateDelta,
    # Helpers
    address_from_name,
)


# ============================================================================
# CONFIGURATION
# ============================================================================

@dataclass
class DemoConfig:
    """Configuration for the tutorial. Modify these to experiment."""
    john_initial: int = 5_000_000
    alice_initial: int = 1_000_000
    payment: int = 200_000
    asset_total: int = 1_000_000


CONFIG = DemoConfig()

QUICK_MODE = "--quick" in sys.argv

JOHN = address_from_name("john")
ALICE = address_from_name("alice")
ELON = address_from_name("elon")


def wait_for_enter():
    """Pause for user input unless in quick mode."""
    if not QUICK_MODE:
        input("\n[Press Enter to continue...]")


def step_header(number: int, title: str, objective: str):
    """Print a step header with learning objective."""
    print(f"\n{'='*70}")
    print(f"STEP {number}: {title}")
    print(f"{'='*70}")
    print(f"\nObjective: {objective}\n")


def section_header(text: str):
    print(f"\n--- {text} ---\n")


def show_balances(ledger: Ledger):
    for name, address in (("john", JOHN), ("alice", ALICE), ("elon", ELON)):
        print(f"  {name:6} {ledger.get_balance(address):>12,}")


class VoteCounter:
    """Toy application: counts votes, rejects a vote for 'nobody'."""

    def evaluate(self, sender, app_id, args, state):
        if args and args[0] == "nobody":
            return Reject("cannot vote for nobody")
        votes = state.global_state.get("votes", 0) + 1
        local = {}
        if state.local_states.get(sender) is not None:
            local[sender] = {"voted": 1}
        return Accept(StateDelta(global_delta={"votes": votes}, local_delta=local))


# ============================================================================
# PHASE 1: FOUNDATION
# ============================================================================

def step_01_fund_accounts():
    step_header(1, "Funding Accounts",
        "Create a ledger and mint currency into two accounts.")

    ledger = Ledger("tutorial", verbose=True)
    ledger.fund(JOHN, CONFIG.john_initial)
    ledger.fund(ALICE, CONFIG.alice_initial)

    section_header("Balances")
    show_balances(ledger)
    print("""
    elon was never funded. Reading his balance returns 0 without
    creating an account for him.
    """)
    return ledger


def step_02_single_payment(ledger: Ledger, executor: GroupExecutor):
    step_header(2, "A Single Payment",
        "Every transaction declares a fee; a group of one needs at least min_txn_fee.")

    print(f">>> executor.execute_group([TransferAlgo(john, alice, {CONFIG.payment}, fee=1000)])")
    result = executor.execute_group([TransferAlgo(JOHN, ALICE, CONFIG.payment, fee=1000)])
    print(f"Result: ok={result.ok} group_id={result.group_id}")
    show_balances(ledger)
    return ledger


def step_03_the_fee(ledger: Ledger, executor: GroupExecutor):
    step_header(3, "Where the Fee Goes",
        "Fees leave circulation and are counted in fees_collected.")

    print(f"fees_collected: {ledger.fees_collected}")
    print(f"total_minted:   {ledger.total_minted}")
    print(f"Σ balances:     {ledger.total_balance()}")
    return ledger


# ============================================================================
# PHASE 2: POOLED FEES
# ============================================================================

def step_04_pooled_pair(ledger: Ledger, executor: GroupExecutor):
    step_header(4, "One Signer Pays for Two",
        "Only the group total must reach n x min_txn_fee.")

    result = executor.execute_group([
        TransferAlgo(JOHN, ALICE, CONFIG.payment, fee=2000),
        TransferAlgo(ALICE, JOHN, CONFIG.payment, fee=0),
    ])
    print(f"[john->alice fee=2000, alice->john fee=0] -> ok={result.ok}")
    show_balances(ledger)
    return ledger


def step_05_underfunded_pool(ledger: Ledger, executor: GroupExecutor):
    step_header(5, "An Underfunded Pool",
        "The pooled check runs before anything is applied.")

    result = executor.execute_group([
        TransferAlgo(JOHN, ALICE, CONFIG.payment, fee=1000),
        TransferAlgo(ALICE, JOHN, CONFIG.payment, fee=0),
    ])
    print(f"Result: {result!r}")
    show_balances(ledger)
    return ledger


def step_06_order_matters(ledger: Ledger, executor: GroupExecutor):
    step_header(6, "Order Matters",
        "A sender can only spend funding from transactions before it.")

    result = executor.execute_group([
        TransferAlgo(ELON, JOHN, 1, fee=1000),
        TransferAlgo(JOHN, ELON, 10_000, fee=1000),
    ])
    print(f"[elon->john, john->elon] -> {result!r}")
    result = executor.execute_group([
        TransferAlgo(JOHN, ELON, 10_000, fee=1000),
        TransferAlgo(ELON, JOHN, 1, fee=1000),
    ])
    print(f"[john->elon, elon->john] -> ok={result.ok}")
    show_balances(ledger)
    return ledger


# ============================================================================
# PHASE 3: OPT-IN
# ============================================================================

def step_07_sponsored_opt_in(ledger: Ledger, executor: GroupExecutor):
    step_header(7, "Sponsored Opt-In",
        "An account with no spare balance can opt in if someone else covers the fee.")

    asset_id = ledger.create_asset(JOHN, total=CONFIG.asset_total, name="gold", unit_name="GLD")
    elon_before = ledger.get_balance(ELON)
    result = executor.execute_group([
        OptInAsset(ELON, asset_id, fee=0),
        TransferAlgo(JOHN, ALICE, 1, fee=2000),
    ])
    print(f"Result: ok={result.ok}")
    print(f"elon opted in: {ledger.get(ELON).is_opted_in_asset(asset_id)}")
    print(f"elon balance unchanged: {ledger.get_balance(ELON) == elon_before}")
    return ledger, asset_id


def step_08_repeat_opt_in(ledger: Ledger, executor: GroupExecutor, asset_id: int):
    step_header(8, "Opting In Twice",
        "A repeated opt-in keeps the existing holding.")

    result = executor.execute_group([OptInAsset(ELON, asset_id, fee=0), TransferAlgo(JOHN, ELON, 0, fee=2000)])
    print(f"Result: ok={result.ok}")
    print(f"elon holding: {ledger.get(ELON).get_asset_holding(asset_id)}")
    return ledger


# ============================================================================
# PHASE 4: APPLICATION CALLS
# ============================================================================

def step_09_app_call(ledger: Ledger, executor: GroupExecutor):
    step_header(9, "Calling an Application",
        "The evaluator decides; its delta is applied before the next transaction.")

    app_id = ledger.create_app(JOHN, StateSchema(num_uints=1), StateSchema(num_uints=1), name="vote")
    executor.register(app_id, VoteCounter())
    result = executor.execute_group([
        OptInApp(ALICE, app_id, fee=1000),
        CallApp(ALICE, app_id, fee=1000, args=["john"]),
    ])
    print(f"Result: ok={result.ok}")
    print(f"global state: {ledger.get_global_state(app_id)}")
    print(f"alice local:  {ledger.get(ALICE).get_local_state(app_id)}")
    return ledger, app_id


def step_10_rejected_call(ledger: Ledger, executor: GroupExecutor, app_id: int):
    step_header(10, "A Rejected Call Undoes Everything",
        "If the evaluator rejects, earlier transactions in the group are discarded too.")

    digest = ledger.state_digest()
    result = executor.execute_group([
        TransferAlgo(JOHN, ELON, CONFIG.payment, fee=2000),
        CallApp(JOHN, app_id, fee=0, args=["nobody"]),
    ])
    print(f"Result: {result!r}")
    print(f"State unchanged: {ledger.state_digest() == digest}")
    return ledger


# ============================================================================
# PHASE 5: AUDIT
# ============================================================================

def step_11_audit(ledger: Ledger):
    step_header(11, "Conservation and the Group Log",
        "Every unit minted is held by an account or was paid as a fee.")

    report = ledger.verify_conservation()
    for key, value in report.items():
        print(f"  {key:15} {value}")

    section_header("Committed groups")
    for entry in ledger.group_log:
        kinds = ", ".join(type(tx).__name__ for tx in entry.transactions)
        print(f"  #{entry.sequence_number} {entry.group_id} [{kinds}] fees={entry.fees_collected}")
    return ledger


def main():
    """Run the complete tutorial."""
    logging.basicConfig(level=logging.INFO, format="  [%(name)s] %(message)s")

    print("=" * 70)
    print("       TRANSACTION GROUPS - INTERACTIVE TUTORIAL")
    print("=" * 70)
    if QUICK_MODE:
        print("Running in QUICK mode (no pauses)")
    else:
        print("Running in INTERACTIVE mode (press Enter to advance)")
    wait_for_enter()

    ledger = step_01_fund_accounts()
    executor = GroupExecutor(ledger)
    wait_for_enter()

    for step in (step_02_single_payment, step_03_the_fee, step_04_pooled_pair,
                 step_05_underfunded_pool, step_06_order_matters):
        ledger = step(ledger, executor)
        wait_for_enter()

    ledger, asset_id = step_07_sponsored_opt_in(ledger, executor)
    wait_for_enter()

    ledger = step_08_repeat_opt_in(ledger, executor, asset_id)
    wait_for_enter()

    ledger, app_id = step_09_app_call(ledger, executor)
    wait_for_enter()

    ledger = step_10_rejected_call(ledger, executor, app_id)
    wait_for_enter()

    step_11_audit(ledger)

    print("\n" + "=" * 70)
    print("       TUTORIAL COMPLETE!")
    print("=" * 70)
    print("""
    Next steps:
      - See tests/functional/test_pooled_fees.py for more scenarios
      - Run tests: pytest tests/
    """)


if __name__ == "__main__":
    main()
