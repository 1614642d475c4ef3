import pytest

from flow_types import AgreementType
from liquidation_engine import (
    SelectionPolicy, below_threshold, consumed_deposit_percentage, greedy_select, select_liquidations,
)

from conftest import ALICE, BOB, CAROL, POOL, FakeLedger, make_flow, make_snapshot


class TestConsumedDepositPercentage:
    def test_quarter_of_deposit(self):
        assert consumed_deposit_percentage(-250, 1000) == 25

    def test_truncates_toward_zero(self):
        assert consumed_deposit_percentage(-1, 3) == 33
        assert consumed_deposit_percentage(-199, 1000) == 19

    def test_zero_deposit_has_no_percentage(self):
        assert consumed_deposit_percentage(-10, 0) is None

    def test_more_than_the_whole_deposit(self):
        assert consumed_deposit_percentage(-3000, 1000) == 300


class TestBelowThreshold:
    def test_strict_comparison_by_default(self):
        policy = SelectionPolicy(deposit_consumed_pct_threshold=20)
        assert below_threshold(19, policy)
        assert not below_threshold(20, policy)

    def test_inclusive_comparison(self):
        policy = SelectionPolicy(deposit_consumed_pct_threshold=20, threshold_inclusive=True)
        assert below_threshold(20, policy)
        assert not below_threshold(21, policy)

    def test_missing_percentage_is_never_below(self):
        assert not below_threshold(None, SelectionPolicy())


class TestGreedySelect:
    def test_stops_as_soon_as_net_is_non_negative(self):
        flows = [make_flow(-3, receiver=BOB), make_flow(-2, receiver=CAROL), make_flow(-9, receiver=POOL)]
        actions, projected = greedy_select(-5, flows)
        # outflow rates are added literally, so the net keeps falling
        assert [a.receiver for a in actions] == [BOB, CAROL, POOL]
        assert projected == -19

    def test_positive_rates_close_the_gap(self):
        flows = [make_flow(50, receiver=BOB), make_flow(30, receiver=CAROL), make_flow(10, receiver=POOL)]
        actions, projected = greedy_select(-40, flows)
        assert [a.receiver for a in actions] == [BOB]
        assert projected == 10

    def test_exact_zero_stops(self):
        flows = [make_flow(40, receiver=BOB), make_flow(1, receiver=CAROL)]
        actions, projected = greedy_select(-40, flows)
        assert len(actions) == 1
        assert projected == 0

    def test_zero_and_negative_rates_take_everything(self):
        flows = [make_flow(rate, receiver=f"0x{i:040x}") for i, rate in enumerate([0, -50, -30, -10])]
        actions, projected = greedy_select(-40, flows)
        assert len(actions) == 4
        assert projected == -130

    def test_non_negative_start_selects_nothing(self):
        actions, projected = greedy_select(0, [make_flow(-1)])
        assert actions == []
        assert projected == 0

    def test_actions_carry_flow_fields(self):
        flow = make_flow(60, receiver=POOL, agreement=AgreementType.POOLED)
        (action,), _ = greedy_select(-1, [flow])
        assert action.agreement == AgreementType.POOLED
        assert action.sender == ALICE
        assert action.receiver == POOL
        assert action.flow_rate == 60


class TestSelectLiquidations:
    """Eligibility and selection for a single account."""

    def test_solvent_account_never_fetches_flows(self):
        ledger = FakeLedger(balances={ALICE: (10, 1000)})

        def flows():
            raise AssertionError("flows fetched for a solvent account")

        selection = select_liquidations(make_snapshot(), flows, ledger)
        assert selection.reason == "solvent"
        assert selection.actions == []
        assert not selection.is_critical

    def test_zero_balance_is_solvent(self):
        ledger = FakeLedger(balances={ALICE: (0, 1000)})
        selection = select_liquidations(make_snapshot(), [make_flow(-3)], ledger)
        assert selection.reason == "solvent"

    def test_below_threshold_is_skipped(self):
        ledger = FakeLedger(balances={ALICE: (-199, 1000)})
        selection = select_liquidations(make_snapshot(), [make_flow(-3)], ledger,
                                        SelectionPolicy(deposit_consumed_pct_threshold=20))
        assert selection.reason == "below_threshold"
        assert selection.consumed_deposit_pct == 19
        assert selection.actions == []

    def test_exactly_at_threshold_is_eligible_by_default(self):
        ledger = FakeLedger(balances={ALICE: (-200, 1000)})
        selection = select_liquidations(make_snapshot(), [make_flow(-3)], ledger,
                                        SelectionPolicy(deposit_consumed_pct_threshold=20))
        assert selection.is_critical
        assert len(selection.actions) == 1

    def test_exactly_at_threshold_is_skipped_when_inclusive(self):
        ledger = FakeLedger(balances={ALICE: (-200, 1000)})
        policy = SelectionPolicy(deposit_consumed_pct_threshold=20, threshold_inclusive=True)
        selection = select_liquidations(make_snapshot(), [make_flow(-3)], ledger, policy)
        assert selection.reason == "below_threshold"

    def test_zero_deposit_is_eligible(self):
        ledger = FakeLedger(balances={ALICE: (-1, 0)})
        selection = select_liquidations(make_snapshot(), [make_flow(-3)], ledger)
        assert selection.is_critical
        assert selection.consumed_deposit_pct is None

    def test_recovering_account_is_skipped(self):
        ledger = FakeLedger(balances={ALICE: (-500, 1000)}, pooled={ALICE: 5})
        selection = select_liquidations(make_snapshot(direct_net_flow_rate=-5), [make_flow(-3)], ledger)
        assert selection.reason == "recovering"
        assert selection.net_flow_rate == 0
        assert selection.actions == []

    def test_pooled_rate_adds_to_direct_rate(self):
        ledger = FakeLedger(balances={ALICE: (-500, 1000)}, pooled={ALICE: -7})
        selection = select_liquidations(make_snapshot(direct_net_flow_rate=-5), [make_flow(-3)], ledger)
        assert selection.net_flow_rate == -12

    def test_selects_every_outflow_of_a_critical_account(self):
        ledger = FakeLedger(balances={ALICE: (-250, 1000)})
        flows = [make_flow(-3, receiver=BOB), make_flow(-2, receiver=CAROL)]
        selection = select_liquidations(make_snapshot(direct_net_flow_rate=-5), flows, ledger,
                                        SelectionPolicy(deposit_consumed_pct_threshold=20))
        assert selection.is_critical
        assert selection.consumed_deposit_pct == 25
        assert [a.receiver for a in selection.actions] == [BOB, CAROL]

    def test_flow_callable_invoked_once_for_critical_account(self):
        ledger = FakeLedger(balances={ALICE: (-250, 1000)})
        calls = []

        def flows():
            calls.append(1)
            return [make_flow(-3)]

        select_liquidations(make_snapshot(), flows, ledger)
        assert calls == [1]

    def test_pooled_flows_dropped_when_disabled(self):
        ledger = FakeLedger(balances={ALICE: (-250, 1000)})
        flows = [make_flow(-3, receiver=BOB),
                 make_flow(-2, receiver=POOL, agreement=AgreementType.POOLED)]
        selection = select_liquidations(make_snapshot(), flows, ledger,
                                        SelectionPolicy(include_pooled_flows=False))
        assert [a.agreement for a in selection.actions] == [AgreementType.DIRECT]

    def test_critical_without_outflows(self):
        ledger = FakeLedger(balances={ALICE: (-250, 1000)})
        selection = select_liquidations(make_snapshot(), [], ledger)
        assert selection.is_critical
        assert selection.actions == []

    def test_balance_read_errors_propagate(self):
        ledger = FakeLedger()
        ledger.balance_errors[ALICE] = RuntimeError("rpc down")
        with pytest.raises(RuntimeError):
            select_liquidations(make_snapshot(), [], ledger)
