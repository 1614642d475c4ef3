"""
Eligibility checks, greedy flow selection and batching.

An account is liquidated only when all of the following hold:
  1. its realtime available balance is negative,
  2. it has consumed at least `deposit_consumed_pct_threshold` percent of its deposit,
  3. its live net flow rate (direct + pooled) is still negative.
Its outgoing flows are then taken in order until the projected net flow rate is >= 0.
"""

import logging
from dataclasses import dataclass
from typing import Callable, Iterable, List, Optional, Protocol, Sequence, Tuple, Union

from flow_types import AccountSnapshot, AgreementType, Batch, LiquidationAction, OutgoingFlow, Selection

logger = logging.getLogger("LiquidationEngine")

FlowSource = Union[Sequence[OutgoingFlow], Callable[[], Sequence[OutgoingFlow]]]


class BalanceReader(Protocol):
    def realtime_balance(self, token: str, account: str) -> Tuple[int, int]: ...

    def pooled_net_flow_rate(self, token: str, account: str) -> int: ...


@dataclass(frozen=True)
class SelectionPolicy:
    deposit_consumed_pct_threshold: int = 20
    # skip when consumed <= threshold instead of consumed < threshold
    threshold_inclusive: bool = False
    include_pooled_flows: bool = True


def consumed_deposit_percentage(available_balance: int, deposit: int) -> Optional[int]:
    """Percentage of the deposit eaten by a negative balance, truncated toward zero.

    Returns None when there is no deposit to measure against.
    """
    if deposit == 0:
        return None
    numerator = -available_balance * 100
    quotient = abs(numerator) // abs(deposit)
    return quotient if (numerator >= 0) == (deposit > 0) else -quotient


def below_threshold(consumed_pct: Optional[int], policy: SelectionPolicy) -> bool:
    if consumed_pct is None:
        # negative balance with no deposit left to consume
        return False
    if policy.threshold_inclusive:
        return consumed_pct <= policy.deposit_consumed_pct_threshold
    return consumed_pct < policy.deposit_consumed_pct_threshold


def greedy_select(net_flow_rate: int, flows: Iterable[OutgoingFlow]) -> Tuple[List[LiquidationAction], int]:
    """Takes flows in the given order until the running net flow rate is >= 0.

    Returns the selected actions and the projected net flow rate after removing them.
    """
    selected = []
    for flow in flows:
        if net_flow_rate >= 0:
            break
        selected.append(LiquidationAction.from_flow(flow))
        net_flow_rate += flow.flow_rate
    return selected, net_flow_rate


def select_liquidations(snapshot: AccountSnapshot, flows: FlowSource, ledger: BalanceReader,
                        policy: SelectionPolicy = SelectionPolicy()) -> Selection:
    """Decides whether `snapshot`'s account is liquidatable and which of its flows to delete.

    `flows` may be a sequence or a zero-argument callable; the callable is only invoked
    once the account is known to be critical.
    """
    account, token = snapshot.account, snapshot.token

    available_balance, deposit = ledger.realtime_balance(token, account)
    if available_balance >= 0:
        return Selection(snapshot, available_balance=available_balance, deposit=deposit, reason="solvent")

    consumed_pct = consumed_deposit_percentage(available_balance, deposit)
    if below_threshold(consumed_pct, policy):
        logger.debug(f"⏭️ {account} consumed {consumed_pct}% of deposit, below {policy.deposit_consumed_pct_threshold}%")
        return Selection(snapshot, available_balance=available_balance, deposit=deposit,
                         consumed_deposit_pct=consumed_pct, reason="below_threshold")

    pooled_net_flow_rate = ledger.pooled_net_flow_rate(token, account)
    net_flow_rate = snapshot.direct_net_flow_rate + pooled_net_flow_rate
    if net_flow_rate >= 0:
        return Selection(snapshot, available_balance=available_balance, deposit=deposit,
                         consumed_deposit_pct=consumed_pct, net_flow_rate=net_flow_rate, reason="recovering")

    logger.info(f"❗ Critical {account} token {token} net fr {net_flow_rate} "
                f"(cfa {snapshot.direct_net_flow_rate} gda {pooled_net_flow_rate})")

    candidates = list(flows() if callable(flows) else flows)
    if not policy.include_pooled_flows:
        candidates = [flow for flow in candidates if flow.agreement == AgreementType.DIRECT]

    actions, projected = greedy_select(net_flow_rate, candidates)

    direct_total = sum(1 for flow in candidates if flow.agreement == AgreementType.DIRECT)
    direct_taken = sum(1 for action in actions if action.agreement == AgreementType.DIRECT)
    logger.info(f"   available balance {available_balance}, deposit {deposit}, consumed deposit {consumed_pct}%, "
                f"flows to-be-liquidated/total: {direct_taken}/{direct_total} cfa | "
                f"{len(actions) - direct_taken}/{len(candidates) - direct_total} gda")
    if not actions:
        logger.warning(f"⚠️ No cfa|gda outflows to liquidate for {account}")
    elif projected < 0:
        logger.warning(f"⚠️ {account} still at net fr {projected} after selecting every outflow")

    return Selection(snapshot, actions=actions, available_balance=available_balance, deposit=deposit,
                     consumed_deposit_pct=consumed_pct, net_flow_rate=net_flow_rate, reason="critical")


# --- BATCHING ---

def order_actions(actions: Iterable[LiquidationAction]) -> List[LiquidationAction]:
    """Stable sort, highest flow rate first, across accounts and agreement kinds.

    A pooled action with a higher rate lands ahead of a direct one; the
    direct-before-pooled order only survives among equal rates.
    """
    return sorted(actions, key=lambda action: action.flow_rate, reverse=True)


def chunk(items: Sequence, batch_size: int) -> List[list]:
    if batch_size < 1:
        raise ValueError(f"batch size must be >= 1, got {batch_size}")
    return [list(items[i:i + batch_size]) for i in range(0, len(items), batch_size)]


def make_batches(actions: Sequence[LiquidationAction], batch_size: int) -> List[Batch]:
    """Groups actions by token (first-appearance order) and chunks every group."""
    by_token = {}
    for action in actions:
        by_token.setdefault(action.token.lower(), []).append(action)

    batches = []
    for token, token_actions in by_token.items():
        for group in chunk(token_actions, batch_size):
            batches.append(Batch(token=token, actions=tuple(group)))
    return batches
