"""Shared fakes and fixtures for the liquidation bot tests."""

import pytest

from flow_types import AccountSnapshot, AgreementType, OutgoingFlow

TOKEN = "0x" + "aa" * 20
OTHER_TOKEN = "0x" + "bb" * 20
BATCH_CONTRACT = "0x" + "cc" * 20
ALICE = "0x" + "01" * 20
BOB = "0x" + "02" * 20
CAROL = "0x" + "03" * 20
POOL = "0x" + "0f" * 20


def make_snapshot(account=ALICE, token=TOKEN, direct_net_flow_rate=-5, total_net_flow_rate=None, **kwargs):
    if total_net_flow_rate is None:
        total_net_flow_rate = direct_net_flow_rate
    return AccountSnapshot(
        id=f"{account}-{token}",
        account=account,
        token=token,
        total_net_flow_rate=total_net_flow_rate,
        direct_net_flow_rate=direct_net_flow_rate,
        **kwargs,
    )


def make_flow(rate, receiver=BOB, sender=ALICE, token=TOKEN, agreement=AgreementType.DIRECT):
    return OutgoingFlow(sender=sender, receiver=receiver, token=token, flow_rate=rate, agreement=agreement)


class FakeLedger:
    """In-memory stand-in for SuperfluidLedger that records every call."""

    def __init__(self, balances=None, pooled=None, gas_price=100, estimate=100_000, chain_id=8453, nonce=7):
        self.balances = balances or {}
        self.pooled = pooled or {}
        self._gas_price = gas_price
        self.estimate = estimate
        self._chain_id = chain_id
        self.nonce = nonce
        self.estimate_error = None
        self.send_error = None
        self.balance_errors = {}
        self.encoded = []
        self.estimates = []
        self.nonce_reads = 0
        self.sign_calls = []

    def realtime_balance(self, token, account):
        if account in self.balance_errors:
            raise self.balance_errors[account]
        return self.balances[account]

    def pooled_net_flow_rate(self, token, account):
        return self.pooled.get(account, 0)

    def encode_batch_liquidation(self, token, actions):
        self.encoded.append((token, tuple(actions)))
        return BATCH_CONTRACT, "0xdeadbeef"

    def estimate_gas(self, target, data):
        self.estimates.append((target, data))
        if self.estimate_error:
            raise self.estimate_error
        return self.estimate

    def gas_price(self):
        return self._gas_price

    def chain_id(self):
        return self._chain_id

    def transaction_count(self):
        self.nonce_reads += 1
        return self.nonce + len(self.sign_calls)

    def sign_and_send(self, tx):
        self.sign_calls.append(tx)
        if self.send_error:
            raise self.send_error
        return "0x" + f"{len(self.sign_calls):064x}"


class FakeReader:
    """In-memory stand-in for SubgraphReader."""

    def __init__(self, snapshots=None, flows=None, tokens=None):
        self.snapshots = snapshots or []
        self.flows = flows or {}
        self.tokens = tokens or []
        self.snapshot_calls = []
        self.flow_calls = []
        self.snapshot_error = None

    def fetch_critical_snapshots(self, as_of_timestamp=None, token=None):
        self.snapshot_calls.append(token)
        if self.snapshot_error:
            raise self.snapshot_error
        return [s for s in self.snapshots if token is None or s.token == token.lower()]

    def list_outgoing_flows(self, token, account, include_pooled=True):
        self.flow_calls.append((token, account))
        flows = self.flows.get(account, [])
        if not include_pooled:
            flows = [f for f in flows if f.agreement == AgreementType.DIRECT]
        return list(flows)

    def list_super_tokens(self, is_listed=True):
        return [{"id": token, "symbol": "TKN"} for token in self.tokens]


class RecordingSleep:
    def __init__(self):
        self.calls = []

    def __call__(self, seconds):
        self.calls.append(seconds)


@pytest.fixture
def fake_ledger():
    return FakeLedger()


@pytest.fixture
def recording_sleep():
    return RecordingSleep()
