"""
Data structures shared by the scanner, the selection engine and the submission gate.

All flow rates, balances and deposits are plain Python ints (wei per second / wei),
never floats.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple


# --- ERRORS ---

class LiquidationError(Exception):
    """Base class for every error raised by the liquidation pipeline."""


class DataSourceError(LiquidationError):
    """Subgraph answered with a bad status, GraphQL errors or a malformed body."""


class ConfigurationError(LiquidationError):
    """A required key, endpoint or contract address is missing. Fatal for the run."""


class EstimationError(LiquidationError):
    """Gas estimation for a batch payload failed."""


class SubmissionError(LiquidationError):
    """Signing, broadcasting or waiting for the receipt failed (or the tx reverted)."""


# --- ENUMS ---

class AgreementType(Enum):
    """On-chain agreement behind a flow. Value is the BatchLiquidator operation code."""
    DIRECT = 0   # CFA stream
    POOLED = 1   # GDA pool distribution


class OutcomeStatus(Enum):
    SUBMITTED = "submitted"
    SKIPPED = "skipped"
    DRY_RUN = "dry_run"
    FAILED = "failed"


class SkipReason(Enum):
    GAS_TOO_HIGH = "gas_too_high"


# --- SNAPSHOT / FLOW DATA ---

@dataclass(frozen=True)
class AccountSnapshot:
    """Point-in-time summary of one (account, token) pair as indexed by the subgraph."""
    id: str
    account: str
    token: str
    total_net_flow_rate: int
    direct_net_flow_rate: int
    total_deposit: int = 0
    token_symbol: str = ""
    maybe_critical_at: Optional[int] = None
    balance_until_updated_at: int = 0
    is_liquidation_estimate_optimistic: bool = False


@dataclass(frozen=True)
class OutgoingFlow:
    sender: str
    receiver: str
    token: str
    flow_rate: int
    agreement: AgreementType


@dataclass(frozen=True)
class LiquidationAction:
    """One flow termination inside a BatchLiquidator.deleteFlows call."""
    agreement: AgreementType
    sender: str
    receiver: str
    token: str
    flow_rate: int = 0

    @classmethod
    def from_flow(cls, flow: OutgoingFlow) -> "LiquidationAction":
        return cls(
            agreement=flow.agreement,
            sender=flow.sender,
            receiver=flow.receiver,
            token=flow.token,
            flow_rate=flow.flow_rate,
        )


@dataclass(frozen=True)
class Batch:
    token: str
    actions: Tuple[LiquidationAction, ...]

    def __post_init__(self):
        for action in self.actions:
            if action.token.lower() != self.token.lower():
                raise ValueError(f"action token {action.token} does not match batch token {self.token}")

    def __len__(self):
        return len(self.actions)


# --- RESULTS ---

@dataclass(frozen=True)
class Selection:
    """Outcome of evaluating one critical account."""
    snapshot: AccountSnapshot
    actions: List[LiquidationAction] = field(default_factory=list)
    available_balance: Optional[int] = None
    deposit: Optional[int] = None
    consumed_deposit_pct: Optional[int] = None
    net_flow_rate: Optional[int] = None
    reason: str = ""

    @property
    def is_critical(self) -> bool:
        return self.reason == "critical"


@dataclass(frozen=True)
class BatchOutcome:
    status: OutcomeStatus
    batch: Batch
    tx_hash: Optional[str] = None
    transaction: Optional[Dict[str, Any]] = None
    gas_price: Optional[int] = None
    reason: Optional[SkipReason] = None
    error: Optional[Exception] = None

    def to_log_dict(self) -> dict:
        return {
            "status": self.status.value,
            "token": self.batch.token,
            "size": len(self.batch),
            "tx_hash": self.tx_hash,
            "gas_price": self.gas_price,
            "reason": self.reason.value if self.reason else None,
            "error": str(self.error) if self.error else None,
        }


@dataclass
class RunReport:
    """Counters for one pass over one token."""
    token: str
    probed: int = 0
    critical: int = 0
    failed_accounts: int = 0
    actions: int = 0
    outcomes: List[BatchOutcome] = field(default_factory=list)

    def count(self, status: OutcomeStatus) -> int:
        return sum(1 for outcome in self.outcomes if outcome.status == status)

    @property
    def submitted(self) -> int:
        return self.count(OutcomeStatus.SUBMITTED)
