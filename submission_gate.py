import time
import logging
from decimal import Decimal, ROUND_FLOOR
from typing import Any, Callable, Dict, Protocol, Sequence, Tuple

from flow_types import (
    Batch, BatchOutcome, ConfigurationError, EstimationError, LiquidationAction,
    OutcomeStatus, SkipReason, SubmissionError,
)

logger = logging.getLogger("SubmissionGate")


class TransactionLedger(Protocol):
    def encode_batch_liquidation(self, token: str, actions: Sequence[LiquidationAction]) -> Tuple[str, str]: ...

    def estimate_gas(self, target: str, data: str) -> int: ...

    def gas_price(self) -> int: ...

    def chain_id(self) -> int: ...

    def transaction_count(self) -> int: ...

    def sign_and_send(self, tx: Dict[str, Any]) -> str: ...


def gas_limit_for(estimate: int, gas_multiplier) -> int:
    """Estimate scaled by the safety multiplier, floored to an int."""
    scaled = Decimal(estimate) * Decimal(str(gas_multiplier))
    return int(scaled.to_integral_value(rounding=ROUND_FLOOR))


class SubmissionGate:
    """
    Submits one batch at a time:
    encode -> estimate -> gas price check -> build -> (dry run | sign + send + receipt).
    Every failure except a ConfigurationError becomes a FAILED outcome for that batch only.
    """

    def __init__(self, ledger: TransactionLedger, cooldown: float = 3.0,
                 sleep: Callable[[float], None] = time.sleep):
        self.ledger = ledger
        self.cooldown = cooldown
        self._sleep = sleep

    def submit(self, batch: Batch, gas_multiplier, max_gas_price: int, dry_run: bool = False) -> BatchOutcome:
        try:
            return self._submit(batch, gas_multiplier, max_gas_price, dry_run)
        except ConfigurationError:
            raise
        except Exception as e:
            logger.error(f"❌ Batch of {len(batch)} for token {batch.token} failed: {e}")
            return BatchOutcome(OutcomeStatus.FAILED, batch, error=e)

    def _submit(self, batch: Batch, gas_multiplier, max_gas_price: int, dry_run: bool) -> BatchOutcome:
        target, data = self.ledger.encode_batch_liquidation(batch.token, batch.actions)

        try:
            estimate = self.ledger.estimate_gas(target, data)
        except Exception as e:
            raise EstimationError(f"gas estimation failed: {e}") from e
        gas_limit = gas_limit_for(estimate, gas_multiplier)

        gas_price = self.ledger.gas_price()
        if gas_price > max_gas_price:
            logger.warning(f"⛽ Gas price {gas_price} above max {max_gas_price}, skipping batch of {len(batch)}")
            self._sleep(self.cooldown)
            return BatchOutcome(OutcomeStatus.SKIPPED, batch, gas_price=gas_price, reason=SkipReason.GAS_TOO_HIGH)

        tx = {
            "to": target,
            "data": data,
            "gas": gas_limit,
            "gasPrice": gas_price,
            "chainId": self.ledger.chain_id(),
            # re-read every time, never cached across batches
            "nonce": self.ledger.transaction_count(),
        }

        if dry_run:
            logger.info(f"🧪 DRY RUN tx for {len(batch)} flows: {tx}")
            return BatchOutcome(OutcomeStatus.DRY_RUN, batch, transaction=tx, gas_price=gas_price)

        try:
            tx_hash = self.ledger.sign_and_send(tx)
        except SubmissionError:
            raise
        except Exception as e:
            raise SubmissionError(str(e)) from e

        logger.info(f"✅ TX CONFIRMED: {tx_hash} | {len(batch)} flows | gas limit {gas_limit} @ {gas_price}")
        self._sleep(self.cooldown)
        return BatchOutcome(OutcomeStatus.SUBMITTED, batch, tx_hash=tx_hash, transaction=tx, gas_price=gas_price)
