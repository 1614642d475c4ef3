import logging
from typing import Any, Dict, Sequence, Tuple

from web3 import Web3

from contracts import BATCH_LIQUIDATOR_ABI, GDA_FORWARDER_ABI, SUPER_TOKEN_ABI, checksum
from flow_types import ConfigurationError, LiquidationAction, SubmissionError
from rpc_manager import SmartSyncRPCManager

logger = logging.getLogger("Ledger")

RECEIPT_TIMEOUT = 120


class SuperfluidLedger:
    """
    Everything the bot needs from the chain:
    - realtime balance / deposit of an account (SuperToken.realtimeBalanceOfNow)
    - live pooled net flow rate (GDAv1Forwarder.getNetFlow)
    - BatchLiquidator.deleteFlows payload encoding
    - gas estimate, gas price, chain id, nonce, sign + broadcast + receipt
    Reads go through the RPC manager (rotation on rate limits); broadcasts do not.
    """

    def __init__(self, rpc: SmartSyncRPCManager, private_key: str, batch_contract_address: str,
                 gda_forwarder_address: str, receipt_timeout: int = RECEIPT_TIMEOUT):
        if not private_key:
            raise ConfigurationError("No private key provided")
        self.rpc = rpc
        try:
            self.account = rpc.w3.eth.account.from_key(private_key)
        except Exception as e:
            raise ConfigurationError(f"Invalid private key: {e}") from e
        self.batch_contract_address = checksum(batch_contract_address)
        self.gda_forwarder_address = checksum(gda_forwarder_address)
        self.receipt_timeout = receipt_timeout
        logger.info(f"🔑 Loaded Wallet: {self.account.address}")

    @property
    def sender(self) -> str:
        return self.account.address

    # --- READS ---

    def realtime_balance(self, token: str, account: str) -> Tuple[int, int]:
        """Returns (available_balance, deposit) for `account` right now."""
        def _read(w3: Web3):
            super_token = w3.eth.contract(address=checksum(token), abi=SUPER_TOKEN_ABI)
            return super_token.functions.realtimeBalanceOfNow(checksum(account)).call()

        available_balance, deposit, _owed_deposit, _timestamp = self.rpc.call(_read)
        return int(available_balance), int(deposit)

    def pooled_net_flow_rate(self, token: str, account: str) -> int:
        def _read(w3: Web3):
            forwarder = w3.eth.contract(address=self.gda_forwarder_address, abi=GDA_FORWARDER_ABI)
            return forwarder.functions.getNetFlow(checksum(token), checksum(account)).call()

        return int(self.rpc.call(_read))

    def gas_price(self) -> int:
        return int(self.rpc.call(lambda w3: w3.eth.gas_price))

    def chain_id(self) -> int:
        return int(self.rpc.call(lambda w3: w3.eth.chain_id))

    def transaction_count(self) -> int:
        return int(self.rpc.call(lambda w3: w3.eth.get_transaction_count(self.sender)))

    # --- PAYLOAD ---

    def encode_batch_liquidation(self, token: str, actions: Sequence[LiquidationAction]) -> Tuple[str, str]:
        """Returns (target, calldata) for one deleteFlows call covering every action."""
        batch_contract = self.rpc.w3.eth.contract(address=self.batch_contract_address, abi=BATCH_LIQUIDATOR_ABI)
        flow_data = [
            (action.agreement.value, checksum(action.sender), checksum(action.receiver))
            for action in actions
        ]
        data = batch_contract.functions.deleteFlows(checksum(token), flow_data)._encode_transaction_data()
        return self.batch_contract_address, data

    def estimate_gas(self, target: str, data: str) -> int:
        tx = {"from": self.sender, "to": target, "data": data}
        return int(self.rpc.call(lambda w3: w3.eth.estimate_gas(tx)))

    # --- WRITES ---

    def sign_and_send(self, tx: Dict[str, Any]) -> str:
        """Signs, broadcasts and waits for the receipt. Returns the tx hash.

        Raises SubmissionError on any failure, including a reverted receipt.
        """
        w3 = self.rpc.w3
        try:
            signed = self.account.sign_transaction(tx)
            tx_hash = w3.eth.send_raw_transaction(signed.raw_transaction)
        except Exception as e:
            raise SubmissionError(f"broadcast failed: {e}") from e

        tx_hex = Web3.to_hex(tx_hash)
        logger.info(f"🔥 TX SENT: {tx_hex}")
        try:
            receipt = w3.eth.wait_for_transaction_receipt(tx_hash, timeout=self.receipt_timeout)
        except Exception as e:
            raise SubmissionError(f"receipt wait failed for {tx_hex}: {e}") from e

        if receipt["status"] != 1:
            raise SubmissionError(f"transaction {tx_hex} reverted")
        return tx_hex
