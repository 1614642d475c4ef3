import os
import logging
from dataclasses import dataclass, field
from decimal import Decimal
from typing import List, Optional

from dotenv import load_dotenv
from web3 import Web3

from contracts import default_addresses, rpc_url_for, subgraph_url_for
from flow_types import ConfigurationError

logger = logging.getLogger("Settings")

# --- DEFAULTS ---
DEFAULT_NETWORK = "base-mainnet"
DEFAULT_BATCH_SIZE = 15
DEFAULT_GAS_MULTIPLIER = Decimal("1.2")
DEFAULT_MAX_GAS_PRICE_MWEI = 500
DEFAULT_DEPOSIT_CONSUMED_PCT = 20
SUBMIT_COOLDOWN = 3.0        # after every broadcast and every gas-too-high skip
PASS_INTERVAL = 10.0         # between passes over the same token
MAX_PASSES = 5
RUN_AGAIN_IN = 30.0          # loop mode


@dataclass
class BotConfig:
    """Everything one liquidation run needs: endpoints, keys and run knobs."""
    network: str = DEFAULT_NETWORK
    rpc_url: str = ""
    fallback_rpcs: List[str] = field(default_factory=list)
    subgraph_url: str = ""
    private_key: str = field(default="", repr=False)
    batch_contract_address: str = ""
    gda_forwarder_address: str = ""

    token: Optional[str] = None
    batch_size: int = DEFAULT_BATCH_SIZE
    gas_multiplier: Decimal = DEFAULT_GAS_MULTIPLIER
    max_gas_price: int = Web3.to_wei(DEFAULT_MAX_GAS_PRICE_MWEI, "mwei")
    deposit_consumed_pct_threshold: int = DEFAULT_DEPOSIT_CONSUMED_PCT
    threshold_inclusive: bool = False
    include_pooled_flows: bool = True
    dry_run: bool = False

    submit_cooldown: float = SUBMIT_COOLDOWN
    pass_interval: float = PASS_INTERVAL
    max_passes: int = MAX_PASSES

    telegram_bot_token: str = field(default="", repr=False)
    telegram_chat_id: str = ""
    explorer_url: str = ""

    def validate(self):
        """Raises ConfigurationError for anything that would make the run unable to proceed."""
        if not self.private_key:
            raise ConfigurationError("No private key provided (PRIVATE_KEY)")
        if not self.rpc_url:
            raise ConfigurationError(f"No RPC URL for network {self.network}")
        if not self.subgraph_url:
            raise ConfigurationError(f"No subgraph URL for network {self.network}")
        if not self.batch_contract_address:
            raise ConfigurationError(f"No BatchLiquidator address for network {self.network} (BATCH_CONTRACT_ADDRESS)")
        if not self.gda_forwarder_address:
            raise ConfigurationError(f"No GDAv1Forwarder address for network {self.network} (GDA_FORWARDER_ADDRESS)")
        for name in ("batch_contract_address", "gda_forwarder_address"):
            if not Web3.is_address(getattr(self, name)):
                raise ConfigurationError(f"{name} is not a valid address: {getattr(self, name)}")
        if self.token and not Web3.is_address(self.token):
            raise ConfigurationError(f"Token filter is not a valid address: {self.token}")
        if self.batch_size < 1:
            raise ConfigurationError(f"batch size must be >= 1, got {self.batch_size}")
        if self.gas_multiplier <= 0:
            raise ConfigurationError(f"gas multiplier must be positive, got {self.gas_multiplier}")
        if self.max_gas_price < 0:
            raise ConfigurationError(f"max gas price must be >= 0, got {self.max_gas_price}")
        if self.max_passes < 1:
            raise ConfigurationError(f"max passes must be >= 1, got {self.max_passes}")
        return self


def env_path_for(network: Optional[str]) -> str:
    """`.env_<network>` when it exists, plain `.env` otherwise."""
    if network:
        path = f".env_{network}"
        if os.path.exists(path):
            return path
    return ".env"


def load_config(network: str = DEFAULT_NETWORK, **overrides) -> BotConfig:
    """Loads the env file for `network` and builds a validated BotConfig.

    Keyword overrides (CLI values) win over defaults; None values are ignored.
    """
    env_path = env_path_for(network)
    load_dotenv(env_path)
    logger.debug(f"Loaded environment from {env_path}")

    addresses = default_addresses(network)
    fallback_raw = os.getenv("FALLBACK_RPCS", "").replace('"', '').replace("'", "")

    config = BotConfig(
        network=network,
        rpc_url=os.getenv("RPC_URL") or rpc_url_for(network),
        fallback_rpcs=[url.strip() for url in fallback_raw.split(",") if url.strip()],
        subgraph_url=os.getenv("SUBGRAPH_URL") or subgraph_url_for(network),
        private_key=os.getenv("PRIVATE_KEY", ""),
        batch_contract_address=os.getenv("BATCH_CONTRACT_ADDRESS") or addresses.get("batch_contract", ""),
        gda_forwarder_address=os.getenv("GDA_FORWARDER_ADDRESS") or addresses.get("gda_forwarder", ""),
        telegram_bot_token=os.getenv("TELEGRAM_BOT_TOKEN", ""),
        telegram_chat_id=os.getenv("TELEGRAM_CHAT_ID", ""),
        explorer_url=os.getenv("EXPLORER_URL", ""),
    )

    for key, value in overrides.items():
        if value is None:
            continue
        if not hasattr(config, key):
            raise ConfigurationError(f"Unknown config option: {key}")
        setattr(config, key, value)

    if not isinstance(config.gas_multiplier, Decimal):
        config.gas_multiplier = Decimal(str(config.gas_multiplier))

    return config.validate()
