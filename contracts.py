from web3 import Web3

# --- NETWORK DEFAULTS ---

# Canonical forwarder, same address on every Superfluid deployment
GDA_FORWARDER_ADDRESS = "0x6DA13Bde224A05a288748d857b9e7DDEffd1dE08"

NETWORKS = {
    "base-mainnet": {
        "batch_contract": "0x6b008BAc0e5846cB5d9Ca02ca0e801fCbF88B6f9",
        "gda_forwarder": GDA_FORWARDER_ADDRESS,
    },
}


def rpc_url_for(network: str) -> str:
    return f"https://{network}.rpc.x.superfluid.dev/"


def subgraph_url_for(network: str) -> str:
    return f"https://{network}.subgraph.x.superfluid.dev"


def default_addresses(network: str) -> dict:
    return {"gda_forwarder": GDA_FORWARDER_ADDRESS, **NETWORKS.get(network, {})}


# --- ABIs ---

SUPER_TOKEN_ABI = [{
    "inputs": [{"internalType": "address", "name": "account", "type": "address"}],
    "name": "realtimeBalanceOfNow",
    "outputs": [
        {"internalType": "int256", "name": "availableBalance", "type": "int256"},
        {"internalType": "uint256", "name": "deposit", "type": "uint256"},
        {"internalType": "uint256", "name": "owedDeposit", "type": "uint256"},
        {"internalType": "uint256", "name": "timestamp", "type": "uint256"}
    ],
    "stateMutability": "view",
    "type": "function"
}]

GDA_FORWARDER_ABI = [{
    "inputs": [
        {"internalType": "contract ISuperfluidToken", "name": "token", "type": "address"},
        {"internalType": "address", "name": "account", "type": "address"}
    ],
    "name": "getNetFlow",
    "outputs": [{"internalType": "int96", "name": "", "type": "int96"}],
    "stateMutability": "view",
    "type": "function"
}]

# deleteFlows(address superToken, FlowLiquidationData[] data)
# FlowLiquidationData = (FlowType agreementOperation, address sender, address receiver)
BATCH_LIQUIDATOR_ABI = [{
    "inputs": [
        {"internalType": "address", "name": "superToken", "type": "address"},
        {
            "components": [
                {"internalType": "enum BatchLiquidator.FlowType", "name": "agreementOperation", "type": "uint8"},
                {"internalType": "address", "name": "sender", "type": "address"},
                {"internalType": "address", "name": "receiver", "type": "address"}
            ],
            "internalType": "struct BatchLiquidator.FlowLiquidationData[]",
            "name": "data",
            "type": "tuple[]"
        }
    ],
    "name": "deleteFlows",
    "outputs": [],
    "stateMutability": "nonpayable",
    "type": "function"
}]


def checksum(address: str) -> str:
    return Web3.to_checksum_address(address)
