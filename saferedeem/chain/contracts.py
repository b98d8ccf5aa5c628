"""Contract addresses and minimal ABIs (Polygon mainnet)."""

from web3 import Web3

# ═══════════════════════════════════════════════════════════════════════════════
# Contract Addresses (Polygon Mainnet)
# ═══════════════════════════════════════════════════════════════════════════════

POLYGON_CHAIN_ID = 137

# Conditional Tokens Framework - holds all prediction market positions
CTF_ADDRESS = Web3.to_checksum_address("0x4D97DCd97eC945f40cF65F87097ACe5EA0476045")

# USDC.e on Polygon - collateral token
USDC_ADDRESS = Web3.to_checksum_address("0x2791Bca1f2de4661ED88A30C99A7a9449Aa84174")
USDC_DECIMALS = 6

# Null address
NULL_ADDRESS = Web3.to_checksum_address("0x0000000000000000000000000000000000000000")

# ═══════════════════════════════════════════════════════════════════════════════
# Contract ABIs (minimal - only functions we need)
# ═══════════════════════════════════════════════════════════════════════════════

CTF_ABI = [
    {
        "name": "redeemPositions",
        "type": "function",
        "inputs": [
            {"name": "collateralToken", "type": "address"},
            {"name": "parentCollectionId", "type": "bytes32"},
            {"name": "conditionId", "type": "bytes32"},
            {"name": "indexSets", "type": "uint256[]"},
        ],
        "outputs": [],
        "stateMutability": "nonpayable",
    },
    {
        "name": "payoutDenominator",
        "type": "function",
        "inputs": [{"name": "conditionId", "type": "bytes32"}],
        "outputs": [{"name": "", "type": "uint256"}],
        "stateMutability": "view",
    },
]

_SAFE_TX_INPUTS = [
    {"name": "to", "type": "address"},
    {"name": "value", "type": "uint256"},
    {"name": "data", "type": "bytes"},
    {"name": "operation", "type": "uint8"},
    {"name": "safeTxGas", "type": "uint256"},
    {"name": "baseGas", "type": "uint256"},
    {"name": "gasPrice", "type": "uint256"},
    {"name": "gasToken", "type": "address"},
    {"name": "refundReceiver", "type": "address"},
]

SAFE_ABI = [
    {
        "name": "execTransaction",
        "type": "function",
        "inputs": [*_SAFE_TX_INPUTS, {"name": "signatures", "type": "bytes"}],
        "outputs": [{"name": "success", "type": "bool"}],
        "stateMutability": "payable",
    },
    {
        "name": "nonce",
        "type": "function",
        "inputs": [],
        "outputs": [{"name": "", "type": "uint256"}],
        "stateMutability": "view",
    },
    {
        "name": "getTransactionHash",
        "type": "function",
        "inputs": [*_SAFE_TX_INPUTS, {"name": "_nonce", "type": "uint256"}],
        "outputs": [{"name": "", "type": "bytes32"}],
        "stateMutability": "view",
    },
]

ERC20_ABI = [
    {
        "name": "balanceOf",
        "type": "function",
        "inputs": [{"name": "account", "type": "address"}],
        "outputs": [{"name": "", "type": "uint256"}],
        "stateMutability": "view",
    },
]
