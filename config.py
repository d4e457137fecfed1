"""
Configuration for UserOperation test fixtures
"""

import os
from dataclasses import dataclass

# Network constants
ADDRESS_ZERO = "0x0000000000000000000000000000000000000000"
DEFAULT_RPC_URL = "http://127.0.0.1:8545"

# estimate_gas assumes a direct call from the signer; this covers the wrapper
CALL_GAS_OVERHEAD = 55000
DEFAULT_MAX_PRIORITY_FEE_PER_GAS = 3

PERSONAL_MESSAGE_PREFIX = b"\x19Ethereum Signed Message:\n32"

# Minimal ABIs for the node queries made while filling a UserOperation
NONCE_ABI = [{
    "inputs": [],
    "name": "nonce",
    "outputs": [{"name": "", "type": "uint256"}],
    "stateMutability": "view",
    "type": "function"
}]

SINGLETON_ABI = [{
    "inputs": [{"name": "initCode", "type": "bytes"}, {"name": "salt", "type": "uint256"}],
    "name": "getAccountAddress",
    "outputs": [{"name": "", "type": "address"}],
    "stateMutability": "view",
    "type": "function"
}]


@dataclass
class UserOperationConfig:
    """Configuration for filling and signing UserOperations against a node"""

    def __init__(self):
        # Node configuration
        self.rpc_url = os.environ.get('USER_OP_RPC_URL', DEFAULT_RPC_URL)

        # Registry used to derive account addresses from initCode
        self.singleton_address = os.environ.get('USER_OP_SINGLETON_ADDRESS') or None

        # Signer configuration
        signer_key = os.environ.get('USER_OP_SIGNER_KEY')
        if not signer_key:
            raise ValueError("USER_OP_SIGNER_KEY environment variable is required")
        self.signer_key = signer_key
