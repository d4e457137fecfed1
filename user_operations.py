"""
UserOperation construction, encoding and signing utilities for test fixtures
"""

import logging
from dataclasses import dataclass, fields, replace
from typing import Any, Dict, Mapping, Optional, Union

from eth_abi import encode
from eth_account import Account
from eth_account.messages import encode_defunct
from eth_account.signers.local import LocalAccount
from hexbytes import HexBytes
from web3 import Web3

from config import ADDRESS_ZERO, DEFAULT_MAX_PRIORITY_FEE_PER_GAS, PERSONAL_MESSAGE_PREFIX

logger = logging.getLogger(__name__)

Bytes = Union[bytes, str]

# Field order and ABI types of the hashed payload
PACKED_FIELDS = (
    ("target", "address"),
    ("nonce", "uint256"),
    ("call_data", "bytes"),
    ("call_gas", "uint64"),
    ("max_fee_per_gas", "uint256"),
    ("max_priority_fee_per_gas", "uint256"),
    ("paymaster", "address"),
)

# JSON-RPC (camelCase) key for every UserOperation field
RPC_KEYS = {
    "target": "target",
    "nonce": "nonce",
    "init_code": "initCode",
    "call_data": "callData",
    "call_gas": "callGas",
    "max_fee_per_gas": "maxFeePerGas",
    "max_priority_fee_per_gas": "maxPriorityFeePerGas",
    "paymaster": "paymaster",
    "signer": "signer",
    "signature": "signature",
}

QUANTITY_FIELDS = {"nonce", "call_gas", "max_fee_per_gas", "max_priority_fee_per_gas"}
BYTES_FIELDS = {"init_code", "call_data", "signature"}


@dataclass(frozen=True)
class UserOperation:
    """
    Account-abstraction request. Any field left as None is unset and gets
    resolved by fill_user_op or fill_and_sign.
    """
    target: Optional[str] = None
    nonce: Optional[int] = None
    init_code: Optional[Bytes] = None
    call_data: Optional[Bytes] = None
    call_gas: Optional[int] = None

    max_fee_per_gas: Optional[int] = None
    max_priority_fee_per_gas: Optional[int] = None
    paymaster: Optional[str] = None

    signer: Optional[str] = None
    signature: Optional[Bytes] = None

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "UserOperation":
        """Build a UserOperation from camelCase RPC keys or snake_case field names"""
        field_names = {rpc_key: name for name, rpc_key in RPC_KEYS.items()}
        field_names.update({name: name for name in RPC_KEYS})

        values = {}
        for key, value in data.items():
            if key not in field_names:
                raise ValueError(f"Unknown UserOperation field: {key}")
            name = field_names[key]
            if name in QUANTITY_FIELDS and isinstance(value, str):
                # 0x-prefixed strings are hex, bare digits decimal
                value = int(value, 0)
            values[name] = value
        return cls(**values)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to camelCase RPC format, omitting unset fields"""
        result = {}
        for name, rpc_key in RPC_KEYS.items():
            value = getattr(self, name)
            if value is None:
                continue
            if name in QUANTITY_FIELDS:
                value = hex(value)
            elif name in BYTES_FIELDS:
                value = Web3.to_hex(HexBytes(value))
            result[rpc_key] = value
        return result


ZERO_USER_OP = UserOperation(
    target=ADDRESS_ZERO,
    nonce=0,
    init_code="0x",
    call_data="0x",
    call_gas=0,
    max_fee_per_gas=0,
    max_priority_fee_per_gas=DEFAULT_MAX_PRIORITY_FEE_PER_GAS,
    paymaster=ADDRESS_ZERO,
    signer=ADDRESS_ZERO,
    signature="0x",
)


def pack_user_op(op: UserOperation) -> bytes:
    """
    ABI-encode the hashed subset of a UserOperation.

    initCode, signer and signature are not part of the payload, so operations
    that differ only in those fields pack identically.
    """
    values = [
        Web3.to_checksum_address(op.target),
        op.nonce,
        bytes(HexBytes(op.call_data)),
        op.call_gas,
        op.max_fee_per_gas,
        op.max_priority_fee_per_gas,
        Web3.to_checksum_address(op.paymaster),
    ]
    packed = encode([abi_type for _, abi_type in PACKED_FIELDS], values)
    logger.debug(f"Packed UserOperation for {op.target}: {len(packed)} bytes")
    return packed


def user_op_hash(op: UserOperation) -> bytes:
    """Keccak-256 of the packed UserOperation"""
    return bytes(Web3.keccak(pack_user_op(op)))


def personal_message_hash(message_hash: bytes) -> bytes:
    """Hash a 32-byte message hash under the Ethereum personal-message prefix"""
    return bytes(Web3.keccak(PERSONAL_MESSAGE_PREFIX + bytes(message_hash)))


def sign_user_op(op: UserOperation, signer: Union[LocalAccount, str, bytes]) -> UserOperation:
    """Sign a UserOperation, returning a copy with signer and signature set"""
    if not isinstance(signer, LocalAccount):
        signer = Account.from_key(signer)

    # encode_defunct applies PERSONAL_MESSAGE_PREFIX to the 32-byte hash
    signed_message = signer.sign_message(encode_defunct(primitive=user_op_hash(op)))
    logger.info(f"Signed UserOperation for {op.target} as {signer.address}")

    return replace(
        op,
        signer=signer.address,
        signature=Web3.to_hex(signed_message.signature),
    )


def recover_user_op_signer(op: UserOperation) -> str:
    """Recover the address that produced op.signature over the packed operation"""
    if op.signature is None or not HexBytes(op.signature):
        raise ValueError("UserOperation has no signature to recover")
    return Account.recover_message(
        encode_defunct(primitive=user_op_hash(op)),
        signature=HexBytes(op.signature),
    )


def fill_user_op(op: UserOperation, defaults: UserOperation = ZERO_USER_OP) -> UserOperation:
    """Take every unset field of op from defaults; set fields are kept as given"""
    overrides = {}
    for field in fields(op):
        value = getattr(op, field.name)
        if value is not None:
            overrides[field.name] = value
    return replace(defaults, **overrides)
