"""
Fill-and-sign pipeline resolving unset UserOperation fields from a node
"""

import logging
from dataclasses import replace
from typing import Optional

from eth_account import Account
from eth_account.signers.local import LocalAccount
from hexbytes import HexBytes
from web3 import Web3
from web3.contract import Contract

from config import CALL_GAS_OVERHEAD, NONCE_ABI, SINGLETON_ABI, UserOperationConfig
from user_operations import UserOperation, fill_user_op, sign_user_op

logger = logging.getLogger(__name__)


def singleton_contract(web3: Web3, address: str) -> Contract:
    """Bind the registry used to derive account addresses from initCode"""
    return web3.eth.contract(
        address=Web3.to_checksum_address(address),
        abi=SINGLETON_ABI
    )


class UserOperationSigner:
    """Fills unset UserOperation fields from a node and signs the result"""

    def __init__(self, web3: Web3, account: LocalAccount, singleton: Optional[Contract] = None):
        self.web3 = web3
        self.account = account
        self.singleton = singleton

        # Order matters: later stages read fields resolved by earlier ones
        self.stages = (
            self._resolve_target,
            self._resolve_nonce,
            self._resolve_call_gas,
            self._resolve_max_fee,
            self._resolve_priority_fee,
        )

    def fill_and_sign(self, op: UserOperation) -> UserOperation:
        """Resolve every unset field of op, apply defaults and sign"""
        for stage in self.stages:
            op = stage(op)
        return sign_user_op(fill_user_op(op), self.account)

    def _resolve_target(self, op: UserOperation) -> UserOperation:
        """Reads init_code and target; sets nonce and target"""
        if op.init_code is None:
            if op.target is None:
                raise ValueError("target is required when initCode is not set")
            return op

        op = replace(op, nonce=0)
        if op.target is None:
            if self.singleton is None:
                raise ValueError("must have singleton when using initCode")
            target = self.singleton.functions.getAccountAddress(
                bytes(HexBytes(op.init_code)), op.nonce
            ).call()
            logger.info(f"Derived account address from initCode: {target}")
            op = replace(op, target=target)
        return op

    def _resolve_nonce(self, op: UserOperation) -> UserOperation:
        """Reads target; sets nonce"""
        if op.nonce is not None:
            return op

        account_contract = self.web3.eth.contract(
            address=Web3.to_checksum_address(op.target),
            abi=NONCE_ABI
        )
        nonce = account_contract.functions.nonce().call()
        logger.info(f"Current nonce for {op.target}: {nonce}")
        return replace(op, nonce=nonce)

    def _resolve_call_gas(self, op: UserOperation) -> UserOperation:
        """Reads target and call_data; sets call_gas"""
        if op.call_gas is not None:
            return op

        transaction = {
            'from': self.account.address,
            'to': Web3.to_checksum_address(op.target),
        }
        if op.call_data is not None:
            transaction['data'] = Web3.to_hex(HexBytes(op.call_data))

        gas_estimate = self.web3.eth.estimate_gas(transaction)
        logger.info(f"Estimated call gas: {gas_estimate} (+{CALL_GAS_OVERHEAD} overhead)")
        return replace(op, call_gas=gas_estimate + CALL_GAS_OVERHEAD)

    def _resolve_max_fee(self, op: UserOperation) -> UserOperation:
        """Sets max_fee_per_gas"""
        if op.max_fee_per_gas is not None:
            return op

        gas_price = self.web3.eth.gas_price
        logger.info(f"Current gas price: {gas_price}")
        return replace(op, max_fee_per_gas=gas_price)

    def _resolve_priority_fee(self, op: UserOperation) -> UserOperation:
        """Reads max_fee_per_gas; sets max_priority_fee_per_gas"""
        if op.max_priority_fee_per_gas is not None:
            return op

        block = self.web3.eth.get_block('latest')
        base_fee = block.get('baseFeePerGas')
        if base_fee is None:
            logger.info("Latest block has no base fee, using max fee per gas")
            base_fee = op.max_fee_per_gas
        return replace(op, max_priority_fee_per_gas=base_fee)


def fill_and_sign(
    op: UserOperation,
    signer: LocalAccount,
    web3: Web3,
    singleton: Optional[Contract] = None
) -> UserOperation:
    """Fill unset fields of op from the node behind web3 and sign it with signer"""
    return UserOperationSigner(web3, signer, singleton).fill_and_sign(op)


def create_user_operation_signer(config: Optional[UserOperationConfig] = None) -> UserOperationSigner:
    """Create a UserOperationSigner from environment configuration"""
    config = config or UserOperationConfig()
    web3 = Web3(Web3.HTTPProvider(config.rpc_url))
    account = Account.from_key(config.signer_key)

    singleton = None
    if config.singleton_address:
        singleton = singleton_contract(web3, config.singleton_address)

    logger.info(f"UserOperation signer initialized for {account.address} via {config.rpc_url}")
    return UserOperationSigner(web3, account, singleton)
