"""
Chain Client Module

web3.py access to the wrapper contract: wrap (deposit), unwrap (withdraw),
fee data, latest block and balances. Every call may raise a transport or
contract error; the scheduler treats them all as a failed operation.
"""

import time
from decimal import Decimal
from dataclasses import dataclass
from typing import Optional

from web3 import Web3
from eth_account import Account
from tenacity import retry, stop_after_attempt, wait_exponential, retry_if_exception_type

from config import Config
from utils import (
    logger,
    TransactionError,
    to_base_units,
    from_base_units,
    format_tx_hash,
    register_secret,
    sanitize_error_message,
)


# Wrapped native token ABI (deposit / withdraw / ERC20 views)
WRAPPER_ABI = [
    {
        "inputs": [],
        "name": "deposit",
        "outputs": [],
        "stateMutability": "payable",
        "type": "function"
    },
    {
        "inputs": [{"internalType": "uint256", "name": "amount", "type": "uint256"}],
        "name": "withdraw",
        "outputs": [],
        "stateMutability": "nonpayable",
        "type": "function"
    },
    {
        "inputs": [{"internalType": "address", "name": "owner", "type": "address"}],
        "name": "balanceOf",
        "outputs": [{"internalType": "uint256", "name": "", "type": "uint256"}],
        "stateMutability": "view",
        "type": "function"
    },
    {
        "inputs": [],
        "name": "totalSupply",
        "outputs": [{"internalType": "uint256", "name": "", "type": "uint256"}],
        "stateMutability": "view",
        "type": "function"
    }
]

DRY_RUN_TX_HASH = "0xDRYRUN"

# Priority fee used when the node cannot suggest one
DEFAULT_PRIORITY_FEE_WEI = 10 ** 9


@dataclass(frozen=True)
class FeeParameters:
    """Fee data reported by the node; any field may be missing."""
    priority_fee: Optional[int] = None
    max_fee: Optional[int] = None
    gas_price: Optional[int] = None
    last_base_fee: Optional[int] = None


@dataclass(frozen=True)
class BlockInfo:
    number: int
    base_fee: Optional[int] = None


@dataclass
class Confirmation:
    """Result of a confirmed wrap/unwrap transaction."""
    tx_hash: str
    block_number: Optional[int] = None
    gas_used: Optional[int] = None
    status: int = 1
    dry_run: bool = False


class WrapperClient:
    """
    Submits wrap/unwrap transactions and answers chain queries.

    In dry-run mode, transactions are logged and a simulated confirmation
    is returned; queries still hit the node.
    """

    def __init__(self, config: Config, web3: Optional[Web3] = None, account=None):
        self.config = config
        self.web3 = web3 or Web3(Web3.HTTPProvider(
            config.rpc_url,
            request_kwargs={'timeout': config.request_timeout_seconds}
        ))

        if account is None and config.private_key:
            register_secret(config.private_key)
            account = Account.from_key(config.private_key)
        self.account = account

        self.contract = self.web3.eth.contract(
            address=self.web3.to_checksum_address(config.wrapper_contract),
            abi=WRAPPER_ABI
        )
        self._chain_id = config.chain_id

    @property
    def address(self) -> Optional[str]:
        return self.account.address if self.account is not None else None

    @property
    def chain_id(self) -> int:
        if self._chain_id is None:
            self._chain_id = self.web3.eth.chain_id
        return self._chain_id

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=2, max=10),
        retry=retry_if_exception_type(ConnectionError),
        reraise=True
    )
    def connect(self) -> int:
        """Check the RPC connection and return the current block number."""
        if not self.web3.is_connected():
            raise ConnectionError("Unable to connect to RPC endpoint")
        return self.web3.eth.block_number

    # Queries

    def get_fee_parameters(self) -> FeeParameters:
        """
        Current fee data, shaped like an EIP-1559 fee suggestion.

        Max fee is 2x the latest base fee plus the priority fee. When the
        node has no eth_maxPriorityFeePerGas the priority fee defaults to
        1 gwei. Nodes without base fees only report a gas price.
        """
        gas_price = self.web3.eth.gas_price
        block = self.web3.eth.get_block('latest')
        base_fee = block.get('baseFeePerGas')

        priority_fee = None
        max_fee = None
        if base_fee is not None:
            try:
                priority_fee = self.web3.eth.max_priority_fee
            except Exception as e:
                logger.debug(f"eth_maxPriorityFeePerGas unavailable: {sanitize_error_message(e)}")
                priority_fee = DEFAULT_PRIORITY_FEE_WEI
            max_fee = base_fee * 2 + priority_fee

        return FeeParameters(
            priority_fee=priority_fee,
            max_fee=max_fee,
            gas_price=gas_price,
            last_base_fee=base_fee,
        )

    def get_latest_block(self) -> BlockInfo:
        block = self.web3.eth.get_block('latest')
        return BlockInfo(number=block['number'], base_fee=block.get('baseFeePerGas'))

    def get_balance(self, address: Optional[str] = None) -> Decimal:
        """Wrapped token balance."""
        owner = self.web3.to_checksum_address(address or self.address)
        return from_base_units(self.contract.functions.balanceOf(owner).call())

    def get_native_balance(self, address: Optional[str] = None) -> Decimal:
        owner = self.web3.to_checksum_address(address or self.address)
        return from_base_units(self.web3.eth.get_balance(owner))

    def get_total_supply(self) -> Decimal:
        return from_base_units(self.contract.functions.totalSupply().call())

    # Transactions

    def submit_wrap(self, amount: Decimal, fee_quote) -> Confirmation:
        """Wrap ``amount`` of the native asset by calling deposit()."""
        value = to_base_units(amount)
        return self._submit(
            self.contract.functions.deposit(),
            fee_quote,
            value=value,
            label=f"wrap {amount} {self.config.native_symbol}"
        )

    def submit_unwrap(self, amount: Decimal, fee_quote) -> Confirmation:
        """Unwrap ``amount`` of the wrapped token by calling withdraw()."""
        return self._submit(
            self.contract.functions.withdraw(to_base_units(amount)),
            fee_quote,
            value=0,
            label=f"unwrap {amount} {self.config.wrapped_symbol}"
        )

    def _build_transaction(self, function, fee_quote, value: int) -> dict:
        params = {
            'from': self.address,
            'value': value,
            'gas': self.config.gas_limit,
            'maxPriorityFeePerGas': fee_quote.priority_fee,
            'maxFeePerGas': fee_quote.max_fee,
            'nonce': self.web3.eth.get_transaction_count(self.address, 'pending'),
            'chainId': self.chain_id,
        }
        return function.build_transaction(params)

    def _submit(self, function, fee_quote, value: int, label: str) -> Confirmation:
        if self.config.dry_run:
            logger.info(f"[DRY RUN] Would {label}")
            return Confirmation(tx_hash=DRY_RUN_TX_HASH, status=1, dry_run=True)

        if self.account is None:
            raise TransactionError("No account configured for signing")

        tx = self._build_transaction(function, fee_quote, value)
        signed = self.account.sign_transaction(tx)
        tx_hash = self.web3.to_hex(self.web3.eth.send_raw_transaction(signed.raw_transaction))

        logger.info(f"Transaction sent ({label}): {tx_hash}")
        logger.info("Waiting for confirmation...")

        started = time.time()
        receipt = self.web3.eth.wait_for_transaction_receipt(
            tx_hash,
            timeout=self.config.confirmation_timeout_seconds
        )

        if receipt['status'] != 1:
            raise TransactionError(
                f"Transaction {format_tx_hash(tx_hash)} reverted in block {receipt['blockNumber']}"
            )

        logger.debug(f"Confirmed in {time.time() - started:.1f}s")
        return Confirmation(
            tx_hash=tx_hash,
            block_number=receipt['blockNumber'],
            gas_used=receipt['gasUsed'],
            status=receipt['status'],
        )
