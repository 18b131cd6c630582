"""OracleContract: Narrow interface to the on-chain price oracle.

The feeder only needs four things from the oracle: read the stored price of
an asset, write one price, optionally write a batch of prices in a single
transaction, and know the chain time. :class:`OracleClient` captures that
surface so the feeder can be driven by an in-memory double in tests;
:class:`Web3OracleClient` is the real implementation.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import TYPE_CHECKING

from web3.exceptions import ContractLogicError

from .PriceSample import NormalizedQuote

if TYPE_CHECKING:
    from web3 import Web3
    from web3.contract import Contract

logger = logging.getLogger(__name__)

# Source tag recorded by updatePrice for feeder writes.
FEEDER_SOURCE = "FEEDER"

# Functions every MedianOracle deployment exposes.
MEDIAN_ORACLE_ABI: list[dict] = [
    {
        "type": "function",
        "name": "updatePrice",
        "stateMutability": "nonpayable",
        "inputs": [
            {"name": "assetId", "type": "bytes32"},
            {"name": "price", "type": "uint256"},
            {"name": "updatedAt", "type": "uint256"},
            {"name": "decimals", "type": "uint8"},
            {"name": "source", "type": "string"},
            {"name": "degraded", "type": "bool"},
        ],
        "outputs": [],
    },
    {
        "type": "function",
        "name": "getPriceData",
        "stateMutability": "view",
        "inputs": [{"name": "assetId", "type": "bytes32"}],
        "outputs": [
            {
                "name": "",
                "type": "tuple",
                "components": [
                    {"name": "price", "type": "uint256"},
                    {"name": "updatedAt", "type": "uint256"},
                    {"name": "decimals", "type": "uint8"},
                    {"name": "degraded", "type": "bool"},
                ],
            }
        ],
    },
]

# Optional batch entry point, only present on newer deployments.
UPDATE_PRICE_BATCH_ABI: dict = {
    "type": "function",
    "name": "updatePriceBatch",
    "stateMutability": "nonpayable",
    "inputs": [
        {"name": "assetIds", "type": "bytes32[]"},
        {"name": "prices", "type": "uint256[]"},
        {"name": "timestamps", "type": "uint256[]"},
        {"name": "decimals", "type": "uint8[]"},
        {"name": "degraded", "type": "bool[]"},
    ],
    "outputs": [],
}


class OracleTransactionError(Exception):
    """Raised when an oracle transaction reverts or cannot be sent."""

    pass


@dataclass(frozen=True)
class OnChainPrice:
    """Price record stored by the oracle."""

    price: int
    updated_at: int
    decimals: int
    degraded: bool


class OracleClient(ABC):
    """Minimal oracle surface used by the feeder and monitor."""

    @property
    def supports_batch(self) -> bool:
        """Check if the oracle exposes ``updatePriceBatch``."""
        return False

    @property
    def address(self) -> str:
        return ""

    @abstractmethod
    def get_price_data(self, asset_id: bytes) -> OnChainPrice | None:
        """Read the stored price of an asset.

        :param asset_id: keccak256 asset id.
        :returns: OnChainPrice, or None if the oracle has no price yet.
        """
        pass

    @abstractmethod
    def update_price(self, quote: NormalizedQuote) -> str:
        """Write one price.

        :returns: Transaction hash (hex).
        :raises OracleTransactionError: If the transaction fails.
        """
        pass

    def update_price_batch(self, quotes: list[NormalizedQuote]) -> str:
        """Write several prices in one transaction.

        :returns: Transaction hash (hex).
        :raises OracleTransactionError: If the transaction fails.
        """
        raise NotImplementedError("Oracle does not support batch updates")

    @abstractmethod
    def latest_timestamp(self) -> int:
        """Return the timestamp of the latest block."""
        pass


class Web3OracleClient(OracleClient):
    """OracleClient backed by a deployed MedianOracle contract.

    Batch support is decided by the ABI: pass the deployment's artifact ABI so
    that contracts without ``updatePriceBatch`` are written one asset at a time.
    Without an ABI only the functions every deployment exposes are assumed.

    :ivar w3: Web3 instance with a signing account configured.
    :ivar contract: Oracle contract binding.
    """

    def __init__(self, w3: Web3, address: str, abi: list[dict] | None = None) -> None:
        abi = abi or MEDIAN_ORACLE_ABI
        self._function_names = {entry.get("name") for entry in abi if entry.get("type") == "function"}
        missing = {"updatePrice", "getPriceData"} - self._function_names
        if missing:
            raise ValueError(f"Oracle ABI lacks {', '.join(sorted(missing))}")

        self.w3 = w3
        self.contract: Contract = w3.eth.contract(address=address, abi=abi)

    @property
    def supports_batch(self) -> bool:
        return "updatePriceBatch" in self._function_names

    @property
    def address(self) -> str:
        return self.contract.address

    def get_price_data(self, asset_id: bytes) -> OnChainPrice | None:
        try:
            price, updated_at, decimals, degraded = self.contract.functions.getPriceData(asset_id).call()
        except ContractLogicError as e:
            # PriceNotAvailable revert: nothing stored for this asset yet.
            logger.debug(f"getPriceData({asset_id.hex()}) reverted: {e}")
            return None
        return OnChainPrice(int(price), int(updated_at), int(decimals), bool(degraded))

    def update_price(self, quote: NormalizedQuote) -> str:
        call = self.contract.functions.updatePrice(
            quote.asset_id,
            quote.value,
            quote.timestamp,
            quote.decimals,
            FEEDER_SOURCE,
            quote.degraded,
        )
        return self._submit(call, f"updatePrice({quote.asset_key})")

    def update_price_batch(self, quotes: list[NormalizedQuote]) -> str:
        call = self.contract.functions.updatePriceBatch(
            [q.asset_id for q in quotes],
            [q.value for q in quotes],
            [q.timestamp for q in quotes],
            [q.decimals for q in quotes],
            [q.degraded for q in quotes],
        )
        return self._submit(call, f"updatePriceBatch({len(quotes)} assets)")

    def latest_timestamp(self) -> int:
        return int(self.w3.eth.get_block("latest")["timestamp"])

    def _submit(self, call, label: str) -> str:
        try:
            tx_params = call.build_transaction({"gasPrice": self.w3.eth.gas_price})
            tx_hash = self.w3.eth.send_transaction(tx_params)
            tx_receipt = self.w3.eth.wait_for_transaction_receipt(tx_hash)
        except Exception as e:
            raise OracleTransactionError(f"{label} failed: {e}") from e

        if tx_receipt["status"] != 1:
            raise OracleTransactionError(f"{label} reverted in tx {tx_hash.hex()}")
        logger.info(f"[COMMIT] {label} confirmed in tx {tx_hash.hex()}")
        return tx_hash.hex()
