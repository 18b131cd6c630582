"""ContractUtility: Web3 initialization, signing account, address and ABI lookup."""

from __future__ import annotations

import json
import logging
import os
from pathlib import Path

from eth_account import Account
from eth_account.signers.local import LocalAccount
from web3 import Web3
from web3.middleware import SignAndSendRawMiddlewareBuilder

logger = logging.getLogger(__name__)

NETWORKS: dict[str, str] = {
    "localhost": "http://127.0.0.1:8545",
    "hardhat": "http://127.0.0.1:8545",
    "sepolia": "https://rpc.sepolia.org",
    "polygon": "https://polygon-rpc.com",
    "mainnet": "https://eth.llamarpc.com",
}

# Well-known first development account of local Hardhat/Anvil nodes.
LOCALNET_DEV_KEY = "0xac0974bec39a17e36ba4a6b4d238ff944bacb478cbed5efcae784d7bf4f2ff80"

DEFAULT_DEPLOYMENTS_DIR = Path("deployments")
DEFAULT_ARTIFACTS_DIR = Path("artifacts") / "contracts"
ORACLE_CONTRACT_NAME = "MedianOracle"


class ContractUtility:
    """Utility for the Web3 connection and deployment bookkeeping lookups.

    :ivar network_name: Name of the target network.
    :ivar rpc_url: Network RPC URL.
    :ivar w3: Configured Web3 instance.
    :ivar account: Signing account, if a key is configured.
    """

    def __init__(self, network_name: str, private_key: str | None = None) -> None:
        """Initialize the contract utility.

        :param network_name: Name of the network to connect to.
        :param private_key: Hex private key of the updater account. Localnet
            falls back to the well-known development key.
        """
        self.network_name = network_name
        # RPC_URL env var overrides the default for the network
        self.rpc_url = os.environ.get("RPC_URL") or NETWORKS.get(network_name, network_name)
        self.w3 = Web3(Web3.HTTPProvider(self.rpc_url))

        key = private_key or os.environ.get("FEEDER_PRIVATE_KEY")
        if not key and network_name in ("localhost", "hardhat"):
            key = LOCALNET_DEV_KEY

        self.account: LocalAccount | None = None
        if key:
            self.account = Account.from_key(key)
            self.w3.middleware_onion.add(SignAndSendRawMiddlewareBuilder.build(self.account))
            self.w3.eth.default_account = self.account.address

    @staticmethod
    def load_addresses(network_name: str, addresses_path: str | Path | None = None) -> dict[str, str]:
        """Load contract addresses from a deployment file.

        The file holds ``{"network": ..., "contracts": {...}, "addresses": {...}}``;
        entries under ``contracts`` win over ``addresses``.

        :param network_name: Network name (selects ``deployments/<network>.json``).
        :param addresses_path: Explicit file path overriding the default.
        :returns: Contract name to address. Empty if the file does not exist.
        :raises ValueError: If the file is not valid JSON.
        """
        path = Path(addresses_path) if addresses_path else DEFAULT_DEPLOYMENTS_DIR / f"{network_name}.json"
        if not path.exists():
            logger.warning(f"Deployment file {path} not found")
            return {}

        try:
            with open(path, "r") as file:
                data = json.load(file)
        except json.JSONDecodeError as e:
            raise ValueError(f"Invalid JSON in {path}: {e}") from e

        addresses: dict[str, str] = {}
        for section in ("addresses", "contracts"):
            entries = data.get(section)
            if isinstance(entries, dict):
                addresses.update({k: v for k, v in entries.items() if isinstance(v, str)})
        return addresses

    def oracle_address(self, addresses_path: str | Path | None = None) -> str:
        """Resolve and sanity-check the oracle contract address.

        :raises ValueError: If no address is recorded or it has no bytecode.
        """
        addresses = self.load_addresses(self.network_name, addresses_path)
        address = addresses.get(ORACLE_CONTRACT_NAME)
        if not address:
            raise ValueError(
                f"{ORACLE_CONTRACT_NAME} address missing for network {self.network_name}. "
                f"Current entries: {sorted(addresses)}"
            )

        checksum = Web3.to_checksum_address(address)
        if not self.w3.eth.get_code(checksum):
            raise ValueError(f"{ORACLE_CONTRACT_NAME} at {checksum} has no bytecode on {self.network_name}")
        return checksum

    @staticmethod
    def get_contract_abi(contract_name: str, artifacts_dir: str | Path | None = None) -> list[dict] | None:
        """Fetch the ABI of a compiled contract from its build artifact.

        Artifacts live at ``<artifacts_dir>/<Name>.sol/<Name>.json`` and carry
        the ABI under ``abi``.

        :param contract_name: Name of the contract (e.g., "MedianOracle").
        :param artifacts_dir: Artifacts folder (default: ``artifacts/contracts``).
        :returns: The ABI, or None if the artifact does not exist.
        :raises ValueError: If the artifact is not valid JSON or has no ABI.
        """
        base = Path(artifacts_dir) if artifacts_dir else DEFAULT_ARTIFACTS_DIR
        output_path = base / f"{contract_name}.sol" / f"{contract_name}.json"
        if not output_path.exists():
            logger.warning(f"Contract artifact {output_path} not found")
            return None

        try:
            with open(output_path, "r") as file:
                contract_data = json.load(file)
        except json.JSONDecodeError as e:
            raise ValueError(f"Invalid JSON in {output_path}: {e}") from e

        abi = contract_data.get("abi") if isinstance(contract_data, dict) else None
        if not isinstance(abi, list):
            raise ValueError(f"Artifact {output_path} has no ABI")
        return abi
