"""Unit tests for the CLI wiring of the oracle client."""

import json

import pytest
from web3 import Web3

from navfeeder.main import build_oracle
from navfeeder.src.ContractUtility import ORACLE_CONTRACT_NAME, ContractUtility
from navfeeder.src.OracleContract import MEDIAN_ORACLE_ABI, UPDATE_PRICE_BATCH_ABI
from navfeeder.src.PriceFeeder import PriceFeeder
from navfeeder.src.PriceSample import PriceSample

ORACLE_ADDRESS = "0x5FbDB2315678afecb367f032d93F642f64180aa3"


class OfflineContractUtility:
    """ContractUtility stand-in with a provider-less Web3 and a fixed address."""

    def __init__(self) -> None:
        self.w3 = Web3()

    def oracle_address(self, addresses_path=None) -> str:
        return ORACLE_ADDRESS


def write_artifact(artifacts_dir, abi) -> None:
    folder = artifacts_dir / f"{ORACLE_CONTRACT_NAME}.sol"
    folder.mkdir(parents=True)
    (folder / f"{ORACLE_CONTRACT_NAME}.json").write_text(json.dumps({"abi": abi, "bytecode": "0x"}))


class TestArtifactAbi:
    """Test loading the oracle ABI from build artifacts."""

    def test_missing_artifact(self, tmp_path) -> None:
        """A missing artifact yields None."""
        assert ContractUtility.get_contract_abi(ORACLE_CONTRACT_NAME, tmp_path) is None

    def test_invalid_artifact(self, tmp_path) -> None:
        """An artifact without an ABI is rejected."""
        write_artifact(tmp_path, None)
        with pytest.raises(ValueError, match="no ABI"):
            ContractUtility.get_contract_abi(ORACLE_CONTRACT_NAME, tmp_path)


class TestBuildOracle:
    """Test that batch support follows the deployed contract's ABI."""

    def test_batch_from_artifact(self, tmp_path) -> None:
        """An artifact declaring updatePriceBatch enables batch commits."""
        write_artifact(tmp_path, MEDIAN_ORACLE_ABI + [UPDATE_PRICE_BATCH_ABI])
        oracle = build_oracle(OfflineContractUtility(), artifacts_dir=str(tmp_path))
        assert oracle.supports_batch is True
        assert oracle.address == ORACLE_ADDRESS

    def test_without_artifact_per_asset(self, tmp_path) -> None:
        """Without an artifact batch support is never assumed."""
        oracle = build_oracle(OfflineContractUtility(), artifacts_dir=str(tmp_path / "missing"))
        assert oracle.supports_batch is False

    async def test_per_asset_commit_path(self, make_context, tmp_path) -> None:
        """An ABI without batch support commits one transaction per asset."""
        write_artifact(tmp_path, MEDIAN_ORACLE_ABI)
        oracle = build_oracle(OfflineContractUtility(), artifacts_dir=str(tmp_path))

        submitted = []

        def submit(call, label):
            submitted.append(label)
            return f"0x{len(submitted):064x}"

        oracle._submit = submit
        oracle.get_price_data = lambda asset_id: None
        oracle.latest_timestamp = lambda: 1_700_000_000

        context = make_context(
            yahoo={
                "EURUSD": PriceSample("EURUSD", 1_234_500, 6, 1_699_999_970),
                "XAUUSD": PriceSample("XAUUSD", 20_345_000, 4, 1_699_999_970),
            }
        )
        summary = await PriceFeeder(context, oracle=oracle).run(["EURUSD", "XAUUSD"], commit=True)

        assert submitted == ["updatePrice(EURUSD)", "updatePrice(XAUUSD)"]
        assert len(summary.tx_hashes) == 2

    def test_abi_missing_required_function(self, tmp_path) -> None:
        """An ABI lacking updatePrice cannot back the oracle client."""
        write_artifact(tmp_path, [entry for entry in MEDIAN_ORACLE_ABI if entry["name"] != "updatePrice"])
        with pytest.raises(ValueError, match="updatePrice"):
            build_oracle(OfflineContractUtility(), artifacts_dir=str(tmp_path))
