"""Unit tests for PriceSample and normalization helpers."""

import pytest
from web3 import Web3

from navfeeder.src.PriceSample import (
    NUM_DECIMALS,
    NormalizedQuote,
    PriceSample,
    compute_asset_id,
    infer_decimals,
    normalize_to_18,
    parse_price,
    sample_from_float,
)


class TestPriceSample:
    """Test PriceSample construction."""

    def test_defaults(self) -> None:
        """Samples default to non-degraded regular prices."""
        sample = PriceSample("EURUSD", 1_234_500, 6, 1_700_000_000)
        assert sample.degraded is False
        assert sample.source == "regular"

    def test_negative_value_rejected(self) -> None:
        """Negative values must be rejected."""
        with pytest.raises(ValueError, match="non-negative"):
            PriceSample("EURUSD", -1, 6, 1_700_000_000)

    def test_negative_decimals_rejected(self) -> None:
        """Negative decimals must be rejected."""
        with pytest.raises(ValueError, match="Decimals"):
            PriceSample("EURUSD", 1, -1, 1_700_000_000)

    def test_as_float(self) -> None:
        """as_float should undo the fixed-point scaling."""
        sample = PriceSample("EURUSD", 1_234_500, 6, 0)
        assert sample.as_float() == pytest.approx(1.2345)

    def test_as_degraded_copy(self) -> None:
        """as_degraded returns a flagged copy and keeps the original."""
        sample = PriceSample("EURUSD", 1, 0, 0)
        degraded = sample.as_degraded()
        assert degraded.degraded is True
        assert sample.degraded is False
        assert degraded.as_degraded() is degraded


class TestParsePrice:
    """Test decimal string parsing."""

    def test_infer_decimals(self) -> None:
        """Decimals are inferred from the fractional length."""
        assert parse_price("1.2345") == (12345, 4)
        assert parse_price("42") == (42, 0)

    def test_explicit_decimals_pad(self) -> None:
        """Explicit decimals pad short fractions."""
        assert parse_price("1.2345", 6) == (1_234_500, 6)

    def test_extra_digits_truncated(self) -> None:
        """Digits beyond the target decimals are truncated, not rounded."""
        assert parse_price("1.23459", 4) == (12345, 4)

    def test_inferred_decimals_capped(self) -> None:
        """Inferred decimals never exceed 18."""
        assert infer_decimals("0." + "1" * 25) == NUM_DECIMALS
        amount, decimals = parse_price("0." + "1" * 25)
        assert decimals == 18
        assert amount == int("1" * 18)

    @pytest.mark.parametrize("raw", ["abc", "", "-1.5", "NaN", "Infinity"])
    def test_invalid_strings(self, raw: str) -> None:
        """Non-numeric, negative and non-finite strings are rejected."""
        with pytest.raises(ValueError, match="Invalid price string"):
            parse_price(raw)

    def test_sample_from_float(self) -> None:
        """Floats are rounded to the provider precision."""
        sample = sample_from_float("CNYUSD", 0.140845070, 8, 100, degraded=True, source="close")
        assert sample.value == 14084507
        assert sample.decimals == 8
        assert sample.degraded is True
        assert sample.source == "close"


class TestNormalization:
    """Test 18-decimal rescaling."""

    def test_scale_up_exact(self) -> None:
        """A 6-decimal value is multiplied by 10**12 exactly."""
        assert normalize_to_18(1_234_500, 6) == 1_234_500 * 10**12
        assert normalize_to_18(1_234_500, 6) == 1234500000000000000

    def test_identity(self) -> None:
        """18-decimal values pass through."""
        assert normalize_to_18(123, 18) == 123

    def test_scale_down_truncates(self) -> None:
        """Values with more than 18 decimals are truncated toward zero."""
        assert normalize_to_18(1_999, 21) == 1

    def test_quote_decimals(self) -> None:
        """Normalized quotes always report 18 decimals."""
        quote = NormalizedQuote("EURUSD", "EURUSD", b"\x00" * 32, 1, 0, False, "yahoo")
        assert quote.decimals == 18


class TestAssetId:
    """Test on-chain asset id derivation."""

    def test_keccak_of_upper_key(self) -> None:
        """The id is keccak256 of the upper-case key."""
        assert compute_asset_id("xauusd") == bytes(Web3.keccak(text="XAUUSD"))
        assert len(compute_asset_id("XAUUSD")) == 32
