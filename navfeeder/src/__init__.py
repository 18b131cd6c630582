"""
NAV Price Feeder - Off-Chain Ingestion Module

This module ingests FX and gold prices and commits them to an on-chain oracle:
- PriceSample: Fixed-point samples and 18-decimal normalization
- AssetFeeds: Asset universe and per-asset provider chains
- FallbackChain: Provider fallback resolution with degraded flags
- CrossChecker: Independent reference quotes and deviation alerts
- PriceFeeder: Samples to committable oracle batch
- NavMonitor: Scheduling daemon with per-asset circuit breakers
- providers: Modular price provider implementations
"""

from .AssetFeeds import ASSET_FEEDS, AssetFeed, resolve_targets
from .AssetStateTracker import AssetState, AssetStateTracker
from .CrossChecker import CrossChecker, CrossCheckOutcome
from .FeederContext import FeederContext, FetchOverride
from .NavMonitor import MonitorOptions, NavMonitor
from .PriceFeeder import CommitError, FeederError, FeederSummary, PriceFeeder
from .PriceSample import NUM_DECIMALS, NormalizedQuote, PriceSample

__all__ = [
    "ASSET_FEEDS",
    "AssetFeed",
    "AssetState",
    "AssetStateTracker",
    "CommitError",
    "CrossCheckOutcome",
    "CrossChecker",
    "FeederContext",
    "FeederError",
    "FeederSummary",
    "FetchOverride",
    "MonitorOptions",
    "NUM_DECIMALS",
    "NavMonitor",
    "NormalizedQuote",
    "PriceFeeder",
    "PriceSample",
    "resolve_targets",
]
