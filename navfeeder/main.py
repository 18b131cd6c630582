#!/usr/bin/env python3
"""NAV Price Feeder.

Fetches FX and gold prices from a chain of off-chain providers, cross-checks
them against an independent reference and commits them to an on-chain
MedianOracle contract on a schedule.

Configure via CLI flags or env vars. CLI args take precedence.
"""

import argparse
import asyncio
import logging
import os
import sys

from .src.AssetFeeds import list_asset_keys
from .src.ContractUtility import ORACLE_CONTRACT_NAME, ContractUtility
from .src.CrossChecker import CrossChecker, GoogleMarkupFetcher
from .src.E2ERunner import E2ERunner
from .src.FeederContext import FeederContext
from .src.NavMonitor import DEFAULT_INTERVAL_SECONDS, DEFAULT_MAX_CHECKER_ALERTS, MonitorOptions, NavMonitor
from .src.Notifier import WebhookNotifier
from .src.OracleContract import Web3OracleClient
from .src.PriceCache import DEFAULT_CACHE_FILE
from .src.PriceFeeder import FeederError, PriceFeeder, parse_force_timestamp
from .src.Reports import DEFAULT_MAX_SNAPSHOTS, ReportWriter
from .src.providers import API_KEY_ENV_VARS

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)
logger = logging.getLogger(__name__)


def parse_env_api_keys() -> dict[str, str]:
    """Parse API keys from environment variables.

    Looks for the generic ``API_KEY_<PROVIDER>`` / ``APIKEY_<PROVIDER>`` form
    and the provider specific names (``POLYGON_API_KEY``, ``GOLD_API_KEY``,
    ``EXCHANGERATE_API_KEY``). Specific names win.

    :returns: Dict mapping provider names to API keys.
    """
    api_keys = {}
    prefixes = ["API_KEY_", "APIKEY_"]

    for key, value in os.environ.items():
        for prefix in prefixes:
            if key.startswith(prefix) and value:
                provider = key[len(prefix):].lower().replace("_", "-")
                api_keys[provider] = value
                break

    for kind, env_vars in API_KEY_ENV_VARS.items():
        for env_var in env_vars:
            value = os.environ.get(env_var)
            if value:
                api_keys[kind.value] = value
                break

    return api_keys


def env_flag(name: str, default: bool = False) -> bool:
    """Read a boolean env var ("1", "true", "yes", "on")."""
    value = os.environ.get(name)
    if value is None or value == "":
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


def parse_symbols(symbols_str: str | None) -> list[str] | None:
    """Parse a comma-separated symbol list; None or empty means all assets."""
    if not symbols_str:
        return None
    symbols = [s.strip().upper() for s in symbols_str.split(",") if s.strip()]
    return symbols or None


def build_oracle(
    contract_utility: ContractUtility,
    addresses_path: str | None = None,
    artifacts_dir: str | None = None,
) -> Web3OracleClient:
    """Bind the deployed oracle using the ABI from its build artifact.

    :param contract_utility: Connected contract utility.
    :param addresses_path: Deployment file override.
    :param artifacts_dir: Contract artifacts folder override.
    :returns: Web3OracleClient; batch updates only if the artifact declares them.
    """
    address = contract_utility.oracle_address(addresses_path)
    abi = ContractUtility.get_contract_abi(ORACLE_CONTRACT_NAME, artifacts_dir)
    if abi is None:
        logger.warning(f"Using the built-in {ORACLE_CONTRACT_NAME} ABI, committing one transaction per asset")
    oracle = Web3OracleClient(contract_utility.w3, address, abi)
    logger.info(f"Oracle {address}: {'batch' if oracle.supports_batch else 'per-asset'} updates")
    return oracle


def main() -> None:
    """Main entry point for the NAV price feeder CLI."""
    parser = argparse.ArgumentParser(
        description="NAV Price Feeder: FX and gold prices for on-chain oracles",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=f"""
Configured assets:
  {', '.join(list_asset_keys())}

Examples:
  # One dry-run cycle over every asset
  python -m navfeeder.main --once --dry

  # Daemon committing two assets every 5 minutes with 30s jitter
  python -m navfeeder.main --symbols EURUSD,XAUUSD --commit --interval 300 --jitter 30

Environment variables (CLI args take precedence):
  NETWORK, FEEDER_ADDRESSES, FEEDER_ARTIFACTS, FEEDER_CACHE_FILE, FEEDER_SYMBOLS,
  FEEDER_COMMIT, NAV_MONITOR_INTERVAL, NAV_MONITOR_JITTER, MAX_CHECKER_ALERTS,
  SAFE_MODE, OPS_ALERT_WEBHOOK, E2E_COMMAND, E2E_MODE, RPC_URL,
  FEEDER_PRIVATE_KEY, POLYGON_API_KEY, EXCHANGERATE_API_KEY, GOLD_API_KEY, API_KEY_<PROVIDER>
""",
    )

    parser.add_argument(
        "--network",
        type=str,
        help="Network to connect to (localhost, sepolia, polygon, mainnet)",
        default=os.environ.get("NETWORK") or "localhost",
    )

    parser.add_argument(
        "--addresses",
        type=str,
        help="Deployment file with contract addresses (default: deployments/<network>.json)",
        default=os.environ.get("FEEDER_ADDRESSES"),
    )

    parser.add_argument(
        "--artifacts",
        type=str,
        help="Contract artifacts folder (default: artifacts/contracts)",
        default=os.environ.get("FEEDER_ARTIFACTS"),
    )

    parser.add_argument(
        "--symbols",
        type=str,
        help="Comma-separated asset keys (default: every configured asset)",
        default=os.environ.get("FEEDER_SYMBOLS"),
    )

    parser.add_argument(
        "--interval",
        type=float,
        help=f"Seconds between cycles (default: {DEFAULT_INTERVAL_SECONDS:g})",
        default=float(os.environ.get("NAV_MONITOR_INTERVAL") or DEFAULT_INTERVAL_SECONDS),
    )

    parser.add_argument(
        "--jitter",
        type=float,
        help="Max random deviation from the interval in seconds (default: 0)",
        default=float(os.environ.get("NAV_MONITOR_JITTER") or "0"),
    )

    commit_group = parser.add_mutually_exclusive_group()
    commit_group.add_argument(
        "--commit",
        dest="commit",
        action="store_true",
        help="Commit prices on-chain",
    )
    commit_group.add_argument(
        "--dry",
        dest="commit",
        action="store_false",
        help="Fetch and report only (default unless FEEDER_COMMIT=1)",
    )
    parser.set_defaults(commit=env_flag("FEEDER_COMMIT"))

    loop_group = parser.add_mutually_exclusive_group()
    loop_group.add_argument(
        "--once",
        dest="once",
        action="store_true",
        help="Run a single cycle and exit",
    )
    loop_group.add_argument(
        "--loop",
        dest="once",
        action="store_false",
        help="Run cycles until interrupted (default)",
    )
    parser.set_defaults(once=False)

    parser.add_argument(
        "--force-timestamp",
        dest="force_timestamp",
        type=str,
        help="Override sample timestamps: 'now' or unix seconds",
        default=None,
    )

    parser.add_argument(
        "--reports-dir",
        dest="reports_dir",
        type=str,
        help="Directory for run reports (default: reports)",
        default=os.environ.get("REPORTS_DIR") or "reports",
    )

    parser.add_argument(
        "--cache-file",
        dest="cache_file",
        type=str,
        help=f"JSON file persisting cached and last known prices (default: {DEFAULT_CACHE_FILE})",
        default=os.environ.get("FEEDER_CACHE_FILE") or DEFAULT_CACHE_FILE,
    )

    parser.add_argument(
        "--fetch-timeout",
        dest="fetch_timeout",
        type=float,
        help="Timeout for individual provider requests in seconds (default: provider specific)",
        default=float(os.environ["FETCH_TIMEOUT"]) if os.environ.get("FETCH_TIMEOUT") else None,
    )

    parser.add_argument(
        "-v", "--verbose",
        action="store_true",
        help="Enable verbose (DEBUG) logging",
    )

    args = parser.parse_args()

    # Configure logging level
    if args.verbose:
        logging.getLogger().setLevel(logging.DEBUG)

    # Validate arguments
    if args.interval <= 0:
        parser.error("--interval must be positive")

    if args.jitter < 0:
        parser.error("--jitter must not be negative")

    try:
        force_timestamp = parse_force_timestamp(args.force_timestamp)
    except FeederError as e:
        parser.error(str(e))

    try:
        max_checker_alerts = int(os.environ.get("MAX_CHECKER_ALERTS") or DEFAULT_MAX_CHECKER_ALERTS)
    except ValueError:
        parser.error("MAX_CHECKER_ALERTS must be an integer")

    options = MonitorOptions(
        network=args.network,
        symbols=parse_symbols(args.symbols),
        interval=args.interval,
        jitter=args.jitter,
        commit=args.commit,
        once=args.once,
        force_timestamp=force_timestamp,
        max_checker_alerts=max_checker_alerts,
        safe_mode=env_flag("SAFE_MODE"),
    )
    api_keys = parse_env_api_keys()
    webhook_url = os.environ.get("OPS_ALERT_WEBHOOK")
    e2e_command = os.environ.get("E2E_COMMAND")

    # Log configuration
    logger.info("=" * 60)
    logger.info("NAV Price Feeder - Monitor")
    logger.info("=" * 60)
    logger.info(f"Network:           {options.network}")
    logger.info(f"Assets:            {', '.join(options.symbols) if options.symbols else 'all'}")
    logger.info(f"Interval:          {options.interval:g}s (jitter {options.jitter:g}s)")
    logger.info(f"Mode:              {'commit' if options.commit else 'dry-run'}{' (once)' if options.once else ''}")
    logger.info(f"Max Checker Alerts: {options.max_checker_alerts}")
    logger.info(f"Reports:           {args.reports_dir}")
    logger.info(f"Price Cache:       {args.cache_file}")
    if options.safe_mode:
        logger.info("SAFE_MODE:         active (commits and E2E disabled)")
    if api_keys:
        logger.info(f"API Keys:          {', '.join(api_keys.keys())}")
    logger.info(f"Webhook:           {'configured' if webhook_url else 'disabled'}")
    logger.info(f"E2E Command:       {e2e_command or 'disabled'}")
    logger.info("=" * 60)

    try:
        oracle = None
        if options.commit and not options.safe_mode:
            contract_utility = ContractUtility(options.network)
            oracle = build_oracle(contract_utility, args.addresses, args.artifacts)

        context = FeederContext.create(api_keys=api_keys, cache_path=args.cache_file, timeout=args.fetch_timeout)
        checker = CrossChecker(GoogleMarkupFetcher())
        monitor = NavMonitor(
            options=options,
            context=context,
            feeder=PriceFeeder(context, oracle=oracle, checker=checker),
            checker=checker,
            writer=ReportWriter(args.reports_dir, max_snapshots=DEFAULT_MAX_SNAPSHOTS),
            notifier=WebhookNotifier(webhook_url),
            e2e=E2ERunner(e2e_command, args.reports_dir, mode=os.environ.get("E2E_MODE")) if e2e_command else None,
        )
        asyncio.run(monitor.run())
    except KeyboardInterrupt:
        logger.info("Shutting down...")
    except Exception as e:
        logger.error(f"Fatal error: {e}")
        sys.exit(1)


if __name__ == "__main__":
    main()
