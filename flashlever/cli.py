"""Command-line interface for the flash leverage simulator."""
from __future__ import annotations

import argparse
import asyncio
import sys

from .config import AppConfig, load_config
from .exceptions import FlashLeverError
from .logging_setup import configure_logging
from .services import Simulation, fetch_live_prices
from .services.simulation import from_units


def build_parser() -> argparse.ArgumentParser:
    """Build the argparse CLI parser."""
    parser = argparse.ArgumentParser(
        prog="flashlever",
        description="Flash-loan leverage engine simulator",
    )
    parser.add_argument(
        "--config",
        default=None,
        help="Path to config.yaml (default: config.yaml in project root)",
    )
    parser.add_argument(
        "--log-level",
        default="INFO",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Logging level (default: INFO)",
    )
    parser.add_argument(
        "--live-prices",
        action="store_true",
        help="Seed oracles with Pyth prices instead of configured ones",
    )

    sub = parser.add_subparsers(dest="command")

    sub.add_parser("markets", help="List registered markets and LTV bounds")

    quote_parser = sub.add_parser("quote", help="Flash-loan size for a leverage request")
    _add_position_args(quote_parser)

    simulate_parser = sub.add_parser(
        "simulate", help="Open and close a position, print the settlement"
    )
    _add_position_args(simulate_parser)
    simulate_parser.add_argument(
        "--exit-price",
        type=float,
        default=None,
        help="Collateral price (in loan token) at close",
    )

    return parser


def _add_position_args(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("collateral", help="Collateral token symbol")
    parser.add_argument("loan", help="Loan token symbol")
    parser.add_argument("amount", type=float, help="Collateral amount (whole tokens)")
    parser.add_argument("ltv", type=float, help="Desired LTV, e.g. 0.8")


def _build_simulation(config: AppConfig, live_prices: bool) -> Simulation:
    prices = asyncio.run(fetch_live_prices(config)) if live_prices else None
    return Simulation(config, prices)


def _run(args: argparse.Namespace) -> None:
    """Execute the selected command."""
    configure_logging(args.log_level)
    config = load_config(args.config)
    sim = _build_simulation(config, args.live_prices)

    if args.command == "markets":
        for row in sim.market_rows():
            print(
                f"{row['pair']:<16} lltv={row['lltv']:.4f} max_ltv={row['max_ltv']:.4f} "
                f"liquidity={row['liquidity']:,.4f} borrowed={row['borrowed']:,.4f}"
            )
    elif args.command == "quote":
        loan_amount = sim.quote(args.collateral, args.loan, args.amount, args.ltv)
        decimals = sim.token(args.loan).decimals
        print(
            f"Flash loan: {from_units(loan_amount, decimals):,.6f} {args.loan}"
        )
    elif args.command == "simulate":
        result = sim.run_round_trip(
            args.collateral, args.loan, args.amount, args.ltv, args.exit_price
        )
        print(f"Position {result['position_id']} via proxy {result['proxy']}")
        print(f"  Collateral:            {result['collateral']:,.6f} {args.collateral}")
        print(f"  Leveraged collateral:  {result['leveraged_collateral']:,.6f} {args.collateral}")
        print(f"  Deposit value:         {result['deposit_value']:,.6f} {args.loan}")
        print(f"  Returned:              {result['returned']:,.6f} {args.loan}")
        print(f"  To user:               {result['to_user']:,.6f} {args.loan}")
        print(f"  Fee:                   {result['fee']:,.6f} {args.loan}")
    else:
        build_parser().print_help()
        sys.exit(1)


def main() -> None:
    """Entry point."""
    parser = build_parser()
    args = parser.parse_args()

    if not args.command:
        parser.print_help()
        sys.exit(1)

    try:
        _run(args)
    except FlashLeverError as e:
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(2)
