"""Unit tests for CLI argument parsing."""
from __future__ import annotations

import pytest

from flashlever.cli import build_parser


class TestBuildParser:
    def test_markets_command(self) -> None:
        parser = build_parser()
        args = parser.parse_args(["markets"])
        assert args.command == "markets"

    def test_quote_command(self) -> None:
        parser = build_parser()
        args = parser.parse_args(["quote", "WSTETH", "WETH", "10", "0.8"])
        assert args.command == "quote"
        assert args.collateral == "WSTETH"
        assert args.loan == "WETH"
        assert args.amount == 10.0
        assert args.ltv == 0.8

    def test_simulate_default_exit_price(self) -> None:
        parser = build_parser()
        args = parser.parse_args(["simulate", "WSTETH", "WETH", "1", "0.5"])
        assert args.command == "simulate"
        assert args.exit_price is None

    def test_simulate_exit_price(self) -> None:
        parser = build_parser()
        args = parser.parse_args(
            ["simulate", "WSTETH", "WETH", "1", "0.5", "--exit-price", "1.3"]
        )
        assert args.exit_price == 1.3

    def test_quote_requires_ltv(self) -> None:
        parser = build_parser()
        with pytest.raises(SystemExit):
            parser.parse_args(["quote", "WSTETH", "WETH", "10"])

    def test_global_flags(self) -> None:
        parser = build_parser()
        args = parser.parse_args(
            ["--config", "/tmp/c.yaml", "--log-level", "DEBUG", "--live-prices", "markets"]
        )
        assert args.config == "/tmp/c.yaml"
        assert args.log_level == "DEBUG"
        assert args.live_prices is True

    def test_no_command(self) -> None:
        parser = build_parser()
        args = parser.parse_args([])
        assert args.command is None
        assert args.live_prices is False
