"""Tests for the command-line interface."""

from datetime import date
from decimal import Decimal
from unittest.mock import AsyncMock, patch

import pytest

from shop_ledger import cli
from shop_ledger.reports import RangeKind


class TestArguments:
    """Tests for argument parsing."""

    def test_report_defaults_to_all_time(self):
        args = cli.build_parser().parse_args(["report", "profit_and_loss"])

        assert cli.resolve_range(args).kind is RangeKind.ALL_TIME

    def test_from_to_imply_custom_range(self):
        args = cli.build_parser().parse_args(
            ["report", "cash_flow", "--range", "This Month", "--from", "2024-01-01", "--to", "2024-01-31"]
        )

        window = cli.resolve_range(args)
        assert window.kind is RangeKind.CUSTOM
        assert (window.start, window.end) == (date(2024, 1, 1), date(2024, 1, 31))

    def test_unknown_report_rejected(self):
        with pytest.raises(SystemExit):
            cli.build_parser().parse_args(["report", "balance_sheet"])

    def test_watch_tables(self):
        args = cli.build_parser().parse_args(["watch", "--table", "orders", "--table", "bills"])

        assert args.tables == ["orders", "bills"]


class TestMain:
    """Tests for the main entry point."""

    @pytest.mark.asyncio
    async def test_report_prints_json(self, capsys):
        rows = [{"net_profit": Decimal("500"), "day": date(2024, 3, 1)}]

        with patch.object(cli, "run_report", new=AsyncMock(return_value=rows)):
            with patch.object(cli, "configure_logging"):
                await cli.main(["report", "profit_and_loss"])

        out = capsys.readouterr().out
        assert '"net_profit": "500"' in out
        assert '"day": "2024-03-01"' in out

    @pytest.mark.asyncio
    async def test_errors_exit_nonzero(self):
        with patch.object(cli, "run_report", new=AsyncMock(side_effect=RuntimeError("down"))):
            with patch.object(cli, "configure_logging"):
                with pytest.raises(SystemExit) as exc_info:
                    await cli.main(["report", "dashboard"])

        assert exc_info.value.code == 1

    @pytest.mark.asyncio
    async def test_custom_range_without_bounds_rejected(self, capsys):
        run_report = AsyncMock()

        with patch.object(cli, "run_report", new=run_report):
            with patch.object(cli, "configure_logging"):
                with pytest.raises(SystemExit) as exc_info:
                    await cli.main(["report", "cash_flow", "--range", "Custom"])

        assert exc_info.value.code == 2
        assert "--from" in capsys.readouterr().err
        run_report.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_inverted_dates_rejected(self):
        with patch.object(cli, "run_report", new=AsyncMock()):
            with patch.object(cli, "configure_logging"):
                with pytest.raises(SystemExit) as exc_info:
                    await cli.main(["report", "cash_flow", "--from", "2024-03-31", "--to", "2024-03-01"])

        assert exc_info.value.code == 2
