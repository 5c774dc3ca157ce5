"""Unit tests describing the CLI presentation layer contract."""

from __future__ import annotations

import argparse
from io import StringIO
from pathlib import Path
from unittest.mock import Mock

import pytest

from produce_ledger import cli, session
from produce_ledger.gateway import AuthenticationRequired, HttpGateway, PersistenceError
from produce_ledger.ledger import ValidationError


WRITE_COMMANDS = {"purchase", "sale", "delete", "login"}
READ_COMMANDS = {"list", "stock", "totals", "calendar"}


@pytest.fixture
def cli_parser() -> argparse.ArgumentParser:
    return cli.build_parser()


@pytest.fixture
def subparsers_action(cli_parser):
    return cli_parser.add_subparsers(dest="command")


@pytest.fixture
def runtime_context(controller, gateway) -> session.RuntimeContext:
    """Runtime context backed by the mock gateway and inline saves."""

    return session.RuntimeContext(settings=Mock(name="settings"), gateway=gateway, controller=controller)


def _parse(argv: list[str]) -> argparse.Namespace:
    parser = cli.build_parser()
    cli.configure_subcommands(parser)
    return parser.parse_args(argv)


def _run(context: session.RuntimeContext, argv: list[str]) -> tuple[int, str]:
    parser = cli.build_parser()
    table = cli.configure_subcommands(parser)
    out = StringIO()
    exit_code = cli.dispatch_command(context, parser.parse_args(argv), table, out)
    return exit_code, out.getvalue()


# ---------------------------------------------------------------------------
# Parser construction
# ---------------------------------------------------------------------------


def test_build_parser_sets_program_metadata():
    """build_parser should set user-facing program metadata."""

    parser = cli.build_parser()
    assert isinstance(parser, argparse.ArgumentParser)
    assert parser.prog == "produce-ledger"
    assert "produce" in (parser.description or "")


def test_configure_subcommands_registers_every_command(cli_parser):
    command_table = cli.configure_subcommands(cli_parser)

    assert set(command_table) == WRITE_COMMANDS | READ_COMMANDS


def test_register_write_commands_returns_command_specs(subparsers_action):
    specs = cli.register_write_commands(subparsers_action)

    assert set(specs) == WRITE_COMMANDS
    assert all(isinstance(spec, cli.CommandSpec) for spec in specs.values())
    assert WRITE_COMMANDS <= set(subparsers_action.choices)


def test_register_read_commands_returns_command_specs(subparsers_action):
    specs = cli.register_read_commands(subparsers_action)

    assert set(specs) == READ_COMMANDS
    assert READ_COMMANDS <= set(subparsers_action.choices)


def test_transaction_command_configures_arguments():
    args = _parse(["sale", "--product", "plum", "--amount", "2,5", "--unit", "kg", "--price", "80"])

    assert args.command == "sale"
    assert args.amount == "2,5"
    assert args.date is None


def test_transaction_command_rejects_unknown_product():
    with pytest.raises(SystemExit):
        _parse(["purchase", "--product", "mango", "--amount", "1", "--unit", "kg", "--price", "1"])


def test_list_command_defaults():
    args = _parse(["list"])

    assert (args.filter, args.sort) == ("all", "newest")


def test_list_command_accepts_product_filter():
    assert _parse(["list", "--filter", "cherry", "--sort", "price"]).filter == "cherry"


def test_delete_command_parses_integer_id():
    assert _parse(["delete", "--id", "1718000000000"]).transaction_id == 1718000000000


def test_translate_transaction_returns_form_values():
    args = _parse(["purchase", "--product", "cherry", "--amount", "10", "--unit", "kg", "--price", "100"])

    assert cli.translate_transaction(args) == {
        "type": "purchase",
        "product": "cherry",
        "amount": "10",
        "unit": "kg",
        "price": "100",
        "date": None,
    }


# ---------------------------------------------------------------------------
# Dispatch helpers
# ---------------------------------------------------------------------------


def test_dispatch_command_handles_unknown_commands(runtime_context):
    with pytest.raises(KeyError):
        cli.dispatch_command(runtime_context, argparse.Namespace(command="unknown"), {}, StringIO())


def test_build_command_table_detects_duplicate_commands():
    specs = [
        cli.CommandSpec("alpha", "A", lambda s: s.add_parser("alpha"), lambda c, a, o: 0),
        cli.CommandSpec("alpha", "Duplicate", lambda s: s.add_parser("alpha"), lambda c, a, o: 0),
    ]
    with pytest.raises(ValueError):
        cli.build_command_table(specs)


# ---------------------------------------------------------------------------
# Executors
# ---------------------------------------------------------------------------


def test_run_transaction_records_purchase(runtime_context, gateway):
    exit_code, output = _run(
        runtime_context,
        ["purchase", "--product", "cherry", "--amount", "10", "--unit", "kg", "--price", "100"],
    )

    assert exit_code == 0
    assert "Recorded purchase" in output
    assert len(runtime_context.store) == 1
    gateway.save.assert_called_once()


def test_run_transaction_surfaces_validation_errors(runtime_context):
    with pytest.raises(ValidationError):
        _run(runtime_context, ["sale", "--product", "plum", "--amount", "0", "--unit", "kg", "--price", "5"])


def test_run_delete_reports_unknown_id(runtime_context):
    exit_code, output = _run(runtime_context, ["delete", "--id", "42"])

    assert exit_code == 0
    assert "nothing deleted" in output


def test_run_list_prints_empty_state_for_filter(runtime_context):
    _, output = _run(runtime_context, ["list", "--filter", "purchase"])

    assert "No transactions found" in output
    assert "You have no purchases" in output


def test_run_list_prints_items(runtime_context):
    runtime_context.controller.submit_transaction(
        {"type": "sale", "product": "pear", "amount": "3", "unit": "pcs", "price": "1.5"}
    )

    _, output = _run(runtime_context, ["list"])

    assert "Sale: Pears" in output
    assert "+4.50 RUB" in output


def test_run_stock_and_totals(runtime_context):
    runtime_context.controller.submit_transaction(
        {"type": "purchase", "product": "cherry", "amount": "10", "unit": "kg", "price": "100"}
    )

    _, stock = _run(runtime_context, ["stock"])
    _, totals = _run(runtime_context, ["totals"])

    assert "Cherry" in stock
    assert "10.00 kg" in stock
    assert "Purchases: 1000.00 RUB" in totals
    assert "Profit:    -1000.00 RUB" in totals


def test_run_calendar_navigates_to_requested_month(runtime_context):
    _, output = _run(runtime_context, ["calendar", "--year", "2025", "--month", "1"])

    assert output.startswith("January 2025")
    assert (runtime_context.controller.year, runtime_context.controller.month) == (2025, 1)


def test_run_login_requires_http_backend(runtime_context):
    with pytest.raises(RuntimeError):
        _run(runtime_context, ["login", "--username", "ann", "--password", "x"])


def test_run_login_prints_token(controller):
    gateway = Mock(spec=HttpGateway)
    gateway.login.return_value = "fresh-token"
    context = session.RuntimeContext(settings=Mock(), gateway=gateway, controller=controller)

    exit_code, output = _run(context, ["login", "--username", "ann", "--password", "secret"])

    assert exit_code == 0
    assert output.strip() == "fresh-token"
    gateway.login.assert_called_once_with("ann", "secret")


# ---------------------------------------------------------------------------
# Error handling and entry point
# ---------------------------------------------------------------------------


@pytest.mark.parametrize(
    "error, expected",
    [
        (ValidationError("invalid"), 2),
        (FileNotFoundError("missing"), 3),
        (PersistenceError("offline"), 4),
        (AuthenticationRequired("expired"), 4),
        (RuntimeError("schema"), 1),
        (KeyError("DataFile"), 1),
    ],
)
def test_handle_cli_error_returns_exit_code(error: Exception, expected: int, caplog: pytest.LogCaptureFixture):
    """handle_cli_error should convert exceptions into exit codes."""

    caplog.set_level("ERROR")
    assert cli.handle_cli_error(error) == expected
    assert caplog.records


def test_load_runtime_context_uses_inline_saves(config_file, monkeypatch):
    captured = {}

    def fake_loader(path: Path | None, *, background: bool) -> object:
        captured["path"] = path
        captured["background"] = background
        return "context"

    monkeypatch.setattr(session, "load_runtime_context", fake_loader)

    assert cli.load_runtime_context(config_file) == "context"
    assert captured == {"path": config_file, "background": False}


def test_main_executes_command_and_closes_controller(monkeypatch, runtime_context):
    monkeypatch.setattr(cli, "load_runtime_context", lambda path=None: runtime_context)
    runtime_context.controller.saver = Mock()
    out = StringIO()

    assert cli.main(["totals"], out=out) == 0
    assert "Profit:" in out.getvalue()
    runtime_context.controller.saver.close.assert_called_once_with()


def test_main_maps_errors_to_exit_codes(monkeypatch, runtime_context):
    monkeypatch.setattr(cli, "load_runtime_context", lambda path=None: runtime_context)

    handled = {}

    def fake_handle(error: Exception) -> int:
        handled["error"] = error
        return 99

    monkeypatch.setattr(cli, "handle_cli_error", fake_handle)
    exit_code = cli.main(
        ["sale", "--product", "plum", "--amount", "-1", "--unit", "kg", "--price", "5"], out=StringIO()
    )

    assert exit_code == 99
    assert isinstance(handled["error"], ValidationError)


def test_main_missing_config_exits_with_code_three(tmp_path, monkeypatch):
    monkeypatch.chdir(tmp_path)

    assert cli.main(["totals"], out=StringIO()) == 3
