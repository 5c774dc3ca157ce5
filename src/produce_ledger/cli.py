"""Command-line entry points for the produce ledger.

All orchestration in this module is limited to argparse wiring, translating
command-line arguments into controller intents, and printing the structures
produced by the view renderer. Keeping the CLI thin means the same command
table can be reused by tests, scripts, or any other front-end.
"""

from __future__ import annotations

import argparse
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Dict, Iterable, List, Mapping, MutableMapping, Optional, Sequence, TextIO
import sys

from . import log, session
from .constants import Product, SortKey, Unit, ViewFilter
from .gateway import HttpGateway, PersistenceError
from .ledger import ValidationError
from .renderer import CalendarView, InventoryView, StatsView, TransactionListView


@dataclass(frozen=True)
class CommandSpec:
    """Describe how a CLI sub-command is configured and executed."""

    name: str
    help_text: str
    register: Callable[[argparse._SubParsersAction[argparse.ArgumentParser]], argparse.ArgumentParser]
    execute: Callable[[session.RuntimeContext, argparse.Namespace, TextIO], int]


FILTER_CHOICES = [member.value for member in ViewFilter] + [member.value for member in Product]


def build_parser() -> argparse.ArgumentParser:
    """Construct the top-level CLI argument parser."""
    parser = argparse.ArgumentParser(
        prog="produce-ledger",
        description="Track produce purchases, sales and stock from the command line.",
    )
    parser.add_argument(
        "--config",
        type=Path,
        default=None,
        help="Optional path to config.ini (searched upwards from the current directory by default).",
    )
    return parser


def configure_subcommands(
    parser: argparse.ArgumentParser,
) -> Mapping[str, CommandSpec]:
    """Wire all CLI sub-commands onto the supplied parser."""
    subparsers = parser.add_subparsers(dest="command", required=True, title="commands")
    write_specs = register_write_commands(subparsers)
    read_specs = register_read_commands(subparsers)
    return build_command_table([*write_specs.values(), *read_specs.values()])


def register_write_commands(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> Dict[str, CommandSpec]:
    """Declare commands that change the ledger or the session."""
    specs = {
        "purchase": register_transaction_command("purchase", "Record a purchase."),
        "sale": register_transaction_command("sale", "Record a sale."),
        "delete": register_delete_command(),
        "login": register_login_command(),
    }
    for spec in specs.values():
        spec.register(subparsers)
    return specs


def register_read_commands(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> Dict[str, CommandSpec]:
    """Declare read-only reporting commands."""
    specs = {
        "list": register_list_command(),
        "stock": register_stock_command(),
        "totals": register_totals_command(),
        "calendar": register_calendar_command(),
    }
    for spec in specs.values():
        spec.register(subparsers)
    return specs


def register_transaction_command(name: str, help_text: str) -> CommandSpec:
    """Register the parser and executor for ``purchase`` or ``sale``."""

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--product", required=True, choices=[member.value for member in Product])
        parser.add_argument("--amount", required=True)
        parser.add_argument("--unit", required=True, choices=[member.value for member in Unit])
        parser.add_argument("--price", required=True, help="Price per unit.")
        parser.add_argument("--date", default=None, help="Business date as YYYY-MM-DD (defaults to today).")
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_transaction)


def register_delete_command() -> CommandSpec:
    """Register the parser and executor for ``delete``."""
    name = "delete"
    help_text = "Delete a transaction by id."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--id", dest="transaction_id", type=int, required=True)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_delete)


def register_login_command() -> CommandSpec:
    """Register the parser and executor for ``login``."""
    name = "login"
    help_text = "Obtain a bearer token from the ledger server."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--username", required=True)
        parser.add_argument("--password", required=True)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_login)


def register_list_command() -> CommandSpec:
    """Register the parser and executor for ``list``."""
    name = "list"
    help_text = "Display transactions, filtered and sorted."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--filter", dest="filter", default=ViewFilter.ALL.value, choices=FILTER_CHOICES)
        parser.add_argument(
            "--sort",
            dest="sort",
            default=SortKey.NEWEST.value,
            choices=[member.value for member in SortKey],
        )
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_list)


def register_stock_command() -> CommandSpec:
    """Register the parser and executor for ``stock``."""
    name = "stock"
    help_text = "Display products on hand and the latest purchases."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_stock)


def register_totals_command() -> CommandSpec:
    """Register the parser and executor for ``totals``."""
    name = "totals"
    help_text = "Display purchase, sale and profit totals."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_totals)


def register_calendar_command() -> CommandSpec:
    """Register the parser and executor for ``calendar``."""
    name = "calendar"
    help_text = "Display daily purchase and sale counts for a month."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--year", type=int, default=None)
        parser.add_argument("--month", type=int, default=None, choices=range(1, 13), metavar="1-12")
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_calendar)


def dispatch_command(
    context: session.RuntimeContext,
    args: argparse.Namespace,
    command_table: Mapping[str, CommandSpec],
    out: TextIO,
) -> int:
    """Dispatch the parsed arguments to the configured executor."""
    if not hasattr(args, "command") or args.command is None:
        raise KeyError("No command specified")
    spec = command_table.get(args.command)
    if spec is None:
        raise KeyError(f"Unknown command: {args.command}")
    return spec.execute(context, args, out)


def build_command_table(
    specs: Iterable[CommandSpec],
) -> MutableMapping[str, CommandSpec]:
    """Build an index of command specifications keyed by command name."""
    table: Dict[str, CommandSpec] = {}
    for spec in specs:
        if spec.name in table:
            raise ValueError(f"Duplicate command name: {spec.name}")
        table[spec.name] = spec
    return table


def translate_transaction(args: argparse.Namespace) -> Mapping[str, object]:
    """Translate CLI args into the form values the controller expects."""
    return {
        "type": args.command,
        "product": args.product,
        "amount": args.amount,
        "unit": args.unit,
        "price": args.price,
        "date": args.date,
    }


# ---------------------------------------------------------------------------
# Text formatting
# ---------------------------------------------------------------------------


def format_transaction_list(view: TransactionListView) -> str:
    if view.empty_state is not None:
        lines = [view.empty_state.title or "", view.empty_state.message]
        return "\n".join(line for line in lines if line)
    lines: List[str] = []
    for item in view.items:
        lines.append(
            f"#{item.id}  {item.date_label}  {item.title:<24} {item.quantity_label:>10}  "
            f"{item.price_label:<22} {item.total_label:>14}"
        )
    return "\n".join(lines)


def format_inventory(view: InventoryView) -> str:
    if view.empty_state is not None:
        return view.empty_state.message
    return "\n".join(f"{card.name:<14} {card.balance_label:>10} {card.unit_label}" for card in view.cards)


def format_stats(view: StatsView) -> str:
    return "\n".join(
        [
            f"Purchases: {view.purchase_total}",
            f"Sales:     {view.sale_total}",
            f"Profit:    {view.profit}",
        ]
    )


def format_calendar(view: CalendarView) -> str:
    lines = [view.title, " ".join(f"{header:>9}" for header in view.headers)]
    for week in view.weeks():
        cells = []
        for cell in week:
            if cell is None:
                cells.append(" " * 9)
                continue
            marker = "*" if cell.is_today else " "
            counts = f"{cell.purchase_count}/{cell.sale_count}" if cell.has_transactions else ""
            cells.append(f"{marker}{cell.day:>2} {counts:>5}")
        lines.append(" ".join(cells))
    lines.append("(purchases/sales per day, * marks today)")
    return "\n".join(lines)


# ---------------------------------------------------------------------------
# Executors
# ---------------------------------------------------------------------------


def run_transaction(context: session.RuntimeContext, args: argparse.Namespace, out: TextIO) -> int:
    """Submit a purchase or sale through the controller."""
    record = context.controller.submit_transaction(translate_transaction(args))
    print(f"Recorded {record.type.value} #{record.id}: {record.product.label}, total {record.total}", file=out)
    return 0


def run_delete(context: session.RuntimeContext, args: argparse.Namespace, out: TextIO) -> int:
    """Delete a transaction; unknown ids are reported but not an error."""
    removed = context.controller.delete_transaction(args.transaction_id)
    if removed:
        print(f"Deleted transaction #{args.transaction_id}", file=out)
    else:
        print(f"No transaction #{args.transaction_id}; nothing deleted", file=out)
    return 0


def run_login(context: session.RuntimeContext, args: argparse.Namespace, out: TextIO) -> int:
    """Exchange credentials for a token on the HTTP backend."""
    gateway = context.gateway
    if not isinstance(gateway, HttpGateway):
        raise RuntimeError("The login command requires [Storage] Backend = http")
    token = gateway.login(args.username, args.password)
    print(token, file=out)
    return 0


def run_list(context: session.RuntimeContext, args: argparse.Namespace, out: TextIO) -> int:
    """Display the filtered and sorted transaction list."""
    context.controller.change_filter(args.filter)
    dashboard = context.controller.change_sort(args.sort)
    print(format_transaction_list(dashboard.transactions), file=out)
    return 0


def run_stock(context: session.RuntimeContext, args: argparse.Namespace, out: TextIO) -> int:
    """Display stock on hand and the latest purchases."""
    dashboard = context.controller.dashboard()
    print("Stock on hand", file=out)
    print(format_inventory(dashboard.inventory), file=out)
    print("\nLatest purchases", file=out)
    print(format_transaction_list(dashboard.recent_purchases), file=out)
    return 0


def run_totals(context: session.RuntimeContext, args: argparse.Namespace, out: TextIO) -> int:
    """Display aggregate totals."""
    print(format_stats(context.controller.dashboard().stats), file=out)
    return 0


def run_calendar(context: session.RuntimeContext, args: argparse.Namespace, out: TextIO) -> int:
    """Display one month of activity, navigating from the current month."""
    controller = context.controller
    year = args.year if args.year is not None else controller.year
    month = args.month if args.month is not None else controller.month
    delta = (year * 12 + month) - (controller.year * 12 + controller.month)
    view = controller.change_month(delta) if delta else controller.calendar()
    print(format_calendar(view), file=out)
    return 0


def handle_cli_error(error: Exception) -> int:
    """Convert raised exceptions into user-friendly exit codes."""
    if isinstance(error, ValidationError):
        log.error("%s", error)
        return 2
    if isinstance(error, FileNotFoundError):
        log.error("%s", error)
        return 3
    if isinstance(error, PersistenceError):
        log.error("%s", error)
        return 4
    log.error("%s", error)
    return 1


def load_runtime_context(config_path: Optional[Path] = None) -> session.RuntimeContext:
    """Resolve the runtime context for a one-shot CLI invocation."""
    return session.load_runtime_context(config_path, background=False)


def main(argv: Sequence[str] | None = None, out: TextIO | None = None) -> int:
    """CLI entry point that orchestrates parsing and execution."""
    out = out or sys.stdout
    parser = build_parser()
    command_table = configure_subcommands(parser)
    args = parser.parse_args(argv)
    context: Optional[session.RuntimeContext] = None
    try:
        context = load_runtime_context(getattr(args, "config", None))
        return dispatch_command(context, args, command_table, out)
    except Exception as error:
        return handle_cli_error(error)
    finally:
        if context is not None:
            context.controller.close()
