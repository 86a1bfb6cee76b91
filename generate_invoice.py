#!/usr/bin/env -S uv run --script

import sys
import argparse
import datetime
import questionary

from invoice_engine.config import InvoiceConfig, setup_logging
from invoice_engine.invoice_controller import generate, mark_period_off, record_expense, commit_period
from invoice_engine.modules.errors import EngineError
from invoice_engine.modules.models import ExpenseItem, InvoiceMode, Period
from invoice_engine.modules.period_calendar import parse_period


def resolve_period_arg(value, today=None):
    """Accepts YYYY-MM, 'current' or 'last'."""
    if value == "current":
        return Period.current(today)
    if value == "last":
        return Period.last(today)
    return parse_period(value)


def expense_period(value, transaction_date, today=None):
    """Period an expense is filed under: the given one, else the month it was spent in."""
    if value is None:
        return Period.current(transaction_date)
    return resolve_period_arg(value, today)


def parse_date(value):
    try:
        return datetime.date.fromisoformat(value)
    except ValueError:
        raise argparse.ArgumentTypeError(f"Incorrect date {value!r}, should be YYYY-MM-DD")


def print_invoice(resolved):
    print(f"Invoice Number: {resolved.invoice_number}")
    print(f"Period: {resolved.period}  Invoice Date: {resolved.invoice_date}  Due: {resolved.due_date}")
    print(f"Working Days: {resolved.working_days}")
    for line in resolved.line_items:
        approx = " (approx. rate)" if line.rate_is_approximate else ""
        print(
            f"  {line.transaction_date}  {line.name:<30} {line.quantity:>8} x {line.unit_price} {line.currency}"
            f"  = {line.total_cost} {resolved.settlement_currency}{approx}"
        )
    print(f"Total: {resolved.grand_total} {resolved.settlement_currency}")


def handle_generate(config, args):
    period = resolve_period_arg(args.period or "last")
    mode = InvoiceMode.EXPENSES if args.expenses else InvoiceMode.SERVICES
    off_days = set(args.off_day or [])

    # Dry run first so the ledger only moves once the user has seen the result
    result = generate(config, period, mode, off_days, commit=False)
    print_invoice(result["resolved"])
    if result["output_path"]:
        print(f"Wrote: {result['output_path']}")

    if args.commit:
        if args.yes or questionary.confirm(
            f"Commit invoice {result['resolved'].invoice_number} for {period}?", default=True
        ).ask():
            number = commit_period(config, period)
            print(f"Committed invoice {number} for {period}")


def handle_expense(config, args):
    name, price, currency, qty, date = args.expense
    item = ExpenseItem(
        name=name,
        unit_price=price,
        currency=currency,
        quantity=qty,
        transaction_date=datetime.date.fromisoformat(date),
        note=args.note,
    )
    period = expense_period(args.period, item.transaction_date)
    row = record_expense(config, item, period)
    print(f"Recorded for {period}: {row.name} x{row.quantity} @ {row.unit_price} {row.currency}")


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="Resolve invoice data for a billing period.")
    parser.add_argument("period", nargs="?", default=None, help="Target period: YYYY-MM, 'current' or 'last' (default for invoices)")
    parser.add_argument("--expenses", action="store_true", help="Invoice recorded expenses instead of services")
    parser.add_argument("--off-day", action="append", type=parse_date, help="Out-of-office date (YYYY-MM-DD), repeatable")
    parser.add_argument("--commit", action="store_true", help="Advance the invoice ledger after generation")
    parser.add_argument("--yes", action="store_true", help="Do not ask for confirmation")
    parser.add_argument("--mark-off", metavar="PERIOD", help="Mark a period (YYYY-MM) as off")
    parser.add_argument("--expense", nargs=5, metavar=("NAME", "PRICE", "CURRENCY", "QTY", "DATE"), help="Record an expense (in the month of DATE unless a period is given)")
    parser.add_argument("--note", help="Note stored with --expense")

    args = parser.parse_args()

    config = InvoiceConfig.load_default()
    setup_logging(config)

    try:
        if args.mark_off:
            period = parse_period(args.mark_off)
            mark_period_off(config, period)
            print(f"Marked {period} as off")
        elif args.expense:
            handle_expense(config, args)
        else:
            handle_generate(config, args)
    except EngineError as e:
        print(f"Failed: {e}")
        sys.exit(1)
    except ValueError as e:
        print(f"Invalid input: {e}")
        sys.exit(1)
    except (KeyboardInterrupt, EOFError):
        print("\nCancelled.")
        sys.exit(1)
