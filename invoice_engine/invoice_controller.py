import os
import logging
import datetime
from typing import Optional, Set

from invoice_engine.config import InvoiceConfig
from invoice_engine.modules.errors import EngineError
from invoice_engine.modules.expense_ledger import ExpenseLedger
from invoice_engine.modules.ledger import InvoiceLedger
from invoice_engine.modules.models import BusinessData, ExpenseItem, InvoiceMode, Period, ResolvedInvoice
from invoice_engine.modules.storage import write_yaml
from invoice_engine.services.exchange_rates import ExchangeRateCache, FrankfurterRateProvider
from invoice_engine.services.invoice_resolver import InvoiceResolver

logger = logging.getLogger(__name__)


def open_resolver(config: InvoiceConfig, provider=None, today=None) -> InvoiceResolver:
    """Reads every store from disk; nothing is kept between invocations."""
    rules = config.engine_rules
    if provider is None:
        provider = FrankfurterRateProvider(
            rules.exchange_rates.provider_url, rules.exchange_rates.timeout_seconds
        )
    rates = ExchangeRateCache(
        config.rates_cache_path,
        provider,
        rules=rules.exchange_rates,
        retry=rules.retry,
        today=today or datetime.date.today,
    )
    return InvoiceResolver(
        business=BusinessData.load(config.business_path),
        ledger=InvoiceLedger.load(config.ledger_path),
        expenses=ExpenseLedger.load(config.expenses_path),
        rates=rates,
        rules=rules,
    )


def write_output(config: InvoiceConfig, resolved: ResolvedInvoice) -> str:
    """Writes the resolved data as a YAML sidecar for the rendering layer."""
    os.makedirs(config.output_dir, exist_ok=True)
    out_path = config.output_dir / f"{resolved.output_name}.yaml"
    write_yaml(out_path, resolved.model_dump(mode='json'))
    return str(out_path)


def generate(
    config: InvoiceConfig,
    period: Period,
    mode: InvoiceMode = InvoiceMode.SERVICES,
    off_days: Optional[Set[datetime.date]] = None,
    commit: bool = False,
    export: bool = True,
    provider=None,
    today=None,
):
    """Resolves one invoice, then persists rates, output and (optionally) the ledger.

    Nothing is written unless the resolution as a whole succeeded.
    """
    try:
        resolver = open_resolver(config, provider=provider, today=today)
        logger.info(f"Processing {mode.value} invoice for {period}")

        # 1. Resolution (pure)
        resolved = resolver.resolve(period, mode, off_days)

        # 2. Durable writes, sidecar only once the stores are saved
        resolver.rates.flush()
        if commit:
            resolver.commit(period)
            resolver.ledger.save(config.ledger_path)
        out_path = write_output(config, resolved) if export else None

        return {
            "resolved": resolved,
            "output_path": out_path,
            "committed": commit,
        }

    except EngineError as e:
        logger.error(f"Failed to generate invoice for {period}: {e}", exc_info=True)
        raise


def commit_period(config: InvoiceConfig, period: Period) -> int:
    ledger = InvoiceLedger.load(config.ledger_path)
    number = ledger.commit(period)
    ledger.save(config.ledger_path)
    return number


def mark_period_off(config: InvoiceConfig, period: Period):
    ledger = InvoiceLedger.load(config.ledger_path)
    ledger.mark_period_off(period)
    ledger.save(config.ledger_path)


def record_expense(config: InvoiceConfig, item: ExpenseItem, period: Period) -> ExpenseItem:
    expenses = ExpenseLedger.load(config.expenses_path)
    row = expenses.record(item, period, strict=config.engine_rules.expenses.strict_aggregation)
    expenses.save(config.expenses_path)
    return row
