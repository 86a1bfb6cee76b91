import datetime
import logging
from typing import Optional, Set

from invoice_engine.modules.config_models import EngineRules
from invoice_engine.modules.errors import InvalidPeriod
from invoice_engine.modules.expense_ledger import ExpenseLedger
from invoice_engine.modules.ledger import InvoiceLedger
from invoice_engine.modules.line_items import (
    aggregate_expenses,
    grand_total,
    price_expenses,
    price_service,
)
from invoice_engine.modules.models import (
    BusinessData,
    ExpenseItem,
    InvoiceMode,
    PaymentTerms,
    Period,
    ResolvedInvoice,
)
from invoice_engine.modules.period_calendar import billable_quantity, last_day_of, working_days
from invoice_engine.services.currency import CurrencyConverter
from invoice_engine.services.numbering import NumberingService


class InvoiceResolver:
    """Composes numbering, calendar, conversion and aggregation into one invoice.

    Holds no state of its own: the ledgers and the rate cache are passed in
    and only written back by the caller once a resolution succeeded.
    """

    def __init__(
        self,
        business: BusinessData,
        ledger: InvoiceLedger,
        expenses: ExpenseLedger,
        rates,
        rules: Optional[EngineRules] = None,
    ):
        self.business = business
        self.ledger = ledger
        self.expenses = expenses
        self.rates = rates
        self.rules = rules or EngineRules()
        self.logger = logging.getLogger(__name__)
        self.converter = CurrencyConverter(rates)
        self.numbering = NumberingService(ledger, self.rules.calendar)

    def resolve(
        self,
        period: Period,
        mode: InvoiceMode = InvoiceMode.SERVICES,
        off_days_override: Optional[Set[datetime.date]] = None,
    ) -> ResolvedInvoice:
        """Entry point: computes the full invoice for `period` without mutating anything."""
        calendar_rules = self.rules.calendar
        settlement = self.business.settlement_currency
        off_days = set(off_days_override or ())

        # 1. Numbering & Dates
        number = self.numbering.invoice_number(period, mode)
        invoice_date = self.numbering.invoice_date(period)
        terms = self.business.payment_info.terms or PaymentTerms.model_validate(
            self.rules.invoice_defaults.payment_terms
        )
        due = self.numbering.due_date(period, terms)
        days = working_days(period, off_days, calendar_rules.weekend)

        # 2. Line Items
        if mode == InvoiceMode.SERVICES:
            fee = self.business.service_fees
            quantity = billable_quantity(
                period,
                fee.cadence,
                off_days,
                calendar_rules.weekend,
                calendar_rules.hours_per_day,
            )
            lines = [price_service(fee, quantity, self.converter, settlement, last_day_of(period))]
        else:
            recorded = self.expenses.items_for(period)
            if not recorded:
                raise InvalidPeriod(period, "no expenses recorded")
            items = aggregate_expenses(recorded, strict=self.rules.expenses.strict_aggregation)
            lines = price_expenses(items, self.converter, settlement)

        # 3. Totals
        total = grand_total(lines)

        suffix = "_expenses" if mode == InvoiceMode.EXPENSES else ""
        output_name = f"{invoice_date.isoformat()}_{self.business.vendor.slug}{suffix}_invoice_{number}"

        self.logger.info(
            f"Resolved invoice {number} for {period} ({mode.value}): {len(lines)} line(s), {total} {settlement}"
        )
        return ResolvedInvoice(
            invoice_number=number,
            period=period,
            mode=mode,
            invoice_date=invoice_date,
            due_date=due,
            working_days=days,
            line_items=lines,
            grand_total=total,
            settlement_currency=settlement,
            vendor=self.business.vendor,
            client=self.business.client,
            payment_info=self.business.payment_info,
            purchase_order=self.business.purchase_order,
            output_name=output_name,
        )

    def commit(self, period: Period) -> int:
        return self.ledger.commit(period)

    def record_expense(self, item: ExpenseItem, period: Period) -> ExpenseItem:
        return self.expenses.record(item, period, strict=self.rules.expenses.strict_aggregation)
