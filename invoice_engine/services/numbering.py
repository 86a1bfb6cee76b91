import datetime
import logging

from invoice_engine.modules.config_models import CalendarRules
from invoice_engine.modules.ledger import InvoiceLedger
from invoice_engine.modules.models import InvoiceMode, PaymentTerms, Period
from invoice_engine.modules.period_calendar import due_date, last_business_day_of, last_day_of

logger = logging.getLogger(__name__)


class NumberingService:
    """Invoice number and dates for a billing period."""

    def __init__(self, ledger: InvoiceLedger, calendar_rules: CalendarRules):
        self.ledger = ledger
        self.calendar_rules = calendar_rules

    def invoice_number(self, period: Period, mode: InvoiceMode = InvoiceMode.SERVICES) -> int:
        """Expenses invoices follow the services invoice of the same period."""
        number = self.ledger.number_for(period)
        if mode == InvoiceMode.EXPENSES:
            number += 1
        logger.debug(f"Invoice number for {period}: {number} (anchor {self.ledger.anchor})")
        return number

    def invoice_date(self, period: Period) -> datetime.date:
        if self.calendar_rules.invoice_on_last_business_day:
            return last_business_day_of(period, self.calendar_rules.weekend)
        return last_day_of(period)

    def due_date(self, period: Period, terms: PaymentTerms) -> datetime.date:
        return due_date(self.invoice_date(period), terms)
