import datetime
import logging
from decimal import Decimal, ROUND_HALF_EVEN
from typing import Optional

from pydantic import BaseModel

logger = logging.getLogger(__name__)

DEFAULT_MINOR_UNITS = 2

# ISO 4217 currencies whose minor unit is not two decimals
MINOR_UNITS = {
    # Zero decimal currencies
    "BIF": 0, "CLP": 0, "DJF": 0, "GNF": 0, "ISK": 0, "JPY": 0, "KMF": 0,
    "KRW": 0, "PYG": 0, "RWF": 0, "UGX": 0, "UYI": 0, "VND": 0, "VUV": 0,
    "XAF": 0, "XOF": 0, "XPF": 0,
    # Three decimal currencies
    "BHD": 3, "IQD": 3, "JOD": 3, "KWD": 3, "LYD": 3, "OMR": 3, "TND": 3,
    # Four decimal currencies
    "CLF": 4, "UYW": 4,
}


def minor_units(currency: str) -> int:
    return MINOR_UNITS.get(currency.upper(), DEFAULT_MINOR_UNITS)


def quantum(currency: str) -> Decimal:
    """Exponent for Decimal.quantize() at this currency's precision."""
    return Decimal(1).scaleb(-minor_units(currency))


def round_to_minor_unit(amount: Decimal, currency: str) -> Decimal:
    return amount.quantize(quantum(currency), rounding=ROUND_HALF_EVEN)


class ConvertedAmount(BaseModel):
    amount: Decimal
    currency: str
    rate: Optional[Decimal] = None
    rate_date: Optional[datetime.date] = None
    approximate: bool = False


class CurrencyConverter:
    """Converts amounts into a target currency through the rate cache."""

    def __init__(self, rates):
        self.rates = rates

    def convert(self, amount: Decimal, from_currency: str, to_currency: str, date: datetime.date) -> Decimal:
        return self.convert_with_quote(amount, from_currency, to_currency, date).amount

    def convert_with_quote(
        self, amount: Decimal, from_currency: str, to_currency: str, date: datetime.date
    ) -> ConvertedAmount:
        # No rate is recorded when nothing had to be looked up
        if amount == 0:
            return ConvertedAmount(amount=round_to_minor_unit(Decimal(0), to_currency), currency=to_currency)
        if from_currency == to_currency:
            return ConvertedAmount(amount=round_to_minor_unit(amount, to_currency), currency=to_currency)

        quote = self.rates.quote(date, from_currency, to_currency)
        converted = round_to_minor_unit(amount * quote.rate, to_currency)
        if quote.approximate:
            logger.warning(
                f"Converted {amount} {from_currency} using approximate rate from {quote.rate_date}"
            )
        return ConvertedAmount(
            amount=converted,
            currency=to_currency,
            rate=quote.rate,
            rate_date=quote.rate_date,
            approximate=quote.approximate,
        )
