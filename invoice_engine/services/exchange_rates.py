import os
import time
import logging
import datetime
import threading
from decimal import Decimal, InvalidOperation
from typing import Callable, Dict, Optional, Union

import requests
from pydantic import BaseModel

from invoice_engine.modules.config_models import ExchangeRateRules, RetryPolicy
from invoice_engine.modules.errors import InvalidDate, PersistenceError, RateUnavailable
from invoice_engine.modules.storage import read_json, write_json

logger = logging.getLogger(__name__)

# date -> from currency -> to currency -> rate
RateTable = Dict[datetime.date, Dict[str, Dict[str, Decimal]]]


class RateQuote(BaseModel):
    rate: Decimal
    rate_date: datetime.date
    approximate: bool = False


class FetchOutcome(BaseModel):
    """Result of a single provider request."""
    rate: Optional[Decimal] = None
    transient: bool = False
    reason: str = ""

    @property
    def ok(self) -> bool:
        return self.rate is not None


class FrankfurterRateProvider:
    """Blocking client for the Frankfurter API (https://frankfurter.dev/).

    Response has format:
        {"amount": 1.0, "base": "GBP", "date": "2025-04-30", "rates": {"EUR": 1.174}}
    """

    def __init__(self, base_url: str = "https://api.frankfurter.app", timeout: float = 10.0, session=None):
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.session = session or requests.Session()

    def format_url(self, date: datetime.date, from_currency: str, to_currency: str) -> str:
        return f"{self.base_url}/{date.isoformat()}?from={from_currency}&to={to_currency}"

    def fetch(self, date: datetime.date, from_currency: str, to_currency: str) -> FetchOutcome:
        url = self.format_url(date, from_currency, to_currency)
        logger.debug(f"Fetching {from_currency}/{to_currency}@{date} rate.")
        try:
            response = self.session.get(url, timeout=self.timeout)
        except (requests.ConnectionError, requests.Timeout) as e:
            return FetchOutcome(transient=True, reason=f"network error: {e}")

        if response.status_code == 429 or response.status_code >= 500:
            return FetchOutcome(transient=True, reason=f"HTTP {response.status_code}")
        if response.status_code != 200:
            return FetchOutcome(reason=f"HTTP {response.status_code}")

        try:
            payload = response.json(parse_float=Decimal)
            raw = payload.get("rates", {}).get(to_currency)
        except (ValueError, AttributeError) as e:
            return FetchOutcome(reason=f"malformed response: {e}")
        if raw is None:
            return FetchOutcome(reason="no rate in response")

        try:
            rate = Decimal(str(raw))
        except InvalidOperation:
            return FetchOutcome(reason=f"malformed rate {raw!r}")
        if not rate.is_finite() or rate <= 0:
            return FetchOutcome(reason=f"non-positive rate {raw!r}")
        return FetchOutcome(rate=rate)


class ExchangeRateCache:
    """Date keyed exchange rates, read from disk, filled from the provider.

    Entries are immutable once written: the first rate stored for a
    (date, from, to) key wins. New entries stay pending until `flush`.
    """

    def __init__(
        self,
        path: Union[str, os.PathLike],
        provider,
        rules: Optional[ExchangeRateRules] = None,
        retry: Optional[RetryPolicy] = None,
        today: Callable[[], datetime.date] = datetime.date.today,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.path = path
        self.provider = provider
        self.rules = rules or ExchangeRateRules()
        self.retry = retry or RetryPolicy()
        self.today = today
        self.sleep = sleep
        self._lock = threading.Lock()
        self._rates: RateTable = self._load_else_new()
        self._pending: RateTable = {}

    # --- Persistence ---

    @staticmethod
    def _parse_table(raw) -> RateTable:
        table: RateTable = {}
        if not isinstance(raw, dict):
            raise ValueError("expected a mapping of dates")
        for date_str, by_from in raw.items():
            day = datetime.date.fromisoformat(date_str)
            for from_currency, by_to in by_from.items():
                for to_currency, value in by_to.items():
                    rate = Decimal(str(value))
                    if not rate.is_finite() or rate <= 0:
                        raise ValueError(f"non-positive rate {value!r} for {date_str}")
                    table.setdefault(day, {}).setdefault(from_currency, {})[to_currency] = rate
        return table

    @staticmethod
    def _dump_table(table: RateTable) -> dict:
        out = {}
        for day in sorted(table):
            out[day.isoformat()] = {
                from_currency: {to_currency: str(rate) for to_currency, rate in sorted(by_to.items())}
                for from_currency, by_to in sorted(table[day].items())
            }
        return out

    def _read_disk(self) -> RateTable:
        if not os.path.exists(str(self.path)):
            return {}
        raw = read_json(self.path)
        try:
            return self._parse_table(raw)
        except (ValueError, TypeError, AttributeError, InvalidOperation) as e:
            raise PersistenceError(self.path, f"malformed rate cache: {e}") from e

    def _load_else_new(self) -> RateTable:
        try:
            return self._read_disk()
        except PersistenceError as e:
            logger.warning(f"Ignoring cached exchange rates, starting empty: {e}")
            return {}

    @property
    def has_pending(self) -> bool:
        return bool(self._pending)

    def flush(self):
        """Writes newly fetched rates, keeping any entry already on disk."""
        with self._lock:
            if not self._pending:
                logger.debug("No new rates fetched, used only cached rates.")
                return
            merged = self._load_else_new()
            for day, by_from in self._pending.items():
                for from_currency, by_to in by_from.items():
                    for to_currency, rate in by_to.items():
                        merged.setdefault(day, {}).setdefault(from_currency, {}).setdefault(to_currency, rate)
            write_json(self.path, self._dump_table(merged))
            self._rates = merged
            self._pending = {}
        logger.info(f"Cached exchange rates updated: {self.path}")

    # --- Lookups ---

    def get(self, date: datetime.date, from_currency: str, to_currency: str) -> Optional[Decimal]:
        return self._rates.get(date, {}).get(from_currency, {}).get(to_currency)

    def insert(self, date: datetime.date, from_currency: str, to_currency: str, rate: Decimal) -> Decimal:
        """Stores a rate unless the key exists; returns the stored value."""
        with self._lock:
            existing = self.get(date, from_currency, to_currency)
            if existing is not None:
                return existing
            self._rates.setdefault(date, {}).setdefault(from_currency, {})[to_currency] = rate
            self._pending.setdefault(date, {}).setdefault(from_currency, {})[to_currency] = rate
            return rate

    def rate(self, date: datetime.date, from_currency: str, to_currency: str) -> Decimal:
        return self.quote(date, from_currency, to_currency).rate

    def quote(self, date: datetime.date, from_currency: str, to_currency: str) -> RateQuote:
        if from_currency == to_currency:
            return RateQuote(rate=Decimal(1), rate_date=date)

        if date > self.today():
            raise InvalidDate(date, f"cannot look up {from_currency}/{to_currency} for a future date")

        cached = self.get(date, from_currency, to_currency)
        if cached is not None:
            return RateQuote(rate=cached, rate_date=date)

        outcome = self._fetch_with_retry(date, from_currency, to_currency)
        if outcome.ok:
            return RateQuote(rate=self.insert(date, from_currency, to_currency, outcome.rate), rate_date=date)

        if not self.rules.nearest_prior_fallback:
            raise RateUnavailable(date, from_currency, to_currency, outcome.reason)

        prior = self._nearest_prior(date, from_currency, to_currency, provider_down=outcome.transient)
        if prior is None:
            raise RateUnavailable(
                date,
                from_currency,
                to_currency,
                f"{outcome.reason}; nothing within {self.rules.fallback_window_days} prior days",
            )
        logger.warning(
            f"Using {from_currency}/{to_currency} rate from {prior.rate_date} for {date} (approximate)"
        )
        return prior

    def _fetch_with_retry(self, date: datetime.date, from_currency: str, to_currency: str) -> FetchOutcome:
        outcome = FetchOutcome(transient=True, reason="not attempted")
        for attempt in range(1, self.retry.max_attempts + 1):
            outcome = self.provider.fetch(date, from_currency, to_currency)
            if not outcome.transient:
                return outcome
            if attempt < self.retry.max_attempts:
                delay = self.retry.delay_before(attempt)
                logger.warning(
                    f"Rate fetch {from_currency}/{to_currency}@{date} failed ({outcome.reason}), "
                    f"retry {attempt}/{self.retry.max_attempts - 1} in {delay}s"
                )
                self.sleep(delay)
        return outcome

    def _nearest_prior(
        self, date: datetime.date, from_currency: str, to_currency: str, provider_down: bool
    ) -> Optional[RateQuote]:
        """Closest earlier date with a rate, searched one day at a time."""
        for days_back in range(1, self.rules.fallback_window_days + 1):
            day = date - datetime.timedelta(days=days_back)
            cached = self.get(day, from_currency, to_currency)
            if cached is not None:
                return RateQuote(rate=cached, rate_date=day, approximate=True)
            if provider_down:
                continue
            outcome = self._fetch_with_retry(day, from_currency, to_currency)
            if outcome.ok:
                rate = self.insert(day, from_currency, to_currency, outcome.rate)
                return RateQuote(rate=rate, rate_date=day, approximate=True)
            provider_down = outcome.transient
        return None
