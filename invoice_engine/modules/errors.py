class EngineError(Exception):
    """Base class for every failure raised while resolving an invoice."""


class InvalidPeriod(EngineError):
    def __init__(self, period, reason: str):
        self.period = period
        self.reason = reason
        super().__init__(f"Invalid period {period}: {reason}")


class DuplicatePeriod(EngineError):
    def __init__(self, period):
        self.period = period
        super().__init__(f"Period {period} is already marked as off")


class RateUnavailable(EngineError):
    def __init__(self, date, from_currency: str, to_currency: str, reason: str = ""):
        self.date = date
        self.from_currency = from_currency
        self.to_currency = to_currency
        self.reason = reason
        msg = f"Found no exchange rate {from_currency}/{to_currency} for {date}"
        if reason:
            msg += f" ({reason})"
        super().__init__(msg)


class InvalidDate(EngineError):
    def __init__(self, date, reason: str):
        self.date = date
        self.reason = reason
        super().__init__(f"Invalid date {date}: {reason}")


class AggregationConflict(EngineError):
    def __init__(self, key, first, second):
        self.key = key
        self.first = first
        self.second = second
        super().__init__(
            f"Expenses {first!r} and {second!r} share identity {key} but differ"
        )


class PersistenceError(EngineError):
    def __init__(self, path, reason: str):
        self.path = path
        self.reason = reason
        super().__init__(f"Failed to access {path}: {reason}")
