from pydantic import BaseModel, Field, field_validator
from typing import List

# --- Calendar Rules ---

class CalendarRules(BaseModel):
    # ISO weekday numbers (Monday=1 .. Sunday=7)
    weekend: List[int] = [6, 7]
    hours_per_day: int = 8
    invoice_on_last_business_day: bool = False

    @field_validator('weekend')
    def validate_weekend(cls, v):
        for day in v:
            if day < 1 or day > 7:
                raise ValueError(f"Invalid ISO weekday: {day}")
        return sorted(set(v))

# --- Exchange Rate Rules ---

class RetryPolicy(BaseModel):
    max_attempts: int = Field(default=3, ge=1)
    backoff_seconds: List[float] = [0.5, 1.0, 2.0]

    def delay_before(self, attempt: int) -> float:
        """Delay to wait before the given (1-based) retry attempt."""
        if not self.backoff_seconds:
            return 0.0
        idx = min(attempt - 1, len(self.backoff_seconds) - 1)
        return self.backoff_seconds[idx]

class ExchangeRateRules(BaseModel):
    provider_url: str = "https://api.frankfurter.app"
    timeout_seconds: float = 10.0
    nearest_prior_fallback: bool = False
    fallback_window_days: int = Field(default=7, ge=0)

class ExpenseRules(BaseModel):
    strict_aggregation: bool = False

class InvoiceDefaults(BaseModel):
    payment_terms: str = "Net 30"

class EngineRules(BaseModel):
    calendar: CalendarRules = Field(default_factory=CalendarRules)
    exchange_rates: ExchangeRateRules = Field(default_factory=ExchangeRateRules)
    retry: RetryPolicy = Field(default_factory=RetryPolicy)
    expenses: ExpenseRules = Field(default_factory=ExpenseRules)
    invoice_defaults: InvoiceDefaults = Field(default_factory=InvoiceDefaults)
