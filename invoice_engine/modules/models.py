import re
import datetime
import functools
from decimal import Decimal
from enum import Enum
from pathlib import Path
from typing import List, Optional, Tuple, Union, Any

import yaml
from pydantic import (
    BaseModel,
    Field,
    ValidationError,
    field_validator,
    model_serializer,
    model_validator,
)

from invoice_engine.modules.errors import PersistenceError

# Regex Patterns
PERIOD_PATTERN = re.compile(r"^(\d{4})-(\d{1,2})$")
NET_TERMS_PATTERN = re.compile(r"^\s*net\s*(\d+)\s*$", re.IGNORECASE)
CURRENCY_PATTERN = r"^[A-Z]{3}$"


def to_dec(v):
    if v is None:
        return None
    if isinstance(v, Decimal):
        return v
    if isinstance(v, float):
        return Decimal(str(v))
    return Decimal(str(v).replace(",", ""))


@functools.total_ordering
class Period(BaseModel):
    """A calendar year-month, written as YYYY-MM."""
    year: int = Field(ge=1, le=9999)
    month: int = Field(ge=1, le=12)

    class Config:
        frozen = True

    @model_validator(mode='before')
    @classmethod
    def parse_label(cls, data: Any) -> Any:
        if isinstance(data, Period):
            return {"year": data.year, "month": data.month}
        if isinstance(data, datetime.date):
            return {"year": data.year, "month": data.month}
        if isinstance(data, str):
            match = PERIOD_PATTERN.match(data.strip())
            if not match:
                raise ValueError(f"Incorrect period format {data!r}, should be YYYY-MM")
            return {"year": int(match.group(1)), "month": int(match.group(2))}
        return data

    @model_serializer
    def to_label(self) -> str:
        return str(self)

    def __str__(self) -> str:
        return f"{self.year:04d}-{self.month:02d}"

    def __lt__(self, other):
        if not isinstance(other, Period):
            return NotImplemented
        return self.index < other.index

    @property
    def index(self) -> int:
        """Months since year zero, used for ordering and arithmetic."""
        return self.year * 12 + (self.month - 1)

    @classmethod
    def from_index(cls, index: int) -> "Period":
        return cls(year=index // 12, month=index % 12 + 1)

    @classmethod
    def parse(cls, text: str) -> "Period":
        return cls.model_validate(text)

    @classmethod
    def current(cls, today: Optional[datetime.date] = None) -> "Period":
        return cls.model_validate(today or datetime.date.today())

    @classmethod
    def last(cls, today: Optional[datetime.date] = None) -> "Period":
        return cls.current(today).previous()

    def next(self) -> "Period":
        return Period.from_index(self.index + 1)

    def previous(self) -> "Period":
        return Period.from_index(self.index - 1)

    def months_since(self, other: "Period") -> int:
        return self.index - other.index

    def contains(self, day: datetime.date) -> bool:
        return day.year == self.year and day.month == self.month


class PaymentTerms(BaseModel):
    """Payment terms such as 'Net 30'."""
    due_in_days: int = Field(default=30, ge=0)

    @model_validator(mode='before')
    @classmethod
    def parse_terms(cls, data: Any) -> Any:
        if isinstance(data, int):
            return {"due_in_days": data}
        if isinstance(data, str):
            match = NET_TERMS_PATTERN.match(data)
            if not match:
                raise ValueError(f"Unsupported payment terms {data!r}, expected e.g. 'Net 30'")
            return {"due_in_days": int(match.group(1))}
        return data

    @model_serializer
    def to_label(self) -> str:
        return str(self)

    def __str__(self) -> str:
        return f"Net {self.due_in_days}"


class Cadence(str, Enum):
    DAILY = "daily"
    HOURLY = "hourly"
    PERIOD = "period"


class InvoiceMode(str, Enum):
    SERVICES = "services"
    EXPENSES = "expenses"


def _normalize_currency(v):
    if isinstance(v, str):
        v = v.strip().upper()
    if not v or not re.match(CURRENCY_PATTERN, v):
        raise ValueError(f"Invalid currency code: {v}")
    return v


class ExpenseItem(BaseModel):
    name: str
    unit_price: Decimal
    currency: str
    quantity: Decimal = Field(default=Decimal('1'))
    transaction_date: datetime.date
    note: Optional[str] = None

    @field_validator('unit_price', 'quantity', mode='before')
    def parse_decimal(cls, v):
        return to_dec(v)

    @field_validator('quantity')
    def validate_quantity(cls, v):
        if v <= 0:
            raise ValueError(f"Quantity must be positive, got {v}")
        return v

    @field_validator('currency', mode='before')
    def validate_currency(cls, v):
        return _normalize_currency(v)

    @field_validator('name')
    def strip_name(cls, v):
        v = v.strip()
        if not v:
            raise ValueError("Expense name must not be empty")
        return v

    @property
    def identity_key(self) -> Tuple[str, Decimal, str, datetime.date]:
        """Fields that make two expenses the same entry, quantity excluded."""
        return (self.name, self.unit_price, self.currency, self.transaction_date)

    @property
    def total(self) -> Decimal:
        return self.unit_price * self.quantity


class ServiceFee(BaseModel):
    name: str
    rate: Decimal
    cadence: Cadence = Cadence.DAILY
    currency: Optional[str] = None  # Falls back to settlement currency

    @field_validator('rate', mode='before')
    def parse_decimal(cls, v):
        return to_dec(v)

    @field_validator('currency', mode='before')
    def validate_currency(cls, v):
        if v is None:
            return None
        return _normalize_currency(v)


class CompanyInformation(BaseModel):
    company_name: str
    contact_person: Optional[str] = None
    organisation_number: Optional[str] = None
    vat_number: Optional[str] = None
    address: List[str] = []

    @property
    def slug(self) -> str:
        return self.company_name.replace(" ", "_")


class PaymentInformation(BaseModel):
    currency: str
    terms: Optional[PaymentTerms] = None  # Falls back to the configured default
    iban: Optional[str] = None
    bank_name: Optional[str] = None
    bic: Optional[str] = None

    @field_validator('currency', mode='before')
    def validate_currency(cls, v):
        return _normalize_currency(v)


class BusinessData(BaseModel):
    """Vendor, client and billing terms, read from the business profile."""
    vendor: CompanyInformation
    client: CompanyInformation
    payment_info: PaymentInformation
    service_fees: ServiceFee
    purchase_order: Optional[str] = None

    @property
    def settlement_currency(self) -> str:
        return self.payment_info.currency

    @classmethod
    def load(cls, path: Union[str, Path]) -> 'BusinessData':
        try:
            with open(path, 'r') as f:
                raw = yaml.safe_load(f)
        except (IOError, OSError, yaml.YAMLError) as e:
            raise PersistenceError(path, str(e)) from e
        try:
            return cls(**(raw or {}))
        except ValidationError as e:
            raise PersistenceError(path, f"invalid business data: {e}") from e


class LineItem(BaseModel):
    """A priced row, ready for rendering."""
    name: str
    transaction_date: datetime.date
    unit_price: Decimal
    currency: str
    quantity: Decimal
    source_total: Decimal  # unit_price * quantity, in `currency`
    exchange_rate: Optional[Decimal] = None  # None when no lookup was needed
    rate_is_approximate: bool = False
    total_cost: Decimal  # converted into the settlement currency


class ResolvedInvoice(BaseModel):
    """Container for a fully resolved invoice, handed to rendering."""
    invoice_number: int
    period: Period
    mode: InvoiceMode
    invoice_date: datetime.date
    due_date: datetime.date
    working_days: int
    line_items: List[LineItem]
    grand_total: Decimal
    settlement_currency: str
    vendor: CompanyInformation
    client: CompanyInformation
    payment_info: PaymentInformation
    purchase_order: Optional[str] = None
    output_name: str

    class Config:
        arbitrary_types_allowed = True
