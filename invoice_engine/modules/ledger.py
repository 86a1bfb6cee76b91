import os
import logging
from typing import List, Union

from pydantic import BaseModel, ValidationError, field_validator, model_validator

from invoice_engine.modules.errors import DuplicatePeriod, InvalidPeriod, PersistenceError
from invoice_engine.modules.models import Period
from invoice_engine.modules.storage import read_yaml, write_yaml

logger = logging.getLogger(__name__)


class InvoiceNumberOffset(BaseModel):
    """The invoice number `offset` belongs to the anchor `period`."""
    offset: int
    period: Period


class InvoiceLedger(BaseModel):
    """Numbering state: the anchor offset and the periods marked off.

    Numbering is a pure read. Only `commit` moves the anchor and only
    `mark_period_off` grows the record of periods off.
    """
    offset: InvoiceNumberOffset
    periods_off: List[Period] = []

    @field_validator('periods_off')
    def validate_unique(cls, v):
        if len(set(v)) != len(v):
            raise ValueError("Record of periods off contains duplicates")
        return sorted(v)

    @model_validator(mode='after')
    def validate_anchor_not_off(self):
        if self.offset.period in self.periods_off:
            raise ValueError(
                f"Record of periods off must not contain the anchor period {self.offset.period}"
            )
        return self

    @property
    def anchor(self) -> Period:
        return self.offset.period

    def is_off(self, period: Period) -> bool:
        return period in self.periods_off

    def number_for(self, target: Period) -> int:
        if self.is_off(target):
            raise InvalidPeriod(target, "period is marked as off")

        anchor = self.anchor
        if target >= anchor:
            skipped = sum(1 for p in self.periods_off if anchor < p <= target)
            return self.offset.offset + target.months_since(anchor) - skipped

        skipped = sum(1 for p in self.periods_off if target < p < anchor)
        return self.offset.offset - (anchor.months_since(target) - skipped)

    def mark_period_off(self, period: Period):
        if self.is_off(period):
            raise DuplicatePeriod(period)
        if period == self.anchor:
            raise InvalidPeriod(period, "the anchor period cannot be marked as off")
        self.periods_off = sorted(self.periods_off + [period])
        logger.info(f"Marked {period} as off")

    def commit(self, period: Period) -> int:
        """Re-anchors numbering at `period`. Safe to repeat."""
        number = self.number_for(period)
        if self.offset.period != period or self.offset.offset != number:
            self.offset = InvoiceNumberOffset(offset=number, period=period)
            logger.info(f"Committed invoice {number} for {period}")
        return number

    def save(self, path: Union[str, os.PathLike]):
        write_yaml(path, self.model_dump(mode='json'))

    @classmethod
    def load(cls, path: Union[str, os.PathLike]) -> 'InvoiceLedger':
        if not os.path.exists(str(path)):
            raise PersistenceError(path, "invoice ledger not found")
        raw = read_yaml(path)
        try:
            return cls(**(raw or {}))
        except (ValidationError, TypeError) as e:
            raise PersistenceError(path, f"malformed invoice ledger: {e}") from e
