import os
import logging
from typing import Dict, List, Union

from pydantic import BaseModel, ValidationError, field_validator

from invoice_engine.modules.errors import PersistenceError
from invoice_engine.modules.line_items import aggregate_expenses
from invoice_engine.modules.models import ExpenseItem, Period
from invoice_engine.modules.storage import read_yaml, write_yaml

logger = logging.getLogger(__name__)


class ExpenseLedger(BaseModel):
    """Recorded expenses per period label (YYYY-MM), stored aggregated."""
    periods: Dict[str, List[ExpenseItem]] = {}

    @field_validator('periods')
    def normalize_labels(cls, v):
        return {str(Period.parse(label)): items for label, items in v.items()}

    def items_for(self, period: Period) -> List[ExpenseItem]:
        return list(self.periods.get(str(period), []))

    def record(self, item: ExpenseItem, period: Period, strict: bool = False) -> ExpenseItem:
        """Adds one expense to `period`, merging it into an identical entry.

        Returns the stored row the item ended up in.
        """
        merged = aggregate_expenses(self.items_for(period) + [item], strict=strict)
        self.periods[str(period)] = merged
        logger.info(f"Recorded expense '{item.name}' x{item.quantity} for {period}")
        for row in merged:
            if row.identity_key == item.identity_key and row.note == item.note:
                return row
        return item

    def save(self, path: Union[str, os.PathLike]):
        data = self.model_dump(mode='json')
        write_yaml(path, dict(sorted(data['periods'].items())))

    @classmethod
    def load(cls, path: Union[str, os.PathLike]) -> 'ExpenseLedger':
        if not os.path.exists(str(path)):
            return cls()
        raw = read_yaml(path)
        try:
            return cls(periods=raw or {})
        except (ValidationError, TypeError) as e:
            raise PersistenceError(path, f"malformed expense ledger: {e}") from e
