import logging
from collections import OrderedDict
from decimal import Decimal
from typing import Any, Dict, List, Tuple

from invoice_engine.modules.errors import AggregationConflict
from invoice_engine.modules.models import ExpenseItem, LineItem, ServiceFee

logger = logging.getLogger(__name__)


def aggregate_expenses(items: List[ExpenseItem], strict: bool = False) -> List[ExpenseItem]:
    """Merges expenses sharing an identity key by summing their quantities.

    Output keeps the first-seen order of each group. Items that share a key
    but carry a different note stay as their own row, or raise
    AggregationConflict when `strict` is set.
    """
    groups: "OrderedDict[Tuple[Any, ...], ExpenseItem]" = OrderedDict()
    first_by_key: Dict[Tuple[Any, ...], ExpenseItem] = {}

    for item in items:
        key = item.identity_key
        first = first_by_key.setdefault(key, item)
        if first.note != item.note:
            if strict:
                raise AggregationConflict(key, first, item)
            logger.warning(
                f"Expense '{item.name}' on {item.transaction_date} differs only by note, kept as separate row"
            )

        group_key = key + (item.note,)
        if group_key in groups:
            existing = groups[group_key]
            groups[group_key] = existing.model_copy(
                update={"quantity": existing.quantity + item.quantity}
            )
        else:
            groups[group_key] = item

    return list(groups.values())


def price_expenses(items: List[ExpenseItem], converter, settlement_currency: str) -> List[LineItem]:
    lines = []
    for item in items:
        lines.append(
            price_line(
                converter,
                settlement_currency,
                name=item.name,
                transaction_date=item.transaction_date,
                unit_price=item.unit_price,
                currency=item.currency,
                quantity=item.quantity,
            )
        )
    return lines


def price_service(
    fee: ServiceFee,
    quantity: Decimal,
    converter,
    settlement_currency: str,
    conversion_date,
) -> LineItem:
    return price_line(
        converter,
        settlement_currency,
        name=fee.name,
        transaction_date=conversion_date,
        unit_price=fee.rate,
        currency=fee.currency or settlement_currency,
        quantity=quantity,
    )


def price_line(converter, settlement_currency: str, **fields) -> LineItem:
    source_total = fields["unit_price"] * fields["quantity"]
    converted = converter.convert_with_quote(
        source_total, fields["currency"], settlement_currency, fields["transaction_date"]
    )
    return LineItem(
        source_total=source_total,
        exchange_rate=converted.rate,
        rate_is_approximate=converted.approximate,
        total_cost=converted.amount,
        **fields,
    )


def grand_total(lines: List[LineItem]) -> Decimal:
    """Sum of each line's already-rounded total, never re-rounded."""
    total = Decimal(0)
    for line in lines:
        total += line.total_cost
    return total
