"""
Value objects shared by the pricing pipeline.

Everything here is immutable. ``applied_promotions`` records are typed
(PercentDiscount / FixedDiscount / BogoDiscount) and only turned into
dicts at the storage boundary (``to_dict`` / ``applied_promotion_from_dict``).
"""
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Optional, Tuple, List, Dict, Any

from quotedesk.models.promotion_action import ActionType
from quotedesk.models.promotion_code import normalize_code
from quotedesk.utils.money import to_decimal, round2, money_str, ZERO


@dataclass(frozen=True)
class PricingLine:
    """What the engine needs to know about one line (frozen snapshot values)."""
    index: int
    product_id: str
    sku: Optional[str]
    category_ids: frozenset
    quantity: Decimal
    unit_price_ht: Decimal
    tax_rate: Decimal = Decimal('0')

    @property
    def line_total_ht(self) -> Decimal:
        return round2(self.quantity * self.unit_price_ht)

    @property
    def normalized_sku(self) -> Optional[str]:
        return normalize_code(self.sku)


@dataclass(frozen=True)
class PricingContext:
    """Input of one pricing run."""
    lines: Tuple[PricingLine, ...]
    supplied_code: Optional[str] = None
    user_id: Optional[int] = None
    quote_id: Optional[int] = None

    @property
    def subtotal_ht(self) -> Decimal:
        return round2(sum((line.line_total_ht for line in self.lines), ZERO))

    @property
    def quantity_total(self) -> Decimal:
        return sum((line.quantity for line in self.lines), Decimal('0'))

    @property
    def normalized_code(self) -> Optional[str]:
        return normalize_code(self.supplied_code)

    @classmethod
    def from_quote(cls, quote, supplied_code=None, user_id=None):
        """Build a context from a persisted quote's item snapshots."""
        lines = tuple(
            PricingLine(
                index=index,
                product_id=str(item.product_id),
                sku=item.product_sku_snapshot,
                category_ids=frozenset(str(c) for c in (item.category_ids_snapshot or [])),
                quantity=to_decimal(item.quantity),
                unit_price_ht=to_decimal(item.unit_price_ht_snapshot),
                tax_rate=to_decimal(item.tax_rate_snapshot),
            )
            for index, item in enumerate(quote.items)
        )
        return cls(lines=lines, supplied_code=supplied_code, user_id=user_id, quote_id=quote.id)

    @classmethod
    def from_payload(cls, items, supplied_code=None, user_id=None):
        """
        Build a context from a transient cart payload.

        Each item: {'product_id', 'quantity', 'unit_price_ht', 'tax_rate',
        optional 'sku', optional 'category_ids'}.
        """
        lines = tuple(
            PricingLine(
                index=index,
                product_id=str(item.get('product_id', '')),
                sku=item.get('sku'),
                category_ids=frozenset(str(c) for c in (item.get('category_ids') or [])),
                quantity=to_decimal(item.get('quantity', 0)),
                unit_price_ht=to_decimal(item.get('unit_price_ht', 0)),
                tax_rate=to_decimal(item.get('tax_rate', 0)),
            )
            for index, item in enumerate(items)
        )
        return cls(lines=lines, supplied_code=supplied_code, user_id=user_id)


@dataclass(frozen=True)
class EligibilityResult:
    """Outcome of evaluating one promotion against a context."""
    promotion: Any
    eligible: bool
    code_id: Optional[int] = None
    reason: Optional[str] = None

    @property
    def promotion_id(self):
        return self.promotion.id

    @property
    def sort_key(self):
        return (self.promotion.priority, self.promotion.id)


@dataclass(frozen=True)
class Rejection:
    """A promotion that was considered but not applied, with the reason."""
    promotion_id: int
    name: str
    reason: str

    def to_dict(self):
        return {'promotion_id': self.promotion_id, 'name': self.name, 'reason': self.reason}


@dataclass(frozen=True)
class StackingResult:
    applied: List[EligibilityResult]
    skipped: List[Rejection]


# --- applied promotion records (tagged union) --------------------------------

@dataclass(frozen=True)
class AppliedPromotion:
    """Base record of a promotion whose discount went into the totals."""
    promotion_id: int
    name: str
    code_id: Optional[int]
    amount_discounted: Decimal
    lines: Tuple[Tuple[int, Decimal], ...]  # (line index, amount)

    action_type = None

    @property
    def value(self) -> Decimal:
        raise NotImplementedError

    def to_dict(self) -> Dict[str, Any]:
        return {
            'promotion_id': self.promotion_id,
            'code_id': self.code_id,
            'action_type': self.action_type,
            'value': str(self.value),
            'amount_discounted': money_str(self.amount_discounted),
            'name': self.name,
            'lines': [{'index': index, 'amount': money_str(amount)} for index, amount in self.lines],
        }


@dataclass(frozen=True)
class PercentDiscount(AppliedPromotion):
    percent: Decimal

    action_type = ActionType.PERCENT.value

    @property
    def value(self):
        return self.percent


@dataclass(frozen=True)
class FixedDiscount(AppliedPromotion):
    fixed_amount: Decimal

    action_type = ActionType.FIXED.value

    @property
    def value(self):
        return self.fixed_amount


@dataclass(frozen=True)
class BogoDiscount(AppliedPromotion):
    bogo_type: str  # bogo_free | bogo_percent
    buy_sku: Optional[str]
    buy_qty: int
    get_sku: Optional[str]
    get_qty: int
    discount_percent: Decimal
    free_units: int

    @property
    def action_type(self):
        return self.bogo_type

    @property
    def value(self):
        return self.discount_percent

    def to_dict(self):
        data = super().to_dict()
        data.update({
            'buy_sku': self.buy_sku,
            'buy_qty': self.buy_qty,
            'get_sku': self.get_sku,
            'get_qty': self.get_qty,
            'free_units': self.free_units,
        })
        return data


def applied_promotion_from_dict(data: Dict[str, Any]) -> AppliedPromotion:
    """Parse one stored ``applied_promotions`` entry back into its typed record."""
    common = dict(
        promotion_id=data['promotion_id'],
        name=data.get('name', ''),
        code_id=data.get('code_id'),
        amount_discounted=to_decimal(data.get('amount_discounted')),
        lines=tuple((int(l['index']), to_decimal(l['amount'])) for l in data.get('lines', [])),
    )
    action_type = data.get('action_type')
    value = to_decimal(data.get('value'))

    if action_type == ActionType.PERCENT.value:
        return PercentDiscount(percent=value, **common)
    if action_type == ActionType.FIXED.value:
        return FixedDiscount(fixed_amount=value, **common)
    if action_type in (ActionType.BOGO_FREE.value, ActionType.BOGO_PERCENT.value):
        return BogoDiscount(
            bogo_type=action_type,
            buy_sku=data.get('buy_sku'),
            buy_qty=int(data.get('buy_qty') or 1),
            get_sku=data.get('get_sku'),
            get_qty=int(data.get('get_qty') or 1),
            discount_percent=value,
            free_units=int(data.get('free_units') or 0),
            **common
        )
    raise ValueError(f"Unknown action_type in applied promotion: {action_type!r}")


@dataclass(frozen=True)
class DiscountBreakdown:
    applied: List[AppliedPromotion]
    discount_total: Decimal
    line_discounts: Dict[int, Decimal]


@dataclass(frozen=True)
class PricingResult:
    """Full outcome of a pricing run (nothing persisted)."""
    context: PricingContext
    applied: List[AppliedPromotion]
    discount_total: Decimal
    line_discounts: Dict[int, Decimal]
    rejections: List[Rejection] = field(default_factory=list)
    code_message: Optional[str] = None

    @property
    def code_applied(self) -> bool:
        return any(a.code_id is not None for a in self.applied)

    @property
    def redeemable(self) -> List[AppliedPromotion]:
        """Applied promotions that consumed a code (the only ones the ledger records)."""
        return [a for a in self.applied if a.code_id is not None]

    def applied_promotions_payload(self) -> List[Dict[str, Any]]:
        return [a.to_dict() for a in self.applied]

    def to_dict(self) -> Dict[str, Any]:
        return {
            'discount_total': money_str(self.discount_total),
            'applied_promotions': self.applied_promotions_payload(),
            'rejections': [r.to_dict() for r in self.rejections],
            'code_message': self.code_message,
            'lines_total_discounts': [
                money_str(self.line_discounts.get(line.index, ZERO)) for line in self.context.lines
            ],
        }


@dataclass(frozen=True)
class QuoteTotals:
    """Totals of a quote; ``total_tax`` is computed after discount."""
    subtotal_ht: Decimal
    discount_total: Decimal
    net_subtotal_ht: Decimal
    total_tax: Decimal
    total_ttc: Decimal

    def to_dict(self):
        return {
            'subtotal_ht': money_str(self.subtotal_ht),
            'discount_total': money_str(self.discount_total),
            'net_subtotal_ht': money_str(self.net_subtotal_ht),
            'total_tax': money_str(self.total_tax),
            'total_ttc': money_str(self.total_ttc),
        }
