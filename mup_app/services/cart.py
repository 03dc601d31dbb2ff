from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal

from mup_app.services.regions import Region
from mup_app.services.unit_pricing import ZERO


@dataclass(frozen=True)
class CartLine:
    """One cart line as the engine sees it.

    ``cost_per_item`` is the nominal per-unit price before line-level
    discounts; ``total_cost`` is what the line actually costs after them.
    Levy lines set ``is_levy`` and point at their parent through
    ``levy_parent_id``.
    """

    id: str
    quantity: int
    cost_per_item: Decimal
    total_cost: Decimal
    merchandise_id: str | None = None
    is_product_variant: bool = True
    alcohol_units: Decimal = ZERO
    is_levy: bool = False
    levy_parent_id: str | None = None
    attributes: dict[str, str] = field(default_factory=dict)

    @property
    def is_alcoholic(self) -> bool:
        return self.is_product_variant and not self.is_levy and self.alcohol_units > ZERO

    @property
    def current_price_per_item(self) -> Decimal:
        if self.quantity <= 0:
            return self.cost_per_item
        return self.total_cost / Decimal(self.quantity)

    @property
    def undiscounted_total(self) -> Decimal:
        return self.cost_per_item * Decimal(self.quantity)

    @property
    def is_discounted(self) -> bool:
        return self.total_cost < self.undiscounted_total


@dataclass(frozen=True)
class CartSnapshot:
    lines: tuple[CartLine, ...]
    region: Region = Region.UNSET
    delivery_postcodes: tuple[str, ...] = ()
    discount_codes: tuple[str, ...] = ()
    override_code: str | None = None
