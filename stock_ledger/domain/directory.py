"""
ReferenceDirectory -- read-only view of products and locations.

Responsibility:
    Answers the three questions the ledger needs from the catalog without
    owning the catalog: does this product exist, does this location exist,
    and what does one unit cost (for variance valuation).

Architecture position:
    Ledger > Domain.  Catalog management lives outside the ledger; callers
    adapt their catalog to this interface.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from decimal import Decimal

from stock_ledger.domain.values import ZERO


@dataclass(frozen=True)
class StockLocation:
    """A place that holds stock (warehouse, store front, van)."""
    id: str
    name: str
    is_primary: bool = False
    is_active: bool = True


class ReferenceDirectory(ABC):
    """Lookup contract for products and locations."""

    @abstractmethod
    def has_product(self, product_id: str) -> bool:
        ...

    @abstractmethod
    def has_location(self, location_id: str) -> bool:
        ...

    @abstractmethod
    def unit_cost(self, product_id: str) -> Decimal:
        """Cost price of one unit; zero when unknown."""
        ...


class InMemoryDirectory(ReferenceDirectory):
    """
    Dictionary-backed directory for tests, seeding and offline use.

    Inactive locations are treated as unknown.
    """

    def __init__(
        self,
        products: dict[str, Decimal] | None = None,
        locations: list[StockLocation] | None = None,
    ):
        self._products: dict[str, Decimal] = dict(products or {})
        self._locations: dict[str, StockLocation] = {
            loc.id: loc for loc in (locations or [])
        }

    def add_product(self, product_id: str, unit_cost: Decimal = ZERO) -> None:
        self._products[product_id] = unit_cost

    def add_location(self, location: StockLocation) -> None:
        self._locations[location.id] = location

    def has_product(self, product_id: str) -> bool:
        return product_id in self._products

    def has_location(self, location_id: str) -> bool:
        location = self._locations.get(location_id)
        return location is not None and location.is_active

    def unit_cost(self, product_id: str) -> Decimal:
        return self._products.get(product_id, ZERO)

    def primary_location(self) -> StockLocation | None:
        for location in self._locations.values():
            if location.is_primary and location.is_active:
                return location
        return None
