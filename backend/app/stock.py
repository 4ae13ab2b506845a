from typing import Callable, Iterable

from .materials import canonical_key, materials_equivalent
from .numeric import round3
from .ttl_cache import TTLCache


def stock_from_items(material_name: str, items: Iterable[dict]) -> float:
    """
    On-hand weight of a material: purchased minus sold over completed orders.

    Names are matched through `materials_equivalent` so "Cobre miúdo" and
    "cu miudo0" count as the same stock. Never negative.
    """
    purchased = 0.0
    sold = 0.0
    for it in items:
        if not materials_equivalent(it.get("material_name"), material_name):
            continue
        qty = float(it.get("quantity") or 0)
        if it.get("type") == "purchase":
            purchased += qty
        elif it.get("type") == "sale":
            sold += qty
    return max(0.0, round3(purchased - sold))


class StockCalculator:
    def __init__(self, load_items: Callable[[], list], cache: TTLCache):
        self.load_items = load_items
        self.cache = cache

    def material_stock(self, material_name: str) -> float:
        if not material_name:
            return 0.0
        key = canonical_key(material_name)
        cached = self.cache.get(key)
        if cached is not None:
            return cached
        stock = stock_from_items(material_name, self.load_items())
        self.cache.set(key, stock)
        return stock

    def invalidate(self) -> None:
        # Completed orders change stock; callers drop the cache after completing one.
        self.cache.invalidate()
