from backend.app.notifications import Notifier
from backend.app.stock import StockCalculator, stock_from_items
from backend.app.ttl_cache import TTLCache


class _Clock:
    def __init__(self):
        self.now = 0.0

    def __call__(self):
        return self.now


ITEMS = [
    {"material_name": "Cobre miúdo", "quantity": 10.0, "type": "purchase"},
    {"material_name": "cu miudo0", "quantity": 2.5, "type": "purchase"},
    {"material_name": "Cobre Miudo", "quantity": 4.0, "type": "sale"},
    {"material_name": "Ferro", "quantity": 100.0, "type": "purchase"},
]


def test_stock_counts_equivalent_names():
    assert stock_from_items("miúdo cobre", ITEMS) == 8.5
    assert stock_from_items("Fe", ITEMS) == 100.0
    assert stock_from_items("Vidro", ITEMS) == 0.0


def test_stock_never_negative():
    items = [{"material_name": "Vidro", "quantity": 3.0, "type": "sale"}]
    assert stock_from_items("Vidro", items) == 0.0


def test_ttl_cache_expires_entries():
    clock = _Clock()
    cache = TTLCache(10, clock=clock)
    cache.set("k", 1)
    clock.now = 9.9
    assert cache.get("k") == 1
    clock.now = 10.0
    assert cache.get("k") is None
    assert len(cache) == 0


def test_ttl_cache_invalidate_single_key_or_all():
    cache = TTLCache(60)
    cache.set("a", 1)
    cache.set("b", 2)
    cache.invalidate("a")
    assert cache.get("a") is None
    assert cache.get("b") == 2
    cache.invalidate()
    assert len(cache) == 0


def test_stock_calculator_caches_by_canonical_name():
    loads = []

    def load_items():
        loads.append(1)
        return ITEMS

    calc = StockCalculator(load_items, TTLCache(300))
    assert calc.material_stock("Cobre miúdo") == 8.5
    assert calc.material_stock("cu miudo") == 8.5
    assert len(loads) == 1

    calc.invalidate()
    calc.material_stock("Cobre miúdo")
    assert len(loads) == 2
    assert calc.material_stock("") == 0.0


def test_notifier_isolates_failing_subscribers():
    notifier = Notifier()
    seen = []

    def _broken(event, payload):
        raise RuntimeError("listener crashed")

    notifier.subscribe(_broken)
    unsubscribe = notifier.subscribe(lambda event, payload: seen.append((event, payload)))
    notifier.emit("order.completed", order_id="o1")
    assert seen == [("order.completed", {"order_id": "o1"})]

    unsubscribe()
    notifier.emit("order.completed", order_id="o2")
    assert len(seen) == 1


def test_ttl_cache_drops_stale_entries_on_write():
    clock = _Clock()
    cache = TTLCache(10, clock=clock)
    for i in range(5):
        cache.set(f"payment-{i}", i)
    clock.now = 10.0
    cache.set("fresh", 1)
    assert len(cache) == 1
    assert cache.get("fresh") == 1
