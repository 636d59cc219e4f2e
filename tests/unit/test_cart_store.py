import json
from decimal import Decimal

from storefront.cart import CartStore, MemoryStorage, CART_STORAGE_KEY

def _store(raw=None):
    storage = MemoryStorage()
    if raw is not None:
        storage.set_item(CART_STORAGE_KEY, raw)
    return storage, CartStore(storage)

def test_load_never_raises_on_corrupted_storage():
    for raw in ("{not json", json.dumps({"a": 1}), json.dumps([{"sku": "x", "quantity": 5000}]), ""):
        _, cart = _store(raw)
        assert all(1 <= it.quantity <= 1000 for it in cart.items)

def test_add_merges_by_sku_and_persists_before_returning():
    storage, cart = _store()
    assert cart.add("bpc-157", {"displayName": "BPC-157", "cachedUnitPrice": 42})
    assert cart.add("bpc-157", quantity=2)
    persisted = json.loads(storage.get_item(CART_STORAGE_KEY))
    assert persisted == [{"sku": "bpc-157", "displayName": "BPC-157", "quantity": 3, "cachedUnitPrice": 42.0}]
    assert cart.item_count() == 3

def test_add_rejects_invalid_line_without_mutation():
    storage, cart = _store()
    assert cart.add("bad sku") is False
    assert cart.items == []
    assert storage.get_item(CART_STORAGE_KEY) is None

def test_set_quantity_zero_removes_and_caps_at_max():
    _, cart = _store()
    cart.add("reta", {"displayName": "RETA"})
    cart.set_quantity("reta", 5000)
    assert cart.items[0].quantity == 1000
    cart.set_quantity("reta", 0)
    assert cart.items == []

def test_adjust_quantity_drops_line_at_zero():
    _, cart = _store()
    cart.add("reta", quantity=2)
    assert cart.adjust_quantity("reta", -1)
    assert cart.items[0].quantity == 1
    cart.adjust_quantity("reta", -1)
    assert cart.items == []
    assert cart.adjust_quantity("reta", 1) is False

def test_total_uses_tiers_for_known_skus_and_cache_otherwise():
    _, cart = _store()
    cart.add("bpc-157", {"cachedUnitPrice": 1}, quantity=10)
    cart.add("custom-kit", {"cachedUnitPrice": "12.50"}, quantity=2)
    assert cart.total() == Decimal("34.00") * 10 + Decimal("12.50") * 2

def test_subscribers_called_on_subscribe_and_each_mutation():
    _, cart = _store()
    seen = []
    unsubscribe = cart.subscribe(lambda items: seen.append(len(items)))
    cart.add("reta")
    cart.add("mots-c")
    cart.clear()
    unsubscribe()
    cart.add("reta")
    assert seen == [0, 1, 2, 0]

def test_failing_listener_does_not_break_mutation():
    _, cart = _store()

    def boom(items):
        if items:
            raise RuntimeError("listener")
    cart.subscribe(boom)
    assert cart.add("reta")
    assert cart.item_count() == 1

def test_other_tab_change_reloads_and_notifies():
    storage = MemoryStorage()
    tab_a = CartStore(storage)
    tab_b = CartStore(storage)
    seen = []
    tab_b.subscribe(lambda items: seen.append([it.sku for it in items]))

    tab_a.add("ghk-cu")

    assert [it.sku for it in tab_b.items] == ["ghk-cu"]
    assert seen[-1] == ["ghk-cu"]
    tab_a.close()
    tab_b.close()

def test_external_write_is_validated_on_reload():
    storage = MemoryStorage()
    cart = CartStore(storage)
    storage.set_item(CART_STORAGE_KEY, json.dumps([{"sku": "reta", "quantity": -3}, {"sku": "tb-500", "quantity": 2}]))
    assert [(it.sku, it.quantity) for it in cart.items] == [("tb-500", 2)]
