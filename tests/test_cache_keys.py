import itertools

from packages.domain.bid_comparison.cache_keys import build_cache_key, hash_content_set
from packages.domain.bid_comparison.schemas import TakeoffItem


def takeoff(*overrides):
    base = [
        TakeoffItem(id="t1", description="Stud framing", quantity=200, unit="LF", unit_cost=4.75),
        TakeoffItem(id="t2", description="Drywall", quantity=1200, unit="SF", unit_cost=1.9),
        TakeoffItem(id="t3", description="Paint", quantity=1200, unit="SF"),
    ]
    for index, changes in overrides:
        base[index] = base[index].model_copy(update=changes)
    return base


def test_key_is_invariant_under_owner_permutation():
    owners = ["bid-2", "bid-10", "bid-3"]
    keys = {build_cache_key("bid-1", list(p)) for p in itertools.permutations(owners)}
    assert len(keys) == 1


def test_key_is_invariant_under_content_reordering():
    items = takeoff()
    keys = {build_cache_key("bid-1", [], list(p)) for p in itertools.permutations(items)}
    assert len(keys) == 1


def test_key_format():
    assert build_cache_key("bid-1", ["bid-3", "bid-2"]) == "bid-1|bid-2,bid-3|"


def test_different_owner_sets_differ():
    assert build_cache_key("bid-1", ["bid-2"]) != build_cache_key("bid-1", ["bid-2", "bid-3"])
    assert build_cache_key("bid-1", ["bid-2"]) != build_cache_key("bid-2", ["bid-1"])


def test_any_content_change_invalidates_key():
    original = hash_content_set(takeoff())

    assert hash_content_set(takeoff((0, {"quantity": 201}))) != original
    assert hash_content_set(takeoff((1, {"description": "Drywall, 5/8 type X"}))) != original
    assert hash_content_set(takeoff((1, {"unit": "SY"}))) != original
    assert hash_content_set(takeoff((2, {"unit_cost": 0.85}))) != original
    assert hash_content_set(takeoff()[:2]) != original


def test_content_hash_is_sha256_hex():
    digest = hash_content_set(takeoff())
    assert len(digest) == 64
    assert int(digest, 16) >= 0
