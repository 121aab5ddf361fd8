import pytest

from dprcalc import lru, nodes, pooling
from dprcalc.errors import ConfigurationError


def test_constant():
    pmf = nodes.resolve(nodes.Constant(4))
    assert pmf.support() == [4]
    assert pmf.identifier == "c:4"


def test_sum():
    three = nodes.dice_pool(3, 6)
    pmf = three.resolve()
    assert pmf.mean() == pytest.approx(10.5)
    assert pmf.min() == 3
    assert pmf.max() == 18
    assert not pmf.preserved_provenance
    assert nodes.Sum(0, nodes.Die(6)).resolve().support() == [0]
    assert nodes.Sum(1, nodes.Die(6)).resolve().preserved_provenance


def test_add_signature_is_order_independent():
    a = nodes.Add(nodes.dice_pool(2, 6), nodes.Constant(3), nodes.Die(8))
    b = nodes.Add(nodes.Die(8), nodes.Constant(1), nodes.dice_pool(2, 6), nodes.Constant(2))
    assert a.signature() == b.signature()
    assert a == b
    assert hash(a) == hash(b)
    assert nodes.Add(nodes.Die(8)) != nodes.Add((nodes.Die(8), -1))


def test_add_folds_constants():
    add = nodes.Add(nodes.Constant(1), nodes.Constant(2))
    assert add.signature() == "add[c:3]"
    assert add.resolve().support() == [3]
    assert nodes.Add().resolve().support() == [0]


def test_add_with_negative_terms():
    pmf = nodes.Add((nodes.Die(6), -1), nodes.Constant(2)).resolve()
    assert pmf.support() == [-4, -3, -2, -1, 0, 1]
    pmf = nodes.Add(nodes.dice_pool(2, 6), nodes.Term(nodes.Die(4), -1)).resolve()
    assert pmf.mean() == pytest.approx(7 - 2.5)
    assert pmf.min() == -2
    assert pmf.max() == 11


def test_term_sign():
    with pytest.raises(ConfigurationError):
        nodes.Term(nodes.Die(6), 2)
    with pytest.raises(ConfigurationError):
        nodes.Add("d6")


def test_keep():
    keep = nodes.Keep(pooling.HIGHEST, 3, nodes.dice_pool(4, 6))
    assert keep.resolve().mean() == pytest.approx(15869 / 1296)
    assert keep.signature() == "keep{c:3,m:highest,ch:sum{c:4,ch:d{s:6,r:0,m:0,e:0}}}"
    with pytest.raises(ConfigurationError):
        nodes.Keep("middle", 3, nodes.dice_pool(4, 6))
    with pytest.raises(ConfigurationError):
        nodes.Keep(pooling.HIGHEST, 3, nodes.Die(6))


def test_d20_roll():
    assert nodes.D20Roll(pooling.ADVANTAGE).resolve().p_at(20) == pytest.approx(0.0975)
    halfling = nodes.D20Roll(pooling.FLAT, nodes.Die(20, reroll=1)).resolve()
    assert halfling.p_at(1) == pytest.approx(1 / 400)
    with pytest.raises(ConfigurationError):
        nodes.D20Roll("super advantage")


def test_half():
    pmf = nodes.Half(nodes.Die(6)).resolve()
    assert pmf.support() == [0, 1, 2, 3]
    assert pmf.p_at(0) == pytest.approx(1 / 6)


def test_invalid_configuration():
    with pytest.raises(ConfigurationError):
        nodes.Die(-1)
    with pytest.raises(ConfigurationError):
        nodes.Die(6.5)
    with pytest.raises(ConfigurationError):
        nodes.Die(6, explode=-1)
    with pytest.raises(ConfigurationError):
        nodes.Sum(-2, nodes.Die(6))
    with pytest.raises(ConfigurationError):
        nodes.Constant(True)


def test_nodes_are_immutable():
    die = nodes.Die(6)
    with pytest.raises(AttributeError):
        die.sides = 8


def test_resolve_is_memoized():
    node = nodes.Add(nodes.dice_pool(2, 6), nodes.Constant(3))
    first = node.resolve()
    assert node.resolve() is first
    assert first.identifier == node.signature()
    assert lru.active_caches().resolve.hits >= 1


def test_resolution_is_deterministic():
    node = nodes.Add(nodes.Keep(pooling.HIGHEST, 2, nodes.dice_pool(3, 8)), nodes.Die(6, explode=1))
    cached = node.resolve()
    with lru.use_caches(lru.CacheSet.disabled()):
        first = node.resolve()
        second = node.resolve()
    assert first is not second
    assert first.support() == second.support() == cached.support()
    for value in first.support():
        assert first.p_at(value) == second.p_at(value)
        assert first.p_at(value) == pytest.approx(cached.p_at(value))
