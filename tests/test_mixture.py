import pytest

from dprcalc.errors import InvariantError
from dprcalc.mixture import Mixture
from dprcalc.pmf import CRIT, HIT, MISS_NONE, PMF


def test_build_pmf():
    mixture = Mixture().add(HIT, PMF.delta(5), 0.6).add(MISS_NONE, PMF.delta(0), 0.4)
    assert mixture.size() == 2
    assert mixture.has_label(HIT)
    assert not mixture.has_label(CRIT)
    pmf = mixture.build_pmf()
    assert pmf.normalized
    assert pmf.p_at(5) == pytest.approx(0.6)
    assert pmf.outcome_at(5, HIT) == pytest.approx(0.6)
    assert pmf.outcome_attribution_at(5, HIT) == pytest.approx(3)
    assert mixture.weights() == {HIT: pytest.approx(0.6), MISS_NONE: pytest.approx(0.4)}


def test_relative_weights_are_normalized():
    pmf = Mixture().add(HIT, PMF.delta(1), 2).add(CRIT, PMF.delta(2), 2).build_pmf()
    assert pmf.p_at(1) == pytest.approx(0.5)
    assert pmf.outcome_at(2, CRIT) == pytest.approx(0.5)


def test_shared_outcomes_keep_both_labels():
    d4 = PMF.from_map({face: 0.25 for face in range(1, 5)})
    pmf = Mixture.mix([(HIT, d4, 0.75), (CRIT, PMF.delta(4), 0.25)])
    assert pmf.p_at(4) == pytest.approx(0.75 / 4 + 0.25)
    assert pmf.outcome_at(4, HIT) == pytest.approx(0.75 / 4)
    assert pmf.outcome_at(4, CRIT) == pytest.approx(0.25)


def test_by_outcome():
    mixture = Mixture().add(HIT, PMF.delta(5), 0.6).add(CRIT, PMF.delta(10), 0.1)
    parts = mixture.by_outcome()
    assert sorted(parts) == [CRIT, HIT]
    assert parts[CRIT].support() == [10]
    assert parts[CRIT].mass() == pytest.approx(0.1)


def test_empty_mixture():
    with pytest.raises(InvariantError):
        Mixture().build_pmf()
    mixture = Mixture().add(HIT, PMF.delta(1), 0).add(HIT, PMF.delta(1), float("nan"))
    assert mixture.size() == 0
    assert Mixture().add(HIT, PMF.delta(1)).clear().size() == 0
