import typing

from dprcalc import config
from dprcalc.errors import ConfigurationError
from dprcalc.mixture import Mixture
from dprcalc.pmf import CRIT, HIT, MISS_DAMAGE, MISS_NONE, SAVE_FAIL, SAVE_HALF, PMF


class AttackWeights(typing.NamedTuple):
    hit: float
    crit: float
    miss: float

    @property
    def success(self) -> float:
        return self.hit + self.crit


class AttackResolution(typing.NamedTuple):
    pmf: PMF
    check: PMF
    hit: PMF
    crit: PMF
    miss: PMF
    weights: AttackWeights


class SaveWeights(typing.NamedTuple):
    success: float
    fail: float


class SaveResolution(typing.NamedTuple):
    pmf: PMF
    fail: PMF
    success: PMF
    weights: SaveWeights


def _bonus(bonus: typing.Optional[PMF], epsilon: float) -> PMF:
    return PMF.delta(0, epsilon) if bonus is None else bonus.normalize()


def _check_threshold(crit_threshold: int) -> None:
    if isinstance(crit_threshold, bool) or not isinstance(crit_threshold, int) or not 2 <= crit_threshold <= 20:
        raise ConfigurationError("crit threshold must be between 2 and 20, not %r" % (crit_threshold,))


def attack_check(
    d20: PMF,
    ac: int,
    modifier: int = 0,
    bonus: typing.Optional[PMF] = None,
    crit_threshold: int = 20,
) -> PMF:
    """The attack total when it lands and 0 when it misses.

    A natural 1 always misses; a natural roll at or above ``crit_threshold``
    always lands.
    """
    _check_threshold(crit_threshold)
    bonus = _bonus(bonus, d20.epsilon)
    totals: typing.Dict[int, float] = {}
    for roll, roll_bin in d20:
        for extra, extra_bin in bonus:
            total = roll + modifier + extra
            if roll == 1:
                lands = False
            else:
                lands = roll >= crit_threshold or total >= ac
            value = total if lands else 0
            totals[value] = totals.get(value, 0.0) + roll_bin.p * extra_bin.p
    return PMF.from_map(totals, d20.epsilon, "ac{%d,%+d,%s,%s}" % (ac, modifier, d20.identifier, bonus.identifier))


def attack_weights(
    d20: PMF,
    ac: int,
    modifier: int = 0,
    bonus: typing.Optional[PMF] = None,
    crit_threshold: int = 20,
) -> AttackWeights:
    _check_threshold(crit_threshold)
    d20 = d20.normalize()
    bonus = _bonus(bonus, d20.epsilon)
    hit = crit = miss = 0.0
    for roll, roll_bin in d20:
        if roll_bin.p <= 0:
            continue
        if roll >= crit_threshold:
            crit += roll_bin.p
        elif roll == 1:
            miss += roll_bin.p
        else:
            lands = bonus.tail_prob_ge(ac - modifier - roll)
            hit += roll_bin.p * lands
            miss += roll_bin.p * (1 - lands)
    return AttackWeights(hit, crit, miss)


def resolve_attack(
    d20: PMF,
    ac: int,
    hit: PMF,
    crit: typing.Optional[PMF] = None,
    miss: typing.Optional[PMF] = None,
    modifier: int = 0,
    bonus: typing.Optional[PMF] = None,
    crit_threshold: int = 20,
    can_crit: bool = True,
    epsilon: typing.Optional[float] = None,
) -> AttackResolution:
    """Mix hit, crit and miss damage by the attack's outcome probabilities.

    ``crit`` defaults to the hit damage. With ``can_crit`` off, crits count
    as ordinary hits. Misses deal ``miss`` damage when given and nothing
    otherwise.
    """
    if epsilon is None:
        epsilon = config.get_settings().epsilon
    weights = attack_weights(d20, ac, modifier, bonus, crit_threshold)
    if not can_crit:
        weights = AttackWeights(weights.hit + weights.crit, 0.0, weights.miss)
    crit_pmf = hit if crit is None else crit
    miss_pmf = PMF.delta(0, epsilon) if miss is None else miss

    mixture = Mixture(epsilon)
    if weights.hit > 0:
        mixture.add(HIT, hit, weights.hit)
    if weights.crit > 0:
        mixture.add(CRIT, crit_pmf, weights.crit)
    if weights.miss > 0:
        mixture.add(MISS_NONE if miss is None else MISS_DAMAGE, miss_pmf, weights.miss)

    return AttackResolution(
        pmf=mixture.build_pmf(epsilon),
        check=attack_check(d20, ac, modifier, bonus, crit_threshold),
        hit=hit,
        crit=crit_pmf if can_crit else PMF.delta(0, epsilon),
        miss=miss_pmf,
        weights=weights,
    )


def save_weights(
    d20: PMF,
    dc: int,
    modifier: int = 0,
    bonus: typing.Optional[PMF] = None,
) -> SaveWeights:
    d20 = d20.normalize()
    bonus = _bonus(bonus, d20.epsilon)
    success = 0.0
    for roll, roll_bin in d20:
        success += roll_bin.p * bonus.tail_prob_ge(dc - modifier - roll)
    success = min(max(success, 0.0), 1.0)
    return SaveWeights(success, 1 - success)


def resolve_save(
    d20: PMF,
    dc: int,
    fail: PMF,
    modifier: int = 0,
    bonus: typing.Optional[PMF] = None,
    half_on_success: bool = True,
    epsilon: typing.Optional[float] = None,
) -> SaveResolution:
    """Damage of an effect the target resists with a saving throw.

    A failed save takes ``fail`` in full. A successful one takes half of it,
    rounded down, or nothing when ``half_on_success`` is off.
    """
    if epsilon is None:
        epsilon = config.get_settings().epsilon
    weights = save_weights(d20, dc, modifier, bonus)
    success = fail.scale_damage(0.5, "floor") if half_on_success else PMF.delta(0, epsilon)

    mixture = Mixture(epsilon)
    if weights.fail > 0:
        mixture.add(SAVE_FAIL, fail, weights.fail)
    if weights.success > 0:
        mixture.add(SAVE_HALF if half_on_success else MISS_NONE, success, weights.success)
    return SaveResolution(mixture.build_pmf(epsilon), fail, success, weights)
