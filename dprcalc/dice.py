import logging
import typing

from dprcalc import config, lru, pooling
from dprcalc.pmf import PMF

logger = logging.getLogger(__name__)


def die_signature(
    sides: int,
    reroll: typing.Optional[int] = None,
    minimum: typing.Optional[int] = None,
    explode: typing.Optional[int] = None,
) -> str:
    return "d{s:%d,r:%d,m:%d,e:%d}" % (sides, reroll or 0, minimum or 0, explode or 0)


def resolve_single_die(
    sides: int,
    reroll: typing.Optional[int] = None,
    minimum: typing.Optional[int] = None,
    explode: typing.Optional[int] = None,
    epsilon: typing.Optional[float] = None,
) -> PMF:
    """One die with its per-die mechanics applied in order.

    ``reroll`` rerolls faces up to that value once and keeps the new roll,
    ``minimum`` raises low faces to that value, and ``explode`` adds exactly
    that many further rolls when the highest face comes up.
    """
    if epsilon is None:
        epsilon = config.get_settings().epsilon
    signature = die_signature(sides, reroll, minimum, explode)
    if sides <= 0:
        return PMF.delta(0, epsilon)

    cache = lru.active_caches().die
    key = (signature, epsilon)
    cached = cache.get(key)
    if cached is not None:
        return cached

    result = _face_distribution(sides, reroll or 0, epsilon)
    if minimum:
        result = result.map_damage(lambda value: max(value, minimum), "min%d" % minimum)
    if explode:
        result = _explode(result, sides, explode, epsilon)

    result = PMF(dict(result), epsilon, True, signature)
    cache.set(key, result)
    return result


def _face_distribution(sides: int, reroll: int, epsilon: float) -> PMF:
    rerolled = min(reroll, sides)
    spread = rerolled / sides / sides
    probabilities = {}
    for face in range(1, sides + 1):
        probabilities[face] = (0.0 if face <= rerolled else 1 / sides) + spread
    return PMF.from_map(probabilities, epsilon, die_signature(sides, reroll))


def _explode(pmf: PMF, top: int, times: int, epsilon: float) -> PMF:
    p_top = pmf.p_at(top)
    if p_top <= 0:
        return pmf
    exploded = pmf.power(times, epsilon).map_damage(lambda value: value + top, "+%d" % top)
    rest = PMF.from_map({value: bin.p for value, bin in pmf if value != top}, epsilon).normalize()
    return PMF.branch(exploded, rest, p_top)


def d20_roll_pmf(
    roll_type: str = pooling.FLAT,
    reroll_one: bool = False,
    epsilon: typing.Optional[float] = None,
) -> PMF:
    base = resolve_single_die(20, 1 if reroll_one else None, epsilon=epsilon)
    return pooling.lift_roll(base, roll_type)
