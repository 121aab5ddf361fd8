import logging
import math
import typing

from dprcalc import config
from dprcalc.errors import ConfigurationError
from dprcalc.pmf import PMF

logger = logging.getLogger(__name__)

FLAT = "flat"
ADVANTAGE = "advantage"
DISADVANTAGE = "disadvantage"
ELVEN_ACCURACY = "elven accuracy"
ROLL_TYPES = (FLAT, ADVANTAGE, DISADVANTAGE, ELVEN_ACCURACY)

HIGHEST = "highest"
LOWEST = "lowest"
KEEP_MODES = (HIGHEST, LOWEST)


def binomial_pmf(trials: int, p: float) -> typing.List[float]:
    """P(k successes in ``trials`` draws) for k = 0..trials."""
    if trials <= 0:
        return [1.0]
    if p <= 0:
        return [1.0] + [0.0] * trials
    if p >= 1:
        return [0.0] * trials + [1.0]
    if p > 0.5:
        return binomial_pmf(trials, 1 - p)[::-1]

    ratio = p / (1 - p)
    result = [(1 - p) ** trials]
    for k in range(trials):
        result.append(result[-1] * (trials - k) / (k + 1) * ratio)

    total = math.fsum(result)
    if total > 0 and abs(total - 1) > 1e-12:
        result = [x / total for x in result]
    return result


def _cumulative(pmf: PMF) -> typing.Tuple[typing.List[int], typing.List[float]]:
    pmf = pmf.normalize()
    support = pmf.support()
    cdf = []
    running = 0.0
    for value in support:
        running += pmf.p_at(value)
        cdf.append(min(running, 1.0))
    if cdf:
        cdf[-1] = 1.0
    return support, cdf


def best_of(pmf: PMF, n: int) -> PMF:
    """Distribution of the largest of ``n`` independent draws from ``pmf``."""
    if n == 1:
        return pmf
    support, cdf = _cumulative(pmf)
    result = {}
    previous = 0.0
    for value, f in zip(support, cdf):
        result[value] = f ** n - previous ** n
        previous = f
    return PMF.from_map(result, pmf.epsilon, "best(%s,%d)" % (pmf.identifier, n))


def worst_of(pmf: PMF, n: int) -> PMF:
    """Distribution of the smallest of ``n`` independent draws from ``pmf``."""
    if n == 1:
        return pmf
    negated = pmf.map_damage(lambda value: -value, "neg")
    best = best_of(negated, n).map_damage(lambda value: -value, "neg")
    return PMF(dict(best), pmf.epsilon, True, "worst(%s,%d)" % (pmf.identifier, n))


def lift_roll(pmf: PMF, roll_type: str) -> PMF:
    if roll_type == FLAT:
        return pmf
    elif roll_type == ADVANTAGE:
        return best_of(pmf, 2)
    elif roll_type == DISADVANTAGE:
        return worst_of(pmf, 2)
    elif roll_type == ELVEN_ACCURACY:
        return best_of(pmf, 3)
    raise ConfigurationError("unknown roll type '%s'" % roll_type)


def keep_sum(
    die: PMF,
    total: int,
    keep: int,
    mode: str = HIGHEST,
    epsilon: typing.Optional[float] = None,
) -> PMF:
    """Sum of the best (or worst) ``keep`` of ``total`` independent draws of ``die``.

    Walks the distinct faces from the kept end. For each face, the dice still
    unassigned land on it with a binomial chance conditioned on not having
    landed on an earlier face, and as many of them as the quota allows are
    committed to the sum. The state is (committed, remaining) mapped to the
    distribution of the partial sum.
    """
    if mode not in KEEP_MODES:
        raise ConfigurationError("unknown keep mode '%s'" % mode)
    if epsilon is None:
        epsilon = config.get_settings().epsilon
    identifier = "keep(%s,%d,%d,%s)" % (mode, keep, total, die.identifier)

    if total <= 0 or keep <= 0:
        return PMF.delta(0, epsilon)
    if keep >= total:
        return die.power(total, epsilon)
    if keep == 1:
        return best_of(die, total) if mode == HIGHEST else worst_of(die, total)

    die = die.normalize()
    faces = die.support()
    if mode == HIGHEST:
        faces.reverse()

    states: typing.Dict[typing.Tuple[int, int], typing.Dict[int, float]] = {(0, total): {0: 1.0}}
    unseen = 1.0
    for index, face in enumerate(faces):
        p = die.p_at(face)
        if index == len(faces) - 1 or unseen <= 0:
            chance = 1.0
        else:
            chance = min(max(p / unseen, 0.0), 1.0)

        next_states: typing.Dict[typing.Tuple[int, int], typing.Dict[int, float]] = {}
        for (committed, remaining), sums in states.items():
            if committed == keep:
                target = next_states.setdefault((keep, 0), {})
                for partial, mass in sums.items():
                    target[partial] = target.get(partial, 0.0) + mass
                continue
            for landed, weight in enumerate(binomial_pmf(remaining, chance)):
                if weight <= 0:
                    continue
                taken = min(landed, keep - committed)
                state = (keep, 0) if committed + taken == keep else (committed + taken, remaining - landed)
                target = next_states.setdefault(state, {})
                shift = taken * face
                for partial, mass in sums.items():
                    target[partial + shift] = target.get(partial + shift, 0.0) + mass * weight

        states = {}
        for state, sums in next_states.items():
            kept = {partial: mass for partial, mass in sums.items() if mass >= epsilon}
            if kept:
                states[state] = kept
        unseen -= p

    logger.debug("%s finished with %d live states", identifier, len(states))
    result = PMF.from_map(states.get((keep, 0), {}), epsilon, identifier)
    normalized = result.normalize()
    if normalized is result:
        return result
    return PMF(dict(normalized), epsilon, True, identifier)
