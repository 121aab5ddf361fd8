import itertools
import logging
import math
import types
import typing

from dprcalc import config, lru
from dprcalc.errors import ConfigurationError, InvariantError

logger = logging.getLogger(__name__)

HIT = "hit"
CRIT = "crit"
MISS_NONE = "missNone"
MISS_DAMAGE = "missDamage"
SAVE_HALF = "saveHalf"
SAVE_FAIL = "saveFail"
PC = "pc"
LABELS = (HIT, CRIT, MISS_NONE, MISS_DAMAGE, SAVE_HALF, SAVE_FAIL, PC)

ROUNDING = {
    "floor": math.floor,
    "ceil": math.ceil,
    "round": lambda x: math.floor(x + 0.5),
}

_anonymous_ids = itertools.count(1)
_NOTHING: typing.Mapping[str, float] = types.MappingProxyType({})


def _anonymous() -> str:
    return "anon#%d" % next(_anonymous_ids)


def _default_epsilon() -> float:
    return config.get_settings().epsilon


class Bin:
    """The probability mass at one outcome.

    ``count`` splits ``p`` by label (the unlabeled remainder is implicit) and
    ``attr`` holds the damage each label contributes at this outcome.
    """

    __slots__ = ("p", "count", "attr")

    def __init__(
        self,
        p: float,
        count: typing.Optional[typing.Mapping[str, float]] = None,
        attr: typing.Optional[typing.Mapping[str, float]] = None,
    ) -> None:
        object.__setattr__(self, "p", float(p))
        object.__setattr__(self, "count", types.MappingProxyType(dict(count or {})))
        object.__setattr__(self, "attr", types.MappingProxyType(dict(attr or {})))

    def __setattr__(self, name: str, value: typing.Any) -> None:
        raise AttributeError("Bin is immutable")

    def labeled_mass(self) -> float:
        return sum(self.count.values())

    def as_dict(self) -> typing.Dict[str, typing.Any]:
        return {"p": self.p, "count": dict(self.count), "attr": dict(self.attr)}

    def __repr__(self) -> str:
        return "Bin(p=%r, count=%r, attr=%r)" % (self.p, dict(self.count), dict(self.attr))


class _Accumulator:
    def __init__(self) -> None:
        self.bins: typing.Dict[int, typing.List[typing.Any]] = {}

    def add(
        self,
        value: int,
        p: float,
        count: typing.Mapping[str, float] = _NOTHING,
        attr: typing.Mapping[str, float] = _NOTHING,
        scale: float = 1.0,
    ) -> None:
        entry = self.bins.get(value)
        if entry is None:
            entry = self.bins[value] = [0.0, {}, {}]
        entry[0] += p * scale
        for label, mass in count.items():
            entry[1][label] = entry[1].get(label, 0.0) + mass * scale
        for label, damage in attr.items():
            entry[2][label] = entry[2].get(label, 0.0) + damage * scale

    def add_bin(self, value: int, bin: Bin, scale: float = 1.0) -> None:
        self.add(value, bin.p, bin.count, bin.attr, scale)

    def freeze(
        self,
        epsilon: float,
        normalized: bool = False,
        identifier: typing.Optional[str] = None,
        preserved_provenance: bool = True,
    ) -> "PMF":
        bins = {value: Bin(p, count, attr) for value, (p, count, attr) in self.bins.items()}
        return PMF(bins, epsilon, normalized, identifier, preserved_provenance)


class FirstSuccessWeights(typing.NamedTuple):
    special: float
    general: float
    none: float
    any: float


class PMF:
    """A discrete distribution over integer outcomes with per-label provenance.

    PMFs are immutable: every operation returns a new PMF. ``identifier`` is a
    construction-based signature used for cache keys, and
    ``preserved_provenance`` is cleared by ``power`` because folding several
    identical events into one loses the per-event labels.
    """

    def __init__(
        self,
        bins: typing.Optional[typing.Mapping[int, Bin]] = None,
        epsilon: typing.Optional[float] = None,
        normalized: bool = False,
        identifier: typing.Optional[str] = None,
        preserved_provenance: bool = True,
    ) -> None:
        self._bins: typing.Dict[int, Bin] = dict(bins or {})
        self.epsilon = _default_epsilon() if epsilon is None else epsilon
        self.normalized = normalized
        self.identifier = _anonymous() if identifier is None else identifier
        self.preserved_provenance = preserved_provenance
        self._support: typing.Optional[typing.List[int]] = None
        self._mass: typing.Optional[float] = None
        self._mean: typing.Optional[float] = None
        self._variance: typing.Optional[float] = None

    @classmethod
    def empty(cls, epsilon: typing.Optional[float] = None, identifier: str = "empty") -> "PMF":
        return cls({}, epsilon, False, identifier)

    @classmethod
    def zero(cls, epsilon: typing.Optional[float] = None) -> "PMF":
        return cls({0: Bin(1.0, {MISS_NONE: 1.0})}, epsilon, True, "zero")

    @classmethod
    def empty_mass(cls, epsilon: typing.Optional[float] = None) -> "PMF":
        return cls.zero(epsilon).scale_mass(0.0)

    @classmethod
    def delta(cls, value: int, epsilon: typing.Optional[float] = None) -> "PMF":
        return cls({int(value): Bin(1.0)}, epsilon, True, "delta(%d)" % value)

    @classmethod
    def from_map(
        cls,
        probabilities: typing.Mapping[int, float],
        epsilon: typing.Optional[float] = None,
        identifier: typing.Optional[str] = None,
    ) -> "PMF":
        bins = {}
        for value, p in probabilities.items():
            p = float(p)
            if not math.isfinite(p) or p < 0:
                raise ConfigurationError("probability of %s must be a non-negative number, not %r" % (value, p))
            if p > 0:
                bins[int(value)] = Bin(p)
        result = cls(bins, epsilon, False, identifier)
        if bins and abs(result.mass() - 1) <= config.get_settings().mass_tolerance:
            result.normalized = True
        return result

    # Mixtures

    @classmethod
    def branch(cls, success: "PMF", failure: "PMF", probability: float) -> "PMF":
        p = probability if math.isfinite(probability) else 0.0
        p = min(max(p, 0.0), 1.0)
        if p == 0:
            return failure
        if p == 1:
            return success
        q = 1 - p
        identifier = "branch(%s*%r + %s*%r)" % (failure.identifier, q, success.identifier, p)
        return cls.empty(success.epsilon, identifier).add_scaled(failure, q).add_scaled(success, p, identifier)

    @classmethod
    def with_probability(cls, success: "PMF", probability: float) -> "PMF":
        return cls.branch(success, cls.zero(success.epsilon), probability)

    def gate(self, probability: float, fallback: "PMF") -> "PMF":
        return PMF.branch(self, fallback, probability)

    @classmethod
    def exclusive(
        cls,
        options: typing.Iterable[typing.Tuple["PMF", float]],
        epsilon: typing.Optional[float] = None,
    ) -> "PMF":
        if epsilon is None:
            epsilon = _default_epsilon()
        options = list(options)
        total = math.fsum(weight for _, weight in options)
        if total - 1 > epsilon:
            raise InvariantError("exclusive options have a total weight of %.6f, which exceeds 1" % total)
        result = cls.empty(epsilon)
        for pmf, weight in options:
            if weight > 0:
                result = result.add_scaled(pmf, weight)
        leftover = 1 - total
        if leftover > epsilon:
            result = result.add_scaled(cls.zero(epsilon), leftover)
        return result

    @classmethod
    def mix_n(cls, weights: typing.Iterable[typing.Tuple[float, "PMF"]]) -> "PMF":
        result: typing.Optional[PMF] = None
        total = 0.0
        for weight, pmf in weights:
            if weight <= 1e-12:
                continue
            if result is None:
                result = pmf
                total = weight
            else:
                result = cls.branch(pmf, result, weight / (total + weight))
                total += weight
        return cls.empty_mass() if result is None else result

    def add_scaled(self, other: "PMF", probability: float, identifier: typing.Optional[str] = None) -> "PMF":
        if probability == 0:
            return self
        acc = _Accumulator()
        for value, bin in self._bins.items():
            acc.add_bin(value, bin)
        for value, bin in other._bins.items():
            acc.add_bin(value, bin, probability)
        if identifier is None:
            identifier = "%s+scaled(%s,%r)" % (self.identifier, other.identifier, probability)
        return acc.freeze(self.epsilon, False, identifier)

    def add(self, other: "PMF") -> "PMF":
        return self.add_scaled(other, 1.0)

    def scale_mass(self, factor: float) -> "PMF":
        if factor == 1:
            return self
        acc = _Accumulator()
        for value, bin in self._bins.items():
            acc.add_bin(value, bin, factor)
        return acc.freeze(
            self.epsilon,
            False,
            "scale(%s,%r)" % (self.identifier, factor),
            self.preserved_provenance,
        )

    # Outcome transforms

    def map_damage(self, transform: typing.Callable[[int], int], name: typing.Optional[str] = None) -> "PMF":
        acc = _Accumulator()
        for value, bin in self._bins.items():
            acc.add_bin(int(transform(value)), bin)
        identifier = None if name is None else "map(%s,%s)" % (self.identifier, name)
        return acc.freeze(self.epsilon, self.normalized, identifier, self.preserved_provenance)

    def scale_damage(self, factor: float, rounding: str = "floor") -> "PMF":
        if rounding not in ROUNDING:
            raise ConfigurationError("unknown rounding '%s'" % rounding)
        round_fn = ROUNDING[rounding]
        return self.map_damage(lambda value: round_fn(value * factor), "%s*%r" % (rounding, factor))

    def normalize(self) -> "PMF":
        if self.normalized:
            return self
        total = self.mass()
        if total == 0:
            return self
        acc = _Accumulator()
        for value, bin in self._bins.items():
            acc.add_bin(value, bin, 1 / total)
        return acc.freeze(self.epsilon, True, self.identifier, self.preserved_provenance)

    def compact(self, epsilon: typing.Optional[float] = None, keep_final_bin: bool = False) -> "PMF":
        if epsilon is None:
            epsilon = self.epsilon
        final = max(self._bins) if keep_final_bin and self._bins else None
        bins = {}
        for value, bin in self._bins.items():
            if bin.p < epsilon and value != final:
                continue
            bins[value] = Bin(
                bin.p,
                {label: mass for label, mass in bin.count.items() if mass >= epsilon},
                {label: damage for label, damage in bin.attr.items() if abs(damage) >= epsilon},
            )
        return PMF(bins, epsilon, self.normalized, self.identifier, self.preserved_provenance)

    def prune_relative(self, eps_rel: float, min_bins: int = 0) -> "PMF":
        """Drop bins below ``eps_rel`` times the peak probability.

        The lowest and highest outcomes always survive, and when ``min_bins``
        is set the most probable bins are kept until that many remain.
        """
        if not self._bins:
            return self
        peak = max(bin.p for bin in self._bins.values())
        if peak == 0:
            return PMF(self._bins, self.epsilon, False, self.identifier, self.preserved_provenance)
        threshold = eps_rel * peak
        survivors = {min(self._bins), max(self._bins)}
        survivors.update(value for value, bin in self._bins.items() if bin.p >= threshold)
        if min_bins > 0 and len(survivors) < min_bins:
            for value, _ in sorted(self._bins.items(), key=lambda item: -item[1].p):
                survivors.add(value)
                if len(survivors) >= min_bins:
                    break
        bins = {}
        for value in survivors:
            bin = self._bins[value]
            bins[value] = Bin(
                bin.p,
                {label: mass for label, mass in bin.count.items() if abs(mass) >= threshold},
                {label: damage for label, damage in bin.attr.items() if abs(damage) >= threshold},
            )
        return PMF(bins, self.epsilon, False, "prune(%s)" % self.identifier, self.preserved_provenance)

    # Convolution

    def _fingerprint(self) -> str:
        return "%.12f|%.12f|%d|%d" % (self.mass(), self.mean(), len(self._bins), sum(self._bins))

    def convolve(self, other: "PMF", epsilon: typing.Optional[float] = None, raw: bool = False) -> "PMF":
        if epsilon is None:
            epsilon = self.epsilon
        tolerance = config.get_settings().mass_tolerance

        def prepare(pmf: PMF) -> PMF:
            if raw or abs(pmf.mass() - 1) <= tolerance:
                return pmf
            return pmf.normalize()

        a, b = prepare(self), prepare(other)
        if b.identifier < a.identifier:
            a, b = b, a

        cache = lru.active_caches().pmf
        key = ("convolve", raw, a.identifier, b.identifier, epsilon, a._fingerprint(), b._fingerprint())
        cached = cache.get(key)
        if cached is not None:
            return cached

        acc = _Accumulator()
        for a_value, a_bin in a._bins.items():
            for b_value, b_bin in b._bins.items():
                entry_count: typing.Dict[str, float] = {}
                for label, mass in a_bin.count.items():
                    entry_count[label] = mass * b_bin.p
                for label, mass in b_bin.count.items():
                    entry_count[label] = entry_count.get(label, 0.0) + mass * a_bin.p
                entry_attr: typing.Dict[str, float] = {}
                for label, damage in a_bin.attr.items():
                    entry_attr[label] = damage * b_bin.p
                for label, damage in b_bin.attr.items():
                    entry_attr[label] = entry_attr.get(label, 0.0) + damage * a_bin.p
                acc.add(a_value + b_value, a_bin.p * b_bin.p, entry_count, entry_attr)
        result = acc.freeze(epsilon, not raw, "%s%s%s" % (a.identifier, "*" if raw else "+", b.identifier))

        expected = a.mass() * b.mass() if raw else 1.0
        got = result.mass()
        if expected != 0 and got != 0 and abs(got - expected) > tolerance:
            drift = abs(got / expected - 1)
            if drift > config.get_settings().repair_tolerance:
                raise InvariantError(
                    "convolution of '%s' and '%s' has mass %r, expected %r" % (a.identifier, b.identifier, got, expected)
                )
            identifier = result.identifier
            result = PMF(result.scale_mass(expected / got)._bins, epsilon, not raw, identifier)

        cache.set(key, result)
        return result

    def convolve_raw(self, other: "PMF", epsilon: typing.Optional[float] = None) -> "PMF":
        return self.convolve(other, epsilon, raw=True)

    @classmethod
    def convolve_many(cls, pmfs: typing.Iterable["PMF"], epsilon: typing.Optional[float] = None) -> "PMF":
        pmfs = list(pmfs)
        if not pmfs:
            return cls.empty(epsilon)
        result = pmfs[0]
        for pmf in pmfs[1:]:
            result = result.convolve(pmf, epsilon)
        return result

    def power(self, n: int, epsilon: typing.Optional[float] = None) -> "PMF":
        """Convolve this PMF with itself ``n`` times by repeated squaring.

        The result folds ``n`` events into one, so it no longer answers
        per-event questions and is marked as having lost provenance.
        """
        if isinstance(n, bool) or not isinstance(n, int) or n <= 0:
            raise ConfigurationError("power(n) needs a positive integer, not %r" % (n,))
        if n == 1:
            return self
        if epsilon is None:
            epsilon = self.epsilon

        cache = lru.active_caches().pmf
        key = ("power", self.identifier, n, epsilon, self._fingerprint())
        cached = cache.get(key)
        if cached is not None:
            return cached

        base = self.normalize()
        result = base
        exponent = n - 1
        while exponent > 0:
            if exponent & 1:
                result = result.convolve(base, epsilon)
            exponent >>= 1
            if exponent > 0:
                base = base.convolve(base, epsilon)

        result = PMF(result._bins, epsilon, result.normalized, "%s^%d" % (self.identifier, n), False)
        cache.set(key, result)
        return result

    def replicate(self, n: int) -> typing.List["PMF"]:
        if isinstance(n, bool) or not isinstance(n, int) or n <= 0:
            raise ConfigurationError("replicate(n) needs a positive integer, not %r" % (n,))
        return [self] * n

    # Read-only views

    def __iter__(self) -> typing.Iterator[typing.Tuple[int, Bin]]:
        for value in self.support():
            yield value, self._bins[value]

    def items(self) -> typing.List[typing.Tuple[int, Bin]]:
        return list(self)

    def __len__(self) -> int:
        return len(self._bins)

    def __contains__(self, value: int) -> bool:
        return value in self._bins

    def __repr__(self) -> str:
        return "PMF(%s, %d bins, mass=%.6f)" % (self.identifier, len(self._bins), self.mass())

    def support(self) -> typing.List[int]:
        if self._support is None:
            self._support = sorted(self._bins)
        return list(self._support)

    def dense_support(self) -> typing.List[int]:
        if not self._bins:
            return []
        return list(range(self.min(), self.max() + 1))

    def min(self) -> int:
        return min(self._bins) if self._bins else 0

    def max(self) -> int:
        return max(self._bins) if self._bins else 0

    def mass(self) -> float:
        if self._mass is None:
            self._mass = math.fsum(bin.p for bin in self._bins.values())
        return self._mass

    def outcome_mass(self, label: str) -> float:
        return math.fsum(bin.count.get(label, 0.0) for bin in self._bins.values())

    outcome_probability = outcome_mass

    def mean(self) -> float:
        if self._mean is None:
            self._mean = math.fsum(value * bin.p for value, bin in self._bins.items())
        return self._mean

    def variance(self) -> float:
        if self._variance is None:
            mean = self.mean()
            self._variance = math.fsum((value - mean) ** 2 * bin.p for value, bin in self._bins.items())
        return self._variance

    def stdev(self) -> float:
        return math.sqrt(self.variance())

    def get(self, value: int) -> typing.Optional[Bin]:
        return self._bins.get(value)

    def p_at(self, value: int) -> float:
        bin = self._bins.get(value)
        return 0.0 if bin is None else bin.p

    def cdf_at(self, value: float) -> float:
        return math.fsum(bin.p for v, bin in self._bins.items() if v <= value)

    def tail_prob_ge(self, value: float) -> float:
        return math.fsum(bin.p for v, bin in self._bins.items() if v >= value)

    def quantile(self, p: float) -> int:
        if not self._bins:
            return 0
        total = 0.0
        for value in self.support():
            total += self._bins[value].p
            if total >= p:
                return value
        return self.max()

    def outcome_at(self, value: int, label: str) -> float:
        bin = self._bins.get(value)
        return 0.0 if bin is None else bin.count.get(label, 0.0)

    def outcome_attribution_at(self, value: int, label: str) -> float:
        bin = self._bins.get(value)
        return 0.0 if bin is None else bin.attr.get(label, 0.0)

    def outcomes(self) -> typing.List[str]:
        found = set()
        for bin in self._bins.values():
            found.update(label for label, mass in bin.count.items() if mass > 0)
        return sorted(found)

    def has_outcome(self, label: str) -> bool:
        return any(bin.count.get(label, 0.0) > 0 for bin in self._bins.values())

    def bin_at(self, value: int) -> typing.Optional[typing.Dict[str, typing.Any]]:
        bin = self._bins.get(value)
        return None if bin is None else bin.as_dict()

    def filter_outcome(self, label: str) -> "PMF":
        """The part of this PMF's mass attributable to ``label``, unnormalized."""
        bins = {}
        for value, bin in self._bins.items():
            mass = bin.count.get(label, 0.0)
            labeled = bin.labeled_mass()
            if mass <= 0 or labeled <= 0:
                continue
            share = mass / labeled
            attr = {label: bin.attr[label] * share} if label in bin.attr else {}
            bins[value] = Bin(bin.p * share, {label: mass}, attr)
        return PMF(bins, self.epsilon, False, "filter(%s,%s)" % (self.identifier, label))

    def face_total(self) -> int:
        return sum(self._bins)

    def series(self) -> typing.List[typing.Tuple[int, float]]:
        return [(value, bin.p) for value, bin in self]

    def equivalent(self, other: "PMF", tolerance: float = 1e-9) -> bool:
        values = set(self._bins) | set(other._bins)
        return all(abs(self.p_at(value) - other.p_at(value)) <= tolerance for value in values)

    @staticmethod
    def first_success_weights(p_success: float, p_special: float, n: int) -> FirstSuccessWeights:
        p_any = 1 - (1 - p_success) ** n
        denominator = 1.0 if p_success == 0 else p_success
        special = p_special * p_any / denominator
        general = (p_success - p_special) * p_any / denominator
        return FirstSuccessWeights(special, general, 1 - special - general, p_any)

    def query(self) -> "DiceQuery":
        from dprcalc.query import DiceQuery

        return DiceQuery([self])
