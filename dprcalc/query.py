import bisect
import math
import sys
import typing

import pandas

from dprcalc import config
from dprcalc.errors import InvariantError
from dprcalc.pmf import CRIT, HIT, MISS_DAMAGE, MISS_NONE, PC, PMF, SAVE_FAIL, SAVE_HALF

Labels = typing.Union[str, typing.Iterable[str]]

DEFAULT_OUTCOMES = (HIT, CRIT, MISS_NONE)
STACK_ORDER = (MISS_NONE, MISS_DAMAGE, SAVE_FAIL, SAVE_HALF, PC, HIT, CRIT)


def _labels(labels: Labels) -> typing.List[str]:
    if isinstance(labels, str):
        return [labels]
    result = []
    for label in labels:
        if label not in result:
            result.append(label)
    return result


def _clamp(x: float) -> float:
    return min(max(x, 0.0), 1.0)


def _chartable(label: str, damage: int) -> bool:
    return not (label == MISS_NONE and damage != 0)


def _stack_key(label: str) -> typing.Tuple[int, str]:
    return (STACK_ORDER.index(label) if label in STACK_ORDER else len(STACK_ORDER), label)


class DamageStats(typing.NamedTuple):
    min: int
    max: int
    avg: float
    count: float


class DamageRange(typing.NamedTuple):
    min: int
    avg: float
    max: int


class OutcomeSnapshot(typing.NamedTuple):
    at_least_one_probability: float
    all_probability: float
    damage_range: DamageRange


class Snapshot(typing.NamedTuple):
    average: float
    damage_chance: float
    percentiles: typing.Dict[str, int]
    outcomes: typing.Dict[str, OutcomeSnapshot]


class FirstSuccessSplit(typing.NamedTuple):
    first_non_subset: float
    first_subset: float
    any: float
    none: float


class Series(typing.NamedTuple):
    support: typing.List[int]
    data: typing.List[float]


class AttributionSeries(typing.NamedTuple):
    support: typing.List[int]
    outcomes: typing.List[str]
    data: typing.Dict[str, typing.List[float]]


class DiceQuery:
    """Statistics over a set of independent single-event PMFs.

    ``singles`` keep their labels, so per-event questions (how likely is at
    least one crit) are answered from them; whole-turn questions (mean damage,
    percentiles) come from ``combined``, their convolution.
    """

    def __init__(
        self,
        singles: typing.Union[PMF, typing.Iterable[PMF]],
        combined: typing.Optional[PMF] = None,
        normalize: bool = True,
    ) -> None:
        self.singles: typing.List[PMF] = [singles] if isinstance(singles, PMF) else list(singles)
        if any(single is None for single in self.singles):
            raise InvariantError("query contains a missing single")
        if combined is None:
            combined = PMF.convolve_many(self.singles)
        if normalize and abs(combined.mass() - 1) > config.get_settings().mass_tolerance:
            combined = combined.normalize()
        self.combined = combined

    def __repr__(self) -> str:
        return "DiceQuery(%d singles, %r)" % (len(self.singles), self.combined)

    def _require_provenance(self, operation: str) -> None:
        for single in self.singles:
            if not single.preserved_provenance:
                raise InvariantError(
                    "%s needs per-event labels, but '%s' folds several events into one" % (operation, single.identifier)
                )

    # Whole-turn statistics

    def mean(self) -> float:
        return self.combined.mean()

    def variance(self) -> float:
        return self.combined.variance()

    def stddev(self) -> float:
        return math.sqrt(self.variance())

    def min(self) -> int:
        return self.combined.min()

    def max(self) -> int:
        return self.combined.max()

    def cdf(self, x: float) -> float:
        return self.combined.cdf_at(x)

    def prob_total_at_most(self, x: float) -> float:
        return self.cdf(x)

    def ccdf(self, x: float) -> float:
        return self.combined.tail_prob_ge(x)

    def prob_total_at_least(self, x: float) -> float:
        return self.ccdf(x)

    def prob_damage_greater_than(self, threshold: float = 0) -> float:
        return math.fsum(bin.p for value, bin in self.combined if value > threshold)

    def quantile(self, p: float) -> int:
        return self.combined.quantile(p)

    def percentiles(self, targets: typing.Iterable[float]) -> typing.List[int]:
        support = self.combined.support()
        targets = list(targets)
        if not support:
            return [0] * len(targets)
        cumulative = []
        running = 0.0
        for value in support:
            running += self.combined.p_at(value)
            cumulative.append(running)
        result = []
        for target in targets:
            index = bisect.bisect_left(cumulative, target)
            result.append(support[min(index, len(support) - 1)])
        return result

    # Per-event statistics

    def _single_probability(self, single: PMF, labels: typing.List[str]) -> float:
        return _clamp(math.fsum(single.outcome_mass(label) for label in labels))

    def _count_distribution(self, labels: Labels) -> typing.List[float]:
        labels = _labels(labels)
        table = [1.0] + [0.0] * len(self.singles)
        for single in self.singles:
            p = self._single_probability(single, labels)
            for k in range(len(self.singles), 0, -1):
                table[k] = table[k] * (1 - p) + table[k - 1] * p
            table[0] *= 1 - p
        return table

    def prob_at_least_one(self, labels: Labels) -> float:
        self._require_provenance("prob_at_least_one")
        labels = _labels(labels)
        none = 1.0
        for single in self.singles:
            none *= 1 - self._single_probability(single, labels)
        return 1 - none

    def prob_exactly_k(self, labels: Labels, k: int) -> float:
        self._require_provenance("prob_exactly_k")
        if k < 0 or k > len(self.singles):
            return 0.0
        return self._count_distribution(labels)[k]

    def prob_at_most_k(self, labels: Labels, k: int) -> float:
        self._require_provenance("prob_at_most_k")
        if k < 0:
            return 0.0
        table = self._count_distribution(labels)
        return min(math.fsum(table[: k + 1]), 1.0)

    def prob_at_least_k(self, labels: Labels, k: int) -> float:
        self._require_provenance("prob_at_least_k")
        if k <= 0:
            return 1.0
        if k > len(self.singles):
            return 0.0
        table = self._count_distribution(labels)
        return min(max(math.fsum(table[k:]), 0.0), 1.0)

    def first_success_split(
        self,
        success: Labels,
        subset: Labels,
        epsilon: typing.Optional[float] = None,
    ) -> FirstSuccessSplit:
        """Split "some event succeeded" by the kind of the first success.

        Walks the singles in order; ``subset`` must be a subset of
        ``success`` for every event.
        """
        self._require_provenance("first_success_split")
        if not self.singles:
            raise InvariantError("first_success_split needs at least one event")
        if epsilon is None:
            epsilon = config.get_settings().epsilon
        success, subset = _labels(success), _labels(subset)
        tolerance = max(epsilon, 8 * sys.float_info.epsilon)

        missed_so_far = 1.0
        first_subset = 0.0
        first_non_subset = 0.0
        for single in self.singles:
            p_success = self._single_probability(single, success)
            p_subset = self._single_probability(single, subset)
            if p_subset - p_success > epsilon:
                raise InvariantError(
                    "'%s' is more likely than '%s' in '%s'" % (",".join(subset), ",".join(success), single.identifier)
                )
            first_subset += missed_so_far * p_subset
            first_non_subset += missed_so_far * (p_success - p_subset)
            missed_so_far *= 1 - p_success

        a, b = _clamp(first_non_subset), _clamp(first_subset)
        any_ = _clamp(1 - missed_so_far)
        none = _clamp(missed_so_far)
        if abs(a + b - any_) > tolerance * max(1.0, any_) or abs(a + b + none - 1) > tolerance * 4:
            raise InvariantError("first success parts %r + %r do not add up to %r" % (a, b, any_))
        return FirstSuccessSplit(a, b, any_, none)

    def probability_of(self, labels: Labels) -> float:
        labels = _labels(labels)
        return math.fsum(
            bin.p for _, bin in self.combined if any(bin.count.get(label, 0.0) > 0 for label in labels)
        )

    def miss_chance(self) -> float:
        return self.probability_of([MISS_DAMAGE, MISS_NONE])

    def expected_damage_from(self, labels: Labels) -> float:
        labels = _labels(labels)
        return math.fsum(bin.attr.get(label, 0.0) for _, bin in self.combined for label in labels)

    def damage_stats_from(self, labels: Labels) -> DamageStats:
        labels = _labels(labels)
        low = high = None
        total = 0.0
        weight = 0.0
        for value, bin in self.combined:
            labeled = math.fsum(bin.count.get(label, 0.0) for label in labels if bin.count.get(label, 0.0) > 0)
            if value <= 0 or labeled <= 0:
                continue
            low = value if low is None else min(low, value)
            high = value if high is None else max(high, value)
            w = labeled if len(labels) == 1 else bin.p
            total += value * w
            weight += w
        return DamageStats(low or 0, high or 0, total / weight if weight > 0 else 0.0, weight)

    def combined_damage_stats(self, label: str) -> DamageStats:
        """Damage when every event comes out as ``label``."""
        self._require_provenance("combined_damage_stats")
        stats = [DiceQuery([single]).damage_stats_from(label) for single in self.singles]
        if not stats or any(s.count == 0 for s in stats):
            return DamageStats(0, 0, 0.0, 0.0)
        return DamageStats(
            sum(s.min for s in stats),
            sum(s.max for s in stats),
            math.fsum(s.avg for s in stats),
            math.prod(s.count for s in stats),
        )

    def outcome_keys(self, order: typing.Optional[typing.Sequence[str]] = None) -> typing.List[str]:
        keys = self.combined.outcomes() or list(DEFAULT_OUTCOMES)
        if order:
            keys = sorted((key for key in keys if key in order), key=list(order).index)
        return keys

    def outcome_totals(self, outcomes: typing.Optional[typing.Iterable[str]] = None) -> typing.Dict[str, float]:
        outcomes = self.outcome_keys() if outcomes is None else list(outcomes)
        return {label: self.combined.outcome_mass(label) for label in outcomes}

    def outcome_damage_ranges(
        self, outcomes: typing.Optional[typing.Iterable[str]] = None
    ) -> typing.Dict[str, DamageRange]:
        outcomes = self.outcome_keys() if outcomes is None else list(outcomes)
        result = {}
        for label in outcomes:
            values = [(value, bin.count.get(label, 0.0)) for value, bin in self.combined if bin.count.get(label, 0.0) > 0]
            mass = math.fsum(p for _, p in values)
            if not values or mass <= 0:
                result[label] = DamageRange(0, 0.0, 0)
                continue
            average = math.fsum(value * p for value, p in values) / mass
            result[label] = DamageRange(values[0][0], average, values[-1][0])
        return result

    def snapshot(self, order: typing.Optional[typing.Sequence[str]] = None) -> Snapshot:
        outcomes = self.outcome_keys(order)
        totals = self.outcome_totals(outcomes)
        ranges = self.outcome_damage_ranges(outcomes)
        summary = {
            label: OutcomeSnapshot(totals[label], totals[label], ranges[label]) for label in outcomes
        }
        p25, p50, p75 = self.percentiles([0.25, 0.5, 0.75])
        return Snapshot(
            average=self.mean(),
            damage_chance=self.prob_damage_greater_than(0),
            percentiles={"p25": p25, "p50": p50, "p75": p75},
            outcomes=summary,
        )

    # Views

    def to_chart_series(self) -> typing.List[typing.Tuple[int, float]]:
        return self.combined.series()

    def to_labeled_table(self, labels: typing.Iterable[str] = ()) -> typing.List[typing.Dict[str, float]]:
        labels = list(labels)
        rows = []
        for value, bin in self.combined:
            row: typing.Dict[str, float] = {"damage": value, "total": bin.p}
            for label in labels:
                row[label] = bin.count.get(label, 0.0)
            rows.append(row)
        return rows

    def to_dataframe(self, labels: typing.Optional[typing.Iterable[str]] = None) -> pandas.DataFrame:
        labels = self.combined.outcomes() if labels is None else list(labels)
        frame = pandas.DataFrame.from_records(
            self.to_labeled_table(labels), columns=["damage", "total"] + labels
        )
        return frame.set_index("damage")

    def to_stacked_chart_data(
        self, labels: typing.Iterable[str] = (), epsilon: float = 1e-12
    ) -> typing.Dict[str, typing.Any]:
        support = self.combined.support()
        datasets = []
        for label in labels:
            data = []
            for value in support:
                mass = self.combined.outcome_at(value, label)
                data.append(0.0 if mass <= epsilon else mass)
            datasets.append({"label": label, "data": data})
        return {"labels": support, "datasets": datasets}

    def _attribution(
        self,
        field: str,
        as_percentages: bool,
        chartable: typing.Callable[[str, int], bool],
    ) -> AttributionSeries:
        support = self.combined.dense_support()
        if not support:
            return AttributionSeries([], [], {})
        found = set()
        for _, bin in self.combined:
            found.update(label for label, x in getattr(bin, field).items() if x > 0)
        outcomes = sorted(found, key=_stack_key)
        data: typing.Dict[str, typing.List[float]] = {label: [] for label in outcomes}
        for value in support:
            bin = self.combined.get(value)
            parts = {} if bin is None else getattr(bin, field)
            total = math.fsum(x for label, x in parts.items() if chartable(label, value))
            for label in outcomes:
                part = parts.get(label, 0.0)
                if bin is None or not chartable(label, value) or total == 0:
                    data[label].append(0.0)
                elif field == "count":
                    share = bin.p * part / total
                    data[label].append(share * 100 if as_percentages else share)
                elif as_percentages:
                    data[label].append(part / total * 100 * bin.p * 100)
                else:
                    data[label].append(part)
        return AttributionSeries(support, outcomes, data)

    def to_attribution_chart_series(
        self,
        as_percentages: bool = True,
        chartable: typing.Callable[[str, int], bool] = _chartable,
    ) -> AttributionSeries:
        """Each outcome's share of the probability at every damage value."""
        return self._attribution("count", as_percentages, chartable)

    def to_damage_attribution_chart_series(
        self,
        as_percentages: bool = True,
        chartable: typing.Callable[[str, int], bool] = _chartable,
    ) -> AttributionSeries:
        """Each outcome's share of the damage at every damage value."""
        return self._attribution("attr", as_percentages, chartable)

    def to_cdf_series(self, as_percentages: bool = True) -> Series:
        support = self.combined.dense_support()
        data = []
        running = 0.0
        for value in support:
            running += self.combined.p_at(value)
            data.append(running * 100 if as_percentages else running)
        return Series(support, data)

    def to_ccdf_series(self, as_percentages: bool = True) -> Series:
        support = self.combined.dense_support()
        data = []
        below = 0.0
        for value in support:
            data.append((1 - below) * 100 if as_percentages else 1 - below)
            below += self.combined.p_at(value)
        return Series(support, data)

    # Transforms

    @staticmethod
    def _derive(pmf: PMF) -> "DiceQuery":
        return DiceQuery([pmf], pmf, normalize=False)

    def normalize(self) -> "DiceQuery":
        return DiceQuery([self.combined.normalize()])

    def compact(self, epsilon: typing.Optional[float] = None, keep_final_bin: bool = False) -> "DiceQuery":
        return self._derive(self.combined.compact(epsilon, keep_final_bin))

    def add_scaled(self, other: "DiceQuery", probability: float) -> "DiceQuery":
        return self._derive(self.combined.add_scaled(other.combined, probability))

    def scale_mass(self, factor: float) -> "DiceQuery":
        return self._derive(self.combined.scale_mass(factor))

    def total_mass(self) -> float:
        return self.combined.mass()

    def map_damage(self, transform: typing.Callable[[int], int]) -> "DiceQuery":
        return self._derive(self.combined.map_damage(transform))

    def scale_damage(self, factor: float, rounding: str = "floor") -> "DiceQuery":
        return self._derive(self.combined.scale_damage(factor, rounding))

    def convolve(self, other: "DiceQuery") -> "DiceQuery":
        return DiceQuery(self.singles + other.singles)
