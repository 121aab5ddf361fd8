import math
import typing

from dprcalc import config
from dprcalc.errors import InvariantError
from dprcalc.pmf import PMF, Bin


class Mixture:
    """Builds one PMF out of weighted, labeled components.

    Every component's mass lands in ``Bin.count`` under its label, so the
    result still knows how much of each outcome came from a hit, a crit and
    so on.
    """

    def __init__(self, epsilon: typing.Optional[float] = None) -> None:
        if epsilon is None or not math.isfinite(epsilon):
            epsilon = config.get_settings().epsilon
        self.epsilon = epsilon
        self._totals: typing.Dict[int, float] = {}
        self._label_mass: typing.Dict[int, typing.Dict[str, float]] = {}

    def add(self, label: str, pmf: PMF, weight: float = 1.0) -> "Mixture":
        if not math.isfinite(weight) or weight <= 0:
            return self
        for value, bin in pmf:
            mass = weight * bin.p
            if bin.p <= 0 or abs(mass) < self.epsilon:
                continue
            self._totals[value] = self._totals.get(value, 0.0) + mass
            labels = self._label_mass.setdefault(value, {})
            labels[label] = labels.get(label, 0.0) + mass
        return self

    def clear(self) -> "Mixture":
        self._totals.clear()
        self._label_mass.clear()
        return self

    def size(self) -> int:
        return len(self._totals)

    def has_label(self, label: str) -> bool:
        return any(labels.get(label, 0.0) > 0 for labels in self._label_mass.values())

    def build_pmf(self, epsilon: typing.Optional[float] = None) -> PMF:
        total = math.fsum(self._totals.values())
        if not total > 0:
            raise InvariantError("mixture has zero total mass")
        bins = {}
        for value, mass in self._totals.items():
            if mass <= 0 or mass < self.epsilon:
                continue
            labels = self._label_mass.get(value, {})
            bins[value] = Bin(
                mass / total,
                {label: m / total for label, m in labels.items()},
                {label: m / total * value for label, m in labels.items()},
            )
        return PMF(bins, self.epsilon if epsilon is None else epsilon, True)

    def by_outcome(self) -> typing.Dict[str, PMF]:
        result = {}
        labels = sorted({label for masses in self._label_mass.values() for label in masses})
        for label in labels:
            masses = {
                value: masses[label]
                for value, masses in self._label_mass.items()
                if abs(masses.get(label, 0.0)) >= self.epsilon and masses.get(label, 0.0) > 0
            }
            if masses:
                result[label] = PMF.from_map(masses, self.epsilon)
        return result

    def weights(self) -> typing.Dict[str, float]:
        result: typing.Dict[str, float] = {}
        for masses in self._label_mass.values():
            for label, mass in masses.items():
                if math.isfinite(mass) and mass > 0:
                    result[label] = result.get(label, 0.0) + mass
        total = math.fsum(result.values())
        if total > 0:
            result = {label: mass / total for label, mass in result.items()}
        return result

    @classmethod
    def mix(
        cls,
        items: typing.Iterable[typing.Tuple[str, PMF, float]],
        epsilon: typing.Optional[float] = None,
    ) -> PMF:
        mixture = cls(epsilon)
        for label, pmf, weight in items:
            mixture.add(label, pmf, weight)
        return mixture.build_pmf()
