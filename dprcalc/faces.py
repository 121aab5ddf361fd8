import math
import typing

from dprcalc import pooling
from dprcalc.errors import DiceRollError
from dprcalc.pmf import CRIT, HIT, MISS_DAMAGE, MISS_NONE, PC, PMF, SAVE_FAIL, SAVE_HALF, Bin

Operand = typing.Union["FaceTable", int]


class FaceTable:
    """Weighted faces of a partially evaluated dice expression.

    Weights are relative (a fresh die has weight 1 per face). Besides the
    faces, a table tracks how much of each face's weight belongs to the crit,
    save, miss and potent-cantrip branches, so ``to_pmf`` can label it.
    Binary operations keep the left operand's total weight and start over
    without labels.
    """

    def __init__(
        self,
        weights: typing.Optional[typing.Dict[int, float]] = None,
        outcomes: typing.Optional[typing.Dict[str, typing.Dict[int, float]]] = None,
        is_dc_check: bool = False,
        keep: typing.Optional[typing.Tuple[str, int]] = None,
    ) -> None:
        self.weights: typing.Dict[int, float] = dict(weights or {})
        self.outcomes: typing.Dict[str, typing.Dict[int, float]] = {
            label: dict(faces) for label, faces in (outcomes or {}).items()
        }
        self.is_dc_check = is_dc_check
        self.keep = keep

    @classmethod
    def scalar(cls, value: int) -> "FaceTable":
        return cls({value: 1.0})

    @classmethod
    def die(cls, sides: int) -> "FaceTable":
        if sides <= 0:
            return cls.scalar(0)
        return cls({face: 1.0 for face in range(1, sides + 1)})

    @classmethod
    def from_pmf(cls, pmf: PMF) -> "FaceTable":
        return cls({value: bin.p for value, bin in pmf if bin.p > 0})

    @staticmethod
    def of(operand: Operand) -> "FaceTable":
        return operand if isinstance(operand, FaceTable) else FaceTable.scalar(operand)

    def __repr__(self) -> str:
        return "FaceTable(%r)" % {face: self.weights[face] for face in sorted(self.weights)}

    def copy(self) -> "FaceTable":
        return FaceTable(self.weights, self.outcomes, self.is_dc_check, self.keep)

    def total(self) -> float:
        return math.fsum(self.weights.values())

    def faces(self) -> typing.List[int]:
        return sorted(face for face, weight in self.weights.items() if weight > 0)

    def get(self, face: int) -> float:
        return self.weights.get(face, 0.0)

    def max_face(self) -> int:
        faces = self.faces()
        if not faces:
            raise DiceRollError("cannot take the highest face of an empty roll")
        return faces[-1]

    def min_face(self) -> int:
        faces = self.faces()
        if not faces:
            raise DiceRollError("cannot take the lowest face of an empty roll")
        return faces[0]

    def with_outcome(self, label: str, faces: typing.Dict[int, float]) -> "FaceTable":
        result = self.copy()
        result.outcomes[label] = dict(faces)
        return result

    def delete_face(self, face: int) -> "FaceTable":
        result = self.copy()
        result.weights.pop(face, None)
        return result

    def to_probabilities(self) -> PMF:
        total = self.total()
        if total <= 0:
            return PMF.empty()
        return PMF.from_map({face: weight / total for face, weight in self.weights.items() if weight > 0})

    # Arithmetic

    def _binary(self, other: Operand, op: typing.Callable[[int, int], int]) -> "FaceTable":
        other = FaceTable.of(other)
        other_total = other.total()
        result = FaceTable()
        if other_total <= 0:
            return result
        for a, weight_a in self.weights.items():
            for b, weight_b in other.weights.items():
                face = op(a, b)
                result.weights[face] = result.weights.get(face, 0.0) + weight_a * weight_b / other_total
        return result

    def add(self, other: Operand) -> "FaceTable":
        return self._binary(other, lambda a, b: a + b)

    def add_nonzero(self, other: Operand) -> "FaceTable":
        return self._binary(other, lambda a, b: a + b if a != 0 else a)

    def subtract(self, other: Operand) -> "FaceTable":
        return self._binary(other, lambda a, b: a - b)

    def conditional_apply(self, other: Operand) -> "FaceTable":
        return self._binary(other, lambda a, b: b if a != 0 else 0)

    def multiply(self, other: Operand) -> "FaceTable":
        return self._binary(other, lambda a, b: a * b)

    def maximum(self, other: Operand) -> "FaceTable":
        return self._binary(other, max)

    def minimum(self, other: Operand) -> "FaceTable":
        return self._binary(other, min)

    def advantage(self, other: typing.Optional[Operand] = None) -> "FaceTable":
        return self.maximum(self)

    def eq(self, other: Operand) -> "FaceTable":
        return self._binary(other, lambda a, b: 1 if a == b else 0)

    def divide_round_up(self, other: Operand) -> "FaceTable":
        return self._binary(other, lambda a, b: -(-a // _divisor(b)))

    def divide_round_down(self, other: Operand) -> "FaceTable":
        return self._binary(other, lambda a, b: a // _divisor(b))

    def ac(self, other: Operand) -> "FaceTable":
        return self._binary(other, lambda a, b: a if a >= b else 0)

    def dc(self, other: Operand) -> "FaceTable":
        result = self._binary(other, lambda a, b: 0 if a >= b else 1)
        result.is_dc_check = True
        return result

    def reroll(self, other: Operand) -> "FaceTable":
        """Reroll the faces listed in ``other`` once, keeping the new roll."""
        rerolled = set(FaceTable.of(other).faces())
        total = self.total()
        result = FaceTable()
        if total <= 0:
            return result
        again = math.fsum(weight for face, weight in self.weights.items() if face in rerolled) / total
        for face, weight in self.weights.items():
            kept = 0.0 if face in rerolled else weight
            result.weights[face] = kept + again * weight
        return result

    def combine(self, other: Operand) -> "FaceTable":
        other = FaceTable.of(other)
        result = self.copy()
        result.keep = None
        for face, weight in other.weights.items():
            result.weights[face] = result.weights.get(face, 0.0) + weight
        return result

    def repeat(self, count: int) -> "FaceTable":
        """The sum of ``count`` independent rolls of this table."""
        if count < 0:
            raise DiceRollError("cannot roll a negative number of dice (%d)" % count)
        if count == 0:
            return FaceTable.scalar(0)
        if count == 1:
            return FaceTable(self.weights)
        half = self.repeat(count // 2)
        result = half.add(half)
        if count % 2:
            result = result.add(self)
        return result

    def times(self, other: "FaceTable") -> "FaceTable":
        """Roll ``other`` as many times as this table says and add them up.

        When ``other`` carries a keep rule, only the kept dice are summed.
        """
        result = FaceTable()
        for count, weight in self.weights.items():
            if weight <= 0:
                continue
            if other.keep is not None:
                if count < 0:
                    raise DiceRollError("cannot roll a negative number of dice (%d)" % count)
                mode, keep = other.keep
                face = FaceTable.from_pmf(pooling.keep_sum(other.to_probabilities(), count, keep, mode))
            else:
                face = other.repeat(count)
            face_total = face.total()
            if face_total <= 0:
                continue
            for value, value_weight in face.weights.items():
                result.weights[value] = result.weights.get(value, 0.0) + weight * value_weight / face_total
        return result

    # Conversion

    def _hit_weights(self) -> typing.Dict[int, float]:
        hits = {}
        for face, weight in self.weights.items():
            if face == 0:
                hits[face] = 0.0
                continue
            for label in (CRIT, MISS_NONE, MISS_DAMAGE, SAVE_HALF, SAVE_FAIL, PC):
                weight -= self.outcomes.get(label, {}).get(face, 0.0)
            hits[face] = max(weight, 0.0)
        return hits

    def to_pmf(self, identifier: typing.Optional[str] = None, epsilon: typing.Optional[float] = None) -> PMF:
        """Normalize into a labeled PMF.

        Weight not claimed by a branch counts as a hit. When the expression is
        a saving throw (a save-half branch whose doubled damage also appears as
        a hit, or a DC check) hits are relabeled as failed saves and nothing is
        labeled a plain miss.
        """
        total = self.total()
        if total <= 0:
            return PMF.empty(epsilon, identifier or "empty")

        hits = self._hit_weights()
        crits = self.outcomes.get(CRIT, {})
        misses = self.outcomes.get(MISS_DAMAGE, {})
        saves = self.outcomes.get(SAVE_HALF, {})
        potent = self.outcomes.get(PC, {})
        is_save_half = any(half * 2 > 0 and hits.get(half * 2, 0.0) > 0 for half in saves)
        hit_label = SAVE_FAIL if is_save_half or self.is_dc_check else HIT

        bins = {}
        for face, weight in self.weights.items():
            if weight <= 0:
                continue
            count: typing.Dict[str, float] = {}
            for label, part in (
                (hit_label, hits.get(face, 0.0)),
                (CRIT, crits.get(face, 0.0)),
                (MISS_DAMAGE, misses.get(face, 0.0)),
                (SAVE_HALF if is_save_half else SAVE_FAIL, saves.get(face, 0.0)),
                (PC, potent.get(face, 0.0)),
            ):
                if part > 0:
                    count[label] = count.get(label, 0.0) + part / total
            if not is_save_half and not self.is_dc_check:
                claimed = (
                    hits.get(face, 0.0)
                    + crits.get(face, 0.0)
                    + misses.get(face, 0.0)
                    + saves.get(face, 0.0)
                    + potent.get(face, 0.0)
                )
                unclaimed = weight - claimed
                if unclaimed > 0:
                    count[MISS_NONE] = count.get(MISS_NONE, 0.0) + unclaimed / total
            attr = {label: mass * face for label, mass in count.items() if label != MISS_NONE}
            bins[face] = Bin(weight / total, count, attr)
        return PMF(bins, epsilon, True, identifier)


def _divisor(b: int) -> int:
    if b == 0:
        raise DiceRollError("division by zero")
    return b
