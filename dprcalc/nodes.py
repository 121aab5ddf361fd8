import logging
import typing

from dprcalc import config, dice, lru, pooling
from dprcalc.errors import ConfigurationError
from dprcalc.pmf import PMF

logger = logging.getLogger(__name__)


def _count(name: str, value: typing.Any, optional: bool = False) -> typing.Optional[int]:
    if value is None and optional:
        return None
    if isinstance(value, bool) or not isinstance(value, int) or value < 0:
        raise ConfigurationError("%s must be a non-negative integer, not %r" % (name, value))
    return value


class Node:
    """An immutable node of a dice expression tree.

    Subclasses implement ``signature_impl`` and ``resolve_impl``; ``resolve``
    memoizes on the signature so identical subtrees resolve once.
    """

    _frozen = False

    def __setattr__(self, name: str, value: typing.Any) -> None:
        if self._frozen:
            raise AttributeError("%s is immutable" % type(self).__name__)
        super().__setattr__(name, value)

    def _freeze(self) -> None:
        object.__setattr__(self, "_frozen", True)

    def signature(self) -> str:
        cached = self.__dict__.get("_signature")
        if cached is None:
            cached = self.signature_impl()
            object.__setattr__(self, "_signature", cached)
        return cached

    def signature_impl(self) -> str:
        raise NotImplementedError

    def resolve_impl(self, epsilon: float) -> PMF:
        raise NotImplementedError

    def resolve(self, epsilon: typing.Optional[float] = None) -> PMF:
        if epsilon is None:
            epsilon = config.get_settings().epsilon
        signature = self.signature()
        cache = lru.active_caches().resolve
        key = (signature, epsilon)
        cached = cache.get(key)
        if cached is not None:
            logger.debug("resolve cache hit for %s", signature)
            return cached
        result = self.resolve_impl(epsilon)
        result = PMF(dict(result), epsilon, result.normalized, signature, result.preserved_provenance)
        cache.set(key, result)
        return result

    def __eq__(self, other: object) -> bool:
        return isinstance(other, Node) and self.signature() == other.signature()

    def __hash__(self) -> int:
        return hash(self.signature())


class Constant(Node):
    def __init__(self, value: int) -> None:
        if isinstance(value, bool) or not isinstance(value, int):
            raise ConfigurationError("constant must be an integer, not %r" % (value,))
        self.value = value
        self._freeze()

    def signature_impl(self) -> str:
        return "c:%d" % self.value

    def resolve_impl(self, epsilon: float) -> PMF:
        return PMF.delta(self.value, epsilon)

    def __repr__(self) -> str:
        return str(self.value)


class Die(Node):
    def __init__(
        self,
        sides: int,
        reroll: typing.Optional[int] = None,
        minimum: typing.Optional[int] = None,
        explode: typing.Optional[int] = None,
    ) -> None:
        self.sides = _count("sides", sides)
        self.reroll = _count("reroll", reroll, optional=True)
        self.minimum = _count("minimum", minimum, optional=True)
        self.explode = _count("explode", explode, optional=True)
        self._freeze()

    def signature_impl(self) -> str:
        return dice.die_signature(self.sides, self.reroll, self.minimum, self.explode)

    def resolve_impl(self, epsilon: float) -> PMF:
        return dice.resolve_single_die(self.sides, self.reroll, self.minimum, self.explode, epsilon)

    def __repr__(self) -> str:
        result = "d%d" % self.sides
        if self.reroll:
            result += " reroll %d" % self.reroll
        if self.minimum:
            result += " min %d" % self.minimum
        if self.explode:
            result += " explode %d" % self.explode
        return result


class Sum(Node):
    def __init__(self, count: int, child: Node) -> None:
        self.count = _count("dice count", count)
        self.child = child
        self._freeze()

    def signature_impl(self) -> str:
        return "sum{c:%d,ch:%s}" % (self.count, self.child.signature())

    def resolve_impl(self, epsilon: float) -> PMF:
        if self.count == 0:
            return PMF.delta(0, epsilon)
        child = self.child.resolve(epsilon)
        if self.count == 1:
            return child
        return child.power(self.count, epsilon)

    def __repr__(self) -> str:
        if isinstance(self.child, Die):
            return "%d%s" % (self.count, self.child)
        return "%d(%s)" % (self.count, self.child)


class Term:
    def __init__(self, node: Node, sign: int = 1) -> None:
        if sign not in (1, -1):
            raise ConfigurationError("term sign must be 1 or -1, not %r" % (sign,))
        self.node = node
        self.sign = sign

    def __repr__(self) -> str:
        return "%s%s" % ("+" if self.sign > 0 else "-", self.node)


class Add(Node):
    def __init__(self, *terms: typing.Union[Node, Term, typing.Tuple[Node, int]]) -> None:
        converted = []
        for term in terms:
            if isinstance(term, Node):
                term = Term(term)
            elif isinstance(term, tuple):
                term = Term(*term)
            elif not isinstance(term, Term):
                raise ConfigurationError("cannot add %r" % (term,))
            converted.append(term)
        self.terms = tuple(converted)
        self._freeze()

    def _split(self) -> typing.Tuple[int, typing.List[Term]]:
        shift = 0
        rest = []
        for term in self.terms:
            if isinstance(term.node, Constant):
                shift += term.sign * term.node.value
            else:
                rest.append(term)
        return shift, rest

    def signature_impl(self) -> str:
        shift, rest = self._split()
        parts = sorted("%s%s" % ("+" if term.sign > 0 else "-", term.node.signature()) for term in rest)
        if shift or not parts:
            parts.append("c:%d" % shift)
        return "add[%s]" % ",".join(parts)

    def resolve_impl(self, epsilon: float) -> PMF:
        shift, rest = self._split()
        pmfs = []
        for term in rest:
            pmf = term.node.resolve(epsilon)
            if term.sign < 0:
                pmf = pmf.map_damage(lambda value: -value, "neg")
            pmfs.append(pmf)
        if not pmfs:
            return PMF.delta(shift, epsilon)
        result = PMF.convolve_many(pmfs, epsilon)
        if shift:
            result = result.map_damage(lambda value: value + shift, "%+d" % shift)
        return result

    def __repr__(self) -> str:
        return " ".join(repr(term) for term in self.terms).lstrip("+")


class Keep(Node):
    def __init__(self, mode: str, count: int, pool: Sum) -> None:
        if mode not in pooling.KEEP_MODES:
            raise ConfigurationError("keep mode must be one of %s, not %r" % (", ".join(pooling.KEEP_MODES), mode))
        if not isinstance(pool, Sum):
            raise ConfigurationError("can only keep dice out of a pool, not '%s'" % (pool,))
        self.mode = mode
        self.count = _count("keep count", count)
        self.pool = pool
        self._freeze()

    def signature_impl(self) -> str:
        return "keep{c:%d,m:%s,ch:%s}" % (self.count, self.mode, self.pool.signature())

    def resolve_impl(self, epsilon: float) -> PMF:
        die = self.pool.child.resolve(epsilon)
        return pooling.keep_sum(die, self.pool.count, self.count, self.mode, epsilon)

    def __repr__(self) -> str:
        return "%dk%s%d%s" % (self.pool.count, "h" if self.mode == pooling.HIGHEST else "l", self.count, self.pool.child)


class D20Roll(Node):
    def __init__(self, roll_type: str, child: typing.Optional[Node] = None) -> None:
        if roll_type not in pooling.ROLL_TYPES:
            raise ConfigurationError("roll type must be one of %s, not %r" % (", ".join(pooling.ROLL_TYPES), roll_type))
        self.roll_type = roll_type
        self.child = Die(20) if child is None else child
        self._freeze()

    def signature_impl(self) -> str:
        return "d20{t:%s,ch:%s}" % (self.roll_type, self.child.signature())

    def resolve_impl(self, epsilon: float) -> PMF:
        return pooling.lift_roll(self.child.resolve(epsilon), self.roll_type)

    def __repr__(self) -> str:
        return "%s with %s" % (self.child, self.roll_type)


class Half(Node):
    def __init__(self, child: Node) -> None:
        self.child = child
        self._freeze()

    def signature_impl(self) -> str:
        return "half{ch:%s}" % self.child.signature()

    def resolve_impl(self, epsilon: float) -> PMF:
        return self.child.resolve(epsilon).scale_damage(0.5, "floor")

    def __repr__(self) -> str:
        return "half(%s)" % self.child


def dice_pool(
    count: int,
    sides: int,
    reroll: typing.Optional[int] = None,
    minimum: typing.Optional[int] = None,
    explode: typing.Optional[int] = None,
) -> Sum:
    return Sum(count, Die(sides, reroll, minimum, explode))


def signature(node: Node) -> str:
    return node.signature()


def resolve(node: Node, epsilon: typing.Optional[float] = None) -> PMF:
    return node.resolve(epsilon)
