import logging
import os
import typing

import lark

from dprcalc import lru
from dprcalc.errors import DiceRollError
from dprcalc.faces import FaceTable
from dprcalc.pmf import CRIT, MISS_DAMAGE, PC, PMF, SAVE_HALF

logger = logging.getLogger(__name__)

Operation = typing.Callable[..., FaceTable]

HALF = object()


class _Clause(typing.NamedTuple):
    op: Operation
    argument: typing.Optional[FaceTable]
    crit: typing.Optional[typing.Tuple[int, typing.Any]]
    save: typing.Any
    pc: typing.Any
    miss: typing.Any


def _split_lowest(table: FaceTable) -> typing.Tuple[FaceTable, FaceTable]:
    lowest = table.min_face()
    branch = FaceTable({lowest if lowest > 0 else 1: table.get(lowest)})
    return branch, table.delete_face(lowest)


def _fold(result: FaceTable, clauses: typing.Iterable[_Clause]) -> FaceTable:
    for clause in clauses:
        op = clause.op
        argument = result if clause.argument is None else clause.argument

        def branch_argument(modarg: typing.Any) -> FaceTable:
            return argument.divide_round_down(2) if modarg is HALF else modarg

        crit = save = pc = miss = None
        if clause.crit is not None:
            count, modarg = clause.crit
            crit = FaceTable()
            for _ in range(count):
                top = result.max_face()
                crit.weights[top] = result.get(top)
                result = result.delete_face(top)
            crit = op(crit, branch_argument(modarg))
        if clause.save is not None:
            save, result = _split_lowest(result)
            save = op(save, branch_argument(clause.save))
        if clause.pc is not None:
            pc, result = _split_lowest(result)
            pc = op(pc, branch_argument(clause.pc)).divide_round_down(2)
        if clause.miss is not None:
            miss, result = _split_lowest(result)
            miss = op(miss, branch_argument(clause.miss))

        result = op(result, argument)
        for label, branch in ((CRIT, crit), (SAVE_HALF, save), (MISS_DAMAGE, miss), (PC, pc)):
            if branch is not None:
                result = result.with_outcome(label, branch.weights).combine(branch)
    return result


@lark.v_args(inline=True)
class _RollParser(lark.Transformer):
    ac = lambda self: FaceTable.ac
    dc = lambda self: FaceTable.dc
    maximum = lambda self: FaceTable.maximum
    minimum = lambda self: FaceTable.minimum
    add_nonzero = lambda self: FaceTable.add_nonzero
    add = lambda self: FaceTable.add
    subtract = lambda self: FaceTable.subtract
    combine = lambda self: FaceTable.combine
    reroll = lambda self: FaceTable.reroll
    multiply = lambda self: FaceTable.multiply
    conditional_apply = lambda self: FaceTable.conditional_apply
    divide_round_down = lambda self: FaceTable.divide_round_down
    divide_round_up = lambda self: FaceTable.divide_round_up
    eq = lambda self: FaceTable.eq

    literal = lambda self, token: int(token)
    constant = lambda self, value: FaceTable.scalar(value)
    die = lambda self, sides: FaceTable.die(sides)
    group = lambda self, table: table
    start = lambda self, table: table
    half = lambda self: HALF
    modarg = lambda self, table: table
    crit = lambda self, modarg: (1, modarg)
    xcrit = lambda self, count, modarg: (count, modarg)
    save = lambda self, modarg: modarg
    pc = lambda self, modarg: modarg
    miss = lambda self, modarg: modarg

    def __init__(self, n: int = 0) -> None:
        super().__init__()
        self.n = n

    def placeholder(self) -> int:
        return self.n

    def halfling_die(self, sides: int) -> FaceTable:
        return FaceTable.die(sides).reroll(1)

    def keep_highest(self, count: int, table: FaceTable) -> FaceTable:
        result = table.copy()
        result.keep = ("highest", count)
        return result

    def keep_lowest(self, count: int, table: FaceTable) -> FaceTable:
        result = table.copy()
        result.keep = ("lowest", count)
        return result

    def argument(self, first: FaceTable, *rest: FaceTable) -> FaceTable:
        result = first
        for table in rest:
            result = result.times(table)
        return result

    def binary_clause(self, op: Operation, argument: FaceTable, crit, save, pc, miss) -> _Clause:
        return _Clause(op, argument, crit, save, pc, miss)

    def advantage_clause(self, crit, save, pc, miss) -> _Clause:
        return _Clause(FaceTable.advantage, None, crit, save, pc, miss)

    def expr(self, first: FaceTable, *clauses: _Clause) -> FaceTable:
        return _fold(first, clauses)


_grammar_file = os.path.join(os.path.dirname(__file__), "roll.lark")
with open(_grammar_file) as _file:
    _grammar = lark.Lark(_file, parser="lalr", maybe_placeholders=True)


def clean(expression: str) -> str:
    return "".join(expression.split()).lower()


def parse_table(expression: str, n: int = 0) -> FaceTable:
    try:
        return _RollParser(n).transform(_grammar.parse(clean(expression)))
    except lark.exceptions.VisitError as e:
        raise e.orig_exc
    except lark.exceptions.UnexpectedInput as e:
        raise DiceRollError("cannot parse dice expression [%s]:\n%s" % (expression, e))


def parse(expression: str, n: int = 0) -> PMF:
    """Evaluate a textual dice expression into a labeled PMF.

    Results are memoized per cleaned expression and value of ``n``.
    """
    cleaned = clean(expression)
    cache = lru.active_caches().parse
    key = (cleaned, n)
    cached = cache.get(key)
    if cached is not None:
        logger.debug("parse cache hit for %s (n=%d)", cleaned, n)
        return cached
    result = parse_table(expression, n).to_pmf("%s|n=%d" % (cleaned, n))
    cache.set(key, result)
    return result


def set_caching_enabled(enabled: bool) -> None:
    cache = lru.active_caches().parse
    cache.enabled = enabled
    if not enabled:
        cache.clear()


def get_caching_enabled() -> bool:
    return lru.active_caches().parse.enabled


def clear_parser_cache() -> None:
    lru.active_caches().parse.clear()
