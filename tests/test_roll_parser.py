import pytest

from dprcalc import roll_parser
from dprcalc.errors import DiceRollError
from dprcalc.pmf import CRIT, HIT, MISS_DAMAGE, MISS_NONE, PC, SAVE_FAIL, SAVE_HALF
from dprcalc.query import DiceQuery


@pytest.mark.parametrize(
    "expression,low,high",
    [
        ("d6+3", 4, 9),
        ("d6-2", -1, 4),
        ("d6**2", 2, 12),
        ("2**(1d6+2d8+3)", 12, 50),
        ("d6/2", 1, 3),
        ("d6//2", 0, 3),
        ("d6+3**2", 8, 18),
        ("2**d6+3", 5, 15),
        ("2(d6+3)", 8, 18),
        ("d6>3", 3, 6),
        ("d6<3", 1, 3),
        ("3d6", 3, 18),
        ("d6~+0", 1, 6),
    ],
)
def test_ranges(expression, low, high):
    pmf = roll_parser.parse(expression)
    assert pmf.min() == low
    assert pmf.max() == high
    assert pmf.mass() == pytest.approx(1)


def test_sums():
    assert roll_parser.parse("3d6").mean() == pytest.approx(10.5)
    assert roll_parser.parse("2d6").p_at(7) == pytest.approx(6 / 36)
    assert roll_parser.parse("nd6", n=3).mean() == pytest.approx(10.5)
    assert roll_parser.parse("d0").support() == [0]
    assert roll_parser.parse("0d6").support() == [0]


def test_attack_roll():
    pmf = roll_parser.parse("d20+5 AC 15")
    assert pmf.mean() == pytest.approx(11)
    assert pmf.min() == 0
    assert pmf.max() == 25
    assert pmf.outcome_mass(MISS_NONE) == pytest.approx(0.45)
    assert pmf.outcome_mass(HIT) == pytest.approx(0.55)


def test_damage_on_hit():
    pmf = roll_parser.parse("(d20 + 6 AC 15) * (2d6 + 4)")
    assert pmf.min() == 0
    assert pmf.max() == 16
    assert pmf.mean() == pytest.approx(0.6 * 11)


def test_crit():
    pmf = roll_parser.parse("(d20 > d20 + 6 AC 15) * (2d6 + 4) crit (4d6 + 4)")
    assert pmf.max() == 28
    assert pmf.mean() == pytest.approx(9.9225)
    assert pmf.outcome_mass(CRIT) == pytest.approx(0.0975)
    assert pmf.outcome_at(8, CRIT) > 0
    assert pmf.outcome_at(28, CRIT) > 0
    assert pmf.outcome_at(6, CRIT) == 0


def test_expanded_crit_range():
    pmf = roll_parser.parse("(d20 > d20 + 6 AC 15) * (2d6 + 4) xcrit2 (4d6 + 4)")
    assert pmf.mean() == pytest.approx(10.57)
    assert pmf.outcome_mass(CRIT) == pytest.approx(0.19)


def test_crit_on_flat_damage():
    pmf = roll_parser.parse("d20+5 ac 15 * 10 crit 20")
    assert pmf.mean() == pytest.approx(6)
    assert pmf.outcome_mass(CRIT) == pytest.approx(0.05)
    assert pmf.outcome_mass(HIT) == pytest.approx(0.5)
    assert pmf.outcome_mass(MISS_NONE) == pytest.approx(0.45)


def test_miss_damage():
    pmf = roll_parser.parse("d20+5 ac 15 * 10 miss 5")
    assert pmf.mean() == pytest.approx(0.55 * 10 + 0.45 * 5)
    assert pmf.outcome_mass(MISS_DAMAGE) == pytest.approx(0.45)
    assert not pmf.has_outcome(MISS_NONE)


def test_potent_cantrip():
    pmf = roll_parser.parse("d20+5 ac 15 * 10 pc 10")
    assert pmf.mean() == pytest.approx(0.55 * 10 + 0.45 * 5)
    assert pmf.outcome_mass(PC) == pytest.approx(0.45)


def test_saving_throw():
    pmf = roll_parser.parse("d20 + 6 DC 15")
    assert pmf.min() == 0
    assert pmf.max() == 1
    assert pmf.outcome_mass(SAVE_FAIL) == pytest.approx(0.4)

    pmf = roll_parser.parse("d20 + 6 DC 15 * 8d6")
    assert pmf.min() == 0
    assert pmf.max() == 48
    assert pmf.mean() == pytest.approx(0.4 * 28)


def test_save_for_half():
    pmf = roll_parser.parse("d20 + 6 DC 15 * 8d6 save half")
    assert pmf.min() == 4
    assert pmf.max() == 48
    assert pmf.mass() == pytest.approx(1)
    assert pmf.outcome_at(4, SAVE_HALF) > 0
    assert pmf.outcome_at(24, SAVE_HALF) > 0
    assert pmf.outcome_at(24, SAVE_FAIL) > 0
    assert pmf.outcome_at(48, SAVE_FAIL) > 0
    assert pmf.outcome_mass(SAVE_HALF) == pytest.approx(0.6)
    assert pmf.outcome_mass(SAVE_FAIL) == pytest.approx(0.4)


def test_advantage():
    pmf = roll_parser.parse("d20!")
    assert pmf.p_at(20) == pytest.approx(0.0975)
    assert pmf.mean() == pytest.approx(13.825)


def test_halfling_die():
    pmf = roll_parser.parse("hd20")
    assert pmf.p_at(1) == pytest.approx(1 / 400)
    assert pmf.face_total() == 210
    assert roll_parser.parse("d20 reroll 1").p_at(1) == pytest.approx(1 / 400)


def test_keep_pools():
    assert roll_parser.parse("4kh3d6").mean() == pytest.approx(12.2446, abs=1e-4)
    assert roll_parser.parse("4kl3d6").mean() == pytest.approx(21 - 15869 / 1296)
    assert roll_parser.parse("2kh1d20").p_at(20) == pytest.approx(0.0975)


def test_equality_and_mixture():
    assert roll_parser.parse("d6=6").p_at(1) == pytest.approx(1 / 6)
    pmf = roll_parser.parse("d4&10")
    assert pmf.p_at(10) == pytest.approx(1 / 5)


def test_case_and_whitespace_insensitive():
    assert roll_parser.parse("3 D6") is roll_parser.parse("3d6")
    assert roll_parser.clean(" D20 + 5  AC 15 ") == "d20+5ac15"


def test_caching_can_be_disabled():
    roll_parser.set_caching_enabled(False)
    assert not roll_parser.get_caching_enabled()
    assert roll_parser.parse("3d6") is not roll_parser.parse("3d6")
    roll_parser.set_caching_enabled(True)
    first = roll_parser.parse("3d6")
    roll_parser.clear_parser_cache()
    assert roll_parser.parse("3d6") is not first


def test_errors():
    with pytest.raises(DiceRollError):
        roll_parser.parse("d6+")
    with pytest.raises(DiceRollError):
        roll_parser.parse("d6 $ 3")
    with pytest.raises(DiceRollError):
        roll_parser.parse("d6/0")
    with pytest.raises(DiceRollError):
        roll_parser.parse("-1d6")


def test_parse_table():
    table = roll_parser.parse_table("d6+1")
    assert table.faces() == [2, 3, 4, 5, 6, 7]


def test_placeholder_values_do_not_share_convolutions():
    easy = roll_parser.parse("d20 dc n", n=5)
    hard = roll_parser.parse("d20 dc n", n=15)
    assert easy.identifier != hard.identifier
    assert DiceQuery([easy, easy]).mean() == pytest.approx(0.4)
    assert DiceQuery([hard, hard]).mean() == pytest.approx(1.4)
