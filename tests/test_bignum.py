"""Tests for the Decimal helpers."""
from decimal import Decimal

from pixelsingularity import bignum
from pixelsingularity.bignum import D, ONE, ZERO


# ─────────────────────────────────────────────────────
# Coercion
# ─────────────────────────────────────────────────────

class TestCoercion:
    def test_float_keeps_short_repr(self):
        assert D(0.1) == Decimal('0.1')

    def test_bad_input_is_zero(self):
        assert D(None) == ZERO
        assert D('') == ZERO
        assert D('pixels') == ZERO

    def test_non_finite_is_zero(self):
        assert D(float('inf')) == ZERO
        assert D('NaN') == ZERO

    def test_huge_exponents_survive(self):
        assert D('1e1000') > D('1e999')
        assert bignum.mul('1e500', '1e500') == D('1e1000')


# ─────────────────────────────────────────────────────
# Arithmetic
# ─────────────────────────────────────────────────────

class TestArithmetic:
    def test_divide_by_zero_is_zero(self):
        assert bignum.div(10, 0) == ZERO

    def test_pow_edge_cases(self):
        assert bignum.pow(5, 0) == ONE
        assert bignum.pow(0, 3) == ZERO
        assert bignum.pow(2, 10) == D(1024)

    def test_floor_rounds_down(self):
        assert bignum.floor('2.9') == D(2)
        assert bignum.floor('-0.5') == D(-1)

    def test_sum_and_product(self):
        assert bignum.dsum(['1', 2, 3.5]) == D('6.5')
        assert bignum.dprod([]) == ONE
        assert bignum.dprod([2, '1.5']) == D(3)


# ─────────────────────────────────────────────────────
# Costs
# ─────────────────────────────────────────────────────

class TestCosts:
    def test_exponential_cost(self):
        assert bignum.exponential_cost(10, 2, 3) == D(80)

    def test_bulk_cost_is_geometric_sum(self):
        # 10 + 20 + 40
        assert bignum.bulk_cost(10, 2, 0, 3) == D(70)

    def test_bulk_cost_with_unit_multiplier_is_linear(self):
        assert bignum.bulk_cost(10, 1, 5, 4) == D(40)

    def test_bulk_cost_of_nothing(self):
        assert bignum.bulk_cost(10, 2, 0, 0) == ZERO

    def test_max_affordable_matches_bulk_cost(self):
        count = bignum.max_affordable(1000, 15, '1.15', 0)
        assert bignum.bulk_cost(15, '1.15', 0, count) <= 1000
        assert bignum.bulk_cost(15, '1.15', 0, count + 1) > 1000

    def test_max_affordable_exact_budget(self):
        assert bignum.max_affordable(70, 10, 2, 0) == 3
        assert bignum.max_affordable(69, 10, 2, 0) == 2

    def test_max_affordable_nothing_available(self):
        assert bignum.max_affordable(0, 10, 2, 0) == 0


# ─────────────────────────────────────────────────────
# Serialization
# ─────────────────────────────────────────────────────

class TestSerialization:
    def test_serialize_uses_decimal_strings(self):
        assert bignum.serialize(D('1.5')) == '1.5'

    def test_deserialize_blank_is_zero(self):
        assert bignum.deserialize('') == ZERO
        assert bignum.deserialize(None) == ZERO

    def test_valid_number_strings(self):
        assert bignum.is_valid_number_string('1e308')
        assert not bignum.is_valid_number_string('Infinity')
        assert not bignum.is_valid_number_string('abc')
        assert not bignum.is_valid_number_string(12)
