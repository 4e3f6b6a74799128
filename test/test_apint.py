import unittest

from extraprotein.apint import wrap, to_signed, evaluate_binary, evaluate_compare, linear_transform
from extraprotein.ir import Predicate


class TestFixedWidthArithmetic(unittest.TestCase):
    def test_wrap_and_sign(self):
        assert wrap(256, 8) == 0
        assert wrap(-1, 8) == 255
        assert to_signed(255, 8) == -1
        assert to_signed(127, 8) == 127
        assert to_signed(0x80000000, 32) == -2147483648

    def test_overflow_wraps(self):
        assert to_signed(evaluate_binary("add", 127, 1, 8), 8) == -128
        assert evaluate_binary("mul", 0x80000000, 2, 32) == 0
        assert evaluate_binary("sub", 0, 1, 16) == 0xFFFF

    def test_division_rounds_toward_zero(self):
        assert to_signed(evaluate_binary("sdiv", wrap(-7, 32), 2, 32), 32) == -3
        assert to_signed(evaluate_binary("srem", wrap(-7, 32), 2, 32), 32) == -1
        assert to_signed(evaluate_binary("srem", 7, wrap(-2, 32), 32), 32) == 1
        assert evaluate_binary("udiv", wrap(-8, 32), 2, 32) == 0x7FFFFFFC

    def test_division_by_zero(self):
        with self.assertRaises(ZeroDivisionError):
            evaluate_binary("sdiv", 1, 0, 32)
        with self.assertRaises(ZeroDivisionError):
            evaluate_binary("urem", 1, 0, 32)

    def test_shifts(self):
        assert evaluate_binary("shl", 1, 4, 8) == 16
        assert evaluate_binary("ashr", 0x80, 1, 8) == 0xC0
        assert evaluate_binary("lshr", 0x80, 1, 8) == 0x40

    def test_unknown_opcode(self):
        with self.assertRaises(ValueError):
            evaluate_binary("fadd", 1, 2, 32)

    def test_signed_and_unsigned_compare(self):
        minus_one = wrap(-1, 32)
        assert evaluate_compare(Predicate.SLT, minus_one, 0, 32)
        assert not evaluate_compare(Predicate.ULT, minus_one, 0, 32)
        assert evaluate_compare(Predicate.UGE, minus_one, 0, 32)
        assert evaluate_compare(Predicate.EQ, 5, 5, 32)
        assert evaluate_compare(Predicate.NE, 5, 6, 32)
        assert evaluate_compare(Predicate.SLE, 5, 5, 32)

    def test_linear_transform(self):
        assert linear_transform(10, 32, 2, 0) == 20
        assert linear_transform(3, 32, 0, 5) == 8
        assert linear_transform(3, 32, 2, 5) == 11
        assert linear_transform(7, 32, 0, 0) == 7

    def test_linear_transform_wraps_each_step(self):
        assert linear_transform(0x7FFFFFFF, 32, 2, 0) == 0xFFFFFFFE
        assert linear_transform(200, 8, 2, 0) == 144
        assert linear_transform(200, 8, 2, 100) == 244
        assert linear_transform(255, 8, 0, 1) == 0
