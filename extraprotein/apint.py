"""Fixed-width integer arithmetic.

Integers are modelled as z3 bit-vectors so that every operation wraps exactly like two's complement
hardware arithmetic of the given width. Callers pass and receive plain python ints; results are returned
as unsigned bit patterns unless stated otherwise.
"""
from z3 import BitVecVal, BitVecNumRef, BoolRef, simplify, is_true, UDiv, URem, SRem, LShR, ULT, ULE, UGT, UGE

from .ir import Predicate


def _bv(value: int, bits: int) -> BitVecNumRef:
    return BitVecVal(value, bits)

def _fold(expression) -> int:
    folded = simplify(expression)
    assert isinstance(folded, BitVecNumRef), f"Could not fold {expression} to a constant."
    return folded.as_long()

def wrap(value: int, bits: int) -> int:
    """Truncate value to bits, returning the unsigned bit pattern."""
    return _bv(value, bits).as_long()

def to_signed(value: int, bits: int) -> int:
    """Interpret the low `bits` bits of value as a two's complement number."""
    return _bv(value, bits).as_signed_long()


def evaluate_binary(opcode: str, lhs: int, rhs: int, bits: int) -> int:
    """Evaluate an integer BinaryOperator opcode on two values of width bits.

    :raises ZeroDivisionError: for division or remainder by zero, which has no defined result.
    """
    x = _bv(lhs, bits)
    y = _bv(rhs, bits)
    if opcode in ("sdiv", "udiv", "srem", "urem") and y.as_long() == 0:
        raise ZeroDivisionError(f"{opcode} by zero")

    if opcode == "add":
        expression = x + y
    elif opcode == "sub":
        expression = x - y
    elif opcode == "mul":
        expression = x * y
    elif opcode == "sdiv":
        expression = x / y # z3's / on bit-vectors is signed division.
    elif opcode == "udiv":
        expression = UDiv(x, y)
    elif opcode == "srem":
        expression = SRem(x, y) # Sign follows the dividend; z3's % follows the divisor.
    elif opcode == "urem":
        expression = URem(x, y)
    elif opcode == "shl":
        expression = x << y
    elif opcode == "ashr":
        expression = x >> y
    elif opcode == "lshr":
        expression = LShR(x, y)
    elif opcode == "and":
        expression = x & y
    elif opcode == "or":
        expression = x | y
    elif opcode == "xor":
        expression = x ^ y
    else:
        raise ValueError(f"{opcode} is not an integer binary opcode.")
    return _fold(expression)


def evaluate_compare(predicate: Predicate, lhs: int, rhs: int, bits: int) -> bool:
    x = _bv(lhs, bits)
    y = _bv(rhs, bits)
    if predicate == Predicate.EQ:
        condition: BoolRef = x == y
    elif predicate == Predicate.NE:
        condition = x != y
    elif predicate == Predicate.SGT:
        condition = x > y
    elif predicate == Predicate.SGE:
        condition = x >= y
    elif predicate == Predicate.SLT:
        condition = x < y
    elif predicate == Predicate.SLE:
        condition = x <= y
    elif predicate == Predicate.UGT:
        condition = UGT(x, y)
    elif predicate == Predicate.UGE:
        condition = UGE(x, y)
    elif predicate == Predicate.ULT:
        condition = ULT(x, y)
    elif predicate == Predicate.ULE:
        condition = ULE(x, y)
    else:
        raise ValueError(f"{predicate} is not an integer predicate.")
    return is_true(simplify(condition))


def linear_transform(value: int, bits: int, duplicate: int, amend: int) -> int:
    """Compute value * duplicate + amend in the given width.

    The multiplication is skipped when duplicate is zero and the addition is skipped when amend is zero.
    The two steps are evaluated separately, multiply first, each wrapping to the width.
    """
    result = _bv(value, bits)
    if duplicate != 0:
        result = _bv(_fold(result * _bv(duplicate, bits)), bits)
    if amend != 0:
        result = _bv(_fold(result + _bv(amend, bits)), bits)
    return result.as_long()
