import unittest

from extraprotein.ir import *
from extraprotein.verify import VerificationError, verify_function, cfg_shape

from utils import parse_ssa, CountingLoop


class TestVerifier(unittest.TestCase):
    def test_well_formed(self):
        n = Parameter("n", I32)
        verify_function(CountingLoop(Predicate.SLT, ConstantInt(I32, 0), n, parameters=[n]).function)
        verify_function(parse_ssa("""
        int f(int a, int b) {
            int x = 0;
            while (a < b) {
                if (a > 3) {
                    x += 2;
                    continue;
                }
                a++;
            }
            return x;
        }
        """))

    def test_missing_terminator(self):
        entry = BasicBlock()
        entry.append(BinaryOperator("add", ConstantInt(I32, 1), ConstantInt(I32, 2)))
        function = Function("f", [entry], [], I32)
        with self.assertRaises(VerificationError) as context:
            verify_function(function)
        assert len(context.exception.violations) == 1

    def test_successor_mismatch(self):
        built = CountingLoop(Predicate.SLT, ConstantInt(I32, 0), ConstantInt(I32, 10))
        built.body.successors = [built.exit]
        with self.assertRaises(VerificationError):
            verify_function(built.function)

    def test_phi_missing_incoming_block(self):
        built = CountingLoop(Predicate.SLT, ConstantInt(I32, 0), ConstantInt(I32, 10))
        extra = PhiNode(I32)
        built.header.prepend_phi(extra)
        extra.add_incoming(ConstantInt(I32, 1), built.entry)
        with self.assertRaises(VerificationError):
            verify_function(built.function)

    def test_phi_after_instruction(self):
        built = CountingLoop(Predicate.SLT, ConstantInt(I32, 0), ConstantInt(I32, 10))
        late = PhiNode(I32)
        late.add_incoming(ConstantInt(I32, 1), built.entry)
        late.add_incoming(ConstantInt(I32, 2), built.body)
        built.header.insert_before(late, built.header.terminator)
        with self.assertRaises(VerificationError):
            verify_function(built.function)

    def test_use_before_definition(self):
        n = Parameter("n", I32)
        built = CountingLoop(Predicate.SLT, ConstantInt(I32, 0), n, parameters=[n])
        doubled = BinaryOperator("mul", n, ConstantInt(I32, 2))
        built.body.insert_before(doubled, built.body.terminator)
        # The comparison in the header does not come after the body on every path.
        built.compare.set_operand(1, doubled)
        with self.assertRaises(VerificationError):
            verify_function(built.function)

    def test_phi_value_must_be_available_in_incoming_block(self):
        n = Parameter("n", I32)
        built = CountingLoop(Predicate.SGT, n, ConstantInt(I32, 0), step_opcode="sub", parameters=[n])
        doubled = BinaryOperator("mul", n, ConstantInt(I32, 2))
        built.body.insert_before(doubled, built.body.terminator)
        built.phi.set_operand(0, doubled) # Incoming from entry, which the body does not dominate.
        with self.assertRaises(VerificationError):
            verify_function(built.function)

        built.phi.set_operand(0, n)
        built.body.instructions.remove(doubled)
        doubled.drop_operands()
        hoisted = BinaryOperator("mul", n, ConstantInt(I32, 2))
        built.entry.insert_before(hoisted, built.entry.terminator)
        built.phi.set_operand(0, hoisted)
        verify_function(built.function)

    def test_mismatched_operand_types(self):
        entry = BasicBlock()
        wide = Parameter("wide", I64)
        add = entry.append(BinaryOperator("add", ConstantInt(I32, 1), wide))
        entry.terminate(ReturnInst(add))
        function = Function("f", [entry], [wide], I32)
        with self.assertRaises(VerificationError):
            verify_function(function)

    def test_cfg_shape(self):
        built = CountingLoop(Predicate.SLT, ConstantInt(I32, 0), ConstantInt(I32, 10))
        blocks, edges = cfg_shape(built.function)
        assert blocks == tuple(b.id for b in built.function.basic_blocks)
        assert (built.header.id, built.exit.id) in edges
        assert (built.body.id, built.header.id) in edges
        assert len(edges) == 4
