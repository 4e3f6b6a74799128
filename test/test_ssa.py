import unittest

from extraprotein.analysis import convert_to_ssa, remove_dead_phis
from extraprotein.ir import *
from extraprotein.verify import verify_function

from utils import parse_varform, parse_ssa, instructions_of_type, only


class TestPhiNodes(unittest.TestCase):
    def test_loop(self):
        ssa = parse_ssa("""
        int foo(int a, int b) {
            a = a + 1;
            do_call(a);
            while (a < b) {
                a = a + b;
            }
            a = a * 8;
            return a;
        }
        """)
        entry, header, body, after = ssa.basic_blocks

        assert entry.phis() == []
        phi = only(header.phis())
        assert phi.incoming_blocks == [entry, body]
        assert [v.opcode for v, _ in phi.incoming()] == ["add", "add"]
        assert body.phis() == [] and after.phis() == []

    def test_if_else(self):
        ssa = parse_ssa("""
        int bar(int a) {
            int x;
            if (a) {
                x = 1;
            } else {
                x = 2;
            }
            return x;
        }
        """)
        phi = only([phi for block in ssa for phi in block.phis()])
        assert phi.block is ssa.basic_blocks[-1]
        assert sorted(v.value for v in phi.operands) == [1, 2]

    def test_uninitialized_read_is_undef(self):
        ssa = parse_ssa("""
        int f(int c) {
            int x;
            if (c) {
                x = 1;
            }
            return x;
        }
        """)
        phi = only([phi for block in ssa for phi in block.phis()])
        kinds = sorted(type(v).__name__ for v in phi.operands)
        assert kinds == ["ConstantInt", "Undef"]

    def test_no_variables_or_copies_remain(self):
        ssa = parse_ssa("""
        int f(int n) {
            int s = 0;
            int i = n;
            while (i > 0) {
                int t = i * 2;
                s = s + t;
                i--;
            }
            return s;
        }
        """)
        for instruction in ssa.instructions():
            assert not isinstance(instruction, CopyInst)
            assert instruction.result is None
            for operand in instruction.operands:
                assert isinstance(operand, Value)
        verify_function(ssa)

    def test_dead_phis_are_removed(self):
        ssa = parse_ssa("""
        int f(int n) {
            int t = 0;
            while (n > 0) {
                t = n;
                n--;
            }
            return 0;
        }
        """)
        header = ssa.basic_blocks[1]
        phi = only(header.phis())
        assert ssa.parameters[0] in phi.operands
        assert remove_dead_phis(ssa) == 0

    def test_values_are_numbered(self):
        ssa = parse_ssa("""
        int f(int a, int b) {
            int c = a * b;
            return c + 1;
        }
        """)
        names = [i.name for i in ssa.instructions() if not isinstance(i.type, VoidType)]
        assert names == ["%0", "%1"]
        assert ssa.name_counter == 2

    def test_if_while_if(self):
        ssa = parse_ssa("""
        int ifwhileif(int a, int b, int c) {
            int g = 0;
            if (a) {
                print("starting.");
                while (a) {
                    if (b > 0) {
                        c = c + 1;
                    }
                    g += c;
                }
                print("done.");
            } else {
                print("Can't loop.");
            }
            return c;
        }
        """)
        verify_function(ssa)
        # c merges at the inner if, at the loop header, and where the outer if rejoins.
        c_phis = [phi for block in ssa for phi in block.phis() if phi.variable is not None and phi.variable.name == "c"]
        assert len(c_phis) == 3

    def test_switch_phi_incoming_blocks(self):
        ssa = parse_ssa("""
        int f(int x) {
            int y = 0;
            switch (x) {
                case 1:
                    y = 5;
                    break;
                case 2:
                    y = 6;
                default:
                    y = y + 1;
            }
            return y;
        }
        """)
        verify_function(ssa)
        after = ssa.basic_blocks[-1]
        phi = only(after.phis())
        assert len(phi.incoming_blocks) == len(after.predecessors) == 2

    def test_repr(self):
        ssa = parse_ssa("""
        int f(int a) {
            return a + 1;
        }
        """)
        text = repr(ssa)
        assert text.startswith("define i32 @f(i32 %a) {")
        assert "add i32 %a, 1" in text
        assert "ret i32 %0" in text
