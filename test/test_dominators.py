"""Test the dominators implementation and in turn the generic dataflow analysis framework it depends on,
along with the loop analysis built on top of dominance.
"""

import unittest

from extraprotein.analysis import Dominance, DominatorTree, LoopInfo, find_loops
from extraprotein.ir import *

from utils import parse_varform, parse_ssa, only


class TestDominators(unittest.TestCase):
    def test_if(self):
        code = """
        int main() {
            int x = 4;
            if (y > 3) {
                x = 5;
            }
            return x;
        }
        """
        ir = parse_varform(code)
        dominance = Dominance(ir)

        assert dominance.dominance_frontier(ir.basic_blocks[0]) == []
        assert dominance.dominance_frontier(ir.basic_blocks[1]) == [ir.basic_blocks[2]]
        assert dominance.dominance_frontier(ir.basic_blocks[2]) == []
        assert dominance.immediate_dominator(ir.basic_blocks[2]) is ir.basic_blocks[0]
        assert dominance.immediate_dominator(ir.entry_block) is None

    def test_nested_if_else(self):
        code = """
        char * foo(int x) {
            char * message;
            if (x) {
               if (x > 0) {
                   message = "x is positive.";
               } else {
                   message = "x is negative.";
               }
               printf("done!\\n");
            }
            return message;
        }
        """
        ir = parse_varform(code)
        dominance = Dominance(ir)

        # Sensitive to the order in which the parser emits basic blocks.
        entry_block = ir.entry_block
        inner_if_header = ir.basic_blocks[1]
        inner_if_true = ir.basic_blocks[2]
        inner_if_false = ir.basic_blocks[3]
        inner_post_if = ir.basic_blocks[4]
        exit_block = ir.basic_blocks[5]

        assert dominance.dominance_frontier(entry_block) == []
        assert dominance.dominance_frontier(inner_if_header) == [exit_block]
        assert dominance.dominance_frontier(inner_if_true) == [inner_post_if]
        assert dominance.dominance_frontier(inner_if_false) == [inner_post_if]
        assert dominance.dominance_frontier(inner_post_if) == [exit_block]
        assert dominance.dominance_frontier(exit_block) == []

    def test_while_loop(self):
        code = """
        int bar(int a, int b) {
            while (a < 8) {
               a++;
               b *= 7;
            }
            return b;
        }
        """
        ir = parse_varform(code)
        dominance = Dominance(ir)
        entry, header, body, after = ir.basic_blocks

        assert dominance.dominates(entry, after)
        assert dominance.dominates(header, body)
        assert not dominance.dominates(body, header)
        assert not dominance.strictly_dominates(header, header)
        assert dominance.dominance_frontier(body) == [header]
        assert dominance.dominance_frontier(header) == [header]
        assert dominance.strict_dominators(body) == [entry, header]

    def test_dominator_tree(self):
        ir = parse_varform("""
        int bar(int a, int b) {
            while (a < 8) {
               a++;
            }
            return b;
        }
        """)
        entry, header, body, after = ir.basic_blocks
        tree = DominatorTree(ir)

        assert tree.tree.block is entry
        assert [child.block for child in tree[entry]] == [header]
        assert [child.block for child in tree[header]] == [body, after]
        assert list(tree[body]) == []

    def test_value_dominates_use(self):
        ir = parse_ssa("""
        int count(int n) {
            int s = 0;
            for (int i = 0; i < n; i++) {
                s += i;
            }
            return s;
        }
        """)
        dominance = Dominance(ir)
        for instruction in ir.instructions():
            for use, operand in zip(instruction.operand_uses, instruction.operands):
                assert dominance.value_dominates_use(operand, use)


class TestLoops(unittest.TestCase):
    def test_while_loop(self):
        ir = parse_varform("""
        int bar(int a, int b) {
            while (a < 8) {
               a++;
               b *= 7;
            }
            return b;
        }
        """)
        entry, header, body, after = ir.basic_blocks
        loop = only(find_loops(ir))

        assert loop.header is header
        assert loop.blocks == [header, body]
        assert loop.latches == [body]
        assert loop.exiting_block() is header
        assert loop.exit_blocks() == [after]
        assert entry not in loop
        assert loop.depth == 1

    def test_no_loops(self):
        ir = parse_varform("""
        int f(int a) {
            if (a) {
                return 1;
            }
            return 2;
        }
        """)
        loop_info = LoopInfo(ir)
        assert loop_info.empty
        assert len(loop_info) == 0
        assert find_loops(ir) == []

    def test_nested_loops(self):
        ir = parse_varform("""
        int f(int n) {
            int s = 0;
            for (int i = 0; i < n; i++) {
                for (int j = 0; j < i; j++) {
                    s++;
                }
            }
            return s;
        }
        """)
        loop_info = LoopInfo(ir)
        assert len(loop_info.loops) == 2
        outer = only(list(loop_info))
        inner = only(outer.sub_loops)

        assert inner.parent is outer
        assert inner.depth == 2
        assert all(outer.contains(block) for block in inner.blocks)
        assert loop_info.loops_in_preorder() == [outer, inner]
        assert loop_info.loop_for(inner.header) is inner
        assert loop_info.loop_for(outer.header) is outer
        assert loop_info.loop_for(ir.entry_block) is None

    def test_continue_latches_share_header(self):
        ir = parse_varform("""
        int f(int n) {
            int s = 0;
            while (n > 0) {
                n--;
                if (n == 3) {
                    continue;
                }
                s++;
            }
            return s;
        }
        """)
        loop = only(find_loops(ir))
        assert len(loop.latches) == 2
        assert loop.exiting_block() is loop.header

    def test_multiple_exiting_blocks(self):
        ir = parse_varform("""
        int f(int n) {
            int i = 0;
            while (i < n) {
                if (i == 5) {
                    return -1;
                }
                i++;
            }
            return i;
        }
        """)
        loop = only(find_loops(ir))
        assert len(loop.exiting_blocks()) == 2
        assert loop.exiting_block() is None
        assert len(loop.exit_blocks()) == 2

    def test_self_loop(self):
        entry, looping, exit = BasicBlock(), BasicBlock(), BasicBlock()
        n = Parameter("n", I32)
        entry.terminate(BranchInst([looping]))
        phi = PhiNode(I32)
        looping.prepend_phi(phi)
        step = looping.append(BinaryOperator("sub", phi, ConstantInt(I32, 1)))
        compare = looping.append(CompareInst(Predicate.SGT, step, ConstantInt(I32, 0)))
        looping.terminate(BranchInst([looping, exit], compare))
        phi.add_incoming(n, entry)
        phi.add_incoming(step, looping)
        exit.terminate(ReturnInst(step))
        function = Function("countdown", [entry, looping, exit], [n], I32)

        loop = only(find_loops(function))
        assert loop.blocks == [looping]
        assert loop.latches == [looping]
        assert loop.exiting_block() is looping
