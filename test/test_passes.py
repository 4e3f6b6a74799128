import unittest
from typing import Optional

from extraprotein.analysis import Dominance, DominatorTree, LoopInfo
from extraprotein.ir import *
from extraprotein.loopbound import ExtraProteinPass
from extraprotein.passes import FunctionPass, AnalysisManager, PassManager
from extraprotein.verify import VerificationError

from utils import parse_ssa, instructions_of_type


LOOPS = """
int count(int n) {
    int s = 0;
    for (int i = 0; i < 10; i++) {
        s += 1;
    }
    return s;
}
"""

STRAIGHT_LINE = """
int add(int a, int b) {
    return a + b;
}
"""


class AddsBlock(FunctionPass):
    """Claims to preserve the control flow graph but does not."""
    name = "adds-block"
    preserves_cfg = True

    def run(self, function: Function, analyses: Optional[AnalysisManager] = None) -> bool:
        block = BasicBlock()
        block.terminate(ReturnInst(ConstantInt(I32, 0)))
        block.parent = function
        function.basic_blocks.append(block)
        return True


class BreaksDominance(FunctionPass):
    """Moves the first value-producing instruction after its users."""
    name = "breaks-dominance"
    preserves_cfg = True

    def run(self, function: Function, analyses: Optional[AnalysisManager] = None) -> bool:
        for block in function:
            for instruction in block:
                if instruction.kind is InstructionKind.BINARY:
                    block.instructions.remove(instruction)
                    block.insert_before(instruction, block.terminator)
                    return True
        return False


class TestAnalysisManager(unittest.TestCase):
    def test_caching(self):
        function = parse_ssa(LOOPS)
        analyses = AnalysisManager(function)
        loop_info = analyses.get(LoopInfo)
        assert analyses.get(LoopInfo) is loop_info
        assert analyses.get(Dominance) is analyses.get(Dominance)
        assert isinstance(analyses.get(DominatorTree), DominatorTree)

    def test_invalidation(self):
        function = parse_ssa(LOOPS)
        analyses = AnalysisManager(function)
        loop_info = analyses.get(LoopInfo)

        analyses.invalidate(preserve_cfg=True)
        assert analyses.get(LoopInfo) is loop_info
        analyses.invalidate()
        assert analyses.get(LoopInfo) is not loop_info

    def test_unknown_analysis(self):
        analyses = AnalysisManager(parse_ssa(STRAIGHT_LINE))
        with self.assertRaises(KeyError):
            analyses.get(int)


class TestPassManager(unittest.TestCase):
    def test_changed_flag_is_aggregated(self):
        manager = PassManager([ExtraProteinPass()], verify=True)
        assert manager.run([parse_ssa(STRAIGHT_LINE), parse_ssa(LOOPS)])
        assert not manager.run([parse_ssa(STRAIGHT_LINE)])

    def test_passes_run_in_order(self):
        function = parse_ssa(LOOPS)
        manager = PassManager([ExtraProteinPass(), ExtraProteinPass(duplicate=0, amend=1)], verify=True)
        assert manager.run([function])
        compare = instructions_of_type(function, CompareInst)[0]
        assert compare.rhs.value == 21

    def test_cfg_change_is_detected(self):
        manager = PassManager([AddsBlock()], verify=True)
        with self.assertRaises(VerificationError):
            manager.run([parse_ssa(STRAIGHT_LINE)])

    def test_cfg_change_is_ignored_without_verification(self):
        manager = PassManager([AddsBlock()])
        assert manager.run([parse_ssa(STRAIGHT_LINE)])

    def test_broken_dominance_is_detected(self):
        function = parse_ssa("""
        int f(int a) {
            int b = a * 2;
            return b + 1;
        }
        """)
        manager = PassManager([BreaksDominance()], verify=True)
        with self.assertRaises(VerificationError):
            manager.run([function])
