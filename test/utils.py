"""Helpers for building functions to test against, either from C code or directly from IR objects.
"""

from typing import List, Optional

from extraprotein.lang.c import parse
from extraprotein.analysis import convert_to_ssa, number_values
from extraprotein.ir import *


def parse_varform(code: str) -> Function:
    return parse(bytes(code, "utf8"))[0]

def parse_ssa(code: str) -> Function:
    return convert_to_ssa(parse_varform(code))

def instructions_of_type(function: Function, instruction_type: type) -> List[Instruction]:
    return [i for i in function.instructions() if isinstance(i, instruction_type)]

def only(items: list):
    assert len(items) == 1, f"Expected exactly one item, found {len(items)}: {items}"
    return items[0]


class CountingLoop:
    """A hand-built single-block loop:

        entry:  br header
        header: i = phi [start, entry], [next, body]
                cond = icmp predicate i, bound      (or bound, i)
                br cond, <body or exit>, <exit or body>
        body:   next = step_opcode i, 1
                br header
        exit:   ret i

    Used for exit branch shapes that the C frontend never emits (C conditions always branch into the
    loop when true).
    """
    def __init__(self, predicate: Predicate, start: Value, bound: Value, exit_on_true: bool = False,
                 step_opcode: str = "add", phi_on_left: bool = True, parameters: Optional[List[Parameter]] = None):
        self.entry = BasicBlock()
        self.header = BasicBlock()
        self.body = BasicBlock()
        self.exit = BasicBlock()

        self.entry.terminate(BranchInst([self.header]))

        self.phi = PhiNode(I32)
        self.header.prepend_phi(self.phi)
        if phi_on_left:
            self.compare = CompareInst(predicate, self.phi, bound)
        else:
            self.compare = CompareInst(predicate, bound, self.phi)
        self.header.append(self.compare)
        if exit_on_true:
            self.header.terminate(BranchInst([self.exit, self.body], self.compare))
        else:
            self.header.terminate(BranchInst([self.body, self.exit], self.compare))

        self.step = BinaryOperator(step_opcode, self.phi, ConstantInt(I32, 1))
        self.body.append(self.step)
        self.body.terminate(BranchInst([self.header]))

        self.phi.add_incoming(start, self.entry)
        self.phi.add_incoming(self.step, self.body)
        self.exit.terminate(ReturnInst(self.phi))

        self.function = Function("loop", [self.entry, self.header, self.body, self.exit], parameters or [], I32)
        number_values(self.function)
