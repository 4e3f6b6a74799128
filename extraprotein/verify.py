"""Consistency checks for SSA-form functions."""

from typing import FrozenSet, List, Tuple

from .ir import *
from .analysis import Dominance


class VerificationError(Exception):
    def __init__(self, message: str, violations: List[str]):
        super().__init__(message if not violations else message + "\n  " + "\n  ".join(violations))
        self.violations = violations


def cfg_shape(function: Function) -> Tuple[Tuple[int, ...], FrozenSet[Tuple[int, int]]]:
    """The block ids of function in order and its edge set, for comparing the graph before and after a pass."""
    blocks = tuple(block.id for block in function.basic_blocks)
    edges = frozenset((source.id, target.id) for source, target in function.edges())
    return blocks, edges


def _check_block_structure(block: BasicBlock, violations: List[str]):
    terminators = [i for i in block.instructions if i.is_terminator]
    if len(terminators) != 1 or block.terminator is None:
        violations.append(f"{block.label} must end in exactly one terminator (has {len(terminators)}).")
    elif block.terminator.successors != block.successors:
        violations.append(f"{block.label}: terminator targets do not match the block's successors.")

    seen_non_phi = False
    for instruction in block:
        if instruction.block is not block:
            violations.append(f"{instruction.display_name()} in {block.label} does not record its block.")
        if instruction.kind is InstructionKind.PHI:
            if seen_non_phi:
                violations.append(f"Phi {instruction.display_name()} in {block.label} follows a non-phi instruction.")
            incoming = sorted(b.id for b in instruction.incoming_blocks)
            expected = sorted(set(p.id for p in block.predecessors))
            if incoming != expected:
                violations.append(f"Phi {instruction.display_name()} in {block.label} has incoming blocks {incoming}, expected {expected}.")
        else:
            seen_non_phi = True

def _check_operands(instruction: Instruction, dominance: Dominance, violations: List[str]):
    for use, operand in zip(instruction.operand_uses, instruction.operands):
        if isinstance(operand, Variable):
            violations.append(f"{instruction.display_name()} still refers to variable {operand.name}.")
            continue
        if not any(u is use for u in operand.uses):
            violations.append(f"{operand.display_name()} is missing the use by {instruction.display_name()}.")
        if isinstance(operand, Instruction):
            if operand.block is None or operand.block.parent is not instruction.block.parent:
                violations.append(f"{instruction.display_name()} uses {operand.display_name()}, which is not in the function.")
            elif not dominance.value_dominates_use(operand, use):
                violations.append(f"{operand.display_name()} does not dominate its use by {instruction.display_name()}.")
    if instruction.kind is InstructionKind.BINARY:
        if not (instruction.lhs.type == instruction.type and instruction.rhs.type == instruction.type):
            violations.append(f"Operand types of {instruction.display_name()} do not match its type {instruction.type}.")

def verify_function(function: Function):
    """Raise a VerificationError listing every problem found in function."""
    violations: List[str] = []
    for block in function.basic_blocks:
        if block.parent is not function:
            violations.append(f"{block.label} does not record its function.")
        _check_block_structure(block, violations)
    if violations:
        # Dominance is not meaningful on a malformed graph.
        raise VerificationError(f"Function {function.name} is malformed.", violations)

    dominance = Dominance(function)
    for instruction in function.instructions():
        _check_operands(instruction, dominance, violations)
        for use in instruction.uses:
            if use.get() is not instruction:
                violations.append(f"{instruction.display_name()} has a stale use {use}.")
    if violations:
        raise VerificationError(f"Function {function.name} is malformed.", violations)
