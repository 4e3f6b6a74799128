"""Rewrite the value that bounds a loop's trip count so the loop runs a different number of times.

Every natural loop with a single exiting block whose exit branch tests a comparison between a loop
phi (the induction variable) and some bound is a candidate. The bound is replaced by
`bound * duplicate + amend`, computed in the bound's integer width. Which value counts as "the bound"
depends on the direction the loop counts in:

  predicate   true successor in loop   direction    rewritten value
  >, >=       yes                      DESCENDING   the phi's incoming value from outside the loop
  >, >=       no                       ASCENDING    the comparison's other operand
  <, <=       yes                      ASCENDING    the comparison's other operand
  <, <=       no                       DESCENDING   the phi's incoming value from outside the loop

The transform deliberately changes program behavior; it is meant for stress testing code that
consumes the IR, not for optimization.
"""

import logging
from enum import Enum
from typing import Dict, List, Optional, Tuple

from .ir import *
from .analysis import Loop, LoopInfo
from .apint import linear_transform
from .passes import FunctionPass, AnalysisManager

logger = logging.getLogger(__name__)


class Direction(Enum):
    ASCENDING = "ascending"
    DESCENDING = "descending"


class RewriteCandidate:
    """The operand slot holding a loop's bound.

    :param loop: the loop whose trip count the slot controls.
    :param direction: how the induction variable moves toward the bound.
    :param use: the slot to redirect. For an ASCENDING loop this is an operand of the exit comparison;
    for a DESCENDING loop it is an incoming slot of the induction phi.
    """
    def __init__(self, loop: Loop, direction: Direction, use: Use):
        self.loop = loop
        self.direction = direction
        self.use = use

    @property
    def value(self) -> Operand:
        return self.use.get()

    @property
    def incoming_block(self) -> Optional[BasicBlock]:
        """For a phi slot, the predecessor block the value flows in from."""
        if self.use.user.kind is InstructionKind.PHI:
            return self.use.user.incoming_block(self.use)
        return None

    def __repr__(self):
        return f"RewriteCandidate({self.loop.header.label}, {self.direction.name}, {self.use})"


def _is_loop_phi(value: Operand, loop: Loop) -> bool:
    return isinstance(value, Value) and value.kind is InstructionKind.PHI and value.block is not None and loop.contains(value.block)

def classify_exit_condition(loop: Loop) -> Optional[RewriteCandidate]:
    """Find the bound of loop's exit condition. Returns None when the loop has an unsupported shape."""
    exiting = loop.exiting_block()
    if exiting is None:
        logger.debug("Skipping loop at %s: %d exiting blocks", loop.header.label, len(loop.exiting_blocks()))
        return None

    branch = exiting.terminator
    if not isinstance(branch, BranchInst) or not branch.is_conditional:
        logger.debug("Skipping loop at %s: exiting block %s does not end in a conditional branch", loop.header.label, exiting.label)
        return None

    compare = branch.condition
    if not isinstance(compare, Value) or compare.kind is not InstructionKind.COMPARISON:
        logger.debug("Skipping loop at %s: exit condition is not a comparison", loop.header.label)
        return None

    lhs_is_phi = _is_loop_phi(compare.lhs, loop)
    rhs_is_phi = _is_loop_phi(compare.rhs, loop)
    if lhs_is_phi == rhs_is_phi:
        logger.debug("Skipping loop at %s: %s loop phis in the exit comparison", loop.header.label, "two" if lhs_is_phi else "no")
        return None

    # Normalize to "phi <predicate> bound".
    if lhs_is_phi:
        phi, predicate, bound_index = compare.lhs, compare.predicate, 1
    else:
        phi, predicate, bound_index = compare.rhs, compare.predicate.inverse, 0

    family = predicate.family
    if family is None:
        logger.debug("Skipping loop at %s: predicate %s does not bound the loop", loop.header.label, predicate.value)
        return None

    stays_in_loop = loop.contains(branch.successors[0])
    if (family is PredicateFamily.GREATER) == stays_in_loop:
        for use, block in zip(phi.operand_uses, phi.incoming_blocks):
            if not loop.contains(block):
                return RewriteCandidate(loop, Direction.DESCENDING, use)
        logger.debug("Skipping loop at %s: induction phi has no incoming value from outside the loop", loop.header.label)
        return None
    return RewriteCandidate(loop, Direction.ASCENDING, compare.operand_uses[bound_index])


def rewrite_bound(candidate: RewriteCandidate, duplicate: int, amend: int) -> bool:
    """Redirect the candidate slot to `bound * duplicate + amend`. Returns whether the IR changed.

    Constant bounds are folded. Otherwise a mul and/or add is inserted where the new value is available
    to the slot: before the incoming block's terminator for a phi slot, before the comparison otherwise.
    """
    value = candidate.value
    if not is_integer(value):
        logger.debug("Skipping loop at %s: bound has type %s", candidate.loop.header.label, value.type)
        return False
    if duplicate == 0 and amend == 0:
        return False

    bits = value.type.bits
    if value.kind is InstructionKind.CONSTANT and isinstance(value, ConstantInt):
        new_value = ConstantInt(value.type, linear_transform(value.unsigned_value, bits, duplicate, amend), value.signed)
        logger.debug("Folding bound %s to %s in loop at %s", value.display_name(), new_value.display_name(), candidate.loop.header.label)
        candidate.use.set(new_value)
        return True

    user = candidate.use.user
    if candidate.incoming_block is not None:
        anchor = candidate.incoming_block.terminator
    else:
        anchor = user
    block = anchor.block
    function = block.parent

    new_value = value
    if duplicate != 0:
        new_value = BinaryOperator("mul", new_value, ConstantInt(value.type, duplicate))
        new_value.name = function.fresh_name() if function is not None else None
        block.insert_before(new_value, anchor)
    if amend != 0:
        new_value = BinaryOperator("add", new_value, ConstantInt(value.type, amend))
        new_value.name = function.fresh_name() if function is not None else None
        block.insert_before(new_value, anchor)

    logger.debug("Rewrote bound %s of loop at %s as %s in %s", value.display_name(), candidate.loop.header.label, new_value.display_name(), block.label)
    candidate.use.set(new_value)
    return True


class ExtraProteinPass(FunctionPass):
    name = "extra-protein"
    description = "Increase EVERY loops' trip counts! (and break your program logic)"
    required_analyses = (LoopInfo,)
    preserves_cfg = True

    def __init__(self, duplicate: int = 2, amend: int = 0, nested_loops: bool = True):
        """
        :param duplicate: the factor every loop bound is multiplied by. 0 skips the multiplication.
        :param amend: the constant added to every loop bound after multiplying. 0 skips the addition.
        :param nested_loops: whether to rewrite loops nested inside other loops too.
        """
        for parameter, value in (("duplicate", duplicate), ("amend", amend)):
            if not isinstance(value, int) or isinstance(value, bool) or value < 0:
                raise ValueError(f"{parameter} must be a non-negative integer, not {value!r}")
        self.duplicate = duplicate
        self.amend = amend
        self.nested_loops = nested_loops

    def candidates(self, loop_info: LoopInfo) -> List[RewriteCandidate]:
        loops = loop_info.loops_in_preorder() if self.nested_loops else list(loop_info)
        candidates = []
        for loop in loops:
            candidate = classify_exit_condition(loop)
            if candidate is not None:
                logger.debug("Found %s", candidate)
                candidates.append(candidate)
        return candidates

    def run(self, function: Function, analyses: Optional[AnalysisManager] = None) -> bool:
        if analyses is None:
            analyses = AnalysisManager(function)
        loop_info = analyses.get(LoopInfo)
        if loop_info.empty:
            return False

        # Every candidate is found before anything is inserted or redirected.
        candidates = self.candidates(loop_info)
        changed = False
        for candidate in candidates:
            changed = rewrite_bound(candidate, self.duplicate, self.amend) or changed
        logger.debug("%s: %d candidates, changed=%s", function.name, len(candidates), changed)
        return changed

    def __repr__(self):
        return f"{type(self).__name__}(duplicate={self.duplicate}, amend={self.amend}, nested_loops={self.nested_loops})"


def create_extra_protein_pass(duplicate: int = 2, amend: int = 0) -> ExtraProteinPass:
    return ExtraProteinPass(duplicate, amend)
