"""Program analyses over the IR: dominance, natural loops, and conversion to SSA form.
"""
import logging
from queue import Queue
from typing import Callable, TypeVar, Iterable, Iterator, List, Dict, Set, Tuple, Optional

from .ir import *

logger = logging.getLogger(__name__)


#### Generic dataflow analysis framework

T = TypeVar("T") # Lattice element T

def dataflow(function: Function,
             transfer_fn: Callable[[List[T], BasicBlock], List[T]], # Note: the output List[T] MUST NOT alias the input List[T].
             meet: Callable[[T, T], T],
             forward: bool,
             start: List[T],
             top: T
            ) -> Dict[BasicBlock, List[T]]:
    """Solve a dataflow problem over the blocks of function with a worklist. Returns the state flowing
    into each block (out of each block, for backward problems).
    """
    assert len(start) == len(function.basic_blocks), "Starting dataflow state must have one element for each basic block in the function."
    top_vector = [top] * len(start)

    ordering = postorder_traversal(function.entry_block, [], set())
    if forward:
        ordering.reverse() # Reverse postorder converges fastest for forward problems.
    worklist: Queue[BasicBlock] = Queue()
    for block in ordering:
        worklist.put(block)

    in_states: Dict[BasicBlock, List[T]] = {}
    out_states: Dict[BasicBlock, List[T]] = {}
    for block in function.basic_blocks:
        out_states[block] = transfer_fn(start if is_starting_block(block, function, forward) else top_vector, block)

    while not worklist.empty():
        current = worklist.get()

        if is_starting_block(current, function, forward):
            block_in = start
        else:
            block_in = top_vector
            for predecessor in predecessors(current, forward):
                block_in = [meet(l, r) for l, r in zip(block_in, out_states[predecessor])]

        in_states[current] = block_in
        block_out = transfer_fn(block_in, current)

        if block_out != out_states[current]:
            for successor in successors(current, forward):
                worklist.put(successor)
        out_states[current] = block_out

    return in_states

def is_starting_block(block: BasicBlock, function: Function, forward: bool) -> bool:
    if forward:
        return block is function.entry_block
    return len(block.successors) == 0

def successors(block: BasicBlock, forward: bool) -> Iterable[BasicBlock]:
    return block.successors if forward else block.predecessors

def predecessors(block: BasicBlock, forward: bool) -> Iterable[BasicBlock]:
    return block.predecessors if forward else block.successors

def postorder_traversal(block: BasicBlock, ordering: List[BasicBlock], encountered: Set[BasicBlock]) -> List[BasicBlock]:
    if block in encountered:
        return ordering
    encountered.add(block)
    for successor in reversed(block.successors):
        postorder_traversal(successor, ordering, encountered)
    ordering.append(block)
    return ordering


#### Dominance

class Dominance:
    """Block-level dominance facts for one function, plus instruction-level queries built on them.

    Precondition: every block in the function is reachable from the entry block.
    """
    def __init__(self, function: Function):
        bb2idx = {block: i for i, block in enumerate(function.basic_blocks)}

        def transfer(in_state: List[bool], block: BasicBlock) -> List[bool]:
            out_state = in_state.copy()
            out_state[bb2idx[block]] = True
            return out_state

        # The in-state of a block marks the blocks that strictly dominate it.
        self.strict_dominance_info: Dict[BasicBlock, List[bool]] = dataflow(
            function, transfer, lambda l, r: l and r, True, [False] * len(function.basic_blocks), True
        )
        self.bb2idx = bb2idx
        self.function = function

    def strictly_dominates(self, x: BasicBlock, y: BasicBlock) -> bool:
        """Returns true if x sdom y."""
        assert x in self.bb2idx, f"Block {x.label} is not part of function {self.function.name}."
        assert y in self.strict_dominance_info, f"Block {y.label} is not reachable in function {self.function.name}."
        return self.strict_dominance_info[y][self.bb2idx[x]]

    def dominates(self, x: BasicBlock, y: BasicBlock) -> bool:
        """Returns true if x dom y."""
        if x is y:
            return True
        return self.strictly_dominates(x, y)

    def strict_dominators(self, block: BasicBlock) -> List[BasicBlock]:
        return [d for d in self.function.basic_blocks if self.strictly_dominates(d, block)]

    def immediate_dominator(self, block: BasicBlock) -> Optional[BasicBlock]:
        """The unique strict dominator of block that every other strict dominator of block dominates."""
        candidates = self.strict_dominators(block)
        for candidate in candidates:
            if all(self.dominates(other, candidate) for other in candidates):
                return candidate
        return None

    def dominance_frontier(self, x: BasicBlock) -> List[BasicBlock]:
        frontier = []
        for y in self.function.basic_blocks:
            if not self.strictly_dominates(x, y) and any(self.dominates(x, p) for p in y.predecessors):
                frontier.append(y)
        return frontier

    def instruction_dominates(self, definition: Instruction, user: Instruction) -> bool:
        """Whether definition executes before user on every path reaching user (ignoring phi semantics)."""
        if definition.block is user.block:
            instructions = definition.block.instructions
            return instructions.index(definition) < instructions.index(user)
        return self.dominates(definition.block, user.block)

    def value_dominates_use(self, value: Value, use: Use) -> bool:
        """Whether value is available at use. Values that are not instructions (constants, parameters and
        globals) are available everywhere. A value flowing into a phi must be available at the end of the
        corresponding incoming block.
        """
        if not isinstance(value, Instruction):
            return True
        user = use.user
        if user.kind is InstructionKind.PHI:
            incoming = user.incoming_block(use)
            if value.block is incoming:
                return True
            return self.dominates(value.block, incoming)
        return self.instruction_dominates(value, user)


class DominatorTree:
    class Node:
        def __init__(self, block: BasicBlock):
            self.block = block
            self.children: List['DominatorTree.Node'] = []

        def __repr__(self):
            children = ", ".join(c.block.label for c in self.children)
            return f"DominatorTree.Node({self.block.label}; children = {children})"

        def __iter__(self) -> Iterator['DominatorTree.Node']:
            for child in self.children:
                yield child

    def __init__(self, function: Function, dominance: Optional[Dominance] = None):
        self.function = function
        self.dominance = dominance if dominance is not None else Dominance(function)
        self.nodes = {block: DominatorTree.Node(block) for block in function.basic_blocks}
        # Children are added in function order so that traversals are deterministic.
        for block in function.basic_blocks:
            idom = self.dominance.immediate_dominator(block)
            if idom is not None:
                self.nodes[idom].children.append(self.nodes[block])
            else:
                assert block is function.entry_block, f"Block {block.label} is not dominated by the entry block."
        self.tree = self.nodes[function.entry_block]

    def __getitem__(self, block: BasicBlock) -> 'DominatorTree.Node':
        return self.nodes[block]

    def __repr__(self):
        out = []
        def build_repr(node, depth):
            out.append("  " * depth + repr(node))
            for child in node:
                build_repr(child, depth + 1)
        build_repr(self.tree, 0)
        return "\n".join(out)


#### Loops

class Loop:
    """A natural loop: the header plus every block that can reach one of the loop's latches without
    passing through the header.
    """
    def __init__(self, header: BasicBlock, blocks: List[BasicBlock], latches: List[BasicBlock]):
        self.header = header
        self.blocks = blocks # In function order, header first.
        self.block_set = set(blocks)
        self.latches = latches
        self.parent: Optional['Loop'] = None
        self.sub_loops: List['Loop'] = []

    def contains(self, block: BasicBlock) -> bool:
        return block in self.block_set

    def __contains__(self, block: BasicBlock) -> bool:
        return self.contains(block)

    @property
    def depth(self) -> int:
        depth = 1
        loop = self.parent
        while loop is not None:
            depth += 1
            loop = loop.parent
        return depth

    def exiting_blocks(self) -> List[BasicBlock]:
        """Blocks inside the loop that have at least one successor outside it."""
        return [block for block in self.blocks if any(not self.contains(s) for s in block.successors)]

    def exiting_block(self) -> Optional[BasicBlock]:
        """The loop's only exiting block, or None if there are zero or several."""
        exiting = self.exiting_blocks()
        return exiting[0] if len(exiting) == 1 else None

    def exit_blocks(self) -> List[BasicBlock]:
        """Blocks outside the loop that are targets of edges leaving it."""
        exits = []
        for block in self.blocks:
            for successor in block.successors:
                if not self.contains(successor) and successor not in exits:
                    exits.append(successor)
        return exits

    def __repr__(self):
        return f"Loop(header={self.header.label}, blocks=[{', '.join(b.label for b in self.blocks)}])"


class LoopInfo:
    """The natural loops of a function arranged in a nesting forest. Iterating over a LoopInfo yields
    the top-level (outermost) loops.
    """
    def __init__(self, function: Function, dominance: Optional[Dominance] = None):
        self.function = function
        dominance = dominance if dominance is not None else Dominance(function)

        # Back edges: tail -> head where head dominates tail. Group them by head so that loops
        # sharing a header (e.g. a loop with several continue statements) form one loop.
        latches_by_header: Dict[BasicBlock, List[BasicBlock]] = {}
        for block in function.basic_blocks:
            for successor in block.successors:
                if dominance.dominates(successor, block):
                    latches_by_header.setdefault(successor, []).append(block)

        loops = []
        for header, latches in latches_by_header.items():
            contents = {header}
            worklist = [latch for latch in latches if latch is not header]
            while worklist:
                current = worklist.pop()
                if current in contents:
                    continue
                contents.add(current)
                worklist.extend(current.predecessors)
            ordered = [block for block in function.basic_blocks if block in contents]
            loops.append(Loop(header, ordered, latches))

        # A loop's parent is the smallest other loop containing its header.
        for loop in loops:
            enclosing = [other for other in loops if other is not loop and other.contains(loop.header)]
            if enclosing:
                loop.parent = min(enclosing, key=lambda other: len(other.blocks))
                loop.parent.sub_loops.append(loop)

        self.loops = loops
        self.top_level = [loop for loop in loops if loop.parent is None]
        logger.debug("Found %d loops (%d top-level) in %s", len(loops), len(self.top_level), function.name)

    @property
    def empty(self) -> bool:
        return len(self.loops) == 0

    def __iter__(self) -> Iterator[Loop]:
        for loop in self.top_level:
            yield loop

    def __len__(self):
        return len(self.top_level)

    def loops_in_preorder(self) -> List[Loop]:
        """Every loop, each outer loop before the loops nested inside it."""
        ordered = []
        def visit(loop: Loop):
            ordered.append(loop)
            for sub_loop in loop.sub_loops:
                visit(sub_loop)
        for loop in self.top_level:
            visit(loop)
        return ordered

    def loop_for(self, block: BasicBlock) -> Optional[Loop]:
        """The innermost loop containing block, if any."""
        containing = [loop for loop in self.loops if loop.contains(block)]
        if not containing:
            return None
        return max(containing, key=lambda loop: loop.depth)

def find_loops(function: Function) -> List[Loop]:
    """Find all natural loops in the given function, outer loops first.
    """
    return LoopInfo(function).loops_in_preorder()


#### CFG cleanup

def remove_unreachable_blocks(function: Function):
    """Remove basic blocks that are unreachable from the entry block. The modification is performed in-place.
    """
    reachable: Set[BasicBlock] = set()
    worklist = [function.entry_block]
    while worklist:
        block = worklist.pop()
        if block in reachable:
            continue
        reachable.add(block)
        worklist.extend(block.successors)

    if len(reachable) == len(function.basic_blocks):
        return
    kept = []
    for block in function.basic_blocks:
        if block in reachable:
            kept.append(block)
            continue
        # Unreachable blocks may have successors that are reachable.
        for successor in block.successors:
            successor.predecessors.remove(block)
            for phi in successor.phis():
                assert block not in phi.incoming_blocks, "Unreachable blocks are removed before phi nodes exist."
        for instruction in block.instructions:
            instruction.drop_operands()
    function.basic_blocks = kept


###### Conversion to SSA Form ######

def convert_to_ssa(function: Function) -> Function:
    """Convert a variable-form function to single-static-assignment form in place.

    Phi nodes are placed on the iterated dominance frontier of each variable's definitions and then
    filled by renaming along the dominator tree: each block, when visited, supplies the incoming value
    for itself in the phi nodes of its successors. Copies are eliminated during renaming, reads of
    uninitialized locals become Undef, and phi nodes that nothing uses are deleted.
    """
    remove_unreachable_blocks(function)
    dominance = Dominance(function)

    # Every variable is implicitly defined at the top of the entry block: parameters and globals hold
    # their incoming value, locals are undefined.
    defsites: Dict[Variable, Set[BasicBlock]] = {}
    for block in function.basic_blocks:
        for instruction in block:
            for operand in instruction.operands:
                if isinstance(operand, Variable):
                    defsites.setdefault(operand, {function.entry_block})
            if instruction.result is not None:
                defsites.setdefault(instruction.result, {function.entry_block}).add(block)

    # Place the phi nodes.
    placed: Dict[BasicBlock, Dict[Variable, PhiNode]] = {block: {} for block in function.basic_blocks}
    for variable, sites in defsites.items():
        if variable.is_temporary:
            continue # Temporaries are defined once, before their only use.
        worklist: Queue[BasicBlock] = Queue()
        for site in sites:
            worklist.put(site)
        while not worklist.empty():
            current = worklist.get()
            for frontier_block in dominance.dominance_frontier(current):
                if variable not in placed[frontier_block]:
                    phi = PhiNode(variable.type, variable)
                    placed[frontier_block][variable] = phi
                    frontier_block.prepend_phi(phi)
                    if frontier_block not in sites:
                        worklist.put(frontier_block)

    undefined: Dict[Variable, Undef] = {}
    def initial_value(variable: Variable) -> Value:
        if variable.initial is not None:
            return variable.initial
        if variable not in undefined:
            undefined[variable] = Undef(variable.type)
        return undefined[variable]

    def current_value(variable: Variable, var2value: Dict[Variable, List[Value]]) -> Value:
        stack = var2value.get(variable)
        if stack:
            return stack[-1]
        return initial_value(variable)

    def rename(node: DominatorTree.Node, var2value: Dict[Variable, List[Value]]):
        block = node.block
        for instruction in list(block.instructions):
            if instruction.kind is InstructionKind.PHI:
                if instruction.variable is not None and instruction.variable in placed[block]:
                    var2value.setdefault(instruction.variable, []).append(instruction)
                continue

            for i, operand in enumerate(instruction.operands):
                if isinstance(operand, Variable):
                    instruction.set_operand(i, current_value(operand, var2value))

            if isinstance(instruction, CopyInst):
                # The copied value stands in for the variable from here on.
                var2value.setdefault(instruction.result, []).append(instruction.operands[0])
                instruction.drop_operands()
                block.instructions.remove(instruction)
            elif instruction.result is not None:
                var2value.setdefault(instruction.result, []).append(instruction)
                instruction.result = None

        seen: Set[BasicBlock] = set()
        for successor in block.successors:
            if successor in seen:
                continue
            seen.add(successor)
            for variable, phi in placed[successor].items():
                phi.add_incoming(current_value(variable, var2value), block)

        for child in node:
            rename(child, {variable: stack[:] for variable, stack in var2value.items()})

    rename(DominatorTree(function, dominance).tree, {})
    remove_dead_phis(function)
    number_values(function)
    return function


def remove_dead_phis(function: Function) -> int:
    """Delete phi nodes whose results are never used by a non-phi instruction, directly or through a
    chain of other phi nodes. Returns the number removed.
    """
    phis = [phi for block in function.basic_blocks for phi in block.phis()]
    live: Set[PhiNode] = set()
    worklist: Queue[PhiNode] = Queue()
    for phi in phis:
        if any(user.kind is not InstructionKind.PHI for user in phi.users()):
            worklist.put(phi)
    while not worklist.empty():
        phi = worklist.get()
        if phi in live:
            continue
        live.add(phi)
        for operand in phi.operands:
            if isinstance(operand, PhiNode) and operand not in live:
                worklist.put(operand)

    dead = [phi for phi in phis if phi not in live]
    for phi in dead:
        phi.drop_operands()
    for phi in dead:
        phi.uses = [] # Only other dead phis referred to it.
        phi.erase_from_parent()
    return len(dead)


def number_values(function: Function):
    """Give every value-producing instruction a sequential %N name, in block order."""
    function.name_counter = 0
    for instruction in function.instructions():
        if not isinstance(instruction.type, VoidType):
            instruction.name = function.fresh_name()
