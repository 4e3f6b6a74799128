"""Typed SSA intermediate representation operated on by the loop-bound rewriting pass.
"""

from abc import ABC
from enum import Enum
from typing import Dict, List, Union, Iterator, Optional, Tuple

#
# Types
#
class Type(ABC):
    def __eq__(self, other):
        return type(self) == type(other) and repr(self) == repr(other)

    def __hash__(self):
        return hash(repr(self))

class IntegerType(Type):
    """A fixed-width integer type. Signedness is not part of the type; it is carried by
    comparison predicates and opcodes instead.
    """
    def __init__(self, bits: int):
        assert bits > 0, "Integer types must be at least one bit wide."
        self.bits = bits

    def __repr__(self):
        return f"i{self.bits}"

class FloatType(Type):
    def __init__(self, bits: int):
        assert bits in (32, 64)
        self.bits = bits

    def __repr__(self):
        return "float" if self.bits == 32 else "double"

class PointerType(Type):
    def __repr__(self):
        return "ptr"

class VoidType(Type):
    def __repr__(self):
        return "void"

I1 = IntegerType(1)
I8 = IntegerType(8)
I16 = IntegerType(16)
I32 = IntegerType(32)
I64 = IntegerType(64)
FLOAT = FloatType(32)
DOUBLE = FloatType(64)
PTR = PointerType()
VOID = VoidType()


class InstructionKind(Enum):
    """Tag identifying what sort of entity a value is. Passes dispatch on this tag."""
    PHI = "phi"
    COMPARISON = "comparison"
    BINARY = "binary"
    TERMINATOR = "terminator"
    CONSTANT = "constant"
    OTHER = "other"


class PredicateFamily(Enum):
    GREATER = ">"
    LESS = "<"


class Predicate(Enum):
    EQ = "eq"
    NE = "ne"
    UGT = "ugt"
    UGE = "uge"
    ULT = "ult"
    ULE = "ule"
    SGT = "sgt"
    SGE = "sge"
    SLT = "slt"
    SLE = "sle"
    # Ordered floating point predicates.
    OEQ = "oeq"
    ONE = "one"
    OGT = "ogt"
    OGE = "oge"
    OLT = "olt"
    OLE = "ole"

    @property
    def inverse(self) -> 'Predicate':
        """The logical negation of this predicate (e.g. slt -> sge)."""
        return _INVERSE_PREDICATES[self]

    @property
    def is_signed(self) -> bool:
        return self in (Predicate.SGT, Predicate.SGE, Predicate.SLT, Predicate.SLE)

    @property
    def is_float(self) -> bool:
        return self.value.startswith("o")

    @property
    def family(self) -> Optional[PredicateFamily]:
        """GREATER for > and >=, LESS for < and <=, None for anything else (equality and float predicates)."""
        if self in (Predicate.UGT, Predicate.UGE, Predicate.SGT, Predicate.SGE):
            return PredicateFamily.GREATER
        if self in (Predicate.ULT, Predicate.ULE, Predicate.SLT, Predicate.SLE):
            return PredicateFamily.LESS
        return None

_INVERSE_PREDICATES = {
    Predicate.EQ: Predicate.NE, Predicate.NE: Predicate.EQ,
    Predicate.UGT: Predicate.ULE, Predicate.ULE: Predicate.UGT,
    Predicate.UGE: Predicate.ULT, Predicate.ULT: Predicate.UGE,
    Predicate.SGT: Predicate.SLE, Predicate.SLE: Predicate.SGT,
    Predicate.SGE: Predicate.SLT, Predicate.SLT: Predicate.SGE,
    Predicate.OEQ: Predicate.ONE, Predicate.ONE: Predicate.OEQ,
    Predicate.OGT: Predicate.OLE, Predicate.OLE: Predicate.OGT,
    Predicate.OGE: Predicate.OLT, Predicate.OLT: Predicate.OGE,
}


#
# Values and use edges
#
class Use:
    """A use-edge: operand slot `index` of `user`. Redirecting a use never modifies the value it references.
    """
    def __init__(self, user: 'Instruction', index: int):
        self.user = user
        self.index = index

    def get(self) -> 'Operand':
        return self.user.operands[self.index]

    def set(self, value: 'Operand'):
        self.user.set_operand(self.index, value)

    def __repr__(self):
        return f"Use({self.user.display_name()}#{self.index})"


class Value(ABC):
    kind = InstructionKind.OTHER

    def __init__(self, type: Type):
        self.type = type
        self.uses: List[Use] = []

    def users(self) -> List['Instruction']:
        return [use.user for use in self.uses]

    def display_name(self) -> str:
        return repr(self)

    def __eq__(self, other):
        return id(self) == id(other)

    def __hash__(self):
        return id(self)

#
# Constants
#
class Constant(Value):
    kind = InstructionKind.CONSTANT

    def __repr__(self):
        return f"{self.type} {self.display_name()}"

class ConstantInt(Constant):
    """An integer literal. The value is stored as its signed two's complement interpretation in the
    width of the type. `signed` records how a source frontend wants the literal interpreted; it does not
    affect the bits.
    """
    def __init__(self, type: IntegerType, value: int, signed: bool = True):
        from .apint import to_signed # apint depends on ir.Predicate.
        assert isinstance(type, IntegerType), f"ConstantInt requires an integer type, not {type}"
        super().__init__(type)
        self.value = to_signed(value, type.bits)
        self.signed = signed

    @property
    def unsigned_value(self) -> int:
        return self.value % (1 << self.type.bits)

    def display_name(self) -> str:
        if self.type.bits == 1:
            return "true" if self.value != 0 else "false"
        return str(self.value)

class ConstantFloat(Constant):
    def __init__(self, type: FloatType, value: float):
        super().__init__(type)
        self.value = float(value)

    def display_name(self) -> str:
        return repr(self.value)

class ConstantString(Constant):
    def __init__(self, value: str):
        super().__init__(PTR)
        self.value = value

    def display_name(self) -> str:
        return self.value

class Undef(Constant):
    """The value read from a variable that has not been assigned along some path."""
    def display_name(self) -> str:
        return "undef"

class Parameter(Value):
    def __init__(self, name: str, type: Type):
        super().__init__(type)
        self.name = name

    def display_name(self) -> str:
        return f"%{self.name}"

    def __repr__(self):
        return f"{self.type} %{self.name}"

class GlobalVariable(Value):
    def __init__(self, name: str, type: Type):
        super().__init__(type)
        self.name = name

    def display_name(self) -> str:
        return f"@{self.name}"

    def __repr__(self):
        return f"{self.type} @{self.name}"

#
# Source variables (only present before conversion to SSA)
#
class Variable:
    """A source-level variable. Instructions in variable form read and write these; conversion to SSA
    replaces every reference with the value reaching it.

    :param name: the source name.
    :param type: the IR type of the variable.
    :param signed: whether the source type is signed. Selects signed vs. unsigned opcodes and predicates.
    :param initial: the value the variable holds at function entry (a Parameter or GlobalVariable), or None
    for locals, which start out undefined.
    """
    def __init__(self, name: str, type: Type, signed: bool = True, initial: Optional[Value] = None, is_temporary: bool = False):
        self.name = name
        self.type = type
        self.signed = signed
        self.initial = initial
        self.is_temporary = is_temporary

    def __eq__(self, other):
        return id(self) == id(other)

    def __hash__(self):
        return id(self)

    def __repr__(self):
        return self.name

Operand = Union[Value, Variable]

#
# Instructions
#
class Instruction(Value):
    """An instruction is itself the SSA value it computes.

    :param opcode: the textual name of the operation.
    :param type: the type of the result (VOID if the instruction produces no value).
    :param operands: the inputs. In variable form these may include Variables.
    :param result: in variable form, the Variable that receives the result. None after conversion to SSA.
    """
    def __init__(self, opcode: str, type: Type, operands: List[Operand], result: Optional[Variable] = None):
        super().__init__(type)
        self.opcode = opcode
        self.operands: List[Operand] = []
        self.operand_uses: List[Use] = []
        self.result = result
        self.block: Optional['BasicBlock'] = None
        self.name: Optional[str] = None
        for operand in operands:
            self.append_operand(operand)

    def append_operand(self, operand: Operand):
        use = Use(self, len(self.operands))
        self.operands.append(operand)
        self.operand_uses.append(use)
        if isinstance(operand, Value):
            operand.uses.append(use)

    def set_operand(self, index: int, operand: Operand):
        use = self.operand_uses[index]
        previous = self.operands[index]
        if isinstance(previous, Value):
            previous.uses.remove(use)
        self.operands[index] = operand
        if isinstance(operand, Value):
            operand.uses.append(use)

    def drop_operands(self):
        """Release every use this instruction holds. Called before deleting it."""
        for use, operand in zip(self.operand_uses, self.operands):
            if isinstance(operand, Value):
                operand.uses.remove(use)
        self.operands = []
        self.operand_uses = []

    def erase_from_parent(self):
        assert len(self.uses) == 0, f"Cannot erase {self.display_name()}: it still has uses."
        self.drop_operands()
        if self.block is not None:
            self.block.instructions.remove(self)
            self.block = None

    @property
    def is_terminator(self) -> bool:
        return self.kind is InstructionKind.TERMINATOR

    @property
    def function(self) -> Optional['Function']:
        return None if self.block is None else self.block.parent

    def display_name(self) -> str:
        if self.name is not None:
            return self.name
        return f"%v{id(self)}"

    def operand_names(self) -> List[str]:
        return [operand.display_name() if isinstance(operand, Value) else repr(operand) for operand in self.operands]

    def _prefix(self) -> str:
        if self.result is not None:
            return f"{self.result} = "
        if not isinstance(self.type, VoidType):
            return f"{self.display_name()} = "
        return ""

    def __repr__(self):
        return f"{self._prefix()}{self.opcode} {self.type} " + ", ".join(self.operand_names())

class PhiNode(Instruction):
    kind = InstructionKind.PHI

    def __init__(self, type: Type, variable: Optional[Variable] = None):
        super().__init__("phi", type, [])
        self.incoming_blocks: List['BasicBlock'] = []
        self.variable = variable # The source variable this phi merges, if built by SSA construction.

    def add_incoming(self, value: Operand, block: 'BasicBlock'):
        self.append_operand(value)
        self.incoming_blocks.append(block)

    def incoming(self) -> Iterator[Tuple[Operand, 'BasicBlock']]:
        for value, block in zip(self.operands, self.incoming_blocks):
            yield value, block

    def incoming_block(self, use: Use) -> 'BasicBlock':
        """The predecessor block that supplies the value flowing through `use`."""
        assert use.user is self
        return self.incoming_blocks[use.index]

    def incoming_value_for_block(self, block: 'BasicBlock') -> Operand:
        for value, incoming_block in self.incoming():
            if incoming_block is block:
                return value
        raise KeyError(f"{self.display_name()} has no incoming value for block {block.label}")

    def drop_operands(self):
        super().drop_operands()
        self.incoming_blocks = []

    def __repr__(self):
        pairs = ", ".join(f"[ {name}, {block.label} ]" for name, block in zip(self.operand_names(), self.incoming_blocks))
        return f"{self._prefix()}phi {self.type} {pairs}"

class CompareInst(Instruction):
    kind = InstructionKind.COMPARISON

    def __init__(self, predicate: Predicate, lhs: Operand, rhs: Operand, result: Optional[Variable] = None):
        super().__init__("fcmp" if predicate.is_float else "icmp", I1, [lhs, rhs], result)
        self.predicate = predicate

    @property
    def lhs(self) -> Operand:
        return self.operands[0]

    @property
    def rhs(self) -> Operand:
        return self.operands[1]

    def __repr__(self):
        operand_type = self.lhs.type
        return f"{self._prefix()}{self.opcode} {self.predicate.value} {operand_type} " + ", ".join(self.operand_names())

INTEGER_BINARY_OPCODES = {"add", "sub", "mul", "sdiv", "udiv", "srem", "urem", "shl", "ashr", "lshr", "and", "or", "xor"}
FLOAT_BINARY_OPCODES = {"fadd", "fsub", "fmul", "fdiv", "frem"}

class BinaryOperator(Instruction):
    kind = InstructionKind.BINARY

    def __init__(self, opcode: str, lhs: Operand, rhs: Operand, result: Optional[Variable] = None):
        assert opcode in INTEGER_BINARY_OPCODES or opcode in FLOAT_BINARY_OPCODES, f"Unknown binary opcode {opcode}"
        super().__init__(opcode, lhs.type, [lhs, rhs], result)

    @property
    def lhs(self) -> Operand:
        return self.operands[0]

    @property
    def rhs(self) -> Operand:
        return self.operands[1]

CAST_OPCODES = {"sext", "zext", "trunc", "sitofp", "uitofp", "fptosi", "fptoui", "fpext", "fptrunc"}

class CastInst(Instruction):
    def __init__(self, opcode: str, value: Operand, type: Type, result: Optional[Variable] = None):
        assert opcode in CAST_OPCODES, f"Unknown cast opcode {opcode}"
        super().__init__(opcode, type, [value], result)

    def __repr__(self):
        return f"{self._prefix()}{self.opcode} {self.operands[0].type} {self.operand_names()[0]} to {self.type}"

class CallInst(Instruction):
    def __init__(self, callee: str, arguments: List[Operand], type: Type, result: Optional[Variable] = None):
        super().__init__("call", type, arguments, result)
        self.callee = callee

    def __repr__(self):
        return f"{self._prefix()}call {self.type} @{self.callee}(" + ", ".join(self.operand_names()) + ")"

class CopyInst(Instruction):
    """Variable form only: copy a value into the result variable. Eliminated by SSA construction."""
    def __init__(self, value: Operand, result: Variable):
        super().__init__("copy", result.type, [value], result)

#
# Terminators
#
class TerminatorInst(Instruction):
    kind = InstructionKind.TERMINATOR

    def __init__(self, opcode: str, operands: List[Operand], successors: List['BasicBlock']):
        super().__init__(opcode, VOID, operands)
        self.successors = successors

class BranchInst(TerminatorInst):
    """An unconditional jump (one successor) or a two-way conditional branch. For a conditional branch
    successors[0] is taken when the condition is true and successors[1] when it is false.
    """
    def __init__(self, successors: List['BasicBlock'], condition: Optional[Operand] = None):
        assert (condition is None and len(successors) == 1) or (condition is not None and len(successors) == 2)
        super().__init__("br", [] if condition is None else [condition], successors)

    @property
    def is_conditional(self) -> bool:
        return len(self.successors) == 2

    @property
    def condition(self) -> Optional[Operand]:
        return self.operands[0] if self.is_conditional else None

    def __repr__(self):
        if self.is_conditional:
            return f"br i1 {self.operand_names()[0]}, label {self.successors[0].label}, label {self.successors[1].label}"
        return f"br label {self.successors[0].label}"

class SwitchInst(TerminatorInst):
    """A multi-way branch: successors[0] is the default destination, successors[i + 1] is taken when
    the condition equals case_values[i].
    """
    def __init__(self, condition: Operand, default: 'BasicBlock', cases: List[Tuple[ConstantInt, 'BasicBlock']]):
        super().__init__("switch", [condition], [default] + [block for _, block in cases])
        self.case_values = [value for value, _ in cases]

    @property
    def condition(self) -> Operand:
        return self.operands[0]

    @property
    def default(self) -> 'BasicBlock':
        return self.successors[0]

    def __repr__(self):
        cases = " ".join(f"{value!r}, label {block.label}" for value, block in zip(self.case_values, self.successors[1:]))
        return f"switch {self.condition.type} {self.operand_names()[0]}, label {self.default.label} [ {cases} ]"

class ReturnInst(TerminatorInst):
    def __init__(self, value: Optional[Operand] = None):
        super().__init__("ret", [] if value is None else [value], [])

    @property
    def return_value(self) -> Optional[Operand]:
        return self.operands[0] if self.operands else None

    def __repr__(self):
        if self.return_value is None:
            return "ret void"
        return f"ret {self.return_value.type} {self.operand_names()[0]}"

#
# Basic Blocks
#
class BasicBlock:
    id_counter = 0

    def __init__(self, instructions: Optional[List[Instruction]] = None):
        self.instructions: List[Instruction] = []
        self.predecessors: List['BasicBlock'] = []
        self.successors: List['BasicBlock'] = []
        self.parent: Optional['Function'] = None
        self.id = BasicBlock.id_counter
        BasicBlock.id_counter += 1
        for instruction in instructions or []:
            self.append(instruction)

    @property
    def label(self) -> str:
        return f"%bb{self.id}"

    def add_successor(self, successor: 'BasicBlock'):
        self.successors.append(successor)
        successor.predecessors.append(self)

    def append(self, instruction: Instruction) -> Instruction:
        assert self.terminator is None, f"Block {self.label} is already terminated."
        instruction.block = self
        self.instructions.append(instruction)
        return instruction

    def terminate(self, terminator: TerminatorInst) -> TerminatorInst:
        """Append a terminator and record its targets as this block's successors."""
        self.append(terminator)
        for successor in terminator.successors:
            self.add_successor(successor)
        return terminator

    def insert_before(self, instruction: Instruction, anchor: Instruction):
        assert anchor.block is self, "The anchor instruction must be in this block."
        instruction.block = self
        self.instructions.insert(self.instructions.index(anchor), instruction)

    def prepend_phi(self, phi: PhiNode):
        phi.block = self
        self.instructions.insert(len(self.phis()), phi)

    @property
    def terminator(self) -> Optional[TerminatorInst]:
        if self.instructions and self.instructions[-1].is_terminator:
            return self.instructions[-1]
        return None

    def phis(self) -> List[PhiNode]:
        phis = []
        for instruction in self.instructions:
            if instruction.kind is not InstructionKind.PHI:
                break
            phis.append(instruction)
        return phis

    def __iter__(self) -> Iterator[Instruction]:
        """Iterate over the instructions in the basic block in order.
        """
        for instruction in self.instructions:
            yield instruction

    def __len__(self):
        return len(self.instructions)

    def __repr__(self):
        predecessors = ", ".join(p.label for p in self.predecessors)
        body = "\n".join("  " + repr(instruction) for instruction in self)
        return f"{self.label}:  ; preds = {predecessors}\n{body}"

    def __eq__(self, other):
        return id(self) == id(other)

    def __hash__(self):
        return id(self)

#
# Function
#
class Function:
    def __init__(self, name: str, basic_blocks: List[BasicBlock], parameters: List[Parameter], return_type: Type = VOID):
        """Initialize a Function object.

        Precondition: The first element of basic_blocks is the function's entry block.
        """
        assert len(basic_blocks) > 0
        assert len(basic_blocks[0].predecessors) == 0, "The entry block cannot have predecessors."
        self.name = name
        self.basic_blocks = basic_blocks
        self.parameters = parameters
        self.return_type = return_type
        self.name_counter = 0
        for block in basic_blocks:
            block.parent = self

    @property
    def entry_block(self) -> BasicBlock:
        return self.basic_blocks[0]

    def fresh_name(self) -> str:
        name = f"%{self.name_counter}"
        self.name_counter += 1
        return name

    def instructions(self) -> Iterator[Instruction]:
        for block in self.basic_blocks:
            for instruction in block:
                yield instruction

    def edges(self) -> List[Tuple[BasicBlock, BasicBlock]]:
        return [(block, successor) for block in self.basic_blocks for successor in block.successors]

    def __iter__(self) -> Iterator[BasicBlock]:
        """Iterate over the function's basic blocks in order, starting with the entry block.
        """
        for block in self.basic_blocks:
            yield block

    def __repr__(self) -> str:
        parameters = ", ".join(repr(p) for p in self.parameters)
        declaration = f"define {self.return_type} @{self.name}({parameters}) {{\n"
        return declaration + "\n\n".join(repr(b) for b in self.basic_blocks) + "\n}"


def is_integer(value: Operand) -> bool:
    return isinstance(value.type, IntegerType)
