"""Interact with tree_sitter to convert C code into variable-form IR.

Only the scalar subset of C needed to express loops over integers is supported: integer and floating
point variables, arithmetic, comparisons, calls, and structured control flow. Anything else raises
NotImplementedError.
"""

from abc import ABC
from typing import Tuple, Set, List, Optional, Union

import tree_sitter_c
from tree_sitter import Language, Parser, Node

from ..ir import *
from ..analysis import remove_unreachable_blocks

C_LANGUAGE = Language(tree_sitter_c.language())
parser = Parser(C_LANGUAGE)

class SemanticError(Exception):
    pass

class ParsingError(Exception):
    pass

# Maps a normalized C type name to its IR type and signedness.
PRIMITIVE_TYPES = {
    "char": (I8, True),
    "signed char": (I8, True),
    "unsigned char": (I8, False),
    "_Bool": (I8, False),
    "bool": (I8, False),
    "short": (I16, True),
    "short int": (I16, True),
    "signed short": (I16, True),
    "unsigned short": (I16, False),
    "unsigned short int": (I16, False),
    "int": (I32, True),
    "signed": (I32, True),
    "signed int": (I32, True),
    "unsigned": (I32, False),
    "unsigned int": (I32, False),
    "long": (I64, True),
    "long int": (I64, True),
    "signed long": (I64, True),
    "unsigned long": (I64, False),
    "unsigned long int": (I64, False),
    "long long": (I64, True),
    "long long int": (I64, True),
    "unsigned long long": (I64, False),
    "unsigned long long int": (I64, False),
    "int8_t": (I8, True),
    "uint8_t": (I8, False),
    "int16_t": (I16, True),
    "uint16_t": (I16, False),
    "int32_t": (I32, True),
    "uint32_t": (I32, False),
    "int64_t": (I64, True),
    "uint64_t": (I64, False),
    "size_t": (I64, False),
    "ssize_t": (I64, True),
    "float": (FLOAT, True),
    "double": (DOUBLE, True),
    "long double": (DOUBLE, True),
    "void": (VOID, True),
}

COMPARISON_OPERATORS = {"<", ">", "<=", ">=", "==", "!="}

ASSIGNMENT_SUBOPS = {
    "+=": "+",
    "-=": "-",
    "*=": "*",
    "/=": "/",
    "%=": "%",
    "<<=": "<<",
    ">>=": ">>",
    "&=": "&",
    "^=": "^",
    "|=": "|"
}

# A partially converted expression: either an operand that already holds the value, or an instruction
# that computes it and has not yet been given a result variable. The bool is the value's signedness.
Produced = Tuple[Union[Operand, Instruction], bool]


class VariableRegistry:
    def __init__(self, parent_registry: 'VariableRegistry' = None, return_type: Optional[Type] = None):
        """Maps variable names to IR variable objects. If this scope is contained inside another scope,
        that scope can be accessed via parent_registry.

        :param parent_registry: The scope that this scope is found in, or None for the global scope.
        :param return_type: The return type of the enclosing function. Inherited by nested scopes.
        """
        self.name2obj = {}
        self.parent_registry = parent_registry
        self.temporary_idx = 0 if parent_registry is None else parent_registry.temporary_idx
        self._return_type = return_type

    @property
    def return_type(self) -> Type:
        registry = self
        while registry is not None:
            if registry._return_type is not None:
                return registry._return_type
            registry = registry.parent_registry
        return VOID

    def lookup(self, variable_name: str) -> Optional[Variable]:
        registry = self
        while registry is not None:
            if variable_name in registry.name2obj:
                return registry.name2obj[variable_name]
            registry = registry.parent_registry
        return None

    def variable_exists(self, variable_name: str) -> bool:
        return self.lookup(variable_name) is not None

    def check_variable(self, variable_name: str, declared: bool, type: Type = I32, signed: bool = True) -> Variable:
        """Return the variable with this name, declaring it in this scope first if declared is set.

        Identifiers that are used without being declared in any scope are assumed to be global variables
        of type int: functions are processed individually, apart from the rest of their translation unit.
        """
        if declared:
            if variable_name in self.name2obj:
                raise SemanticError(f"Variable {variable_name} was already declared in this scope.")
            variable = Variable(variable_name, type, signed)
            self.name2obj[variable_name] = variable
            return variable

        variable = self.lookup(variable_name)
        if variable is not None:
            return variable

        registry = self
        while registry.parent_registry is not None:
            registry = registry.parent_registry
        variable = Variable(variable_name, I32, True, initial=GlobalVariable(variable_name, I32))
        registry.name2obj[variable_name] = variable
        return variable

    def add_parameter(self, variable_name: str, type: Type, signed: bool) -> Parameter:
        """Add a new parameter to this scope. Returns the IR Parameter; the variable holding it starts out
        with the parameter as its value and may be reassigned.
        """
        parameter = Parameter(variable_name, type)
        self.name2obj[variable_name] = Variable(variable_name, type, signed, initial=parameter)
        return parameter

    def create_temporary(self, type: Type, signed: bool = True) -> Variable:
        """Create a temporary variable with a name that does not exist in this scope or any enclosing scope.
        """
        name = f"t{self.temporary_idx}"
        while self.variable_exists(name):
            self.temporary_idx += 1
            name = f"t{self.temporary_idx}"
        self.temporary_idx += 1
        registry = self
        while registry.parent_registry is not None: # Keep numbering unique across sibling scopes.
            registry = registry.parent_registry
            registry.temporary_idx = max(registry.temporary_idx, self.temporary_idx)
        variable = Variable(name, type, signed, is_temporary=True)
        self.name2obj[name] = variable
        return variable

    def __repr__(self):
        variables = [repr(v) for _, v in self.name2obj.items()]
        outstr = "VariableRegistry(" + ", ".join(variables) + ")"
        if self.parent_registry is not None:
            outstr += " ->\n  " + repr(self.parent_registry)
        return outstr


#
# Types
#
def lookup_type(type_name: str) -> Tuple[Type, bool]:
    normalized = " ".join(type_name.replace("const", " ").replace("volatile", " ").split())
    if normalized.endswith("*"):
        return (PTR, False)
    if normalized not in PRIMITIVE_TYPES:
        raise NotImplementedError(f"Type '{type_name}' is not supported.")
    return PRIMITIVE_TYPES[normalized]

def declarator_type(declarator: Node, base: Tuple[Type, bool]) -> Tuple[Type, bool]:
    """Apply pointer declarators to a base type."""
    if declarator.type == "init_declarator":
        declarator = declarator.child_by_field_name("declarator")
    if declarator.type == "pointer_declarator":
        return (PTR, False)
    if declarator.type == "array_declarator":
        raise NotImplementedError("Arrays are not supported.")
    return base

def variable_name_from_declarator(declarator: Node) -> str:
    if declarator.type == "init_declarator":
        declarator = declarator.child_by_field_name("declarator")
    # Pointer declarators can be nested arbitrarily deep (e.g. int ****** x).
    while declarator.type == "pointer_declarator":
        declarator = declarator.child_by_field_name("declarator")
    if declarator.type == "parenthesized_declarator":
        return variable_name_from_declarator(declarator.children[1])
    if declarator.type != "identifier":
        raise NotImplementedError(f"Declarators of type {declarator.type} are not supported: {declarator.text.decode('utf8')}")
    return declarator.text.decode("utf8")


#
# Leaves and conversions
#
def parse_number_literal(text: str) -> Constant:
    lowered = text.lower()
    is_hex = lowered.startswith("0x")
    if not is_hex and ("." in lowered or "e" in lowered or lowered.endswith("f")):
        if lowered.endswith("f"):
            return ConstantFloat(FLOAT, float(lowered[:-1]))
        return ConstantFloat(DOUBLE, float(lowered.rstrip("l")))

    digits = lowered.rstrip("ul")
    suffix = lowered[len(digits):]
    if is_hex:
        value = int(digits, 16)
    elif digits.startswith("0b"):
        value = int(digits, 2)
    elif len(digits) > 1 and digits.startswith("0"):
        value = int(digits, 8)
    else:
        value = int(digits, 10)

    unsigned = "u" in suffix
    if "l" in suffix or value > (0xFFFFFFFF if unsigned else 0x7FFFFFFF):
        return ConstantInt(I64, value, not unsigned)
    return ConstantInt(I32, value, not unsigned)

def check_expression_leaf(expression: Node, variable_registry: VariableRegistry) -> Optional[Operand]:
    if expression.type == "identifier":
        return variable_registry.check_variable(expression.text.decode("utf8"), declared=False)
    if expression.type == "number_literal":
        return parse_number_literal(expression.text.decode("utf8"))
    if expression.type == "char_literal":
        body = expression.text.decode("utf8")[1:-1]
        character = body.encode("utf8").decode("unicode_escape")
        return ConstantInt(I32, ord(character[0]))
    if expression.type == "string_literal":
        return ConstantString(expression.text.decode("utf8"))
    if expression.type == "concatenated_string":
        text = [child.text.decode("utf8") for child in expression.children if child.type == "string_literal"]
        return ConstantString('"' + ''.join(t[1:-1] for t in text) + '"')
    # true, false, and NULL are not keywords in C but tree-sitter recognizes them with their own node types anyway.
    if expression.type == "true":
        return ConstantInt(I32, 1)
    if expression.type == "false":
        return ConstantInt(I32, 0)
    if expression.type == "null":
        return ConstantInt(I64, 0)
    return None

def clean_expression(expression: Node) -> Node:
    while expression.type == "parenthesized_expression":
        assert len(expression.children) == 3
        expression = expression.children[1]
    return expression

def is_signed(operand: Operand) -> bool:
    return getattr(operand, "signed", True)

def promote(operand: Operand) -> Tuple[Type, bool]:
    """The type an operand has after C integer promotion."""
    if isinstance(operand.type, FloatType):
        return operand.type, True
    if not isinstance(operand.type, IntegerType):
        raise NotImplementedError(f"Arithmetic on values of type {operand.type} is not supported.")
    if operand.type.bits < 32:
        return I32, True
    return operand.type, is_signed(operand)

def arithmetic_type(lhs: Operand, rhs: Operand) -> Tuple[Type, bool]:
    """The common type of a binary operation under the usual arithmetic conversions."""
    ltype, lsigned = promote(lhs)
    rtype, rsigned = promote(rhs)
    if isinstance(ltype, FloatType) or isinstance(rtype, FloatType):
        bits = max(t.bits for t in (ltype, rtype) if isinstance(t, FloatType))
        return FloatType(bits), True
    if ltype.bits != rtype.bits:
        return (ltype, lsigned) if ltype.bits > rtype.bits else (rtype, rsigned)
    return ltype, lsigned and rsigned

def cast_opcode(source: Type, target: Type, source_signed: bool, target_signed: bool) -> str:
    if isinstance(source, IntegerType) and isinstance(target, IntegerType):
        if source.bits < target.bits:
            return "sext" if source_signed and source.bits > 1 else "zext"
        return "trunc"
    if isinstance(source, IntegerType) and isinstance(target, FloatType):
        return "sitofp" if source_signed and source.bits > 1 else "uitofp"
    if isinstance(source, FloatType) and isinstance(target, IntegerType):
        return "fptosi" if target_signed else "fptoui"
    if isinstance(source, FloatType) and isinstance(target, FloatType):
        return "fpext" if source.bits < target.bits else "fptrunc"
    raise NotImplementedError(f"Conversion from {source} to {target} is not supported.")

def convert(operand: Operand, target: Type, target_signed: bool, variable_registry: VariableRegistry, expression_ops: List[Instruction]) -> Operand:
    """Convert operand to the target type, folding conversions of literals and emitting a cast otherwise."""
    if operand.type == target:
        return operand
    if isinstance(operand, ConstantInt):
        value = operand.value if operand.signed else operand.unsigned_value
        if isinstance(target, IntegerType):
            return ConstantInt(target, value, target_signed)
        if isinstance(target, FloatType):
            return ConstantFloat(target, value)
    if isinstance(operand, ConstantFloat):
        if isinstance(target, FloatType):
            return ConstantFloat(target, operand.value)
        if isinstance(target, IntegerType):
            return ConstantInt(target, int(operand.value), target_signed)
    opcode = cast_opcode(operand.type, target, is_signed(operand), target_signed)
    temporary = variable_registry.create_temporary(target, target_signed)
    expression_ops.append(CastInst(opcode, operand, target, temporary))
    return temporary

def to_boolean(operand: Operand, variable_registry: VariableRegistry, expression_ops: List[Instruction]) -> Operand:
    """Produce an i1 operand that is true when operand is nonzero."""
    if operand.type == I1:
        return operand
    if isinstance(operand.type, FloatType):
        comparison = CompareInst(Predicate.ONE, operand, ConstantFloat(operand.type, 0.0))
    elif isinstance(operand.type, IntegerType):
        comparison = CompareInst(Predicate.NE, operand, ConstantInt(operand.type, 0))
    else:
        raise NotImplementedError(f"Cannot use a value of type {operand.type} as a condition.")
    comparison.result = variable_registry.create_temporary(I1, False)
    expression_ops.append(comparison)
    return comparison.result

def comparison_predicate(operator: str, operand_type: Type, signed: bool) -> Predicate:
    if isinstance(operand_type, FloatType):
        return {"<": Predicate.OLT, ">": Predicate.OGT, "<=": Predicate.OLE, ">=": Predicate.OGE,
                "==": Predicate.OEQ, "!=": Predicate.ONE}[operator]
    if operator == "==":
        return Predicate.EQ
    if operator == "!=":
        return Predicate.NE
    if signed:
        return {"<": Predicate.SLT, ">": Predicate.SGT, "<=": Predicate.SLE, ">=": Predicate.SGE}[operator]
    return {"<": Predicate.ULT, ">": Predicate.UGT, "<=": Predicate.ULE, ">=": Predicate.UGE}[operator]

def arithmetic_opcode(operator: str, operand_type: Type, signed: bool) -> str:
    if isinstance(operand_type, FloatType):
        opcodes = {"+": "fadd", "-": "fsub", "*": "fmul", "/": "fdiv", "%": "frem"}
    else:
        opcodes = {"+": "add", "-": "sub", "*": "mul", "/": "sdiv" if signed else "udiv",
                   "%": "srem" if signed else "urem", "&": "and", "|": "or", "^": "xor"}
    if operator not in opcodes:
        raise SemanticError(f"Operator {operator} cannot be applied to values of type {operand_type}.")
    return opcodes[operator]

def binary_operation(operator: str, left: Operand, right: Operand, variable_registry: VariableRegistry, expression_ops: List[Instruction]) -> Produced:
    """Build the instruction for `left operator right`, converting the operands as C requires."""
    if operator in ("&&", "||"):
        # Both sides are evaluated: the IR has no short-circuit form.
        lhs = to_boolean(left, variable_registry, expression_ops)
        rhs = to_boolean(right, variable_registry, expression_ops)
        return (BinaryOperator("and" if operator == "&&" else "or", lhs, rhs), False)
    if operator in ("<<", ">>"):
        # The result has the promoted type of the left operand.
        operand_type, signed = promote(left)
        if not isinstance(operand_type, IntegerType):
            raise SemanticError(f"Shift of a value of type {operand_type}.")
        lhs = convert(left, operand_type, signed, variable_registry, expression_ops)
        rhs = convert(right, operand_type, is_signed(right), variable_registry, expression_ops)
        opcode = "shl" if operator == "<<" else ("ashr" if signed else "lshr")
        return (BinaryOperator(opcode, lhs, rhs), signed)

    operand_type, signed = arithmetic_type(left, right)
    lhs = convert(left, operand_type, signed, variable_registry, expression_ops)
    rhs = convert(right, operand_type, signed, variable_registry, expression_ops)
    if operator in COMPARISON_OPERATORS:
        return (CompareInst(comparison_predicate(operator, operand_type, signed), lhs, rhs), False)
    return (BinaryOperator(arithmetic_opcode(operator, operand_type, signed), lhs, rhs), signed)


# C expressions are recursively defined. The IR requires expressions be represented as a sequence of
# single operations, with the result of each stored in a variable. Three functions form a mutually
# recursive system for this conversion:
#  ... -> bind_expression -> convert_operator -> expand_subexpression -> ...
#
# convert_operator builds the instruction for the outermost operation of an expression but does not
# decide where its result goes. bind_expression stores the result in a variable of the source
# program where possible (in "a = b + c;", in "a") and in a temporary otherwise. expand_subexpression
# returns leaves (variables and constants) directly and forwards everything else to bind_expression,
# which avoids a copy for every variable or constant used as an argument.

def get_assignment_subopcode(operator: Node) -> str:
    assert operator.type in ASSIGNMENT_SUBOPS, f"{operator.type} not a valid C assignment operator."
    return ASSIGNMENT_SUBOPS[operator.type]

def assign(variable: Variable, produced: Produced, variable_registry: VariableRegistry, expression_ops: List[Instruction]) -> Variable:
    """Store a partially converted expression into variable, converting it to the variable's type."""
    value, signed = produced
    if isinstance(value, Instruction):
        if value.type == variable.type:
            value.result = variable
            expression_ops.append(value)
            return variable
        temporary = variable_registry.create_temporary(value.type, signed)
        value.result = temporary
        expression_ops.append(value)
        value = temporary
    value = convert(value, variable.type, variable.signed, variable_registry, expression_ops)
    expression_ops.append(CopyInst(value, variable))
    return variable

def produce(expression: Node, variable_registry: VariableRegistry, expression_ops: List[Instruction]) -> Produced:
    expression = clean_expression(expression)
    if expression.type == "assignment_expression" or expression.type == "update_expression":
        # Nested assignment, as in a = b = 1; the value is whatever b now holds.
        variable = bind_expression(expression, variable_registry, expression_ops)
        return (variable, variable.signed)
    return convert_operator(expression, variable_registry, expression_ops)

def bind_expression(expression: Node, variable_registry: VariableRegistry, expression_ops: List[Instruction]) -> Variable:
    expression = clean_expression(expression)
    if expression.type == "assignment_expression":
        lhs = expression.child_by_field_name("left")
        if lhs.type != "identifier":
            raise NotImplementedError(f"Assignments to {lhs.type} are not supported.")
        result_var = variable_registry.check_variable(lhs.text.decode("utf8"), declared=False)

        rhs = expression.child_by_field_name("right")
        assignment_operator = expression.child_by_field_name("operator")
        if assignment_operator.type == "=":
            produced = produce(rhs, variable_registry, expression_ops)
        else: # the assignment is a +=, -=, etc.
            rhs_result = expand_subexpression(rhs, variable_registry, expression_ops)
            produced = binary_operation(get_assignment_subopcode(assignment_operator), result_var, rhs_result, variable_registry, expression_ops)
        return assign(result_var, produced, variable_registry, expression_ops)

    if expression.type == "update_expression":
        # ++ and --
        operand = expand_subexpression(expression.child_by_field_name("argument"), variable_registry, expression_ops)
        operator = expression.child_by_field_name("operator").text.decode("utf8")
        assert operator == "++" or operator == "--"
        if not isinstance(operand, Variable):
            raise SemanticError(f"Cannot apply update operator {operator} to expression \"{operand}\"")
        binary_operator = "+" if operator == "++" else "-"

        if expression.field_name_for_child(0) == "operator": # prefix (++i)
            increment = binary_operation(binary_operator, operand, ConstantInt(I32, 1), variable_registry, expression_ops)
            return assign(operand, increment, variable_registry, expression_ops)
        # Postfix (i++): the expression's value is the variable before the update.
        previous = variable_registry.create_temporary(operand.type, operand.signed)
        expression_ops.append(CopyInst(operand, previous))
        increment = binary_operation(binary_operator, operand, ConstantInt(I32, 1), variable_registry, expression_ops)
        assign(operand, increment, variable_registry, expression_ops)
        return previous

    value, signed = convert_operator(expression, variable_registry, expression_ops)
    if isinstance(value, Variable):
        return value
    temporary = variable_registry.create_temporary(value.type, signed)
    if isinstance(value, Instruction):
        value.result = temporary
        expression_ops.append(value)
    else:
        expression_ops.append(CopyInst(value, temporary))
    return temporary

def expand_subexpression(expression: Node, variable_registry: VariableRegistry, expression_ops: List[Instruction]) -> Operand:
    expression = clean_expression(expression)
    operand = check_expression_leaf(expression, variable_registry)
    if operand is None:
        operand = bind_expression(expression, variable_registry, expression_ops)
    return operand

def convert_operator(expression: Node, variable_registry: VariableRegistry, expression_ops: List[Instruction]) -> Produced:
    expression = clean_expression(expression)
    assert expression.type != "assignment_expression" # Should be handled by bind_expression
    assert expression.type != "update_expression" # Should be handled by bind_expression

    leaf = check_expression_leaf(expression, variable_registry)
    if leaf is not None:
        return (leaf, is_signed(leaf))
    elif expression.type == "unary_expression":
        operator = expression.child_by_field_name("operator").text.decode("utf8")
        operand = expand_subexpression(expression.child_by_field_name("argument"), variable_registry, expression_ops)
        if operator == "!":
            condition = to_boolean(operand, variable_registry, expression_ops)
            return (CompareInst(Predicate.EQ, condition, ConstantInt(I1, 0)), False)
        operand_type, signed = promote(operand)
        operand = convert(operand, operand_type, signed, variable_registry, expression_ops)
        if operator == "+":
            return (operand, signed)
        if operator == "-":
            if isinstance(operand, ConstantInt):
                return (ConstantInt(operand.type, -operand.value, signed), signed)
            if isinstance(operand, ConstantFloat):
                return (ConstantFloat(operand.type, -operand.value), signed)
            if isinstance(operand_type, FloatType):
                return (BinaryOperator("fsub", ConstantFloat(operand_type, 0.0), operand), signed)
            return (BinaryOperator("sub", ConstantInt(operand_type, 0, signed), operand), signed)
        if operator == "~":
            if not isinstance(operand_type, IntegerType):
                raise SemanticError(f"Operator ~ cannot be applied to a value of type {operand_type}.")
            return (BinaryOperator("xor", operand, ConstantInt(operand_type, -1, signed)), signed)
        raise NotImplementedError(f"Unary operator {operator} is not supported.")
    elif expression.type == "binary_expression":
        left = expand_subexpression(expression.child_by_field_name("left"), variable_registry, expression_ops)
        right = expand_subexpression(expression.child_by_field_name("right"), variable_registry, expression_ops)
        operator = expression.child_by_field_name("operator").text.decode("utf8")
        return binary_operation(operator, left, right, variable_registry, expression_ops)
    elif expression.type == "call_expression":
        name_node = expression.child_by_field_name("function")
        if name_node.type != "identifier":
            raise NotImplementedError("Calls through function pointers are not supported.")
        arguments = []
        for argument in expression.child_by_field_name("arguments").children[1:-1]:
            if argument.type == ",":
                continue
            arguments.append(expand_subexpression(argument, variable_registry, expression_ops))
        # Callees are not declared in the function being converted; C's implicit int applies.
        return (CallInst(name_node.text.decode("utf8"), arguments, I32), True)
    elif expression.type == "cast_expression":
        target_type, target_signed = lookup_type(expression.child_by_field_name("type").text.decode("utf8"))
        value = expand_subexpression(expression.child_by_field_name("value"), variable_registry, expression_ops)
        return (convert(value, target_type, target_signed, variable_registry, expression_ops), target_signed)
    elif expression.type == "comma_expression":
        # The left expression is evaluated first; its value is discarded.
        _ = bind_expression(expression.child_by_field_name("left"), variable_registry, expression_ops)
        return produce(expression.child_by_field_name("right"), variable_registry, expression_ops)
    elif expression.type == "ERROR":
        raise ParsingError(expression.text.decode("utf8"))
    else:
        raise NotImplementedError(f"No code yet implemented to handle expressions of type '{expression.type}'")

def convert_condition(expression: Node, variable_registry: VariableRegistry, expression_ops: List[Instruction]) -> Operand:
    operand = expand_subexpression(expression, variable_registry, expression_ops)
    return to_boolean(operand, variable_registry, expression_ops)

def is_constant_true(expression: Optional[Node]) -> bool:
    """Whether a loop condition is absent or a nonzero literal, as in for (;;) or while (1)."""
    if expression is None:
        return True
    leaf = check_expression_leaf(clean_expression(expression), VariableRegistry())
    return isinstance(leaf, ConstantInt) and leaf.value != 0

def constant_case_value(expression: Node, variable_registry: VariableRegistry, case_type: Type) -> ConstantInt:
    value, _ = convert_operator(expression, variable_registry, [])
    if not isinstance(value, ConstantInt):
        raise SemanticError("Case expression must be an integral constant expression.")
    return ConstantInt(case_type, value.value)


#
# These classes define how control flows after exiting a nested compound statement (e.g. the body of a
# loop). By default, flow continues to the next block (Next). A break leaves the innermost loop or switch
# and a continue goes to the loop's test (or, in a for loop, to the update statement).
#
class BlockSuccessorAssignment(ABC):
    pass

class Next(BlockSuccessorAssignment):
    pass

class Break(BlockSuccessorAssignment):
    pass

class Continue(BlockSuccessorAssignment):
    pass

BlockList = List[Tuple[BasicBlock, Optional[BlockSuccessorAssignment]]]

def emit(block: BasicBlock, instructions: List[Instruction]):
    for instruction in instructions:
        block.append(instruction)

def jump(block: BasicBlock, target: BasicBlock):
    block.terminate(BranchInst([target]))

def branch(block: BasicBlock, condition: Operand, if_true: BasicBlock, if_false: BasicBlock):
    block.terminate(BranchInst([if_true, if_false], condition))

def link_loop_body(body_blocks: BlockList, continue_target: BasicBlock, break_target: BasicBlock, blocks: BlockList):
    for loopblock, successor_assignment in body_blocks:
        if isinstance(successor_assignment, (Next, Continue)):
            jump(loopblock, continue_target)
            blocks.append((loopblock, None))
        elif isinstance(successor_assignment, Break):
            jump(loopblock, break_target)
            blocks.append((loopblock, None))
        else:
            blocks.append((loopblock, successor_assignment))


def convert_declaration(declaration: Node, variable_registry: VariableRegistry, initialize: bool = True) -> List[Instruction]:
    base = lookup_type(declaration.child_by_field_name("type").text.decode("utf8"))
    expression_ops = []
    for declarator in declaration.children_by_field_name("declarator"):
        if declarator.type == "function_declarator":
            continue # A function prototype.
        variable_type, signed = declarator_type(declarator, base)
        variable = variable_registry.check_variable(variable_name_from_declarator(declarator), declared=True, type=variable_type, signed=signed)

        value = declarator.child_by_field_name("value") # Not None only for init declarators.
        if initialize and value is not None:
            if value.type == "initializer_list":
                raise NotImplementedError("Initializer lists are not supported.")
            assign(variable, produce(value, variable_registry, expression_ops), variable_registry, expression_ops)
    return expression_ops

def convert_compound_statement(body: Union[Node, List[Node]], variable_registry: VariableRegistry) -> BlockList:
    if isinstance(body, list):
        statements = body
    elif body.type == "compound_statement":
        assert body.children[0].type == "{"
        assert body.children[-1].type == "}"
        statements = body.children[1:-1]
    else:
        statements = [body] # body is an individual statement; wrap it in a list to use the code below.

    blocks: BlockList = []
    current_block = BasicBlock()
    for statement in statements:
        if statement.type == "declaration":
            emit(current_block, convert_declaration(statement, variable_registry))
        elif statement.type == "expression_statement":
            # Ignore empty statements. (i.e. just a semicolon)
            if len(statement.children) == 2:
                operators = []
                _ = bind_expression(statement.children[0], variable_registry, operators)
                emit(current_block, operators)
        elif statement.type == "return_statement":
            return_type = variable_registry.return_type
            if len(statement.children) == 3:
                operators = []
                produced = produce(statement.children[1], variable_registry, operators)
                if isinstance(return_type, VoidType):
                    raise SemanticError("A void function cannot return a value.")
                returned = assign(variable_registry.create_temporary(return_type), produced, variable_registry, operators)
                emit(current_block, operators)
                current_block.terminate(ReturnInst(returned))
            else:
                current_block.terminate(ReturnInst(None if isinstance(return_type, VoidType) else Undef(return_type)))
            blocks.append((current_block, None)) # A block ending in a return statement has no successors.
            return blocks # Everything after this statement in this block is unreachable.
        elif statement.type == "break_statement":
            blocks.append((current_block, Break()))
            return blocks
        elif statement.type == "continue_statement":
            blocks.append((current_block, Continue()))
            return blocks
        elif statement.type == "if_statement":
            condition_ops = []
            condition = convert_condition(statement.child_by_field_name("condition"), variable_registry, condition_ops)
            emit(current_block, condition_ops)
            blocks.append((current_block, None))
            if_start_block = current_block
            current_block = BasicBlock() # The block after the if statement.

            body_blocks = convert_compound_statement(statement.child_by_field_name("consequence"), VariableRegistry(variable_registry))
            alternative_node = statement.child_by_field_name("alternative")
            if alternative_node is not None:
                # alternative_node.children[0]: else
                # alternative_node.children[1]: the else-clause body
                alternative_blocks = convert_compound_statement(alternative_node.children[1], VariableRegistry(variable_registry))
                branch(if_start_block, condition, body_blocks[0][0], alternative_blocks[0][0])
                body_blocks.extend(alternative_blocks)
            else:
                branch(if_start_block, condition, body_blocks[0][0], current_block)

            for ifblock, successor_assignment in body_blocks:
                if isinstance(successor_assignment, Next):
                    jump(ifblock, current_block)
                    blocks.append((ifblock, None))
                else:
                    blocks.append((ifblock, successor_assignment)) # Propagate break and continue outside this scope.
        elif statement.type == "for_statement":
            loop_registry = VariableRegistry(variable_registry)

            initializer = statement.child_by_field_name("initializer")
            if initializer is not None:
                if initializer.type == "declaration":
                    emit(current_block, convert_declaration(initializer, loop_registry))
                else:
                    initializer_ops = []
                    _ = bind_expression(initializer, loop_registry, initializer_ops)
                    emit(current_block, initializer_ops)
            pre_loop_block = current_block
            blocks.append((pre_loop_block, None))
            current_block = BasicBlock() # The block after the loop.

            condition_block = BasicBlock()
            blocks.append((condition_block, None))
            jump(pre_loop_block, condition_block)
            condition_node = statement.child_by_field_name("condition")
            condition = None
            if not is_constant_true(condition_node):
                condition_ops = []
                condition = convert_condition(condition_node, loop_registry, condition_ops)
                emit(condition_block, condition_ops)

            update_block = BasicBlock()
            update = statement.child_by_field_name("update")
            if update is not None:
                update_ops = []
                _ = bind_expression(update, loop_registry, update_ops)
                emit(update_block, update_ops)
            blocks.append((update_block, None))
            jump(update_block, condition_block)

            body_blocks = convert_compound_statement(statement.child_by_field_name("body"), VariableRegistry(loop_registry))
            if condition is None:
                jump(condition_block, body_blocks[0][0])
            else:
                branch(condition_block, condition, body_blocks[0][0], current_block)
            link_loop_body(body_blocks, update_block, current_block, blocks)
        elif statement.type == "while_statement":
            pre_loop_block = current_block
            blocks.append((pre_loop_block, None))
            current_block = BasicBlock() # The block after the loop.

            condition_block = BasicBlock()
            blocks.append((condition_block, None))
            jump(pre_loop_block, condition_block)
            condition_node = statement.child_by_field_name("condition")
            condition = None
            if not is_constant_true(clean_expression(condition_node)):
                condition_ops = []
                condition = convert_condition(condition_node, variable_registry, condition_ops)
                emit(condition_block, condition_ops)

            body_blocks = convert_compound_statement(statement.child_by_field_name("body"), VariableRegistry(variable_registry))
            if condition is None:
                jump(condition_block, body_blocks[0][0])
            else:
                branch(condition_block, condition, body_blocks[0][0], current_block)
            link_loop_body(body_blocks, condition_block, current_block, blocks)
        elif statement.type == "do_statement":
            pre_loop_block = current_block
            blocks.append((pre_loop_block, None))
            current_block = BasicBlock() # The block after the loop.

            body_blocks = convert_compound_statement(statement.child_by_field_name("body"), VariableRegistry(variable_registry))
            jump(pre_loop_block, body_blocks[0][0])

            condition_block = BasicBlock()
            condition_node = statement.child_by_field_name("condition")
            if is_constant_true(clean_expression(condition_node)):
                jump(condition_block, body_blocks[0][0])
            else:
                condition_ops = []
                condition = convert_condition(condition_node, variable_registry, condition_ops)
                emit(condition_block, condition_ops)
                branch(condition_block, condition, body_blocks[0][0], current_block)
            link_loop_body(body_blocks, condition_block, current_block, blocks)
            blocks.append((condition_block, None))
        elif statement.type == "switch_statement":
            condition_ops = []
            selector = expand_subexpression(statement.child_by_field_name("condition"), variable_registry, condition_ops)
            selector_type, selector_signed = promote(selector)
            if not isinstance(selector_type, IntegerType):
                raise SemanticError("The controlling expression of a switch must have integer type.")
            selector = convert(selector, selector_type, selector_signed, variable_registry, condition_ops)
            emit(current_block, condition_ops)
            switch_block = current_block
            blocks.append((switch_block, None))

            switch_registry = VariableRegistry(variable_registry)
            cases: List[Tuple[ConstantInt, BasicBlock]] = []
            default_block: Optional[BasicBlock] = None
            fallthrough_block: Optional[BasicBlock] = None # The end of the previous case if it does not break.
            switch_blocks: BlockList = []

            case_body = statement.child_by_field_name("body").children
            assert case_body[0].type == "{" and case_body[-1].type == "}"
            for substatement in case_body[1:-1]:
                if substatement.type == "case_statement":
                    colon = next(i for i, child in enumerate(substatement.children) if child.type == ":")
                    case_blocks = convert_compound_statement(substatement.children[colon + 1:], switch_registry)
                    if substatement.children[0].type == "case":
                        cases.append((constant_case_value(substatement.child_by_field_name("value"), switch_registry, selector_type), case_blocks[0][0]))
                    else:
                        assert substatement.children[0].type == "default"
                        if default_block is not None:
                            raise SemanticError("Cannot have more than one default statement in a switch statement.")
                        default_block = case_blocks[0][0]

                    # The previous case falls through into this one.
                    if fallthrough_block is not None:
                        jump(fallthrough_block, case_blocks[0][0])
                    last_block, last_assignment = case_blocks[-1]
                    fallthrough_block = last_block if isinstance(last_assignment, Next) else None
                    switch_blocks.extend(case_blocks)
                elif substatement.type == "declaration":
                    convert_declaration(substatement, switch_registry, initialize=False)
                elif substatement.type != "comment":
                    raise NotImplementedError(f"Statements of type {substatement.type} outside of a case are not supported.")

            current_block = BasicBlock() # The block after the switch statement.
            if fallthrough_block is not None:
                jump(fallthrough_block, current_block)
            switch_block.terminate(SwitchInst(selector, default_block if default_block is not None else current_block, cases))

            for switch_case_block, successor_assignment in switch_blocks:
                if isinstance(successor_assignment, Break):
                    jump(switch_case_block, current_block)
                    blocks.append((switch_case_block, None))
                elif isinstance(successor_assignment, Next):
                    blocks.append((switch_case_block, None)) # Linked through fallthrough_block above.
                else:
                    blocks.append((switch_case_block, successor_assignment))
        elif statement.type == "compound_statement":
            # A plain nested scope.
            blocks.append((current_block, None))
            nested_blocks = convert_compound_statement(statement, VariableRegistry(variable_registry))
            jump(current_block, nested_blocks[0][0])
            current_block = BasicBlock() # The block after the inner compound statement ends.
            for nested_block, successor_assignment in nested_blocks:
                if isinstance(successor_assignment, Next):
                    jump(nested_block, current_block)
                    blocks.append((nested_block, None))
                else:
                    blocks.append((nested_block, successor_assignment))
        elif statement.type in ("comment", ";"):
            pass
        elif statement.type == "ERROR":
            raise ParsingError(statement.text.decode("utf8"))
        else:
            raise NotImplementedError(f"No code for handling statements of type {statement.type}")

    blocks.append((current_block, Next()))
    return blocks

def process_function_declaration(definition: Node, variable_registry: VariableRegistry) -> Tuple[str, List[Parameter], Type]:
    """Get the name, parameters, and return type of a function definition. Parameters are added to the
    VariableRegistry.
    """
    return_type, _ = lookup_type(definition.child_by_field_name("type").text.decode("utf8"))
    declarator = definition.child_by_field_name("declarator")
    while declarator.type == "pointer_declarator":
        return_type = PTR
        declarator = declarator.child_by_field_name("declarator")
    assert declarator.type == "function_declarator"

    parameters = []
    for param_node in declarator.child_by_field_name("parameters").children:
        if param_node.type != "parameter_declaration":
            continue
        param_declarator = param_node.child_by_field_name("declarator")
        if param_declarator is None:
            continue # e.g. f(void)
        base = lookup_type(param_node.child_by_field_name("type").text.decode("utf8"))
        param_type, signed = declarator_type(param_declarator, base)
        parameters.append(variable_registry.add_parameter(variable_name_from_declarator(param_declarator), param_type, signed))

    name = declarator.child_by_field_name("declarator")
    assert name.type == "identifier"
    return (name.text.decode("utf8"), parameters, return_type)

def error_check(node: Node):
    """Determine if there is an error node in this AST. If there is, raise a ParsingError.
    """
    if node.type == "ERROR" or node.is_missing:
        raise ParsingError(node.text.decode("utf8"))
    for child in node.children:
        error_check(child)

def function_ast2varform(definition: Node) -> Function:
    """Converts a tree-sitter AST for a function definition into variable-form IR.

    :param definition: The root node of the function definition. Should be of type 'function_definition'.
    """
    assert definition.type == "function_definition"
    error_check(definition)

    global_registry = VariableRegistry()
    function_registry = VariableRegistry(global_registry)
    function_name, parameters, return_type = process_function_declaration(definition, function_registry)
    function_registry._return_type = return_type

    blocks_with_metadata = convert_compound_statement(definition.child_by_field_name("body"), function_registry)
    for block, successor_assignment in blocks_with_metadata:
        if isinstance(successor_assignment, (Break, Continue)):
            raise SemanticError("break or continue outside of a loop or switch statement.")
        if isinstance(successor_assignment, Next):
            # Falling off the end of the function.
            block.terminate(ReturnInst(None if isinstance(return_type, VoidType) else Undef(return_type)))
        assert block.terminator is not None, f"Block {block.label} was left without a terminator."

    func = Function(function_name, [b for b, _ in blocks_with_metadata], parameters, return_type)
    remove_unreachable_blocks(func)
    return func

def parse(code: bytes) -> List[Function]:
    """Parse C code using tree-sitter and convert each function definition into variable-form IR.
    """
    ast = parser.parse(code)
    root = ast.root_node
    assert root.type == "translation_unit"
    return [function_ast2varform(child) for child in root.children if child.type == "function_definition"]
