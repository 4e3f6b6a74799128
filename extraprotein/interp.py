"""Execute SSA-form functions directly.

Integers are held as unsigned bit patterns of their type's width and every operation on them goes
through apint, so results wrap exactly as compiled code would. Reading an Undef yields zero.
"""

import math
from typing import Callable, Dict, Optional

from .ir import *
from .apint import wrap, to_signed, evaluate_binary, evaluate_compare


class InterpreterError(RuntimeError):
    pass


class ExecutionResult:
    def __init__(self, value: object, block_visits: Dict[BasicBlock, int], steps: int):
        self.value = value
        self.block_visits = block_visits
        self.steps = steps

    def visits(self, block: BasicBlock) -> int:
        return self.block_visits.get(block, 0)

    def __repr__(self):
        return f"ExecutionResult(value={self.value!r}, steps={self.steps})"


class Interpreter:
    def __init__(self, function: Function, externals: Optional[Dict[str, Callable[..., object]]] = None,
                 globals: Optional[Dict[str, object]] = None, max_steps: int = 100000) -> None:
        """
        :param function: an SSA-form function.
        :param externals: implementations of called functions, by name. Arguments are passed as python
        ints (signed) and floats; an integer result is wrapped to the call's type.
        :param globals: the values of global variables read by the function, by name. Missing globals read as 0.
        :param max_steps: the number of instructions to execute before giving up.
        """
        self.function = function
        self.externals = externals if externals is not None else {}
        self.globals = globals if globals is not None else {}
        self.max_steps = max_steps

    def run(self, *args: object) -> ExecutionResult:
        if len(args) != len(self.function.parameters):
            raise InterpreterError(f"{self.function.name} expects {len(self.function.parameters)} arguments, got {len(args)}")
        env: Dict[Value, object] = {}
        for parameter, argument in zip(self.function.parameters, args):
            env[parameter] = self._normalize(argument, parameter.type)

        visits: Dict[BasicBlock, int] = {}
        steps = 0
        previous: Optional[BasicBlock] = None
        block = self.function.entry_block
        while True:
            visits[block] = visits.get(block, 0) + 1

            # Phis read the values live at the end of the predecessor, all at once.
            phis = block.phis()
            incoming = [self._value(phi.incoming_value_for_block(previous), env) for phi in phis]
            for phi, value in zip(phis, incoming):
                env[phi] = value

            for instruction in block.instructions[len(phis):]:
                steps += 1
                if steps > self.max_steps:
                    raise InterpreterError(f"Exceeded {self.max_steps} steps in {self.function.name}")
                if instruction.is_terminator:
                    break
                env[instruction] = self._execute(instruction, env)

            terminator = block.terminator
            if terminator is None:
                raise InterpreterError(f"Block {block.label} has no terminator.")
            if isinstance(terminator, ReturnInst):
                value = terminator.return_value
                result = None if value is None else self._value(value, env)
                if result is not None and isinstance(value.type, IntegerType):
                    result = to_signed(result, value.type.bits)
                return ExecutionResult(result, visits, steps)

            previous, block = block, self._next_block(terminator, env)

    def _next_block(self, terminator: TerminatorInst, env: Dict[Value, object]) -> BasicBlock:
        if isinstance(terminator, BranchInst):
            if not terminator.is_conditional:
                return terminator.successors[0]
            return terminator.successors[0] if self._value(terminator.condition, env) else terminator.successors[1]
        if isinstance(terminator, SwitchInst):
            selector = self._value(terminator.condition, env)
            for case, target in zip(terminator.case_values, terminator.successors[1:]):
                if case.unsigned_value == selector:
                    return target
            return terminator.default
        raise InterpreterError(f"Unknown terminator {terminator.opcode}")

    def _normalize(self, value: object, type: Type) -> object:
        if isinstance(type, IntegerType):
            return wrap(int(value), type.bits)
        if isinstance(type, FloatType):
            return float(value)
        return value

    def _value(self, operand: Operand, env: Dict[Value, object]) -> object:
        if isinstance(operand, ConstantInt):
            return operand.unsigned_value
        if isinstance(operand, ConstantFloat):
            return operand.value
        if isinstance(operand, ConstantString):
            return operand.value
        if isinstance(operand, Undef):
            return 0.0 if isinstance(operand.type, FloatType) else 0
        if isinstance(operand, GlobalVariable):
            return self._normalize(self.globals.get(operand.name, 0), operand.type)
        if isinstance(operand, Variable):
            raise InterpreterError(f"Variable {operand.name} in SSA form; convert the function first.")
        if operand not in env:
            raise InterpreterError(f"{operand.display_name()} is read before it is defined.")
        return env[operand]

    def _execute(self, instruction: Instruction, env: Dict[Value, object]) -> object:
        operands = [self._value(operand, env) for operand in instruction.operands]
        if instruction.kind is InstructionKind.BINARY:
            if instruction.opcode in FLOAT_BINARY_OPCODES:
                return _evaluate_float(instruction.opcode, operands[0], operands[1])
            try:
                return evaluate_binary(instruction.opcode, operands[0], operands[1], instruction.type.bits)
            except ZeroDivisionError as e:
                raise InterpreterError(f"{instruction.display_name()}: {e}") from e
        if instruction.kind is InstructionKind.COMPARISON:
            lhs, rhs = operands
            if instruction.predicate.is_float:
                return int(_compare_float(instruction.predicate, lhs, rhs))
            return int(evaluate_compare(instruction.predicate, lhs, rhs, instruction.lhs.type.bits))
        if isinstance(instruction, CastInst):
            return _evaluate_cast(instruction.opcode, operands[0], instruction.operands[0].type, instruction.type)
        if isinstance(instruction, CallInst):
            if instruction.callee not in self.externals:
                raise InterpreterError(f"Call to unknown function {instruction.callee}")
            arguments = [to_signed(value, operand.type.bits) if isinstance(operand.type, IntegerType) else value
                         for value, operand in zip(operands, instruction.operands)]
            return self._normalize(self.externals[instruction.callee](*arguments), instruction.type)
        raise InterpreterError(f"Cannot execute {instruction!r}")


def _evaluate_float(opcode: str, lhs: float, rhs: float) -> float:
    if opcode == "fadd":
        return lhs + rhs
    if opcode == "fsub":
        return lhs - rhs
    if opcode == "fmul":
        return lhs * rhs
    if opcode == "fdiv":
        if rhs == 0.0:
            if lhs == 0.0 or math.isnan(lhs):
                return math.nan
            return math.copysign(math.inf, lhs) * math.copysign(1.0, rhs)
        return lhs / rhs
    if opcode == "frem":
        return math.nan if rhs == 0.0 else math.fmod(lhs, rhs)
    raise InterpreterError(f"Unknown float opcode {opcode}")

def _compare_float(predicate: Predicate, lhs: float, rhs: float) -> bool:
    if math.isnan(lhs) or math.isnan(rhs):
        return False # Ordered predicates are false on NaN.
    return {
        Predicate.OEQ: lhs == rhs,
        Predicate.ONE: lhs != rhs,
        Predicate.OGT: lhs > rhs,
        Predicate.OGE: lhs >= rhs,
        Predicate.OLT: lhs < rhs,
        Predicate.OLE: lhs <= rhs,
    }[predicate]

def _evaluate_cast(opcode: str, value: object, source: Type, target: Type) -> object:
    if opcode == "sext":
        return wrap(to_signed(value, source.bits), target.bits)
    if opcode in ("zext", "trunc"):
        return wrap(value, target.bits)
    if opcode == "sitofp":
        return float(to_signed(value, source.bits))
    if opcode == "uitofp":
        return float(value)
    if opcode in ("fptosi", "fptoui"):
        if math.isnan(value) or math.isinf(value):
            raise InterpreterError(f"{opcode} of {value}")
        return wrap(int(value), target.bits)
    if opcode in ("fpext", "fptrunc"):
        return value
    raise InterpreterError(f"Unknown cast {opcode}")


def run_function(function: Function, *args: object, externals: Optional[Dict[str, Callable[..., object]]] = None,
                 max_steps: int = 100000) -> ExecutionResult:
    return Interpreter(function, externals, max_steps=max_steps).run(*args)
