"""
Small-step interpreter for the SSA IR.

The machine state is immutable: `step` maps one `State` to one `Outcome`
and never mutates its input, so runs can be replayed from any state. Memory
is a flat tuple of cells addressed by allocation order; a cell belongs to the
stack depth that allocated it and dies when that frame returns.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, replace
from enum import Enum
from typing import Callable, Dict, Mapping, Optional, Sequence, Tuple, Union

from . import ir
from .ir_printer import format_value

logger = logging.getLogger(__name__)


class EntryPointError(Exception):
    pass


class RuntimeFault(Exception):
    pass


@dataclass(frozen=True)
class Pc:
    fn: ir.RawId
    block: ir.RawId
    iid: ir.InstrId


@dataclass(frozen=True)
class Cell:
    value: ir.Value
    depth: int
    live: bool = True


@dataclass(frozen=True)
class Frame:
    env: Mapping[ir.RawId, ir.Value]
    ret_pc: Pc
    dest: Optional[ir.IId] = None


@dataclass(frozen=True)
class State:
    pc: Pc
    env: Mapping[ir.RawId, ir.Value]
    stack: Tuple[Frame, ...] = ()
    memory: Tuple[Cell, ...] = ()

    def snapshot(self) -> Tuple[ir.Value, ...]:
        return tuple(cell.value for cell in self.memory)


class Event(Enum):
    STEP = "step"
    CALL = "call"
    RETURN = "return"


class Outcome:
    pass


@dataclass(frozen=True)
class Stepped(Outcome):
    state: State
    event: Event = Event.STEP


@dataclass(frozen=True)
class ExternalCall(Outcome):
    state: State
    name: ir.RawId
    args: Tuple[ir.Value, ...]


@dataclass(frozen=True)
class Terminated(Outcome):
    memory: Tuple[ir.Value, ...]
    value: Optional[ir.Value] = None


@dataclass(frozen=True)
class Faulted(Outcome):
    message: str


class RunResult:
    pass


@dataclass(frozen=True)
class Finished(RunResult):
    memory: Tuple[ir.Value, ...]
    value: Optional[ir.Value]
    steps: int


@dataclass(frozen=True)
class Failed(RunResult):
    message: str
    steps: int


@dataclass(frozen=True)
class OutOfFuel(RunResult):
    steps: int


class Cfg:
    """Lookup tables over an assembled program."""

    def __init__(self, program: ir.Program) -> None:
        self.program = program
        self.definitions: Dict[ir.RawId, ir.Definition] = program.definitions()
        self.declarations: Dict[ir.RawId, ir.Declaration] = program.declarations()
        self._blocks: Dict[Tuple[ir.RawId, ir.RawId], ir.Block] = {}
        self._positions: Dict[Tuple[ir.RawId, ir.RawId], Dict[ir.InstrId, int]] = {}
        for name, defn in self.definitions.items():
            for block in defn.blocks:
                key = (name, block.label)
                self._blocks[key] = block
                self._positions[key] = {iid: idx for idx, (iid, _) in enumerate(block.code)}

    @classmethod
    def from_program(cls, program: ir.Program) -> Cfg:
        return cls(program)

    def block(self, fn: ir.RawId, label: ir.RawId) -> ir.Block:
        block = self._blocks.get((fn, label))
        if block is None:
            raise RuntimeFault(f"unknown block {label} in @{fn}")
        return block

    def block_entry(self, fn: ir.RawId, label: ir.RawId) -> Pc:
        return Pc(fn=fn, block=label, iid=self.block(fn, label).first_id())

    def fetch(self, pc: Pc) -> Union[ir.Instruction, ir.Terminator]:
        block = self.block(pc.fn, pc.block)
        if pc.iid == block.term_id:
            return block.terminator
        idx = self._positions[(pc.fn, pc.block)].get(pc.iid)
        if idx is None:
            raise RuntimeFault(f"invalid program counter {pc.iid} in block {pc.block}")
        return block.code[idx][1]

    def next_pc(self, pc: Pc) -> Pc:
        block = self.block(pc.fn, pc.block)
        idx = self._positions[(pc.fn, pc.block)][pc.iid]
        if idx + 1 < len(block.code):
            return replace(pc, iid=block.code[idx + 1][0])
        return replace(pc, iid=block.term_id)


def _as_cfg(target: Union[ir.Program, Cfg]) -> Cfg:
    if isinstance(target, Cfg):
        return target
    return Cfg.from_program(target)


def init(target: Union[ir.Program, Cfg], entry: ir.RawId, args: Sequence[ir.Value] = ()) -> State:
    cfg = _as_cfg(target)
    defn = cfg.definitions.get(entry)
    if defn is None:
        raise EntryPointError(f"entry point @{entry} not found")
    if len(defn.params) != len(args):
        raise EntryPointError(f"entry point @{entry} expects {len(defn.params)} args, got {len(args)}")
    if not defn.blocks:
        raise EntryPointError(f"entry point @{entry} has no blocks")
    env = dict(zip(defn.params, args))
    return State(pc=cfg.block_entry(entry, defn.entry.label), env=env)


# --- operand evaluation --------------------------------------------------


def _eval_atom(cfg: Cfg, state: State, value: ir.Value) -> ir.Value:
    if isinstance(value, ir.IdentRef):
        ident = value.ident
        if isinstance(ident, ir.LocalId):
            if ident.key not in state.env:
                raise RuntimeFault(f"undefined identifier %{ident.key}")
            return state.env[ident.key]
        if ident.key in cfg.definitions or ident.key in cfg.declarations:
            return ir.FunctionPointer(ident.key)
        raise RuntimeFault(f"undefined global @{ident.key}")
    if isinstance(value, (ir.BinOpExpr, ir.ICmpExpr, ir.GepExpr)):
        raise RuntimeFault(f"nested operator expression {format_value(value)}")
    # runtime-only values are only ever bound in the environment
    if isinstance(value, (ir.Addr, ir.FunctionPointer)):
        raise RuntimeFault(f"forged pointer {format_value(value)} in operand")
    return value


def _eval_operand(cfg: Cfg, state: State, value: ir.Value) -> ir.Value:
    if isinstance(value, ir.BinOpExpr):
        return _binop(value.op, value.typ, _eval_atom(cfg, state, value.left), _eval_atom(cfg, state, value.right))
    if isinstance(value, ir.ICmpExpr):
        return _icmp(value.cond, _eval_atom(cfg, state, value.left), _eval_atom(cfg, state, value.right))
    if isinstance(value, ir.GepExpr):
        base = _eval_atom(cfg, state, value.base)
        if not isinstance(base, ir.Addr):
            raise RuntimeFault(f"getelementptr on non-pointer {format_value(base)}")
        for idx in value.indices:
            offset = _eval_atom(cfg, state, idx)
            # every allocation is a single cell
            if offset != ir.Int(0):
                raise RuntimeFault(f"getelementptr index {format_value(offset)} out of bounds")
        return base
    return _eval_atom(cfg, state, value)


def _wrap(value: int, bits: int) -> int:
    value &= (1 << bits) - 1
    if value >> (bits - 1):
        value -= 1 << bits
    return value


def _bits(typ: ir.Type) -> int:
    if isinstance(typ, ir.IntType) and typ.bits > 1:
        return typ.bits
    return 64


def _mismatch(what: str, left: ir.Value, right: ir.Value) -> RuntimeFault:
    return RuntimeFault(f"type mismatch in {what}: {format_value(left)}, {format_value(right)}")


def _binop(op: str, typ: ir.Type, left: ir.Value, right: ir.Value) -> ir.Value:
    if op not in ir.BINARY_OPS:
        raise RuntimeFault(f"unknown binary operator {op}")
    if isinstance(left, ir.Bool) and isinstance(right, ir.Bool):
        if op == "and":
            return ir.Bool(left.value and right.value)
        if op == "or":
            return ir.Bool(left.value or right.value)
        if op == "xor":
            return ir.Bool(left.value != right.value)
        raise _mismatch(op, left, right)
    if not (isinstance(left, ir.Int) and isinstance(right, ir.Int)):
        raise _mismatch(op, left, right)
    a, b = left.value, right.value
    bits = _bits(typ)
    if op == "add":
        result = a + b
    elif op == "sub":
        result = a - b
    elif op == "mul":
        result = a * b
    elif op in ("sdiv", "srem"):
        if b == 0:
            raise RuntimeFault(f"division by zero in {op}")
        quot = abs(a) // abs(b)
        if (a < 0) != (b < 0):
            quot = -quot
        result = quot if op == "sdiv" else a - b * quot
    elif op == "and":
        result = a & b
    elif op == "or":
        result = a | b
    else:
        result = a ^ b
    return ir.Int(_wrap(result, bits))


def _icmp(cond: str, left: ir.Value, right: ir.Value) -> ir.Value:
    if cond not in ir.ICMP_CONDS:
        raise RuntimeFault(f"unknown comparison {cond}")
    if isinstance(left, ir.Bool) and isinstance(right, ir.Bool) and cond in ("eq", "ne"):
        return ir.Bool((left.value == right.value) == (cond == "eq"))
    if not (isinstance(left, ir.Int) and isinstance(right, ir.Int)):
        raise _mismatch(f"icmp {cond}", left, right)
    a, b = left.value, right.value
    if cond == "eq":
        return ir.Bool(a == b)
    if cond == "ne":
        return ir.Bool(a != b)
    if cond == "slt":
        return ir.Bool(a < b)
    if cond == "sle":
        return ir.Bool(a <= b)
    if cond == "sgt":
        return ir.Bool(a > b)
    return ir.Bool(a >= b)


def _deref(state: State, ptr: ir.Value) -> int:
    if not isinstance(ptr, ir.Addr):
        raise RuntimeFault(f"dereference of non-pointer {format_value(ptr)}")
    if not 0 <= ptr.address < len(state.memory):
        raise RuntimeFault(f"dereference of foreign pointer {format_value(ptr)}")
    if not state.memory[ptr.address].live:
        raise RuntimeFault(f"dereference of stale pointer {format_value(ptr)}")
    return ptr.address


# --- transitions ---------------------------------------------------------


def _bind(state: State, iid: ir.InstrId, value: ir.Value, pc: Pc, memory: Tuple[Cell, ...] | None = None) -> State:
    env = state.env
    if isinstance(iid, ir.IId):
        env = {**env, iid.raw: value}
    return replace(state, pc=pc, env=env, memory=state.memory if memory is None else memory)


def _exec_instr(cfg: Cfg, state: State, instr: ir.Instruction) -> Outcome:
    iid = state.pc.iid
    nxt = cfg.next_pc(state.pc)
    if isinstance(instr, ir.BinOp):
        left = _eval_operand(cfg, state, instr.left)
        right = _eval_operand(cfg, state, instr.right)
        return Stepped(_bind(state, iid, _binop(instr.op, instr.typ, left, right), nxt))
    if isinstance(instr, ir.ICmp):
        left = _eval_operand(cfg, state, instr.left)
        right = _eval_operand(cfg, state, instr.right)
        return Stepped(_bind(state, iid, _icmp(instr.cond, left, right), nxt))
    if isinstance(instr, ir.Alloca):
        addr = ir.Addr(len(state.memory))
        memory = state.memory + (Cell(value=ir.Undef(), depth=len(state.stack)),)
        return Stepped(_bind(state, iid, addr, nxt, memory))
    if isinstance(instr, ir.Load):
        address = _deref(state, _eval_operand(cfg, state, instr.ptr))
        return Stepped(_bind(state, iid, state.memory[address].value, nxt))
    if isinstance(instr, ir.Store):
        value = _eval_operand(cfg, state, instr.value)
        address = _deref(state, _eval_operand(cfg, state, instr.ptr))
        cells = list(state.memory)
        cells[address] = replace(cells[address], value=value)
        return Stepped(replace(state, pc=nxt, memory=tuple(cells)))
    if isinstance(instr, ir.Call):
        return _exec_call(cfg, state, instr, nxt)
    raise RuntimeFault(f"unsupported instruction {instr!r}")


def _exec_call(cfg: Cfg, state: State, instr: ir.Call, nxt: Pc) -> Outcome:
    if isinstance(instr.fn, ir.IdentRef) and isinstance(instr.fn.ident, ir.GlobalId):
        callee: ir.Value = ir.FunctionPointer(instr.fn.ident.key)
    else:
        callee = _eval_operand(cfg, state, instr.fn)
    if not isinstance(callee, ir.FunctionPointer):
        raise RuntimeFault(f"call of non-function {format_value(callee)}")
    args = tuple(_eval_operand(cfg, state, value) for _, value in instr.args)
    iid = state.pc.iid
    defn = cfg.definitions.get(callee.name)
    if defn is not None:
        if len(defn.params) != len(args):
            raise RuntimeFault(f"@{callee.name} expects {len(defn.params)} args, got {len(args)}")
        frame = Frame(env=state.env, ret_pc=nxt, dest=iid if isinstance(iid, ir.IId) else None)
        return Stepped(
            State(
                pc=cfg.block_entry(defn.name, defn.entry.label),
                env=dict(zip(defn.params, args)),
                stack=state.stack + (frame,),
                memory=state.memory,
            ),
            Event.CALL,
        )
    if callee.name in cfg.declarations:
        return ExternalCall(state=_bind(state, iid, ir.Undef(), nxt), name=callee.name, args=args)
    raise RuntimeFault(f"call to unknown function @{callee.name}")


def _exec_term(cfg: Cfg, state: State, term: ir.Terminator) -> Outcome:
    fn = state.pc.fn
    if isinstance(term, ir.Br):
        return Stepped(replace(state, pc=cfg.block_entry(fn, term.target)))
    if isinstance(term, ir.CondBr):
        cond = _eval_operand(cfg, state, term.cond)
        if not isinstance(cond, ir.Bool):
            raise RuntimeFault(f"branch on non-boolean {format_value(cond)}")
        target = term.then if cond.value else term.els
        return Stepped(replace(state, pc=cfg.block_entry(fn, target)))
    if isinstance(term, ir.RetVoid):
        return _return(state, None)
    if isinstance(term, ir.Ret):
        return _return(state, _eval_operand(cfg, state, term.value))
    raise RuntimeFault(f"unsupported terminator {term!r}")


def _return(state: State, value: Optional[ir.Value]) -> Outcome:
    if not state.stack:
        return Terminated(memory=state.snapshot(), value=value)
    depth = len(state.stack)
    frame = state.stack[-1]
    memory = tuple(
        replace(cell, live=False) if cell.live and cell.depth == depth else cell for cell in state.memory
    )
    env = frame.env
    if frame.dest is not None:
        if value is None:
            raise RuntimeFault(f"void return bound to %{frame.dest.raw}")
        env = {**env, frame.dest.raw: value}
    return Stepped(State(pc=frame.ret_pc, env=env, stack=state.stack[:-1], memory=memory), Event.RETURN)


def step(cfg: Cfg, state: State) -> Outcome:
    try:
        item = cfg.fetch(state.pc)
        if isinstance(item, ir.Terminator):
            return _exec_term(cfg, state, item)
        return _exec_instr(cfg, state, item)
    except RuntimeFault as fault:
        logger.debug("fault at %s/%s: %s", state.pc.fn, state.pc.block, fault)
        return Faulted(str(fault))


ExternalHandler = Callable[[ir.RawId, Tuple[ir.Value, ...]], None]


def run_with_fuel(
    target: Union[ir.Program, Cfg],
    entry: ir.RawId,
    fuel: int,
    on_external: Optional[ExternalHandler] = None,
) -> RunResult:
    """Drive `step` until the program returns, faults or `fuel` steps are spent."""
    if fuel <= 0:
        return OutOfFuel(steps=0)
    cfg = _as_cfg(target)
    state = init(cfg, entry)
    steps = 0
    while steps < fuel:
        outcome = step(cfg, state)
        steps += 1
        if isinstance(outcome, Stepped):
            state = outcome.state
        elif isinstance(outcome, ExternalCall):
            if on_external is not None:
                on_external(outcome.name, outcome.args)
            state = outcome.state
        elif isinstance(outcome, Terminated):
            logger.debug("@%s terminated after %d steps", entry, steps)
            return Finished(memory=outcome.memory, value=outcome.value, steps=steps)
        else:
            assert isinstance(outcome, Faulted)
            return Failed(message=outcome.message, steps=steps)
    logger.debug("@%s out of fuel after %d steps", entry, steps)
    return OutOfFuel(steps=steps)
