from __future__ import annotations

import logging
from typing import Dict, Iterable, List, Optional

from . import imp, ir
from .cfg import AssemblyError, assemble

logger = logging.getLogger(__name__)

DEFAULT_ENTRY = "imp_command"
PRINT_FN = "print"
ENTRY_LABEL = 0


class CompileError(Exception):
    pass


Context = Dict[str, ir.Value]


class CodeGen:
    """
    Generation state for a single compilation.

    Local ids (results and labels) and void ids come from two counters that
    start at 1; id 0 is the entry label. Elements are recorded in program
    order and handed off once by `finish`.
    """

    def __init__(self) -> None:
        self.next_local = 1
        self.next_void = 1
        self._elems: List[ir.Elem] = []
        self._finished = False

    def fresh_local(self) -> int:
        raw = self.next_local
        self.next_local += 1
        return raw

    def fresh_void(self) -> ir.IVoid:
        iid = ir.IVoid(self.next_void)
        self.next_void += 1
        return iid

    def fresh_label(self) -> int:
        return self.fresh_local()

    def emit(self, instr: ir.Instruction) -> ir.Value:
        raw = self.fresh_local()
        self._push(ir.InstrElem(ir.IId(raw), instr))
        return ir.IdentRef(ir.LocalId(raw))

    def emit_void(self, instr: ir.Instruction) -> None:
        self._push(ir.InstrElem(self.fresh_void(), instr))

    def term(self, term: ir.Terminator) -> None:
        self._push(ir.TermElem(self.fresh_void(), term))

    def label(self, label: ir.RawId) -> None:
        self._push(ir.LabelElem(label))

    def finish(self) -> List[ir.Elem]:
        if self._finished:
            raise CompileError("code generation state already finished")
        self._finished = True
        elems, self._elems = self._elems, []
        return elems

    def _push(self, elem: ir.Elem) -> None:
        if self._finished:
            raise CompileError("emit after code generation finished")
        self._elems.append(elem)


def _lookup(ctx: Context, name: str) -> ir.Value:
    ptr = ctx.get(name)
    if ptr is None:
        raise CompileError(f"identifier not found: {name}")
    return ptr


def compile_aexp(gen: CodeGen, ctx: Context, a: imp.AExp) -> ir.Value:
    if isinstance(a, imp.ANum):
        return ir.Int(imp.wrap_i64(a.value))
    if isinstance(a, imp.AId):
        return gen.emit(ir.Load(ir.I64, _lookup(ctx, a.name)))
    if isinstance(a, (imp.APlus, imp.AMinus, imp.AMult)):
        op = {imp.APlus: "add", imp.AMinus: "sub", imp.AMult: "mul"}[type(a)]
        left = compile_aexp(gen, ctx, a.left)
        right = compile_aexp(gen, ctx, a.right)
        return gen.emit(ir.BinOp(op, ir.I64, left, right))
    raise CompileError(f"unsupported arithmetic expression {a!r}")


def compile_bexp(gen: CodeGen, ctx: Context, b: imp.BExp) -> ir.Value:
    if isinstance(b, imp.BTrue):
        return ir.Bool(True)
    if isinstance(b, imp.BFalse):
        return ir.Bool(False)
    if isinstance(b, (imp.BEq, imp.BLe)):
        cond = "eq" if isinstance(b, imp.BEq) else "sle"
        left = compile_aexp(gen, ctx, b.left)
        right = compile_aexp(gen, ctx, b.right)
        return gen.emit(ir.ICmp(cond, ir.I64, left, right))
    if isinstance(b, imp.BNot):
        operand = compile_bexp(gen, ctx, b.operand)
        return gen.emit(ir.BinOp("xor", ir.I1, operand, ir.Bool(True)))
    if isinstance(b, imp.BAnd):
        left = compile_bexp(gen, ctx, b.left)
        right = compile_bexp(gen, ctx, b.right)
        return gen.emit(ir.BinOp("and", ir.I1, left, right))
    raise CompileError(f"unsupported boolean expression {b!r}")


def compile_com(gen: CodeGen, ctx: Context, c: imp.Com) -> None:
    if isinstance(c, imp.CSkip):
        return
    if isinstance(c, imp.CAss):
        value = compile_aexp(gen, ctx, c.value)
        gen.emit_void(ir.Store(ir.I64, value, _lookup(ctx, c.name)))
        return
    if isinstance(c, imp.CSeq):
        compile_com(gen, ctx, c.first)
        compile_com(gen, ctx, c.second)
        return
    if isinstance(c, imp.CIf):
        then_label = gen.fresh_label()
        else_label = gen.fresh_label()
        merge_label = gen.fresh_label()
        cond = compile_bexp(gen, ctx, c.cond)
        gen.term(ir.CondBr(cond, then_label, else_label))
        gen.label(then_label)
        compile_com(gen, ctx, c.then)
        gen.term(ir.Br(merge_label))
        gen.label(else_label)
        compile_com(gen, ctx, c.els)
        gen.term(ir.Br(merge_label))
        gen.label(merge_label)
        return
    if isinstance(c, imp.CWhile):
        entry_label = gen.fresh_label()
        body_label = gen.fresh_label()
        exit_label = gen.fresh_label()
        gen.term(ir.Br(entry_label))
        gen.label(entry_label)
        cond = compile_bexp(gen, ctx, c.cond)
        gen.term(ir.CondBr(cond, body_label, exit_label))
        gen.label(body_label)
        compile_com(gen, ctx, c.body)
        gen.term(ir.Br(entry_label))
        gen.label(exit_label)
        return
    raise CompileError(f"unsupported command {c!r}")


def declare_vars(gen: CodeGen, names: List[str]) -> Context:
    """
    Give every variable one zero-initialised cell.

    The context is built from the back of `names`, so the last name gets the
    first allocation and therefore the lowest address.
    """
    ctx: Context = {}
    for name in reversed(names):
        ptr = gen.emit(ir.Alloca(ir.I64))
        gen.emit_void(ir.Store(ir.I64, ir.Int(0), ptr))
        ctx[name] = ptr
    return ctx


def _print_vars(gen: CodeGen, ctx: Context, names: List[str]) -> None:
    callee = ir.IdentRef(ir.GlobalId(PRINT_FN))
    for name in names:
        value = gen.emit(ir.Load(ir.I64, ctx[name]))
        gen.emit_void(ir.Call(ir.VOID, callee, ((ir.I64, value),)))


def compile_program(
    com: imp.Com,
    entry: str = DEFAULT_ENTRY,
    print_vars: bool = False,
    declared: Optional[Iterable[str]] = None,
) -> ir.Program:
    """
    Compile `com` into a program with a single `void @entry()` definition.

    Storage is allocated for the free variables of `com`, or only for
    `declared` when given; reading or assigning anything else is a
    `CompileError`. With `print_vars` each variable is passed to the
    external `@print` before returning.
    """
    names = sorted(set(declared)) if declared is not None else imp.sorted_free_vars(com)
    gen = CodeGen()
    ctx = declare_vars(gen, names)
    compile_com(gen, ctx, com)
    if print_vars:
        _print_vars(gen, ctx, names)
    gen.term(ir.RetVoid())
    try:
        blocks = assemble(ENTRY_LABEL, gen.finish())
    except AssemblyError as exc:
        raise CompileError(str(exc)) from exc
    entities: List[ir.TopLevel] = []
    if print_vars:
        entities.append(ir.Declaration(PRINT_FN, ir.PRINT_FN_TYPE))
    entities.append(ir.Definition(name=entry, typ=ir.FunctionType(ir.VOID), params=(), blocks=tuple(blocks)))
    logger.debug("compiled @%s: %d vars, %d blocks", entry, len(names), len(blocks))
    return ir.Program(entities=tuple(entities))
