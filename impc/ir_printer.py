from __future__ import annotations

from typing import Iterable, Sequence

from . import ir


def format_raw(raw: ir.RawId) -> str:
    return str(raw)


def format_ident(ident: ir.Ident) -> str:
    if isinstance(ident, ir.GlobalId):
        return f"@{format_raw(ident.key)}"
    return f"%{format_raw(ident.key)}"


def format_type(typ: ir.Type) -> str:
    if isinstance(typ, ir.IntType):
        return f"i{typ.bits}"
    if isinstance(typ, ir.PointerType):
        return f"{format_type(typ.pointee)}*"
    if isinstance(typ, ir.VoidType):
        return "void"
    if isinstance(typ, ir.FunctionType):
        args = ", ".join(format_type(a) for a in typ.args)
        return f"{format_type(typ.ret)} ({args})"
    return "<invalid type>"


def format_value(value: ir.Value) -> str:
    if isinstance(value, ir.Int):
        return str(value.value)
    if isinstance(value, ir.Bool):
        return "true" if value.value else "false"
    if isinstance(value, ir.Null):
        return "null"
    if isinstance(value, ir.ZeroInit):
        return "zeroinitializer"
    if isinstance(value, ir.IdentRef):
        return format_ident(value.ident)
    if isinstance(value, ir.Str):
        return f'c"{value.value}"'
    if isinstance(value, ir.Undef):
        return "undef"
    if isinstance(value, ir.BinOpExpr):
        return f"{value.op} ({_typed(value.typ, value.left)}, {_typed(value.typ, value.right)})"
    if isinstance(value, ir.ICmpExpr):
        return f"icmp {value.cond} ({_typed(value.typ, value.left)}, {_typed(value.typ, value.right)})"
    if isinstance(value, ir.GepExpr):
        parts = [format_type(value.typ), format_value(value.base)]
        parts.extend(format_value(idx) for idx in value.indices)
        return f"getelementptr ({', '.join(parts)})"
    if isinstance(value, ir.Addr):
        return f"addr({value.address})"
    if isinstance(value, ir.FunctionPointer):
        return f"@{format_raw(value.name)}"
    return "<invalid value>"


def _typed(typ: ir.Type, value: ir.Value) -> str:
    return f"{format_type(typ)} {format_value(value)}"


def _label(raw: ir.RawId) -> str:
    return f"label %{format_raw(raw)}"


def format_instr(iid: ir.InstrId, instr: ir.Instruction) -> str:
    prefix = f"%{format_raw(iid.raw)} = " if isinstance(iid, ir.IId) else ""
    if isinstance(instr, ir.BinOp):
        body = f"{instr.op} {_typed(instr.typ, instr.left)}, {format_value(instr.right)}"
    elif isinstance(instr, ir.ICmp):
        body = f"icmp {instr.cond} {_typed(instr.typ, instr.left)}, {format_value(instr.right)}"
    elif isinstance(instr, ir.Alloca):
        body = f"alloca {format_type(instr.typ)}"
    elif isinstance(instr, ir.Load):
        ptr_typ = ir.PointerType(instr.typ)
        body = f"load {format_type(instr.typ)}, {_typed(ptr_typ, instr.ptr)}"
    elif isinstance(instr, ir.Store):
        ptr_typ = ir.PointerType(instr.typ)
        body = f"store {_typed(instr.typ, instr.value)}, {_typed(ptr_typ, instr.ptr)}"
    elif isinstance(instr, ir.Call):
        args = ", ".join(_typed(t, v) for t, v in instr.args)
        body = f"call {format_type(instr.ret_typ)} {format_value(instr.fn)}({args})"
    else:
        body = "<invalid instr>"
    return f"  {prefix}{body}"


def format_term(term: ir.Terminator) -> str:
    if isinstance(term, ir.Br):
        return f"  br {_label(term.target)}"
    if isinstance(term, ir.CondBr):
        return f"  br {_typed(ir.I1, term.cond)}, {_label(term.then)}, {_label(term.els)}"
    if isinstance(term, ir.RetVoid):
        return "  ret void"
    if isinstance(term, ir.Ret):
        return f"  ret {_typed(term.typ, term.value)}"
    return "  <invalid terminator>"


def format_block(block: ir.Block) -> str:
    lines = [f"{format_raw(block.label)}:"]
    for iid, instr in block.code:
        lines.append(format_instr(iid, instr))
    lines.append(format_term(block.terminator))
    return "\n".join(lines)


def format_blocks(blocks: Iterable[ir.Block]) -> str:
    return "\n".join(format_block(b) for b in blocks)


def format_definition(defn: ir.Definition) -> str:
    params = ", ".join(
        f"{format_type(t)} %{format_raw(p)}" for t, p in zip(defn.typ.args, defn.params)
    )
    header = f"define {format_type(defn.typ.ret)} @{format_raw(defn.name)}({params}) {{"
    return "\n".join([header, format_blocks(defn.blocks), "}"])


def format_declaration(decl: ir.Declaration) -> str:
    args = ", ".join(format_type(a) for a in decl.typ.args)
    return f"declare {format_type(decl.typ.ret)} @{format_raw(decl.name)}({args})"


def format_program(prog: ir.Program) -> str:
    parts = []
    for entity in prog.entities:
        if isinstance(entity, ir.Declaration):
            parts.append(format_declaration(entity))
        else:
            parts.append(format_definition(entity))
    return "\n\n".join(parts)


def format_memory(memory: Sequence[ir.Value]) -> str:
    cells = ", ".join(f"{addr}: {format_value(v)}" for addr, v in enumerate(memory))
    return f"[{cells}]"
