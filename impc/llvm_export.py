from __future__ import annotations

from typing import Dict

from llvmlite import ir as llvm_ir  # type: ignore

from . import ir


class ExportError(Exception):
    pass


_CMP_OPS = {"eq": "==", "ne": "!=", "slt": "<", "sle": "<=", "sgt": ">", "sge": ">="}


def _llvm_type(typ: ir.Type) -> llvm_ir.Type:
    if isinstance(typ, ir.IntType):
        return llvm_ir.IntType(typ.bits)
    if isinstance(typ, ir.PointerType):
        return _llvm_type(typ.pointee).as_pointer()
    if isinstance(typ, ir.VoidType):
        return llvm_ir.VoidType()
    if isinstance(typ, ir.FunctionType):
        return llvm_ir.FunctionType(_llvm_type(typ.ret), [_llvm_type(a) for a in typ.args])
    raise ExportError(f"no LLVM type for {typ!r}")


def _block_name(label: ir.RawId) -> str:
    return f"b{label}"


def _value_name(raw: ir.RawId) -> str:
    return f"v{raw}"


class _FunctionLowering:
    """Lowers one definition; SSA values are resolved in block order."""

    def __init__(self, module: llvm_ir.Module, functions: Dict[ir.RawId, llvm_ir.Function], defn: ir.Definition) -> None:
        self.module = module
        self.functions = functions
        self.defn = defn
        self.fn = functions[defn.name]
        self.env: Dict[ir.RawId, llvm_ir.Value] = dict(zip(defn.params, self.fn.args))
        self.blocks = {b.label: self.fn.append_basic_block(name=_block_name(b.label)) for b in defn.blocks}

    def lower(self) -> None:
        for block in self.defn.blocks:
            builder = llvm_ir.IRBuilder(self.blocks[block.label])
            for iid, instr in block.code:
                result = self._instr(builder, iid, instr)
                if isinstance(iid, ir.IId) and result is not None:
                    self.env[iid.raw] = result
            self._term(builder, block.terminator)

    def _target(self, label: ir.RawId) -> llvm_ir.Block:
        block = self.blocks.get(label)
        if block is None:
            raise ExportError(f"@{self.defn.name}: branch to unknown label {label}")
        return block

    def _operand(self, builder: llvm_ir.IRBuilder, value: ir.Value, typ: ir.Type) -> llvm_ir.Value:
        if isinstance(value, ir.Int):
            return llvm_ir.Constant(_llvm_type(typ), value.value)
        if isinstance(value, ir.Bool):
            return llvm_ir.Constant(llvm_ir.IntType(1), int(value.value))
        if isinstance(value, (ir.Null, ir.ZeroInit)):
            return llvm_ir.Constant(_llvm_type(typ), None)
        if isinstance(value, ir.Undef):
            return llvm_ir.Constant(_llvm_type(typ), llvm_ir.Undefined)
        if isinstance(value, ir.IdentRef):
            key = value.ident.key
            if isinstance(value.ident, ir.GlobalId):
                fn = self.functions.get(key)
                if fn is None:
                    raise ExportError(f"@{self.defn.name}: undefined global @{key}")
                return fn
            if key not in self.env:
                raise ExportError(f"@{self.defn.name}: %{key} used before definition")
            return self.env[key]
        if isinstance(value, ir.BinOpExpr):
            left = self._operand(builder, value.left, value.typ)
            right = self._operand(builder, value.right, value.typ)
            return self._binop(builder, value.op, left, right, "")
        if isinstance(value, ir.ICmpExpr):
            left = self._operand(builder, value.left, value.typ)
            right = self._operand(builder, value.right, value.typ)
            return builder.icmp_signed(_CMP_OPS[value.cond], left, right)
        if isinstance(value, ir.GepExpr):
            base = self._operand(builder, value.base, ir.PointerType(value.typ))
            indices = [self._operand(builder, idx, ir.I64) for idx in value.indices]
            return builder.gep(base, indices)
        raise ExportError(f"@{self.defn.name}: cannot export value {value!r}")

    def _binop(self, builder: llvm_ir.IRBuilder, op: str, left, right, name: str) -> llvm_ir.Value:
        if op not in ir.BINARY_OPS:
            raise ExportError(f"@{self.defn.name}: unknown binary operator {op}")
        # IRBuilder spells the bitwise ops with a trailing underscore
        method = getattr(builder, op + "_" if op in ("and", "or") else op)
        return method(left, right, name=name)

    def _instr(self, builder: llvm_ir.IRBuilder, iid: ir.InstrId, instr: ir.Instruction):
        name = _value_name(iid.raw) if isinstance(iid, ir.IId) else ""
        if isinstance(instr, ir.BinOp):
            left = self._operand(builder, instr.left, instr.typ)
            right = self._operand(builder, instr.right, instr.typ)
            return self._binop(builder, instr.op, left, right, name)
        if isinstance(instr, ir.ICmp):
            left = self._operand(builder, instr.left, instr.typ)
            right = self._operand(builder, instr.right, instr.typ)
            return builder.icmp_signed(_CMP_OPS[instr.cond], left, right, name=name)
        if isinstance(instr, ir.Alloca):
            return builder.alloca(_llvm_type(instr.typ), name=name)
        if isinstance(instr, ir.Load):
            ptr = self._operand(builder, instr.ptr, ir.PointerType(instr.typ))
            return builder.load(ptr, name=name)
        if isinstance(instr, ir.Store):
            value = self._operand(builder, instr.value, instr.typ)
            ptr = self._operand(builder, instr.ptr, ir.PointerType(instr.typ))
            builder.store(value, ptr)
            return None
        if isinstance(instr, ir.Call):
            callee = self._operand(builder, instr.fn, ir.PointerType(ir.FunctionType(instr.ret_typ)))
            args = [self._operand(builder, value, typ) for typ, value in instr.args]
            if isinstance(instr.ret_typ, ir.VoidType):
                builder.call(callee, args)
                return None
            return builder.call(callee, args, name=name)
        raise ExportError(f"@{self.defn.name}: cannot export instruction {instr!r}")

    def _term(self, builder: llvm_ir.IRBuilder, term: ir.Terminator) -> None:
        if isinstance(term, ir.Br):
            builder.branch(self._target(term.target))
        elif isinstance(term, ir.CondBr):
            cond = self._operand(builder, term.cond, ir.I1)
            builder.cbranch(cond, self._target(term.then), self._target(term.els))
        elif isinstance(term, ir.RetVoid):
            builder.ret_void()
        elif isinstance(term, ir.Ret):
            builder.ret(self._operand(builder, term.value, term.typ))
        else:
            raise ExportError(f"@{self.defn.name}: cannot export terminator {term!r}")


def to_llvm_module(program: ir.Program, name: str = "imp_module") -> llvm_ir.Module:
    """
    Build an llvmlite module mirroring `program`.

    Declarations and definitions keep their names; blocks become `b<label>`
    and local results `v<id>`. Runtime-only values cannot be exported.
    """
    module = llvm_ir.Module(name=name)
    functions: Dict[ir.RawId, llvm_ir.Function] = {}
    for entity in program.entities:
        fn = llvm_ir.Function(module, _llvm_type(entity.typ), name=str(entity.name))
        if isinstance(entity, ir.Definition):
            for arg, param in zip(fn.args, entity.params):
                arg.name = _value_name(param)
        functions[entity.name] = fn
    for defn in program.definitions().values():
        _FunctionLowering(module, functions, defn).lower()
    return module


def to_llvm_assembly(program: ir.Program, name: str = "imp_module") -> str:
    return str(to_llvm_module(program, name))
