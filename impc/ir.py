from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, Tuple, Union


RawId = Union[str, int]


@dataclass(frozen=True)
class LocalId:
    key: RawId


@dataclass(frozen=True)
class GlobalId:
    key: RawId


Ident = Union[LocalId, GlobalId]


class Type:
    pass


@dataclass(frozen=True)
class IntType(Type):
    bits: int


@dataclass(frozen=True)
class PointerType(Type):
    pointee: Type


@dataclass(frozen=True)
class VoidType(Type):
    pass


@dataclass(frozen=True)
class FunctionType(Type):
    ret: Type
    args: Tuple[Type, ...] = ()


I1 = IntType(1)
I64 = IntType(64)
VOID = VoidType()
PRINT_FN_TYPE = FunctionType(ret=VOID, args=(I64,))


class Value:
    pass


@dataclass(frozen=True)
class Int(Value):
    value: int


@dataclass(frozen=True)
class Bool(Value):
    value: bool


@dataclass(frozen=True)
class Null(Value):
    pass


@dataclass(frozen=True)
class ZeroInit(Value):
    pass


@dataclass(frozen=True)
class IdentRef(Value):
    ident: Ident


@dataclass(frozen=True)
class Str(Value):
    value: str


@dataclass(frozen=True)
class Undef(Value):
    pass


# Operator expressions are only meaningful as unevaluated operands.
@dataclass(frozen=True)
class BinOpExpr(Value):
    op: str
    typ: Type
    left: Value
    right: Value


@dataclass(frozen=True)
class ICmpExpr(Value):
    cond: str
    typ: Type
    left: Value
    right: Value


@dataclass(frozen=True)
class GepExpr(Value):
    typ: Type
    base: Value
    indices: Tuple[Value, ...] = ()


# Runtime-only values; the compiler never emits these.
@dataclass(frozen=True)
class Addr(Value):
    address: int


@dataclass(frozen=True)
class FunctionPointer(Value):
    name: RawId


BINARY_OPS = frozenset({"add", "sub", "mul", "sdiv", "srem", "and", "or", "xor"})
ICMP_CONDS = frozenset({"eq", "ne", "slt", "sle", "sgt", "sge"})


@dataclass(frozen=True)
class IId:
    raw: RawId


@dataclass(frozen=True)
class IVoid:
    n: int


InstrId = Union[IId, IVoid]


class Instruction:
    pass


@dataclass(frozen=True)
class BinOp(Instruction):
    op: str
    typ: Type
    left: Value
    right: Value


@dataclass(frozen=True)
class ICmp(Instruction):
    cond: str
    typ: Type
    left: Value
    right: Value


@dataclass(frozen=True)
class Alloca(Instruction):
    typ: Type


@dataclass(frozen=True)
class Load(Instruction):
    typ: Type
    ptr: Value


@dataclass(frozen=True)
class Store(Instruction):
    typ: Type
    value: Value
    ptr: Value


@dataclass(frozen=True)
class Call(Instruction):
    ret_typ: Type
    fn: Value
    args: Tuple[Tuple[Type, Value], ...] = ()


class Terminator:
    pass


@dataclass(frozen=True)
class Br(Terminator):
    target: RawId


@dataclass(frozen=True)
class CondBr(Terminator):
    cond: Value
    then: RawId
    els: RawId


@dataclass(frozen=True)
class RetVoid(Terminator):
    pass


@dataclass(frozen=True)
class Ret(Terminator):
    typ: Type
    value: Value


@dataclass(frozen=True)
class Block:
    label: RawId
    code: Tuple[Tuple[InstrId, Instruction], ...]
    term: Tuple[IVoid, Terminator]

    @property
    def term_id(self) -> IVoid:
        return self.term[0]

    @property
    def terminator(self) -> Terminator:
        return self.term[1]

    def first_id(self) -> InstrId:
        """Id of the instruction a branch into this block lands on."""
        if self.code:
            return self.code[0][0]
        return self.term_id


@dataclass(frozen=True)
class Declaration:
    name: RawId
    typ: FunctionType


@dataclass(frozen=True)
class Definition:
    name: RawId
    typ: FunctionType
    params: Tuple[RawId, ...]
    blocks: Tuple[Block, ...]

    @property
    def entry(self) -> Block:
        return self.blocks[0]


TopLevel = Union[Declaration, Definition]


@dataclass(frozen=True)
class Program:
    entities: Tuple[TopLevel, ...]

    def definitions(self) -> Dict[RawId, Definition]:
        return {e.name: e for e in self.entities if isinstance(e, Definition)}

    def declarations(self) -> Dict[RawId, Declaration]:
        return {e.name: e for e in self.entities if isinstance(e, Declaration)}


# Flattened element stream produced by code generation and consumed by assembly.
class Elem:
    pass


@dataclass(frozen=True)
class LabelElem(Elem):
    label: RawId


@dataclass(frozen=True)
class InstrElem(Elem):
    iid: InstrId
    instr: Instruction


@dataclass(frozen=True)
class TermElem(Elem):
    iid: IVoid
    term: Terminator
