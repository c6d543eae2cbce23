from __future__ import annotations

import pytest

pytest.importorskip("llvmlite")

from impc import ir
from impc.compiler import compile_program
from impc.llvm_export import ExportError, to_llvm_assembly, to_llvm_module
from impc.parser import parse_program


def test_compiled_program_exports():
    program = compile_program(parse_program("WHILE !(X <= 0) DO X := X - 1 END; Y := X * 2"), print_vars=True)
    text = to_llvm_assembly(program)
    assert "imp_command" in text
    assert "declare void" in text
    assert "alloca i64" in text
    assert "icmp sle i64" in text
    assert "xor i1" in text
    assert "br i1" in text
    assert "mul i64" in text
    assert "ret void" in text


def test_blocks_follow_program_order():
    program = compile_program(parse_program("IF X == 1 THEN Y := 2 ELSE Y := 3 FI"))
    module = to_llvm_module(program)
    fn = module.get_global("imp_command")
    assert [block.name for block in fn.blocks] == ["b0", "b3", "b4", "b5"]


def test_returning_function_with_params():
    block = ir.Block(
        label=0,
        code=((ir.IId(1), ir.BinOp("srem", ir.I64, ir.IdentRef(ir.LocalId("n")), ir.Int(3))),),
        term=(ir.IVoid(1), ir.Ret(ir.I64, ir.IdentRef(ir.LocalId(1)))),
    )
    program = ir.Program((ir.Definition("mod3", ir.FunctionType(ir.I64, (ir.I64,)), ("n",), (block,)),))
    text = to_llvm_assembly(program)
    assert "srem i64" in text
    assert "ret i64" in text


def test_runtime_values_are_rejected():
    block = ir.Block(
        label=0,
        code=((ir.IVoid(1), ir.Store(ir.I64, ir.Int(1), ir.Addr(0))),),
        term=(ir.IVoid(2), ir.RetVoid()),
    )
    program = ir.Program((ir.Definition("f", ir.FunctionType(ir.VOID), (), (block,)),))
    with pytest.raises(ExportError):
        to_llvm_module(program)


def test_unknown_branch_target_is_rejected():
    block = ir.Block(label=0, code=(), term=(ir.IVoid(1), ir.Br(9)))
    program = ir.Program((ir.Definition("f", ir.FunctionType(ir.VOID), (), (block,)),))
    with pytest.raises(ExportError, match="unknown label 9"):
        to_llvm_module(program)
