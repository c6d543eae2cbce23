"""Hand-built IR programs run through the step engine."""

from __future__ import annotations

import pytest

from impc import ir
from impc.interp import (
    Cfg,
    EntryPointError,
    Event,
    ExternalCall,
    Failed,
    Finished,
    OutOfFuel,
    Stepped,
    Terminated,
    init,
    run_with_fuel,
    step,
)


def ref(raw):
    return ir.IdentRef(ir.LocalId(raw))


def block(label, code, term, term_id):
    return ir.Block(label=label, code=tuple(code), term=(ir.IVoid(term_id), term))


def define(name, *blocks, params=(), ret=ir.VOID):
    typ = ir.FunctionType(ret, tuple(ir.I64 for _ in params))
    return ir.Definition(name=name, typ=typ, params=tuple(params), blocks=tuple(blocks))


def program(*entities):
    return ir.Program(entities=tuple(entities))


def store_result(value):
    """%100 = alloca; store value into it; ret void."""
    return [
        (ir.IId(100), ir.Alloca(ir.I64)),
        (ir.IVoid(100), ir.Store(ir.I64, value, ref(100))),
    ]


def run(prog, fuel=100, **kwargs):
    return run_with_fuel(prog, "main", fuel, **kwargs)


def test_binop_result_is_stored_in_memory():
    code = [(ir.IId(1), ir.BinOp("add", ir.I64, ir.Int(2), ir.Int(3)))] + store_result(ref(1))
    result = run(program(define("main", block(0, code, ir.RetVoid(), 1))))
    assert isinstance(result, Finished)
    assert result.memory == (ir.Int(5),)
    assert result.value is None


@pytest.mark.parametrize(
    "op,left,right,expected",
    [
        ("sub", 3, 10, -7),
        ("mul", -4, 6, -24),
        ("sdiv", -7, 2, -3),
        ("srem", -7, 2, -1),
        ("add", 2**63 - 1, 1, -(2**63)),
        ("xor", 6, 3, 5),
    ],
)
def test_integer_arithmetic(op, left, right, expected):
    code = [(ir.IId(1), ir.BinOp(op, ir.I64, ir.Int(left), ir.Int(right)))] + store_result(ref(1))
    result = run(program(define("main", block(0, code, ir.RetVoid(), 1))))
    assert result.memory == (ir.Int(expected),)


def test_boolean_ops_and_comparisons():
    code = [
        (ir.IId(1), ir.ICmp("sle", ir.I64, ir.Int(1), ir.Int(2))),
        (ir.IId(2), ir.BinOp("xor", ir.I1, ref(1), ir.Bool(True))),
        (ir.IId(3), ir.ICmp("eq", ir.I1, ref(2), ir.Bool(False))),
    ] + store_result(ref(3))
    result = run(program(define("main", block(0, code, ir.RetVoid(), 1))))
    assert result.memory == (ir.Bool(True),)


def test_allocations_get_dense_addresses_in_order():
    code = [
        (ir.IId(1), ir.Alloca(ir.I64)),
        (ir.IId(2), ir.Alloca(ir.I64)),
        (ir.IVoid(1), ir.Store(ir.I64, ir.Int(10), ref(2))),
        (ir.IVoid(2), ir.Store(ir.I64, ir.Int(20), ref(1))),
    ]
    result = run(program(define("main", block(0, code, ir.RetVoid(), 3))))
    assert result.memory == (ir.Int(20), ir.Int(10))


def test_load_copies_current_cell_value():
    code = [
        (ir.IId(1), ir.Alloca(ir.I64)),
        (ir.IVoid(1), ir.Store(ir.I64, ir.Int(4), ref(1))),
        (ir.IId(2), ir.Load(ir.I64, ref(1))),
        (ir.IVoid(2), ir.Store(ir.I64, ir.Int(9), ref(1))),
    ] + store_result(ref(2))
    result = run(program(define("main", block(0, code, ir.RetVoid(), 3))))
    assert result.memory == (ir.Int(9), ir.Int(4))


def test_fresh_cells_are_undef():
    code = [(ir.IId(1), ir.Alloca(ir.I64))]
    result = run(program(define("main", block(0, code, ir.RetVoid(), 1))))
    assert result.memory == (ir.Undef(),)


@pytest.mark.parametrize(
    "instr,message",
    [
        (ir.BinOp("add", ir.I64, ir.Bool(True), ir.Int(1)), "type mismatch"),
        (ir.ICmp("slt", ir.I64, ir.Bool(True), ir.Bool(False)), "type mismatch"),
        (ir.BinOp("add", ir.I64, ref(5), ir.Int(1)), "undefined identifier %5"),
        (ir.BinOp("sdiv", ir.I64, ir.Int(1), ir.Int(0)), "division by zero"),
        (ir.Load(ir.I64, ir.Int(0)), "non-pointer"),
        (ir.Load(ir.I64, ir.Null()), "non-pointer"),
        (ir.Store(ir.I64, ir.Int(1), ir.Addr(3)), "forged pointer"),
        (ir.Load(ir.PointerType(ir.VOID), ir.FunctionPointer("main")), "forged pointer"),
        (ir.BinOp("add", ir.I64, ir.Undef(), ir.Int(1)), "type mismatch"),
    ],
)
def test_faults(instr, message):
    code = [(ir.IId(1), instr)]
    result = run(program(define("main", block(0, code, ir.RetVoid(), 1))))
    assert isinstance(result, Failed)
    assert message in result.message


def test_literal_address_of_live_cell_is_rejected():
    code = [
        (ir.IId(1), ir.Alloca(ir.I64)),
        (ir.IVoid(1), ir.Store(ir.I64, ir.Int(7), ir.Addr(0))),
    ]
    result = run(program(define("main", block(0, code, ir.RetVoid(), 2))))
    assert isinstance(result, Failed)
    assert "forged pointer" in result.message


def test_operator_expression_operand_is_evaluated():
    expr = ir.BinOpExpr("mul", ir.I64, ir.Int(6), ir.Int(7))
    code = [(ir.IId(1), ir.BinOp("add", ir.I64, expr, ir.Int(0)))] + store_result(ref(1))
    result = run(program(define("main", block(0, code, ir.RetVoid(), 1))))
    assert result.memory == (ir.Int(42),)


def test_nested_operator_expression_is_rejected():
    inner = ir.BinOpExpr("add", ir.I64, ir.Int(1), ir.Int(2))
    outer = ir.BinOpExpr("add", ir.I64, inner, ir.Int(3))
    code = [(ir.IId(1), ir.BinOp("add", ir.I64, outer, ir.Int(0)))]
    result = run(program(define("main", block(0, code, ir.RetVoid(), 1))))
    assert isinstance(result, Failed)
    assert "nested operator expression" in result.message


def test_conditional_branch_selects_target():
    entry = block(0, [(ir.IId(1), ir.ICmp("eq", ir.I64, ir.Int(1), ir.Int(2)))], ir.CondBr(ref(1), 1, 2), 1)
    then = block(1, store_result(ir.Int(111)), ir.RetVoid(), 2)
    els = block(2, store_result(ir.Int(222)), ir.RetVoid(), 3)
    result = run(program(define("main", entry, then, els)))
    assert result.memory == (ir.Int(222),)


def test_conditional_branch_on_integer_faults():
    entry = block(0, [], ir.CondBr(ir.Int(1), 1, 1), 1)
    exit_block = block(1, [], ir.RetVoid(), 2)
    result = run(program(define("main", entry, exit_block)))
    assert isinstance(result, Failed)
    assert "non-boolean" in result.message


def test_branch_to_unknown_label_faults():
    result = run(program(define("main", block(0, [], ir.Br(7), 1))))
    assert isinstance(result, Failed)
    assert "unknown block 7" in result.message


def test_infinite_loop_runs_out_of_fuel():
    prog = program(define("main", block(0, [], ir.Br(1), 1), block(1, [], ir.Br(1), 2)))
    assert run(prog, fuel=50) == OutOfFuel(steps=50)


def test_zero_fuel_is_out_of_fuel_immediately():
    prog = program(define("main", block(0, [], ir.RetVoid(), 1)))
    assert run(prog, fuel=0) == OutOfFuel(steps=0)


def test_missing_entry_point():
    prog = program(define("other", block(0, [], ir.RetVoid(), 1)))
    with pytest.raises(EntryPointError):
        init(prog, "main")
    with pytest.raises(EntryPointError):
        run(prog)


def test_entry_point_without_blocks():
    prog = program(ir.Definition("main", ir.FunctionType(ir.VOID), (), ()))
    with pytest.raises(EntryPointError, match="has no blocks"):
        run(prog, fuel=10)


def test_call_and_return_value():
    double = define(
        "double",
        block(0, [(ir.IId(1), ir.BinOp("add", ir.I64, ref("x"), ref("x")))], ir.Ret(ir.I64, ref(1)), 1),
        params=("x",),
        ret=ir.I64,
    )
    callee = ir.IdentRef(ir.GlobalId("double"))
    code = [(ir.IId(1), ir.Call(ir.I64, callee, ((ir.I64, ir.Int(21)),)))] + store_result(ref(1))
    main = define("main", block(0, code, ir.RetVoid(), 1))
    result = run(program(double, main))
    assert isinstance(result, Finished)
    assert result.memory == (ir.Int(42),)


def test_call_and_return_events():
    noop = define("noop", block(0, [], ir.RetVoid(), 1))
    code = [(ir.IVoid(1), ir.Call(ir.VOID, ir.IdentRef(ir.GlobalId("noop"))))]
    main = define("main", block(0, code, ir.RetVoid(), 2))
    cfg = Cfg.from_program(program(noop, main))
    state = init(cfg, "main")
    events = []
    outcome = step(cfg, state)
    while isinstance(outcome, Stepped):
        events.append(outcome.event)
        outcome = step(cfg, outcome.state)
    assert isinstance(outcome, Terminated)
    assert events == [Event.CALL, Event.RETURN]


def test_pointer_to_callee_frame_is_stale_after_return():
    ptr_type = ir.PointerType(ir.I64)
    leak = define("leak", block(0, [(ir.IId(1), ir.Alloca(ir.I64))], ir.Ret(ptr_type, ref(1)), 1), ret=ptr_type)
    code = [
        (ir.IId(1), ir.Call(ptr_type, ir.IdentRef(ir.GlobalId("leak")))),
        (ir.IVoid(1), ir.Store(ir.I64, ir.Int(1), ref(1))),
    ]
    main = define("main", block(0, code, ir.RetVoid(), 2))
    result = run(program(leak, main))
    assert isinstance(result, Failed)
    assert "stale pointer" in result.message


def test_callee_may_use_caller_pointer():
    poke = define(
        "poke",
        block(0, [(ir.IVoid(1), ir.Store(ir.I64, ir.Int(8), ref("p")))], ir.RetVoid(), 2),
        params=("p",),
    )
    code = [
        (ir.IId(1), ir.Alloca(ir.I64)),
        (ir.IVoid(1), ir.Call(ir.VOID, ir.IdentRef(ir.GlobalId("poke")), ((ir.PointerType(ir.I64), ref(1)),))),
    ]
    main = define("main", block(0, code, ir.RetVoid(), 2))
    assert run(program(poke, main)).memory == (ir.Int(8),)


def test_external_call_is_reported_to_handler():
    decl = ir.Declaration("print", ir.PRINT_FN_TYPE)
    code = [(ir.IVoid(1), ir.Call(ir.VOID, ir.IdentRef(ir.GlobalId("print")), ((ir.I64, ir.Int(7)),)))]
    main = define("main", block(0, code, ir.RetVoid(), 2))
    seen = []
    result = run(program(decl, main), on_external=lambda name, args: seen.append((name, args)))
    assert isinstance(result, Finished)
    assert seen == [("print", (ir.Int(7),))]


def test_external_call_step_outcome():
    decl = ir.Declaration("print", ir.PRINT_FN_TYPE)
    code = [(ir.IVoid(1), ir.Call(ir.VOID, ir.IdentRef(ir.GlobalId("print")), ((ir.I64, ir.Int(7)),)))]
    cfg = Cfg.from_program(program(decl, define("main", block(0, code, ir.RetVoid(), 2))))
    outcome = step(cfg, init(cfg, "main"))
    assert isinstance(outcome, ExternalCall)
    assert outcome.name == "print"
    assert outcome.state.pc.iid == ir.IVoid(2)


def test_call_to_unknown_function_faults():
    code = [(ir.IVoid(1), ir.Call(ir.VOID, ir.IdentRef(ir.GlobalId("nope"))))]
    result = run(program(define("main", block(0, code, ir.RetVoid(), 2))))
    assert isinstance(result, Failed)
    assert "unknown function @nope" in result.message


def test_step_does_not_mutate_state():
    code = [(ir.IId(1), ir.Alloca(ir.I64)), (ir.IVoid(1), ir.Store(ir.I64, ir.Int(3), ref(1)))]
    cfg = Cfg.from_program(program(define("main", block(0, code, ir.RetVoid(), 2))))
    state = init(cfg, "main")
    first = step(cfg, state)
    again = step(cfg, state)
    assert first == again
    assert state.memory == ()
    assert dict(state.env) == {}
