from __future__ import annotations

from pathlib import Path
from typing import List, Union

from lark import Lark, Token, Tree
from lark.exceptions import LarkError, UnexpectedInput

from .imp import (
    AExp,
    AId,
    AMinus,
    AMult,
    ANum,
    APlus,
    BAnd,
    BEq,
    BExp,
    BFalse,
    BLe,
    BNot,
    BTrue,
    CAss,
    CIf,
    Com,
    CSkip,
    CWhile,
    seq,
)

_GRAMMAR_PATH = Path(__file__).with_name("grammar.lark")
_GRAMMAR_SRC = _GRAMMAR_PATH.read_text()


class ParseError(Exception):
    pass


_PARSER = Lark(
    _GRAMMAR_SRC,
    parser="lalr",
    start="start",
    propagate_positions=True,
    maybe_placeholders=False,
)


def parse_program(source: str) -> Com:
    try:
        tree = _PARSER.parse(source)
    except UnexpectedInput as exc:
        raise ParseError(f"{exc.line}:{exc.column}: syntax error") from exc
    except LarkError as exc:
        raise ParseError(str(exc)) from exc
    return _build_com(tree.children[0])


def _build_com(tree: Tree) -> Com:
    kind = _name(tree)
    if kind == "seq":
        return seq(*[_build_com(child) for child in _subtrees(tree)])
    if kind == "skip":
        return CSkip()
    if kind == "assign":
        name_token = tree.children[0]
        return CAss(name=name_token.value, value=_arith(tree.children[1]))
    if kind == "if_cmd":
        cond, then_node, else_node = _subtrees(tree)
        return CIf(cond=_bool(cond), then=_build_com(then_node), els=_build_com(else_node))
    if kind == "while_cmd":
        cond, body = _subtrees(tree)
        return CWhile(cond=_bool(cond), body=_build_com(body))
    raise ParseError(f"{_where(tree)}: unexpected command node {kind}")


def _build_expr(node: Union[Tree, Token]) -> Union[AExp, BExp]:
    if not isinstance(node, Tree):
        raise ParseError(f"unexpected token {node!r}")
    kind = _name(node)
    if kind == "int_lit":
        return ANum(int(node.children[0]))
    if kind == "neg_lit":
        return ANum(-int(node.children[0]))
    if kind == "var":
        return AId(node.children[0].value)
    if kind == "true_lit":
        return BTrue()
    if kind == "false_lit":
        return BFalse()
    if kind == "add":
        return APlus(_arith(node.children[0]), _arith(node.children[1]))
    if kind == "sub":
        return AMinus(_arith(node.children[0]), _arith(node.children[1]))
    if kind == "mul":
        return AMult(_arith(node.children[0]), _arith(node.children[1]))
    if kind == "beq":
        return BEq(_arith(node.children[0]), _arith(node.children[1]))
    if kind == "ble":
        return BLe(_arith(node.children[0]), _arith(node.children[1]))
    if kind == "bnot":
        return BNot(_bool(node.children[0]))
    if kind == "band":
        return BAnd(_bool(node.children[0]), _bool(node.children[1]))
    raise ParseError(f"{_where(node)}: unsupported expression node {kind}")


def _arith(node: Union[Tree, Token]) -> AExp:
    expr = _build_expr(node)
    if not isinstance(expr, AExp):
        raise ParseError(f"{_where(node)}: expected an arithmetic expression")
    return expr


def _bool(node: Union[Tree, Token]) -> BExp:
    expr = _build_expr(node)
    if not isinstance(expr, BExp):
        raise ParseError(f"{_where(node)}: expected a boolean expression")
    return expr


def _subtrees(tree: Tree) -> List[Tree]:
    return [child for child in tree.children if isinstance(child, Tree)]


def _where(node: Union[Tree, Token]) -> str:
    if isinstance(node, Token):
        return f"{node.line}:{node.column}"
    meta = node.meta
    if getattr(meta, "empty", True):
        return "?:?"
    return f"{meta.line}:{meta.column}"


def _name(node: Tree) -> str:
    data = node.data
    if isinstance(data, Token):
        return data.value
    return data
