from __future__ import annotations

from dataclasses import dataclass
from typing import FrozenSet, List, Mapping, Union


def wrap_i64(value: int) -> int:
    value &= (1 << 64) - 1
    if value >> 63:
        value -= 1 << 64
    return value


class AExp:
    pass


@dataclass(frozen=True)
class ANum(AExp):
    value: int


@dataclass(frozen=True)
class AId(AExp):
    name: str


@dataclass(frozen=True)
class APlus(AExp):
    left: AExp
    right: AExp


@dataclass(frozen=True)
class AMinus(AExp):
    left: AExp
    right: AExp


@dataclass(frozen=True)
class AMult(AExp):
    left: AExp
    right: AExp


class BExp:
    pass


@dataclass(frozen=True)
class BTrue(BExp):
    pass


@dataclass(frozen=True)
class BFalse(BExp):
    pass


@dataclass(frozen=True)
class BEq(BExp):
    left: AExp
    right: AExp


@dataclass(frozen=True)
class BLe(BExp):
    left: AExp
    right: AExp


@dataclass(frozen=True)
class BNot(BExp):
    operand: BExp


@dataclass(frozen=True)
class BAnd(BExp):
    left: BExp
    right: BExp


class Com:
    pass


@dataclass(frozen=True)
class CSkip(Com):
    pass


@dataclass(frozen=True)
class CAss(Com):
    name: str
    value: AExp


@dataclass(frozen=True)
class CSeq(Com):
    first: Com
    second: Com


@dataclass(frozen=True)
class CIf(Com):
    cond: BExp
    then: Com
    els: Com


@dataclass(frozen=True)
class CWhile(Com):
    cond: BExp
    body: Com


Node = Union[AExp, BExp, Com]

ARITH_OPS = {APlus: "+", AMinus: "-", AMult: "*"}


def children(node: Node) -> List[Node]:
    if isinstance(node, (APlus, AMinus, AMult, BEq, BLe, BAnd)):
        return [node.left, node.right]
    if isinstance(node, BNot):
        return [node.operand]
    if isinstance(node, CAss):
        return [node.value]
    if isinstance(node, CSeq):
        return [node.first, node.second]
    if isinstance(node, CIf):
        return [node.cond, node.then, node.els]
    if isinstance(node, CWhile):
        return [node.cond, node.body]
    return []


def free_vars(node: Node) -> FrozenSet[str]:
    """Every variable read or assigned anywhere in `node`."""
    names = set()
    stack = [node]
    while stack:
        current = stack.pop()
        if isinstance(current, AId):
            names.add(current.name)
        elif isinstance(current, CAss):
            names.add(current.name)
        stack.extend(children(current))
    return frozenset(names)


def sorted_free_vars(node: Node) -> List[str]:
    return sorted(free_vars(node))


def size(node: Node) -> int:
    return 1 + sum(size(child) for child in children(node))


def seq(*coms: Com) -> Com:
    """Right-nested sequence of `coms`; SKIP when empty."""
    if not coms:
        return CSkip()
    result = coms[-1]
    for com in reversed(coms[:-1]):
        result = CSeq(com, result)
    return result


def with_initial_state(com: Com, initial: Mapping[str, int]) -> Com:
    """Prefix `com` with one assignment per entry of `initial`, in name order."""
    if not initial:
        return com
    prefix = [CAss(name, ANum(initial[name])) for name in sorted(initial)]
    return seq(*prefix, com)


def render(node: Node) -> str:
    if isinstance(node, ANum):
        return f"({node.value})" if node.value < 0 else str(node.value)
    if isinstance(node, AId):
        return node.name
    if isinstance(node, (APlus, AMinus, AMult)):
        return f"({render(node.left)} {ARITH_OPS[type(node)]} {render(node.right)})"
    if isinstance(node, BTrue):
        return "true"
    if isinstance(node, BFalse):
        return "false"
    if isinstance(node, BEq):
        return f"({render(node.left)} == {render(node.right)})"
    if isinstance(node, BLe):
        return f"({render(node.left)} <= {render(node.right)})"
    if isinstance(node, BNot):
        return f"!{render(node.operand)}"
    if isinstance(node, BAnd):
        return f"({render(node.left)} && {render(node.right)})"
    if isinstance(node, CSkip):
        return "SKIP"
    if isinstance(node, CAss):
        return f"{node.name} := {render(node.value)}"
    if isinstance(node, CSeq):
        return f"{render(node.first)}; {render(node.second)}"
    if isinstance(node, CIf):
        return f"IF {render(node.cond)} THEN {render(node.then)} ELSE {render(node.els)} FI"
    if isinstance(node, CWhile):
        return f"WHILE {render(node.cond)} DO {render(node.body)} END"
    raise TypeError(f"not an IMP node: {node!r}")
