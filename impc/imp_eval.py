from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, List, Mapping, Optional, Sequence, Union

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
    CSeq,
    CSkip,
    CWhile,
    wrap_i64,
)


Store = Dict[str, int]


@dataclass(frozen=True)
class Final:
    state: Mapping[str, int]
    steps: int

    def project(self, names: Sequence[str]) -> List[int]:
        return [self.state.get(name, 0) for name in names]


@dataclass(frozen=True)
class Diverged:
    steps: int


EvalResult = Union[Final, Diverged]


def aeval(state: Mapping[str, int], a: AExp) -> int:
    if isinstance(a, ANum):
        return wrap_i64(a.value)
    if isinstance(a, AId):
        return state.get(a.name, 0)
    if isinstance(a, APlus):
        return wrap_i64(aeval(state, a.left) + aeval(state, a.right))
    if isinstance(a, AMinus):
        return wrap_i64(aeval(state, a.left) - aeval(state, a.right))
    if isinstance(a, AMult):
        return wrap_i64(aeval(state, a.left) * aeval(state, a.right))
    raise TypeError(f"not an arithmetic expression: {a!r}")


def beval(state: Mapping[str, int], b: BExp) -> bool:
    if isinstance(b, BTrue):
        return True
    if isinstance(b, BFalse):
        return False
    if isinstance(b, BEq):
        return aeval(state, b.left) == aeval(state, b.right)
    if isinstance(b, BLe):
        return aeval(state, b.left) <= aeval(state, b.right)
    if isinstance(b, BNot):
        return not beval(state, b.operand)
    if isinstance(b, BAnd):
        # both sides are evaluated, matching the compiled `and i1`
        left = beval(state, b.left)
        right = beval(state, b.right)
        return left and right
    raise TypeError(f"not a boolean expression: {b!r}")


def ceval(com: Com, fuel: int, state: Optional[Mapping[str, int]] = None) -> EvalResult:
    """
    Run `com` for at most `fuel` small steps.

    Pending work is kept on an explicit continuation stack and each pop is
    one step. Unassigned variables read as 0.
    """
    store: Store = dict(state or {})
    kont: List[Com] = [com]
    steps = 0
    while kont:
        if steps >= fuel:
            return Diverged(steps=steps)
        current = kont.pop()
        steps += 1
        if isinstance(current, CSkip):
            continue
        if isinstance(current, CAss):
            store[current.name] = aeval(store, current.value)
        elif isinstance(current, CSeq):
            kont.append(current.second)
            kont.append(current.first)
        elif isinstance(current, CIf):
            kont.append(current.then if beval(store, current.cond) else current.els)
        elif isinstance(current, CWhile):
            if beval(store, current.cond):
                kont.append(current)
                kont.append(current.body)
        else:
            raise TypeError(f"not a command: {current!r}")
    return Final(state=store, steps=steps)
