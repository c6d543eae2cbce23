"""Random IMP programs and greedy shrinking for property checks."""

from __future__ import annotations

import logging
import random
from dataclasses import dataclass, fields, replace
from typing import Callable, List, Optional, Sequence, Tuple

from . import imp
from .oracle import OracleConfig, OracleResult, oracle_check

logger = logging.getLogger(__name__)

DEFAULT_VARIABLES = ("W", "X", "Y", "Z")


class ProgramGenerator:
    def __init__(
        self,
        rng: random.Random,
        variables: Sequence[str] = DEFAULT_VARIABLES,
        max_literal: int = 10,
    ) -> None:
        self.rng = rng
        self.variables = tuple(variables)
        self.max_literal = max_literal

    def _leaf(self) -> imp.AExp:
        if self.rng.random() < 0.5:
            return imp.ANum(self.rng.randint(-self.max_literal, self.max_literal))
        return imp.AId(self.rng.choice(self.variables))

    def aexp(self, size: int) -> imp.AExp:
        if size <= 1 or self.rng.random() < 0.25:
            return self._leaf()
        ctor = self.rng.choice((imp.APlus, imp.AMinus, imp.AMult))
        half = size // 2
        return ctor(self.aexp(half), self.aexp(half))

    def bexp(self, size: int) -> imp.BExp:
        if size <= 1:
            return self.rng.choice((imp.BTrue(), imp.BFalse()))
        half = size // 2
        pick = self.rng.randrange(4)
        if pick == 0:
            return imp.BEq(self.aexp(half), self.aexp(half))
        if pick == 1:
            return imp.BLe(self.aexp(half), self.aexp(half))
        if pick == 2:
            return imp.BNot(self.bexp(size - 1))
        return imp.BAnd(self.bexp(half), self.bexp(half))

    def com(self, size: int) -> imp.Com:
        if size <= 1:
            if self.rng.random() < 0.2:
                return imp.CSkip()
            return imp.CAss(self.rng.choice(self.variables), self.aexp(2))
        half = size // 2
        pick = self.rng.randrange(4)
        if pick == 0:
            return imp.CAss(self.rng.choice(self.variables), self.aexp(size))
        if pick == 1:
            return imp.CSeq(self.com(half), self.com(half))
        if pick == 2:
            return imp.CIf(self.bexp(half), self.com(half), self.com(half))
        return imp.CWhile(self.bexp(half), self.com(half))


def _same_sort(a: imp.Node, b: imp.Node) -> bool:
    for base in (imp.AExp, imp.BExp, imp.Com):
        if isinstance(a, base):
            return isinstance(b, base)
    return False


def _local_candidates(node: imp.Node) -> List[imp.Node]:
    out: List[imp.Node] = [child for child in imp.children(node) if _same_sort(child, node)]
    if isinstance(node, imp.ANum):
        if node.value != 0:
            out.append(imp.ANum(0))
            if abs(node.value) > 1:
                out.append(imp.ANum(int(node.value / 2)))
    elif isinstance(node, imp.AExp):
        out.append(imp.ANum(0))
    elif isinstance(node, imp.BExp):
        if not isinstance(node, (imp.BTrue, imp.BFalse)):
            out.extend([imp.BTrue(), imp.BFalse()])
    elif not isinstance(node, imp.CSkip):
        out.append(imp.CSkip())
    return out


def shrink(node: imp.Node) -> List[imp.Node]:
    """Strictly different, smaller-or-equal variants of `node`, smallest first."""
    candidates: List[imp.Node] = list(_local_candidates(node))
    node_fields = [f.name for f in fields(node) if isinstance(getattr(node, f.name), (imp.AExp, imp.BExp, imp.Com))]
    for field_name in node_fields:
        for smaller in shrink(getattr(node, field_name)):
            candidates.append(replace(node, **{field_name: smaller}))
    seen = set()
    unique: List[imp.Node] = []
    for cand in candidates:
        if cand == node or cand in seen:
            continue
        seen.add(cand)
        unique.append(cand)
    unique.sort(key=imp.size)
    return unique


Property = Callable[[imp.Com], OracleResult]


@dataclass
class CheckReport:
    trials: int
    failure: Optional[imp.Com] = None
    shrunk: Optional[imp.Com] = None
    diagnostic: str = ""
    shrink_steps: int = 0

    @property
    def passed(self) -> bool:
        return self.failure is None


def shrink_failure(prop: Property, com: imp.Com, result: OracleResult, max_shrinks: int) -> Tuple[imp.Com, OracleResult, int]:
    current, current_result = com, result
    attempts = 0
    progress = True
    while progress and attempts < max_shrinks:
        progress = False
        for cand in shrink(current):
            if attempts >= max_shrinks:
                break
            attempts += 1
            cand_result = prop(cand)
            if not cand_result.passed:
                logger.debug("shrunk to %s", imp.render(cand))
                current, current_result = cand, cand_result
                progress = True
                break
    return current, current_result, attempts


def quick_check(
    prop: Optional[Property] = None,
    trials: int = 100,
    seed: int = 0,
    size: int = 8,
    max_shrinks: int = 500,
    config: Optional[OracleConfig] = None,
) -> CheckReport:
    """Run `prop` (the oracle by default) on `trials` random programs."""
    if prop is None:
        def prop(com: imp.Com) -> OracleResult:
            return oracle_check(com, config)

    rng = random.Random(seed)
    generator = ProgramGenerator(rng)
    for trial in range(1, trials + 1):
        com = generator.com(rng.randint(1, size))
        result = prop(com)
        if result.passed:
            continue
        logger.info("trial %d failed (%s): %s", trial, result.verdict.value, imp.render(com))
        smallest, smallest_result, attempts = shrink_failure(prop, com, result, max_shrinks)
        logger.info("smallest failing program after %d attempts: %s", attempts, imp.render(smallest))
        return CheckReport(
            trials=trial,
            failure=com,
            shrunk=smallest,
            diagnostic=smallest_result.diagnostic,
            shrink_steps=attempts,
        )
    return CheckReport(trials=trials)
