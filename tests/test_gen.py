from __future__ import annotations

import random

import pytest

from impc import imp
from impc.gen import ProgramGenerator, quick_check, shrink
from impc.oracle import OracleConfig, OracleResult, Verdict

SMALL = OracleConfig(src_fuel=100, llvm_fuel=5000)


def contains_mult(node):
    if isinstance(node, imp.AMult):
        return True
    return any(contains_mult(child) for child in imp.children(node))


def no_mult(com):
    if contains_mult(com):
        return OracleResult(Verdict.MISMATCH, False, f"program: {imp.render(com)}")
    return OracleResult(Verdict.AGREE, True)


def test_generator_is_deterministic_per_seed():
    first = ProgramGenerator(random.Random(7)).com(8)
    second = ProgramGenerator(random.Random(7)).com(8)
    assert first == second


def test_generator_respects_variables():
    gen = ProgramGenerator(random.Random(1), variables=("A",))
    for _ in range(20):
        assert imp.free_vars(gen.com(6)) <= {"A"}


def test_shrink_candidates_are_smaller_first_and_distinct():
    node = imp.CSeq(
        imp.CAss("X", imp.APlus(imp.ANum(4), imp.AId("Y"))),
        imp.CWhile(imp.BNot(imp.BTrue()), imp.CSkip()),
    )
    candidates = shrink(node)
    assert candidates
    assert node not in candidates
    assert len(candidates) == len(set(candidates))
    sizes = [imp.size(c) for c in candidates]
    assert sizes == sorted(sizes)
    assert imp.CSkip() in candidates


def test_shrink_keeps_sorts():
    for cand in shrink(imp.BEq(imp.AId("X"), imp.ANum(3))):
        assert isinstance(cand, imp.BExp)


def test_leaves_do_not_shrink():
    assert shrink(imp.ANum(0)) == []
    assert shrink(imp.CSkip()) == []


@pytest.mark.parametrize("seed", [0, 1, 2])
def test_compiler_agrees_on_random_programs(seed):
    report = quick_check(trials=25, seed=seed, size=6, config=SMALL)
    assert report.passed, report.diagnostic
    assert report.trials == 25


def test_failures_are_shrunk_to_a_local_minimum():
    report = quick_check(no_mult, trials=200, seed=3, size=8, max_shrinks=10000)
    assert not report.passed
    assert contains_mult(report.shrunk)
    assert imp.size(report.shrunk) <= imp.size(report.failure)
    assert all(no_mult(cand).passed for cand in shrink(report.shrunk))
    assert report.diagnostic.startswith("program: ")
