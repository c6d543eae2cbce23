"""
Differential check of the compiler against the IMP interpreter.

A program passes when the compiled IR and the source interpreter end in the
same variable values. Running out of fuel is inconclusive rather than a
failure, since generated programs frequently loop forever.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum
from typing import List, Mapping, Optional

from . import imp, ir
from .compiler import DEFAULT_ENTRY, CompileError, compile_program
from .imp_eval import Diverged, Final, ceval
from .interp import Failed, Finished, OutOfFuel, RunResult, run_with_fuel
from .ir_printer import format_memory, format_program
from .verifier import VerificationError, verify_program

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class OracleConfig:
    src_fuel: int = 200
    # lowered code needs many IR steps per source step
    llvm_fuel: int = 20000
    entry: str = DEFAULT_ENTRY
    strict_fuel: bool = False


class Verdict(Enum):
    AGREE = "agree"
    MISMATCH = "mismatch"
    BOTH_OUT_OF_FUEL = "both out of fuel"
    SOURCE_OUT_OF_FUEL = "source out of fuel"
    COMPILED_OUT_OF_FUEL = "compiled out of fuel"
    COMPILED_FAULT = "compiled fault"
    COMPILE_ERROR = "compile error"


_ONE_SIDED = (Verdict.SOURCE_OUT_OF_FUEL, Verdict.COMPILED_OUT_OF_FUEL)


@dataclass(frozen=True)
class OracleResult:
    verdict: Verdict
    passed: bool
    diagnostic: str = ""

    @property
    def inconclusive(self) -> bool:
        return self.verdict is Verdict.BOTH_OUT_OF_FUEL or self.verdict in _ONE_SIDED


def _render_source_state(names: List[str], result: Final) -> str:
    pairs = ", ".join(f"{name}={value}" for name, value in zip(names, result.project(names)))
    return f"{{{pairs}}}"


def _diagnostic(com: imp.Com, program: Optional[ir.Program], compiled: Optional[RunResult], source: Optional[Final], names: List[str]) -> str:
    lines = [f"program: {imp.render(com)}"]
    if program is not None:
        lines.append("compiled code:")
        lines.append(format_program(program))
    if isinstance(compiled, Finished):
        lines.append(f"compiled memory: {format_memory(compiled.memory)}")
    elif isinstance(compiled, Failed):
        lines.append(f"compiled fault: {compiled.message}")
    elif isinstance(compiled, OutOfFuel):
        lines.append(f"compiled out of fuel after {compiled.steps} steps")
    if source is not None:
        lines.append(f"source state: {_render_source_state(names, source)}")
    return "\n".join(lines)


def memory_matches(names: List[str], source: Final, memory: tuple) -> bool:
    """Free variables in ascending order against the reversed first cells."""
    cells = list(reversed(memory[: len(names)]))
    if len(cells) != len(names):
        return False
    expected = [ir.Int(value) for value in source.project(names)]
    return cells == expected


def oracle_check(
    com: imp.Com,
    config: Optional[OracleConfig] = None,
    initial: Optional[Mapping[str, int]] = None,
) -> OracleResult:
    config = config or OracleConfig()
    if initial:
        com = imp.with_initial_state(com, initial)
    names = imp.sorted_free_vars(com)

    try:
        program = compile_program(com, entry=config.entry)
        verify_program(program)
    except (CompileError, VerificationError) as exc:
        logger.info("compilation failed: %s", exc)
        return OracleResult(
            Verdict.COMPILE_ERROR, False, f"compile error: {exc}\n{_diagnostic(com, None, None, None, names)}"
        )

    compiled = run_with_fuel(program, config.entry, config.llvm_fuel)
    source = ceval(com, config.src_fuel)
    final_source = source if isinstance(source, Final) else None
    diagnostic = _diagnostic(com, program, compiled, final_source, names)

    if isinstance(compiled, Failed):
        logger.info("compiled program faulted: %s", compiled.message)
        return OracleResult(Verdict.COMPILED_FAULT, False, diagnostic)
    if isinstance(compiled, OutOfFuel) and isinstance(source, Diverged):
        return OracleResult(Verdict.BOTH_OUT_OF_FUEL, True, diagnostic)
    if isinstance(compiled, OutOfFuel) or isinstance(source, Diverged):
        verdict = Verdict.COMPILED_OUT_OF_FUEL if isinstance(compiled, OutOfFuel) else Verdict.SOURCE_OUT_OF_FUEL
        logger.warning("%s: %s", verdict.value, imp.render(com))
        return OracleResult(verdict, not config.strict_fuel, diagnostic)

    assert isinstance(compiled, Finished) and final_source is not None
    if memory_matches(names, final_source, compiled.memory):
        return OracleResult(Verdict.AGREE, True, diagnostic)
    logger.info("mismatch:\n%s", diagnostic)
    return OracleResult(Verdict.MISMATCH, False, diagnostic)
