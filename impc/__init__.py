"""
impc: IMP compiled to an SSA-style IR, checked against its own interpreter.

Pipeline:
  compiler: IMP AST to a flattened element stream
  cfg: element stream to basic blocks
  interp: fuel-bounded small-step IR interpreter
  oracle: IR result against the IMP interpreter
  llvm_export: IR to llvmlite modules
"""

from .cfg import AssemblyError, assemble
from .compiler import CompileError, compile_program
from .interp import run_with_fuel
from .oracle import OracleConfig, OracleResult, Verdict, oracle_check

__all__ = [
    "AssemblyError",
    "CompileError",
    "OracleConfig",
    "OracleResult",
    "Verdict",
    "assemble",
    "compile_program",
    "oracle_check",
    "run_with_fuel",
]
