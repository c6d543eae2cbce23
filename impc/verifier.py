from __future__ import annotations

from dataclasses import dataclass
from typing import Set

from . import ir


@dataclass
class VerificationError(Exception):
    message: str

    def __str__(self) -> str:
        return self.message


def _targets(term: ir.Terminator) -> tuple:
    if isinstance(term, ir.Br):
        return (term.target,)
    if isinstance(term, ir.CondBr):
        return (term.then, term.els)
    return ()


def verify_definition(defn: ir.Definition, program: ir.Program | None = None) -> None:
    name = defn.name
    if not defn.blocks:
        raise VerificationError(f"{name}: definition has no blocks")
    if len(defn.params) != len(defn.typ.args):
        raise VerificationError(f"{name}: {len(defn.params)} params for {len(defn.typ.args)} argument types")
    labels: Set[ir.RawId] = set()
    for block in defn.blocks:
        if block.label in labels:
            raise VerificationError(f"{name}:{block.label}: duplicate block label")
        labels.add(block.label)
    ids: Set[ir.InstrId] = set()
    for block in defn.blocks:
        if not isinstance(block.terminator, ir.Terminator):
            raise VerificationError(f"{name}:{block.label}: missing terminator")
        for iid, instr in block.code:
            if isinstance(instr, ir.Terminator):
                raise VerificationError(f"{name}:{block.label}: terminator in instruction position")
            if iid in ids:
                raise VerificationError(f"{name}:{block.label}: instruction id {iid} defined twice")
            ids.add(iid)
        if block.term_id in ids:
            raise VerificationError(f"{name}:{block.label}: instruction id {block.term_id} defined twice")
        ids.add(block.term_id)
        for target in _targets(block.terminator):
            if target not in labels:
                raise VerificationError(f"{name}:{block.label}: branch to unknown label {target}")
    if program is not None:
        known = set(program.definitions()) | set(program.declarations())
        for block in defn.blocks:
            for _, instr in block.code:
                if isinstance(instr, ir.Call) and isinstance(instr.fn, ir.IdentRef):
                    callee = instr.fn.ident
                    if isinstance(callee, ir.GlobalId) and callee.key not in known:
                        raise VerificationError(f"{name}:{block.label}: call to unknown function @{callee.key}")


def verify_program(program: ir.Program) -> None:
    seen: Set[ir.RawId] = set()
    for entity in program.entities:
        if entity.name in seen:
            raise VerificationError(f"@{entity.name}: defined twice")
        seen.add(entity.name)
    for defn in program.definitions().values():
        verify_definition(defn, program)
