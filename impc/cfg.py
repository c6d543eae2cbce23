from __future__ import annotations

from typing import List, Optional, Sequence, Tuple

from . import ir


class AssemblyError(Exception):
    pass


def assemble(entry_label: ir.RawId, elems: Sequence[ir.Elem]) -> List[ir.Block]:
    """
    Turn a flattened element stream (program order) into basic blocks.

    The stream is folded right to left so that every label sees the
    terminator written after it without a second pass:
    - a label closes a block when a terminator is pending
    - a label with nothing pending is a no-op boundary
    - a label with only instructions pending is ill formed
    Whatever is left once the fold reaches the front becomes the entry block.
    """
    pending_code: List[Tuple[ir.InstrId, ir.Instruction]] = []
    pending_term: Optional[ir.TermElem] = None
    blocks: List[ir.Block] = []

    def close(label: ir.RawId) -> ir.Block:
        assert pending_term is not None
        # pending_code was accumulated back to front
        code = tuple(reversed(pending_code))
        return ir.Block(label=label, code=code, term=(pending_term.iid, pending_term.term))

    for elem in reversed(elems):
        if isinstance(elem, ir.LabelElem):
            if pending_term is not None:
                blocks.append(close(elem.label))
                pending_code = []
                pending_term = None
            elif pending_code:
                raise AssemblyError(f"terminator not found for block {elem.label}")
        elif isinstance(elem, ir.InstrElem):
            pending_code.append((elem.iid, elem.instr))
        elif isinstance(elem, ir.TermElem):
            # Within one label region the terminator seen last by the fold wins.
            pending_term = elem
        else:
            raise AssemblyError(f"unexpected element {elem!r}")

    if pending_term is None:
        raise AssemblyError(f"terminator not found for entry block {entry_label}")
    blocks.append(close(entry_label))
    blocks.reverse()
    return blocks
