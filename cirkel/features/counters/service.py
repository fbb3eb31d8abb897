"""
Paired counter updates.

Two denormalized counters that must move together with an underlying
record set (follow edges and the followers/following counts) are written
in one transaction:

    guard -> counter A -> counter B -> mutate -> commit

Any exception aborts the whole batch, so a partial update is never visible.
Increments are SQL expressions (`col + delta`) so concurrent batches
do not overwrite each other.
"""

from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Optional

from sqlalchemy import Table, update
from sqlalchemy.orm import Session

from cirkel.core.database import session_scope
from cirkel.core.errors import NotFoundError


SessionStep = Callable[[Session], None]


@dataclass(frozen=True)
class CounterRef:
    """Locates one row holding counters: table plus primary-key values."""
    table: Table
    key: Dict[str, Any] = field(default_factory=dict)

    def describe(self) -> str:
        parts = ", ".join(f"{k}={v}" for k, v in self.key.items())
        return f"{self.table.name}({parts})"


def _increment_in(session: Session, ref: CounterRef, field_name: str, delta: int) -> None:
    column = ref.table.c[field_name]
    stmt = update(ref.table).values({field_name: column + delta})
    for key_name, key_value in ref.key.items():
        stmt = stmt.where(ref.table.c[key_name] == key_value)
    result = session.execute(stmt)
    if result.rowcount == 0:
        raise NotFoundError(f"Counter row not found: {ref.describe()}")


def increment(ref: CounterRef, field_name: str, delta: int, session: Optional[Session] = None) -> None:
    """Single additive update of one counter."""
    with session_scope(session) as s:
        _increment_in(s, ref, field_name, delta)


def apply_paired(
    a_ref: CounterRef,
    a_field: str,
    a_delta: int,
    b_ref: CounterRef,
    b_field: str,
    b_delta: int,
    guard: Optional[SessionStep] = None,
    mutate: Optional[SessionStep] = None,
    session: Optional[Session] = None,
) -> None:
    """
    Move two counters and the record they describe in one atomic batch.

    Args:
        guard: existence/uniqueness check; raise to abort before any write
        mutate: the record write (create or delete the edge); raise to abort

    Raises:
        Whatever guard or mutate raises, or NotFoundError when a counter
        row is missing. Nothing is committed in either case.
    """
    with session_scope(session) as s:
        if guard is not None:
            guard(s)
        _increment_in(s, a_ref, a_field, a_delta)
        _increment_in(s, b_ref, b_field, b_delta)
        if mutate is not None:
            mutate(s)
