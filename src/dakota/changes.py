"""Per-instance change tracking.

A ChangeTracker records, per attribute, the mutations requested since the
last successful save, so that an UPDATE can be emitted with exactly the
clauses needed and without reading the row first.
"""

from __future__ import annotations

import copy
from collections.abc import Mapping
from dataclasses import dataclass, replace
from enum import Enum
from typing import Any, Iterator


class MutationKind(Enum):
    """What a pending mutation does to its attribute."""

    SET = "set"
    APPEND = "append"
    PREPEND = "prepend"
    ADD = "add"
    REMOVE = "remove"
    INCREMENT = "increment"
    DECREMENT = "decrement"
    INJECT_AT_INDEX = "inject_at_index"
    INJECT_AT_KEY = "inject_at_key"
    REMOVE_KEY = "remove_key"


COUNTER_KINDS = frozenset({MutationKind.INCREMENT, MutationKind.DECREMENT})

# Set operations that undo each other for the same element
SET_OPPOSITES = {MutationKind.ADD: MutationKind.REMOVE, MutationKind.REMOVE: MutationKind.ADD}


@dataclass(frozen=True)
class Mutation:
    """A single pending mutation.

    ``value`` holds the operand: the new value for SET, a tuple of elements
    for element operations (or a mapping for a whole-map ADD), the magnitude
    for INCREMENT/DECREMENT, and the slot value for injections. ``key`` is
    the list index or map key of an injection.
    """

    kind: MutationKind
    value: Any = None
    key: Any = None

    @property
    def delta(self) -> int:
        """Signed counter delta of an INCREMENT or DECREMENT."""
        if self.kind is MutationKind.INCREMENT:
            return self.value
        if self.kind is MutationKind.DECREMENT:
            return -self.value
        raise TypeError(f"{self.kind.value} mutations have no delta")

    @property
    def merges_map(self) -> bool:
        """True for an ADD that merges a whole mapping into a map column."""
        return self.kind is MutationKind.ADD and isinstance(self.value, Mapping)


def counter_mutation(delta: int) -> Mutation:
    """Build the single entry representing a net counter delta."""
    if delta < 0:
        return Mutation(MutationKind.DECREMENT, -delta)
    return Mutation(MutationKind.INCREMENT, delta)


class ChangeTracker:
    """Records pending mutations keyed by attribute name."""

    def __init__(self) -> None:
        self._pending: dict[str, list[Mutation]] = {}

    # ------------------------------------------------------------------
    # Recording
    # ------------------------------------------------------------------

    def record_set(self, attr: str, value: Any) -> None:
        """Replace the whole value, discarding earlier mutations."""
        self._pending[attr] = [Mutation(MutationKind.SET, value)]

    def record_append(self, attr: str, value: Any) -> None:
        self._record_element(attr, MutationKind.APPEND, value)

    def record_prepend(self, attr: str, value: Any) -> None:
        self._record_element(attr, MutationKind.PREPEND, value)

    def record_add(self, attr: str, value: Any) -> None:
        """Add an element to a set, or merge a mapping into a map."""
        if isinstance(value, Mapping):
            self._record_merge(attr, value)
        else:
            self._record_element(attr, MutationKind.ADD, value)

    def record_remove(self, attr: str, value: Any) -> None:
        self._record_element(attr, MutationKind.REMOVE, value)

    def record_remove_key(self, attr: str, key: Any) -> None:
        self._record_element(attr, MutationKind.REMOVE_KEY, key)

    def record_increment(self, attr: str, delta: int = 1) -> None:
        """Add ``delta`` to a counter, combining with a pending delta."""
        entries = self._pending.setdefault(attr, [])
        if entries and entries[-1].kind in COUNTER_KINDS:
            delta += entries[-1].delta
            entries.pop()
        entries.append(counter_mutation(delta))

    def record_decrement(self, attr: str, delta: int = 1) -> None:
        self.record_increment(attr, -delta)

    def record_inject_at_index(self, attr: str, index: int, value: Any) -> None:
        """Assign a list slot. A None value nulls the slot, it does not remove it."""
        self._record_inject(attr, MutationKind.INJECT_AT_INDEX, index, value)

    def record_inject_at_key(self, attr: str, key: Any, value: Any) -> None:
        """Assign a map entry. A None value nulls the entry, it does not remove it."""
        self._record_inject(attr, MutationKind.INJECT_AT_KEY, key, value)

    def _record_element(self, attr: str, kind: MutationKind, element: Any) -> None:
        entries = self._pending.setdefault(attr, [])
        if entries and entries[-1].kind is MutationKind.SET:
            entries[-1] = Mutation(
                MutationKind.SET, fold_into(entries[-1].value, Mutation(kind, (element,)))
            )
            return

        opposite = SET_OPPOSITES.get(kind)
        if opposite is not None:
            entries[:] = _discard_element(entries, opposite, element)

        if kind is MutationKind.ADD:
            tracked = [e for m in entries if m.kind is kind and not m.merges_map for e in m.value]
            if element in tracked:
                return

        last = entries[-1] if entries else None
        if last is not None and last.kind is kind and not last.merges_map:
            if kind is MutationKind.PREPEND:
                elements = (element,) + last.value
            elif kind in (MutationKind.REMOVE, MutationKind.REMOVE_KEY) and element in last.value:
                return
            else:
                elements = last.value + (element,)
            entries[-1] = replace(last, value=elements)
        else:
            entries.append(Mutation(kind, (element,)))

    def _record_merge(self, attr: str, mapping: Mapping[Any, Any]) -> None:
        entries = self._pending.setdefault(attr, [])
        mutation = Mutation(MutationKind.ADD, dict(mapping))
        if entries and entries[-1].kind is MutationKind.SET:
            entries[-1] = Mutation(MutationKind.SET, fold_into(entries[-1].value, mutation))
        elif entries and entries[-1].merges_map:
            entries[-1] = Mutation(MutationKind.ADD, {**entries[-1].value, **mapping})
        else:
            entries.append(mutation)

    def _record_inject(self, attr: str, kind: MutationKind, key: Any, value: Any) -> None:
        entries = self._pending.setdefault(attr, [])
        mutation = Mutation(kind, value, key)
        if entries and entries[-1].kind is MutationKind.SET:
            entries[-1] = Mutation(MutationKind.SET, fold_into(entries[-1].value, mutation))
            return
        # One assignment per slot; a later injection into the same slot wins
        for i, existing in enumerate(entries):
            if existing.kind is kind and existing.key == key:
                entries[i] = mutation
                return
        entries.append(mutation)

    # ------------------------------------------------------------------
    # Inspection
    # ------------------------------------------------------------------

    def pending_for(self, attr: str) -> list[Mutation]:
        """Return the ordered pending mutations for an attribute."""
        return list(self._pending.get(attr, []))

    def pending(self) -> dict[str, list[Mutation]]:
        """Return all pending mutations keyed by attribute."""
        return {attr: list(entries) for attr, entries in self._pending.items() if entries}

    def attributes(self) -> list[str]:
        """Return the attributes with pending mutations, in recording order."""
        return [attr for attr, entries in self._pending.items() if entries]

    def clear(self, attr: str | None = None) -> None:
        """Forget pending mutations for one attribute or for all."""
        if attr is None:
            self._pending.clear()
        else:
            self._pending.pop(attr, None)

    def __contains__(self, attr: str) -> bool:
        return bool(self._pending.get(attr))

    def __iter__(self) -> Iterator[tuple[str, Mutation]]:
        for attr in self.attributes():
            for mutation in self._pending[attr]:
                yield attr, mutation

    def __len__(self) -> int:
        return sum(len(entries) for entries in self._pending.values())

    def __bool__(self) -> bool:
        return any(self._pending.values())


def _discard_element(entries: list[Mutation], kind: MutationKind, element: Any) -> list[Mutation]:
    """Drop ``element`` from pending ``kind`` mutations, and any left empty."""
    kept = []
    for mutation in entries:
        if mutation.kind is kind and not mutation.merges_map and element in mutation.value:
            remaining = tuple(e for e in mutation.value if e != element)
            if not remaining:
                continue
            mutation = replace(mutation, value=remaining)
        kept.append(mutation)
    return kept


def fold_into(current: Any, mutation: Mutation) -> Any:
    """Apply a collection mutation to a plain Python value.

    Used both to fold operations into a pending whole-value SET and to keep
    a model's local attribute value in step with what was recorded.
    Returns a new value; ``current`` is not modified.
    """
    kind = mutation.kind
    value = copy.copy(current)

    if kind is MutationKind.SET:
        return mutation.value
    if kind in COUNTER_KINDS:
        return (value or 0) + mutation.delta
    if kind is MutationKind.APPEND:
        return list(value or []) + list(mutation.value)
    if kind is MutationKind.PREPEND:
        return list(mutation.value) + list(value or [])
    if kind is MutationKind.ADD:
        if mutation.merges_map:
            return {**(value or {}), **mutation.value}
        if isinstance(value, list):
            return value + [e for e in mutation.value if e not in value]
        if value is None:
            value = set()
        return set(value) | set(mutation.value)
    if kind is MutationKind.REMOVE:
        if value is None:
            return None
        if isinstance(value, Mapping):
            return {k: v for k, v in value.items() if k not in mutation.value}
        if isinstance(value, (set, frozenset)):
            return set(value) - set(mutation.value)
        return [e for e in value if e not in mutation.value]
    if kind is MutationKind.REMOVE_KEY:
        if value is None:
            return None
        return {k: v for k, v in value.items() if k not in mutation.value}
    if kind is MutationKind.INJECT_AT_INDEX:
        value = list(value or [])
        if not -len(value) <= mutation.key < len(value):
            raise IndexError(f"List index {mutation.key} out of range")
        value[mutation.key] = mutation.value
        return value
    if kind is MutationKind.INJECT_AT_KEY:
        value = dict(value or {})
        value[mutation.key] = mutation.value
        return value
    raise ValueError(f"Unknown mutation kind {kind!r}")
