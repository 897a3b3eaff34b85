"""
Two-phase reorder: the local move always succeeds; persisting it may fail and is reported separately.
"""
from dataclasses import dataclass, field
from typing import Any, Optional, Sequence, TypeVar

T = TypeVar("T")


def move_item(items: Sequence[T], from_index: int, to_index: int) -> list[T]:
    """Return a copy with items[from_index] moved to to_index (drag-and-drop semantics)."""
    out = list(items)
    if not out:
        return out
    n = len(out)
    if not -n <= from_index < n:
        raise IndexError(f"from_index {from_index} out of range for {n} items")
    to_index = max(0, min(to_index, n - 1))
    item = out.pop(from_index)
    out.insert(to_index, item)
    return out


@dataclass
class ReorderResult:
    # Phase 1: new local order, always available
    order: list[Any] = field(default_factory=list)
    # Phase 2: whether the order reached the store
    persisted: bool = False
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.error is None

    def to_dict(self) -> dict:
        return {
            "order": [o.to_dict() if hasattr(o, "to_dict") else o for o in self.order],
            "persisted": self.persisted,
            "error": self.error,
        }
