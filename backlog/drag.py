"""
Drag controller: classifies a finished drag into a move intent.

State machine:
  Idle --DragStart--> Dragging --DragEnd--> Idle   (emits one intent)
                       Dragging --DragCancel--> Idle (emits nothing)

transition() is a pure function of (state, event, items) so it can be
driven by pointer events, keyboard events, or tests alike. The controller
never mutates the order model; the reconciliation engine does that.
"""
import logging
from dataclasses import dataclass, replace
from enum import Enum
from typing import List, Optional, Sequence, Tuple, Union

from .schema import Category, Issue

logger = logging.getLogger(__name__)

EMPTY_ZONE_PREFIX = "empty-"


class DragPhase(Enum):
    IDLE = "idle"
    DRAGGING = "dragging"


@dataclass(frozen=True)
class DragState:
    phase: DragPhase = DragPhase.IDLE
    item_id: Optional[str] = None
    snapshot: Optional[Issue] = None   # Copy of the issue at pickup

    @property
    def is_dragging(self) -> bool:
        return self.phase == DragPhase.DRAGGING


IDLE = DragState()


# ── Events ───────────────────────────────────────────────────────────────────

@dataclass(frozen=True)
class DragStart:
    item_id: str


@dataclass(frozen=True)
class DragEnd:
    """Drop on an issue (target_id) or on an empty category zone."""
    target_id: Optional[str] = None
    target_category: Optional[Category] = None

    @classmethod
    def from_target(cls, target: Optional[str]) -> "DragEnd":
        """Parse a raw drop target id; "empty-<category>" names a drop zone."""
        if target and target.startswith(EMPTY_ZONE_PREFIX):
            value = target[len(EMPTY_ZONE_PREFIX):]
            try:
                return cls(target_category=Category(value))
            except ValueError:
                return cls()
        return cls(target_id=target or None)


@dataclass(frozen=True)
class DragCancel:
    pass


DragEvent = Union[DragStart, DragEnd, DragCancel]


# ── Intents ──────────────────────────────────────────────────────────────────

@dataclass(frozen=True)
class NoOp:
    item_id: str


@dataclass(frozen=True)
class SameCategoryReorder:
    item_id: str
    source_index: int    # full-list index
    target_index: int    # full-list index


@dataclass(frozen=True)
class CrossCategoryReorder:
    item_id: str
    new_category: Category
    target_item_id: str


@dataclass(frozen=True)
class DropIntoEmptyCategory:
    item_id: str
    new_category: Category
    position: str = "end"


MoveIntent = Union[NoOp, SameCategoryReorder, CrossCategoryReorder, DropIntoEmptyCategory]


def _index(items: Sequence[Issue], issue_id: str) -> int:
    for idx, issue in enumerate(items):
        if issue.id == issue_id:
            return idx
    return -1


def transition(
    state: DragState,
    event: DragEvent,
    items: Sequence[Issue],
) -> Tuple[DragState, Optional[MoveIntent]]:
    """Advance the drag state machine.

    `items` is the full list in display order. Returns the next state and
    the intent to hand to the reconciliation engine (None for no intent).
    """
    if isinstance(event, DragStart):
        if state.is_dragging:
            logger.debug(f"DragStart({event.item_id}) ignored: already dragging {state.item_id}")
            return state, None
        idx = _index(items, event.item_id)
        if idx < 0:
            logger.debug(f"DragStart on unknown issue {event.item_id}")
            return IDLE, None
        return DragState(DragPhase.DRAGGING, event.item_id, replace(items[idx], tags=list(items[idx].tags))), None

    if not state.is_dragging:
        return IDLE, None

    if isinstance(event, DragCancel):
        return IDLE, None

    if isinstance(event, DragEnd):
        return IDLE, classify_drop(state, event, items)

    return state, None


def classify_drop(state: DragState, event: DragEnd, items: Sequence[Issue]) -> Optional[MoveIntent]:
    """Turn a drop into one intent. A drop with no target is a cancel."""
    item_id = state.item_id
    if event.target_category is not None:
        return DropIntoEmptyCategory(item_id, event.target_category)
    if not event.target_id:
        return None
    if event.target_id == item_id:
        return NoOp(item_id)

    source_idx = _index(items, item_id)
    target_idx = _index(items, event.target_id)
    if source_idx < 0 or target_idx < 0:
        # Let the engine report it; classification only needs what it can see
        missing = item_id if source_idx < 0 else event.target_id
        logger.debug(f"Drop references unknown issue {missing}")
        return CrossCategoryReorder(item_id, state.snapshot.category, event.target_id)

    source, target = items[source_idx], items[target_idx]
    if source.category == target.category:
        return SameCategoryReorder(item_id, source_idx, target_idx)
    return CrossCategoryReorder(item_id, target.category, target.id)


class DragController:
    """Holds the current DragState for one session."""

    def __init__(self):
        self.state: DragState = IDLE

    @property
    def snapshot(self) -> Optional[Issue]:
        return self.state.snapshot

    def dispatch(self, event: DragEvent, items: List[Issue]) -> Optional[MoveIntent]:
        self.state, intent = transition(self.state, event, items)
        return intent

    def start(self, item_id: str, items: List[Issue]) -> bool:
        self.dispatch(DragStart(item_id), items)
        return self.state.is_dragging and self.state.item_id == item_id

    def end(self, target: Optional[str], items: List[Issue]) -> Optional[MoveIntent]:
        return self.dispatch(DragEnd.from_target(target), items)

    def cancel(self) -> None:
        self.state = IDLE
