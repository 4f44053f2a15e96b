"""
Visibility engine: which cards pass the active filters.

Everything here is a pure function of (lists, filters, now). Nothing is
cached, so recomputing on an unchanged board gives the same answer.
"""
from enum import Enum
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Optional, Dict, Any, FrozenSet, Iterable, Mapping, Sequence

from .schema import BoardList, Card, DueDate, utc_now

NO_MEMBERS = "no-members"
NO_LABELS = "no-labels"
ANY = "any"

DUE_SOON_WINDOW = timedelta(hours=24)


class DueStatus(Enum):
    NONE = "none"
    COMPLETE = "complete"
    OVERDUE = "overdue"
    DUE_SOON = "due-soon"


def due_date_status(
    due: DueDate,
    now: Optional[datetime] = None,
    window: timedelta = DUE_SOON_WINDOW,
) -> DueStatus:
    """Completion wins over lateness; cards due beyond the window report NONE."""
    if not due or not due.timestamp:
        return DueStatus.NONE
    if due.completed:
        return DueStatus.COMPLETE
    now = now or utc_now()
    if due.timestamp < now:
        return DueStatus.OVERDUE
    if due.timestamp < now + window:
        return DueStatus.DUE_SOON
    return DueStatus.NONE


@dataclass(frozen=True)
class Filters:
    """Filter criteria. Empty sets and due_date=None mean 'any'."""
    keyword: str = ""
    members: FrozenSet[str] = field(default_factory=frozenset)
    labels: FrozenSet[str] = field(default_factory=frozenset)
    due_date: Optional[DueStatus] = None

    @property
    def is_active(self) -> bool:
        return bool(self.keyword or self.members or self.labels or self.due_date)

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "Filters":
        """Build from {keyword, members, labels, due_date}; due_date 'any' or unknown = no filter."""
        due = data.get("due_date") or ANY
        try:
            due_status = None if due == ANY else DueStatus(due)
        except ValueError:
            due_status = None
        return cls(
            keyword=(data.get("keyword") or "").strip(),
            members=frozenset(data.get("members") or ()),
            labels=frozenset(data.get("labels") or ()),
            due_date=due_status,
        )


def _passes_set_filter(values: Iterable[str], wanted: FrozenSet[str], empty_sentinel: str) -> bool:
    values = set(values)
    if not wanted:
        return True
    if empty_sentinel in wanted:
        return not values
    return bool(values & wanted)


def card_is_visible(
    card: Card,
    filters: Filters,
    now: Optional[datetime] = None,
    window: timedelta = DUE_SOON_WINDOW,
) -> bool:
    """AND across dimensions, OR within the member and label dimensions."""
    keyword = filters.keyword.lower()
    if keyword and keyword not in card.title.lower() and keyword not in card.description.lower():
        return False
    if not _passes_set_filter(card.members, filters.members, NO_MEMBERS):
        return False
    if not _passes_set_filter(card.labels, filters.labels, NO_LABELS):
        return False
    if filters.due_date and due_date_status(card.due_date, now, window) != filters.due_date:
        return False
    return True


def compute_visibility(
    lists: Iterable[BoardList],
    filters: Filters,
    now: Optional[datetime] = None,
    window: timedelta = DUE_SOON_WINDOW,
) -> Dict[str, bool]:
    """Map every card id on the board to its visibility."""
    if not filters.is_active:
        return {card.id: True for lst in lists for card in lst.cards}
    now = now or utc_now()
    return {
        card.id: card_is_visible(card, filters, now, window)
        for lst in lists
        for card in lst.cards
    }


def drop_index(
    cards: Sequence[Card],
    visibility: Mapping[str, bool],
    midpoints: Mapping[str, float],
    pointer_y: float,
    dragging_id: Optional[str] = None,
) -> int:
    """
    Insertion index in the full card sequence for a drop at pointer_y.

    midpoints holds the vertical midpoint of every rendered card. Only
    visible cards (and not the one being dragged) are drop targets: the
    first one whose midpoint lies below the pointer gives the index, its
    position among *all* cards. No match means the end of the list.
    The result is a pre-removal index, as Board.move_card expects.
    """
    for index, card in enumerate(cards):
        if card.id == dragging_id or not visibility.get(card.id, True):
            continue
        midpoint = midpoints.get(card.id)
        if midpoint is not None and pointer_y < midpoint:
            return index
    return len(cards)
