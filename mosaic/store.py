"""
Board store: the single in-memory owner of the list/card tree.

Readers get deep copies (snapshot(), get_card(), ...). The live tree is
only reachable through the underscore accessors, which exist for the
mutation API in board.py and nothing else.
"""
import copy
import logging
from typing import List, Optional, Dict, Any, Tuple, Iterable

from .schema import BoardList, Card, Label, Member

logger = logging.getLogger(__name__)


class BoardStore:
    """Ordered lists of cards plus the short-id counter."""

    def __init__(self, lists: Optional[Iterable[BoardList]] = None, last_short_id: int = 0):
        self._lists: List[BoardList] = list(lists or [])
        self._last_short_id = last_short_id

    @classmethod
    def from_documents(cls, raw_lists: Iterable[Dict[str, Any]]) -> "BoardStore":
        """
        Rebuild a store from persisted list records.

        Cards without a short id (legacy records) are numbered after the
        highest existing short id, in board order, and the counter is taken
        from the same pass so that it can never hand out a used number.
        """
        lists = [BoardList.from_dict(raw) for raw in raw_lists]
        cards = [card for lst in lists for card in lst.cards]
        highest = max((c.short_id for c in cards), default=0)
        backfilled = 0
        for card in cards:
            if card.short_id <= 0:
                highest += 1
                card.short_id = highest
                backfilled += 1
        if backfilled:
            logger.info(f"Assigned short ids to {backfilled} legacy card(s)")
        return cls(lists, last_short_id=highest)

    # ── Reads ────────────────────────────────────────────────────────────────

    @property
    def last_short_id(self) -> int:
        return self._last_short_id

    def snapshot(self) -> List[BoardList]:
        """Deep copy of the whole tree."""
        return copy.deepcopy(self._lists)

    def list_ids(self) -> List[str]:
        return [lst.id for lst in self._lists]

    def get_list(self, list_id: str) -> Optional[BoardList]:
        lst = self._list(list_id)
        return copy.deepcopy(lst) if lst else None

    def get_card(self, card_id: str) -> Optional[Card]:
        found = self._locate(card_id)
        if not found:
            return None
        lst, index = found
        return copy.deepcopy(lst.cards[index])

    def find_card(self, card_id: str) -> Optional[Tuple[str, int]]:
        """(list_id, index) of a card, or None."""
        found = self._locate(card_id)
        if not found:
            return None
        lst, index = found
        return lst.id, index

    def card_count(self) -> int:
        return sum(len(lst.cards) for lst in self._lists)

    def all_cards(self) -> List[Card]:
        return [copy.deepcopy(c) for lst in self._lists for c in lst.cards]

    def link_candidates(self, card_id: str, query: str) -> List[Card]:
        """Cards that could be linked to card_id, matched on title or short id."""
        query = query.strip().lower()
        card = self._locate(card_id)
        if not query or not card:
            return []
        lst, index = card
        source = lst.cards[index]
        return [
            copy.deepcopy(c)
            for other in self._lists
            for c in other.cards
            if c.id != source.id
            and c.id not in source.linked_cards
            and (query in c.title.lower() or query in str(c.short_id))
        ]

    def stats(self, labels: Iterable[Label] = (), members: Iterable[Member] = ()) -> Dict[str, Any]:
        """Card counts per list, per member and per label (zero counts omitted for the latter two)."""
        cards = [c for lst in self._lists for c in lst.cards]
        by_member = [
            {"id": m.id, "name": m.name, "count": sum(1 for c in cards if m.id in c.members)}
            for m in members
        ]
        by_label = [
            {"id": l.id, "text": l.text, "color": l.color, "count": sum(1 for c in cards if l.id in c.labels)}
            for l in labels
        ]
        return {
            "total": len(cards),
            "by_list": [{"id": lst.id, "title": lst.title, "count": len(lst.cards)} for lst in self._lists],
            "by_member": [m for m in by_member if m["count"] > 0],
            "by_label": [l for l in by_label if l["count"] > 0],
        }

    def to_dict(self) -> List[Dict[str, Any]]:
        return [lst.to_dict() for lst in self._lists]

    # ── Live access for the mutation API ─────────────────────────────────────

    def _list(self, list_id: str) -> Optional[BoardList]:
        for lst in self._lists:
            if lst.id == list_id:
                return lst
        return None

    def _locate(self, card_id: str) -> Optional[Tuple[BoardList, int]]:
        for lst in self._lists:
            index = lst.index_of(card_id)
            if index != -1:
                return lst, index
        return None

    def _next_short_id(self) -> int:
        self._last_short_id += 1
        return self._last_short_id

    def _append_list(self, lst: BoardList) -> None:
        self._lists.append(lst)

    def _remove_list(self, list_id: str) -> Optional[BoardList]:
        for i, lst in enumerate(self._lists):
            if lst.id == list_id:
                return self._lists.pop(i)
        return None

    def _reset(self) -> None:
        self._lists = []
        self._last_short_id = 0
