"""
Mutation API: the only writer of the board store.

Every operation runs inside a mutation context (see context.py). A
user-originated call updates the store, then lets the watch subsystem
diff the card, then dispatches automation triggers, in that order.
Automation and scheduled calls stop after the store update.

Contexts nest. A nested call inherits the enclosing origin unless it asks
for automation explicitly, so an automated call chain can never be turned
back into a user one. When the outermost context exits the mutation has
settled and the board is persisted.

Missing lists, cards or indices are no-ops: nothing is raised to the caller.
"""
import copy
import dataclasses
import logging
from contextlib import contextmanager
from datetime import datetime, timedelta
from typing import Optional, List, Dict, Any, Iterable, Iterator, Tuple

from .automation import AutomationEngine, Automations, CardMoved, LabelAdded
from .context import MutationContext, MutationOrigin, USER_CONTEXT
from .notifications import NotificationFeed, WatchSubsystem
from .persistence import BoardPersistence
from .schema import (
    Activity, Attachment, BoardList, Card, Comment, CustomFieldDefinition, FieldType,
    Label, Member, Notification, coerce_updates, generate_id,
)
from .store import BoardStore
from .visibility import DUE_SOON_WINDOW, Filters, compute_visibility

logger = logging.getLogger(__name__)

STORAGE_WARNING = "Could not save board data. Storage might be full."


def adjust_dest_index(source_list_id: str, source_index: int, dest_list_id: str, dest_index: int) -> int:
    """
    Destination index once the card has been removed from its source.

    Within one list, removing a card shifts every later card up by one, so
    a destination after the source moves back by one.
    """
    if source_list_id == dest_list_id and source_index < dest_index:
        return dest_index - 1
    return dest_index


class Board:
    """A board: its store, registries, notification feed and automation engine."""

    def __init__(
        self,
        store: Optional[BoardStore] = None,
        labels: Iterable[Label] = (),
        members: Iterable[Member] = (),
        current_user_id: str = "",
        custom_fields: Iterable[CustomFieldDefinition] = (),
        automations: Optional[Automations] = None,
        persistence: Optional[BoardPersistence] = None,
        due_soon_window: timedelta = DUE_SOON_WINDOW,
    ):
        self.store = store or BoardStore()
        self.labels: List[Label] = list(labels)
        self.members: List[Member] = list(members)
        self.current_user_id = current_user_id or (self.members[0].id if self.members else "")
        self.custom_fields: List[CustomFieldDefinition] = list(custom_fields)
        self.feed = NotificationFeed()
        self.watch = WatchSubsystem(self.feed, self.current_user_id)
        self.automation = AutomationEngine(self, automations)
        self.persistence = persistence
        self.due_soon_window = due_soon_window
        self.storage_warning: Optional[str] = None

        self._context = USER_CONTEXT
        self._depth = 0
        self._dirty = False

    @classmethod
    def from_config(cls, cfg) -> "Board":
        """Open the board described by a Config: rehydrate state, load automations."""
        persistence = BoardPersistence(cfg.db_path, max_pages=cfg.max_pages)
        board = cls(
            store=persistence.load_store(),
            labels=[Label.from_dict(l) for l in cfg.labels],
            members=[Member.from_dict(m) for m in cfg.members],
            current_user_id=cfg.current_user_id,
            custom_fields=persistence.load_custom_fields(),
            automations=Automations.load(cfg.automations_path),
            persistence=persistence,
            due_soon_window=timedelta(hours=cfg.due_soon_hours),
        )
        logger.info(
            f"Board loaded: {len(board.store.list_ids())} list(s), "
            f"{board.store.card_count()} card(s), {len(board.automation.automations.rules)} rule(s)"
        )
        return board

    # ── Mutation context ─────────────────────────────────────────────────────

    @property
    def context(self) -> MutationContext:
        return self._context

    @contextmanager
    def acting(self, origin: MutationOrigin) -> Iterator[MutationContext]:
        """Run the enclosed calls under origin; persist when the outermost context exits."""
        previous = self._context
        if previous.is_automated and origin is MutationOrigin.USER:
            origin = previous.origin
        self._context = MutationContext(origin)
        self._depth += 1
        try:
            yield self._context
        finally:
            self._context = previous
            self._depth -= 1
            if self._depth == 0 and self._dirty:
                self._dirty = False
                self._persist()

    def _mutation(self, is_automated: bool):
        return self.acting(MutationOrigin.AUTOMATION if is_automated else self._context.origin)

    def _persist(self) -> None:
        if self.persistence is None:
            return
        if self.persistence.save_board(self.store.to_dict()):
            return
        if self.storage_warning is None:
            self.storage_warning = STORAGE_WARNING
            logger.warning(STORAGE_WARNING)

    # ── Lists ────────────────────────────────────────────────────────────────

    def create_list(self, title: str) -> Optional[BoardList]:
        title = (title or "").strip()
        if not title:
            return None
        lst = BoardList(id=generate_id("list"), title=title)
        with self._mutation(False):
            self.store._append_list(lst)
            self._dirty = True
        return copy.deepcopy(lst)

    def rename_list(self, list_id: str, title: str) -> bool:
        title = (title or "").strip()
        with self._mutation(False):
            lst = self.store._list(list_id)
            if not lst or not title:
                logger.debug(f"rename_list: nothing to do for {list_id}")
                return False
            lst.title = title
            self._dirty = True
        return True

    def delete_list(self, list_id: str) -> bool:
        """Remove a list together with its cards."""
        with self._mutation(False):
            removed = self.store._remove_list(list_id)
            if removed is None:
                logger.debug(f"delete_list: list {list_id} not found")
                return False
            self._dirty = True
        return True

    # ── Cards ────────────────────────────────────────────────────────────────

    def create_card(self, list_id: str, title: str) -> Optional[Card]:
        title = (title or "").strip()
        with self._mutation(False):
            lst = self.store._list(list_id)
            if not lst or not title:
                logger.debug(f"create_card: nothing to do for list {list_id}")
                return None
            card = Card(
                id=generate_id("card"),
                title=title,
                short_id=self.store._next_short_id(),
                activity=[Activity.create("created this card.")],
            )
            lst.cards.append(card)
            self._dirty = True
        return copy.deepcopy(card)

    def update_card(self, list_id: str, card_id: str, updates: Dict[str, Any], is_automated: bool = False) -> bool:
        """
        Merge updates into a card.

        User origin: the watch subsystem sees the before/after pair and every
        label that was not on the card before fires a LabelAdded trigger.
        """
        accepted, ignored = coerce_updates(updates)
        if ignored:
            logger.warning(f"Ignoring non-updatable card field(s): {', '.join(sorted(ignored))}")
        if not accepted:
            return False

        with self._mutation(is_automated) as ctx:
            lst = self.store._list(list_id)
            index = lst.index_of(card_id) if lst else -1
            if index == -1:
                logger.debug(f"update_card: card {card_id} not in list {list_id}")
                return False

            before = lst.cards[index]
            after = dataclasses.replace(copy.deepcopy(before), **copy.deepcopy(accepted))
            lst.cards[index] = after
            self._dirty = True

            if ctx.is_automated:
                return True
            self.watch.on_card_updated(before, after, list_id)
            for label_id in sorted(after.labels - before.labels):
                self.automation.dispatch(LabelAdded(label_id), card_id)
        return True

    def move_card(
        self,
        source_list_id: str,
        source_index: int,
        dest_list_id: str,
        dest_index: int,
        is_automated: bool = False,
    ) -> bool:
        """
        Move the card at source_index to dest_index (a pre-removal index).

        Remove, adjust the index for same-list moves, clamp, insert. Identical
        source and destination coordinates do nothing at all.
        """
        if source_list_id == dest_list_id and source_index == dest_index:
            return False
        insert_at = adjust_dest_index(source_list_id, source_index, dest_list_id, dest_index)

        with self._mutation(is_automated) as ctx:
            source = self.store._list(source_list_id)
            dest = self.store._list(dest_list_id)
            if not source or not dest or not 0 <= source_index < len(source.cards):
                logger.debug(f"move_card: invalid source {source_list_id}[{source_index}] or dest {dest_list_id}")
                return False

            card = source.cards.pop(source_index)
            dest.cards.insert(max(0, min(insert_at, len(dest.cards))), card)
            self._dirty = True

            if ctx.is_automated:
                return True
            if source is not dest:
                card.activity.insert(0, Activity.create(f"moved this card from {source.title} to {dest.title}"))
                self.watch.on_card_moved(card, dest)
            self.automation.dispatch(CardMoved(dest.id), card.id)
        return True

    def delete_card(self, list_id: str, card_id: str) -> bool:
        with self._mutation(False):
            lst = self.store._list(list_id)
            index = lst.index_of(card_id) if lst else -1
            if index == -1:
                logger.debug(f"delete_card: card {card_id} not in list {list_id}")
                return False
            del lst.cards[index]
            self._dirty = True
        return True

    def add_comment(
        self,
        list_id: str,
        card_id: str,
        text: str,
        attachments: Iterable[Attachment] = (),
    ) -> Optional[Comment]:
        """Post a comment as the current user and scan it for @mentions."""
        text = (text or "").strip()
        attachments = [copy.deepcopy(a) for a in attachments]
        if not text and not attachments:
            return None

        with self._mutation(False) as ctx:
            lst = self.store._list(list_id)
            index = lst.index_of(card_id) if lst else -1
            if index == -1:
                logger.debug(f"add_comment: card {card_id} not in list {list_id}")
                return None
            card = lst.cards[index]
            comment = Comment(id=generate_id("comment"), author_id=self.current_user_id, text=text, attachments=attachments)
            card.comments.insert(0, comment)

            author = self.get_member(self.current_user_id)
            name = author.name if author else "User"
            if attachments:
                card.activity.insert(0, Activity.create(
                    f"{name} added a comment and attached {len(attachments)} file(s)."
                ))
            else:
                card.activity.insert(0, Activity.create(f"{name} added a comment."))
            self._dirty = True

            if not ctx.is_automated:
                self.watch.on_comment(card, list_id, text, self.members)
        return copy.deepcopy(comment)

    # ── Registries ───────────────────────────────────────────────────────────

    def get_label(self, label_id: str) -> Optional[Label]:
        return next((l for l in self.labels if l.id == label_id), None)

    def get_member(self, member_id: str) -> Optional[Member]:
        return next((m for m in self.members if m.id == member_id), None)

    def invite_member(self, email: str) -> Optional[Member]:
        """Register a member named after the local part of an email address."""
        local = (email or "").split("@")[0].strip()
        if not local:
            return None
        member = Member(id=generate_id("member"), name=local[0].upper() + local[1:])
        self.members.append(member)
        logger.info(f"{member.name} has been invited to the board")
        return member

    def add_custom_field(self, name: str, field_type: str = "text", options: Iterable[str] = ()) -> Optional[CustomFieldDefinition]:
        name = (name or "").strip()
        if not name:
            return None
        kind = FieldType.from_str(field_type)
        definition = CustomFieldDefinition(
            id=generate_id("field"),
            name=name,
            type=kind,
            options=[o for o in options if o] if kind is FieldType.DROPDOWN else [],
        )
        self.custom_fields.append(definition)
        self._save_custom_fields()
        return definition

    def delete_custom_field(self, field_id: str) -> bool:
        remaining = [f for f in self.custom_fields if f.id != field_id]
        if len(remaining) == len(self.custom_fields):
            return False
        self.custom_fields = remaining
        self._save_custom_fields()
        return True

    def _save_custom_fields(self) -> None:
        if self.persistence is not None:
            self.persistence.save_custom_fields([f.to_dict() for f in self.custom_fields])

    # ── Notifications ────────────────────────────────────────────────────────

    def notifications(self) -> List[Notification]:
        return self.feed.all()

    def mark_notification_read(self, notification_id: str) -> bool:
        return self.feed.mark_read(notification_id)

    def mark_all_notifications_read(self) -> int:
        return self.feed.mark_all_read()

    def open_notification(self, notification_id: str) -> Optional[Tuple[str, int]]:
        """
        Locate the card a notification points at and mark it read.

        Returns (list_id, card_index), or None if the notification, its list
        or its card no longer exists (the notification stays unread then).
        """
        notification = self.feed.get(notification_id)
        if not notification:
            return None
        lst = self.store._list(notification.list_id)
        index = lst.index_of(notification.card_id) if lst else -1
        if index == -1:
            return None
        self.feed.mark_read(notification_id)
        return lst.id, index

    # ── Automation surface ───────────────────────────────────────────────────

    def set_automations(self, automations: Automations) -> None:
        self.automation.automations = automations

    def run_scheduled(self, now: Optional[datetime] = None) -> int:
        return self.automation.run_scheduled(now)

    def press_card_button(self, button_id: str, card_id: str) -> bool:
        return self.automation.press_card_button(button_id, card_id)

    def press_board_button(self, button_id: str) -> int:
        return self.automation.press_board_button(button_id)

    # ── Reads ────────────────────────────────────────────────────────────────

    def snapshot(self) -> List[BoardList]:
        return self.store.snapshot()

    def visibility(self, filters: Optional[Filters] = None, now: Optional[datetime] = None) -> Dict[str, bool]:
        return compute_visibility(self.store.snapshot(), filters or Filters(), now, self.due_soon_window)

    def stats(self) -> Dict[str, Any]:
        return self.store.stats(self.labels, self.members)

    def link_candidates(self, card_id: str, query: str) -> List[Card]:
        return self.store.link_candidates(card_id, query)

    # ── Housekeeping ─────────────────────────────────────────────────────────

    def clear_data(self) -> None:
        """Forget the persisted board and custom fields and start empty."""
        if self.persistence is not None:
            self.persistence.clear()
        self.store._reset()
        self.custom_fields = []
        self.storage_warning = None
        logger.info("Board data cleared")
