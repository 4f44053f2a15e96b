"""
Watch subsystem: turns card changes into notifications for the current user.

The board is single-user, so only notifications addressed to the acting
user are ever materialized. A subscriber other than the acting user gets
nothing, comment notifications for third-party watchers included.

Automation never reaches this module; the mutation API only calls in for
user-originated changes.
"""
import copy
import logging
import re
from typing import Optional, List, Iterable

from .schema import Card, BoardList, Member, Notification, generate_id

logger = logging.getLogger(__name__)

MENTION_RE = re.compile(r"@(\w+)")


def watched_change_text(before: Card, after: Card) -> Optional[str]:
    """Describe the first watched field that changed, or None."""
    if before.description != after.description:
        return "Description was updated"
    if before.due_date.timestamp != after.due_date.timestamp:
        return "Due date was changed"
    if before.due_date.completed != after.due_date.completed:
        if after.due_date.completed:
            return "Due date was marked complete"
        return "Due date was marked incomplete"
    return None


def mentioned_names(text: str) -> List[str]:
    return MENTION_RE.findall(text or "")


class NotificationFeed:
    """Notifications, newest first. Entries are only ever marked read."""

    def __init__(self):
        self._items: List[Notification] = []

    def add(self, text: str, card_id: str, list_id: str) -> Notification:
        notification = Notification(id=generate_id("notif"), text=text, card_id=card_id, list_id=list_id)
        self._items.insert(0, notification)
        logger.debug(f"Notification: {text}")
        return notification

    def all(self) -> List[Notification]:
        return copy.deepcopy(self._items)

    def get(self, notification_id: str) -> Optional[Notification]:
        for n in self._items:
            if n.id == notification_id:
                return n
        return None

    def unread_count(self) -> int:
        return sum(1 for n in self._items if not n.read)

    def mark_read(self, notification_id: str) -> bool:
        n = self.get(notification_id)
        if not n:
            return False
        n.read = True
        return True

    def mark_all_read(self) -> int:
        changed = 0
        for n in self._items:
            if not n.read:
                n.read = True
                changed += 1
        return changed

    def __len__(self) -> int:
        return len(self._items)


class WatchSubsystem:
    """Derives notifications from before/after card states."""

    def __init__(self, feed: NotificationFeed, user_id: str):
        self.feed = feed
        self.user_id = user_id

    def _is_watching(self, card: Card) -> bool:
        return bool(self.user_id) and self.user_id in card.subscribers

    def on_card_updated(self, before: Card, after: Card, list_id: str) -> List[Notification]:
        created = []
        if self.user_id and self.user_id in after.members and self.user_id not in before.members:
            created.append(self.feed.add(f'You were added to "{after.title}"', after.id, list_id))

        change = watched_change_text(before, after)
        if change and self._is_watching(after):
            created.append(self.feed.add(f'{change} on "{after.title}"', after.id, list_id))
        return created

    def on_card_moved(self, card: Card, dest: BoardList) -> List[Notification]:
        if not self._is_watching(card):
            return []
        return [self.feed.add(f'"{card.title}" was moved to {dest.title}', card.id, dest.id)]

    def on_comment(self, card: Card, list_id: str, text: str, members: Iterable[Member]) -> List[Notification]:
        by_name = {m.name: m for m in members}
        created = []
        for name in mentioned_names(text):
            member = by_name.get(name)
            if member and member.id == self.user_id:
                created.append(
                    self.feed.add(f'You were mentioned in a comment on "{card.title}"', card.id, list_id)
                )
        return created
