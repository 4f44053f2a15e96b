"""
Tests for the mutation API: lists, cards, moves, comments, registries.
"""

from datetime import datetime

import pytest

from mosaic.board import STORAGE_WARNING, adjust_dest_index
from mosaic.schema import Attachment, AttachmentKind


def _titles(board, list_id):
    return [c.title for c in board.store.get_list(list_id).cards]


def _fill(board, list_id, *titles):
    return [board.create_card(list_id, t) for t in titles]


# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
# Lists
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━


def test_list_lifecycle(board, list_ids):
    """Test creating, renaming and deleting lists"""
    todo, doing, done = list_ids
    assert [l.title for l in board.snapshot()] == ["To Do", "Doing", "Done"]

    assert board.rename_list(doing, "In Progress")
    assert board.store.get_list(doing).title == "In Progress"

    _fill(board, todo, "A", "B")
    assert board.delete_list(todo)
    assert board.store.list_ids() == [doing, done]
    assert board.store.card_count() == 0


def test_list_not_found_is_noop(board):
    """Test operations on unknown lists do nothing and raise nothing"""
    assert not board.rename_list("missing", "X")
    assert not board.delete_list("missing")
    assert board.create_card("missing", "A") is None
    assert board.create_list("   ") is None


# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
# Cards
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━


def test_create_card(board, list_ids):
    """Test new cards get a short id and a creation activity"""
    todo = list_ids[0]
    card = board.create_card(todo, "  Write tests  ")
    assert card.title == "Write tests"
    assert card.short_id == 1
    assert [a.text for a in card.activity] == ["created this card."]


def test_short_ids_strictly_increase(board, list_ids):
    """Test short ids never repeat, even after deletions"""
    todo, doing, _ = list_ids
    seen = []
    for i in range(5):
        card = board.create_card(todo if i % 2 else doing, f"Card {i}")
        seen.append(card.short_id)
        if i % 2:
            board.delete_card(todo, card.id)
    assert seen == sorted(seen)
    assert len(set(seen)) == len(seen)


def test_delete_card(board, list_ids):
    todo = list_ids[0]
    a, b = _fill(board, todo, "A", "B")
    assert board.delete_card(todo, a.id)
    assert _titles(board, todo) == ["B"]
    assert not board.delete_card(todo, a.id)


def test_returned_card_is_detached(board, list_ids):
    """Test mutating a returned card does not touch the board"""
    todo = list_ids[0]
    card = board.create_card(todo, "A")
    card.title = "Changed"
    assert _titles(board, todo) == ["A"]


# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
# Moves
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━


def test_adjust_dest_index():
    """Test same-list forward moves shift back by one"""
    assert adjust_dest_index("a", 0, "a", 2) == 1
    assert adjust_dest_index("a", 2, "a", 0) == 0
    assert adjust_dest_index("a", 0, "b", 2) == 2


@pytest.mark.parametrize("source_index,dest_index,expected", [
    (0, 2, ["B", "A", "C", "D"]),
    (0, 4, ["B", "C", "D", "A"]),
    (3, 0, ["D", "A", "B", "C"]),
    (1, 3, ["A", "C", "B", "D"]),
])
def test_same_list_reorder(board, list_ids, source_index, dest_index, expected):
    """Test the card lands just before the card previously at dest_index"""
    todo = list_ids[0]
    _fill(board, todo, "A", "B", "C", "D")
    assert board.move_card(todo, source_index, todo, dest_index)
    assert _titles(board, todo) == expected


def test_noop_move_changes_nothing(board, list_ids):
    """Test moving a card onto itself leaves order, activity and notifications unchanged"""
    todo = list_ids[0]
    a, _ = _fill(board, todo, "A", "B")
    board.update_card(todo, a.id, {"subscribers": ["member-1"]})
    before = board.snapshot()
    notes = len(board.notifications())

    assert not board.move_card(todo, 0, todo, 0)
    assert board.snapshot() == before
    assert len(board.notifications()) == notes


def test_cross_list_move(board, list_ids):
    """Test moving between lists records activity"""
    todo, doing, _ = list_ids
    a, _ = _fill(board, todo, "A", "B")
    _fill(board, doing, "X")

    assert board.move_card(todo, 0, doing, 1)
    assert _titles(board, todo) == ["B"]
    assert _titles(board, doing) == ["X", "A"]
    moved = board.store.get_card(a.id)
    assert moved.activity[0].text == "moved this card from To Do to Doing"


def test_move_clamps_destination(board, list_ids):
    """Test an out-of-range destination appends"""
    todo, doing, _ = list_ids
    _fill(board, todo, "A")
    _fill(board, doing, "X")
    assert board.move_card(todo, 0, doing, 99)
    assert _titles(board, doing) == ["X", "A"]


def test_move_preserves_card_count(board, list_ids):
    """Test every valid move keeps the card on the board exactly once"""
    todo, doing, done = list_ids
    cards = _fill(board, todo, "A", "B", "C") + _fill(board, doing, "D")
    moves = [(todo, 0, done, 0), (todo, 1, todo, 0), (doing, 0, todo, 2), (done, 0, doing, 5)]
    for move in moves:
        board.move_card(*move)
        assert board.store.card_count() == 4
        for card in cards:
            homes = [l.id for l in board.snapshot() if l.index_of(card.id) != -1]
            assert len(homes) == 1


def test_move_invalid_source_is_noop(board, list_ids):
    todo, doing, _ = list_ids
    _fill(board, todo, "A")
    assert not board.move_card(todo, 5, doing, 0)
    assert not board.move_card("missing", 0, doing, 0)
    assert not board.move_card(todo, 0, "missing", 0)
    assert _titles(board, todo) == ["A"]


def test_move_notifies_watcher(board, list_ids):
    """Test a watched card moving to another list notifies"""
    todo, doing, _ = list_ids
    a = board.create_card(todo, "A")
    board.update_card(todo, a.id, {"subscribers": ["member-1"]})
    board.move_card(todo, 0, doing, 0)
    assert board.notifications()[0].text == '"A" was moved to Doing'
    assert board.notifications()[0].list_id == doing


# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
# Updates and notifications
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━


def test_update_card_merges_fields(board, list_ids):
    todo = list_ids[0]
    a = board.create_card(todo, "A")
    assert board.update_card(todo, a.id, {"description": "details", "labels": ["label-1"]})
    card = board.store.get_card(a.id)
    assert card.description == "details"
    assert card.labels == {"label-1"}
    assert card.short_id == a.short_id


def test_update_card_ignores_unknown_fields(board, list_ids):
    """Test identity fields are never overwritten"""
    todo = list_ids[0]
    a = board.create_card(todo, "A")
    assert not board.update_card(todo, a.id, {"id": "other", "short_id": 42})
    assert board.store.get_card(a.id).short_id == a.short_id


def test_update_missing_card_is_noop(board, list_ids):
    assert not board.update_card(list_ids[0], "missing", {"title": "X"})


def test_watched_description_change_notifies(board, list_ids):
    """Test subscribers hear about description and due date changes"""
    todo = list_ids[0]
    a = board.create_card(todo, "A")
    board.update_card(todo, a.id, {"description": "unwatched"})
    assert board.notifications() == []

    board.update_card(todo, a.id, {"subscribers": ["member-1"]})
    board.update_card(todo, a.id, {"description": "watched"})
    board.update_card(todo, a.id, {"due_date": {"timestamp": "2024-05-02T00:00:00Z"}})
    board.update_card(todo, a.id, {"due_date": {"timestamp": "2024-05-02T00:00:00Z", "completed": True}})
    texts = [n.text for n in board.notifications()]
    assert texts == [
        'Due date was marked complete on "A"',
        'Due date was changed on "A"',
        'Description was updated on "A"',
    ]
    assert board.feed.unread_count() == 3


def test_added_as_member_notifies(board, list_ids):
    todo = list_ids[0]
    a = board.create_card(todo, "A")
    board.update_card(todo, a.id, {"members": ["member-2"]})
    assert board.notifications() == []
    board.update_card(todo, a.id, {"members": ["member-1", "member-2"]})
    assert board.notifications()[0].text == 'You were added to "A"'


def test_open_notification(board, list_ids):
    """Test opening a notification locates its card and marks it read"""
    todo, doing, _ = list_ids
    _fill(board, doing, "X")
    a = board.create_card(todo, "A")
    board.update_card(todo, a.id, {"subscribers": ["member-1"]})
    board.move_card(todo, 0, doing, 1)
    note = board.notifications()[0]

    assert board.open_notification(note.id) == (doing, 1)
    assert board.feed.unread_count() == 0
    assert board.open_notification("missing") is None


def test_open_notification_for_deleted_card(board, list_ids):
    todo = list_ids[0]
    a = board.create_card(todo, "A")
    board.update_card(todo, a.id, {"members": ["member-1"]})
    note = board.notifications()[0]
    board.delete_card(todo, a.id)
    assert board.open_notification(note.id) is None
    assert not board.notifications()[0].read


def test_mark_all_notifications_read(board, list_ids):
    todo = list_ids[0]
    a = board.create_card(todo, "A")
    board.update_card(todo, a.id, {"members": ["member-1"], "subscribers": ["member-1"]})
    board.update_card(todo, a.id, {"description": "new"})
    assert board.mark_all_notifications_read() == 2
    assert board.mark_all_notifications_read() == 0


# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
# Comments
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━


def test_add_comment(board, list_ids):
    """Test comments go newest first with an activity entry"""
    todo = list_ids[0]
    a = board.create_card(todo, "A")
    board.add_comment(todo, a.id, "first")
    comment = board.add_comment(todo, a.id, "second")
    card = board.store.get_card(a.id)
    assert [c.text for c in card.comments] == ["second", "first"]
    assert comment.author_id == "member-1"
    assert card.activity[0].text == "Alice added a comment."


def test_add_comment_with_attachments(board, list_ids):
    todo = list_ids[0]
    a = board.create_card(todo, "A")
    att = Attachment(id="att-1", name="brief.pdf", kind=AttachmentKind.FILE, payload_ref="data:application/pdf;base64,AA")
    board.add_comment(todo, a.id, "", [att])
    card = board.store.get_card(a.id)
    assert card.activity[0].text == "Alice added a comment and attached 1 file(s)."


def test_empty_comment_rejected(board, list_ids):
    todo = list_ids[0]
    a = board.create_card(todo, "A")
    assert board.add_comment(todo, a.id, "   ") is None
    assert board.add_comment(todo, "missing", "hi") is None
    assert board.store.get_card(a.id).comments == []


def test_mention_notifies_current_user(board, list_ids):
    """Test an @mention of the acting user creates a notification"""
    todo = list_ids[0]
    a = board.create_card(todo, "A")
    board.add_comment(todo, a.id, "ping @Bob")
    assert board.notifications() == []
    board.add_comment(todo, a.id, "note to self @Alice")
    assert board.notifications()[0].text == 'You were mentioned in a comment on "A"'


# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
# Registries
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━


def test_invite_member(board):
    member = board.invite_member("dana.scully@example.com")
    assert member.name == "Dana.scully"
    assert board.get_member(member.id) is member
    assert board.invite_member("@example.com") is None


def test_custom_fields(board):
    size = board.add_custom_field("Size", "dropdown", ["S", "M", ""])
    notes = board.add_custom_field("Notes", "text", ["ignored"])
    assert size.options == ["S", "M"]
    assert notes.options == []
    assert board.add_custom_field("  ") is None
    assert board.delete_custom_field(size.id)
    assert not board.delete_custom_field(size.id)
    assert [f.name for f in board.custom_fields] == ["Notes"]


def test_stats(board, list_ids):
    todo = list_ids[0]
    a = board.create_card(todo, "A")
    board.update_card(todo, a.id, {"labels": ["label-1"], "members": ["member-2"]})
    stats = board.stats()
    assert stats["total"] == 1
    assert stats["by_label"][0]["id"] == "label-1"
    assert stats["by_member"][0]["name"] == "Bob"


# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
# Persistence
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━


class TestBoardPersistence:
    """Board state survives a reload through SQLite"""

    def test_mutations_are_persisted(self, persistent_board, persistence):
        todo = persistent_board.create_list("To Do")
        persistent_board.create_card(todo.id, "A")
        persistent_board.create_card(todo.id, "B")

        store = persistence.load_store()
        assert [c.title for c in store.get_list(todo.id).cards] == ["A", "B"]
        assert store.last_short_id == 2

    def test_custom_fields_are_persisted(self, persistent_board, persistence):
        persistent_board.add_custom_field("Estimate", "number")
        assert [f.name for f in persistence.load_custom_fields()] == ["Estimate"]

    def test_storage_failure_warns_once(self, persistent_board, persistence, monkeypatch, caplog):
        """Test a failed save sets the warning once and never raises"""
        monkeypatch.setattr(persistence, "save_board", lambda lists: False)
        todo = persistent_board.create_list("To Do")
        assert persistent_board.storage_warning == STORAGE_WARNING
        persistent_board.create_card(todo.id, "A")
        assert persistent_board.storage_warning == STORAGE_WARNING
        assert caplog.text.count(STORAGE_WARNING) == 1

    def test_clear_data(self, persistent_board, persistence):
        todo = persistent_board.create_list("To Do")
        persistent_board.create_card(todo.id, "A")
        persistent_board.add_custom_field("Estimate", "number")

        persistent_board.clear_data()
        assert persistent_board.snapshot() == []
        assert persistent_board.custom_fields == []
        assert persistence.load_store().snapshot() == []
        assert persistence.load_custom_fields() == []
        assert persistent_board.create_list("Fresh") is not None

    def test_datetime_custom_field_is_saved(self, persistent_board, persistence):
        """Test a datetime custom field value neither raises nor blocks saving"""
        todo = persistent_board.create_list("To Do")
        card = persistent_board.create_card(todo.id, "A")
        assert persistent_board.update_card(todo.id, card.id, {"custom_fields": {"field-due": datetime(2024, 1, 1)}})
        persistent_board.create_card(todo.id, "B")

        assert persistent_board.storage_warning is None
        stored = persistence.load_store().get_card(card.id)
        assert stored.custom_fields == {"field-due": "2024-01-01T00:00:00"}
        assert persistence.load_store().card_count() == 2

    def test_unserializable_value_is_a_failed_save(self, persistent_board):
        """Test a value json cannot encode reports the storage warning instead of raising"""
        todo = persistent_board.create_list("To Do")
        card = persistent_board.create_card(todo.id, "A")
        assert persistent_board.update_card(todo.id, card.id, {"custom_fields": {"blob": object()}})
        assert persistent_board.storage_warning == STORAGE_WARNING
        assert persistent_board.store.get_card(card.id).custom_fields.keys() == {"blob"}


def test_move_to_next_slot_keeps_order(board, list_ids):
    """Test moving a card just past itself leaves the order as it was"""
    todo = list_ids[0]
    _fill(board, todo, "A", "B", "C")
    assert board.move_card(todo, 0, todo, 1)
    assert _titles(board, todo) == ["A", "B", "C"]
