"""Shared test fixtures for the Mosaic board engine."""

from datetime import datetime, timezone

import pytest

from mosaic.board import Board
from mosaic.persistence import BoardPersistence
from mosaic.schema import Label, Member

NOW = datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc)


@pytest.fixture
def now():
    return NOW


@pytest.fixture
def labels():
    return [
        Label(id="label-1", text="Feature", color="#61BD4F"),
        Label(id="label-2", text="Bug", color="#EB5A46"),
        Label(id="label-3", text="Design", color="#F2D600"),
    ]


@pytest.fixture
def members():
    return [
        Member(id="member-1", name="Alice"),
        Member(id="member-2", name="Bob"),
        Member(id="member-3", name="Charlie"),
    ]


@pytest.fixture
def board(labels, members):
    """In-memory board acting as Alice, with To Do / Doing / Done lists."""
    b = Board(labels=labels, members=members, current_user_id="member-1")
    b.create_list("To Do")
    b.create_list("Doing")
    b.create_list("Done")
    return b


@pytest.fixture
def list_ids(board):
    """(todo, doing, done) list ids."""
    return tuple(board.store.list_ids())


@pytest.fixture
def db_path(tmp_path):
    return str(tmp_path / "board.db")


@pytest.fixture
def persistence(db_path):
    return BoardPersistence(db_path)


@pytest.fixture
def persistent_board(labels, members, persistence):
    return Board(labels=labels, members=members, current_user_id="member-1", persistence=persistence)
