"""
Tests for YAML configuration loading and board construction from config.
"""
import pytest

from mosaic.board import Board
from mosaic.config import Config, ConfigError


def test_defaults(tmp_path, monkeypatch):
    monkeypatch.delenv("MOSAIC_DB", raising=False)
    cfg = Config.load(str(tmp_path / "missing.yaml"))
    assert cfg.port == 3000
    assert cfg.due_soon_hours == 24.0
    assert [l["text"] for l in cfg.labels] == ["Feature", "Bug", "Design", "Docs", "Research"]
    assert not cfg.db_path.startswith("~")


def test_load_yaml(tmp_path, monkeypatch):
    monkeypatch.delenv("MOSAIC_DB", raising=False)
    path = tmp_path / "mosaic.yaml"
    path.write_text(
        f"db_path: {tmp_path / 'board.db'}\n"
        "current_user_id: member-2\n"
        "due_soon_hours: 48\n"
        "unknown_key: ignored\n"
    )
    cfg = Config.load(str(path))
    assert cfg.db_path == str(tmp_path / "board.db")
    assert cfg.current_user_id == "member-2"
    assert cfg.due_soon_hours == 48


def test_env_overrides_db_path(tmp_path, monkeypatch):
    monkeypatch.setenv("MOSAIC_DB", str(tmp_path / "env.db"))
    cfg = Config.load(str(tmp_path / "missing.yaml"))
    assert cfg.db_path == str(tmp_path / "env.db")


def test_unreadable_yaml_falls_back(tmp_path, monkeypatch):
    monkeypatch.delenv("MOSAIC_DB", raising=False)
    path = tmp_path / "mosaic.yaml"
    path.write_text("port: [unclosed\n")
    assert Config.load(str(path)).port == 3000


def test_validate_rejects_unknown_user():
    cfg = Config(current_user_id="member-9")
    with pytest.raises(ConfigError):
        cfg.validate()


def test_validate_rejects_bad_window():
    with pytest.raises(ConfigError):
        Config(due_soon_hours=0).validate()


def test_board_from_config(tmp_path, monkeypatch):
    """Test a board opened from config rehydrates what an earlier one saved"""
    monkeypatch.delenv("MOSAIC_DB", raising=False)
    automations = tmp_path / "automations.yaml"
    automations.write_text(
        "rules:\n"
        "  - name: Bugs to Bob\n"
        "    trigger: {type: label-add, label_id: label-2}\n"
        "    action: {type: add-member, member_id: member-2}\n"
    )
    cfg = Config(db_path=str(tmp_path / "board.db"), automations_path=str(automations))
    cfg.resolve_paths()

    first = Board.from_config(cfg)
    assert first.current_user_id == "member-1"
    todo = first.create_list("To Do")
    card = first.create_card(todo.id, "A")
    first.update_card(todo.id, card.id, {"labels": ["label-2"]})

    second = Board.from_config(cfg)
    reloaded = second.store.get_card(card.id)
    assert reloaded.members == {"member-2"}
    assert second.store.last_short_id == 1
    assert len(second.automation.automations.rules) == 1
