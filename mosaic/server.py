#!/usr/bin/env python3
"""
Mosaic JSON API
---------------
Exposes the mutation API to a rendering client. Every mutating route
answers with the updated board so the client can re-render from it.

Usage:
    python -m mosaic.server --config mosaic.yaml

API:
    GET    /api/board                       → { lists, visibility, labels, members, custom_fields, unread, storage_warning }
                                              query: q, members, labels (comma separated), due
    GET    /api/stats                       → card counts per list / member / label
    POST   /api/lists                       { title }
    PATCH  /api/lists/<list_id>             { title }
    DELETE /api/lists/<list_id>
    POST   /api/lists/<list_id>/cards       { title }
    PATCH  /api/lists/<list_id>/cards/<id>  { <card fields> }
    DELETE /api/lists/<list_id>/cards/<id>
    POST   /api/lists/<list_id>/cards/<id>/comments  { text, attachments }
    GET    /api/cards/<id>/links?q=         → link candidates
    POST   /api/moves                       { source_list_id, source_index, dest_list_id, dest_index }
    GET    /api/notifications
    POST   /api/notifications/<id>/open     → { list_id, card_index }
    POST   /api/notifications/read-all
    GET    /api/automations
    PUT    /api/automations                 { rules, scheduled_commands, card_buttons, board_buttons }
    POST   /api/buttons/card/<button_id>    { card_id }
    POST   /api/buttons/board/<button_id>
    POST   /api/scheduled/run
    POST   /api/members                     { email }
    POST   /api/custom-fields               { name, type, options }
    DELETE /api/custom-fields/<field_id>
"""

import argparse
import logging

from flask import Flask, jsonify, request

from .automation import Automations, InvalidAutomation
from .board import Board
from .config import Config, setup_logging
from .schema import Attachment
from .visibility import Filters

logger = logging.getLogger(__name__)


def _split(value):
    return [v for v in (value or "").split(",") if v]


def _filters_from_args(args) -> Filters:
    return Filters.from_dict({
        "keyword": args.get("q", ""),
        "members": _split(args.get("members")),
        "labels": _split(args.get("labels")),
        "due_date": args.get("due", "any"),
    })


def _body() -> dict:
    data = request.get_json(force=True, silent=True)
    return data if isinstance(data, dict) else {}


def _error(message: str, code: int):
    return jsonify({"error": message}), code


def create_app(board: Board) -> Flask:
    app = Flask(__name__)

    def board_payload(filters: Filters = None) -> dict:
        return {
            "lists": board.store.to_dict(),
            "visibility": board.visibility(filters),
            "labels": [l.to_dict() for l in board.labels],
            "members": [m.to_dict() for m in board.members],
            "current_user_id": board.current_user_id,
            "custom_fields": [f.to_dict() for f in board.custom_fields],
            "unread": board.feed.unread_count(),
            "storage_warning": board.storage_warning,
        }

    # ── Board ────────────────────────────────────────────────────────────────

    @app.route("/api/board")
    def api_board():
        return jsonify(board_payload(_filters_from_args(request.args)))

    @app.route("/api/stats")
    def api_stats():
        return jsonify(board.stats())

    # ── Lists ────────────────────────────────────────────────────────────────

    @app.route("/api/lists", methods=["POST"])
    def api_create_list():
        title = str(_body().get("title", "")).strip()
        if not title:
            return _error("title is required", 400)
        lst = board.create_list(title)
        return jsonify({"list_id": lst.id, **board_payload()}), 201

    @app.route("/api/lists/<list_id>", methods=["PATCH"])
    def api_rename_list(list_id):
        title = str(_body().get("title", "")).strip()
        if not title:
            return _error("title is required", 400)
        if not board.rename_list(list_id, title):
            return _error(f"list {list_id} not found", 404)
        return jsonify(board_payload())

    @app.route("/api/lists/<list_id>", methods=["DELETE"])
    def api_delete_list(list_id):
        if not board.delete_list(list_id):
            return _error(f"list {list_id} not found", 404)
        return jsonify(board_payload())

    # ── Cards ────────────────────────────────────────────────────────────────

    @app.route("/api/lists/<list_id>/cards", methods=["POST"])
    def api_create_card(list_id):
        title = str(_body().get("title", "")).strip()
        if not title:
            return _error("title is required", 400)
        card = board.create_card(list_id, title)
        if card is None:
            return _error(f"list {list_id} not found", 404)
        return jsonify({"card_id": card.id, "short_id": card.short_id, **board_payload()}), 201

    @app.route("/api/lists/<list_id>/cards/<card_id>", methods=["PATCH"])
    def api_update_card(list_id, card_id):
        updates = _body()
        if not updates:
            return _error("no fields to update", 400)
        found = board.store.find_card(card_id)
        if found is None or found[0] != list_id:
            return _error(f"card {card_id} not found in list {list_id}", 404)
        try:
            updated = board.update_card(list_id, card_id, updates)
        except (ValueError, TypeError, KeyError, AttributeError) as e:
            return _error(f"invalid card fields: {e}", 400)
        if not updated:
            return _error("no updatable fields given", 400)
        return jsonify(board_payload())

    @app.route("/api/lists/<list_id>/cards/<card_id>", methods=["DELETE"])
    def api_delete_card(list_id, card_id):
        if not board.delete_card(list_id, card_id):
            return _error(f"card {card_id} not found", 404)
        return jsonify(board_payload())

    @app.route("/api/lists/<list_id>/cards/<card_id>/comments", methods=["POST"])
    def api_add_comment(list_id, card_id):
        data = _body()
        try:
            attachments = [Attachment.from_dict(a) for a in data.get("attachments") or []]
        except (ValueError, TypeError, AttributeError) as e:
            return _error(f"invalid attachments: {e}", 400)
        comment = board.add_comment(list_id, card_id, str(data.get("text", "")), attachments)
        if comment is None:
            return _error("comment needs text or attachments on an existing card", 400)
        return jsonify({"comment_id": comment.id, **board_payload()}), 201

    @app.route("/api/cards/<card_id>/links")
    def api_link_candidates(card_id):
        cards = board.link_candidates(card_id, request.args.get("q", ""))
        return jsonify({"cards": [{"id": c.id, "short_id": c.short_id, "title": c.title} for c in cards]})

    @app.route("/api/moves", methods=["POST"])
    def api_move_card():
        data = _body()
        try:
            source_list_id = str(data["source_list_id"])
            dest_list_id = str(data["dest_list_id"])
            source_index = int(data["source_index"])
            dest_index = int(data["dest_index"])
        except (KeyError, TypeError, ValueError):
            return _error("source_list_id, source_index, dest_list_id and dest_index are required", 400)
        moved = board.move_card(source_list_id, source_index, dest_list_id, dest_index)
        return jsonify({"moved": moved, **board_payload()})

    # ── Notifications ────────────────────────────────────────────────────────

    @app.route("/api/notifications")
    def api_notifications():
        items = board.notifications()
        return jsonify({
            "notifications": [n.to_dict() for n in items],
            "unread": board.feed.unread_count(),
        })

    @app.route("/api/notifications/<notification_id>/open", methods=["POST"])
    def api_open_notification(notification_id):
        location = board.open_notification(notification_id)
        if location is None:
            return _error("notification or its card not found", 404)
        list_id, card_index = location
        return jsonify({"list_id": list_id, "card_index": card_index})

    @app.route("/api/notifications/read-all", methods=["POST"])
    def api_read_all():
        return jsonify({"marked": board.mark_all_notifications_read()})

    # ── Automation ───────────────────────────────────────────────────────────

    @app.route("/api/automations", methods=["GET"])
    def api_get_automations():
        return jsonify(board.automation.automations.to_dict())

    @app.route("/api/automations", methods=["PUT"])
    def api_set_automations():
        try:
            automations = Automations.from_dict(_body(), strict=True)
        except InvalidAutomation as e:
            return _error(str(e), 400)
        board.set_automations(automations)
        return jsonify(automations.to_dict())

    @app.route("/api/buttons/card/<button_id>", methods=["POST"])
    def api_card_button(button_id):
        card_id = str(_body().get("card_id", ""))
        if board.store.find_card(card_id) is None:
            return _error(f"card {card_id} not found", 404)
        applied = board.press_card_button(button_id, card_id)
        return jsonify({"applied": applied, **board_payload()})

    @app.route("/api/buttons/board/<button_id>", methods=["POST"])
    def api_board_button(button_id):
        changed = board.press_board_button(button_id)
        return jsonify({"changed": changed, **board_payload()})

    @app.route("/api/scheduled/run", methods=["POST"])
    def api_run_scheduled():
        ran = board.run_scheduled()
        return jsonify({"ran": ran, **board_payload()})

    # ── Registries ───────────────────────────────────────────────────────────

    @app.route("/api/members", methods=["POST"])
    def api_invite_member():
        member = board.invite_member(str(_body().get("email", "")))
        if member is None:
            return _error("email is required", 400)
        return jsonify(member.to_dict()), 201

    @app.route("/api/custom-fields", methods=["POST"])
    def api_add_custom_field():
        data = _body()
        definition = board.add_custom_field(
            str(data.get("name", "")),
            str(data.get("type", "text")),
            [str(o) for o in data.get("options") or []],
        )
        if definition is None:
            return _error("name is required", 400)
        return jsonify(definition.to_dict()), 201

    @app.route("/api/custom-fields/<field_id>", methods=["DELETE"])
    def api_delete_custom_field(field_id):
        if not board.delete_custom_field(field_id):
            return _error(f"custom field {field_id} not found", 404)
        return jsonify({"custom_fields": [f.to_dict() for f in board.custom_fields]})

    return app


def main():
    parser = argparse.ArgumentParser(description="Mosaic board JSON API")
    parser.add_argument("--config", help="Path to mosaic.yaml")
    args = parser.parse_args()

    cfg = Config.load(args.config)
    setup_logging(cfg)
    board = Board.from_config(cfg)
    logger.info(f"Serving board from {cfg.db_path} on http://{cfg.host}:{cfg.port}")
    create_app(board).run(host=cfg.host, port=cfg.port)


if __name__ == "__main__":
    main()
