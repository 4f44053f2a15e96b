"""
Automation: rules, scheduled commands and buttons.

Vocabulary
  Triggers: CardMoved(to_list_id), LabelAdded(label_id)
  Actions:  MoveToList, SetDueComplete, AddChecklist, PostComment,
            AddMember, AddLabel

Every trigger and action is a frozen dataclass that validates its fields
when constructed, so a loaded rule is either well-formed or rejected.

The engine applies actions through the mutation API under an automation
(or scheduled) mutation context. The mutation API never emits triggers
under such a context, so one user event costs at most one rule pass.
"""
import logging
from enum import Enum
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from pathlib import Path
from typing import Optional, List, Dict, Any, Union, ClassVar, TYPE_CHECKING

import yaml

from .context import MutationOrigin
from .schema import Checklist, Comment, DueDate, generate_id, utc_now

if TYPE_CHECKING:
    from .board import Board

logger = logging.getLogger(__name__)

AUTOMATION_AUTHOR = "automation-bot"


class InvalidAutomation(ValueError):
    """Raised when a trigger, action or rule is malformed."""
    pass


def _require_text(owner: str, name: str, value: Any) -> None:
    if not isinstance(value, str) or not value.strip():
        raise InvalidAutomation(f"{owner}.{name} must be a non-empty string, got {value!r}")


# ── Triggers ─────────────────────────────────────────────────────────────────


@dataclass(frozen=True)
class CardMoved:
    type: ClassVar[str] = "card-move"
    to_list_id: str

    def __post_init__(self):
        _require_text("CardMoved", "to_list_id", self.to_list_id)


@dataclass(frozen=True)
class LabelAdded:
    type: ClassVar[str] = "label-add"
    label_id: str

    def __post_init__(self):
        _require_text("LabelAdded", "label_id", self.label_id)


Trigger = Union[CardMoved, LabelAdded]


# ── Actions ──────────────────────────────────────────────────────────────────


@dataclass(frozen=True)
class MoveToList:
    type: ClassVar[str] = "move-to-list"
    list_id: str

    def __post_init__(self):
        _require_text("MoveToList", "list_id", self.list_id)


@dataclass(frozen=True)
class SetDueComplete:
    type: ClassVar[str] = "set-due-date-complete"
    completed: bool

    def __post_init__(self):
        if not isinstance(self.completed, bool):
            raise InvalidAutomation(f"SetDueComplete.completed must be a bool, got {self.completed!r}")


@dataclass(frozen=True)
class AddChecklist:
    type: ClassVar[str] = "add-checklist"
    title: str

    def __post_init__(self):
        _require_text("AddChecklist", "title", self.title)


@dataclass(frozen=True)
class PostComment:
    type: ClassVar[str] = "post-comment"
    text: str

    def __post_init__(self):
        _require_text("PostComment", "text", self.text)


@dataclass(frozen=True)
class AddMember:
    type: ClassVar[str] = "add-member"
    member_id: str

    def __post_init__(self):
        _require_text("AddMember", "member_id", self.member_id)


@dataclass(frozen=True)
class AddLabel:
    type: ClassVar[str] = "add-label"
    label_id: str

    def __post_init__(self):
        _require_text("AddLabel", "label_id", self.label_id)


AutomationAction = Union[MoveToList, SetDueComplete, AddChecklist, PostComment, AddMember, AddLabel]

_TRIGGERS = {cls.type: cls for cls in (CardMoved, LabelAdded)}
_ACTIONS = {cls.type: cls for cls in (MoveToList, SetDueComplete, AddChecklist, PostComment, AddMember, AddLabel)}

# camelCase payload keys of the first release
_LEGACY_KEYS = {
    "toListId": "to_list_id",
    "labelId": "label_id",
    "listId": "list_id",
    "memberId": "member_id",
}


def _build(registry: Dict[str, type], kind: str, data: Dict[str, Any]):
    if not isinstance(data, dict):
        raise InvalidAutomation(f"{kind} must be a mapping, got {data!r}")
    cls = registry.get(data.get("type"))
    if cls is None:
        raise InvalidAutomation(f"Unknown {kind} type: {data.get('type')!r}")
    fields = {_LEGACY_KEYS.get(k, k): v for k, v in data.items() if k != "type"}
    try:
        return cls(**fields)
    except TypeError as e:
        raise InvalidAutomation(f"Bad {kind} {data!r}: {e}") from e


def trigger_from_dict(data: Dict[str, Any]) -> Trigger:
    return _build(_TRIGGERS, "trigger", data)


def action_from_dict(data: Dict[str, Any]) -> AutomationAction:
    return _build(_ACTIONS, "action", data)


def to_dict(item: Union[Trigger, AutomationAction]) -> Dict[str, Any]:
    """Serialize a trigger or an action, tag first."""
    out = {"type": item.type}
    out.update(item.__dict__)
    return out


# ── Rules, schedules, buttons ────────────────────────────────────────────────


@dataclass
class AutomationRule:
    id: str
    name: str
    trigger: Trigger
    action: AutomationAction
    enabled: bool = True

    def matches(self, trigger: Trigger) -> bool:
        """Same trigger variant with an identical payload."""
        return self.enabled and self.trigger == trigger

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "enabled": self.enabled,
            "trigger": to_dict(self.trigger),
            "action": to_dict(self.action),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "AutomationRule":
        return cls(
            id=data.get("id") or generate_id("rule"),
            name=data.get("name", ""),
            trigger=trigger_from_dict(data.get("trigger")),
            action=action_from_dict(data.get("action")),
            enabled=bool(data.get("enabled", True)),
        )


class Schedule(Enum):
    DAILY = "daily"
    WEEKLY = "weekly"

    @property
    def period(self) -> timedelta:
        return timedelta(days=1) if self is Schedule.DAILY else timedelta(weeks=1)


@dataclass
class ScheduledCommand:
    """Applies its action to every card of a target list once per period."""
    id: str
    name: str
    schedule: Schedule
    action: AutomationAction
    target_list_id: str

    def is_due(self, last_run: Optional[datetime], now: datetime) -> bool:
        return last_run is None or now - last_run >= self.schedule.period

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "schedule": self.schedule.value,
            "action": to_dict(self.action),
            "target_list_id": self.target_list_id,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ScheduledCommand":
        try:
            schedule = Schedule(data.get("schedule", "daily"))
        except ValueError as e:
            raise InvalidAutomation(f"Unknown schedule: {data.get('schedule')!r}") from e
        target = data.get("target_list_id") or data.get("targetListId")
        _require_text("ScheduledCommand", "target_list_id", target)
        return cls(
            id=data.get("id") or generate_id("sched"),
            name=data.get("name", ""),
            schedule=schedule,
            action=action_from_dict(data.get("action")),
            target_list_id=target,
        )


@dataclass
class CustomButton:
    id: str
    name: str
    action: AutomationAction

    def to_dict(self) -> Dict[str, Any]:
        return {"id": self.id, "name": self.name, "action": to_dict(self.action)}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "CustomButton":
        return cls(
            id=data.get("id") or generate_id("btn"),
            name=data.get("name", ""),
            action=action_from_dict(data.get("action")),
        )


def _parse_items(model, raw: Any, section: str, strict: bool) -> list:
    items = []
    for entry in raw or []:
        try:
            items.append(model.from_dict(entry))
        except (InvalidAutomation, AttributeError) as e:
            if strict:
                raise InvalidAutomation(f"{section}: {e}") from e
            logger.warning(f"Skipping malformed entry in {section}: {e}")
    return items


@dataclass
class Automations:
    """The automation configuration document."""
    rules: List[AutomationRule] = field(default_factory=list)
    scheduled_commands: List[ScheduledCommand] = field(default_factory=list)
    card_buttons: List[CustomButton] = field(default_factory=list)
    board_buttons: List[CustomButton] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "rules": [r.to_dict() for r in self.rules],
            "scheduled_commands": [s.to_dict() for s in self.scheduled_commands],
            "card_buttons": [b.to_dict() for b in self.card_buttons],
            "board_buttons": [b.to_dict() for b in self.board_buttons],
        }

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]], strict: bool = False) -> "Automations":
        """
        Parse the document. Malformed entries are skipped with a warning,
        or raise InvalidAutomation when strict is set.
        """
        data = data or {}
        return cls(
            rules=_parse_items(AutomationRule, data.get("rules"), "rules", strict),
            scheduled_commands=_parse_items(
                ScheduledCommand,
                data.get("scheduled_commands", data.get("scheduled")),
                "scheduled_commands",
                strict,
            ),
            card_buttons=_parse_items(CustomButton, data.get("card_buttons", data.get("cardButtons")), "card_buttons", strict),
            board_buttons=_parse_items(CustomButton, data.get("board_buttons", data.get("boardButtons")), "board_buttons", strict),
        )

    @classmethod
    def load(cls, path: Optional[str]) -> "Automations":
        """Load from a YAML file; a missing or unreadable file gives an empty document."""
        if not path or not Path(path).exists():
            return cls()
        try:
            with open(path, "r") as f:
                data = yaml.safe_load(f) or {}
        except (OSError, yaml.YAMLError) as e:
            logger.warning(f"Could not read automations from {path}: {e}")
            return cls()
        return cls.from_dict(data)


# ── Engine ───────────────────────────────────────────────────────────────────


class AutomationEngine:
    """Matches triggers against rules and runs actions through the mutation API."""

    def __init__(self, board: "Board", automations: Optional[Automations] = None):
        self.board = board
        self.automations = automations or Automations()
        self._last_runs: Dict[str, datetime] = {}

    def dispatch(self, trigger: Trigger, card_id: str) -> int:
        """Run every enabled rule matching trigger. Returns the number of actions applied."""
        applied = 0
        with self.board.acting(MutationOrigin.AUTOMATION):
            for rule in list(self.automations.rules):
                if not rule.matches(trigger):
                    continue
                logger.info(f"Automation rule triggered: {rule.name}")
                if self.execute(rule.action, card_id):
                    applied += 1
        return applied

    def execute(self, action: AutomationAction, card_id: str) -> bool:
        """
        Apply one action to one card under the current mutation context.

        Returns False when the action was skipped: the card is gone, the
        action names a list/label/member that no longer exists, or there is
        nothing to change.
        """
        store = self.board.store
        found = store.find_card(card_id)
        if not found:
            logger.warning(f"Skipping {action.type}: card {card_id} not found")
            return False
        list_id, index = found
        card = store.get_card(card_id)

        if isinstance(action, MoveToList):
            if action.list_id not in store.list_ids():
                logger.warning(f"Skipping move-to-list: list {action.list_id} not found")
                return False
            if action.list_id == list_id:
                return False
            return self.board.move_card(list_id, index, action.list_id, 0)

        if isinstance(action, SetDueComplete):
            due = DueDate(timestamp=card.due_date.timestamp, completed=action.completed)
            return self.board.update_card(list_id, card_id, {"due_date": due})

        if isinstance(action, AddLabel):
            if not self.board.get_label(action.label_id):
                logger.warning(f"Skipping add-label: label {action.label_id} not found")
                return False
            if action.label_id in card.labels:
                return False
            return self.board.update_card(list_id, card_id, {"labels": card.labels | {action.label_id}})

        if isinstance(action, AddMember):
            if not self.board.get_member(action.member_id):
                logger.warning(f"Skipping add-member: member {action.member_id} not found")
                return False
            if action.member_id in card.members:
                return False
            return self.board.update_card(list_id, card_id, {"members": card.members | {action.member_id}})

        if isinstance(action, AddChecklist):
            checklist = Checklist(id=generate_id("checklist"), title=action.title)
            return self.board.update_card(list_id, card_id, {"checklists": card.checklists + [checklist]})

        if isinstance(action, PostComment):
            comment = Comment(id=generate_id("comment"), author_id=AUTOMATION_AUTHOR, text=action.text)
            return self.board.update_card(list_id, card_id, {"comments": [comment] + card.comments})

        logger.warning(f"Unsupported automation action: {action!r}")
        return False

    # ── Timers and buttons ───────────────────────────────────────────────────

    def run_scheduled(self, now: Optional[datetime] = None) -> int:
        """Run every scheduled command whose period has elapsed. Returns the number run."""
        now = now or utc_now()
        ran = 0
        with self.board.acting(MutationOrigin.SCHEDULED):
            for command in list(self.automations.scheduled_commands):
                if not command.is_due(self._last_runs.get(command.id), now):
                    continue
                target = self.board.store.get_list(command.target_list_id)
                if target is None:
                    logger.warning(f"Skipping scheduled command {command.name}: list {command.target_list_id} not found")
                    continue
                logger.info(f"Running scheduled command: {command.name} ({len(target.cards)} card(s))")
                for card in target.cards:
                    self.execute(command.action, card.id)
                self._last_runs[command.id] = now
                ran += 1
        return ran

    def last_run(self, command_id: str) -> Optional[datetime]:
        return self._last_runs.get(command_id)

    def _button(self, buttons: List[CustomButton], button_id: str) -> Optional[CustomButton]:
        for button in buttons:
            if button.id == button_id:
                return button
        return None

    def press_card_button(self, button_id: str, card_id: str) -> bool:
        button = self._button(self.automations.card_buttons, button_id)
        if not button:
            logger.debug(f"Card button {button_id} not found")
            return False
        with self.board.acting(MutationOrigin.AUTOMATION):
            return self.execute(button.action, card_id)

    def press_board_button(self, button_id: str) -> int:
        """Apply a board button's action to every card. Returns the number of cards changed."""
        button = self._button(self.automations.board_buttons, button_id)
        if not button:
            logger.debug(f"Board button {button_id} not found")
            return 0
        changed = 0
        with self.board.acting(MutationOrigin.AUTOMATION):
            for card in self.board.store.all_cards():
                if self.execute(button.action, card.id):
                    changed += 1
        return changed
