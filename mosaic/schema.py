"""
Board schema: lists, cards and everything hanging off a card.

Lists own their cards; a card carries its own checklists, attachments,
comments and activity log. Comments and activity are kept newest first.

Every entity serializes with to_dict() and rebuilds with from_dict(), which
back-fills absent fields with their defaults so that documents written by
older versions (including the camelCase layout of the first release) load
without a migration step.
"""
import uuid
from enum import Enum
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Optional, List, Dict, Any, Set, Tuple


# ── Helpers ──────────────────────────────────────────────────────────────────


def generate_id(prefix: str = "id") -> str:
    """Random unique identifier, e.g. card-3f9a0c1b2d4e."""
    return f"{prefix}-{uuid.uuid4().hex[:12]}"


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def parse_instant(value: Any) -> Optional[datetime]:
    """
    Accept a datetime, an ISO-8601 string or epoch milliseconds.

    Returns None for empty or unparseable values. Naive datetimes are taken
    to be UTC.
    """
    if value is None or value == "":
        return None
    if isinstance(value, bool):
        return None
    if isinstance(value, datetime):
        return value if value.tzinfo else value.replace(tzinfo=timezone.utc)
    if isinstance(value, (int, float)):
        return datetime.fromtimestamp(value / 1000, tz=timezone.utc)
    if isinstance(value, str):
        try:
            parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
        except ValueError:
            return None
        return parsed if parsed.tzinfo else parsed.replace(tzinfo=timezone.utc)
    return None


def format_instant(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


def _pick(data: Dict[str, Any], *keys: str, default: Any = None) -> Any:
    """First non-None value among keys (current name first, legacy names after)."""
    for key in keys:
        if data.get(key) is not None:
            return data[key]
    return default


# ── Enums ────────────────────────────────────────────────────────────────────


class AttachmentKind(Enum):
    FILE = "file"
    LINK = "link"

    @classmethod
    def from_str(cls, value: str) -> "AttachmentKind":
        try:
            return cls(value)
        except ValueError:
            return cls.LINK


class CoverSize(Enum):
    NORMAL = "normal"
    FULL = "full"

    @classmethod
    def from_str(cls, value: str) -> "CoverSize":
        try:
            return cls(value)
        except ValueError:
            return cls.NORMAL


class FieldType(Enum):
    """Value types a custom field definition may declare."""
    TEXT = "text"
    NUMBER = "number"
    DROPDOWN = "dropdown"
    DATE = "date"
    CHECKBOX = "checkbox"

    @classmethod
    def from_str(cls, value: str) -> "FieldType":
        try:
            return cls(value)
        except ValueError:
            return cls.TEXT


# ── Card parts ───────────────────────────────────────────────────────────────


@dataclass
class Attachment:
    """A link or an uploaded file. payload_ref is dropped for files on save."""
    id: str
    name: str
    timestamp: datetime = field(default_factory=utc_now)
    kind: AttachmentKind = AttachmentKind.LINK
    payload_ref: Optional[str] = None   # URL for links, data URL for files
    preview_ref: Optional[str] = None   # image preview for files

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "timestamp": format_instant(self.timestamp),
            "kind": self.kind.value,
            "payload_ref": self.payload_ref,
            "preview_ref": self.preview_ref,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Attachment":
        return cls(
            id=data.get("id") or generate_id("att"),
            name=data.get("name", ""),
            timestamp=parse_instant(data.get("timestamp")) or utc_now(),
            kind=AttachmentKind.from_str(_pick(data, "kind", "type", default="link")),
            payload_ref=_pick(data, "payload_ref", "url"),
            preview_ref=_pick(data, "preview_ref", "previewUrl"),
        )


def _attachments_from(raw: Any) -> List[Attachment]:
    return [Attachment.from_dict(a) for a in (raw or [])]


@dataclass
class ChecklistItem:
    id: str
    text: str
    completed: bool = False
    attachments: List[Attachment] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "text": self.text,
            "completed": self.completed,
            "attachments": [a.to_dict() for a in self.attachments],
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ChecklistItem":
        return cls(
            id=data.get("id") or generate_id("item"),
            text=data.get("text", ""),
            completed=bool(data.get("completed", False)),
            attachments=_attachments_from(data.get("attachments")),
        )


@dataclass
class Checklist:
    id: str
    title: str
    items: List[ChecklistItem] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "title": self.title,
            "items": [i.to_dict() for i in self.items],
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Checklist":
        return cls(
            id=data.get("id") or generate_id("checklist"),
            title=data.get("title", ""),
            items=[ChecklistItem.from_dict(i) for i in (data.get("items") or [])],
        )


@dataclass
class Comment:
    id: str
    author_id: str
    text: str
    timestamp: datetime = field(default_factory=utc_now)
    attachments: List[Attachment] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "author_id": self.author_id,
            "text": self.text,
            "timestamp": format_instant(self.timestamp),
            "attachments": [a.to_dict() for a in self.attachments],
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Comment":
        return cls(
            id=data.get("id") or generate_id("comment"),
            author_id=_pick(data, "author_id", "authorId", default=""),
            text=data.get("text", ""),
            timestamp=parse_instant(data.get("timestamp")) or utc_now(),
            attachments=_attachments_from(data.get("attachments")),
        )


@dataclass
class Activity:
    id: str
    text: str
    timestamp: datetime = field(default_factory=utc_now)

    @classmethod
    def create(cls, text: str) -> "Activity":
        return cls(id=generate_id("act"), text=text)

    def to_dict(self) -> Dict[str, Any]:
        return {"id": self.id, "text": self.text, "timestamp": format_instant(self.timestamp)}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Activity":
        return cls(
            id=data.get("id") or generate_id("act"),
            text=data.get("text", ""),
            timestamp=parse_instant(data.get("timestamp")) or utc_now(),
        )


@dataclass
class DueDate:
    timestamp: Optional[datetime] = None
    completed: bool = False

    def __post_init__(self):
        self.timestamp = parse_instant(self.timestamp)

    def to_dict(self) -> Dict[str, Any]:
        return {"timestamp": format_instant(self.timestamp), "completed": self.completed}

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> "DueDate":
        data = data or {}
        return cls(
            timestamp=parse_instant(data.get("timestamp")),
            completed=bool(data.get("completed", False)),
        )


@dataclass
class Cover:
    color: Optional[str] = None
    image_ref: Optional[str] = None
    size: CoverSize = CoverSize.NORMAL

    @property
    def has_inline_image(self) -> bool:
        """True when the image is an uploaded file embedded as a data URL."""
        return bool(self.image_ref and self.image_ref.startswith("data:image"))

    def to_dict(self) -> Dict[str, Any]:
        return {"color": self.color, "image_ref": self.image_ref, "size": self.size.value}

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> "Cover":
        data = data or {}
        return cls(
            color=data.get("color"),
            image_ref=_pick(data, "image_ref", "imageUrl"),
            size=CoverSize.from_str(data.get("size") or "normal"),
        )


# ── Card / List ──────────────────────────────────────────────────────────────


@dataclass
class Card:
    """The unit of movement, filtering and automation targeting."""

    id: str
    title: str
    short_id: int = 0               # 0 = not yet assigned (legacy records)
    description: str = ""

    labels: Set[str] = field(default_factory=set)
    members: Set[str] = field(default_factory=set)
    subscribers: Set[str] = field(default_factory=set)
    linked_cards: Set[str] = field(default_factory=set)

    due_date: DueDate = field(default_factory=DueDate)
    start_date: Optional[datetime] = None
    location: str = ""

    checklists: List[Checklist] = field(default_factory=list)
    attachments: List[Attachment] = field(default_factory=list)
    cover: Cover = field(default_factory=Cover)
    custom_fields: Dict[str, Any] = field(default_factory=dict)

    # Newest first
    comments: List[Comment] = field(default_factory=list)
    activity: List[Activity] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "short_id": self.short_id,
            "title": self.title,
            "description": self.description,
            "labels": sorted(self.labels),
            "members": sorted(self.members),
            "subscribers": sorted(self.subscribers),
            "linked_cards": sorted(self.linked_cards),
            "due_date": self.due_date.to_dict(),
            "start_date": format_instant(self.start_date),
            "location": self.location,
            "checklists": [c.to_dict() for c in self.checklists],
            "attachments": [a.to_dict() for a in self.attachments],
            "cover": self.cover.to_dict(),
            "custom_fields": dict(self.custom_fields),
            "comments": [c.to_dict() for c in self.comments],
            "activity": [a.to_dict() for a in self.activity],
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Card":
        """Deserialize, defaulting every absent field."""
        short_id = _pick(data, "short_id", "cardShortId", default=0)
        return cls(
            id=data.get("id") or generate_id("card"),
            short_id=short_id if isinstance(short_id, int) and not isinstance(short_id, bool) else 0,
            title=_pick(data, "title", "text", default=""),
            description=data.get("description") or "",
            labels=set(data.get("labels") or []),
            members=set(data.get("members") or []),
            subscribers=set(data.get("subscribers") or []),
            linked_cards=set(_pick(data, "linked_cards", "linkedCards", default=[])),
            due_date=DueDate.from_dict(_pick(data, "due_date", "dueDate")),
            start_date=parse_instant(_pick(data, "start_date", "startDate")),
            location=data.get("location") or "",
            checklists=[Checklist.from_dict(c) for c in (data.get("checklists") or [])],
            attachments=_attachments_from(data.get("attachments")),
            cover=Cover.from_dict(data.get("cover")),
            custom_fields=dict(_pick(data, "custom_fields", "customFields", default={})),
            comments=[Comment.from_dict(c) for c in (data.get("comments") or [])],
            activity=[Activity.from_dict(a) for a in (data.get("activity") or [])],
        )


@dataclass
class BoardList:
    """An ordered column owning its cards."""
    id: str
    title: str
    cards: List[Card] = field(default_factory=list)

    def index_of(self, card_id: str) -> int:
        for i, card in enumerate(self.cards):
            if card.id == card_id:
                return i
        return -1

    def to_dict(self) -> Dict[str, Any]:
        return {"id": self.id, "title": self.title, "cards": [c.to_dict() for c in self.cards]}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "BoardList":
        return cls(
            id=data.get("id") or generate_id("list"),
            title=data.get("title", ""),
            cards=[Card.from_dict(c) for c in (data.get("cards") or [])],
        )


# ── Board registries ─────────────────────────────────────────────────────────


@dataclass
class Label:
    id: str
    text: str
    color: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return {"id": self.id, "text": self.text, "color": self.color}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Label":
        return cls(id=data["id"], text=data.get("text", ""), color=data.get("color", ""))


@dataclass
class Member:
    id: str
    name: str
    avatar_url: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return {"id": self.id, "name": self.name, "avatar_url": self.avatar_url}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Member":
        return cls(
            id=data["id"],
            name=data.get("name", ""),
            avatar_url=_pick(data, "avatar_url", "avatarUrl", default=""),
        )


@dataclass
class CustomFieldDefinition:
    id: str
    name: str
    type: FieldType = FieldType.TEXT
    options: List[str] = field(default_factory=list)   # dropdown only

    def to_dict(self) -> Dict[str, Any]:
        return {"id": self.id, "name": self.name, "type": self.type.value, "options": list(self.options)}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "CustomFieldDefinition":
        return cls(
            id=data.get("id") or generate_id("field"),
            name=data.get("name", ""),
            type=FieldType.from_str(data.get("type", "text")),
            options=list(data.get("options") or []),
        )


@dataclass
class Notification:
    id: str
    text: str
    card_id: str
    list_id: str
    timestamp: datetime = field(default_factory=utc_now)
    read: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "text": self.text,
            "card_id": self.card_id,
            "list_id": self.list_id,
            "timestamp": format_instant(self.timestamp),
            "read": self.read,
        }


# ── Partial updates ──────────────────────────────────────────────────────────

SET_FIELDS = frozenset({"labels", "members", "subscribers", "linked_cards"})

UPDATABLE_FIELDS = frozenset({
    "title", "description", "due_date", "start_date", "location",
    "checklists", "attachments", "cover", "custom_fields", "comments",
}) | SET_FIELDS


def _coerce_list(value: Any, model) -> list:
    return [v if isinstance(v, model) else model.from_dict(v) for v in (value or [])]


def coerce_updates(updates: Dict[str, Any]) -> Tuple[Dict[str, Any], List[str]]:
    """
    Normalize a partial card update into model values.

    Plain JSON values (lists, dicts, ISO strings) are converted to the
    model types; model instances pass through. Returns (accepted, ignored)
    where ignored lists field names that cannot be updated.
    """
    accepted: Dict[str, Any] = {}
    ignored: List[str] = []
    for name, value in updates.items():
        if name not in UPDATABLE_FIELDS:
            ignored.append(name)
        elif name in SET_FIELDS:
            accepted[name] = set(value or [])
        elif name == "due_date":
            accepted[name] = value if isinstance(value, DueDate) else DueDate.from_dict(value)
        elif name == "start_date":
            accepted[name] = parse_instant(value)
        elif name == "cover":
            accepted[name] = value if isinstance(value, Cover) else Cover.from_dict(value)
        elif name == "checklists":
            accepted[name] = _coerce_list(value, Checklist)
        elif name == "attachments":
            accepted[name] = _coerce_list(value, Attachment)
        elif name == "comments":
            accepted[name] = _coerce_list(value, Comment)
        elif name == "custom_fields":
            accepted[name] = dict(value or {})
        else:
            accepted[name] = "" if value is None else str(value)
    return accepted, ignored
