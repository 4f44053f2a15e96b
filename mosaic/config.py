# Mosaic configuration
# Override paths and board registries via mosaic.yaml; MOSAIC_DB overrides db_path.

import logging
import os
import sys
import yaml
from pathlib import Path
from dataclasses import dataclass, field
from typing import List, Dict, Any, Optional

CONFIG_PATH = Path(__file__).parent / "mosaic.yaml"

logger = logging.getLogger(__name__)


class ConfigError(Exception):
    """Raised when configuration is invalid or incomplete."""
    pass


def _default_labels() -> List[Dict[str, Any]]:
    return [
        {"id": "label-1", "text": "Feature", "color": "#61BD4F"},
        {"id": "label-2", "text": "Bug", "color": "#EB5A46"},
        {"id": "label-3", "text": "Design", "color": "#F2D600"},
        {"id": "label-4", "text": "Docs", "color": "#0079BF"},
        {"id": "label-5", "text": "Research", "color": "#FF9F1A"},
    ]


def _default_members() -> List[Dict[str, Any]]:
    return [
        {"id": "member-1", "name": "Alice"},
        {"id": "member-2", "name": "Bob"},
        {"id": "member-3", "name": "Charlie"},
    ]


@dataclass
class Config:
    """Runtime configuration for a board."""

    # Storage
    db_path: str = "~/.local/share/mosaic/board.db"
    max_pages: Optional[int] = None        # SQLite page cap; None = unbounded

    # Automation document (YAML); empty = no rules
    automations_path: str = ""

    # Identity and registries
    current_user_id: str = ""              # empty = first member
    labels: List[Dict[str, Any]] = field(default_factory=_default_labels)
    members: List[Dict[str, Any]] = field(default_factory=_default_members)

    # Behavior
    due_soon_hours: float = 24.0

    # JSON API
    host: str = "127.0.0.1"
    port: int = 3000
    log_level: str = "INFO"

    def resolve_paths(self):
        """Expand ~ and apply environment overrides."""
        env_db = os.environ.get("MOSAIC_DB")
        if env_db:
            self.db_path = env_db
        self.db_path = str(Path(self.db_path).expanduser())
        if self.automations_path:
            self.automations_path = str(Path(self.automations_path).expanduser())

    def validate(self):
        if self.due_soon_hours <= 0:
            raise ConfigError(f"due_soon_hours must be positive, got {self.due_soon_hours}")
        ids = [m.get("id") for m in self.members]
        if not all(ids):
            raise ConfigError("Every member needs an id")
        if self.current_user_id and self.current_user_id not in ids:
            raise ConfigError(
                f"current_user_id '{self.current_user_id}' is not a member. "
                f"Available: {ids}"
            )

    @classmethod
    def load(cls, path: Optional[str] = None) -> "Config":
        """Load config from YAML file, falling back to defaults."""
        cfg_path = Path(path) if path else CONFIG_PATH
        if cfg_path.exists():
            try:
                with open(cfg_path, "r") as f:
                    data = yaml.safe_load(f) or {}
                cfg = cls(**{k: v for k, v in data.items() if k in cls.__dataclass_fields__})
            except (OSError, yaml.YAMLError, TypeError, AttributeError) as e:
                logger.warning(f"Could not read config {cfg_path}, using defaults: {e}")
                cfg = cls()
        else:
            cfg = cls()
        cfg.resolve_paths()
        cfg.validate()
        return cfg


def setup_logging(cfg: Config) -> None:
    logging.basicConfig(
        level=getattr(logging, str(cfg.log_level).upper(), logging.INFO),
        format="%(asctime)s [mosaic] %(levelname)s: %(message)s",
        handlers=[logging.StreamHandler(sys.stdout)],
    )
