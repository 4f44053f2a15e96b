"""
Mutation context: who is changing the board right now.

User-originated changes notify watchers and emit automation triggers.
Automation and scheduled changes do neither, which is what keeps rule
execution from feeding back into itself.
"""
from enum import Enum
from dataclasses import dataclass


class MutationOrigin(Enum):
    USER = "user"
    AUTOMATION = "automation"
    SCHEDULED = "scheduled"


@dataclass(frozen=True)
class MutationContext:
    origin: MutationOrigin = MutationOrigin.USER

    @property
    def is_automated(self) -> bool:
        return self.origin is not MutationOrigin.USER


USER_CONTEXT = MutationContext(MutationOrigin.USER)
