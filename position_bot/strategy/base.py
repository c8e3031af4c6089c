from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, Optional

from position_bot.models import Direction

NONE = "NONE"


@dataclass(frozen=True)
class Signal:
    side: str  # "LONG" | "SHORT" | "NONE"
    reason: str = ""
    meta: Dict[str, Any] = field(default_factory=dict)

    @property
    def direction(self) -> Optional[Direction]:
        return None if self.side == NONE else Direction(self.side)

    @property
    def is_entry(self) -> bool:
        return self.side != NONE
