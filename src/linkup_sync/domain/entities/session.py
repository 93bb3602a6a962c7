from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True, slots=True)
class Session:
    user_id: int
    credential: str

    def __repr__(self) -> str:
        return f"Session(user_id={self.user_id}, credential=***)"
