from __future__ import annotations

from typing import Mapping

from ..config import get_settings
from ..models import Reservation

DEFAULT_MAX_PARTICIPANTS = 4


class CapacityPolicy:
    """Per game mode participant limits with a global fallback."""

    def __init__(self, limits: Mapping[str, int], default: int = DEFAULT_MAX_PARTICIPANTS) -> None:
        if default < 1:
            raise ValueError("default capacity must be >= 1")
        for mode, limit in limits.items():
            if limit < 1:
                raise ValueError(f"capacity for {mode!r} must be >= 1")
        self._limits = dict(limits)
        self.default = default

    def max_participants_for(self, game_mode: str) -> int:
        return self._limits.get(game_mode, self.default)

    def effective_max(self, reservation: Reservation) -> int:
        return reservation.max_participants or self.max_participants_for(reservation.game_mode)

    def is_full(self, reservation: Reservation) -> bool:
        return len(reservation.participants) >= self.effective_max(reservation)

    def remaining(self, reservation: Reservation) -> int:
        return max(self.effective_max(reservation) - len(reservation.participants), 0)


def get_capacity_policy() -> CapacityPolicy:
    settings = get_settings()
    return CapacityPolicy(settings.game_mode_capacities, default=settings.default_max_participants)
