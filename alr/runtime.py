from __future__ import annotations

from dataclasses import dataclass, field
from threading import Lock

from .db import utc_now


@dataclass
class RolloutStatus:
    id: str
    app_name: str
    venerable_id: str
    state: str  # see rollouts.RolloutState
    message: str
    replacement_id: str = ""
    started_at: str = field(default_factory=utc_now)
    updated_at: str = field(default_factory=utc_now)


class RuntimeState:
    """In-memory state shared by the API: rollout progress and per-resource locks."""

    def __init__(self) -> None:
        self.lock = Lock()
        self.rollouts: dict[str, RolloutStatus] = {}
        self.resource_locks: dict[str, Lock] = {}  # resource key -> lock

    def resource_lock(self, key: str) -> Lock:
        """Lock serializing reconciliations of one resource."""
        with self.lock:
            return self.resource_locks.setdefault(key, Lock())

    def upsert_rollout(self, st: RolloutStatus) -> None:
        with self.lock:
            st.updated_at = utc_now()
            self.rollouts[st.id] = st

    def get_rollout(self, rollout_id: str) -> RolloutStatus | None:
        with self.lock:
            return self.rollouts.get(rollout_id)

    def list_rollouts(self) -> list[RolloutStatus]:
        with self.lock:
            return list(self.rollouts.values())
