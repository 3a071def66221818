"""
Default status labels per lifecycle state, as configured in settings.
"""
from collections.abc import Mapping

from order_lifecycle.config import Settings


class StatusConfigError(Exception):
    """Raised when status configuration cannot answer a lookup."""


class UnknownStateError(StatusConfigError):
    """Raised when a lifecycle state has no default status label configured."""
    def __init__(self, state: str | None = None):
        self.state = state
        super().__init__(f"no default status configured for state {state!r}")


class StatusConfig:
    def __init__(self, default_statuses: Mapping[str, str]):
        self._default_statuses = dict(default_statuses)

    @classmethod
    def from_settings(cls, settings: Settings) -> "StatusConfig":
        return cls(settings.state_default_statuses)

    def default_status_for(self, state: str) -> str:
        status = self._default_statuses.get(state)
        if not status:
            raise UnknownStateError(state)
        return status

    def __call__(self, state: str) -> str:
        return self.default_status_for(state)
