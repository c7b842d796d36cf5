from __future__ import annotations

from typing import Any

from releasekit.errors import ArtifactError
from releasekit.template import PHASES, check_phase


class ArtifactStore:
    """Values recorded by steps, keyed by the phase that produced them."""

    def __init__(self, phases: dict[str, dict[str, Any]] | None = None):
        self._phases = phases if phases is not None else {phase: {} for phase in PHASES}

    def push(self, phase: str | None, name: str, value: Any) -> None:
        # Writes outside an active phase have nowhere to go.
        if phase is None:
            return
        self._phases[check_phase(phase)][name] = value

    def get(self, phase: str, name: str) -> Any:
        return self._phases[check_phase(phase)].get(name)

    def get_all(self, phase: str | None = None) -> dict[str, Any]:
        if phase is None:
            return self._phases
        return self._phases[check_phase(phase)]

    def require(self, phase: str, name: str, message: str | None = None) -> Any:
        value = self.get(phase, name)
        if value is None:
            raise ArtifactError(message or f"Missing artifact: {phase}/{name}")
        return value
