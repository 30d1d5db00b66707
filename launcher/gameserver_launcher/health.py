from __future__ import annotations
import enum
from dataclasses import dataclass, asdict
from typing import Any, Dict, Sequence

LATEST_ERRORS_SHOWN = 5


class HealthStatus(str, enum.Enum):
    HEALTHY = "healthy"
    DEGRADED = "degraded"
    UNHEALTHY = "unhealthy"


@dataclass(frozen=True)
class HealthResult:
    status: HealthStatus
    description: str

    @property
    def is_healthy(self) -> bool:
        return self.status is HealthStatus.HEALTHY

    def to_dict(self) -> Dict[str, Any]:
        d = asdict(self)
        d["status"] = self.status.value
        return d


def evaluate(running: bool, errors: Sequence[str]) -> HealthResult:
    if not running:
        return HealthResult(HealthStatus.UNHEALTHY, "Game server process is not running.")
    if errors:
        latest = "\n".join(errors[-LATEST_ERRORS_SHOWN:])
        return HealthResult(
            HealthStatus.DEGRADED,
            f"Game server is running but has {len(errors)} recent error(s). Latest: {latest}",
        )
    return HealthResult(HealthStatus.HEALTHY, "Game server is running with no recent errors.")


def evaluate_health(server) -> HealthResult:
    """Verdict for ``server`` right now, from its liveness and error snapshot."""
    return evaluate(server.is_running, server.recent_errors)
