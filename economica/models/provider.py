"""Provider accounting models."""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional

from economica.core.errors import ErrorKind
from economica.models.query import Citation, PremiumResponse


class ProviderStatus(str, Enum):
    """Availability derived from usage against limits."""
    AVAILABLE = "available"
    WARNING = "warning"
    BLOCKED = "blocked"
    DISABLED = "disabled"


class HealthStatus(str, Enum):
    HEALTHY = "healthy"
    DEGRADED = "degraded"
    UNAVAILABLE = "unavailable"


class UsageWindow(str, Enum):
    HOURLY = "hourly"
    DAILY = "daily"
    MONTHLY = "monthly"


@dataclass
class WindowCounter:
    """Calls counted inside one fixed window."""
    limit: int
    reset_at: datetime
    used: int = 0

    @property
    def usage_percent(self) -> float:
        if self.limit <= 0:
            return 100.0
        return self.used / self.limit * 100


@dataclass
class ProviderAccount:
    """Usage state for one premium provider. Owned by the UsageTracker."""
    provider: str
    display_name: str
    enabled: bool
    priority: int
    cost_per_query: float
    windows: Dict[UsageWindow, WindowCounter]
    warning_threshold: float = 85.0
    blocking_threshold: float = 100.0

    tokens_used: int = 0
    total_cost: float = 0.0
    total_calls: int = 0
    success_count: int = 0
    failure_count: int = 0
    consecutive_failures: int = 0
    success_rate: float = 100.0  # EMA, percent
    avg_response_time: float = 0.0  # EMA, milliseconds
    last_used: Optional[datetime] = None
    cooldown_until: Optional[datetime] = None

    @property
    def usage_percent(self) -> float:
        """Usage of the tightest window."""
        return max(window.usage_percent for window in self.windows.values())

    @property
    def binding_window(self) -> UsageWindow:
        return max(self.windows, key=lambda name: self.windows[name].usage_percent)

    @property
    def status(self) -> ProviderStatus:
        if not self.enabled:
            return ProviderStatus.DISABLED
        usage = self.usage_percent
        if usage >= self.blocking_threshold:
            return ProviderStatus.BLOCKED
        if usage >= self.warning_threshold:
            return ProviderStatus.WARNING
        return ProviderStatus.AVAILABLE

    @property
    def health_status(self) -> HealthStatus:
        """Derived from usage and recent success rate only."""
        status = self.status
        if status in (ProviderStatus.BLOCKED, ProviderStatus.DISABLED) or self.success_rate < 50:
            return HealthStatus.UNAVAILABLE
        if status == ProviderStatus.WARNING or self.success_rate < 80:
            return HealthStatus.DEGRADED
        return HealthStatus.HEALTHY

    def is_cooling_down(self, now: datetime) -> bool:
        return self.cooldown_until is not None and now < self.cooldown_until

    def to_dict(self) -> Dict[str, Any]:
        return {
            "provider": self.provider,
            "display_name": self.display_name,
            "enabled": self.enabled,
            "priority": self.priority,
            "cost_per_query": self.cost_per_query,
            "status": self.status.value,
            "health_status": self.health_status.value,
            "usage_percent": round(self.usage_percent, 2),
            "windows": {
                name.value: {
                    "used": window.used,
                    "limit": window.limit,
                    "reset_at": window.reset_at.isoformat(),
                }
                for name, window in self.windows.items()
            },
            "tokens_used": self.tokens_used,
            "total_cost": round(self.total_cost, 6),
            "total_calls": self.total_calls,
            "success_rate": round(self.success_rate, 2),
            "avg_response_time_ms": round(self.avg_response_time, 2),
            "last_used": self.last_used.isoformat() if self.last_used else None,
            "cooldown_until": self.cooldown_until.isoformat() if self.cooldown_until else None,
        }


@dataclass
class ProviderReply:
    """What a provider client hands back: content plus accounting."""
    content: str
    tokens_used: int = 0
    cost: Optional[float] = None  # Falls back to the configured cost per query
    confidence_score: Optional[float] = None
    citations: List[Citation] = field(default_factory=list)


@dataclass
class ProviderFailure:
    kind: ErrorKind
    message: str
    provider: Optional[str] = None

    @property
    def retryable(self) -> bool:
        return self.kind.retryable


@dataclass
class ProviderCallResult:
    """Either a response or a failure, never both."""
    response: Optional[PremiumResponse] = None
    failure: Optional[ProviderFailure] = None

    @property
    def ok(self) -> bool:
        return self.response is not None

    @classmethod
    def success(cls, response: PremiumResponse) -> "ProviderCallResult":
        return cls(response=response)

    @classmethod
    def error(cls, kind: ErrorKind, message: str, provider: Optional[str] = None) -> "ProviderCallResult":
        return cls(failure=ProviderFailure(kind=kind, message=message, provider=provider))
