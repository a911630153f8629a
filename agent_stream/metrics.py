from dataclasses import dataclass
from datetime import datetime
from typing import Optional


@dataclass
class ReliabilityMetric:
    """Rolling reliability figures for one capability."""

    tool_name: str
    total_executions: int = 0
    successful_executions: int = 0
    success_rate: float = 1.0
    avg_execution_time_ms: float = 0.0
    last_success: Optional[datetime] = None
    last_error: Optional[str] = None

    @property
    def reliability_score(self) -> float:
        return self.success_rate * (1 - min(self.avg_execution_time_ms / 10000, 0.5))

    def record(
        self,
        success: bool,
        execution_time_ms: float,
        smoothing: float = 0.2,
        error: Optional[str] = None,
    ) -> None:
        self.total_executions += 1
        # exponential running average, seeded at 1.0
        self.success_rate = smoothing * (1.0 if success else 0.0) + (1 - smoothing) * self.success_rate

        if success:
            self.successful_executions += 1
            n = self.successful_executions
            self.avg_execution_time_ms += (execution_time_ms - self.avg_execution_time_ms) / n
            self.last_success = datetime.now()
        else:
            self.last_error = error

    def suggestions(self, reliability_threshold: float = 0.8) -> list[str]:
        out = []
        if self.reliability_score < reliability_threshold:
            out.append(
                f"Low reliability ({self.reliability_score * 100:.1f}%) - "
                "consider error handling improvements"
            )
        if self.avg_execution_time_ms > 5000:
            out.append(
                f"High execution time ({self.avg_execution_time_ms:.0f}ms) - "
                "consider performance optimization"
            )
        if self.success_rate < 0.9:
            out.append(
                f"Low success rate ({self.success_rate * 100:.1f}%) - review input validation"
            )
        return out

    def to_dict(self) -> dict:
        return {
            "tool_name": self.tool_name,
            "total_executions": self.total_executions,
            "success_rate": self.success_rate,
            "avg_execution_time_ms": self.avg_execution_time_ms,
            "reliability_score": self.reliability_score,
            "last_success": self.last_success.isoformat() if self.last_success else None,
            "last_error": self.last_error,
        }
