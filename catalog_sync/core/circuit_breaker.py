"""
Auth-Failure Circuit Breaker

A rejected credential will not fix itself mid-run, so once cumulative
AuthError outcomes reach the threshold the run stops scheduling work and
reports itself as aborted.

States:
- CLOSED: Normal operation, items are processed
- OPEN: Threshold reached, no further items start

Unlike a per-host breaker there is no HALF_OPEN recovery within a run;
a new run starts with a fresh breaker.
"""
import logging
from datetime import datetime, timezone
from enum import Enum
from typing import Optional

logger = logging.getLogger(__name__)


class CircuitState(str, Enum):
    """Circuit breaker states."""
    CLOSED = "CLOSED"
    OPEN = "OPEN"


class AuthCircuitBreaker:
    """
    Cumulative auth-failure counter for one sync run.

    Attributes:
        name: Identifier used in log lines
        failure_threshold: Auth failures that open the circuit
    """

    FAILURE_THRESHOLD = 10

    def __init__(self, name: str = "auth", failure_threshold: Optional[int] = None):
        self.name = name
        self.failure_threshold = failure_threshold or self.FAILURE_THRESHOLD
        self.failure_count = 0
        self.state = CircuitState.CLOSED
        self.opened_at: Optional[datetime] = None

    @property
    def is_open(self) -> bool:
        return self.state == CircuitState.OPEN

    def is_call_permitted(self) -> bool:
        """Check if another item may start."""
        return self.state == CircuitState.CLOSED

    def record_auth_failure(self) -> bool:
        """
        Count one AuthError outcome.

        Returns:
            True if this failure opened the circuit
        """
        self.failure_count += 1
        if self.state == CircuitState.CLOSED and self.failure_count >= self.failure_threshold:
            self.state = CircuitState.OPEN
            self.opened_at = datetime.now(timezone.utc)
            logger.error(
                f"[CIRCUIT:{self.name}] OPENED after {self.failure_count} auth failures - "
                f"halting run (credentials will not self-correct)"
            )
            return True
        logger.warning(
            f"[CIRCUIT:{self.name}] auth failure {self.failure_count}/{self.failure_threshold}"
        )
        return False

    def get_metrics(self) -> dict:
        """Get circuit breaker metrics for observability."""
        return {
            "name": self.name,
            "state": self.state.value,
            "failure_count": self.failure_count,
            "failure_threshold": self.failure_threshold,
            "opened_at": self.opened_at.isoformat() if self.opened_at else None,
        }
