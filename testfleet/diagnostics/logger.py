"""Logging setup and the per-node bootstrap trail.

A node bootstrap goes through fixed stages (connect, resolve, upload,
forward, start, inventory). NodeLogger tags every message with the node
and records which stages completed and when, so a failure can be logged
together with how far the node got.
"""

import logging
import time
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple

node_logger = logging.getLogger("testfleet.node")


@dataclass(frozen=True)
class BootstrapStep:
    """One completed bootstrap stage."""

    stage: str
    message: str
    elapsed: float
    context: Dict[str, Any] = field(default_factory=dict)

    def __str__(self) -> str:
        return f"{self.stage} ({self.elapsed:.1f}s)"


class NodeLogger:
    """Bootstrap logger for one node.

    Usage:
        log = NodeLogger(node="pixel-rack", host="10.0.0.7")
        log.stage("connect", "SSH session open")
        log.stage("upload", "Artifacts uploaded", path="/home/ci/testfleet")
        ...
        log.failed(error)  # logs the error with the completed stages
    """

    def __init__(self, node: str, host: Optional[str] = None):
        self.node = node
        self.host = host
        self._started = time.monotonic()
        self._steps: List[BootstrapStep] = []

    @property
    def steps(self) -> Tuple[BootstrapStep, ...]:
        return tuple(self._steps)

    @property
    def last_stage(self) -> Optional[str]:
        return self._steps[-1].stage if self._steps else None

    def _format(self, message: str, context: Dict[str, Any]) -> str:
        prefix = f"[{self.node}@{self.host}]" if self.host else f"[{self.node}]"
        if not context:
            return f"{prefix} {message}"
        details = ", ".join(f"{key}={value}" for key, value in context.items())
        return f"{prefix} {message} ({details})"

    def stage(self, stage: str, message: str, **context: Any) -> BootstrapStep:
        """Record a completed stage and log it at INFO."""
        step = BootstrapStep(
            stage=stage,
            message=message,
            elapsed=time.monotonic() - self._started,
            context=context,
        )
        self._steps.append(step)
        node_logger.info(self._format(message, context))
        return step

    def debug(self, message: str, **context: Any) -> None:
        node_logger.debug(self._format(message, context))

    def summary(self) -> str:
        """Completed stages as 'connect (0.4s) -> upload (3.1s)'."""
        if not self._steps:
            return "no stage completed"
        return " -> ".join(str(step) for step in self._steps)

    def failed(self, error: BaseException) -> None:
        """Log a bootstrap failure with the stages reached before it."""
        node_logger.error(
            self._format(
                f"Bootstrap failed after {self.last_stage or 'start'}: {error}",
                {"completed": self.summary()},
            )
        )


def setup_logging(
    level: str = "INFO",
    debug_http: bool = False,
) -> None:
    """Configure logging for the application.

    Args:
        level: Log level (DEBUG, INFO, WARNING, ERROR)
        debug_http: Enable verbose orchestrator HTTP logging
    """
    logging.basicConfig(
        level=getattr(logging, level.upper()),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%H:%M:%S",
    )

    if debug_http:
        logging.getLogger("httpx").setLevel(logging.DEBUG)
        logging.getLogger("httpcore").setLevel(logging.DEBUG)
    else:
        logging.getLogger("httpx").setLevel(logging.WARNING)
        logging.getLogger("httpcore").setLevel(logging.WARNING)

    logging.getLogger("asyncssh").setLevel(logging.WARNING)
