"""The controller artifacts deployed to every node.

A node runs the same controller build: a zipapp payload under lib/ and a
small launcher under bin/ that starts it with the node's python3.
"""

import logging
import os
import sys
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from testfleet.utils.errors import DeploymentError

logger = logging.getLogger(__name__)

EXECUTABLE_NAME = "testfleet"
BUNDLE_ENV = "TESTFLEET_BUNDLE"

LAUNCHER_TEMPLATE = """#!/bin/sh
here="$(cd "$(dirname "$0")" && pwd)"
exec python3 "$here/../lib/{payload}" "$@"
"""


@dataclass(frozen=True)
class DeploymentBundle:
    """Launcher script plus zipapp payload of the running controller."""

    payload: Path
    executable_name: str = EXECUTABLE_NAME

    @property
    def relative_bin_path(self) -> str:
        return f"bin/{self.executable_name}"

    @property
    def relative_lib_path(self) -> str:
        return f"lib/{self.payload.name}"

    @property
    def launcher(self) -> bytes:
        return LAUNCHER_TEMPLATE.format(payload=self.payload.name).encode("utf-8")

    @classmethod
    def discover(cls, payload: Optional[str] = None) -> "DeploymentBundle":
        """Locate the payload of the running controller.

        Checks, in order: the explicit path, $TESTFLEET_BUNDLE, and the
        zipapp this process was started from.

        Raises:
            DeploymentError: If no payload can be found
        """
        candidates = [payload, os.environ.get(BUNDLE_ENV)]
        if sys.argv and sys.argv[0].endswith(".pyz"):
            candidates.append(sys.argv[0])

        for candidate in candidates:
            if not candidate:
                continue
            path = Path(candidate).expanduser().resolve()
            if path.is_file():
                logger.debug(f"Using controller bundle {path}")
                return cls(payload=path)
            raise DeploymentError(
                f"Controller bundle {path} is not a file", stage="bundle"
            )

        raise DeploymentError(
            "Failed to detect the controller bundle; build a zipapp and pass "
            f"--bundle or set {BUNDLE_ENV}",
            stage="bundle",
        )
