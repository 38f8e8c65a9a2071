"""Load the configuration file and apply the orchestrator override."""

import json
import logging
from pathlib import Path
from typing import TYPE_CHECKING, Callable, Union

from pydantic import ValidationError

from testfleet.utils.errors import ConfigurationError
from .merge import merge_configs
from .models import GlobalConfig

if TYPE_CHECKING:
    from testfleet.client.orchestrator import OrchestratorClient

logger = logging.getLogger(__name__)


def load_config(path: Union[str, Path]) -> GlobalConfig:
    """Read and validate a configuration file.

    Raises:
        ConfigurationError: If the file cannot be read or is invalid
    """
    path = Path(path)
    try:
        text = path.read_text(encoding="utf-8")
    except OSError as e:
        raise ConfigurationError(
            f"Failed to read the configuration file '{path}'"
        ) from e

    try:
        data = json.loads(text)
    except json.JSONDecodeError as e:
        raise ConfigurationError(
            f"Configuration file '{path}' is not valid JSON: {e}"
        ) from e

    try:
        return GlobalConfig.model_validate(data)
    except ValidationError as e:
        error = e.errors()[0]
        field = ".".join(str(part) for part in error["loc"]) or None
        raise ConfigurationError(
            f"Invalid value for '{field}' in '{path}': {error['msg']}",
            field=field,
        ) from e


async def request_config(
    path: Union[str, Path],
    client_factory: Callable[[str], "OrchestratorClient"],
) -> GlobalConfig:
    """Load the local configuration and merge the orchestrator's on top.

    The orchestrator is only contacted when the local file supplies both
    a token and a test plan.

    Args:
        path: Local configuration file
        client_factory: Builds an orchestrator client from a token
    """
    local = load_config(path)

    if not local.token or not local.test_plan:
        logger.debug("No token or test plan, using local configuration")
        return local

    logger.info(f"Fetching configuration for test plan {local.test_plan}")
    async with client_factory(local.token) as client:
        override = await client.get_configuration(local.test_plan)

    return merge_configs(local, override)
