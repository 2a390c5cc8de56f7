"""Backend factory.

Picks the topology from the argument, overridden by CLAUDE_BACKEND when set.

Usage:
    backend = await create_backend()
    backend = await create_backend(BackendType.NODEJS, bridge_script="bridge.js")
"""

from __future__ import annotations

from .backend import AgentBackend
from .bridge_backend import BridgeBackend
from .cli_backend import CliBackend
from .config import BackendType, SdkConfig
from .sdk_logger import SdkLogger


async def create_backend(
    backend_type: BackendType = BackendType.DIRECT_CLI,
    *,
    executable_path: str | None = None,
    bridge_script: str | None = None,
    node_executable: str | None = None,
    config: SdkConfig | None = None,
    logger: SdkLogger | None = None,
) -> AgentBackend:
    """Create a backend of the requested (or environment-selected) type.

    Args:
        backend_type: Topology to use when CLAUDE_BACKEND is unset
        executable_path: claude executable for the direct topology
        bridge_script: Path to the bridge script (required for NODEJS)
        node_executable: Node.js executable for the bridge (default: "node")
        config: Environment configuration (default: read from the environment)
        logger: Logger handle (default: built from ``config``)

    Raises:
        ValueError: NODEJS was selected without a bridge script
        SpawnError: The bridge process failed to start
    """
    config = config or SdkConfig.from_env()
    logger = logger or SdkLogger.from_config(config)
    selected = config.backend or backend_type

    match selected:
        case BackendType.NODEJS:
            if not bridge_script:
                raise ValueError("bridge_script is required for the nodejs backend")
            logger.info(f"Creating bridge backend ({bridge_script})")
            return await BridgeBackend.spawn(
                bridge_script, node_executable=node_executable, logger=logger
            )
        case _:
            logger.info("Creating direct CLI backend")
            return CliBackend(
                executable_path=executable_path or config.executable_path, logger=logger
            )
