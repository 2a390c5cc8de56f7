"""claude-cli-sdk command line.

Usage:
    claude-cli-sdk run "Explain this repo"            # One turn, messages as JSON lines
    claude-cli-sdk run "Fix the tests" --auto-allow   # Allow every tool use
    claude-cli-sdk run "..." --backend nodejs --bridge-script bridge.js

    claude-cli-sdk config                            # Show environment configuration
    claude-cli-sdk config --format json
"""

from __future__ import annotations

import asyncio
import dataclasses
import json
import logging
import os
import sys

import click

from .backend import AgentSession
from .callbacks import PermissionRequest
from .config import BackendType, SdkConfig
from .errors import ClaudeSdkError
from .factory import create_backend
from .options import PermissionMode, SessionOptions
from .sdk_logger import SdkLogger

# Output format options
FORMAT_TABLE = "table"
FORMAT_JSON = "json"

# Permission policies
POLICY_ASK = "ask"
POLICY_ALLOW = "allow"
POLICY_DENY = "deny"


@click.group()
def main() -> None:
    """Drive the claude CLI over its stream-json protocol."""


# =============================================================================
# Run Command
# =============================================================================


@main.command("run")
@click.argument("prompt")
@click.option("--cwd", default=None, help="Working directory for the session (default: current)")
@click.option("--model", default=None, help="Model to use")
@click.option(
    "--permission-mode",
    type=click.Choice([m.value for m in PermissionMode]),
    default=None,
    help="Initial permission mode",
)
@click.option(
    "--backend",
    "backend_name",
    type=click.Choice([t.value for t in BackendType]),
    default=None,
    help="Backend topology (default: CLAUDE_BACKEND or direct)",
)
@click.option("--bridge-script", type=click.Path(exists=True), help="Bridge script (nodejs)")
@click.option("--auto-allow", is_flag=True, help="Allow every tool use without asking")
@click.option("--deny-all", is_flag=True, help="Deny every tool use without asking")
@click.option("--timeout", default=600.0, show_default=True, help="Seconds before giving up")
@click.option("--debug", is_flag=True, help="Log wire traffic")
@click.option("--log-file", type=click.Path(), help="Append JSONL log records to this file")
def run_prompt(
    prompt: str,
    cwd: str | None,
    model: str | None,
    permission_mode: str | None,
    backend_name: str | None,
    bridge_script: str | None,
    auto_allow: bool,
    deny_all: bool,
    timeout: float,
    debug: bool,
    log_file: str | None,
) -> None:
    """Run one turn and print every message as a JSON line.

    Examples:

        claude-cli-sdk run "List the TODOs in this repo"

        # Non-interactive, read-only
        claude-cli-sdk run "Summarize README.md" --deny-all
    """
    if auto_allow and deny_all:
        raise click.UsageError("--auto-allow and --deny-all are mutually exclusive")

    config = SdkConfig.from_env()
    if backend_name is not None:
        # An explicit flag wins over CLAUDE_BACKEND
        config = dataclasses.replace(config, backend=BackendType(backend_name))

    if debug or config.debug:
        _configure_stderr_logging()
    logger = SdkLogger(debug_enabled=debug or config.debug, log_file=log_file or config.log_file)
    options = SessionOptions(
        model=model,
        permission_mode=PermissionMode(permission_mode) if permission_mode else None,
    )
    policy = POLICY_ALLOW if auto_allow else POLICY_DENY if deny_all else POLICY_ASK

    turn = _run_turn(prompt, cwd or os.getcwd(), options, config, logger, bridge_script, policy)
    try:
        ok = asyncio.run(asyncio.wait_for(turn, timeout=timeout))
    except TimeoutError:
        click.echo(f"Timed out after {timeout:g}s", err=True)
        sys.exit(1)
    except ClaudeSdkError as e:
        click.echo(f"Error: {e}", err=True)
        sys.exit(1)
    except ValueError as e:
        raise click.UsageError(str(e)) from e
    except KeyboardInterrupt:
        click.echo("\nInterrupted", err=True)
        sys.exit(130)
    finally:
        logger.close()

    if not ok:
        sys.exit(1)


def _configure_stderr_logging() -> None:
    """Send library log records to stderr; stdout carries only JSON lines."""
    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(logging.Formatter("%(asctime)s - %(name)s - %(levelname)s - %(message)s"))
    root_logger = logging.getLogger()
    root_logger.addHandler(handler)
    root_logger.setLevel(logging.DEBUG)


async def _run_turn(
    prompt: str,
    cwd: str,
    options: SessionOptions,
    config: SdkConfig,
    logger: SdkLogger,
    bridge_script: str | None,
    policy: str,
) -> bool:
    """Run one turn. Returns False if the turn ended in error."""
    backend = await create_backend(
        BackendType.DIRECT_CLI, bridge_script=bridge_script, config=config, logger=logger
    )
    async with backend:
        session = await backend.create_session(prompt, cwd, options=options)
        answerer = asyncio.create_task(_answer_callbacks(session, policy))
        try:
            async for message in session.receive_turn():
                click.echo(json.dumps(message.raw, ensure_ascii=False, default=str))
                if message.is_turn_complete:
                    return not getattr(message, "is_error", False)
        finally:
            answerer.cancel()
            await session.kill()
    # The session ended before a result arrived
    return False


async def _answer_callbacks(session: AgentSession, policy: str) -> None:
    hooks = asyncio.create_task(_answer_hooks(session))
    try:
        async for request in session.permission_requests:
            await _decide(request, policy)
    finally:
        hooks.cancel()


async def _answer_hooks(session: AgentSession) -> None:
    async for request in session.hook_requests:
        request.respond()


async def _decide(request: PermissionRequest, policy: str) -> None:
    if policy == POLICY_ALLOW:
        request.allow()
        return
    if policy == POLICY_DENY:
        request.deny()
        return

    question = f"Allow {request.tool_name} with {json.dumps(request.input, default=str)}?"
    allowed = await asyncio.to_thread(click.confirm, question, default=False, err=True)
    if allowed:
        request.allow()
    else:
        request.deny()


# =============================================================================
# Config Command
# =============================================================================


@main.command("config")
@click.option(
    "--format",
    "-f",
    "output_format",
    type=click.Choice([FORMAT_TABLE, FORMAT_JSON]),
    default=FORMAT_TABLE,
    help="Output format",
)
def show_config(output_format: str) -> None:
    """Show configuration resolved from the environment.

    Examples:

        claude-cli-sdk config
        claude-cli-sdk config --format json
    """
    config = SdkConfig.from_env().as_dict()

    if output_format == FORMAT_JSON:
        click.echo(json.dumps(config, indent=2))
        return

    click.echo("claude-cli-sdk Configuration")
    click.echo("-" * 40)
    click.echo(f"Executable:         {config['executable_path']}")
    click.echo(f"Debug logging:      {'on' if config['debug'] else 'off'}")
    click.echo(f"Log file:           {config['log_file'] or 'none'}")
    click.echo(f"Backend:            {config['backend'] or 'direct (default)'}")


if __name__ == "__main__":
    main()
