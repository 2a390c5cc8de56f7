"""Integration tests for the bridge backend against a real subprocess.

tests/fixtures/fake_bridge.py stands in for the Node.js bridge; it is run
with the current Python interpreter in place of ``node``.
"""

import sys
from pathlib import Path

import pytest

from claude_cli_sdk.bridge_backend import BridgeBackend
from claude_cli_sdk.errors import SpawnError
from claude_cli_sdk.protocol.messages import AssistantMessage, ResultMessage

pytestmark = pytest.mark.integration

FIXTURES = Path(__file__).parent.parent / "fixtures"


async def spawn_bridge(script: str = "fake_bridge.py") -> BridgeBackend:
    return await BridgeBackend.spawn(str(FIXTURES / script), node_executable=sys.executable)


class TestBridgeProcess:
    """Multiplexed sessions over one real process."""

    @pytest.mark.anyio
    async def test_session_turns(self):
        """Each session gets its own turns over the shared process."""
        backend = await spawn_bridge()
        try:
            first = await backend.create_session("one", "/tmp")
            second = await backend.create_session("two", "/tmp")

            first_turn = [m async for m in first.receive_turn()]
            second_turn = [m async for m in second.receive_turn()]

            assert [type(m) for m in first_turn] == [AssistantMessage, ResultMessage]
            assert first_turn[0].text == "echo: one"
            assert second_turn[0].text == "echo: two"
            assert first.sdk_session_id == "sdk-bridge-1"

            await second.send("again")
            follow_up = [m async for m in second.receive_turn()]
            assert follow_up[0].text == "echo: again"
        finally:
            await backend.dispose()

    @pytest.mark.anyio
    async def test_queries_and_kill(self):
        """Queries round-trip; a killed session leaves the backend."""
        backend = await spawn_bridge()
        try:
            session = await backend.create_session("hello", "/tmp")

            models = await session.supported_models()
            await session.set_model("fake-opus")
            await session.interrupt()
            await session.kill()

            assert models == [{"value": "fake-opus"}, {"value": "fake-sonnet"}]
            assert backend.sessions == []
        finally:
            await backend.dispose()

    @pytest.mark.anyio
    async def test_bridge_failing_at_startup(self):
        """A bridge that dies on startup is reported with its stderr."""
        try:
            backend = await spawn_bridge("failing_bridge.py")
        except SpawnError as e:
            assert "Cannot find module" in e.message
            assert e.exit_code == 1
        else:
            # Slow interpreter start: the exit lands after the grace period
            error = await backend.errors.get()
            assert error.code == "PROCESS_EXIT"
            await backend.dispose()
