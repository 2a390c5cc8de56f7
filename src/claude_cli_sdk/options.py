"""Session options.

Options are pydantic models. ``SessionOptions.to_wire()`` produces the
snake_case body used both for the direct initialize request and for the
bridge's ``session.create`` payload.
"""

from __future__ import annotations

from enum import Enum
from typing import Annotated, Any, Literal

from pydantic import BaseModel, Field


class PermissionMode(str, Enum):
    """Permission mode for a session."""

    DEFAULT = "default"
    ACCEPT_EDITS = "acceptEdits"
    BYPASS_PERMISSIONS = "bypassPermissions"
    PLAN = "plan"

    @classmethod
    def parse(cls, value: str | None) -> PermissionMode:
        """Lenient parse; unknown values fall back to DEFAULT."""
        for mode in cls:
            if mode.value == value:
                return mode
        return cls.DEFAULT


class PresetSystemPrompt(BaseModel):
    """The built-in claude_code system prompt, optionally extended."""

    append: str | None = None

    def to_wire(self) -> dict[str, Any]:
        body: dict[str, Any] = {"type": "preset", "preset": "claude_code"}
        if self.append is not None:
            body["append"] = self.append
        return body


class PresetTools(BaseModel):
    """The built-in claude_code tool preset."""

    def to_wire(self) -> dict[str, Any]:
        return {"type": "preset", "preset": "claude_code"}


class McpStdioServerConfig(BaseModel):
    type: Literal["stdio"] = "stdio"
    command: str
    args: list[str] | None = None
    env: dict[str, str] | None = None


class McpSseServerConfig(BaseModel):
    type: Literal["sse"] = "sse"
    url: str
    headers: dict[str, str] | None = None


class McpHttpServerConfig(BaseModel):
    type: Literal["http"] = "http"
    url: str
    headers: dict[str, str] | None = None


McpServerConfig = Annotated[
    McpStdioServerConfig | McpSseServerConfig | McpHttpServerConfig,
    Field(discriminator="type"),
]


class HookConfig(BaseModel):
    """One hook registration; ``matcher`` limits which tools trigger it."""

    matcher: str | None = None


class SessionOptions(BaseModel):
    """Options for creating a session.

    Only fields that are set end up on the wire.
    """

    model: str | None = None
    permission_mode: PermissionMode | None = None
    allow_dangerously_skip_permissions: bool | None = None
    permission_prompt_tool_name: str | None = None
    tools: list[str] | PresetTools | None = None
    plugins: list[dict[str, Any]] | None = None
    strict_mcp_config: bool | None = None
    resume: str | None = None
    resume_session_at: str | None = None
    allowed_tools: list[str] | None = None
    disallowed_tools: list[str] | None = None
    system_prompt: str | PresetSystemPrompt | None = None
    max_turns: int | None = None
    max_budget_usd: float | None = None
    max_thinking_tokens: int | None = None
    include_partial_messages: bool | None = None
    enable_file_checkpointing: bool | None = None
    additional_directories: list[str] | None = None
    mcp_servers: dict[str, McpServerConfig] | None = None
    agents: dict[str, Any] | None = None
    hooks: dict[str, list[HookConfig]] | None = None
    sandbox: dict[str, Any] | None = None
    setting_sources: list[str] | None = None
    betas: list[str] | None = None
    output_format: dict[str, Any] | None = None
    fallback_model: str | None = None

    def system_prompt_wire(self) -> str | dict[str, Any] | None:
        if isinstance(self.system_prompt, PresetSystemPrompt):
            return self.system_prompt.to_wire()
        return self.system_prompt

    def to_wire(self) -> dict[str, Any]:
        """Snake_case dict with unset fields omitted."""
        body = self.model_dump(
            mode="json",
            exclude_none=True,
            exclude={"system_prompt", "tools"},
        )
        if self.system_prompt is not None:
            body["system_prompt"] = self.system_prompt_wire()
        if isinstance(self.tools, PresetTools):
            body["tools"] = self.tools.to_wire()
        elif self.tools is not None:
            body["tools"] = list(self.tools)
        return body
