"""
Configuration models for the agent loop.

Project configuration lives in ``<project>/.agent/config.yaml``:

    agent:
      provider: anthropic
      model: claude-sonnet-4-20250514
      api_key_env: ANTHROPIC_API_KEY
      max_tokens: 8192
      context_limit: 200000
    prompts:
      pre: "You are working on the billing service."
      post: "Be concise."
    execution:
      timeout_secs: 120
      max_tool_iterations: 50
      max_agent_depth: 3
    extraction_prompt: null
    agent_prompts:
      explore: "Custom explore prompt..."
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml

from agent_loop_engine.errors import ConfigurationInvalid

PROJECT_CONFIG_DIR = ".agent"
PROJECT_CONFIG_FILENAME = "config.yaml"

DEFAULT_CONTEXT_LIMIT = 200_000


@dataclass
class AgentSettings:
    """Which vendor and model to talk to."""

    provider: str = "anthropic"
    model: str = "claude-sonnet-4-20250514"
    api_key_env: str | None = None  # None = the provider's default variable
    max_tokens: int = 8192
    context_limit: int | None = None  # None = DEFAULT_CONTEXT_LIMIT

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> AgentSettings:
        return cls(
            provider=str(data.get("provider", "anthropic")),
            model=str(data.get("model", "claude-sonnet-4-20250514")),
            api_key_env=data.get("api_key_env"),
            max_tokens=data.get("max_tokens", 8192),
            context_limit=data.get("context_limit"),
        )

    def resolve_api_key(self, default_env: str | None = None) -> str | None:
        env_var = self.api_key_env or default_env
        if not env_var:
            return None
        return os.environ.get(env_var) or None

    def get_context_limit(self) -> int:
        return self.context_limit if self.context_limit is not None else DEFAULT_CONTEXT_LIMIT


@dataclass
class PromptsConfig:
    """Project-level fragments placed around the caller's system prompt."""

    pre: str = ""
    post: str = ""

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> PromptsConfig:
        return cls(pre=data.get("pre") or "", post=data.get("post") or "")


@dataclass
class ExecutionConfig:
    timeout_secs: float = 120  # per tool call and per network read
    max_tool_iterations: int = 50
    max_agent_depth: int = 3

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ExecutionConfig:
        return cls(
            timeout_secs=data.get("timeout_secs", 120),
            max_tool_iterations=data.get("max_tool_iterations", 50),
            max_agent_depth=data.get("max_agent_depth", 3),
        )


@dataclass
class ProjectConfig:
    agent: AgentSettings = field(default_factory=AgentSettings)
    prompts: PromptsConfig = field(default_factory=PromptsConfig)
    execution: ExecutionConfig = field(default_factory=ExecutionConfig)
    extraction_prompt: str | None = None  # must contain "{conversation}"
    agent_prompts: dict[str, str] = field(default_factory=dict)  # sub-agent overrides

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ProjectConfig:
        """Create config from a dictionary and validate it."""
        if not isinstance(data, dict):
            raise ConfigurationInvalid("configuration must be a mapping")
        if "agent" not in data or not isinstance(data["agent"], dict):
            raise ConfigurationInvalid("missing 'agent' section")

        config = cls(
            agent=AgentSettings.from_dict(data["agent"]),
            prompts=PromptsConfig.from_dict(data.get("prompts") or {}),
            execution=ExecutionConfig.from_dict(data.get("execution") or {}),
            extraction_prompt=data.get("extraction_prompt"),
            agent_prompts=dict(data.get("agent_prompts") or {}),
        )
        config.validate()
        return config

    @classmethod
    def from_yaml(cls, path: Path) -> ProjectConfig:
        """Load config from a YAML file."""
        try:
            with open(path) as f:
                data = yaml.safe_load(f)
        except OSError as e:
            raise ConfigurationInvalid(f"cannot read {path}: {e}") from e
        except yaml.YAMLError as e:
            raise ConfigurationInvalid(f"cannot parse {path}: {e}") from e
        return cls.from_dict(data or {})

    @classmethod
    def from_yaml_string(cls, content: str) -> ProjectConfig:
        try:
            data = yaml.safe_load(content)
        except yaml.YAMLError as e:
            raise ConfigurationInvalid(f"cannot parse configuration: {e}") from e
        return cls.from_dict(data or {})

    @classmethod
    def path_for(cls, project_path: Path) -> Path:
        return Path(project_path) / PROJECT_CONFIG_DIR / PROJECT_CONFIG_FILENAME

    @classmethod
    def load(cls, project_path: Path) -> ProjectConfig:
        """Load ``<project>/.agent/config.yaml``."""
        path = cls.path_for(project_path)
        if not path.exists():
            raise ConfigurationInvalid(f"config file not found: {path}")
        return cls.from_yaml(path)

    def validate(self) -> None:
        checks = [
            ("agent.max_tokens", self.agent.max_tokens),
            ("execution.timeout_secs", self.execution.timeout_secs),
            ("execution.max_tool_iterations", self.execution.max_tool_iterations),
            ("execution.max_agent_depth", self.execution.max_agent_depth),
        ]
        if self.agent.context_limit is not None:
            checks.append(("agent.context_limit", self.agent.context_limit))
        for name, value in checks:
            if isinstance(value, bool) or not isinstance(value, (int, float)) or value <= 0:
                raise ConfigurationInvalid(f"{name} must be a positive number, got {value!r}")
        if not self.agent.model:
            raise ConfigurationInvalid("agent.model must not be empty")
        if self.extraction_prompt is not None and "{conversation}" not in self.extraction_prompt:
            raise ConfigurationInvalid("extraction_prompt must contain '{conversation}'")

    def to_dict(self) -> dict[str, Any]:
        return {
            "agent": {
                "provider": self.agent.provider,
                "model": self.agent.model,
                "api_key_env": self.agent.api_key_env,
                "max_tokens": self.agent.max_tokens,
                "context_limit": self.agent.context_limit,
            },
            "prompts": {"pre": self.prompts.pre, "post": self.prompts.post},
            "execution": {
                "timeout_secs": self.execution.timeout_secs,
                "max_tool_iterations": self.execution.max_tool_iterations,
                "max_agent_depth": self.execution.max_agent_depth,
            },
            "extraction_prompt": self.extraction_prompt,
            "agent_prompts": dict(self.agent_prompts),
        }
