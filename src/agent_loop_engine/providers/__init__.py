"""
Model vendor adapters.

Example:
    from agent_loop_engine.config import ProjectConfig
    from agent_loop_engine.providers import create_provider_adapter

    config = ProjectConfig.load(project_path)
    adapter = create_provider_adapter(config, project_path)
"""

from __future__ import annotations

from pathlib import Path

import httpx

from agent_loop_engine.config import ProjectConfig
from agent_loop_engine.errors import UnsupportedProvider
from agent_loop_engine.logging import get_logger
from agent_loop_engine.prompts import DEFAULT_SYSTEM_PROMPT
from agent_loop_engine.providers.anthropic import AnthropicAdapter, AnthropicNormalizer
from agent_loop_engine.providers.base import (
    HttpRequestSpec,
    ProtocolNormalizer,
    ProviderAdapter,
    build_system_prompt,
)
from agent_loop_engine.providers.gemini import GeminiAdapter, GeminiNormalizer

logger = get_logger("providers")

PROVIDERS: dict[str, type[ProviderAdapter]] = {
    "anthropic": AnthropicAdapter,
    "gemini": GeminiAdapter,
}


def create_provider_adapter(
    config: ProjectConfig,
    project_path: Path | str,
    app_system_prompt: str | None = DEFAULT_SYSTEM_PROMPT,
    client: httpx.AsyncClient | None = None,
) -> ProviderAdapter:
    """Build the adapter named by ``config.agent.provider`` (case-insensitive)."""
    provider = config.agent.provider.lower()
    adapter_cls = PROVIDERS.get(provider)
    if adapter_cls is None:
        raise UnsupportedProvider(config.agent.provider)
    logger.info("Using %s adapter with model %s", provider, config.agent.model)
    return adapter_cls(
        settings=config.agent,
        prompts=config.prompts,
        execution=config.execution,
        project_path=project_path,
        app_system_prompt=app_system_prompt,
        extraction_prompt=config.extraction_prompt,
        client=client,
    )


__all__ = [
    "PROVIDERS",
    "AnthropicAdapter",
    "AnthropicNormalizer",
    "GeminiAdapter",
    "GeminiNormalizer",
    "HttpRequestSpec",
    "ProtocolNormalizer",
    "ProviderAdapter",
    "build_system_prompt",
    "create_provider_adapter",
]
