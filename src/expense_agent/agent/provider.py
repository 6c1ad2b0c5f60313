"""Chat model construction from explicit provider settings."""

from __future__ import annotations

from typing import Any

from expense_agent.config import ProviderConfig


class ProviderConfigurationError(RuntimeError):
    """Raised when the model provider cannot be configured."""


def create_chat_model(config: ProviderConfig) -> Any:
    if not config.has_credentials:
        raise ProviderConfigurationError(
            "OPENAI_API_KEY is missing. Please add it to your environment variables."
        )

    from langchain_openai import ChatOpenAI

    return ChatOpenAI(
        model=config.model,
        temperature=config.temperature,
        api_key=config.api_key,
        timeout=config.timeout_seconds,
    )
