"""Configuration models for the expense agent."""

from __future__ import annotations

import os

from pydantic import BaseModel, Field, SecretStr


class AgentConfig(BaseModel):
    """Configures the tool-calling loop and its latency targets."""

    max_rounds: int = Field(default=3, ge=1)
    deadline_seconds: float | None = Field(default=60.0, gt=0.0)
    target_latency_seconds: float = Field(default=8.0, gt=0.0)


class ProviderConfig(BaseModel):
    """Chat model provider settings, passed explicitly to the agent."""

    api_key: SecretStr | None = None
    model: str = "gpt-4o-mini"
    temperature: float = Field(default=0.0, ge=0.0, le=2.0)
    timeout_seconds: float | None = Field(default=30.0, gt=0.0)

    @property
    def has_credentials(self) -> bool:
        return self.api_key is not None and bool(self.api_key.get_secret_value())

    @classmethod
    def from_env(cls) -> ProviderConfig:
        timeout = os.getenv("OPENAI_TIMEOUT_SECONDS")
        return cls(
            api_key=os.getenv("OPENAI_API_KEY") or None,
            model=os.getenv("OPENAI_MODEL", "gpt-4o-mini"),
            temperature=float(os.getenv("OPENAI_TEMPERATURE", "0")),
            timeout_seconds=float(timeout) if timeout else 30.0,
        )


class StoreConfig(BaseModel):
    """Selects the expense store backend.

    An empty `sqlite_path` keeps expenses in memory for the process lifetime.
    """

    sqlite_path: str | None = None

    @classmethod
    def from_env(cls) -> StoreConfig:
        return cls(sqlite_path=os.getenv("EXPENSE_DB_PATH") or None)
