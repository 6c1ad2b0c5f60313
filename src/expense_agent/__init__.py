"""Expense question-answering agent package."""

from .config import AgentConfig, ProviderConfig, StoreConfig

__all__ = ["AgentConfig", "ProviderConfig", "StoreConfig"]
