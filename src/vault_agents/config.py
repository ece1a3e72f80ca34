"""Application configuration using Pydantic settings."""

from __future__ import annotations

from pathlib import Path
from typing import Any, Dict, Literal, Optional

from pydantic import BaseModel, Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class OpenAIConfig(BaseModel):
    """Configuration for the chat completion endpoint backing the model gateway."""

    api_key: str = Field(default_factory=lambda: "")
    base_url: Optional[str] = None
    model: str = "gpt-4o-mini"
    temperature: float = 0.2
    max_output_tokens: int = 2048


class DatabaseConfig(BaseModel):
    """Configuration for the relational store holding runs, artifacts and documents."""

    url: str = Field(default="sqlite:///vault_agents.db")
    echo: bool = False


class ResearchConfig(BaseModel):
    """Configuration for the web search provider."""

    provider: Literal["duckduckgo", "tavily"] = "duckduckgo"
    tavily_api_key: str = ""
    max_results: int = 8
    snippet_chars: int = 500
    cache_ttl_hours: int = 24


class CuratorConfig(BaseModel):
    enable_categorization: bool = True


class WorkerConfig(BaseModel):
    """Thread pool used by the fire-and-forget ``start_*`` flow variants."""

    max_workers: int = 4


class Settings(BaseSettings):
    """Central application settings."""

    model_config = SettingsConfigDict(
        env_prefix="VAULT_AGENTS_",
        env_nested_delimiter="__",
        env_file=(Path(".env"), Path("~/.vault-agents")),
    )

    openai: OpenAIConfig = Field(default_factory=OpenAIConfig)
    database: DatabaseConfig = Field(default_factory=DatabaseConfig)
    research: ResearchConfig = Field(default_factory=ResearchConfig)
    curator: CuratorConfig = Field(default_factory=CuratorConfig)
    worker: WorkerConfig = Field(default_factory=WorkerConfig)

    def to_dict(self) -> Dict[str, Any]:
        """Return settings as a dictionary."""

        return {
            "openai": self.openai.model_dump(),
            "database": self.database.model_dump(),
            "research": self.research.model_dump(),
            "curator": self.curator.model_dump(),
            "worker": self.worker.model_dump(),
        }


__all__ = ["Settings", "OpenAIConfig", "DatabaseConfig", "ResearchConfig", "CuratorConfig", "WorkerConfig"]
