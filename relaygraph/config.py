from __future__ import annotations

from pathlib import Path

from pydantic_settings import BaseSettings, SettingsConfigDict


def get_config() -> Config:
    return Config()


class Config(BaseSettings):
    anthropic_api_key: str | None = None
    anthropic_base_url: str = "https://api.anthropic.com"
    anthropic_version: str = "2023-06-01"

    model_name: str = "claude-sonnet-4-5"
    thinking_enabled: bool = False
    thinking_budget_tokens: int = 10000
    max_tokens: int = 2048
    request_timeout: float = 600

    mcp_config_path: str = (Path.cwd() / "./mcp.json").expanduser().resolve().absolute().as_posix()

    approval_resource_keywords: list[str] = ["window", "browser"]
    approval_action_keywords: list[str] = ["delete", "remove"]
    approval_allow_edit: bool = True

    max_turn_steps: int = 25

    model_config = SettingsConfigDict(env_prefix="relaygraph_", case_sensitive=False, frozen=True)

    @property
    def use_thinking(self) -> bool:
        return self.thinking_enabled or "thinking" in self.model_name

    @property
    def wire_model_name(self) -> str:
        return self.model_name.removesuffix("-thinking")

    def get_messages_endpoint(self) -> str:
        if not self.anthropic_base_url:
            raise ValueError("Anthropic base url is not configured")
        base_url = self.anthropic_base_url.rstrip("/")
        if base_url.endswith("/v1"):
            return f"{base_url}/messages"
        return f"{base_url}/v1/messages"
