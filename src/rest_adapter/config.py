"""Configuration for the REST MCP adapter."""

from __future__ import annotations

from functools import lru_cache
from typing import Dict, Optional, Set

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


def _split(value: Optional[str]) -> Set[str]:
    if not value:
        return set()
    return {item.strip() for item in value.split(",") if item.strip()}


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_prefix="", case_sensitive=False, env_file=".env", extra="ignore")

    service_name: str = Field(default="rest-mcp-adapter")

    api_base_url: Optional[str] = Field(default=None)
    api_key: str = Field(default="")
    api_timeout_seconds: float = Field(default=30, gt=0)
    api_verify_ssl: bool = Field(default=True)
    api_extra_headers: Dict[str, str] = Field(default_factory=dict)
    api_max_retries: int = Field(default=3, ge=0)
    api_retry_base_delay_seconds: float = Field(default=1.0, ge=0)
    api_retry_max_delay_seconds: float = Field(default=10.0, ge=0)
    api_retry_jitter_seconds: float = Field(default=1.0, ge=0)

    openapi_spec_source: str = Field(default="openapi/openapi.yaml")

    adapter_transport: str = Field(default="stdio")
    adapter_host: str = Field(default="0.0.0.0")
    adapter_port: int = Field(default=8000)
    adapter_auth_token: Optional[str] = Field(default=None)

    adapter_include_optional_params: bool = Field(default=True)
    adapter_invocation_timeout_seconds: float = Field(default=60, gt=0)
    adapter_resource_scheme: str = Field(default="api")

    adapter_tool_allowlist: Optional[str] = Field(default=None)
    adapter_operation_allowlist: Optional[str] = Field(default=None)
    adapter_tag_allowlist: Optional[str] = Field(default=None)

    cache_enabled: bool = Field(default=True)
    cache_ttl_seconds: float = Field(default=300, gt=0)
    cache_max_size: int = Field(default=1000, gt=0)
    cache_sweep_interval_seconds: float = Field(default=300, gt=0)

    adapter_log_level: str = Field(default="INFO")

    def tool_allowlist(self) -> Set[str]:
        return _split(self.adapter_tool_allowlist)

    def operation_allowlist(self) -> Set[str]:
        return _split(self.adapter_operation_allowlist)

    def tag_allowlist(self) -> Set[str]:
        return _split(self.adapter_tag_allowlist)


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return Settings()
