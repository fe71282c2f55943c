"""Relay server configuration via environment variables."""

from __future__ import annotations

from typing import TYPE_CHECKING

from pydantic import AliasChoices, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from relay.messaging.types import MAX_FRAME_BYTES
from shared.validators import StringListEnvSettingsSource, parse_string_list

if TYPE_CHECKING:
    from pydantic_settings.sources.base import PydanticBaseSettingsSource


class RelaySettings(BaseSettings):
    model_config = SettingsConfigDict(env_prefix="RELAY_", populate_by_name=True)

    host: str = Field(default="0.0.0.0", min_length=1)  # noqa: S104
    # Hosting platforms hand the listen port over as a bare PORT variable.
    port: int = Field(default=8080, ge=1, le=65535, validation_alias=AliasChoices("RELAY_PORT", "PORT"))
    reaper_interval_seconds: float = Field(default=30.0, gt=0)
    max_message_bytes: int = Field(default=MAX_FRAME_BYTES, ge=1024)
    cors_origins: list[str] = ["*"]
    log_dir: str | None = None

    @field_validator("cors_origins", mode="before")
    @classmethod
    def validate_cors_origins(cls, v: str | list[str]) -> list[str]:
        return parse_string_list(v)

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: type[BaseSettings],
        init_settings: PydanticBaseSettingsSource,
        env_settings: PydanticBaseSettingsSource,  # noqa: ARG003
        dotenv_settings: PydanticBaseSettingsSource,
        file_secret_settings: PydanticBaseSettingsSource,
    ) -> tuple[PydanticBaseSettingsSource, ...]:
        return init_settings, StringListEnvSettingsSource(settings_cls), dotenv_settings, file_secret_settings
