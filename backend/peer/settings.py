"""Peer client configuration via environment variables."""

from __future__ import annotations

from typing import TYPE_CHECKING

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings

from shared.validators import StringListEnvSettingsSource, parse_string_list

if TYPE_CHECKING:
    from pydantic_settings.sources.base import PydanticBaseSettingsSource

DEFAULT_ICE_SERVERS = ["stun:stun.l.google.com:19302"]
DEFAULT_CHANNEL_LABEL = "gameData"


class PeerSettings(BaseSettings):
    model_config = {"env_prefix": "PEER_"}

    signaling_url: str = Field(default="ws://localhost:8080/ws", pattern=r"^wss?://")
    ice_servers: list[str] = DEFAULT_ICE_SERVERS
    channel_label: str = Field(default=DEFAULT_CHANNEL_LABEL, min_length=1)
    grace_period_seconds: float = Field(default=15.0, gt=0)
    # Upper bound on waiting for ICE gathering before a partial descriptor is used.
    gathering_timeout_seconds: float = Field(default=5.0, gt=0)
    signaling_timeout_seconds: float = Field(default=60.0, gt=0)

    @field_validator("ice_servers", mode="before")
    @classmethod
    def validate_ice_servers(cls, v: str | list[str]) -> list[str]:
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
