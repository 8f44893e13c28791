"""
Central configuration for nexuslog.

A single typed settings object, loaded from a JSON settings file and
overridable through environment variables (``NEXUS_`` prefix, ``__`` between
nested names), built on pydantic-settings.

Usage:

    from nexuslog.core.settings import load_settings

    settings = load_settings("config/settings.json")
    services = build_services(settings)

Core components never read configuration themselves: they receive the
relevant section in their constructor. Reloading means loading a new
settings object and building new components from it.
"""

from __future__ import annotations

import json
import os
import shutil
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional, Union

from pydantic import BaseModel, Field, ValidationError, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from nexuslog.protocol.enums import ConnectionMode, SortOrder
from nexuslog.protocol.errors import ConfigurationError

DEFAULT_SETTINGS_PATH = "config/settings.json"


def _with_trailing_slash(url: str) -> str:
    return url if url.endswith("/") else url + "/"


class StoreSettings(BaseModel):
    """
    Content store / local node settings.
    """

    binary: str = Field(default="ipfs", description="Node executable name or path.")
    api_url: str = Field(
        default="http://127.0.0.1:5001",
        description="Local node HTTP API base URL.",
    )
    timeout: float = Field(default=30.0, gt=0, description="Per-attempt timeout in seconds.")
    max_retries: int = Field(default=3, ge=1, description="Attempts for node commands.")
    retry_delay: float = Field(default=1.0, ge=0, description="Seconds between attempts.")

    connection_mode: ConnectionMode = Field(
        default=ConnectionMode.GATEWAY,
        description="'gateway' tries gateways first, 'api' tries the local node first.",
    )
    gateway_url: str = Field(default="https://ipfs.io/ipfs/")
    fallback_gateways: List[str] = Field(
        default_factory=lambda: [
            "https://dweb.link/ipfs/",
            "https://cloudflare-ipfs.com/ipfs/",
        ]
    )
    use_fallback_gateways: bool = True

    allow_offline: bool = Field(default=False, description="Resolve names offline.")
    allow_online: bool = Field(default=True, description="Run the daemon with network access.")
    pin_enabled: bool = True
    pin_recursive: bool = True

    name_resolve_timeout: str = Field(default="30s", description="Passed verbatim to 'name resolve'.")
    daemon_startup_timeout: float = Field(default=60.0, gt=0)
    ready_marker: str = "Daemon is ready"
    routing: str = "dhtclient"

    pid_file: str = ".ipfs-daemon.pid"
    repo_dir: str = Field(default_factory=lambda: os.environ.get("IPFS_PATH", "~/.ipfs"))

    @field_validator("gateway_url")
    @classmethod
    def _normalize_gateway(cls, v: str) -> str:
        return _with_trailing_slash(v.strip())

    @field_validator("fallback_gateways", mode="before")
    @classmethod
    def _parse_fallbacks(cls, v):
        if isinstance(v, str):
            v = [x.strip() for x in v.split(",") if x.strip()]
        return [_with_trailing_slash(x) for x in v]

    @field_validator("connection_mode", mode="before")
    @classmethod
    def _lower_mode(cls, v):
        return v.lower() if isinstance(v, str) else v

    @property
    def repo_path(self) -> Path:
        return Path(self.repo_dir).expanduser()


class NetworkSettings(BaseModel):
    """
    Process supervision timings, in seconds.
    """

    process_kill_timeout: float = Field(default=1.0, ge=0)
    cleanup_wait_timeout: float = Field(default=1.0, ge=0)
    daemon_shutdown_timeout: float = Field(default=3.0, ge=0)


class EncryptionSettings(BaseModel):
    default_cipher: str = Field(default="aes-256-gcm", description="Symmetric cipher of the payload.")
    key_size: int = Field(default=256, description="Symmetric key size in bits.")
    oaep_hash: str = Field(default="sha256", description="OAEP and MGF1 digest.")
    private_key_file: str = "keys/private.pem"
    ipns_key_file: str = "keys/ipns.key"
    key_gen_type: str = "rsa"
    key_gen_bits: int = Field(default=2048, ge=1024)
    ipns_key_name: str = "self"

    @field_validator("key_size")
    @classmethod
    def _validate_key_size(cls, v: int) -> int:
        if v <= 0 or v % 8:
            raise ValueError("key_size must be a positive multiple of 8")
        return v

    @field_validator("default_cipher", "oaep_hash")
    @classmethod
    def _lower(cls, v: str) -> str:
        return v.strip().lower()


class LoggingSettings(BaseModel):
    log_level: str = "INFO"
    log_file: str = "logs/app.log"
    enable_console: bool = True
    enable_file: bool = False
    max_log_size: int = Field(default=1024 * 1024, gt=0)
    max_log_files: int = Field(default=5, ge=0)
    format: str = "text"

    # Bundle display
    sort_field: str = "event_id"
    sort_order: SortOrder = SortOrder.DESC
    log_dir: str = "logs"
    output_file: str = "logs_output.jsonl"
    indent: Optional[int] = 4

    @field_validator("format")
    @classmethod
    def _validate_format(cls, v: str) -> str:
        v = (v or "text").lower()
        if v not in ("json", "text"):
            return "text"
        return v

    @field_validator("sort_order", mode="before")
    @classmethod
    def _lower_order(cls, v):
        return v.lower() if isinstance(v, str) else v

    @property
    def output_path(self) -> Path:
        return Path(self.log_dir) / self.output_file


class ServerSettings(BaseModel):
    host: str = "127.0.0.1"
    port: int = 3000
    api_prefix: str = "/api"


class NexusSettings(BaseSettings):
    """
    Root configuration object for nexuslog.

    Aggregates:
      - store (content store and local node)
      - network (process supervision timings)
      - encryption
      - logging
      - server
    """

    store: StoreSettings = Field(default_factory=StoreSettings)
    network: NetworkSettings = Field(default_factory=NetworkSettings)
    encryption: EncryptionSettings = Field(default_factory=EncryptionSettings)
    logging: LoggingSettings = Field(default_factory=LoggingSettings)
    server: ServerSettings = Field(default_factory=ServerSettings)

    model_config = SettingsConfigDict(
        env_prefix="NEXUS_",
        env_nested_delimiter="__",
        extra="ignore",
    )

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls,
        init_settings,
        env_settings,
        dotenv_settings,
        file_secret_settings,
    ):
        # Environment overrides values coming from the settings file
        return env_settings, init_settings, file_secret_settings


def _format_validation_error(err: ValidationError) -> str:
    parts = []
    for e in err.errors():
        loc = ".".join(str(x) for x in e["loc"])
        parts.append(f"{loc}: {e['msg']}")
    return "Invalid configuration: " + "; ".join(parts)


def settings_path(path: Optional[Union[str, Path]] = None) -> Path:
    """The settings file in use: ``path``, else ``$NEXUS_CONFIG``, else the default."""
    return Path(path or os.environ.get("NEXUS_CONFIG", DEFAULT_SETTINGS_PATH))


def load_settings(path: Optional[Union[str, Path]] = None) -> NexusSettings:
    """
    Load settings from a JSON file, falling back to defaults when the file
    does not exist. ``$NEXUS_CONFIG`` names the file when ``path`` is None.
    """
    path = settings_path(path)
    data = {}
    if path.exists():
        try:
            data = json.loads(path.read_text(encoding="utf-8"))
        except json.JSONDecodeError as e:
            raise ConfigurationError(f"Settings file {path} is not valid JSON: {e}")
        if not isinstance(data, dict):
            raise ConfigurationError(f"Settings file {path} must contain a JSON object")

    try:
        return NexusSettings(**data)
    except ValidationError as e:
        raise ConfigurationError(_format_validation_error(e))


def save_settings(settings: NexusSettings, path: Union[str, Path]) -> None:
    """
    Write settings as JSON. The previous file is kept as ``.backup`` during
    the write and restored if the write fails.
    """
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    backup = path.with_name(path.name + ".backup")

    had_previous = path.exists()
    if had_previous:
        shutil.copyfile(path, backup)

    try:
        path.write_text(settings.model_dump_json(indent=2), encoding="utf-8")
    except OSError:
        if had_previous:
            shutil.copyfile(backup, path)
        raise
    finally:
        if had_previous and backup.exists():
            backup.unlink()



def _deep_merge(base: Dict[str, Any], changes: Mapping[str, Any]) -> Dict[str, Any]:
    merged = dict(base)
    for key, value in changes.items():
        if isinstance(value, Mapping) and isinstance(merged.get(key), dict):
            merged[key] = _deep_merge(merged[key], value)
        else:
            merged[key] = value
    return merged


def update_settings(settings: NexusSettings, changes: Mapping[str, Any]) -> NexusSettings:
    """
    Apply a partial update such as ``{"store": {"timeout": 10}}``.

    Sections not named in ``changes`` keep their current values. The result
    is validated from the merged data only; the environment is not re-read.
    """
    merged = _deep_merge(settings.model_dump(mode="json"), changes)
    try:
        return NexusSettings.model_validate(merged)
    except ValidationError as e:
        raise ConfigurationError(_format_validation_error(e))
