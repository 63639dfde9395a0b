"""Configuration loading and Pydantic models for GalleryStore."""

import os
from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, Field

from gallerystore.errors import ConfigurationError

DEFAULT_CORS_ORIGINS = ["*"]

# Environment variables that override the storage section of the file.
ENV_OVERRIDES = {
    "AWS_ACCESS_KEY_ID": "access_key_id",
    "AWS_SECRET_ACCESS_KEY": "secret_access_key",
    "AWS_REGION": "region",
    "S3_BUCKET_NAME": "bucket",
}


class ServerConfig(BaseModel):
    """Server binding and runtime configuration."""

    host: str = "0.0.0.0"
    port: int = 8080
    log_level: str = "INFO"
    log_format: str = "text"
    shutdown_timeout: int = 30
    cors_origins: list[str] = Field(default_factory=lambda: list(DEFAULT_CORS_ORIGINS))


class AuthConfig(BaseModel):
    """Bearer tokens provisioned out of band, mapped to owner ids."""

    tokens: dict[str, str] = Field(default_factory=dict)


class StorageConfig(BaseModel):
    """Object storage endpoint and signing credentials."""

    bucket: str = ""
    region: str = "us-east-1"
    access_key_id: str = ""
    secret_access_key: str = Field(default="", repr=False)
    endpoint_host: str = "{bucket}.s3.{region}.amazonaws.com"
    scheme: str = "https"
    timeout_seconds: float = 30.0


class MetadataConfig(BaseModel):
    """Metadata store configuration."""

    engine: str = "sqlite"
    sqlite_path: str = "./data/gallery.db"


class ObservabilityConfig(BaseModel):
    """Metrics and health check toggles."""

    metrics: bool = True
    health_check: bool = True


class GalleryStoreConfig(BaseModel):
    """Top-level GalleryStore configuration."""

    server: ServerConfig = Field(default_factory=ServerConfig)
    auth: AuthConfig = Field(default_factory=AuthConfig)
    storage: StorageConfig = Field(default_factory=StorageConfig)
    metadata: MetadataConfig = Field(default_factory=MetadataConfig)
    observability: ObservabilityConfig = Field(default_factory=ObservabilityConfig)


def _parse_server(data: dict[str, Any] | None) -> dict[str, Any]:
    """Parse the server section from YAML data into a dict for Pydantic."""
    if data is None:
        return {}
    result: dict[str, Any] = {
        "host": data.get("host", "0.0.0.0"),
        "port": data.get("port", 8080),
        "log_level": data.get("log_level", "INFO"),
        "log_format": data.get("log_format", "text"),
        "shutdown_timeout": data.get("shutdown_timeout", 30),
    }
    if data.get("cors_origins") is not None:
        result["cors_origins"] = data["cors_origins"]
    return result


def _parse_auth(data: dict[str, Any] | None) -> dict[str, Any]:
    """Parse the auth section from YAML data."""
    if data is None:
        return {}
    tokens = data.get("tokens") or {}
    return {"tokens": {str(token): str(owner) for token, owner in tokens.items()}}


def _parse_storage(data: dict[str, Any] | None) -> dict[str, Any]:
    """Parse the storage section from YAML data.

    Handles nested structure: storage.s3.bucket -> bucket, etc.
    """
    if data is None:
        return {}
    s3_section = data.get("s3")
    if not isinstance(s3_section, dict):
        return {}
    result: dict[str, Any] = {
        "bucket": s3_section.get("bucket", ""),
        "region": s3_section.get("region", "us-east-1"),
        "access_key_id": s3_section.get("access_key_id", ""),
        "secret_access_key": s3_section.get("secret_access_key", ""),
    }
    for key in ("endpoint_host", "scheme", "timeout_seconds"):
        if s3_section.get(key) is not None:
            result[key] = s3_section[key]
    return result


def _parse_metadata(data: dict[str, Any] | None) -> dict[str, Any]:
    """Parse the metadata section from YAML data.

    Handles nested structure: metadata.sqlite.path -> sqlite_path
    """
    if data is None:
        return {}
    result: dict[str, Any] = {"engine": data.get("engine", "sqlite")}
    sqlite_section = data.get("sqlite")
    if isinstance(sqlite_section, dict):
        result["sqlite_path"] = sqlite_section.get("path", "./data/gallery.db")
    return result


def _parse_observability(data: dict[str, Any] | None) -> dict[str, Any]:
    """Parse the observability section from YAML data."""
    if data is None:
        return {}
    return {
        "metrics": data.get("metrics", True),
        "health_check": data.get("health_check", True),
    }


def apply_env_overrides(
    config: GalleryStoreConfig, environ: dict[str, str] | None = None
) -> GalleryStoreConfig:
    """Overlay storage settings from the environment.

    Values are trimmed; unset or blank variables leave the file value alone.

    Args:
        config: Configuration to update in place.
        environ: Mapping to read from. Defaults to ``os.environ``.

    Returns:
        The same configuration object.
    """
    env = os.environ if environ is None else environ
    for var, attr in ENV_OVERRIDES.items():
        value = (env.get(var) or "").strip()
        if value:
            setattr(config.storage, attr, value)
    return config


def validate_storage_config(storage: StorageConfig) -> None:
    """Check that every input needed to sign storage requests is present.

    Raises:
        ConfigurationError: Naming the missing settings.
    """
    missing = [
        name
        for name, value in (
            ("storage.s3.access_key_id", storage.access_key_id),
            ("storage.s3.secret_access_key", storage.secret_access_key),
            ("storage.s3.region", storage.region),
            ("storage.s3.bucket", storage.bucket),
        )
        if not value.strip()
    ]
    if missing:
        raise ConfigurationError(f"Storage credentials not configured: {', '.join(missing)}")


def load_config(path: Path, environ: dict[str, str] | None = None) -> GalleryStoreConfig:
    """Load a GalleryStoreConfig from a YAML file, then apply env overrides.

    Args:
        path: Path to the YAML configuration file.
        environ: Environment mapping for overrides. Defaults to ``os.environ``.

    Returns:
        A fully populated GalleryStoreConfig validated by Pydantic.

    Raises:
        FileNotFoundError: If the config file does not exist.
        yaml.YAMLError: If the file is not valid YAML.
    """
    with open(path, "r") as fh:
        raw: dict[str, Any] = yaml.safe_load(fh) or {}

    config = GalleryStoreConfig(
        server=ServerConfig(**_parse_server(raw.get("server"))),
        auth=AuthConfig(**_parse_auth(raw.get("auth"))),
        storage=StorageConfig(**_parse_storage(raw.get("storage"))),
        metadata=MetadataConfig(**_parse_metadata(raw.get("metadata"))),
        observability=ObservabilityConfig(**_parse_observability(raw.get("observability"))),
    )
    return apply_env_overrides(config, environ)
