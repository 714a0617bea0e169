"""
Settings loading for the send service.

Settings are an OmegaConf structured config assembled from three layers,
later layers winning:

1. dataclass defaults below
2. an optional YAML file (``PRINTME_CONFIG`` or ``config/settings.yaml``
   found above the package)
3. environment variables (``.env`` files are honoured via python-dotenv)

OmegaConf validates and converts the merged values against the dataclass
types, so ``POSTGRID_API_SUPPORTS_RAW=true`` becomes a real bool.
"""
from __future__ import annotations

import os
from dataclasses import dataclass, field
from functools import lru_cache
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional

from dotenv import load_dotenv
from omegaconf import OmegaConf

from .models import PostalMode

load_dotenv()

_HERE = Path(__file__).resolve()
_CANDIDATE_CONFIG_PATHS = [parent / "config/settings.yaml" for parent in _HERE.parents[:4]]

ENV_KEYS: Dict[str, str] = {
    "POSTGRID_API_KEY": "postgrid.api_key",
    "POSTGRID_API_URL": "postgrid.api_url",
    "POSTGRID_SEND_MODE": "postgrid.send_mode",
    "POSTGRID_API_SUPPORTS_RAW": "postgrid.supports_raw",
    "POSTGRID_TIMEOUT_SECONDS": "postgrid.timeout_seconds",
    "POSTGRID_STATUS_TIMEOUT_SECONDS": "postgrid.status_timeout_seconds",
    "POSTGRID_WEBHOOK_SECRET": "postgrid.webhook_secret",
    "SES_SENDER_ADDRESS": "email.sender_address",
    "AWS_REGION": "email.region",
    "S3_BUCKET_NAME": "storage.bucket",
    "S3_PREFIX": "storage.prefix",
    "LOCAL_BLOB_DIR": "storage.local_dir",
    "FILE_MAX_SIZE_BYTES": "storage.max_upload_bytes",
    "DATABASE_PATH": "database.path",
    "AUTH_ISSUER": "auth.issuer",
    "AUTH_AUDIENCE": "auth.audience",
    "AUTH_JWKS_URI": "auth.jwks_uri",
    "LOG_LEVEL": "log_level",
}


@dataclass
class PostGridSettings:
    api_key: Optional[str] = None
    api_url: Optional[str] = None
    send_mode: str = "auto"
    supports_raw: bool = False
    timeout_seconds: float = 20.0
    status_timeout_seconds: float = 10.0
    webhook_secret: Optional[str] = None

    @property
    def mode(self) -> PostalMode:
        return PostalMode(self.send_mode.strip().lower())


@dataclass
class EmailSettings:
    sender_address: Optional[str] = None
    region: Optional[str] = None
    default_subject: str = "Check Delivery"
    default_message: str = "Attached documents."


@dataclass
class StorageSettings:
    bucket: Optional[str] = None
    prefix: str = "documents/"
    local_dir: str = "data/uploads"
    max_upload_bytes: int = 10 * 1024 * 1024


@dataclass
class DatabaseSettings:
    path: str = "data/printme.db"


@dataclass
class AuthSettings:
    issuer: Optional[str] = None
    audience: Optional[str] = None
    jwks_uri: Optional[str] = None


@dataclass
class AppSettings:
    postgrid: PostGridSettings = field(default_factory=PostGridSettings)
    email: EmailSettings = field(default_factory=EmailSettings)
    storage: StorageSettings = field(default_factory=StorageSettings)
    database: DatabaseSettings = field(default_factory=DatabaseSettings)
    auth: AuthSettings = field(default_factory=AuthSettings)
    log_level: str = "INFO"
    cors_origins: List[str] = field(default_factory=lambda: ["*"])


def _config_file(environ: Mapping[str, str]) -> Optional[Path]:
    explicit = environ.get("PRINTME_CONFIG")
    if explicit:
        path = Path(explicit)
        if not path.exists():
            raise FileNotFoundError(f"PRINTME_CONFIG points at a missing file: {path}")
        return path
    return next((path for path in _CANDIDATE_CONFIG_PATHS if path.exists()), None)


def _env_overrides(environ: Mapping[str, str]) -> Dict[str, Any]:
    overrides: Dict[str, Any] = {}
    for env_name, key in ENV_KEYS.items():
        value = environ.get(env_name)
        if value is None or value == "":
            continue
        section, _, name = key.rpartition(".")
        target = overrides.setdefault(section, {}) if section else overrides
        target[name] = value

    origins = environ.get("CORS_ORIGINS")
    if origins:
        overrides["cors_origins"] = [origin.strip() for origin in origins.split(",") if origin.strip()]
    return overrides


def load_settings(
    overrides: Optional[Dict[str, Any]] = None,
    environ: Optional[Mapping[str, str]] = None,
) -> AppSettings:
    """
    Build settings from defaults, the optional YAML file, the environment,
    and finally any explicit overrides.

    Raises:
        ValueError: If the configured postal send mode is not pdf, raw or auto
    """
    environ = os.environ if environ is None else environ
    layers = [OmegaConf.structured(AppSettings)]

    config_file = _config_file(environ)
    if config_file is not None:
        layers.append(OmegaConf.load(config_file))

    layers.append(OmegaConf.create(_env_overrides(environ)))
    if overrides:
        layers.append(OmegaConf.create(overrides))

    merged = OmegaConf.merge(*layers)
    settings: AppSettings = OmegaConf.to_object(merged)  # type: ignore[assignment]

    allowed_modes = {mode.value for mode in PostalMode}
    if settings.postgrid.send_mode.strip().lower() not in allowed_modes:
        raise ValueError(
            f"Invalid POSTGRID_SEND_MODE {settings.postgrid.send_mode!r}; expected one of {sorted(allowed_modes)}"
        )
    return settings


@lru_cache(maxsize=1)
def get_settings() -> AppSettings:
    return load_settings()
