"""Configuration: YAML file merged over defaults, then ERRORPIPE_* environment overrides."""

import copy
import logging
import os
from dataclasses import dataclass, field

import jsonschema
import yaml

from errorpipe.errors import ConfigError

logger = logging.getLogger(__name__)

DEFAULTS = {
    "environment": "production",
    "release": None,
    "debug": False,
    "max_breadcrumbs": 100,
    "sample_rate": 1.0,
    "min_level": None,
    "ignore_errors": [],
    "enable_global_handlers": False,
    "console_tracking": False,
    "logging_tracking": False,
    "network_tracking": False,
    "ignore_urls": [],
    "tags": {},
    "context": {},
    "offline": {
        "enabled": True,
        "max_size": 100,
        "retry_delay": 30.0,
        "max_retries": 3,
        "backoff_multiplier": 1.0,
        "max_retry_delay": 300.0,
        "online_retry_delay": 1.0,
        "storage_path": None,
        "probe_host": None,
        "probe_port": 443,
        "probe_interval": 30.0,
    },
    "privacy": {
        "scrub_pii": False,
        "pii_patterns": None,
        "redacted_fields": ["password", "token", "api_key", "secret", "auth"],
    },
    "adapters": {},
}

_LEVELS = ["debug", "info", "warning", "error", "fatal"]

CONFIG_SCHEMA = {
    "$schema": "https://json-schema.org/draft/2020-12/schema",
    "type": "object",
    "properties": {
        "environment": {"enum": ["development", "staging", "production"]},
        "release": {"type": ["string", "null"]},
        "debug": {"type": "boolean"},
        "max_breadcrumbs": {"type": "integer", "minimum": 0, "maximum": 1000},
        "sample_rate": {"type": "number", "minimum": 0, "maximum": 1},
        "min_level": {"enum": _LEVELS + [None]},
        "ignore_errors": {"type": "array", "items": {"type": "string"}},
        "enable_global_handlers": {"type": "boolean"},
        "console_tracking": {"type": "boolean"},
        "logging_tracking": {"type": "boolean"},
        "network_tracking": {"type": "boolean"},
        "ignore_urls": {"type": "array", "items": {"type": "string"}},
        "tags": {"type": "object", "additionalProperties": {"type": "string"}},
        "context": {"type": "object"},
        "offline": {
            "type": "object",
            "properties": {
                "enabled": {"type": "boolean"},
                "max_size": {"type": "integer", "minimum": 0, "maximum": 10000},
                "retry_delay": {"type": "number", "minimum": 1, "maximum": 300},
                "max_retries": {"type": "integer", "minimum": 0},
                "backoff_multiplier": {"type": "number", "minimum": 1},
                "max_retry_delay": {"type": "number", "exclusiveMinimum": 0},
                "online_retry_delay": {"type": "number", "minimum": 0},
                "storage_path": {"type": ["string", "null"]},
                "probe_host": {"type": ["string", "null"]},
                "probe_port": {"type": "integer", "minimum": 1, "maximum": 65535},
                "probe_interval": {"type": "number", "exclusiveMinimum": 0},
            },
            "additionalProperties": False,
        },
        "privacy": {
            "type": "object",
            "properties": {
                "scrub_pii": {"type": "boolean"},
                "pii_patterns": {"type": ["array", "null"], "items": {"type": "string"}},
                "redacted_fields": {"type": "array", "items": {"type": "string"}},
            },
            "additionalProperties": False,
        },
        "adapters": {
            "type": "object",
            "additionalProperties": {
                "type": "object",
                "properties": {
                    "enabled": {"type": "boolean"},
                    "environment": {"type": ["string", "null"]},
                    "release": {"type": ["string", "null"]},
                    "max_breadcrumbs": {"type": ["integer", "null"], "minimum": 0},
                    "tags": {"type": "object"},
                    "context": {"type": "object"},
                    "options": {"type": "object"},
                },
            },
        },
    },
    "additionalProperties": False,
}

_validator = jsonschema.Draft202012Validator(CONFIG_SCHEMA)


def _parse_bool(value: str) -> bool:
    return value.strip().lower() in ("true", "1", "yes")


@dataclass(frozen=True)
class AdapterConfig:
    enabled: bool = True
    environment: str | None = None
    release: str | None = None
    max_breadcrumbs: int | None = None
    tags: dict = field(default_factory=dict)
    context: dict = field(default_factory=dict)
    options: dict = field(default_factory=dict)

    @classmethod
    def from_dict(cls, data: dict | None) -> "AdapterConfig":
        data = data or {}
        return cls(
            enabled=data.get("enabled", True),
            environment=data.get("environment"),
            release=data.get("release"),
            max_breadcrumbs=data.get("max_breadcrumbs"),
            tags=dict(data.get("tags") or {}),
            context=dict(data.get("context") or {}),
            options=dict(data.get("options") or {}),
        )


@dataclass(frozen=True)
class OfflineConfig:
    enabled: bool = True
    max_size: int = 100
    retry_delay: float = 30.0
    max_retries: int = 3
    backoff_multiplier: float = 1.0
    max_retry_delay: float = 300.0
    online_retry_delay: float = 1.0
    storage_path: str | None = None
    probe_host: str | None = None
    probe_port: int = 443
    probe_interval: float = 30.0


@dataclass(frozen=True)
class PrivacyConfig:
    scrub_pii: bool = False
    pii_patterns: tuple | None = None
    redacted_fields: tuple = ("password", "token", "api_key", "secret", "auth")


@dataclass(frozen=True)
class PipelineConfig:
    environment: str = "production"
    release: str | None = None
    debug: bool = False
    max_breadcrumbs: int = 100
    sample_rate: float = 1.0
    min_level: str | None = None
    ignore_errors: tuple = ()
    enable_global_handlers: bool = False
    console_tracking: bool = False
    logging_tracking: bool = False
    network_tracking: bool = False
    ignore_urls: tuple = ()
    tags: dict = field(default_factory=dict)
    context: dict = field(default_factory=dict)
    offline: OfflineConfig = field(default_factory=OfflineConfig)
    privacy: PrivacyConfig = field(default_factory=PrivacyConfig)
    adapters: dict = field(default_factory=dict)

    @classmethod
    def from_dict(cls, data: dict) -> "PipelineConfig":
        """Validate a raw config mapping (merged over DEFAULTS) and build the config."""
        raw = deep_merge(DEFAULTS, data or {})
        validate_config(raw)

        privacy = raw["privacy"]
        return cls(
            environment=raw["environment"],
            release=raw["release"],
            debug=raw["debug"],
            max_breadcrumbs=raw["max_breadcrumbs"],
            sample_rate=float(raw["sample_rate"]),
            min_level=raw["min_level"],
            ignore_errors=tuple(raw["ignore_errors"]),
            enable_global_handlers=raw["enable_global_handlers"],
            console_tracking=raw["console_tracking"],
            logging_tracking=raw["logging_tracking"],
            network_tracking=raw["network_tracking"],
            ignore_urls=tuple(raw["ignore_urls"]),
            tags=dict(raw["tags"]),
            context=dict(raw["context"]),
            offline=OfflineConfig(**raw["offline"]),
            privacy=PrivacyConfig(
                scrub_pii=privacy["scrub_pii"],
                pii_patterns=tuple(privacy["pii_patterns"]) if privacy["pii_patterns"] is not None else None,
                redacted_fields=tuple(privacy["redacted_fields"]),
            ),
            adapters={
                name: AdapterConfig.from_dict(settings)
                for name, settings in raw["adapters"].items()
            },
        )

    def adapter_config(self, name: str) -> AdapterConfig:
        """Settings for one adapter, falling back to the pipeline-wide values."""
        base = self.adapters.get(name) or AdapterConfig()
        return AdapterConfig(
            enabled=base.enabled,
            environment=base.environment or self.environment,
            release=base.release or self.release,
            max_breadcrumbs=base.max_breadcrumbs if base.max_breadcrumbs is not None else self.max_breadcrumbs,
            tags={**self.tags, **base.tags},
            context={**self.context, **base.context},
            options=dict(base.options),
        )


def deep_merge(base: dict, override: dict) -> dict:
    """Recursively merge override dict into base dict."""
    result = copy.deepcopy(base)
    for key, value in override.items():
        if key in result and isinstance(result[key], dict) and isinstance(value, dict):
            result[key] = deep_merge(result[key], value)
        else:
            result[key] = copy.deepcopy(value)
    return result


def load_yaml_config(path: str | None) -> dict:
    """Read a YAML config file. A missing file yields an empty mapping."""
    if path is None:
        return {}
    try:
        with open(path, "r") as f:
            data = yaml.safe_load(f)
    except FileNotFoundError:
        logger.warning("Config file %s not found, using defaults", path)
        return {}
    except yaml.YAMLError as e:
        raise ConfigError(f"Invalid YAML in {path}: {e}") from e

    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ConfigError(f"Config file {path} must contain a mapping, got {type(data).__name__}")
    return data


def _env_number(environ, key: str, convert):
    value = environ[key]
    try:
        return convert(value)
    except ValueError as e:
        raise ConfigError(f"{key} must be a number, got {value!r}") from e


def apply_env_overrides(raw: dict, environ=None) -> dict:
    """Return a copy of `raw` with ERRORPIPE_* environment variables applied."""
    environ = os.environ if environ is None else environ
    result = copy.deepcopy(raw)
    offline = result.setdefault("offline", {})

    if "ERRORPIPE_ENVIRONMENT" in environ:
        result["environment"] = environ["ERRORPIPE_ENVIRONMENT"]
    if "ERRORPIPE_SAMPLE_RATE" in environ:
        result["sample_rate"] = _env_number(environ, "ERRORPIPE_SAMPLE_RATE", float)
    if "ERRORPIPE_MIN_LEVEL" in environ:
        result["min_level"] = environ["ERRORPIPE_MIN_LEVEL"].strip().lower() or None
    if "ERRORPIPE_MAX_BREADCRUMBS" in environ:
        result["max_breadcrumbs"] = _env_number(environ, "ERRORPIPE_MAX_BREADCRUMBS", int)
    if "ERRORPIPE_DEBUG" in environ:
        result["debug"] = _parse_bool(environ["ERRORPIPE_DEBUG"])
    if "ERRORPIPE_ENABLE_OFFLINE" in environ:
        offline["enabled"] = _parse_bool(environ["ERRORPIPE_ENABLE_OFFLINE"])
    if "ERRORPIPE_OFFLINE_MAX_SIZE" in environ:
        offline["max_size"] = _env_number(environ, "ERRORPIPE_OFFLINE_MAX_SIZE", int)
    if "ERRORPIPE_OFFLINE_RETRY_DELAY" in environ:
        offline["retry_delay"] = _env_number(environ, "ERRORPIPE_OFFLINE_RETRY_DELAY", float)
    if "ERRORPIPE_OFFLINE_MAX_RETRIES" in environ:
        offline["max_retries"] = _env_number(environ, "ERRORPIPE_OFFLINE_MAX_RETRIES", int)
    if "ERRORPIPE_STORAGE_PATH" in environ:
        offline["storage_path"] = environ["ERRORPIPE_STORAGE_PATH"]

    return result


def validate_config(raw: dict):
    """Raise ConfigError listing every schema violation in `raw`."""
    errors = sorted(_validator.iter_errors(raw), key=lambda e: [str(p) for p in e.absolute_path])
    if not errors:
        return
    messages = []
    for error in errors:
        location = ".".join(str(p) for p in error.absolute_path) or "<root>"
        messages.append(f"{location}: {error.message}")
    raise ConfigError("Invalid configuration: " + "; ".join(messages))


def load_config(path: str | None = None, environ=None) -> PipelineConfig:
    """Build PipelineConfig from defaults <- YAML file <- ERRORPIPE_* env vars."""
    raw = deep_merge(DEFAULTS, load_yaml_config(path))
    raw = apply_env_overrides(raw, environ)
    config = PipelineConfig.from_dict(raw)
    logger.debug("Loaded config: environment=%s offline=%s", config.environment, config.offline.enabled)
    return config
