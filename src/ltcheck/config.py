from __future__ import annotations

import os
from collections.abc import Mapping
from dataclasses import dataclass
from pathlib import Path
from typing import Any

import yaml

from .dispatcher import PARALLEL, normalize_mode
from .transport import DEFAULT_HOSTNAME, DEFAULT_LANGUAGE, LEVELS, CheckOptions


@dataclass(frozen=True)
class ServerConfig:
    provider: str = "languagetool"  # 'languagetool' | 'mock'
    hostname: str = DEFAULT_HOSTNAME
    port: str = ""
    username: str | None = None
    api_key: str | None = None
    timeout_s: float = 30.0
    retries: int = 2
    retry_backoff_s: float = 1.0
    # Cap on replacements kept per match; <= 0 keeps all.
    max_suggestions: int = 5


@dataclass(frozen=True)
class CheckConfig:
    # Characters per request; public LanguageTool servers reject much larger payloads.
    max_length: int = 1500
    concurrency: str = PARALLEL  # 'sequential' | 'parallel'
    max_workers: int = 4
    # Whole-invocation timeout; 0 disables it.
    timeout_s: float = 0.0
    # Overlapping windows between fragments (0 = disjoint fragments).
    overlap: int = 0
    # Raise instead of recording when a split falls back to a raw cut.
    strict_split: bool = False
    # Extra literal cut point, ranked with paragraph breaks (e.g. "\n---\n").
    split_pattern: str | None = None
    language: str = DEFAULT_LANGUAGE
    mother_tongue: str | None = None
    preferred_variants: tuple[str, ...] = ()
    dicts: tuple[str, ...] = ()
    enabled_rules: tuple[str, ...] = ()
    disabled_rules: tuple[str, ...] = ()
    enabled_categories: tuple[str, ...] = ()
    disabled_categories: tuple[str, ...] = ()
    enabled_only: bool = False
    level: str = "default"  # 'default' | 'picky'

    def to_options(self, server: ServerConfig | None = None) -> CheckOptions:
        return CheckOptions(
            language=self.language,
            mother_tongue=self.mother_tongue,
            preferred_variants=self.preferred_variants,
            dicts=self.dicts,
            enabled_rules=self.enabled_rules,
            disabled_rules=self.disabled_rules,
            enabled_categories=self.enabled_categories,
            disabled_categories=self.disabled_categories,
            enabled_only=self.enabled_only,
            level=self.level,
            username=(server.username if server is not None else None),
            api_key=(server.api_key if server is not None else None),
        )


@dataclass(frozen=True)
class AppConfig:
    server: ServerConfig = ServerConfig()
    check: CheckConfig = CheckConfig()
    log_path: str | None = None


def _normalize_choice(value: Any, *, field_name: str, allowed: set[str], default: str) -> str:
    raw = str(default if value is None else value).strip().lower()
    if raw not in allowed:
        allowed_list = ", ".join(sorted(allowed))
        raise ValueError(f"Invalid value for {field_name}: {raw!r}. Allowed: {allowed_list}")
    return raw


def _str_list(value: Any) -> tuple[str, ...]:
    if value is None:
        return ()
    if isinstance(value, str):
        items = value.split(",")
    else:
        items = [str(v) for v in value]
    return tuple(item.strip() for item in items if item.strip())


def _optional_str(value: Any) -> str | None:
    if value is None:
        return None
    raw = str(value).strip()
    return raw or None


def _apply_env(server: ServerConfig, environ: Mapping[str, str]) -> ServerConfig:
    overrides: dict[str, Any] = {}
    if environ.get("LANGUAGETOOL_HOSTNAME"):
        overrides["hostname"] = environ["LANGUAGETOOL_HOSTNAME"]
    if environ.get("LANGUAGETOOL_PORT"):
        overrides["port"] = environ["LANGUAGETOOL_PORT"]
    if environ.get("LANGUAGETOOL_USERNAME"):
        overrides["username"] = environ["LANGUAGETOOL_USERNAME"]
    if environ.get("LANGUAGETOOL_API_KEY"):
        overrides["api_key"] = environ["LANGUAGETOOL_API_KEY"]
    if not overrides:
        return server
    return server.__class__(**{**server.__dict__, **overrides})


def _validate_port(value: Any) -> str:
    raw = "" if value is None else str(value).strip()
    if raw and not raw.isdigit():
        raise ValueError(f"Invalid value for server.port: {raw!r}. Expected digits only")
    return raw


def config_from_dict(data: Mapping[str, Any], *, environ: Mapping[str, str] | None = None) -> AppConfig:
    server_data = data.get("server", {}) or {}
    check_data = data.get("check", {}) or {}

    server = ServerConfig(
        provider=_normalize_choice(
            server_data.get("provider", "languagetool"),
            field_name="server.provider",
            allowed={"languagetool", "mock"},
            default="languagetool",
        ),
        hostname=str(server_data.get("hostname", DEFAULT_HOSTNAME)),
        port=_validate_port(server_data.get("port", "")),
        username=_optional_str(server_data.get("username")),
        api_key=_optional_str(server_data.get("api_key")),
        timeout_s=float(server_data.get("timeout_s", 30.0)),
        retries=max(0, int(server_data.get("retries", 2))),
        retry_backoff_s=max(0.0, float(server_data.get("retry_backoff_s", 1.0))),
        max_suggestions=int(server_data.get("max_suggestions", 5)),
    )
    server = _apply_env(server, os.environ if environ is None else environ)

    max_length = int(check_data.get("max_length", 1500))
    if max_length <= 0:
        raise ValueError(f"Invalid value for check.max_length: {max_length}. Must be positive")
    overlap = max(0, int(check_data.get("overlap", 0)))
    if overlap and overlap >= max_length:
        raise ValueError(f"Invalid value for check.overlap: {overlap}. Must be smaller than max_length")
    check = CheckConfig(
        max_length=max_length,
        concurrency=normalize_mode(check_data.get("concurrency", PARALLEL)),
        max_workers=max(1, int(check_data.get("max_workers", 4))),
        timeout_s=max(0.0, float(check_data.get("timeout_s", 0.0))),
        overlap=overlap,
        strict_split=bool(check_data.get("strict_split", False)),
        split_pattern=(str(check_data["split_pattern"]) if check_data.get("split_pattern") else None),
        language=str(check_data.get("language", DEFAULT_LANGUAGE)).strip() or DEFAULT_LANGUAGE,
        mother_tongue=_optional_str(check_data.get("mother_tongue")),
        preferred_variants=_str_list(check_data.get("preferred_variants")),
        dicts=_str_list(check_data.get("dicts")),
        enabled_rules=_str_list(check_data.get("enabled_rules")),
        disabled_rules=_str_list(check_data.get("disabled_rules")),
        enabled_categories=_str_list(check_data.get("enabled_categories")),
        disabled_categories=_str_list(check_data.get("disabled_categories")),
        enabled_only=bool(check_data.get("enabled_only", False)),
        level=_normalize_choice(
            check_data.get("level", "default"),
            field_name="check.level",
            allowed=set(LEVELS),
            default="default",
        ),
    )
    return AppConfig(server=server, check=check, log_path=_optional_str(data.get("log_path")))


def load_config(path: str | Path | None = None, *, environ: Mapping[str, str] | None = None) -> AppConfig:
    """Load YAML config; with no path, defaults plus ``LANGUAGETOOL_*`` environment overrides."""
    if path is None:
        return config_from_dict({}, environ=environ)
    cfg_path = Path(path)
    try:
        data = yaml.safe_load(cfg_path.read_text(encoding="utf-8")) or {}
    except yaml.YAMLError as e:
        raise ValueError(f"Invalid YAML in {cfg_path}: {e}") from e
    if not isinstance(data, dict):
        raise ValueError(f"Config root must be a mapping: {cfg_path}")
    return config_from_dict(data, environ=environ)
