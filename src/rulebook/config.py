"""Rulebook configuration loader.

Priority (high → low):
  1. CLI flags           (handled at call site — not in this module)
  2. Environment variables  (RULEBOOK_API_BASE, RULEBOOK_DB)
  3. Per-project rulebook.yaml
  4. Global ~/.rulebook/config.yaml
  5. Hardcoded defaults

All YAML reads use yaml.safe_load() — never yaml.load().
"""

from __future__ import annotations

import os
import warnings
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml

from rulebook.ingest.client import (
    DEFAULT_API_BASE,
    DEFAULT_INDEX_PATH,
    DEFAULT_PROVISIONS_PATH,
    TaxonomyClient,
)
from rulebook.ingest.pipeline import DEFAULT_AUTHORITY, DEFAULT_JURISDICTION
from rulebook.ingest.versions import DEFAULT_PUBLIC_BASE

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

_GLOBAL_CONFIG_DIR: Path = Path.home() / ".rulebook"
_GLOBAL_CONFIG_PATH: Path = _GLOBAL_CONFIG_DIR / "config.yaml"
PROJECT_CONFIG_NAME: str = "rulebook.yaml"

# Known top-level sections; unknown keys produce a warning
_KNOWN_SECTIONS: frozenset[str] = frozenset(["source", "ingest", "database"])


# ---------------------------------------------------------------------------
# Exceptions
# ---------------------------------------------------------------------------


class ConfigError(ValueError):
    """Raised when a config file contains an invalid value."""


# ---------------------------------------------------------------------------
# Data model
# ---------------------------------------------------------------------------


@dataclass
class SourceCfg:
    """Taxonomy API configuration (rulebook.yaml: source:)."""

    api_base: str = DEFAULT_API_BASE
    public_base: str = DEFAULT_PUBLIC_BASE
    index_path: str = DEFAULT_INDEX_PATH
    provisions_path: str = DEFAULT_PROVISIONS_PATH
    timeout: float = 60.0
    max_attempts: int = 3
    base_delay: float = 0.8


@dataclass
class IngestCfg:
    """Ingestion defaults (rulebook.yaml: ingest:).

    Attributes:
        authority: Regulator recorded on sourcebooks and runs.
        jurisdiction: Jurisdiction recorded on sourcebooks.
        batch_size: Sourcebooks per batch for ``rulebook batch``.
        inventory: Path to the expected-count inventory (YAML or JSON).
    """

    authority: str = DEFAULT_AUTHORITY
    jurisdiction: str = DEFAULT_JURISDICTION
    batch_size: int = 8
    inventory: str = "inventory.json"


@dataclass
class DatabaseCfg:
    """Store location (rulebook.yaml: database:)."""

    path: str = ".rulebook.db"


@dataclass
class RulebookConfig:
    """Root configuration object, built by load_config() from merged YAML layers."""

    source: SourceCfg = field(default_factory=SourceCfg)
    ingest: IngestCfg = field(default_factory=IngestCfg)
    database: DatabaseCfg = field(default_factory=DatabaseCfg)

    def build_client(self, **overrides: Any) -> TaxonomyClient:
        """Return a TaxonomyClient configured from the ``source`` section."""
        kwargs: dict[str, Any] = dict(
            timeout=self.source.timeout,
            max_attempts=self.source.max_attempts,
            base_delay=self.source.base_delay,
            index_path=self.source.index_path,
            provisions_path=self.source.provisions_path,
        )
        kwargs.update(overrides)
        return TaxonomyClient(self.source.api_base, **kwargs)


# ---------------------------------------------------------------------------
# Validation helpers
# ---------------------------------------------------------------------------


def _validate_url(value: str, key: str) -> None:
    """Raise ConfigError unless *value* is an http(s) URL."""
    if not value.startswith(("https://", "http://")):
        raise ConfigError(
            f"{key} must be an http:// or https:// URL, got '{value}'.\n"
            f"  Example: {key}: {DEFAULT_API_BASE}"
        )


def _validate(cfg: RulebookConfig) -> None:
    _validate_url(cfg.source.api_base, "source.api_base")
    _validate_url(cfg.source.public_base, "source.public_base")
    if "{key}" not in cfg.source.provisions_path:
        raise ConfigError("source.provisions_path must contain a '{key}' placeholder.")
    if cfg.source.max_attempts < 1:
        raise ConfigError(f"source.max_attempts must be >= 1, got {cfg.source.max_attempts}.")
    if cfg.source.base_delay < 0:
        raise ConfigError(f"source.base_delay must be >= 0, got {cfg.source.base_delay}.")
    if cfg.source.timeout <= 0:
        raise ConfigError(f"source.timeout must be > 0, got {cfg.source.timeout}.")
    if cfg.ingest.batch_size < 1:
        raise ConfigError(f"ingest.batch_size must be >= 1, got {cfg.ingest.batch_size}.")
    if not cfg.ingest.authority:
        raise ConfigError("ingest.authority must not be empty.")


def _warn_unknown_keys(data: dict[str, Any], source: Path) -> None:
    """Emit a UserWarning for unrecognised top-level keys."""
    for key in data:
        if key not in _KNOWN_SECTIONS:
            warnings.warn(
                f"Unknown config key '{key}' in '{source}' — ignored.",
                UserWarning,
                stacklevel=4,
            )


def _read_yaml(path: Path) -> dict[str, Any]:
    raw = yaml.safe_load(path.read_text(encoding="utf-8")) or {}
    if not isinstance(raw, dict):
        raise ConfigError(f"Config file '{path}' must contain a mapping at the top level.")
    return raw


# ---------------------------------------------------------------------------
# Merge + build
# ---------------------------------------------------------------------------


def _deep_merge(base: dict[str, Any], override: dict[str, Any]) -> dict[str, Any]:
    """Return a new dict that is *base* deep-merged with *override*."""
    result = dict(base)
    for k, v in override.items():
        if k in result and isinstance(result[k], dict) and isinstance(v, dict):
            result[k] = _deep_merge(result[k], v)
        else:
            result[k] = v
    return result


def _cfg_from_dict(data: dict[str, Any]) -> RulebookConfig:
    """Build a *RulebookConfig* from a merged raw YAML dict."""
    cfg = RulebookConfig()

    try:
        if "source" in data:
            s = data["source"] or {}
            cfg.source = SourceCfg(
                api_base=str(s.get("api_base", cfg.source.api_base)),
                public_base=str(s.get("public_base", cfg.source.public_base)),
                index_path=str(s.get("index_path", cfg.source.index_path)),
                provisions_path=str(s.get("provisions_path", cfg.source.provisions_path)),
                timeout=float(s.get("timeout", cfg.source.timeout)),
                max_attempts=int(s.get("max_attempts", cfg.source.max_attempts)),
                base_delay=float(s.get("base_delay", cfg.source.base_delay)),
            )

        if "ingest" in data:
            i = data["ingest"] or {}
            cfg.ingest = IngestCfg(
                authority=str(i.get("authority", cfg.ingest.authority)),
                jurisdiction=str(i.get("jurisdiction", cfg.ingest.jurisdiction)),
                batch_size=int(i.get("batch_size", cfg.ingest.batch_size)),
                inventory=str(i.get("inventory", cfg.ingest.inventory)),
            )

        if "database" in data:
            d = data["database"] or {}
            cfg.database = DatabaseCfg(path=str(d.get("path", cfg.database.path)))
    except (TypeError, ValueError, AttributeError) as exc:
        raise ConfigError(f"Invalid config value: {exc}") from exc

    return cfg


def _apply_env_overrides(cfg: RulebookConfig) -> RulebookConfig:
    """Apply RULEBOOK_* environment variable overrides."""
    if api_base := os.environ.get("RULEBOOK_API_BASE"):
        cfg.source.api_base = api_base
    if db_path := os.environ.get("RULEBOOK_DB"):
        cfg.database.path = db_path
    return cfg


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------


def load_config(
    project_dir: Path | None = None,
    *,
    global_config_path: Path | None = None,
) -> RulebookConfig:
    """Load and return a merged *RulebookConfig*.

    Applies layers in order: global → per-project → env vars.
    CLI flag overrides must be applied by the caller after this function.

    Args:
        project_dir: Directory to search for *rulebook.yaml*. Defaults to CWD.
        global_config_path: Override the global config path (for testing).

    Returns:
        Fully merged and validated *RulebookConfig*.

    Raises:
        ConfigError: If a value has the wrong type or is out of range.
    """
    global_path = global_config_path if global_config_path is not None else _GLOBAL_CONFIG_PATH
    search_dir = project_dir if project_dir is not None else Path.cwd()

    merged: dict[str, Any] = {}

    # Layer 1: global config
    if global_path.exists():
        raw_global = _read_yaml(global_path)
        _warn_unknown_keys(raw_global, global_path)
        merged = _deep_merge(merged, raw_global)

    # Layer 2: per-project config
    project_cfg_path = search_dir / PROJECT_CONFIG_NAME
    if project_cfg_path.exists():
        raw_project = _read_yaml(project_cfg_path)
        _warn_unknown_keys(raw_project, project_cfg_path)
        merged = _deep_merge(merged, raw_project)

    cfg = _cfg_from_dict(merged)

    # Layer 3: env var overrides
    cfg = _apply_env_overrides(cfg)

    _validate(cfg)
    return cfg


def write_project_config(project_dir: Path) -> Path:
    """Write a commented ``rulebook.yaml`` with defaults unless one exists.

    Returns:
        Path to the project config file.
    """
    target = project_dir / PROJECT_CONFIG_NAME
    if target.exists():
        return target

    defaults = RulebookConfig()
    content = (
        "# Rulebook project configuration.\n"
        "# Environment overrides: RULEBOOK_API_BASE, RULEBOOK_DB\n"
        "\n"
        "source:\n"
        f"  api_base: {defaults.source.api_base}\n"
        f"  public_base: {defaults.source.public_base}\n"
        f"  timeout: {defaults.source.timeout:g}\n"
        f"  max_attempts: {defaults.source.max_attempts}\n"
        f"  base_delay: {defaults.source.base_delay:g}\n"
        "\n"
        "ingest:\n"
        f"  authority: {defaults.ingest.authority}\n"
        f"  jurisdiction: {defaults.ingest.jurisdiction}\n"
        f"  batch_size: {defaults.ingest.batch_size}\n"
        f"  inventory: {defaults.ingest.inventory}\n"
    )
    target.write_text(content, encoding="utf-8")
    return target
