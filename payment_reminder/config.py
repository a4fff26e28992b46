"""
Payment Reminder -- Configuration Module

Centralizes all configuration for the payment reminder system.
Loads defaults from dataclasses, then overlays any overrides from config.yaml.

Usage:
    from payment_reminder.config import get_config
    cfg = get_config()                         # loads config.yaml if present
    cfg = get_config("path/to/custom.yaml")    # loads a specific file
    print(cfg.providers.openai_model)          # gpt-3.5-turbo
    print(cfg.classifier.high_risk_days)       # 30
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional

import yaml

# ---------------------------------------------------------------------------
# Path constants -- everything relative to the project root
# ---------------------------------------------------------------------------
_THIS_DIR = Path(__file__).resolve().parent          # payment_reminder/
PROJECT_ROOT = _THIS_DIR.parent                       # repository root
DEFAULT_CONFIG_PATH = PROJECT_ROOT / "config.yaml"


# ===================================================================
# 1. Classifier thresholds
# ===================================================================

@dataclass
class ClassifierConfig:
    """Risk tier boundaries.  A customer is high risk when EITHER the
    days-overdue or the amount threshold is exceeded (strictly greater)."""
    high_risk_days: int = 30
    medium_risk_days: int = 7
    high_risk_amount: float = 50_000.0
    medium_risk_amount: float = 15_000.0
    upcoming_window_days: int = 7       # dashboard "due soon" window


# ===================================================================
# 2. Provider endpoints
# ===================================================================

@dataclass
class ProviderSettingsConfig:
    """Third-party endpoints and call parameters.

    Credentials are NOT stored here -- they are per-owner records in the
    settings store.
    """
    openai_base_url: str = "https://api.openai.com/v1"
    openai_model: str = "gpt-3.5-turbo"
    openai_max_tokens: int = 200
    openai_temperature: float = 0.7

    resend_base_url: str = "https://api.resend.com"
    default_from_email: str = "onboarding@resend.dev"

    twilio_base_url: str = "https://api.twilio.com/2010-04-01"

    # Upper bound for any single external call, in seconds.
    timeout_seconds: float = 15.0

    def __post_init__(self):
        self.openai_model = os.environ.get("OPENAI_MODEL", self.openai_model)


# ===================================================================
# 3. Storage
# ===================================================================

@dataclass
class StorageConfig:
    """Where the SQLite document store lives."""
    db_path: str = "data/payment_reminder.db"

    def __post_init__(self):
        self.db_path = os.environ.get("PAYMENT_REMINDER_DB", self.db_path)

    @property
    def resolved_path(self) -> Path:
        p = Path(self.db_path)
        if not p.is_absolute():
            p = PROJECT_ROOT / p
        return p


# ===================================================================
# 4. Relay server
# ===================================================================

@dataclass
class RelayConfig:
    """HTTP relay bind address and CORS policy."""
    host: str = "127.0.0.1"
    port: int = 3002
    cors_origins: list[str] = field(default_factory=lambda: [
        "http://localhost:5173",
        "http://127.0.0.1:5173",
        "http://localhost:8501",
    ])

    def __post_init__(self):
        port = os.environ.get("RELAY_PORT")
        if port:
            self.port = int(port)
        origins = os.environ.get("CORS_ORIGINS")
        if origins:
            self.cors_origins = [o.strip() for o in origins.split(",") if o.strip()]


# ===================================================================
# 5. Logging
# ===================================================================

@dataclass
class LoggingConfig:
    level: str = "INFO"
    log_file: str = ""          # empty -> stderr only
    format: str = "%(asctime)s | %(levelname)-7s | %(name)s | %(message)s"
    datefmt: str = "%H:%M:%S"


# ===================================================================
# Master Config
# ===================================================================

@dataclass
class AppConfig:
    """Top-level configuration container for the payment reminder system."""
    classifier: ClassifierConfig = field(default_factory=ClassifierConfig)
    providers: ProviderSettingsConfig = field(default_factory=ProviderSettingsConfig)
    storage: StorageConfig = field(default_factory=StorageConfig)
    relay: RelayConfig = field(default_factory=RelayConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)


# ===================================================================
# YAML Loading
# ===================================================================

def _apply_yaml_to_config(cfg: AppConfig, data: dict) -> None:
    """Apply a parsed YAML dict onto an AppConfig instance.

    Unknown sections and unknown keys are ignored.
    """
    _section_map = {
        "classifier": cfg.classifier,
        "providers": cfg.providers,
        "storage": cfg.storage,
        "relay": cfg.relay,
        "logging": cfg.logging,
    }

    for section_key, section_obj in _section_map.items():
        if section_key in data and isinstance(data[section_key], dict):
            for attr, val in data[section_key].items():
                if hasattr(section_obj, attr):
                    setattr(section_obj, attr, val)

    # Environment variables take precedence over the file.
    for section_obj in _section_map.values():
        post_init = getattr(section_obj, "__post_init__", None)
        if post_init is not None:
            post_init()


def get_config(yaml_path: Optional[str | Path] = None) -> AppConfig:
    """Build an AppConfig, optionally overlaying values from a YAML file.

    Args:
        yaml_path: Path to a config.yaml file.  If None, looks for the
                   default config.yaml at the project root.  If that file
                   doesn't exist, returns pure defaults.

    Returns:
        Fully populated AppConfig instance.
    """
    cfg = AppConfig()

    path = Path(yaml_path) if yaml_path else DEFAULT_CONFIG_PATH
    if path.exists():
        with open(path, "r", encoding="utf-8") as f:
            data = yaml.safe_load(f) or {}
        _apply_yaml_to_config(cfg, data)

    return cfg
