"""
evaldash Configuration

Loads settings from configs/evaldash.json, then applies environment overrides
(a .env file in the project root is read first).
"""

import json
import os
from pathlib import Path
from typing import Dict, Any, Optional
from dataclasses import dataclass, field

from dotenv import load_dotenv

from evalcore.logging_config import get_logger


PROJECT_ROOT = Path(__file__).parent.parent

log = get_logger("config")


class ConfigurationError(Exception):
    """A configured value cannot be used (server-side problem, not the caller's)."""


# Default configuration if file doesn't exist
DEFAULT_CONFIG = {
    "external_api": {
        "base_url": "http://localhost:8080",
        "api_key": "",
        "timeout": 60,
        "page_size": 8,
    },
    "translation": {
        "provider": "google",
        "target_lang": "en",
        "google_api_key": "",
        "deepl_api_key": "",
        "timeout": 60,
    },
    "conversion": {
        "temp_dir": "temp",
        "translate_workers": 1,
        "skip_ascii": False,
        "max_upload_mb": 50,
    },
    "server": {
        "host": "127.0.0.1",
        "port": 3001,
        "poll_interval": 10.0,
        "session_expire_hours": 24,
        "max_sessions": 10000,
    },
    "logging": {
        "enabled": True,
        "directory": "logs/app",
        "debug": False,
    },
}

TRUTHY = ("1", "true", "yes", "on")


@dataclass
class ExternalApiConfig:
    """Where the external evaluation service lives."""
    base_url: str = "http://localhost:8080"
    api_key: str = ""
    timeout: float = 60
    page_size: int = 8


@dataclass
class TranslationConfig:
    """Translation backend used while converting spreadsheets."""
    provider: str = "google"  # google, deepl or none
    target_lang: str = "en"
    google_api_key: str = ""
    deepl_api_key: str = ""
    timeout: float = 60


@dataclass
class ConversionConfig:
    temp_dir: str = "temp"
    translate_workers: int = 1
    skip_ascii: bool = False
    max_upload_mb: int = 50

    def temp_path(self) -> Path:
        """Resolve the temp directory relative to the project root."""
        path = Path(self.temp_dir)
        if not path.is_absolute():
            path = PROJECT_ROOT / path
        return path


@dataclass
class ServerConfig:
    host: str = "127.0.0.1"
    port: int = 3001
    poll_interval: float = 10.0
    session_expire_hours: float = 24
    max_sessions: int = 10000


@dataclass
class LoggingConfig:
    """Application logging configuration."""
    enabled: bool = True
    directory: str = "logs/app"
    debug: bool = False


@dataclass
class Settings:
    """Complete application configuration."""
    external_api: ExternalApiConfig = field(default_factory=ExternalApiConfig)
    translation: TranslationConfig = field(default_factory=TranslationConfig)
    conversion: ConversionConfig = field(default_factory=ConversionConfig)
    server: ServerConfig = field(default_factory=ServerConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)
    config_path: Optional[Path] = None

    @classmethod
    def load(cls, config_path: Optional[str] = None, use_env: bool = True) -> "Settings":
        """
        Load configuration from JSON file and the environment.

        Args:
            config_path: Path to config file, defaults to configs/evaldash.json
            use_env: Apply environment variable overrides (and read .env)

        Returns:
            Settings instance
        """
        if config_path is None:
            config_path = PROJECT_ROOT / "configs" / "evaldash.json"
        else:
            config_path = Path(config_path)

        data: Dict[str, Any] = DEFAULT_CONFIG
        if config_path.exists():
            try:
                with open(config_path, 'r', encoding='utf-8') as f:
                    data = json.load(f)
            except (json.JSONDecodeError, IOError) as e:
                log.warning(f"Failed to load config {config_path}: {e}, using defaults")
        else:
            log.debug(f"Config not found at {config_path}, using defaults")

        settings = cls(
            external_api=_section(ExternalApiConfig, data.get("external_api", {})),
            translation=_section(TranslationConfig, data.get("translation", {})),
            conversion=_section(ConversionConfig, data.get("conversion", {})),
            server=_section(ServerConfig, data.get("server", {})),
            logging=_section(LoggingConfig, data.get("logging", {})),
            config_path=config_path,
        )

        if use_env:
            load_dotenv(PROJECT_ROOT / ".env")
            settings.apply_env(os.environ)

        return settings

    def apply_env(self, env) -> None:
        """Override file values with environment variables."""
        if env.get("EXTERNAL_API_BASE_URL"):
            self.external_api.base_url = env["EXTERNAL_API_BASE_URL"]
        if env.get("EVAL_API_KEY"):
            self.external_api.api_key = env["EVAL_API_KEY"]
        if env.get("GOOGLE_API_KEY"):
            self.translation.google_api_key = env["GOOGLE_API_KEY"]
        if env.get("DEEPL_API_KEY"):
            self.translation.deepl_api_key = env["DEEPL_API_KEY"]
        if env.get("TRANSLATION_PROVIDER"):
            self.translation.provider = env["TRANSLATION_PROVIDER"].lower()
        if env.get("EVALDASH_TEMP_DIR"):
            self.conversion.temp_dir = env["EVALDASH_TEMP_DIR"]
        if env.get("EVALDASH_DEBUG", "").lower() in TRUTHY:
            self.logging.debug = True
        if env.get("PORT"):
            self.server.port = int(env["PORT"])

    def to_dict(self) -> Dict[str, Any]:
        """Serializable view, with secrets masked."""
        def mask(value: str) -> str:
            return f"...{value[-4:]}" if value else ""

        return {
            "external_api": {
                "base_url": self.external_api.base_url,
                "api_key": mask(self.external_api.api_key),
                "timeout": self.external_api.timeout,
                "page_size": self.external_api.page_size,
            },
            "translation": {
                "provider": self.translation.provider,
                "target_lang": self.translation.target_lang,
                "google_api_key": mask(self.translation.google_api_key),
                "deepl_api_key": mask(self.translation.deepl_api_key),
            },
            "conversion": {
                "temp_dir": str(self.conversion.temp_path()),
                "translate_workers": self.conversion.translate_workers,
                "skip_ascii": self.conversion.skip_ascii,
                "max_upload_mb": self.conversion.max_upload_mb,
            },
            "server": {
                "host": self.server.host,
                "port": self.server.port,
                "poll_interval": self.server.poll_interval,
                "session_expire_hours": self.server.session_expire_hours,
                "max_sessions": self.server.max_sessions,
            },
        }


def _section(cls, values: Dict[str, Any]):
    """Build a config dataclass from a JSON section, ignoring unknown keys."""
    known = {k: v for k, v in values.items() if k in cls.__dataclass_fields__}
    return cls(**known)


# Global singleton
_settings: Optional[Settings] = None


def get_settings() -> Settings:
    """Get the global settings (lazy-loaded singleton)."""
    global _settings
    if _settings is None:
        _settings = Settings.load()
    return _settings
