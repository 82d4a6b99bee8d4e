"""Configuration management with YAML and environment variables."""
import os
from pathlib import Path
from typing import Optional, List, Dict, Any
import yaml
from pydantic import BaseModel, Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from mediatier.core.models import DownloadClientType, LibraryMode, TimeUnit


class JellyfinConfig(BaseModel):
    url: str
    api_key: str
    user_id: Optional[str] = None  # requis pour LastPlayedDate par utilisateur
    cache_ttl_seconds: int = 300


class JellyseerrConfig(BaseModel):
    url: str
    api_key: str


class RadarrConfig(BaseModel):
    url: str
    api_key: str


class SonarrConfig(BaseModel):
    url: str
    api_key: str


class DownloadClientConfig(BaseModel):
    name: str
    type: DownloadClientType
    url: str
    username: Optional[str] = None
    password: Optional[str] = None
    api_key: Optional[str] = None  # SABnzbd
    enabled: bool = True


class ThresholdConfig(BaseModel):
    value: int
    unit: TimeUnit = TimeUnit.DAYS


class LifecycleConfig(BaseModel):
    """Valeurs initiales de la configuration bibliothèque (premier démarrage uniquement)."""
    library_mode: LibraryMode = LibraryMode.NEW_CONTENT_ONLY
    symlink_to_mkv: ThresholdConfig = Field(default_factory=lambda: ThresholdConfig(value=7))
    mkv_to_symlink: ThresholdConfig = Field(default_factory=lambda: ThresholdConfig(value=30))
    media_library_path: str = "/media"
    pending_symlink_timeout_hours: Optional[int] = None

    def to_row_defaults(self) -> Dict[str, Any]:
        return {
            "library_mode": self.library_mode,
            "symlink_to_mkv_value": self.symlink_to_mkv.value,
            "symlink_to_mkv_unit": self.symlink_to_mkv.unit,
            "mkv_to_symlink_value": self.mkv_to_symlink.value,
            "mkv_to_symlink_unit": self.mkv_to_symlink.unit,
            "media_library_path": self.media_library_path,
            "pending_symlink_timeout_hours": self.pending_symlink_timeout_hours,
        }


class SchedulerConfig(BaseModel):
    enabled: bool = True
    download_monitor_seconds: int = 30
    library_scanner_seconds: int = 900
    library_scanner_startup_delay_seconds: int = 30
    watch_monitor_seconds: int = 300
    transition_scheduler_seconds: int = 60


class HttpConfig(BaseModel):
    timeout: float = 30.0
    connect_test_timeout: float = 10.0
    max_retries: int = 3
    circuit_breaker_threshold: int = 5
    circuit_breaker_timeout: int = 60


class AppConfig(BaseModel):
    data_dir: str = "/data"
    log_level: str = "INFO"


_SERVICE_SECTIONS = ["jellyfin", "jellyseerr", "radarr", "sonarr"]


class Config(BaseSettings):
    jellyfin: Optional[JellyfinConfig] = None
    jellyseerr: Optional[JellyseerrConfig] = None
    radarr: Optional[RadarrConfig] = None
    sonarr: Optional[SonarrConfig] = None
    download_clients: List[DownloadClientConfig] = Field(default_factory=list)
    lifecycle: LifecycleConfig = Field(default_factory=LifecycleConfig)
    scheduler: SchedulerConfig = Field(default_factory=SchedulerConfig)
    http: HttpConfig = Field(default_factory=HttpConfig)
    app: AppConfig = Field(default_factory=AppConfig)

    model_config = SettingsConfigDict(env_file=".env", env_nested_delimiter="__")

    @classmethod
    def load_from_yaml(cls, yaml_path: str) -> "Config":
        """Load configuration from YAML file, override with env vars."""
        config_path = Path(yaml_path)
        if not config_path.exists():
            raise FileNotFoundError(
                f"Config file not found: {yaml_path}\n"
                f"Please create config/config.yaml from config.example.yaml\n"
                f"Make sure the volume is mounted: -v ./config:/config:ro"
            )

        with open(config_path, "r", encoding="utf-8") as f:
            yaml_data = yaml.safe_load(f) or {}

        # Override with environment variables (SONARR__API_KEY, ...)
        for key in _SERVICE_SECTIONS + ["app"]:
            section = yaml_data.get(key)
            if not isinstance(section, dict):
                continue
            for subkey in list(section.keys()):
                env_value = os.getenv(f"{key.upper()}__{subkey.upper()}")
                if env_value:
                    section[subkey] = env_value

        return cls(**yaml_data)


# Global config instance (will be initialized in main.py)
config: Optional[Config] = None


def get_config() -> Config:
    """Get the global config instance."""
    if config is None:
        raise RuntimeError("Config not initialized. Call init_config() first.")
    return config


def init_config(config_path: str = "/config/config.yaml") -> Config:
    """Initialize global config from YAML file."""
    global config
    config = Config.load_from_yaml(config_path)
    return config


def set_config(value: Optional[Config]) -> None:
    """Replace the global config (tests, embedded use)."""
    global config
    config = value
