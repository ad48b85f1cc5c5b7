"""Configuration management with YAML and environment variable support"""

import os
from typing import Any, Dict, List, Literal, Optional, Tuple, Type

import yaml
from pydantic import Field, field_validator, model_validator
from pydantic_settings import BaseSettings, PydanticBaseSettingsSource, SettingsConfigDict

MIB = 1024 * 1024


class BaseConfigSection(BaseSettings):
    """Base class for all config sections with correct environment variable precedence.

    Environment variables win over init kwargs (YAML data), which win over
    the declared defaults.
    """

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: Type[BaseSettings],
        init_settings: PydanticBaseSettingsSource,
        env_settings: PydanticBaseSettingsSource,
        dotenv_settings: PydanticBaseSettingsSource,
        file_secret_settings: PydanticBaseSettingsSource,
    ) -> Tuple[PydanticBaseSettingsSource, ...]:
        """Customize settings source priority: env vars > init kwargs > defaults."""
        return (env_settings, init_settings, dotenv_settings, file_secret_settings)


class ServerConfig(BaseConfigSection):
    """Server configuration"""

    host: str = "0.0.0.0"  # nosec B104 - containerized deployment
    port: int = 8000
    cors_origins: List[str] = Field(default_factory=lambda: ["*"])

    model_config = SettingsConfigDict(env_prefix="APP_SERVER_")


class StorageConfig(BaseConfigSection):
    """Local working directories and retention of on-disk artifacts"""

    upload_dir: str = "uploads"
    temp_dir: str = "temp"
    audio_dir: str = "audio"
    hls_dir: str = "hls"
    data_dir: str = "data"
    thumbnail_dir: str = "thumbnails"
    max_upload_size: int = 10 * 1024 * MIB  # 10GB
    allowed_extensions: List[str] = Field(
        default_factory=lambda: ["mp4", "avi", "mkv", "mov", "wmv", "flv", "webm", "m4v", "3gp"]
    )
    upload_max_age: int = 3600  # seconds
    temp_max_age: int = 1800  # seconds
    sweep_interval: int = 1800  # seconds
    force_cleanup: bool = False

    model_config = SettingsConfigDict(env_prefix="APP_STORAGE_")

    @field_validator("allowed_extensions")
    @classmethod
    def normalize_extensions(cls, v: List[str]) -> List[str]:
        return [ext.lower().lstrip(".") for ext in v]


class ObjectStoreConfig(BaseConfigSection):
    """Cloud object store (chunked blob storage) configuration"""

    backend: Literal["telegram", "local", "disabled"] = "disabled"
    object_limit: int = 50 * MIB  # hard per-object ceiling
    part_size: int = 45 * MIB
    retry_attempts: int = 3
    retry_delay: float = 5.0  # seconds, multiplied by attempt number
    bulk_batch_size: int = 3
    bulk_batch_delay: float = 3.0
    rate_limit_backoff: float = 45.0
    bulk_max_objects: int = 100
    local_dir: str = "object-store"

    model_config = SettingsConfigDict(env_prefix="APP_OBJECT_STORE_")

    @model_validator(mode="after")
    def validate_part_size(self) -> "ObjectStoreConfig":
        if self.part_size <= 0 or self.part_size > self.object_limit:
            raise ValueError("part_size must be positive and not exceed object_limit")
        if self.retry_attempts < 1:
            raise ValueError("retry_attempts must be at least 1")
        return self


class TelegramConfig(BaseConfigSection):
    """Telegram Bot API destinations used as object storage"""

    bot_token: Optional[str] = None
    channel_id: Optional[str] = None
    backup_channel_ids: List[str] = Field(default_factory=list)
    api_base: str = "https://api.telegram.org"
    request_timeout: float = 120.0

    model_config = SettingsConfigDict(env_prefix="APP_TELEGRAM_")


class TranscodeConfig(BaseConfigSection):
    """ffmpeg/ffprobe invocation and segmenting parameters"""

    ffmpeg_path: str = "ffmpeg"
    ffprobe_path: str = "ffprobe"
    segment_duration: int = 6
    gop_size: int = 48
    max_audio_tracks: int = 4
    preset: str = "fast"
    crf: int = 23
    probe_timeout: float = 30.0
    audio_track_upload_timeout: float = 30.0
    audio_upload_group_timeout: float = 300.0
    thumbnail_offset: float = 5.0

    model_config = SettingsConfigDict(env_prefix="APP_TRANSCODE_")


class PlaybackConfig(BaseConfigSection):
    """Playback source selection policy"""

    # Chunked uploads of sources larger than this prefer local segmented delivery
    prefer_segmented_above: int = 100 * MIB

    model_config = SettingsConfigDict(env_prefix="APP_PLAYBACK_")


class LoggingConfig(BaseConfigSection):
    """Logging configuration"""

    level: str = "INFO"
    format: str = "json"

    model_config = SettingsConfigDict(env_prefix="APP_LOGGING_")

    @field_validator("level")
    @classmethod
    def validate_level(cls, v: str) -> str:
        valid_levels = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
        v_upper = v.upper()
        if v_upper not in valid_levels:
            raise ValueError(f"level must be one of {valid_levels}")
        return v_upper


class MonitoringConfig(BaseConfigSection):
    """Monitoring configuration"""

    metrics_enabled: bool = True

    model_config = SettingsConfigDict(env_prefix="APP_MONITORING_")


class Config(BaseSettings):
    """Main application configuration"""

    server: ServerConfig = Field(default_factory=ServerConfig)
    storage: StorageConfig = Field(default_factory=StorageConfig)
    object_store: ObjectStoreConfig = Field(default_factory=ObjectStoreConfig)
    telegram: TelegramConfig = Field(default_factory=TelegramConfig)
    transcode: TranscodeConfig = Field(default_factory=TranscodeConfig)
    playback: PlaybackConfig = Field(default_factory=PlaybackConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)
    monitoring: MonitoringConfig = Field(default_factory=MonitoringConfig)

    model_config = SettingsConfigDict(env_prefix="APP_")


class ConfigService:
    """Service for loading and managing configuration"""

    def __init__(self, config_path: Optional[str] = None):
        self.config_path = config_path or os.environ.get("APP_CONFIG_PATH", "config.yaml")
        self._config: Optional[Config] = None

    def load(self) -> Config:
        """Load configuration from YAML file with environment variable overrides."""
        config_data: Dict[str, Any] = {}

        if os.path.exists(self.config_path):
            with open(self.config_path, "r", encoding="utf-8") as f:
                yaml_data = yaml.safe_load(f)
                if yaml_data:
                    config_data = yaml_data

        self._config = Config(
            server=ServerConfig(**config_data.get("server", {})),
            storage=StorageConfig(**config_data.get("storage", {})),
            object_store=ObjectStoreConfig(**config_data.get("object_store", {})),
            telegram=TelegramConfig(**config_data.get("telegram", {})),
            transcode=TranscodeConfig(**config_data.get("transcode", {})),
            playback=PlaybackConfig(**config_data.get("playback", {})),
            logging=LoggingConfig(**config_data.get("logging", {})),
            monitoring=MonitoringConfig(**config_data.get("monitoring", {})),
        )

        return self._config

    def validate(self) -> bool:
        """Validate cross-section settings of the loaded configuration"""
        if self._config is None:
            raise ValueError("Configuration not loaded. Call load() first.")

        if self._config.object_store.backend == "telegram":
            telegram = self._config.telegram
            if not telegram.bot_token or not telegram.channel_id:
                raise ValueError("Telegram backend requires bot_token and channel_id")

        return True

    @property
    def config(self) -> Config:
        """Get the loaded configuration"""
        if self._config is None:
            raise ValueError("Configuration not loaded. Call load() first.")
        return self._config
