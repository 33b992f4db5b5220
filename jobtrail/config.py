"""Configuration management."""

from pathlib import Path
from typing import Optional

import yaml
from pydantic import BaseModel, Field

DEFAULT_CONFIG_PATH = Path(__file__).parent.parent / "config" / "config.yaml"


class DuplicateConfig(BaseModel):
    """Duplicate scoring thresholds and weights."""

    similarity_threshold: float = Field(default=0.7, ge=0.0, le=1.0)
    high_confidence_threshold: float = Field(default=0.9, ge=0.0, le=1.0)
    candidate_threshold: float = Field(default=0.5, ge=0.0, le=1.0)
    date_window_days: int = Field(default=7, ge=0)
    weights: dict[str, float] = Field(
        default_factory=lambda: {
            "company": 0.40,
            "position": 0.30,
            "location": 0.15,
            "applied_date": 0.10,
            "job_url": 0.05,
        }
    )


class Config(BaseModel):
    """Import pipeline configuration."""

    log_level: str = "INFO"
    batch_size: int = Field(default=1000, gt=0)
    batch_delay_ms: int = Field(default=50, ge=0)
    sample_size: int = Field(default=10, gt=0)
    encoding_sample_bytes: int = Field(default=8192, gt=0)
    day_first: bool = False
    required_fields: list[str] = Field(default_factory=lambda: ["company"])
    duplicates: DuplicateConfig = Field(default_factory=DuplicateConfig)


_config: Optional[Config] = None


def load_config(config_path: Optional[Path] = None) -> Config:
    """Load configuration from YAML file."""
    global _config

    if config_path is None:
        if _config is not None:
            return _config
        if not DEFAULT_CONFIG_PATH.exists():
            _config = Config()
            return _config
        config_path = DEFAULT_CONFIG_PATH

    config_path = Path(config_path)
    if not config_path.exists():
        raise FileNotFoundError(
            f"Config file not found: {config_path}. "
            "Copy config/config.yaml.example to config/config.yaml and adjust the settings."
        )

    with open(config_path) as f:
        data = yaml.safe_load(f) or {}

    _config = Config(**data)
    return _config


def get_config() -> Config:
    """Get the loaded configuration."""
    if _config is None:
        return load_config()
    return _config
