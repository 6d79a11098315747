"""
Engine configuration settings.
"""

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Engine settings with environment variable support."""

    # History
    history_limit: int = 20          # Max snapshots kept on the undo stack

    # Crop
    min_crop_fraction: float = 0.1   # Min crop width/height as fraction of the original

    # Recompute
    compose_workers: int = 2         # Worker threads for compositing

    # Canvas
    device_aspect_ratio: float = 9.0 / 19.5  # width / height of the target device screen

    # Export
    jpeg_quality: int = 80

    # Default background removal (border color key)
    segment_tolerance: int = 40             # RGB distance to the backdrop color
    segment_border_coverage: float = 0.6    # Share of border pixels that must match
    segment_feather_radius: int = 1
    segment_grow_shrink: int = 1

    log_level: str = "INFO"

    model_config = SettingsConfigDict(
        env_prefix="REBG_",
        env_file=".env",
        extra="ignore",
    )


# Global settings instance
settings = Settings()
