"""
Configuration management for the HU engine
"""

import os
import logging
from functools import lru_cache
from pathlib import Path
from pydantic_settings import BaseSettings


DEFAULT_REFERENCE_DATA_DIR = str(Path(__file__).resolve().parent / "data")

LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"


class Settings(BaseSettings):
    """Engine settings"""
    
    # Reference tables (CSV directory)
    reference_data_dir: str = os.getenv("HU_REFERENCE_DATA_DIR", DEFAULT_REFERENCE_DATA_DIR)
    
    # Strategic significance is fixed at "Low" (1.0) for current records
    strategic_significance: float = float(os.getenv("HU_STRATEGIC_SIGNIFICANCE", "1.0"))
    
    # Statistics
    histogram_bin_width: float = float(os.getenv("HU_HISTOGRAM_BIN_WIDTH", "1.0"))
    
    # Capacity epsilon for the conversion inference engine
    float_tolerance: float = float(os.getenv("HU_FLOAT_TOLERANCE", "1e-9"))
    
    log_level: str = os.getenv("HU_LOG_LEVEL", "INFO")
    
    class Config:
        env_file = ".env"
        case_sensitive = False


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance"""
    return Settings()


def configure_logging(level: str = None) -> None:
    """Configure root logging for scripts and services embedding the engine."""
    if level is None:
        level = get_settings().log_level
    logging.basicConfig(level=getattr(logging, str(level).upper(), logging.INFO), format=LOG_FORMAT)
