"""
Configuration settings for CDRGraph workers
"""
from typing import Dict, Any
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Configuration settings for the ingestion and graph workers"""

    # Time resolution
    reference_timezone: str = "Asia/Karachi"
    min_valid_year: int = 2015
    max_valid_year: int = 2030

    # Parsing Configuration
    header_scan_rows: int = 30
    short_code_max_length: int = 7

    # Processing Configuration
    chunk_size: int = 1000
    max_error_samples: int = 50

    # Deduplication
    duplicate_time_tolerance_seconds: float = 1.0
    duplicate_duration_tolerance_seconds: float = 1.0
    near_duplicate_tolerance_seconds: float = 5.0

    # Enrichment
    burst_window_minutes: float = 5.0
    baseline_fraction: float = 0.7

    # Graph Analysis
    max_graph_nodes: int = 20000
    forced_trim_limit: int = 1000
    louvain_resolution: float = 1.0
    louvain_seed: int = 0

    # Logging
    log_level: str = "INFO"

    # Environment
    environment: str = "development"
    debug: bool = False

    class Config:
        env_file = ".env"
        env_prefix = "CDRGRAPH_"

    @property
    def pipeline_config(self) -> Dict[str, Any]:
        """Get ingestion pipeline configuration dictionary"""
        return {
            "reference_timezone": self.reference_timezone,
            "valid_years": (self.min_valid_year, self.max_valid_year),
            "header_scan_rows": self.header_scan_rows,
            "chunk_size": self.chunk_size,
            "max_error_samples": self.max_error_samples,
            "deduplication": {
                "time_tolerance_seconds": self.duplicate_time_tolerance_seconds,
                "duration_tolerance_seconds": self.duplicate_duration_tolerance_seconds,
                "near_duplicate_tolerance_seconds": self.near_duplicate_tolerance_seconds,
            },
            "enrichment": {
                "burst_window_minutes": self.burst_window_minutes,
                "baseline_fraction": self.baseline_fraction,
            },
        }

    @property
    def graph_config(self) -> Dict[str, Any]:
        """Get network analysis configuration dictionary"""
        return {
            "max_graph_nodes": self.max_graph_nodes,
            "forced_trim_limit": self.forced_trim_limit,
            "louvain": {
                "resolution": self.louvain_resolution,
                "seed": self.louvain_seed,
            },
        }


# Global settings instance
settings = Settings()
