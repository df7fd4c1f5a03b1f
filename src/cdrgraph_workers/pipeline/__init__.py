"""Upload ingestion pipeline"""

from .ingestion_pipeline import (
    BatchResult,
    FileProcessingResult,
    IngestionPipeline,
    UploadResult,
)

__all__ = ["BatchResult", "FileProcessingResult", "IngestionPipeline", "UploadResult"]
