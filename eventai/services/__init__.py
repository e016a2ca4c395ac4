"""Domain services for the Event AI server."""

from .bedrock_service import BedrockService
from .comprehend_service import ComprehendService
from .event_service import EventService
from .file_processor import FileProcessor
from .forecast_service import ForecastService
from .serp_service import SerpService
from .storage_service import StorageService
from .textract_service import TextractService

__all__ = [
    "BedrockService",
    "ComprehendService",
    "EventService",
    "FileProcessor",
    "ForecastService",
    "SerpService",
    "StorageService",
    "TextractService",
]
