"""Image OCR through AWS Textract."""

import asyncio
from typing import Any, Dict, List, Optional

import boto3
import structlog

from eventai.models.config import EventAIConfig


logger = structlog.get_logger(__name__)

MAX_IMAGE_SIZE = 10 * 1024 * 1024
LARGE_IMAGE_SIZE = 5 * 1024 * 1024
OCR_MIME_TYPES = ("image/jpeg", "image/png")


class TextractService:
    """Synchronous DetectDocumentText calls run off the event loop."""

    def __init__(self, config: EventAIConfig, client: Optional[Any] = None):
        self.client = client or boto3.client("textract", **config.aws_client_kwargs())
        self.logger = logger.bind(component="textract_service")

    def assess_image_suitability(self, content: bytes, mime_type: str) -> Dict[str, Any]:
        warnings: List[str] = []
        suitable = True

        size_mb = len(content) / (1024 * 1024)
        if len(content) > MAX_IMAGE_SIZE:
            suitable = False
            warnings.append(f"Image size ({size_mb:.1f}MB) exceeds Textract limit (10MB)")
        elif len(content) > LARGE_IMAGE_SIZE:
            warnings.append("Large image size may increase processing time")

        if mime_type not in OCR_MIME_TYPES:
            suitable = False
            warnings.append(f"Image type {mime_type} not supported by Textract. Supported: JPEG, PNG")

        return {"suitable": suitable, "warnings": warnings}

    async def extract_text_from_image(self, content: bytes, original_name: str) -> Dict[str, Any]:
        """
        OCR one image.

        Returns:
            ``fullText`` (LINE blocks joined by newlines), ``lines``, ``wordCount``
            and ``averageConfidence`` over the lines

        Raises:
            botocore.exceptions.ClientError: Textract rejected the image
        """
        self.logger.info("Extracting text from image", file_name=original_name, size=len(content))
        try:
            response = await asyncio.to_thread(
                self.client.detect_document_text,
                Document={"Bytes": content},
            )
        except Exception as e:
            self.logger.error("Textract text detection failed", file_name=original_name, error=str(e))
            raise

        blocks = response.get("Blocks") or []
        lines = [block for block in blocks if block.get("BlockType") == "LINE"]
        words = [block for block in blocks if block.get("BlockType") == "WORD"]
        confidences = [block.get("Confidence", 0.0) for block in lines]

        result = {
            "fullText": "\n".join(block.get("Text", "") for block in lines),
            "lines": len(lines),
            "wordCount": len(words),
            "averageConfidence": sum(confidences) / len(confidences) if confidences else 0.0,
        }
        self.logger.info("Image text extraction completed", file_name=original_name,
                         blocks=len(blocks), text_length=len(result["fullText"]))
        return result
