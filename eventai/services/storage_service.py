"""S3 storage for event attachments."""

import asyncio
import re
import time
from datetime import datetime, timezone
from typing import Any, Dict, Optional

import boto3
import structlog

from eventai.models.config import EventAIConfig


logger = structlog.get_logger(__name__)

PRESIGNED_URL_TTL = 7 * 24 * 3600
UPLOADER = "event-ai-server"

_UNSAFE = re.compile(r"[^a-zA-Z0-9.-]")


def sanitize_filename(name: str) -> str:
    return _UNSAFE.sub("_", name)


def attachment_key(event_id: str, original_name: str, timestamp_ms: Optional[int] = None) -> str:
    timestamp_ms = timestamp_ms if timestamp_ms is not None else int(time.time() * 1000)
    return f"events/{event_id}/attachments/{timestamp_ms}_{sanitize_filename(original_name)}"


class StorageService:
    """Encrypted uploads with time-limited download links."""

    def __init__(self, config: EventAIConfig, client: Optional[Any] = None):
        self.bucket = config.s3_bucket_name
        self.region = config.aws_region
        self.client = client or boto3.client("s3", **config.aws_client_kwargs())
        self.logger = logger.bind(component="storage_service")

    def public_url(self, key: str) -> str:
        return f"https://{self.bucket}.s3.{self.region}.amazonaws.com/{key}"

    async def get_presigned_download_url(self, key: str, expires_in: int = PRESIGNED_URL_TTL) -> str:
        return await asyncio.to_thread(
            self.client.generate_presigned_url,
            "get_object",
            Params={"Bucket": self.bucket, "Key": key},
            ExpiresIn=expires_in,
        )

    async def upload_event_attachment(self,
                                      event_id: str,
                                      content: bytes,
                                      original_name: str,
                                      mime_type: str) -> Dict[str, Any]:
        """
        Store one attachment under the event's prefix.

        Raises:
            botocore.exceptions.ClientError: the upload or URL signing failed
        """
        key = attachment_key(event_id, original_name)
        uploaded_at = datetime.now(timezone.utc).isoformat()

        self.logger.info("Uploading event attachment", event_id=event_id, key=key, size=len(content))
        try:
            await asyncio.to_thread(
                self.client.put_object,
                Bucket=self.bucket,
                Key=key,
                Body=content,
                ContentType=mime_type,
                ServerSideEncryption="AES256",
                Metadata={
                    "uploaded-by": UPLOADER,
                    "upload-timestamp": uploaded_at,
                    "event-id": event_id,
                    "original-filename": sanitize_filename(original_name),
                },
            )
            signed_url = await self.get_presigned_download_url(key)
        except Exception as e:
            self.logger.error("Event attachment upload failed", event_id=event_id, key=key, error=str(e))
            raise

        return {
            "key": key,
            "signedUrl": signed_url,
            "publicUrl": self.public_url(key),
            "originalName": original_name,
            "mimeType": mime_type,
            "size": len(content),
            "uploadedAt": uploaded_at,
        }
