"""Cloudflare R2 image store adapter.

R2 speaks the S3 API, so this adapter drives a ``boto3`` S3 client pointed
at ``https://{account_id}.r2.cloudflarestorage.com`` with region ``auto``.
boto3 is synchronous; uploads run through ``asyncio.to_thread``.
"""

from __future__ import annotations

import asyncio

import boto3
import structlog
from botocore.exceptions import BotoCoreError, ClientError

from src.config.settings import Settings
from src.interfaces.image_store import IImageStore
from src.utils.errors import ConfigurationError, ImageStoreError

logger = structlog.get_logger(logger_name=__name__)


class R2ImageStore(IImageStore):
    """Durable image storage in an R2 bucket with a public URL prefix."""

    def __init__(self, settings: Settings, client: object | None = None) -> None:
        if not settings.r2_configured():
            raise ConfigurationError(
                message=(
                    "R2 is not configured (R2_ACCOUNT_ID, R2_ACCESS_KEY_ID, "
                    "R2_SECRET_ACCESS_KEY, R2_BUCKET_NAME, R2_PUBLIC_URL)"
                ),
                provider_name="r2",
            )
        self._bucket = settings.r2_bucket_name
        self._public_url = settings.r2_public_url.rstrip("/")
        self._client = client or boto3.client(
            "s3",
            endpoint_url=f"https://{settings.r2_account_id}.r2.cloudflarestorage.com",
            aws_access_key_id=settings.r2_access_key_id,
            aws_secret_access_key=settings.r2_secret_access_key,
            region_name="auto",
        )

    async def upload(self, data: bytes, key: str, mime_type: str) -> str:
        """PUT *data* at *key* and return ``{public_url}/{key}``."""
        try:
            await asyncio.to_thread(
                self._client.put_object,
                Bucket=self._bucket,
                Key=key,
                Body=data,
                ContentType=mime_type,
            )
        except (BotoCoreError, ClientError) as exc:
            raise ImageStoreError(
                message=f"R2 upload failed for {key}: {exc}",
                provider_name=self.get_provider_name(),
            ) from exc

        url = f"{self._public_url}/{key}"
        logger.info("r2_upload", key=key, bytes=len(data), mime_type=mime_type)
        return url

    def get_provider_name(self) -> str:
        return "r2"
