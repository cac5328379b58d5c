"""Document/image storage on Cloudflare R2 (S3 API)"""

import logging
import mimetypes
import uuid
from typing import Optional

import boto3
from botocore.config import Config

from ..config import R2_ACCESS_KEY_ID, R2_ACCOUNT_ID, R2_BUCKET_NAME, R2_PUBLIC_URL, R2_SECRET_ACCESS_KEY

logger = logging.getLogger(__name__)

# Presigned URL expiration time (7 days) when no public bucket URL is configured
PRESIGNED_URL_EXPIRATION = 7 * 24 * 3600

ALLOWED_UPLOAD_TYPES = [
    "image/png",
    "image/jpeg",
    "image/jpg",
    "image/webp",
    "image/heic",
    "image/heif",
    "application/pdf",
]

MAX_UPLOAD_BYTES = 10 * 1024 * 1024


def get_r2_client():
    """Create and return an R2 client."""
    return boto3.client(
        "s3",
        endpoint_url=f"https://{R2_ACCOUNT_ID}.r2.cloudflarestorage.com",
        aws_access_key_id=R2_ACCESS_KEY_ID,
        aws_secret_access_key=R2_SECRET_ACCESS_KEY,
        config=Config(signature_version="s3v4"),
    )


class StorageService:
    def __init__(self, bucket: str = R2_BUCKET_NAME, public_url: Optional[str] = R2_PUBLIC_URL):
        self.bucket = bucket
        self.public_url = public_url

    def upload(self, contents: bytes, folder: str, content_type: str, filename: Optional[str] = None) -> dict:
        """
        Store a file and return its reference.

        Returns:
            dict with url and public_id (the object key)
        """
        extension = mimetypes.guess_extension(content_type or "") or ""
        if not extension and filename and "." in filename:
            extension = "." + filename.rsplit(".", 1)[-1].lower()
        key = f"{folder.strip('/')}/{uuid.uuid4()}{extension}"

        r2 = get_r2_client()
        r2.put_object(Bucket=self.bucket, Key=key, Body=contents, ContentType=content_type)

        if self.public_url:
            url = f"{self.public_url.rstrip('/')}/{key}"
        else:
            url = r2.generate_presigned_url(
                "get_object",
                Params={"Bucket": self.bucket, "Key": key},
                ExpiresIn=PRESIGNED_URL_EXPIRATION,
            )
        logger.info(f"✅ Uploaded {len(contents)} bytes to {key}")
        return {"url": url, "public_id": key}


storage_service = StorageService()


def get_storage_service() -> StorageService:
    return storage_service
