import logging
import re
import uuid
from functools import lru_cache
from typing import Optional

import boto3
from botocore.config import Config

from echo88.core.config import Settings, get_settings


logger = logging.getLogger(__name__)

AVATAR_PREFIX = "avatars"
UPLOAD_URL_TTL_SECONDS = 900


class StorageNotConfiguredError(Exception):
    """AWS credentials or bucket missing from the configuration."""


def is_configured(settings: Optional[Settings] = None) -> bool:
    settings = settings or get_settings()
    return bool(
        settings.AWS_ACCESS_KEY_ID
        and settings.AWS_SECRET_ACCESS_KEY
        and settings.AWS_S3_BUCKET_NAME
    )


@lru_cache
def get_s3_client():
    settings = get_settings()
    if not is_configured(settings):
        raise StorageNotConfiguredError("S3 storage is not configured")

    # virtual-hosted style keeps presigned URLs on the regional endpoint
    s3_config = Config(
        region_name=settings.AWS_S3_REGION,
        signature_version="s3v4",
        s3={"addressing_style": "virtual"},
    )
    client_kwargs = {
        "aws_access_key_id": settings.AWS_ACCESS_KEY_ID.strip(),
        "aws_secret_access_key": settings.AWS_SECRET_ACCESS_KEY.strip(),
        "region_name": settings.AWS_S3_REGION.strip(),
        "config": s3_config,
    }
    # MinIO, Spaces and friends
    if settings.AWS_S3_ENDPOINT_URL:
        client_kwargs["endpoint_url"] = settings.AWS_S3_ENDPOINT_URL.strip()
    return boto3.client("s3", **client_kwargs)


def normalize_filename(filename: str) -> str:
    """Spaces become underscores; anything but letters, digits, ``._-`` is dropped."""
    normalized = filename.replace(" ", "_")
    return re.sub(r"[^a-zA-Z0-9._-]", "", normalized)


def avatar_key(user_id: str, filename: str) -> str:
    name = normalize_filename(filename) or "avatar"
    return f"{AVATAR_PREFIX}/{user_id}/{uuid.uuid4().hex[:12]}_{name}"


def create_presigned_upload(key: str, content_type: str, expires_in: int = UPLOAD_URL_TTL_SECONDS) -> str:
    """Presigned PUT URL for ``key``.

    The client must send exactly ``content_type`` as its Content-Type
    header; it is part of the signature. Raises ClientError on failure.
    """
    settings = get_settings()
    return get_s3_client().generate_presigned_url(
        "put_object",
        Params={
            "Bucket": settings.AWS_S3_BUCKET_NAME,
            "Key": key,
            "ContentType": content_type,
        },
        ExpiresIn=expires_in,
    )


def get_file_url(key: str) -> str:
    settings = get_settings()
    if settings.AWS_S3_ENDPOINT_URL:
        return f"{settings.AWS_S3_ENDPOINT_URL.rstrip('/')}/{settings.AWS_S3_BUCKET_NAME}/{key}"
    return f"https://{settings.AWS_S3_BUCKET_NAME}.s3.{settings.AWS_S3_REGION}.amazonaws.com/{key}"
