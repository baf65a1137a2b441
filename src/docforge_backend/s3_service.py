"""
S3 service module for mirroring rendered artifacts and generating presigned URLs.

This module provides functionality for:
- Building the object key of a document's rendered artifact
- Uploading artifact bytes to S3
- Generating presigned URLs for secure, time-limited downloads

The S3 bucket name is configured via the S3_BUCKET_NAME environment variable.
When running locally without AWS credentials, S3 operations are skipped gracefully.
"""

from __future__ import annotations

import logging
import mimetypes
import os
from typing import Optional

import boto3
from botocore.exceptions import BotoCoreError, ClientError
from dotenv import load_dotenv

# Load environment variables from .env file
load_dotenv()

logger = logging.getLogger(__name__)

# S3 bucket name from environment variable
S3_BUCKET_NAME = os.environ.get("S3_BUCKET_NAME", "")

# S3 client (lazy initialization)
_s3_client = None


def _get_s3_client():
    """
    Get or create the S3 client.

    Returns:
        boto3 S3 client or None if bucket is not configured

    Note:
        Credential errors surface during the actual upload, not here.
    """
    global _s3_client
    if _s3_client is None:
        if not S3_BUCKET_NAME:
            logger.warning("S3_BUCKET_NAME not configured")
            return None
        try:
            _s3_client = boto3.client("s3")
        except Exception as e:
            logger.warning(f"Failed to create S3 client: {e}")
            _s3_client = None
    return _s3_client


def artifact_key(document_id: str, fmt: str, prefix: str = "documents") -> str:
    """
    Object key of a document's rendered artifact.

    Example:
        >>> artifact_key("abc123", "pdf")
        "documents/abc123/rendered.pdf"
    """
    prefix = prefix.strip("/")
    key = f"{document_id}/rendered.{fmt}"
    return f"{prefix}/{key}" if prefix else key


def upload_artifact(data: bytes, s3_key: str) -> bool:
    """
    Upload artifact bytes to S3.

    Args:
        data: Rendered document bytes
        s3_key: S3 object key (path within the bucket)

    Returns:
        True if upload was successful, False otherwise

    Note:
        If S3 credentials are not available or bucket is not configured,
        this function returns False without raising an exception.
    """
    if not S3_BUCKET_NAME:
        logger.debug("S3_BUCKET_NAME not configured, skipping upload")
        return False

    client = _get_s3_client()
    if client is None:
        logger.warning("S3 client not available, skipping upload")
        return False

    content_type = mimetypes.guess_type(s3_key)[0] or "application/octet-stream"
    try:
        logger.info(f"Uploading {len(data)} bytes to s3://{S3_BUCKET_NAME}/{s3_key}")
        client.put_object(Bucket=S3_BUCKET_NAME, Key=s3_key, Body=data, ContentType=content_type)
        logger.info(f"Upload successful: s3://{S3_BUCKET_NAME}/{s3_key}")
        return True
    except (ClientError, BotoCoreError) as e:
        logger.error(f"S3 upload failed: {e}")
        return False


def generate_presigned_url(s3_key: str, expiration: int = 3600) -> Optional[str]:
    """
    Generate a presigned URL for downloading a file from S3.

    Args:
        s3_key: S3 object key (path within the bucket)
        expiration: URL expiration time in seconds (default: 3600 = 1 hour)

    Returns:
        Presigned URL string, or None if generation fails
    """
    if not S3_BUCKET_NAME:
        logger.warning("S3_BUCKET_NAME not configured")
        return None

    client = _get_s3_client()
    if client is None:
        logger.warning("S3 client not available")
        return None

    try:
        url = client.generate_presigned_url(
            "get_object",
            Params={"Bucket": S3_BUCKET_NAME, "Key": s3_key},
            ExpiresIn=expiration,
        )
        logger.info(f"Generated presigned URL for {s3_key} (expires in {expiration}s)")
        return url
    except (ClientError, BotoCoreError) as e:
        logger.error(f"Failed to generate presigned URL: {e}")
        return None


def is_s3_configured() -> bool:
    """
    Check if S3 is properly configured and accessible.

    Returns:
        True if S3 bucket is configured and credentials are available
    """
    return bool(S3_BUCKET_NAME) and _get_s3_client() is not None
