"""
Object Storage Helpers
Pre-signed S3 URLs for documents, avatars and learning materials
"""

import logging
import os
import uuid
from typing import Optional, Tuple

import boto3
from botocore.exceptions import BotoCoreError, ClientError
from flask import current_app

logger = logging.getLogger(__name__)


def _get_s3_client():
    """S3 client built from the app's AWS settings"""
    cfg = current_app.config
    return boto3.client(
        's3',
        aws_access_key_id=cfg.get('AWS_ACCESS_KEY_ID'),
        aws_secret_access_key=cfg.get('AWS_SECRET_ACCESS_KEY'),
        region_name=cfg.get('AWS_REGION'),
    )


def build_file_path(folder: str, file_name: str) -> str:
    """folder/<name>-<4 hex chars>.<ext>, so repeated uploads never collide"""
    base, ext = os.path.splitext(os.path.basename(file_name))
    suffix = uuid.uuid4().hex[:4]
    folder = (folder or '').strip('/')
    key = f"{base}-{suffix}{ext}"
    return f"{folder}/{key}" if folder else key


def create_upload_url(file_path: str, content_type: str) -> Tuple[Optional[str], Optional[str]]:
    """Pre-signed PUT URL for a browser upload"""
    cfg = current_app.config
    try:
        url = _get_s3_client().generate_presigned_url(
            'put_object',
            Params={
                'Bucket': cfg['S3_BUCKET_NAME'],
                'Key': file_path,
                'ContentType': content_type,
            },
            ExpiresIn=cfg['UPLOAD_URL_EXPIRES'],
        )
        return url, None
    except (ClientError, BotoCoreError) as e:
        logger.error(f"Could not presign upload for {file_path}: {e}")
        return None, f"S3 presigned URL error: {e}"


def create_download_url(file_key: str, file_name: str) -> Tuple[Optional[str], Optional[str]]:
    """Pre-signed GET URL that downloads under the original file name"""
    cfg = current_app.config
    try:
        url = _get_s3_client().generate_presigned_url(
            'get_object',
            Params={
                'Bucket': cfg['S3_BUCKET_NAME'],
                'Key': file_key,
                'ResponseContentDisposition': f'attachment; filename="{file_name}"',
            },
            ExpiresIn=cfg['DOWNLOAD_URL_EXPIRES'],
        )
        return url, None
    except (ClientError, BotoCoreError) as e:
        logger.error(f"Could not presign download for {file_key}: {e}")
        return None, f"S3 presigned URL error: {e}"


def delete_object(file_key: str) -> bool:
    try:
        _get_s3_client().delete_object(Bucket=current_app.config['S3_BUCKET_NAME'], Key=file_key)
        return True
    except (ClientError, BotoCoreError) as e:
        logger.error(f"Could not delete {file_key}: {e}")
        return False
