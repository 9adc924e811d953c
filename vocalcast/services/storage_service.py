"""
Object storage for uploaded podcast media.

Audio and cover images go to a single S3 bucket under ``uploads/`` and are
served from the bucket's public URL.
"""

import logging
import threading
import time
import unicodedata
import re
from dataclasses import dataclass
from typing import BinaryIO, Optional, Union

import boto3
from botocore.config import Config
from botocore.exceptions import (
    BotoCoreError,
    ClientError,
    ConnectTimeoutError,
    EndpointConnectionError,
    ReadTimeoutError,
)

from vocalcast.config import settings
from vocalcast.errors import UpstreamError, UpstreamTimeout

logger = logging.getLogger(__name__)

_UNSAFE_CHARS = re.compile(r'[^a-zA-Z0-9._-]')


class StorageError(UpstreamError):
    default_code = 'StorageError'


class StorageTimeout(UpstreamTimeout):
    default_code = 'StorageTimeout'


def sanitize_filename(name: str) -> str:
    """Strip diacritics and replace anything outside [A-Za-z0-9._-] with '_'."""
    decomposed = unicodedata.normalize('NFD', name or '')
    stripped = ''.join(ch for ch in decomposed if not unicodedata.combining(ch))
    cleaned = _UNSAFE_CHARS.sub('_', stripped)
    return cleaned or 'file'


class _MonotonicClock:
    """Millisecond timestamps that never repeat within the process."""

    def __init__(self):
        self._lock = threading.Lock()
        self._last = 0

    def next(self) -> int:
        with self._lock:
            now = int(time.time() * 1000)
            self._last = now if now > self._last else self._last + 1
            return self._last


_clock = _MonotonicClock()


def build_object_key(original_name: str, prefix: str = 'uploads') -> str:
    return f"{prefix}/{_clock.next()}-{sanitize_filename(original_name)}"


@dataclass
class StoredObject:
    key: str
    url: str
    content_type: Optional[str] = None
    size: Optional[int] = None


class S3StorageClient:
    """Thin wrapper around boto3's put_object with bounded timeouts and no retries."""

    def __init__(
        self,
        bucket: Optional[str] = None,
        region: Optional[str] = None,
        client=None,
        timeout: Optional[float] = None,
    ):
        self.bucket = bucket or settings.S3_BUCKET_NAME
        self.region = region or settings.AWS_REGION
        timeout = timeout if timeout is not None else settings.STORAGE_TIMEOUT
        self.client = client or boto3.client(
            's3',
            region_name=self.region,
            aws_access_key_id=settings.AWS_ACCESS_KEY_ID,
            aws_secret_access_key=settings.AWS_SECRET_ACCESS_KEY,
            config=Config(
                connect_timeout=timeout,
                read_timeout=timeout,
                retries={'total_max_attempts': 1, 'mode': 'standard'},
            ),
        )

    def public_url(self, key: str) -> str:
        return f"https://{self.bucket}.s3.{self.region}.amazonaws.com/{key}"

    def upload(
        self,
        body: Union[bytes, BinaryIO],
        original_name: str,
        content_type: Optional[str] = None,
    ) -> StoredObject:
        if not self.bucket:
            raise StorageError('Object storage is not configured', code='StorageNotConfigured')

        key = build_object_key(original_name)
        params = {'Bucket': self.bucket, 'Key': key, 'Body': body}
        if content_type:
            params['ContentType'] = content_type

        try:
            self.client.put_object(**params)
        except (ConnectTimeoutError, ReadTimeoutError):
            logger.error("S3 upload timed out key=%s", key)
            raise StorageTimeout('Object storage timed out')
        except ClientError as e:
            error_code = e.response.get('Error', {}).get('Code', 'Unknown')
            logger.error("S3 upload rejected key=%s code=%s", key, error_code)
            raise StorageError(f'Object storage rejected the upload ({error_code})')
        except (EndpointConnectionError, BotoCoreError) as e:
            logger.error("S3 upload failed key=%s error=%s", key, e.__class__.__name__)
            raise StorageError('Object storage is unreachable')

        size = len(body) if isinstance(body, (bytes, bytearray)) else None
        stored = StoredObject(key=key, url=self.public_url(key), content_type=content_type, size=size)
        logger.info("Uploaded %s to S3 (%s bytes)", key, size if size is not None else 'stream')
        return stored
