"""
MinIO Object Store Connector
============================

Connector for the S3-compatible object store that stages table dumps
between the source database and the warehouse.

Paths are full URIs (s3://bucket/key) so the same string can be handed to
the warehouse COPY command.
"""

import io
import logging
from typing import Dict, Tuple

from minio.error import S3Error

from common.errors import ConnectionSetupError
from common.utils import get_minio_client

logger = logging.getLogger(__name__)

STAGE_SUFFIX = ".txt.gz"


def stage_path(prefix: str, table: str) -> str:
    """
    Object store path for a table's staged dump.

    Example:
        stage_path("s3://bucket/pg/", "orders") -> "s3://bucket/pg/orders.txt.gz"
    """
    return f"{prefix}{table}{STAGE_SUFFIX}"


def parse_path(path: str) -> Tuple[str, str]:
    """
    Split an s3:// URI into bucket and key.

    Raises:
        ValueError: if the path is not an s3:// URI with a key
    """
    if not path.startswith("s3://"):
        raise ValueError(f"not an s3:// path: {path}")
    bucket, _, key = path[len("s3://"):].partition("/")
    if not bucket or not key:
        raise ValueError(f"s3 path needs a bucket and a key: {path}")
    return bucket, key


class MinIOConnector:
    """
    Object store connector for staged table files.
    """

    def __init__(self, config: Dict):
        """
        Initialize MinIO connector.

        Args:
            config: Connection configuration dict with endpoint, access_key, secret_key,
                secure and region
        """
        self.config = config
        self.client = None

    def connect(self):
        """Create the client."""
        try:
            self.client = get_minio_client(self.config)
        except ValueError as e:
            raise ConnectionSetupError(f"invalid object store configuration: {e}") from e
        logger.info(f"Connected to object store: {self.config['endpoint']}")

    def ensure_bucket(self, bucket: str):
        """Create the bucket if it does not exist yet."""
        if not self.client.bucket_exists(bucket):
            self.client.make_bucket(bucket)
            logger.info(f"Created bucket: {bucket}")

    def write_bytes(self, path: str, data: bytes, content_type: str = "application/gzip") -> str:
        """
        Upload bytes to a path.

        Args:
            path: s3:// destination
            data: Object contents
            content_type: MIME type stored with the object

        Returns:
            The path written
        """
        bucket, key = parse_path(path)
        self.client.put_object(
            bucket_name=bucket,
            object_name=key,
            data=io.BytesIO(data),
            length=len(data),
            content_type=content_type
        )
        logger.info(f"Written {len(data)} bytes to {path}")
        return path

    def read_bytes(self, path: str) -> bytes:
        """Download an object's contents."""
        bucket, key = parse_path(path)
        response = self.client.get_object(bucket, key)
        try:
            return response.read()
        finally:
            response.close()
            response.release_conn()

    def object_exists(self, path: str) -> bool:
        """
        Check if object exists.

        Args:
            path: s3:// path to check

        Returns:
            True if exists, False otherwise
        """
        bucket, key = parse_path(path)
        try:
            self.client.stat_object(bucket, key)
            return True
        except S3Error as e:
            if e.code in ("NoSuchKey", "NoSuchBucket", "NoSuchObject"):
                return False
            raise
