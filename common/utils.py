"""
Common Utilities
================

Shared helper functions for the replication jobs.
"""

import json
from typing import Dict, List, Optional

from minio import Minio


def get_minio_client(config: Dict) -> Minio:
    """
    Create and return a MinIO (S3-compatible) client.

    Args:
        config: Dict with endpoint, access_key, secret_key and optional secure/region

    Returns:
        Minio client instance
    """
    return Minio(
        endpoint=config["endpoint"],
        access_key=config["access_key"],
        secret_key=config["secret_key"],
        secure=config.get("secure", True),
        region=config.get("region")
    )


def read_config(config_path: str) -> Dict:
    """
    Read JSON configuration file.

    Args:
        config_path: Path to config file

    Returns:
        Config dictionary
    """
    with open(config_path, 'r') as f:
        return json.load(f)


def split_csv(value: Optional[str]) -> List[str]:
    """Split a comma separated flag value, dropping blanks and surrounding spaces."""
    if not value:
        return []
    return [item.strip() for item in value.split(",") if item.strip()]

