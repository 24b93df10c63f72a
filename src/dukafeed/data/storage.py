"""
Low-level persistence shared by the tick and bar cache tiers.

Local files are written through a ``.part`` file and renamed into place, so a
reader never sees a partial file.  S3 helpers map a "not found" response to
``None``/``False`` and let every other ``ClientError`` propagate.
"""

from __future__ import annotations

import os
from contextlib import closing
from pathlib import Path
from typing import Optional

from botocore.exceptions import ClientError

from dukafeed.core.exceptions import CachePersistenceError

# botocore error codes meaning "object is not there"
_S3_NOT_FOUND = {"404", "NoSuchKey", "NotFound"}


# ---------------------------------------------------------------------------
# Local files
# ---------------------------------------------------------------------------
def read_if_present(target: Path) -> Optional[bytes]:
    if target.is_file():
        return target.read_bytes()
    return None


def write_atomically(target: Path, data: bytes) -> None:
    tmp_path = target.with_name(target.name + ".part")
    try:
        target.parent.mkdir(parents=True, exist_ok=True)
        tmp_path.write_bytes(data)
        os.replace(tmp_path, target)
    except OSError as exc:
        if tmp_path.exists():
            tmp_path.unlink()
        raise CachePersistenceError(f"Could not write cache file {target}", path=str(target)) from exc


def directory_size(root: Path) -> int:
    if not root.exists():
        return 0
    return sum(p.stat().st_size for p in root.rglob("*") if p.is_file())


# ---------------------------------------------------------------------------
# S3
# ---------------------------------------------------------------------------
def is_not_found(exc: ClientError) -> bool:
    return str(exc.response.get("Error", {}).get("Code")) in _S3_NOT_FOUND


def s3_key(prefix: str, path: str) -> str:
    prefix = prefix.strip("/")
    return f"{prefix}/{path}" if prefix else path


def s3_get_or_none(s3_client, bucket: str, key: str) -> Optional[bytes]:
    try:
        response = s3_client.get_object(Bucket=bucket, Key=key)
    except ClientError as exc:
        if is_not_found(exc):
            return None
        raise
    with closing(response["Body"]) as body:
        return body.read()


def s3_exists(s3_client, bucket: str, key: str) -> bool:
    try:
        s3_client.head_object(Bucket=bucket, Key=key)
        return True
    except ClientError as exc:
        if is_not_found(exc):
            return False
        raise
