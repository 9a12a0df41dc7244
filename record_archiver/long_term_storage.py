"""
Long-term storage for built archives.

Backends upload a local file under an object key and return its address (stored in
archives.url): InMemoryLongTermStorage, S3CompatibleStorage (boto3), BosStorage (baidubce),
OssStorage (oss2). SDKs are imported on first use, so only the configured one must be installed.

Every upload sends Content-MD5 so the store rejects a corrupted transfer.

Object key convention:
  {org_id}/{category}_{period}{date}_{md5}.jsonl.gz   e.g. 42/message_D20170810_fa9ac5a2....jsonl.gz
"""

from __future__ import annotations

import base64
import logging
import threading
from typing import Protocol

from record_archiver.errors import InvariantError, UploadError
from record_archiver.tasks import ArchiveTask, TaskState

logger = logging.getLogger(__name__)

ARCHIVE_CONTENT_TYPE = "application/json"
ARCHIVE_CONTENT_ENCODING = "gzip"
DEFAULT_BOS_ENDPOINT = "https://bj.bcebos.com"


def archive_key(task: ArchiveTask) -> str:
    """Return object storage key for a built task (e.g. 42/message_D20170810_<md5>.jsonl.gz)."""
    return f"{task.org_id}/{task.category.value}_{task.granularity.label(task.start)}_{task.hash}.jsonl.gz"


def content_md5(hex_digest: str) -> str:
    """Base64 Content-MD5 header value for an md5 hex digest."""
    return base64.b64encode(bytes.fromhex(hex_digest)).decode("ascii")


class LongTermStorageBackend(Protocol):
    """What the uploader needs from an object store."""

    def put_file(self, key: str, path: str, md5_hex: str | None = None) -> str:
        """Upload the local file at path under key; return the object's address."""
        ...

    def get_object(self, key: str) -> bytes | None:
        """Object body, or None if key does not exist."""
        ...


class InMemoryLongTermStorage:
    """Dict-backed store for tests and local runs; put_file reads the whole file."""

    def __init__(self) -> None:
        self._objects: dict[str, bytes] = {}
        self._lock = threading.Lock()

    def put_file(self, key: str, path: str, md5_hex: str | None = None) -> str:
        with open(path, "rb") as f:
            body = f.read()
        with self._lock:
            self._objects[key] = body
        return f"memory://{key}"

    def get_object(self, key: str) -> bytes | None:
        with self._lock:
            return self._objects.get(key)

    def keys(self) -> list[str]:
        with self._lock:
            return sorted(self._objects)


class _LazyClient:
    """Creates the SDK client on first use; safe to share between archiver worker threads."""

    def __init__(self) -> None:
        self._client = None
        self._client_lock = threading.Lock()

    def _connect(self):
        raise NotImplementedError

    def _get_client(self):
        with self._client_lock:
            if self._client is None:
                self._client = self._connect()
            return self._client


class S3CompatibleStorage(_LazyClient):
    """
    AWS S3 or any S3 API (MinIO, Ceph RGW). Needs boto3: pip install -e ".[s3]".

    Credentials default to boto3's own chain (env, instance profile) unless both keys are given.
    """

    def __init__(
        self,
        bucket: str,
        endpoint_url: str | None = None,
        region_name: str = "us-east-1",
        access_key: str | None = None,
        secret_key: str | None = None,
    ):
        super().__init__()
        self.bucket = bucket
        self._endpoint_url = endpoint_url
        self._region_name = region_name
        self._credentials = (access_key, secret_key) if access_key and secret_key else None

    def _connect(self):
        import boto3
        from botocore.config import Config

        kwargs = {"region_name": self._region_name, "config": Config(signature_version="s3v4")}
        if self._endpoint_url:
            kwargs["endpoint_url"] = self._endpoint_url
        if self._credentials:
            kwargs["aws_access_key_id"], kwargs["aws_secret_access_key"] = self._credentials
        return boto3.client("s3", **kwargs)

    def put_file(self, key: str, path: str, md5_hex: str | None = None) -> str:
        extra = {"ContentType": ARCHIVE_CONTENT_TYPE, "ContentEncoding": ARCHIVE_CONTENT_ENCODING, "ACL": "private"}
        if md5_hex:
            extra["ContentMD5"] = content_md5(md5_hex)
        with open(path, "rb") as body:
            self._get_client().put_object(Bucket=self.bucket, Key=key, Body=body, **extra)
        return f"s3://{self.bucket}/{key}"

    def get_object(self, key: str) -> bytes | None:
        from botocore.exceptions import ClientError

        try:
            return self._get_client().get_object(Bucket=self.bucket, Key=key)["Body"].read()
        except ClientError as e:
            if e.response.get("Error", {}).get("Code") in ("NoSuchKey", "404"):
                return None
            raise


class BosStorage(_LazyClient):
    """Baidu BOS. Needs bce-python-sdk: pip install -e ".[bos]"."""

    def __init__(self, bucket: str, access_key: str, secret_key: str, endpoint: str = DEFAULT_BOS_ENDPOINT):
        super().__init__()
        self.bucket = bucket
        self._credentials = (access_key, secret_key)
        self._endpoint = endpoint.rstrip("/")

    def _connect(self):
        from baidubce.auth.bce_credentials import BceCredentials
        from baidubce.bce_client_configuration import BceClientConfiguration
        from baidubce.services.bos.bos_client import BosClient

        return BosClient(
            BceClientConfiguration(credentials=BceCredentials(*self._credentials), endpoint=self._endpoint)
        )

    def put_file(self, key: str, path: str, md5_hex: str | None = None) -> str:
        kwargs = {"content_type": ARCHIVE_CONTENT_TYPE}
        if md5_hex:
            kwargs["content_md5"] = content_md5(md5_hex)
        self._get_client().put_object_from_file(bucket=self.bucket, key=key, file_name=path, **kwargs)
        return f"bos://{self.bucket}/{key}"

    def get_object(self, key: str) -> bytes | None:
        from baidubce.exception import BceError

        try:
            return self._get_client().get_object_as_string(bucket_name=self.bucket, key=key)
        except BceError as e:
            if getattr(e, "status_code", None) == 404:
                return None
            raise


class OssStorage(_LazyClient):
    """
    Aliyun OSS. Needs oss2: pip install -e ".[oss]".

    Uploads use PutObject from a local file; OSS checks the Content-MD5 header server side.
    """

    def __init__(self, bucket: str, access_key_id: str, access_key_secret: str, endpoint: str):
        super().__init__()
        self.bucket_name = bucket
        self._credentials = (access_key_id, access_key_secret)
        self._endpoint = endpoint.rstrip("/")

    def _connect(self):
        import oss2

        return oss2.Bucket(oss2.Auth(*self._credentials), self._endpoint, self.bucket_name)

    def _get_bucket(self):
        return self._get_client()

    def put_file(self, key: str, path: str, md5_hex: str | None = None) -> str:
        headers = {"Content-Type": ARCHIVE_CONTENT_TYPE, "Content-Encoding": ARCHIVE_CONTENT_ENCODING}
        if md5_hex:
            headers["Content-MD5"] = content_md5(md5_hex)
        self._get_bucket().put_object_from_file(key, path, headers=headers)
        return f"oss://{self.bucket_name}/{key}"

    def get_object(self, key: str) -> bytes | None:
        import oss2

        try:
            return self._get_bucket().get_object(key).read()
        except oss2.exceptions.NoSuchKey:
            return None


def upload_archive(storage: LongTermStorageBackend, task: ArchiveTask) -> str:
    """
    Upload a built task's artifact and record its address on task.url.

    Raises:
        InvariantError: task is not built or its local file was already released.
        UploadError: the backend failed; the task keeps no url.
    """
    if not task.is_built or not task.local_path:
        raise InvariantError("cannot upload an unbuilt archive task", details=task.describe())
    key = archive_key(task)
    try:
        url = storage.put_file(key, task.local_path, md5_hex=task.hash)
    except Exception as e:
        raise UploadError(f"failed to upload archive: {e}", details={**task.describe(), "key": key}) from e
    task.url = url
    task.state = TaskState.UPLOADED
    logger.info("Archive uploaded", extra={**task.describe(), "url": url})
    return url


def _normalize_endpoint(endpoint: str | None) -> str | None:
    """Endpoint with a scheme (https:// by default) and no trailing slash; None when blank."""
    ep = (endpoint or "").strip().rstrip("/")
    if not ep:
        return None
    return ep if ep.startswith(("http://", "https://")) else f"https://{ep}"


def _value(config: dict, key: str) -> str:
    return (config.get(key) or "").strip()


def create_storage_backend_from_config(config: dict) -> LongTermStorageBackend:
    """
    Create a long-term storage backend from a config dict (e.g. app.yaml section).

    - oss_endpoint, oss_bucket, oss_access_key_id, oss_access_key_secret -> OssStorage
    - s3_bucket (+ optional s3_endpoint, s3_region, s3_access_key, s3_secret_key) -> S3CompatibleStorage
    - bos_bucket, bos_access_key, bos_secret_key (+ optional bos_endpoint) -> BosStorage
    Otherwise returns InMemoryLongTermStorage for local dev / tests.
    """
    ep = _normalize_endpoint(config.get("oss_endpoint"))
    bucket = _value(config, "oss_bucket")
    key_id = _value(config, "oss_access_key_id")
    key_secret = _value(config, "oss_access_key_secret")
    if ep and bucket and key_id and key_secret:
        return OssStorage(bucket=bucket, access_key_id=key_id, access_key_secret=key_secret, endpoint=ep)

    if _value(config, "s3_bucket"):
        return S3CompatibleStorage(
            bucket=_value(config, "s3_bucket"),
            endpoint_url=_normalize_endpoint(config.get("s3_endpoint")),
            region_name=_value(config, "s3_region") or "us-east-1",
            access_key=_value(config, "s3_access_key") or None,
            secret_key=_value(config, "s3_secret_key") or None,
        )

    if _value(config, "bos_bucket") and _value(config, "bos_access_key") and _value(config, "bos_secret_key"):
        return BosStorage(
            bucket=_value(config, "bos_bucket"),
            access_key=_value(config, "bos_access_key"),
            secret_key=_value(config, "bos_secret_key"),
            endpoint=_normalize_endpoint(config.get("bos_endpoint")) or DEFAULT_BOS_ENDPOINT,
        )

    logger.warning("No long-term storage configured, archives are kept in memory only")
    return InMemoryLongTermStorage()
