"""Tests for long-term storage backends, object keys and upload_archive."""

import base64
import hashlib
import os
import uuid
from concurrent.futures import ThreadPoolExecutor
from unittest.mock import MagicMock, patch

import pytest

from conftest import utc

from record_archiver.builder import build_archive
from record_archiver.errors import InvariantError, UploadError
from record_archiver.long_term_storage import (
    BosStorage,
    InMemoryLongTermStorage,
    OssStorage,
    S3CompatibleStorage,
    archive_key,
    content_md5,
    create_storage_backend_from_config,
    upload_archive,
)
from record_archiver.periods import Granularity
from record_archiver.sources import InMemoryRecordSource
from record_archiver.tasks import ArchiveTask, RecordCategory, TaskState

EMPTY_HASH = "fa9ac5a217b5547bc7dd4e6e894fe135"


def _task(granularity=Granularity.DAY, start=utc(2017, 8, 10), **fields) -> ArchiveTask:
    end = utc(2017, 9, 1) if granularity is Granularity.MONTH else utc(2017, 8, 11)
    return ArchiveTask(
        org_id=42, category=RecordCategory.MESSAGE, granularity=granularity, start=start, end=end, **fields
    )


def _built(scratch_dir) -> ArchiveTask:
    return build_archive(_task(), scratch_dir, InMemoryRecordSource())


def test_archive_key() -> None:
    assert archive_key(_task(hash=EMPTY_HASH)) == f"42/message_D20170810_{EMPTY_HASH}.jsonl.gz"
    monthly = _task(Granularity.MONTH, utc(2017, 8, 1), hash="ab" * 16)
    assert archive_key(monthly) == f"42/message_M201708_{'ab' * 16}.jsonl.gz"


def test_content_md5_is_base64_of_digest() -> None:
    digest = hashlib.md5(b"").digest()
    assert content_md5(hashlib.md5(b"").hexdigest()) == base64.b64encode(digest).decode("ascii")


def test_in_memory_put_get(tmp_path) -> None:
    path = tmp_path / "a.jsonl.gz"
    path.write_bytes(b"payload")
    backend = InMemoryLongTermStorage()
    assert backend.put_file("42/a.jsonl.gz", str(path)) == "memory://42/a.jsonl.gz"
    assert backend.get_object("42/a.jsonl.gz") == b"payload"
    assert backend.keys() == ["42/a.jsonl.gz"]


def test_in_memory_get_missing() -> None:
    assert InMemoryLongTermStorage().get_object("missing") is None


def test_upload_archive_sets_url(scratch_dir) -> None:
    task = _built(scratch_dir)
    backend = InMemoryLongTermStorage()
    url = upload_archive(backend, task)
    assert url == f"memory://42/message_D20170810_{EMPTY_HASH}.jsonl.gz"
    assert task.url == url
    assert task.state is TaskState.UPLOADED
    with open(task.local_path, "rb") as f:
        assert backend.get_object(archive_key(task)) == f.read()


def test_upload_archive_unbuilt_task_is_invariant_error() -> None:
    with pytest.raises(InvariantError):
        upload_archive(InMemoryLongTermStorage(), _task())


def test_upload_archive_wraps_backend_failure(scratch_dir) -> None:
    task = _built(scratch_dir)
    backend = MagicMock()
    backend.put_file.side_effect = ConnectionError("timed out")
    with pytest.raises(UploadError) as exc_info:
        upload_archive(backend, task)
    assert isinstance(exc_info.value.__cause__, ConnectionError)
    assert exc_info.value.details["key"] == archive_key(task)
    assert task.url is None
    assert task.state is TaskState.BUILT
    assert os.path.exists(task.local_path)


def _make_oss_mock_bucket():
    """Build mock oss2 module and bucket for OssStorage tests (no real Aliyun credentials)."""
    mock_bucket = MagicMock()
    mock_oss2 = MagicMock()
    mock_oss2.Auth.return_value = None
    mock_oss2.Bucket.return_value = mock_bucket
    mock_oss2.exceptions.NoSuchKey = type("NoSuchKey", (Exception,), {})
    return mock_oss2, mock_bucket


def test_oss_storage_put_file(scratch_dir) -> None:
    """OssStorage.put_file uploads from the local path with archive headers and Content-MD5."""
    task = _built(scratch_dir)
    mock_oss2, mock_bucket = _make_oss_mock_bucket()
    with patch.dict("sys.modules", {"oss2": mock_oss2}):
        backend = OssStorage("archives", "ak", "sk", "https://oss-cn-hangzhou.aliyuncs.com")
        url = upload_archive(backend, task)
    assert url == f"oss://archives/{archive_key(task)}"
    mock_bucket.put_object_from_file.assert_called_once_with(
        archive_key(task),
        task.local_path,
        headers={
            "Content-Type": "application/json",
            "Content-Encoding": "gzip",
            "Content-MD5": content_md5(EMPTY_HASH),
        },
    )


def test_oss_storage_get_object_found() -> None:
    mock_oss2, mock_bucket = _make_oss_mock_bucket()
    mock_result = MagicMock()
    mock_result.read.return_value = b"gz"
    mock_bucket.get_object.return_value = mock_result
    with patch.dict("sys.modules", {"oss2": mock_oss2}):
        backend = OssStorage("b", "ak", "sk", "https://oss-cn-hangzhou.aliyuncs.com")
        out = backend.get_object("42/a.jsonl.gz")
    assert out == b"gz"
    mock_bucket.get_object.assert_called_once_with("42/a.jsonl.gz")


def test_oss_storage_get_object_not_found() -> None:
    """OssStorage.get_object returns None when key does not exist (NoSuchKey)."""
    mock_oss2, mock_bucket = _make_oss_mock_bucket()
    mock_bucket.get_object.side_effect = mock_oss2.exceptions.NoSuchKey()
    with patch.dict("sys.modules", {"oss2": mock_oss2}):
        backend = OssStorage("b", "ak", "sk", "https://oss-cn-hangzhou.aliyuncs.com")
        assert backend.get_object("missing") is None


def test_s3_storage_put_file(scratch_dir) -> None:
    task = _built(scratch_dir)
    mock_client = MagicMock()
    mock_boto3 = MagicMock()
    mock_boto3.client.return_value = mock_client
    mock_botocore_config = MagicMock()
    with patch.dict(
        "sys.modules",
        {"boto3": mock_boto3, "botocore": MagicMock(), "botocore.config": mock_botocore_config},
    ):
        backend = S3CompatibleStorage("archives", endpoint_url="http://localhost:9000", access_key="a", secret_key="s")
        url = backend.put_file(archive_key(task), task.local_path, md5_hex=task.hash)

    assert url == f"s3://archives/{archive_key(task)}"
    client_kwargs = mock_boto3.client.call_args[1]
    assert client_kwargs["endpoint_url"] == "http://localhost:9000"
    assert client_kwargs["aws_access_key_id"] == "a"
    put_kwargs = mock_client.put_object.call_args[1]
    assert put_kwargs["Bucket"] == "archives"
    assert put_kwargs["Key"] == archive_key(task)
    assert put_kwargs["ContentType"] == "application/json"
    assert put_kwargs["ContentEncoding"] == "gzip"
    assert put_kwargs["ACL"] == "private"
    assert put_kwargs["ContentMD5"] == content_md5(EMPTY_HASH)


def test_s3_client_created_once_across_threads() -> None:
    mock_boto3 = MagicMock()
    with patch.dict("sys.modules", {"boto3": mock_boto3, "botocore": MagicMock(), "botocore.config": MagicMock()}):
        backend = S3CompatibleStorage("archives")
        with ThreadPoolExecutor(max_workers=4) as pool:
            clients = list(pool.map(lambda _: backend._get_client(), range(16)))
    assert mock_boto3.client.call_count == 1
    assert all(c is clients[0] for c in clients)
    assert "aws_access_key_id" not in mock_boto3.client.call_args[1]


def test_bos_storage_put_file(scratch_dir) -> None:
    task = _built(scratch_dir)
    mock_client = MagicMock()
    mock_bos_client = MagicMock()
    mock_bos_client.BosClient.return_value = mock_client
    modules = {
        "baidubce": MagicMock(),
        "baidubce.bce_client_configuration": MagicMock(),
        "baidubce.auth": MagicMock(),
        "baidubce.auth.bce_credentials": MagicMock(),
        "baidubce.services": MagicMock(),
        "baidubce.services.bos": MagicMock(),
        "baidubce.services.bos.bos_client": mock_bos_client,
    }
    with patch.dict("sys.modules", modules):
        backend = BosStorage("archives", "ak", "sk", endpoint="https://bj.bcebos.com/")
        url = backend.put_file(archive_key(task), task.local_path, md5_hex=task.hash)

    assert url == f"bos://archives/{archive_key(task)}"
    mock_client.put_object_from_file.assert_called_once_with(
        bucket="archives",
        key=archive_key(task),
        file_name=task.local_path,
        content_type="application/json",
        content_md5=content_md5(EMPTY_HASH),
    )


def test_create_storage_backend_from_config() -> None:
    oss = create_storage_backend_from_config(
        {
            "oss_endpoint": "oss-cn-hangzhou.aliyuncs.com",
            "oss_bucket": "archives",
            "oss_access_key_id": "ak",
            "oss_access_key_secret": "sk",
        }
    )
    assert isinstance(oss, OssStorage)
    assert oss._endpoint == "https://oss-cn-hangzhou.aliyuncs.com"

    s3 = create_storage_backend_from_config({"s3_bucket": "archives", "s3_endpoint": "http://minio:9000/"})
    assert isinstance(s3, S3CompatibleStorage)
    assert s3._endpoint_url == "http://minio:9000"
    assert s3._region_name == "us-east-1"

    bos = create_storage_backend_from_config(
        {"bos_bucket": "archives", "bos_access_key": "ak", "bos_secret_key": "sk"}
    )
    assert isinstance(bos, BosStorage)

    # incomplete OSS settings fall through to the in-memory backend
    assert isinstance(create_storage_backend_from_config({"oss_bucket": "archives"}), InMemoryLongTermStorage)
    assert isinstance(create_storage_backend_from_config({}), InMemoryLongTermStorage)


def _get_real_oss_config():
    """Read OSS config from env; return (endpoint, access_key_id, access_key_secret, bucket) or None if missing."""
    endpoint = os.environ.get("ALIYUN_OSS_ENDPOINT") or os.environ.get("OSS_ENDPOINT")
    access_key_id = os.environ.get("ALIYUN_OSS_ACCESS_KEY_ID") or os.environ.get("OSS_ACCESS_KEY_ID")
    access_key_secret = os.environ.get("ALIYUN_OSS_ACCESS_KEY_SECRET") or os.environ.get("OSS_ACCESS_KEY_SECRET")
    bucket = os.environ.get("ALIYUN_OSS_BUCKET") or os.environ.get("OSS_BUCKET")
    if not all([endpoint, access_key_id, access_key_secret, bucket]):
        return None
    return (endpoint.strip("/"), access_key_id, access_key_secret, bucket)


@pytest.mark.real_oss
def test_oss_storage_real_api_upload_and_read_back(scratch_dir) -> None:
    """Real Aliyun OSS API: upload an archive, read it back, remove it (requires oss2 + env credentials)."""
    pytest.importorskip("oss2", reason="oss2 not installed; pip install oss2 or pip install -e '.[oss]'")

    cfg = _get_real_oss_config()
    if cfg is None:
        pytest.skip(
            "Real OSS credentials not set. Set ALIYUN_OSS_ACCESS_KEY_ID, ALIYUN_OSS_ACCESS_KEY_SECRET, "
            "ALIYUN_OSS_ENDPOINT (e.g. https://oss-cn-hangzhou.aliyuncs.com), ALIYUN_OSS_BUCKET"
        )

    endpoint, access_key_id, access_key_secret, bucket = cfg
    backend = OssStorage(
        bucket=bucket,
        access_key_id=access_key_id,
        access_key_secret=access_key_secret,
        endpoint=endpoint,
    )

    task = _built(scratch_dir)
    key = f"record_archiver_test/{uuid.uuid4().hex}/{archive_key(task)}"
    backend.put_file(key, task.local_path, md5_hex=task.hash)
    try:
        with open(task.local_path, "rb") as f:
            assert backend.get_object(key) == f.read()
    finally:
        backend._get_bucket().delete_object(key)
    assert backend.get_object(key) is None
