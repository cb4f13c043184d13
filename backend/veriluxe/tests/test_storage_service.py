"""
Unit tests for storage service.

Tests S3/MinIO operations including:
- Bucket initialization
- Byte upload/download
- Prefix cleanup
- Object key and URL construction
"""
import uuid
from unittest.mock import Mock, patch

import pytest
from minio.error import S3Error

from veriluxe.services.storage_service import StorageService


class StubS3Error(S3Error):
    """S3Error carrying only an error code."""

    def __init__(self, code):
        Exception.__init__(self, code)
        self._stub_code = code

    @property
    def code(self):
        return self._stub_code

    def __str__(self):
        return f"S3 operation failed; code: {self._stub_code}"


def s3_error(code="TestError"):
    return StubS3Error(code)


@pytest.fixture
def mock_minio_client():
    """Mock MinIO client for testing."""
    with patch("veriluxe.services.storage_service.Minio") as mock:
        client = Mock()
        client.bucket_exists.return_value = True
        mock.return_value = client
        yield client


@pytest.fixture
def storage_service(mock_minio_client):
    """Create storage service instance with mocked MinIO client."""
    return StorageService()


@pytest.mark.unit
class TestBucketInitialization:
    """Test bucket creation and initialization."""

    def test_initialize_new_bucket(self, storage_service, mock_minio_client):
        """Test creating a new bucket when it doesn't exist."""
        mock_minio_client.bucket_exists.return_value = False

        storage_service.initialize_bucket()

        mock_minio_client.bucket_exists.assert_called_once_with("analysis-images")
        mock_minio_client.make_bucket.assert_called_once_with("analysis-images")
        assert storage_service.initialized is True

    def test_initialize_existing_bucket(self, storage_service, mock_minio_client):
        storage_service.initialize_bucket()

        mock_minio_client.make_bucket.assert_not_called()
        assert storage_service.initialized is True

    def test_initialize_bucket_error(self, storage_service, mock_minio_client):
        mock_minio_client.bucket_exists.side_effect = s3_error()

        with pytest.raises(RuntimeError, match="Storage initialization failed"):
            storage_service.initialize_bucket()

    def test_construction_does_not_touch_bucket(self, storage_service, mock_minio_client):
        mock_minio_client.bucket_exists.assert_not_called()
        assert storage_service.initialized is False


@pytest.mark.unit
class TestUploadDownload:
    """Test in-memory object transfer."""

    def test_upload_bytes(self, storage_service, mock_minio_client):
        put_result = Mock()
        put_result.object_name = "a/segment_0.png"
        put_result.etag = "etag123"
        mock_minio_client.put_object.return_value = put_result

        result = storage_service.upload_bytes("a/segment_0.png", b"png-data")

        args, kwargs = mock_minio_client.put_object.call_args
        assert args[0] == "analysis-images"
        assert args[1] == "a/segment_0.png"
        assert args[2].read() == b"png-data"
        assert kwargs["length"] == len(b"png-data")
        assert kwargs["content_type"] == "image/png"
        assert result == {
            "object_name": "a/segment_0.png",
            "etag": "etag123",
            "url": "http://localhost:9000/analysis-images/a/segment_0.png",
        }

    def test_upload_error(self, storage_service, mock_minio_client):
        mock_minio_client.put_object.side_effect = s3_error()

        with pytest.raises(RuntimeError, match="File upload failed"):
            storage_service.upload_bytes("a/b.png", b"x")

    def test_download_bytes_releases_connection(self, storage_service, mock_minio_client):
        response = Mock()
        response.read.return_value = b"image"
        mock_minio_client.get_object.return_value = response

        assert storage_service.download_bytes("u/1.png") == b"image"
        mock_minio_client.get_object.assert_called_once_with("analysis-images", "u/1.png")
        response.close.assert_called_once()
        response.release_conn.assert_called_once()

    def test_download_missing(self, storage_service, mock_minio_client):
        mock_minio_client.get_object.side_effect = s3_error("NoSuchKey")

        with pytest.raises(RuntimeError, match="File download failed"):
            storage_service.download_bytes("u/missing.png")


@pytest.mark.unit
class TestFileManagement:
    """Test delete and existence checks."""

    def test_delete_file(self, storage_service, mock_minio_client):
        storage_service.delete_file("u/1.png")

        mock_minio_client.remove_object.assert_called_once_with("analysis-images", "u/1.png")

    def test_delete_prefix(self, storage_service, mock_minio_client):
        objects = [Mock(object_name="a/1.png"), Mock(object_name="a/2.png")]
        mock_minio_client.list_objects.return_value = objects

        removed = storage_service.delete_prefix("a/")

        assert removed == 2
        mock_minio_client.list_objects.assert_called_once_with("analysis-images", prefix="a/", recursive=True)
        assert mock_minio_client.remove_object.call_count == 2

    def test_file_exists(self, storage_service, mock_minio_client):
        assert storage_service.file_exists("u/1.png") is True

    def test_file_not_exists(self, storage_service, mock_minio_client):
        mock_minio_client.stat_object.side_effect = s3_error("NoSuchKey")

        assert storage_service.file_exists("u/1.png") is False

    def test_file_exists_other_error(self, storage_service, mock_minio_client):
        mock_minio_client.stat_object.side_effect = s3_error("AccessDenied")

        with pytest.raises(RuntimeError, match="File existence check failed"):
            storage_service.file_exists("u/1.png")


@pytest.mark.unit
class TestHelpers:
    """Test key and URL construction."""

    def test_generate_object_path(self):
        user_id = uuid.uuid4()

        path = StorageService.generate_object_path(user_id, "../../Photo.JPG")

        owner, name = path.split("/")
        assert owner == str(user_id)
        stem, ext = name.split(".")
        assert stem.isdigit()
        assert ext == "jpg"

    def test_generate_object_path_without_extension(self):
        path = StorageService.generate_object_path(uuid.uuid4(), "upload")

        assert path.endswith(".png")

    def test_analysis_object_path(self):
        analysis_id = uuid.uuid4()

        assert StorageService.analysis_object_path(analysis_id, "segment_0_ab.png") == f"{analysis_id}/segment_0_ab.png"

    def test_public_url_override(self, storage_service):
        with patch("veriluxe.services.storage_service.settings") as settings:
            settings.MINIO_PUBLIC_URL = "https://cdn.example.com/"

            assert storage_service.public_url("a/b.png") == "https://cdn.example.com/analysis-images/a/b.png"
