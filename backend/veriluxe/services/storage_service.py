"""
Object storage service for analysis images.

Provides a unified interface for S3-compatible storage (MinIO/AWS S3):
- Bucket initialization
- Byte upload/download for source images and per-region crops
- Public URL construction
"""
import io
import logging
import os
from datetime import datetime
from typing import Dict, Optional
from uuid import UUID

from minio import Minio
from minio.error import S3Error

from veriluxe.core.config import settings

logger = logging.getLogger(__name__)


class StorageService:
    """S3-compatible object storage service using MinIO."""

    def __init__(self):
        """Initialize MinIO client."""
        self.client = Minio(
            settings.MINIO_ENDPOINT,
            access_key=settings.MINIO_ACCESS_KEY,
            secret_key=settings.MINIO_SECRET_KEY,
            secure=settings.MINIO_SECURE,
        )
        self.bucket_name = settings.MINIO_BUCKET
        self.initialized = False

    def initialize_bucket(self) -> None:
        """Create the images bucket if it doesn't exist."""
        try:
            if not self.client.bucket_exists(self.bucket_name):
                logger.info(f"Creating bucket: {self.bucket_name}")
                self.client.make_bucket(self.bucket_name)
                logger.info(f"✅ Bucket created: {self.bucket_name}")
            else:
                logger.info(f"✅ Bucket already exists: {self.bucket_name}")

            self.initialized = True

        except S3Error as e:
            logger.error(f"❌ Failed to initialize bucket: {e}")
            raise RuntimeError(f"Storage initialization failed: {e}")

    def ensure_initialized(self) -> None:
        """Ensure bucket is initialized before operations."""
        if not self.initialized:
            self.initialize_bucket()

    # ========================================================================
    # Upload / Download
    # ========================================================================

    def upload_bytes(
        self,
        object_name: str,
        data: bytes,
        content_type: str = "image/png",
        metadata: Optional[Dict[str, str]] = None,
    ) -> Dict[str, str]:
        """
        Upload an in-memory payload.

        Args:
            object_name: S3 object key
            data: File contents
            content_type: MIME type
            metadata: Optional custom metadata

        Returns:
            Dict with "object_name", "etag", "url"

        Example:
            result = storage.upload_bytes(
                f"{analysis_id}/segment_0_1.png",
                png_bytes,
            )
        """
        self.ensure_initialized()

        try:
            result = self.client.put_object(
                self.bucket_name,
                object_name,
                io.BytesIO(data),
                length=len(data),
                content_type=content_type,
                metadata=metadata,
            )

            logger.info(f"✅ Uploaded object: {object_name} ({len(data)} bytes)")

            return {
                "object_name": result.object_name,
                "etag": result.etag,
                "url": self.public_url(object_name),
            }

        except S3Error as e:
            logger.error(f"Failed to upload object: {e}")
            raise RuntimeError(f"File upload failed: {e}")

    def download_bytes(self, object_name: str) -> bytes:
        """
        Read an object fully into memory.

        Args:
            object_name: S3 object key

        Returns:
            Object contents
        """
        self.ensure_initialized()

        response = None
        try:
            response = self.client.get_object(self.bucket_name, object_name)
            data = response.read()
            logger.debug(f"Downloaded object: {object_name} ({len(data)} bytes)")
            return data

        except S3Error as e:
            logger.error(f"Failed to download object: {e}")
            raise RuntimeError(f"File download failed: {e}")

        finally:
            if response is not None:
                response.close()
                response.release_conn()

    # ========================================================================
    # File Management Operations
    # ========================================================================

    def delete_file(self, object_name: str) -> None:
        """
        Delete a file from storage.

        Args:
            object_name: S3 object key
        """
        self.ensure_initialized()

        try:
            self.client.remove_object(self.bucket_name, object_name)
            logger.info(f"✅ Deleted file: {object_name}")

        except S3Error as e:
            logger.error(f"Failed to delete file: {e}")
            raise RuntimeError(f"File deletion failed: {e}")

    def delete_prefix(self, prefix: str) -> int:
        """
        Delete every object under a prefix (e.g. all crops of one analysis).

        Returns:
            Number of objects removed
        """
        self.ensure_initialized()

        try:
            removed = 0
            for obj in self.client.list_objects(self.bucket_name, prefix=prefix, recursive=True):
                self.client.remove_object(self.bucket_name, obj.object_name)
                removed += 1
            logger.info(f"✅ Deleted {removed} objects under {prefix}")
            return removed

        except S3Error as e:
            logger.error(f"Failed to delete prefix {prefix}: {e}")
            raise RuntimeError(f"Prefix deletion failed: {e}")

    def file_exists(self, object_name: str) -> bool:
        """
        Check if a file exists in storage.

        Args:
            object_name: S3 object key

        Returns:
            exists: True if file exists
        """
        self.ensure_initialized()

        try:
            self.client.stat_object(self.bucket_name, object_name)
            return True

        except S3Error as e:
            if e.code == "NoSuchKey":
                return False
            logger.error(f"Failed to check file existence: {e}")
            raise RuntimeError(f"File existence check failed: {e}")

    # ========================================================================
    # Helper Methods
    # ========================================================================

    def public_url(self, object_name: str) -> str:
        """
        Public URL of an object.

        Uses MINIO_PUBLIC_URL when set (CDN or reverse proxy), otherwise the
        MinIO endpoint itself.
        """
        if settings.MINIO_PUBLIC_URL:
            base = settings.MINIO_PUBLIC_URL.rstrip("/")
        else:
            scheme = "https" if settings.MINIO_SECURE else "http"
            base = f"{scheme}://{settings.MINIO_ENDPOINT}"
        return f"{base}/{self.bucket_name}/{object_name}"

    @staticmethod
    def generate_object_path(user_id: UUID, filename: str) -> str:
        """
        Generate the object key for an uploaded source image.

        Args:
            user_id: Owning user UUID
            filename: Original filename (only its extension is kept)

        Returns:
            object_path: key like "{user_id}/{timestamp_ms}.jpg"
        """
        clean_filename = os.path.basename(filename)
        ext = os.path.splitext(clean_filename)[1].lstrip(".").lower() or "png"
        timestamp = int(datetime.utcnow().timestamp() * 1000)
        return f"{user_id}/{timestamp}.{ext}"

    @staticmethod
    def analysis_object_path(analysis_id: UUID, name: str) -> str:
        """Key for a per-region crop: "{analysis_id}/{name}"."""
        return f"{analysis_id}/{os.path.basename(name)}"


# ========================================================================
# Singleton Instance
# ========================================================================

# Global storage service instance
_storage_service: Optional[StorageService] = None


def get_storage_service() -> StorageService:
    """
    Get singleton storage service instance.

    The bucket is checked lazily on first use, so constructing the service
    never touches the network.
    """
    global _storage_service

    if _storage_service is None:
        _storage_service = StorageService()

    return _storage_service
