"""
Orienteer Backend — File Service Unit Tests
=============================================

What:  Tests for map upload validation (extension, size, content type)
       and for storing and cleaning up map files.
How:   Real files go to a per-test temporary directory; libmagic is
       patched where a test needs a specific detection result.

Test Strategy:
    ✅ Allowed extensions (.jpg, .jpeg, .png), case-insensitive
    ✅ Rejected extensions (.gif, .pdf, .exe, none)
    ✅ Size limits (header and actual size, empty files)
    ✅ Content sniffing (renamed files, libmagic failure)
    ✅ Date-organised storage paths and cleanup
"""

from pathlib import Path
from unittest.mock import patch

import pytest

from app.config import settings
from app.exceptions import FileStorageError, ValidationError
from app.services.file_service import FileService

JPEG_BYTES = b"\xff\xd8\xff\xe0\x00\x10JFIF\x00\x01\x01\x00\x00\x01\x00\x01\x00\x00\xff\xd9"


class TestFileValidation:
    """Tests for validation logic in FileService."""

    def setup_method(self):
        self.service = FileService()

    # ── Extension Validation ──────────────────────────────────────────────

    @pytest.mark.parametrize("filename, expected", [
        ("map.jpg", ".jpg"),
        ("map.jpeg", ".jpeg"),
        ("map.png", ".png"),
        ("Spring Middle.JPG", ".jpg"),
        ("scan.Png", ".png"),
    ])
    def test_allowed_extensions(self, filename, expected):
        """Extensions are accepted case-insensitively and normalised."""
        assert self.service.validate_extension(filename) == expected

    @pytest.mark.parametrize("filename", ["route.gif", "course.pdf", "malware.exe", "noextension", ""])
    def test_rejected_extensions(self, filename):
        with pytest.raises(ValidationError, match="not supported") as exc_info:
            self.service.validate_extension(filename)
        assert exc_info.value.field == "file"

    # ── Size Validation ───────────────────────────────────────────────────

    def test_size_within_limit(self):
        self.service.validate_size(1000, 1000)

    def test_size_at_limit(self):
        """Exactly max_file_size bytes is still accepted."""
        self.service.validate_size(settings.max_file_size, settings.max_file_size)

    def test_header_over_limit_rejected(self):
        """An oversized Content-Length is refused before the body is trusted."""
        with pytest.raises(ValidationError, match="exceeds maximum"):
            self.service.validate_size(settings.max_file_size + 1, 10)

    def test_actual_size_over_limit_rejected(self):
        with pytest.raises(ValidationError, match="exceeds maximum"):
            self.service.validate_size(None, settings.max_file_size + 1)

    def test_empty_file_rejected(self):
        with pytest.raises(ValidationError, match="empty"):
            self.service.validate_size(None, 0)

    # ── Content Type ──────────────────────────────────────────────────────

    def test_jpeg_content_accepted(self):
        with patch("app.services.file_service.magic.from_buffer", return_value="image/jpeg"):
            assert self.service.validate_mime_type(JPEG_BYTES) == "image/jpeg"

    def test_renamed_file_rejected(self):
        """A PDF saved as map.jpg is caught by its content."""
        with patch("app.services.file_service.magic.from_buffer", return_value="application/pdf"):
            with pytest.raises(ValidationError, match="application/pdf"):
                self.service.validate_mime_type(b"%PDF-1.7")

    def test_libmagic_failure_is_storage_error(self):
        with patch("app.services.file_service.magic.from_buffer", side_effect=RuntimeError("no magic db")):
            with pytest.raises(FileStorageError):
                self.service.validate_mime_type(JPEG_BYTES)


class TestFileStorage:

    @pytest.mark.asyncio
    async def test_store_file_uses_date_directories(self, temp_storage):
        service = FileService(storage_root=temp_storage)
        absolute_path, relative_path = await service.store_file(JPEG_BYTES, ".jpg")

        parts = relative_path.split("/")
        assert parts[0] == "maps"
        assert len(parts) == 5  # maps/YYYY/MM/DD/<uuid>.jpg
        assert relative_path.endswith(".jpg")
        assert Path(absolute_path).read_bytes() == JPEG_BYTES
        assert Path(absolute_path).is_relative_to(Path(temp_storage).resolve())

    @pytest.mark.asyncio
    async def test_each_upload_gets_a_new_name(self, temp_storage):
        service = FileService(storage_root=temp_storage)
        _, first = await service.store_file(JPEG_BYTES, ".jpg")
        _, second = await service.store_file(JPEG_BYTES, ".jpg")
        assert first != second

    @pytest.mark.asyncio
    async def test_write_failure_is_storage_error(self, temp_storage):
        service = FileService(storage_root=temp_storage)
        with patch("app.services.file_service.aiofiles.open", side_effect=OSError("disk full")):
            with pytest.raises(FileStorageError, match="Failed to save"):
                await service.store_file(JPEG_BYTES, ".jpg")

    @pytest.mark.asyncio
    async def test_validate_and_store(self, temp_storage):
        service = FileService(storage_root=temp_storage)
        with patch("app.services.file_service.magic.from_buffer", return_value="image/jpeg"):
            absolute_path, relative_path = await service.validate_and_store(
                filename="Spring Middle.JPEG",
                content=JPEG_BYTES,
                content_length=len(JPEG_BYTES),
            )
        assert relative_path.endswith(".jpeg")
        assert Path(absolute_path).exists()

    @pytest.mark.asyncio
    async def test_validate_and_store_rejects_before_writing(self, temp_storage):
        service = FileService(storage_root=temp_storage)
        with pytest.raises(ValidationError):
            await service.validate_and_store(filename="map.gif", content=JPEG_BYTES)
        assert not (Path(temp_storage) / "maps").exists()

    # ── Cleanup ───────────────────────────────────────────────────────────

    @pytest.mark.asyncio
    async def test_cleanup_file_removes_file(self, tmp_path):
        test_file = tmp_path / "map.jpg"
        test_file.write_bytes(JPEG_BYTES)

        await FileService(storage_root=str(tmp_path)).cleanup_file(str(test_file))
        assert not test_file.exists()

    @pytest.mark.asyncio
    async def test_cleanup_file_nonexistent(self, tmp_path):
        """cleanup_file should not raise for files that are already gone."""
        await FileService(storage_root=str(tmp_path)).cleanup_file(str(tmp_path / "gone.jpg"))
