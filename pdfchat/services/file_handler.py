"""
File Handler Service
Stores uploaded PDFs in a private temp directory and detects file types.
"""
import os
import shutil
import tempfile
import uuid
import magic
from typing import Tuple, Optional
import structlog

from pdfchat.config import get_settings

logger = structlog.get_logger()


class UnsupportedFileTypeError(ValueError):
    """The upload is not a PDF."""


class FileHandler:
    """Handles upload storage and type detection."""

    # Supported file types and their MIME types
    SUPPORTED_TYPES = {
        "application/pdf": "pdf",
    }

    def __init__(self):
        self.settings = get_settings()
        self._temp_dir = tempfile.mkdtemp(prefix="pdfchat_")

    @property
    def max_upload_bytes(self) -> int:
        return self.settings.max_upload_mb * 1024 * 1024

    def save_upload(self, content: bytes, file_name: str) -> str:
        """
        Write uploaded bytes to the local temp directory.

        Args:
            content: Raw file content
            file_name: Original filename

        Returns:
            Local path to the stored file
        """
        if not os.path.isdir(self._temp_dir):
            self._temp_dir = tempfile.mkdtemp(prefix="pdfchat_")

        # Prefix keeps concurrent uploads of the same name apart
        safe_name = f"{uuid.uuid4().hex[:8]}_{self._sanitize_filename(file_name)}"
        local_path = os.path.join(self._temp_dir, safe_name)

        with open(local_path, "wb") as f:
            f.write(content)

        logger.info("Upload stored", path=local_path, size_bytes=len(content))
        return local_path

    def detect_file_type(self, file_path: str) -> Tuple[str, str]:
        """
        Detect file type using python-magic.

        Args:
            file_path: Path to the file

        Returns:
            Tuple of (mime_type, file_extension)

        Raises:
            UnsupportedFileTypeError: If file type is not supported
        """
        mime = magic.Magic(mime=True)
        mime_type = mime.from_file(file_path)

        logger.info("Detected file type", path=file_path, mime_type=mime_type)

        if mime_type not in self.SUPPORTED_TYPES:
            # Try to infer from extension
            ext = os.path.splitext(file_path)[1].lower().lstrip(".")
            for m, e in self.SUPPORTED_TYPES.items():
                if e == ext:
                    logger.warning(
                        "MIME detection failed, using extension",
                        mime_type=mime_type,
                        extension=ext
                    )
                    return m, ext

            raise UnsupportedFileTypeError(
                f"Unsupported file type: {mime_type}. "
                f"Supported types: {list(self.SUPPORTED_TYPES.values())}"
            )

        return mime_type, self.SUPPORTED_TYPES[mime_type]

    def _sanitize_filename(self, filename: str) -> str:
        """Create a safe filename."""
        # Remove any path components
        filename = os.path.basename(filename or "upload.pdf")
        # Replace problematic characters
        for char in ['/', '\\', '..', '\x00']:
            filename = filename.replace(char, '_')
        return filename or "upload.pdf"

    def cleanup(self, file_path: Optional[str] = None):
        """
        Clean up temporary files.

        Args:
            file_path: Specific file to clean up, or None to clean all
        """
        try:
            if file_path and os.path.exists(file_path):
                os.remove(file_path)
                logger.info("Cleaned up file", path=file_path)
            elif file_path is None:
                if os.path.exists(self._temp_dir):
                    shutil.rmtree(self._temp_dir)
                    logger.info("Cleaned up temp directory", path=self._temp_dir)
        except OSError as e:
            logger.error("Failed to cleanup", error=str(e))


# Singleton instance
_file_handler: Optional[FileHandler] = None


def get_file_handler() -> FileHandler:
    """Get singleton file handler instance."""
    global _file_handler
    if _file_handler is None:
        _file_handler = FileHandler()
    return _file_handler
