# utils_files.py
import datetime
import hashlib
import io
import logging
from pathlib import Path

from pypdf import PdfReader
from pypdf.errors import PyPdfError

from .config import STORAGE_DIR
from .errors import StatementFormatError

logger = logging.getLogger(__name__)


def sha256_bytes(data: bytes) -> str:
    h = hashlib.sha256()
    h.update(data)
    return h.hexdigest()


def persist_uploaded_file(filename: str | None, content: bytes) -> tuple[str, str]:
    """
    Save original bytes to disk with a SHA256 filename. Returns (path, sha256).
    Safe to call multiple times; it won't overwrite if the same hash exists.
    """
    digest = sha256_bytes(content)
    datedir = STORAGE_DIR / datetime.datetime.now(datetime.timezone.utc).strftime("%Y-%m-%d")
    datedir.mkdir(parents=True, exist_ok=True)
    ext = Path(filename).suffix.lower() if filename else ""
    path = datedir / f"{digest}{ext}"
    if not path.exists():
        path.write_bytes(content)
        logger.debug("Stored upload %s (%d bytes)", path, len(content))
    return str(path), digest


def extract_pdf_text(data: bytes) -> str:
    """Plain text of every page, pages separated by newlines."""
    try:
        reader = PdfReader(io.BytesIO(data))
        pages = [page.extract_text() or "" for page in reader.pages]
    except (PyPdfError, ValueError) as e:
        raise StatementFormatError(f"Cannot read PDF: {e}") from e
    text = "\n".join(pages)
    if not text.strip():
        raise StatementFormatError("PDF contains no extractable text (scanned statement?)")
    return text
