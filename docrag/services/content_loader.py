"""
Content loaders: turn stored file bytes into plain-text segments.

Each loader takes the raw bytes and returns LangChain ``Document`` segments
whose metadata locates the text in the source (page, row, item).
Formats are added by registering a loader for one or more extensions.
"""
import io
import json
import logging
import mimetypes
from typing import Callable, Dict, Iterable, List

import pandas as pd
from docx import Document as DocxDocument
from langchain_core.documents import Document
from pypdf import PdfReader

from ..core.errors import ContentExtractionError, UnsupportedFormat

logger = logging.getLogger(__name__)

Loader = Callable[[bytes], List[Document]]

# Types the platform mimetypes table may not know about
_MIME_OVERRIDES = {
    "md": "text/markdown",
    "markdown": "text/markdown",
    "docx": "application/vnd.openxmlformats-officedocument.wordprocessingml.document",
    "doc": "application/msword",
    "csv": "text/csv",
    "json": "application/json",
    "txt": "text/plain",
}


def guess_mime_type(extension: str) -> str:
    """MIME type for an extension (without the dot)."""
    extension = extension.lower().lstrip(".")
    if extension in _MIME_OVERRIDES:
        return _MIME_OVERRIDES[extension]
    mime_type, _ = mimetypes.guess_type(f"file.{extension}")
    return mime_type or "application/octet-stream"


def decode_text(content: bytes) -> str:
    try:
        return content.decode("utf-8-sig")
    except UnicodeDecodeError:
        return content.decode("latin-1")


def load_pdf(content: bytes) -> List[Document]:
    """One segment per page."""
    reader = PdfReader(io.BytesIO(content))
    segments = []
    for page_number, page in enumerate(reader.pages, start=1):
        text = page.extract_text() or ""
        if text.strip():
            segments.append(Document(page_content=text, metadata={"page": page_number}))
    return segments


def load_docx(content: bytes) -> List[Document]:
    doc = DocxDocument(io.BytesIO(content))
    text = "\n".join(paragraph.text for paragraph in doc.paragraphs)
    return [Document(page_content=text, metadata={})] if text.strip() else []


def load_text(content: bytes) -> List[Document]:
    text = decode_text(content)
    return [Document(page_content=text, metadata={})] if text else []


def load_csv(content: bytes) -> List[Document]:
    """One segment per row, rendered as ``column: value`` lines."""
    if not content.strip():
        return []
    df = pd.read_csv(io.BytesIO(content), dtype=str, keep_default_na=False)
    segments = []
    for row_number, row in enumerate(df.itertuples(index=False, name=None)):
        text = "\n".join(f"{column}: {value}" for column, value in zip(df.columns, row))
        segments.append(Document(page_content=text, metadata={"row": row_number}))
    return segments


def load_json(content: bytes) -> List[Document]:
    """One segment per item of a top-level array, else one for the whole value."""
    if not content.strip():
        return []
    data = json.loads(decode_text(content))

    def render(value) -> str:
        if isinstance(value, str):
            return value
        return json.dumps(value, indent=2, ensure_ascii=False)

    if isinstance(data, list):
        return [
            Document(page_content=render(item), metadata={"item": index})
            for index, item in enumerate(data)
        ]
    return [Document(page_content=render(data), metadata={})]


class ContentLoaderRegistry:
    """Maps file extensions to loader functions."""

    def __init__(self):
        self._loaders: Dict[str, Loader] = {}

    def register(self, extensions: Iterable[str], loader: Loader) -> None:
        for extension in extensions:
            self._loaders[extension.lower().lstrip(".")] = loader

    def supports(self, extension: str) -> bool:
        return extension.lower().lstrip(".") in self._loaders

    def supported_extensions(self) -> List[str]:
        return sorted(self._loaders)

    def get(self, extension: str) -> Loader:
        loader = self._loaders.get(extension.lower().lstrip("."))
        if loader is None:
            raise UnsupportedFormat(f"Unsupported file type: .{extension}" if extension else "Unsupported file type: no extension")
        return loader

    def load(self, extension: str, content: bytes) -> List[Document]:
        """
        Extract text segments from file content.

        Raises:
            UnsupportedFormat: no loader for the extension
            ContentExtractionError: the loader could not parse the bytes
        """
        loader = self.get(extension)
        try:
            segments = loader(content)
        except (UnsupportedFormat, OSError):
            raise
        except Exception as e:
            logger.error(f"Error extracting text from .{extension} content: {e}")
            raise ContentExtractionError(f"Could not extract text from .{extension} file: {e}") from e
        logger.info(f"Loaded {len(segments)} segments from .{extension} content")
        return segments


def default_loader_registry() -> ContentLoaderRegistry:
    registry = ContentLoaderRegistry()
    registry.register(["pdf"], load_pdf)
    registry.register(["docx", "doc"], load_docx)
    registry.register(["txt", "md", "markdown"], load_text)
    registry.register(["csv"], load_csv)
    registry.register(["json"], load_json)
    return registry
