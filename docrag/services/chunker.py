"""
Fixed-window text chunking with overlap.
"""
import logging
import math
from typing import List

from langchain_core.documents import Document
from langchain_text_splitters import CharacterTextSplitter

logger = logging.getLogger(__name__)


def expected_chunk_count(length: int, chunk_size: int, chunk_overlap: int) -> int:
    """Number of windows produced for a text of ``length`` characters."""
    if length <= 0:
        return 0
    if length <= chunk_size:
        return 1
    return math.ceil((length - chunk_overlap) / (chunk_size - chunk_overlap))


class TextChunker:
    """Splits loaded segments into overlapping windows of at most ``chunk_size`` characters.

    Consecutive windows share ``chunk_overlap`` characters, so each window
    starts ``chunk_size - chunk_overlap`` characters after the previous one.
    Whitespace is kept as-is so chunk boundaries stay at exact offsets.
    """

    def __init__(self, chunk_size: int = 1000, chunk_overlap: int = 200):
        if not 0 <= chunk_overlap < chunk_size:
            raise ValueError("chunk_overlap must be >= 0 and smaller than chunk_size")
        self.chunk_size = chunk_size
        self.chunk_overlap = chunk_overlap
        self.text_splitter = CharacterTextSplitter(
            separator="",
            chunk_size=chunk_size,
            chunk_overlap=chunk_overlap,
            length_function=len,
            strip_whitespace=False,
            add_start_index=True,
        )

    def split_text(self, text: str) -> List[str]:
        return self.text_splitter.split_text(text)

    def split(self, segments: List[Document]) -> List[Document]:
        """
        Split segments into chunks, keeping each segment's metadata.

        Returns:
            List[Document]: chunks with ``start_index`` added to their metadata
        """
        chunks = self.text_splitter.split_documents(segments)
        logger.info(f"Text split into {len(chunks)} chunks from {len(segments)} segments")
        return chunks
