"""
Retrieval service: turns a query into the caller's top-k context chunks.
"""
import asyncio
import logging
from typing import List, Optional

from langchain_core.embeddings import Embeddings

from .document_store import DocumentRepository
from .vector_store import RetrievedChunk, VectorIndex

logger = logging.getLogger(__name__)


class RetrievalService:
    """Nearest-neighbour retrieval scoped to one owner's processed documents."""

    def __init__(
        self,
        documents: DocumentRepository,
        embeddings: Embeddings,
        vector_index: VectorIndex,
        embedding_model: str,
        default_k: int = 5,
    ):
        self.documents = documents
        self.embeddings = embeddings
        self.vector_index = vector_index
        self.embedding_model = embedding_model
        self.default_k = default_k

    async def query(self, owner_id: str, text: str, k: Optional[int] = None) -> List[RetrievedChunk]:
        """
        Fetch the owner's most similar chunks.

        Only chunks of documents that are currently ``processed`` are
        returned, so chunks orphaned by a crash or a delete stay invisible.
        No similarity cutoff is applied. An empty list means "no context".

        Args:
            owner_id: The caller; only their chunks are searched
            text: Query text
            k: Number of chunks, defaults to the configured top-k

        Returns:
            List[RetrievedChunk]: best match first
        """
        k = k or self.default_k
        document_ids = self.documents.processed_document_ids(owner_id)
        if not document_ids:
            logger.info(f"No processed documents for user {owner_id}; returning no context")
            return []

        models = {m for m in self.documents.embedding_models(document_ids) if m}
        if models - {self.embedding_model}:
            logger.warning(
                f"User {owner_id} has documents embedded with {sorted(models)}, "
                f"querying with {self.embedding_model}; relevance may degrade"
            )

        vector = await asyncio.to_thread(self.embeddings.embed_query, text)
        collection = self.vector_index.collection_for(owner_id)
        chunks = await asyncio.to_thread(
            self.vector_index.search, collection, vector, k, owner_id, document_ids
        )
        logger.info(f"Retrieved {len(chunks)} chunks for user {owner_id}")
        return chunks[:k]
