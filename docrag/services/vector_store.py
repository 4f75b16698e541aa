"""
Vector index service for storing chunk embeddings and similarity search.
"""
import logging
import re
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence

import chromadb
from langchain_core.embeddings import DeterministicFakeEmbedding, Embeddings
from langchain_openai import OpenAIEmbeddings

from ..core.config import Settings

logger = logging.getLogger(__name__)

Metadata = Dict[str, Any]


@dataclass
class RetrievedChunk:
    """A chunk returned by a nearest-neighbour query."""
    text: str
    metadata: Metadata = field(default_factory=dict)
    score: Optional[float] = None


def chunk_id(document_id: str, chunk_index: int) -> str:
    """Deterministic index id, so re-running a document overwrites its chunks."""
    return f"{document_id}:{chunk_index}"


def build_embeddings(settings: Settings) -> Embeddings:
    """Embedding function configured for this process."""
    if settings.embedding_provider == "fake":
        return DeterministicFakeEmbedding(size=settings.embedding_dimension)
    return OpenAIEmbeddings(
        api_key=settings.openai_api_key,
        model=settings.embedding_model,
    )


class VectorIndex(ABC):
    """Stores (vector, text, metadata) tuples partitioned into collections."""

    @abstractmethod
    def collection_for(self, owner_id: str) -> str:
        """Collection that holds the owner's chunks."""

    @abstractmethod
    def upsert_chunks(
        self,
        collection: str,
        ids: Sequence[str],
        vectors: Sequence[Sequence[float]],
        texts: Sequence[str],
        metadatas: Sequence[Metadata],
    ) -> None:
        ...

    @abstractmethod
    def get_document_chunks(self, collection: str, document_id: str) -> List[Dict[str, Any]]:
        """All stored chunks of a document as dicts with id, vector, text and metadata."""

    @abstractmethod
    def delete_document_chunks(self, collection: str, document_id: str) -> None:
        ...

    @abstractmethod
    def search(
        self,
        collection: str,
        vector: Sequence[float],
        k: int,
        owner_id: str,
        document_ids: Sequence[str],
    ) -> List[RetrievedChunk]:
        """Top-k chunks by similarity, restricted to the owner and the given documents."""

    def health_check(self) -> bool:
        return True


class ChromaVectorIndex(VectorIndex):
    """Vector index backed by a persistent Chroma client."""

    _INVALID_NAME_CHARS = re.compile(r"[^a-zA-Z0-9_-]")

    def __init__(
        self,
        persist_directory: str,
        collection_strategy: str = "per_owner",
        shared_collection_name: str = "user-docs",
        client: Optional[Any] = None,
    ):
        self.client = client or chromadb.PersistentClient(path=persist_directory)
        self.collection_strategy = collection_strategy
        self.shared_collection_name = shared_collection_name
        self._collections: Dict[str, Any] = {}
        logger.info(f"Vector index initialized with Chroma ({collection_strategy} collections)")

    def collection_for(self, owner_id: str) -> str:
        if self.collection_strategy == "shared":
            return self.shared_collection_name
        safe_owner = self._INVALID_NAME_CHARS.sub("-", owner_id).strip("-_")[:400] or "anonymous"
        return f"user-{safe_owner}-docs"

    def _collection(self, name: str):
        if name not in self._collections:
            self._collections[name] = self.client.get_or_create_collection(
                name=name,
                metadata={"hnsw:space": "cosine"},
            )
        return self._collections[name]

    def upsert_chunks(self, collection, ids, vectors, texts, metadatas) -> None:
        if not ids:
            return
        self._collection(collection).upsert(
            ids=list(ids),
            embeddings=[list(v) for v in vectors],
            documents=list(texts),
            metadatas=list(metadatas),
        )
        logger.info(f"Upserted {len(ids)} chunks into collection {collection}")

    def get_document_chunks(self, collection: str, document_id: str) -> List[Dict[str, Any]]:
        result = self._collection(collection).get(
            where={"document_id": document_id},
            include=["embeddings", "documents", "metadatas"],
        )
        embeddings = result.get("embeddings")
        if embeddings is None:
            embeddings = []
        return [
            {
                "id": result["ids"][i],
                "vector": list(embeddings[i]),
                "text": result["documents"][i],
                "metadata": dict(result["metadatas"][i] or {}),
            }
            for i in range(len(result["ids"]))
        ]

    def delete_document_chunks(self, collection: str, document_id: str) -> None:
        self._collection(collection).delete(where={"document_id": document_id})
        logger.info(f"Deleted chunks of document {document_id} from collection {collection}")

    def search(self, collection, vector, k, owner_id, document_ids) -> List[RetrievedChunk]:
        if not document_ids:
            return []
        where = {
            "$and": [
                {"owner_id": owner_id},
                {"document_id": {"$in": list(document_ids)}},
            ]
        }
        store = self._collection(collection)
        if store.count() == 0:
            return []
        result = store.query(
            query_embeddings=[list(vector)],
            n_results=k,
            where=where,
            include=["documents", "metadatas", "distances"],
        )
        chunks = []
        for text, metadata, distance in zip(
            result["documents"][0], result["metadatas"][0], result["distances"][0]
        ):
            # cosine distance -> similarity
            chunks.append(RetrievedChunk(text=text, metadata=dict(metadata or {}), score=1.0 - float(distance)))
        logger.info(f"Similarity search in {collection} returned {len(chunks)} chunks")
        return chunks

    def health_check(self) -> bool:
        try:
            self.client.heartbeat()
            return True
        except Exception as e:
            logger.error(f"Vector index health check failed: {str(e)}")
            return False
