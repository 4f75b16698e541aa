"""
LLM service for generating answers from retrieved document context.
"""
import logging
from abc import ABC, abstractmethod
from typing import Dict, List, Optional

from langchain_core.messages import AIMessage, HumanMessage, SystemMessage
from langchain_openai import ChatOpenAI

from ..core.config import Settings
from .vector_store import RetrievedChunk

logger = logging.getLogger(__name__)

SYSTEM_PROMPT = """You are a helpful assistant that answers questions using excerpts from the user's own documents.

Instructions:
1. Answer from the provided context; quote or paraphrase it accurately
2. Mention the file name when you rely on a specific excerpt
3. If the context does not contain the answer, say so plainly instead of guessing
4. Be concise but thorough"""

NO_CONTEXT_NOTE = (
    "No document context was found for this question. Tell the user that none of "
    "their processed documents matched, and do not invent document content."
)


def format_context(chunks: List[RetrievedChunk]) -> str:
    """Render chunks in retrieval order for the prompt."""
    parts = []
    for number, chunk in enumerate(chunks, start=1):
        source = chunk.metadata.get("source_file_name", "unknown")
        parts.append(f"[{number}] ({source})\n{chunk.text}")
    return "\n\n".join(parts)


class Generator(ABC):
    """Completes a prompt given the user's query and grounding context."""

    @abstractmethod
    async def complete(
        self,
        query: str,
        context: List[RetrievedChunk],
        history: Optional[List[Dict[str, str]]] = None,
    ) -> str:
        ...

    def health_check(self) -> bool:
        return True


class LLMService(Generator):
    """Generator backed by an OpenAI chat model."""

    def __init__(self, settings: Settings, chat_model: Optional[ChatOpenAI] = None):
        self.model_name = settings.llm_model
        self.chat_model = chat_model or ChatOpenAI(
            api_key=settings.openai_api_key,
            model=settings.llm_model,
            temperature=settings.llm_temperature,
            max_completion_tokens=settings.llm_max_tokens,
        )
        logger.info(f"LLM service initialized with {settings.llm_model}")

    def build_messages(
        self,
        query: str,
        context: List[RetrievedChunk],
        history: Optional[List[Dict[str, str]]] = None,
    ) -> List:
        """Build message list for chat completion."""
        system_content = SYSTEM_PROMPT
        if context:
            system_content += f"\n\n[CONTEXT]\n{format_context(context)}\n[/CONTEXT]"
        else:
            system_content += f"\n\n{NO_CONTEXT_NOTE}"
        messages = [SystemMessage(content=system_content)]

        for msg in (history or [])[-10:]:
            if msg["role"] == "user":
                messages.append(HumanMessage(content=msg["content"]))
            elif msg["role"] == "assistant":
                messages.append(AIMessage(content=msg["content"]))

        messages.append(HumanMessage(content=query))
        return messages

    async def complete(self, query, context, history=None) -> str:
        messages = self.build_messages(query, context, history)
        response = await self.chat_model.ainvoke(messages)
        logger.info(f"Generated answer with {self.model_name} from {len(context)} context chunks")
        return response.content

    def health_check(self) -> bool:
        return bool(self.chat_model.openai_api_key)
