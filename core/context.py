"""Context assembly: retrieved chunks to a bounded, source-attributed prompt section."""

from typing import Iterable, Optional

from core.config import get_settings
from core.logger import LoggerMixin, get_logger
from models.schema import Chunk

logger = get_logger(__name__)

NO_RELEVANT_DATA = "NO_RELEVANT_DATA"
BLOCK_SEPARATOR = "\n\n---\n\n"
TRUNCATION_MARKER = "\n[context truncated]"


class ContextAssembler(LoggerMixin):
    """Joins chunks into ``SOURCE: <document>`` blocks under a hard character budget."""

    def __init__(self, max_chars: Optional[int] = None) -> None:
        self._max_chars = get_settings().MAX_CONTEXT_CHARS if max_chars is None else max_chars

    @property
    def max_chars(self) -> int:
        return self._max_chars

    @staticmethod
    def format_block(chunk: Chunk) -> str:
        return f"SOURCE: {chunk.document_id}\n{chunk.text}"

    def build(self, chunks: Iterable[Chunk]) -> str:
        """
        Assemble the context for a prompt.

        Args:
            chunks: Ordered retrieval result.

        Returns:
            str: ``NO_RELEVANT_DATA`` for no chunks; otherwise the joined
            blocks, cut to ``max_chars`` and ending with the truncation
            marker when anything was cut.
        """
        blocks = [self.format_block(chunk) for chunk in chunks]
        if not blocks:
            return NO_RELEVANT_DATA

        context = BLOCK_SEPARATOR.join(blocks)
        if len(context) <= self._max_chars:
            return context

        truncated = context[:self._max_chars] + TRUNCATION_MARKER
        self.logger.info(
            "Context truncated",
            blocks=len(blocks),
            original_chars=len(context),
            max_chars=self._max_chars,
        )
        return truncated
