"""Document splitting into overlapping, structure-aware chunks."""

from typing import Optional

from langchain_text_splitters import RecursiveCharacterTextSplitter

from core.config import get_settings
from core.logger import LoggerMixin, get_logger
from models.schema import Chunk, Document

logger = get_logger(__name__)


class CorpusSplitter(LoggerMixin):
    """
    Splits documents into overlapping chunks.

    Separators are tried in order: section breaks (blank lines), line
    breaks, sentence ends, words, then raw characters, so chunk boundaries
    follow the document structure before falling back to character counts.
    """

    SEPARATORS: list[str] = ["\n\n", "\n", ". ", " ", ""]

    def __init__(
        self,
        chunk_size: Optional[int] = None,
        chunk_overlap: Optional[int] = None,
    ) -> None:
        """
        Initialize the splitter.

        Args:
            chunk_size: Target chunk size in characters (default: CHUNK_SIZE).
            chunk_overlap: Overlap in characters (default: CHUNK_OVERLAP).
        """
        settings = get_settings()
        self._chunk_size = settings.CHUNK_SIZE if chunk_size is None else chunk_size
        self._chunk_overlap = settings.CHUNK_OVERLAP if chunk_overlap is None else chunk_overlap

        if self._chunk_overlap >= self._chunk_size:
            raise ValueError(
                f"chunk_overlap ({self._chunk_overlap}) must be less than "
                f"chunk_size ({self._chunk_size})"
            )

        self._splitter = RecursiveCharacterTextSplitter(
            chunk_size=self._chunk_size,
            chunk_overlap=self._chunk_overlap,
            length_function=len,
            separators=self.SEPARATORS,
            is_separator_regex=False,
        )

        self.logger.debug(
            "CorpusSplitter initialized",
            chunk_size=self._chunk_size,
            chunk_overlap=self._chunk_overlap,
        )

    @property
    def chunk_size(self) -> int:
        return self._chunk_size

    @property
    def chunk_overlap(self) -> int:
        return self._chunk_overlap

    def split_document(self, document: Document) -> list[Chunk]:
        """
        Split one document into ordered chunks.

        Args:
            document: Source document.

        Returns:
            list[Chunk]: Chunks with ordinals 0..n-1 and start offsets.
        """
        if not document.text.strip():
            self.logger.warning("Empty document provided for splitting", document=document.name)
            return []

        chunks: list[Chunk] = []
        search_from = 0
        for ordinal, piece in enumerate(self._splitter.split_text(document.text)):
            start = document.text.find(piece, search_from)
            if start < 0:
                # Overlap can make the piece begin before search_from
                start = max(document.text.find(piece), 0)
            chunks.append(
                Chunk(
                    document_id=document.name,
                    ordinal=ordinal,
                    text=piece,
                    start_offset=start,
                )
            )
            search_from = start + 1

        self.logger.debug(
            "Document split",
            document=document.name,
            chunks=len(chunks),
        )
        return chunks

    def split_corpus(self, documents: list[Document]) -> list[Chunk]:
        """Split every document; the result is ordered by document, then ordinal."""
        chunks: list[Chunk] = []
        for document in documents:
            chunks.extend(self.split_document(document))

        self.logger.info(
            "Corpus splitting completed",
            documents=len(documents),
            total_chunks=len(chunks),
        )
        return chunks


def reconstruct_text(chunks: list[Chunk]) -> str:
    """
    Rebuild a document's text from its chunks.

    Chunks are laid over each other by start offset, so overlapping regions
    are written once. Whitespace the splitter trimmed at chunk edges comes
    back as spaces.
    """
    ordered = sorted(chunks, key=lambda c: c.ordinal)
    if not ordered:
        return ""
    length = max(c.start_offset + len(c.text) for c in ordered)
    buffer = [" "] * length
    for chunk in ordered:
        buffer[chunk.start_offset:chunk.start_offset + len(chunk.text)] = chunk.text
    return "".join(buffer)
