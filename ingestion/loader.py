"""Corpus loading: reads regulatory text files into Document objects."""

import hashlib
from pathlib import Path
from typing import Optional

from core.config import get_settings
from core.exceptions import IngestError
from core.logger import LoggerMixin, get_logger
from models.schema import Document

logger = get_logger(__name__)


class CorpusLoader(LoggerMixin):
    """
    Reads the source corpus from a directory of UTF-8 text files.

    Each file becomes one Document named after its file stem. Retrieval must
    never run over an empty corpus, so a missing directory, a directory with
    no matching files, or a corpus of blank files raises IngestError.
    """

    def __init__(
        self,
        corpus_dir: Optional[Path] = None,
        pattern: Optional[str] = None,
    ) -> None:
        settings = get_settings()
        self._corpus_dir = Path(corpus_dir or settings.CORPUS_DIR)
        self._pattern = pattern or settings.CORPUS_GLOB

    @property
    def corpus_dir(self) -> Path:
        return self._corpus_dir

    def _read_file(self, path: Path) -> str:
        try:
            # utf-8-sig tolerates a BOM left by Windows editors
            return path.read_text(encoding="utf-8-sig")
        except UnicodeDecodeError as e:
            self.logger.error(
                "Corpus file is not valid UTF-8",
                file=str(path),
                error=str(e),
            )
            raise IngestError(
                message=f"Corpus file is not valid UTF-8: {path.name}",
                details={"file": str(path), "error": str(e)},
            ) from e
        except OSError as e:
            self.logger.error(
                "Failed to read corpus file",
                file=str(path),
                error=str(e),
                error_type=type(e).__name__,
            )
            raise IngestError(
                message=f"Failed to read corpus file: {path.name}",
                details={"file": str(path), "error": str(e)},
            ) from e

    def load(self) -> list[Document]:
        """
        Load every corpus file as a Document, sorted by name.

        Returns:
            list[Document]: Non-empty list of documents.

        Raises:
            IngestError: If the corpus is missing, empty or unreadable.
        """
        if not self._corpus_dir.is_dir():
            raise IngestError(
                message=f"Corpus directory does not exist: {self._corpus_dir}",
                details={"corpus_dir": str(self._corpus_dir)},
            )

        paths = sorted(p for p in self._corpus_dir.glob(self._pattern) if p.is_file())
        if not paths:
            raise IngestError(
                message="No corpus files found",
                details={"corpus_dir": str(self._corpus_dir), "pattern": self._pattern},
            )

        documents: list[Document] = []
        for path in paths:
            text = self._read_file(path)
            if not text.strip():
                self.logger.warning("Skipping blank corpus file", file=path.name)
                continue
            documents.append(Document(name=path.stem, text=text, source_path=path))

        if not documents:
            raise IngestError(
                message="Every corpus file is blank",
                details={"corpus_dir": str(self._corpus_dir), "files": len(paths)},
            )

        names = [doc.name for doc in documents]
        if len(set(names)) != len(names):
            raise IngestError(
                message="Duplicate document names in corpus",
                details={"documents": names},
            )

        self.logger.info(
            "Corpus loaded",
            corpus_dir=str(self._corpus_dir),
            documents=len(documents),
            total_chars=sum(len(doc.text) for doc in documents),
        )
        return documents


def corpus_fingerprint(documents: list[Document]) -> str:
    """
    SHA-256 over document names and texts.

    Stored in the index manifest so a persisted index built from a different
    corpus is detected on load.
    """
    digest = hashlib.sha256()
    for document in sorted(documents, key=lambda d: d.name):
        digest.update(document.name.encode("utf-8"))
        digest.update(b"\x00")
        digest.update(document.text.encode("utf-8"))
        digest.update(b"\x00")
    return digest.hexdigest()
