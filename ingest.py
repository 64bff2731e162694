"""Index maintenance script for the Housing Standards Advisor.

Rebuilds the vector index from the text corpus:
1. Read every corpus file from CORPUS_DIR
2. Split documents into overlapping chunks
3. Embed chunks (multilingual sentence-transformer)
4. Write a new index generation and publish it atomically

With --check only steps 1-2 run, to validate the corpus.
"""

import argparse
import asyncio
import sys
from pathlib import Path

# Add project root to Python path
sys.path.insert(0, str(Path(__file__).parent))

from core.config import get_settings
from core.embedding import EmbeddingService
from core.exceptions import AdvisorException
from core.index_service import IndexService
from core.logger import get_logger
from ingestion.loader import CorpusLoader, corpus_fingerprint
from ingestion.splitter import CorpusSplitter

logger = get_logger(__name__)


def check_corpus(corpus_dir: Path) -> None:
    """Load and split the corpus without embedding anything."""
    documents = CorpusLoader(corpus_dir=corpus_dir).load()
    chunks = CorpusSplitter().split_corpus(documents)

    per_document: dict[str, int] = {}
    for chunk in chunks:
        per_document[chunk.document_id] = per_document.get(chunk.document_id, 0) + 1

    print("\n" + "=" * 60)
    print("📚 CORPUS CHECK")
    print("=" * 60)
    print(f"\n📁 Directory: {corpus_dir}")
    print(f"📄 Documents: {len(documents)}")
    print(f"🧩 Chunks: {len(chunks)}")
    print(f"🔑 Fingerprint: {corpus_fingerprint(documents)[:16]}")
    print("-" * 60)
    for name, count in per_document.items():
        print(f"  {name}: {count} chunks")
    print("=" * 60 + "\n")


async def rebuild(corpus_dir: Path, index_dir: Path) -> None:
    """Force a full rebuild and publish of the index."""
    settings = get_settings()
    service = IndexService(
        embedder=EmbeddingService(),
        loader=CorpusLoader(corpus_dir=corpus_dir),
        index_dir=index_dir,
        embedding_model=settings.EMBEDDING_MODEL_NAME,
        dimension=settings.EMBEDDING_DIMENSION,
    )

    logger.info(
        "🚀 Starting index rebuild",
        corpus_dir=str(corpus_dir),
        index_dir=str(index_dir),
        environment=settings.ENVIRONMENT,
    )
    snapshot = await service.rebuild()
    info = snapshot.index.get_info()

    print("\n" + "=" * 60)
    print("✅ INDEX REBUILD COMPLETE!")
    print("=" * 60)
    print(f"\n📄 Documents: {len(snapshot.documents)}")
    print(f"🧩 Chunks: {len(snapshot.chunks)}")
    print(f"📦 Generation: {info['location']}")
    print(f"🔢 Dimension: {info['dimension']} ({info['embedding_model']})")
    print("=" * 60 + "\n")
    service.close()


def main() -> None:
    settings = get_settings()

    parser = argparse.ArgumentParser(description="Rebuild the housing standards vector index")
    parser.add_argument(
        "--corpus-dir",
        type=Path,
        default=settings.CORPUS_DIR,
        help=f"Corpus directory (default: {settings.CORPUS_DIR})",
    )
    parser.add_argument(
        "--index-dir",
        type=Path,
        default=settings.INDEX_DIR,
        help=f"Index directory (default: {settings.INDEX_DIR})",
    )
    parser.add_argument(
        "--check",
        action="store_true",
        help="Only validate the corpus; do not embed or write an index",
    )
    args = parser.parse_args()

    try:
        if args.check:
            check_corpus(args.corpus_dir)
        else:
            asyncio.run(rebuild(args.corpus_dir, args.index_dir))
    except AdvisorException as e:
        logger.error(
            "❌ Ingestion failed",
            error=e.message,
            details=e.details,
            error_type=type(e).__name__,
        )
        print(f"\n❌ Error: {e.message}\n")
        sys.exit(1)


if __name__ == "__main__":
    main()
