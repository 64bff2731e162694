"""Terminal client: answer questions through the full advisor pipeline."""

import argparse
import asyncio
import sys
from pathlib import Path

# Add project root to Python path
sys.path.insert(0, str(Path(__file__).parent))

from core.exceptions import IngestError
from core.logger import get_logger
from core.pipeline import build_advisor

logger = get_logger(__name__)


async def main(questions: list[str], user_id: str) -> None:
    print("=" * 60)
    print("🏠 HOUSING STANDARDS ADVISOR")
    print("=" * 60)

    print("\n📦 Loading index...")
    advisor = build_advisor()
    snapshot = await advisor.start()
    state = "rebuilt" if snapshot.rebuilt else "loaded"
    print(f"✓ Index {state}: {len(snapshot.documents)} documents, {len(snapshot.chunks)} chunks")

    try:
        if questions:
            for question in questions:
                print(f"\n❓ {question}")
                print("-" * 60)
                print(await advisor.answer(question, user_id))
            return

        print("\nВведите вопрос (пустая строка для выхода).")
        while True:
            question = await asyncio.to_thread(input, "\n❓ ")
            if not question.strip():
                break
            print("-" * 60)
            print(await advisor.answer(question, user_id))
    finally:
        await advisor.close()


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="Ask the housing standards advisor")
    parser.add_argument("questions", nargs="*", help="Questions to answer; omit for interactive mode")
    parser.add_argument("--user", default="terminal", help="User id for chat history")
    args = parser.parse_args()

    try:
        asyncio.run(main(args.questions, args.user))
    except IngestError as e:
        logger.error("Corpus unusable, cannot start", error=e.message, details=e.details)
        print(f"\n❌ Error: {e.message}\n")
        sys.exit(1)
    except KeyboardInterrupt:
        pass
