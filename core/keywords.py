"""Exact term matching over chunk text."""

import re
from dataclasses import dataclass, field
from typing import Iterable, Optional

from core.config import get_settings
from core.logger import LoggerMixin, get_logger
from models.schema import Chunk

logger = get_logger(__name__)

# Quoted phrases are kept verbatim as single terms
QUOTED_PHRASE_PATTERN = re.compile(r'"([^"]+)"|«([^»]+)»|“([^”]+)”|„([^“”]+)[“”]')
PUNCTUATION_PATTERN = re.compile(r"[^\w\s-]+", re.UNICODE)

STOP_WORDS: frozenset[str] = frozenset({
    # Russian
    "что", "такое", "как", "какой", "какая", "какие", "каков", "какова", "где",
    "когда", "кто", "чем", "чего", "почему", "зачем", "сколько", "ли", "или",
    "это", "этот", "эта", "эти", "тот", "для", "при", "над", "под", "без",
    "про", "через", "после", "перед", "между", "если", "так", "также", "тоже",
    "его", "ее", "её", "их", "мне", "меня", "мой", "моя", "мои", "наш", "наша",
    "наши", "ваш", "вас", "вам", "они", "она", "оно", "нас", "нам", "все",
    "всё", "весь", "вся", "был", "была", "были", "быть", "есть", "нужно",
    "надо", "можно", "должен", "должна", "должны", "будет", "уже", "еще", "ещё",
    "только", "очень", "там", "тут", "здесь", "кого", "кому", "чтобы", "который",
    "которая", "которые", "подскажите", "скажите", "пожалуйста", "здравствуйте",
    "привет", "добрый", "день", "вечер",
    # Kazakh
    "және", "мен", "бен", "пен", "үшін", "туралы", "қандай", "қалай", "қашан",
    "неше", "деген", "не", "бұл", "осы", "сол", "ма", "ме", "ба", "бе", "па",
    "пе", "бар", "жоқ", "керек", "сәлеметсіз", "сәлем",
    # English
    "the", "and", "for", "what", "how", "who", "when", "where", "why", "which",
    "are", "was", "were", "does", "with", "about", "from", "that", "this",
})


def extract_terms(question: str, min_length: Optional[int] = None) -> set[str]:
    """
    Extract lowercase search terms from a question.

    Quoted phrases survive as whole terms. The rest of the text is stripped
    of punctuation and split on whitespace; stop-words and tokens shorter
    than ``min_length`` are dropped.

    Args:
        question: User question.
        min_length: Shortest kept token (default: MIN_TERM_LENGTH).

    Returns:
        set[str]: Terms; empty when nothing meaningful is left.
    """
    if min_length is None:
        min_length = get_settings().MIN_TERM_LENGTH

    lowered = question.lower()
    terms: set[str] = set()

    for match in QUOTED_PHRASE_PATTERN.finditer(lowered):
        phrase = next(group for group in match.groups() if group is not None)
        phrase = " ".join(phrase.split())
        if phrase:
            terms.add(phrase)
    remainder = QUOTED_PHRASE_PATTERN.sub(" ", lowered)

    for token in PUNCTUATION_PATTERN.sub(" ", remainder).split():
        token = token.strip("-_")
        if len(token) < min_length or token in STOP_WORDS:
            continue
        terms.add(token)

    return terms


@dataclass(frozen=True)
class KeywordMatches:
    """Chunks matching all terms (strong) and at least one term (weak)."""

    strong: list[Chunk] = field(default_factory=list)
    weak: list[Chunk] = field(default_factory=list)


class KeywordFilter(LoggerMixin):
    """Partitions chunks by exact, case-insensitive substring matches of terms."""

    def classify(self, terms: Iterable[str], chunks: Iterable[Chunk]) -> KeywordMatches:
        """
        Classify chunks against the extracted terms.

        ``weak`` holds every chunk containing at least one term, so strong
        chunks appear in both lists; merging deduplicates them. An empty term
        set matches nothing.
        """
        term_list = [term.lower() for term in terms if term]
        if not term_list:
            return KeywordMatches()

        strong: list[Chunk] = []
        weak: list[Chunk] = []
        for chunk in chunks:
            text = chunk.text.lower()
            hits = sum(1 for term in term_list if term in text)
            if hits == 0:
                continue
            weak.append(chunk)
            if hits == len(term_list):
                strong.append(chunk)

        self.logger.debug(
            "Keyword classification completed",
            terms=sorted(term_list),
            strong=len(strong),
            weak=len(weak),
        )
        return KeywordMatches(strong=strong, weak=weak)
