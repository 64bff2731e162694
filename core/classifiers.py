"""Intent and language probes with closed answer sets and safe defaults."""

import re
from typing import Optional

from core.exceptions import ClassificationParseError, GenerationError
from core.generator import GenerationGateway
from core.logger import LoggerMixin, get_logger
from core.prompts import INTENT_PROBE, LANGUAGE_PROBE, compose_probe
from models.schema import Language

logger = get_logger(__name__)

_TOKEN_PATTERN = re.compile(r"[A-Za-zА-Яа-яЁё]+")


def first_token(response: str) -> str:
    """
    First word of a probe response, uppercased.

    Raises:
        ClassificationParseError: If the response holds no word at all.
    """
    match = _TOKEN_PATTERN.search(response or "")
    if match is None:
        raise ClassificationParseError(
            message="Probe response has no token",
            details={"response": (response or "")[:100]},
        )
    return match.group(0).upper()


class IntentClassifier(LoggerMixin):
    """Detects requests to create a document. Anything unclear means NO."""

    ANSWERS: dict[str, bool] = {"YES": True, "NO": False, "ДА": True, "НЕТ": False}
    DEFAULT: bool = False

    def __init__(self, gateway: GenerationGateway) -> None:
        self._gateway = gateway

    def parse(self, response: str) -> bool:
        token = first_token(response)
        if token not in self.ANSWERS:
            raise ClassificationParseError(
                message="Unexpected intent label",
                details={"token": token},
            )
        return self.ANSWERS[token]

    async def wants_document(self, question: str) -> bool:
        response: Optional[str] = None
        try:
            response = await self._gateway.generate(compose_probe(INTENT_PROBE, question))
            return self.parse(response)
        except (ClassificationParseError, GenerationError) as e:
            self.logger.warning(
                "Intent probe unresolved, using default",
                default=self.DEFAULT,
                response=(response or "")[:50],
                error=e.message,
                error_type=type(e).__name__,
            )
            return self.DEFAULT


class LanguageClassifier(LoggerMixin):
    """Detects Russian or Kazakh. Anything unclear means Russian."""

    ANSWERS: dict[str, Language] = {
        "RU": Language.RU,
        "RUS": Language.RU,
        "RUSSIAN": Language.RU,
        "KZ": Language.KZ,
        "KK": Language.KZ,
        "KAZ": Language.KZ,
        "KAZAKH": Language.KZ,
    }
    DEFAULT: Language = Language.RU

    def __init__(self, gateway: GenerationGateway) -> None:
        self._gateway = gateway

    def parse(self, response: str) -> Language:
        token = first_token(response)
        if token not in self.ANSWERS:
            raise ClassificationParseError(
                message="Unexpected language label",
                details={"token": token},
            )
        return self.ANSWERS[token]

    async def detect(self, question: str) -> Language:
        response: Optional[str] = None
        try:
            response = await self._gateway.generate(compose_probe(LANGUAGE_PROBE, question))
            return self.parse(response)
        except (ClassificationParseError, GenerationError) as e:
            self.logger.warning(
                "Language probe unresolved, using default",
                default=self.DEFAULT.value,
                response=(response or "")[:50],
                error=e.message,
                error_type=type(e).__name__,
            )
            return self.DEFAULT
