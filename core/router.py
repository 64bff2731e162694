"""Topic routing: narrows the search space to documents relevant to a question."""

import json
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Iterable, Optional

from pydantic import TypeAdapter, ValidationError

from core.config import get_settings
from core.exceptions import ConfigurationError
from core.logger import LoggerMixin, get_logger
from models.schema import TopicRule

logger = get_logger(__name__)


# Questions about duties, rights, laws, standards or definitions are mostly
# answered by statute text, whatever their topic.
LEGAL_DEFINITION_PATTERN = re.compile(
    r"обязан|обязанност|\bправ[оаеу]|закон|норматив|стандарт|"
    r"определени|понятие|означает|что такое|что значит|что понимается|"
    r"міндет|құқы|заң|анықтама|дегеніміз|"
    r"\bduty\b|\bduties\b|\bright(s)?\b|\blaw\b|\bstandard\b|\bdefinition\b|\bmeans\b",
    re.IGNORECASE,
)


DEFAULT_TOPIC_RULES: tuple[TopicRule, ...] = (
    TopicRule(
        name="capital_repair",
        keywords=("капитальный ремонт", "капремонт", "капитального ремонта", "күрделі жөндеу"),
        documents=("standard_capital_repair", "rules_common_property_maintenance"),
    ),
    TopicRule(
        name="current_repair",
        keywords=("текущий ремонт", "текущего ремонта", "ағымдағы жөндеу"),
        documents=("rules_common_property_maintenance", "standard_capital_repair"),
    ),
    TopicRule(
        name="waste_removal",
        keywords=("мусор", "тбо", "отходы", "отходов", "контейнер", "қоқыс"),
        documents=("standard_waste_removal",),
    ),
    TopicRule(
        name="heating",
        keywords=("отоплен", "теплоснабжен", "батаре", "радиатор", "температур", "жылу"),
        documents=("standard_heating",),
    ),
    TopicRule(
        name="water_supply",
        keywords=("водоснабжен", "водоотвед", "канализац", "горячая вода", "холодная вода", "су құбыры"),
        documents=("standard_water_supply",),
    ),
    TopicRule(
        name="common_property",
        keywords=("общее имущество", "общего имущества", "подвал", "крыша", "кровл", "подъезд", "ортақ мүлік"),
        documents=("rules_common_property_maintenance",),
    ),
    TopicRule(
        name="condominium_management",
        keywords=("объединение собственников", "объединения собственников", "председател", "совет дома", "собрание"),
        documents=("rules_condominium_management",),
    ),
    TopicRule(
        name="payments",
        keywords=("тариф", "взнос", "оплат", "задолженност", "квитанц", "төлем"),
        documents=("rules_condominium_management", "standard_capital_repair"),
    ),
    TopicRule(
        name="elevators",
        keywords=("лифт",),
        documents=("standard_elevators",),
    ),
)


def load_topic_rules(path: Path) -> tuple[TopicRule, ...]:
    """
    Read topic rules from a JSON file.

    Expected format: a list of ``{"name", "keywords", "documents"}`` objects.

    Raises:
        ConfigurationError: If the file is missing or malformed.
    """
    try:
        raw = json.loads(Path(path).read_text(encoding="utf-8"))
        rules = TypeAdapter(list[TopicRule]).validate_python(raw)
    except (OSError, json.JSONDecodeError, ValidationError) as e:
        logger.error("Failed to load topic rules", path=str(path), error=str(e))
        raise ConfigurationError(
            message=f"Invalid topic rules file: {path}",
            details={"path": str(path), "error": str(e)},
        ) from e
    return tuple(rules)


@dataclass(frozen=True)
class RouteDecision:
    """Routing outcome; an empty ``documents`` set means the whole corpus."""

    documents: frozenset[str] = field(default_factory=frozenset)
    matched_rules: tuple[str, ...] = ()
    legal: bool = False

    @property
    def searches_everything(self) -> bool:
        return not self.documents


class TopicRouter(LoggerMixin):
    """
    Maps question keywords to candidate source documents.

    Rules are read-only after construction. The router only narrows the
    search; when nothing matches it returns an empty set, which retrieval
    reads as "search all documents".
    """

    def __init__(
        self,
        rules: Optional[Iterable[TopicRule]] = None,
        baseline_documents: Optional[Iterable[str]] = None,
    ) -> None:
        settings = get_settings()
        if rules is None:
            rules = (
                load_topic_rules(settings.TOPIC_RULES_PATH)
                if settings.TOPIC_RULES_PATH
                else DEFAULT_TOPIC_RULES
            )
        self._rules: tuple[TopicRule, ...] = tuple(rules)
        self._baseline: frozenset[str] = frozenset(
            settings.BASELINE_LAW_DOCUMENTS if baseline_documents is None else baseline_documents
        )

        self.logger.info(
            "TopicRouter initialized",
            rules=len(self._rules),
            baseline_documents=sorted(self._baseline),
        )

    @property
    def rules(self) -> tuple[TopicRule, ...]:
        return self._rules

    @property
    def baseline_documents(self) -> frozenset[str]:
        return self._baseline

    @staticmethod
    def is_legal_question(question: str) -> bool:
        return LEGAL_DEFINITION_PATTERN.search(question) is not None

    def route(self, question: str) -> RouteDecision:
        """
        Select candidate documents for a question.

        Returns:
            RouteDecision: Union of matched rules' documents, plus the
            baseline statutes when the question also looks legal or
            definitional. With no matching rule the set stays empty (whole
            corpus, statutes included).
        """
        lowered = question.lower()
        documents: set[str] = set()
        matched: list[str] = []

        for rule in self._rules:
            if any(keyword.lower() in lowered for keyword in rule.keywords):
                matched.append(rule.name)
                documents.update(rule.documents)

        legal = self.is_legal_question(lowered)
        if legal and matched:
            documents.update(self._baseline)

        decision = RouteDecision(
            documents=frozenset(documents),
            matched_rules=tuple(matched),
            legal=legal,
        )
        self.logger.debug(
            "Question routed",
            matched_rules=decision.matched_rules,
            legal=legal,
            documents=sorted(decision.documents),
        )
        return decision
