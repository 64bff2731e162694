"""Prompt policy and user-facing texts for the advisor."""

import re

from langchain_core.messages import BaseMessage
from langchain_core.prompts import ChatPromptTemplate

from core.context import NO_RELEVANT_DATA
from models.schema import Language

# Markup characters removed from every answer
MARKUP_PATTERN = re.compile(r"[*#_`~]")

LANGUAGE_NAMES: dict[Language, str] = {
    Language.RU: "русском",
    Language.KZ: "казахском",
}

ADVISORY_DISCLAIMERS: dict[Language, str] = {
    Language.RU: (
        "В базе нормативных документов не найдено точного ответа на ваш вопрос, "
        "поэтому ниже приведены общие рекомендации."
    ),
    Language.KZ: (
        "Нормативтік құжаттар базасынан сұрағыңызға нақты жауап табылмады, "
        "сондықтан төменде жалпы ұсыныстар берілген."
    ),
}

APOLOGY_MESSAGES: dict[Language, str] = {
    Language.RU: "Извините, сейчас я не могу ответить. Попробуйте позже.",
    Language.KZ: "Кешіріңіз, қазір жауап бере алмаймын. Кейінірек қайталап көріңіз.",
}

EMPTY_QUESTION_MESSAGE = "Пожалуйста, введите ваш вопрос."

DOCUMENT_REDIRECT_MESSAGE = (
    "Похоже, вы хотите составить документ. Для этого перейдите в раздел «Документы»: "
    "там ассистент поможет подготовить заявление, протокол собрания или акт."
)


PERSONA = """Ты NeoOSI, экспертный ассистент по вопросам ОСИ и ЖКХ в Казахстане.
Ты консультируешь жильцов и председателей объединений собственников имущества.
Отвечай вежливо, кратко и по делу."""

COMMON_RULES = """ЯЗЫК: ответ должен быть строго на {language_name} языке.
ФОРМАТ: запрещено использовать Markdown и символы * # _ ` ~. Только чистый текст и переносы строк.
{greeting_rule}"""

GREETING_FRESH = "Это начало разговора: можно коротко поздороваться."
GREETING_ONGOING = "Разговор уже идет: не здоровайся, сразу переходи к ответу."

GROUNDED_INSTRUCTIONS = """Ответ должен быть полностью основан на приведенном ниже контексте из нормативных документов.
Не добавляй сведений, которых нет в контексте.
Обязательно укажи название документа-источника (значение после SOURCE:), на котором основан ответ."""

ADVISORY_INSTRUCTIONS = """В нормативных документах нет данных по этому вопросу.
Начни ответ дословно с предложения: "{disclaimer}"
После него дай общие практические рекомендации."""

GROUNDED_TEMPLATE = """КОНТЕКСТ:
{context}

ВОПРОС:
{question}"""

ADVISORY_TEMPLATE = """ВОПРОС:
{question}"""


INTENT_PROBE = """Определи, просит ли пользователь составить или сгенерировать документ
(заявление, жалобу, протокол, акт, письмо).
Ответь ровно одним словом: YES или NO.

Сообщение: {question}"""

LANGUAGE_PROBE = """Определи язык сообщения: русский или казахский.
Ответь ровно одним словом: RU или KZ.

Сообщение: {question}"""


def compose_messages(
    question: str,
    context: str,
    language: Language,
    fresh_conversation: bool,
) -> list[BaseMessage]:
    """
    Build the answer prompt under the two-tier policy.

    A real context gives the grounded tier (answer only from context, cite
    the source document); the NO_RELEVANT_DATA sentinel gives the advisory
    tier, which must open with the fixed disclaimer.
    """
    rules = COMMON_RULES.format(
        language_name=LANGUAGE_NAMES[language],
        greeting_rule=GREETING_FRESH if fresh_conversation else GREETING_ONGOING,
    )

    if context == NO_RELEVANT_DATA:
        instructions = ADVISORY_INSTRUCTIONS.format(disclaimer=ADVISORY_DISCLAIMERS[language])
        template = ChatPromptTemplate.from_messages([
            ("system", "{persona}\n\n{instructions}\n\n{rules}"),
            ("human", ADVISORY_TEMPLATE),
        ])
        return template.format_messages(
            persona=PERSONA,
            instructions=instructions,
            rules=rules,
            question=question,
        )

    template = ChatPromptTemplate.from_messages([
        ("system", "{persona}\n\n{instructions}\n\n{rules}"),
        ("human", GROUNDED_TEMPLATE),
    ])
    return template.format_messages(
        persona=PERSONA,
        instructions=GROUNDED_INSTRUCTIONS,
        rules=rules,
        context=context,
        question=question,
    )


def compose_probe(template: str, question: str) -> list[BaseMessage]:
    """Single human message for a classification probe."""
    return ChatPromptTemplate.from_messages([("human", template)]).format_messages(
        question=question
    )


def strip_markup(text: str) -> str:
    return MARKUP_PATTERN.sub("", text)
