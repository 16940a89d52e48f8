"""
Deterministic Heuristics for the Assistant

The completion model is good at language and bad at calendars. Whatever
it leaves unresolved is finished here, with fixed rules and an injected
"today", so results are reproducible in tests:

- relative dates ("amanhã", "próxima sexta", "em 3 dias") -> ISO dates
- spoken times ("18h", "18hrs", "6 da tarde") -> HH:MM
- missing categories and transaction types -> keyword tables

Everything here is best-effort: a miss returns None or the default,
never an error.
"""

import re
from datetime import date, timedelta
from typing import Optional

from odrna.models.entities import (
    TaskCategory,
    TransactionCategory,
    TransactionType,
    normalize_token,
)


# =============================================================================
# KEYWORD TABLES (normalized: lowercase, no accents; matched as word prefixes)
# =============================================================================

TASK_CATEGORY_KEYWORDS: list[tuple[TaskCategory, tuple[str, ...]]] = [
    (TaskCategory.STUDY, (
        "estud", "aula", "curso", "prova", "ingles", "leitura", "ler",
        "livro", "faculdade", "escola", "revisar", "licao",
        "study", "class", "exam", "homework",
    )),
    (TaskCategory.HEALTH, (
        "exerc", "academia", "treino", "treinar", "medic", "consulta",
        "dentista", "corrida", "correr", "caminhada", "yoga", "remedio",
        "nutricionista", "exame", "gym", "workout", "doctor", "run",
    )),
    (TaskCategory.WORK, (
        "trabalho", "reuniao", "cliente", "relatorio", "projeto",
        "apresentacao", "chefe", "entrega", "planilha",
        "meeting", "work", "report",
    )),
]

TRANSACTION_CATEGORY_KEYWORDS: list[tuple[TransactionCategory, tuple[str, ...]]] = [
    (TransactionCategory.SALARY, (
        "salario", "holerite", "contracheque", "salary", "paycheck",
    )),
    (TransactionCategory.FOOD, (
        "mercado", "supermercado", "restaurante", "ifood", "lanche",
        "almoco", "jantar", "padaria", "comida", "cafe", "pizza", "feira",
        "acougue", "hamburguer", "food", "grocer", "lunch", "dinner",
    )),
    (TransactionCategory.TRANSPORT, (
        "uber", "taxi", "gasolina", "combustivel", "onibus", "metro",
        "estacionamento", "pedagio", "passagem", "transporte", "bus",
    )),
    (TransactionCategory.HEALTH, (
        "farmacia", "remedio", "medic", "consulta", "dentista", "exame",
        "hospital", "academia", "pharmacy",
    )),
    (TransactionCategory.LEISURE, (
        "cinema", "show", "netflix", "spotify", "viagem", "bar", "festa",
        "jogo", "passeio", "ingresso", "streaming", "movie", "trip",
    )),
]

INCOME_KEYWORDS = (
    "salario", "receb", "caiu", "ganhei", "renda", "receita", "freela",
    "reembolso", "vendi", "bonus", "pix recebido",
    "salary", "received", "income", "earned",
)

EXPENSE_KEYWORDS = (
    "gastei", "paguei", "comprei", "despesa", "gasto", "conta",
    "spent", "paid", "bought", "expense",
)


def _words(text: str) -> list[str]:
    return re.findall(r"[a-z0-9]+", normalize_token(text))


def _matches(text: str, keywords: tuple[str, ...]) -> bool:
    normalized = normalize_token(text)
    words = _words(text)
    for keyword in keywords:
        if " " in keyword:
            if keyword in normalized:
                return True
        elif any(word.startswith(keyword) for word in words):
            return True
    return False


def infer_task_category(text: Optional[str]) -> TaskCategory:
    """Category for a task or event title; `pessoal` when nothing matches."""
    if text:
        for category, keywords in TASK_CATEGORY_KEYWORDS:
            if _matches(text, keywords):
                return category
    return TaskCategory.PERSONAL


def infer_transaction_category(text: Optional[str]) -> TransactionCategory:
    if text:
        for category, keywords in TRANSACTION_CATEGORY_KEYWORDS:
            if _matches(text, keywords):
                return category
    return TransactionCategory.OTHER


def infer_transaction_type(text: Optional[str]) -> TransactionType:
    """Income only on an income cue without an explicit expense cue."""
    if text and not _matches(text, EXPENSE_KEYWORDS) and _matches(text, INCOME_KEYWORDS):
        return TransactionType.INCOME
    return TransactionType.EXPENSE


# =============================================================================
# RELATIVE DATES
# =============================================================================

_ISO_DATE = re.compile(r"^\d{4}-\d{2}-\d{2}")

WEEKDAYS = {
    "segunda": 0, "terca": 1, "quarta": 2, "quinta": 3,
    "sexta": 4, "sabado": 5, "domingo": 6,
    "monday": 0, "tuesday": 1, "wednesday": 2, "thursday": 3,
    "friday": 4, "saturday": 5, "sunday": 6,
}

_FIXED_OFFSETS = [
    # Longest phrases first: "depois de amanha" contains "amanha".
    (("depois de amanha", "day after tomorrow"), 2),
    (("proxima semana", "semana que vem", "next week"), 7),
    (("amanha", "tomorrow"), 1),
    (("ontem", "yesterday"), -1),
    (("hoje", "today", "agora", "now"), 0),
]

_IN_N_DAYS = re.compile(r"\b(?:em|daqui a|daqui|in)\s+(\d{1,3})\s+(?:dias?|days?)\b")
_IN_N_WEEKS = re.compile(r"\b(?:em|daqui a|daqui|in)\s+(\d{1,2})\s+(?:semanas?|weeks?)\b")


def is_iso_date(value: str) -> bool:
    return bool(_ISO_DATE.match(value.strip()))


def resolve_relative_date(expression: Optional[str], today: date) -> Optional[date]:
    """
    Resolve a relative date expression against `today`.

    Weekday names resolve to the next occurrence strictly after today
    ("sexta" said on a Friday is the following Friday).
    Returns None when the expression is not recognized.
    """
    if not expression:
        return None
    text = " ".join(_words(expression))
    if not text:
        return None

    padded = f" {text} "
    for phrases, offset in _FIXED_OFFSETS:
        if any(f" {phrase} " in padded for phrase in phrases):
            return today + timedelta(days=offset)

    match = _IN_N_DAYS.search(text)
    if match:
        return today + timedelta(days=int(match.group(1)))
    match = _IN_N_WEEKS.search(text)
    if match:
        return today + timedelta(weeks=int(match.group(1)))

    for word in text.split():
        if word in WEEKDAYS:
            ahead = (WEEKDAYS[word] - today.weekday()) % 7 or 7
            return today + timedelta(days=ahead)

    return None


# =============================================================================
# TIMES
# =============================================================================

_PERIOD_TIME = re.compile(
    r"\b(\d{1,2})(?:\s*h)?(?::([0-5]\d))?\s+da\s+(manha|tarde|noite|madrugada)\b"
)
_AMPM_TIME = re.compile(r"\b(\d{1,2})(?::([0-5]\d))?\s*(am|pm)\b")
_CLOCK_TIME = re.compile(r"\b([01]?\d|2[0-3])\s*(?::|h)\s*([0-5]\d)\b")
_HOUR_TIME = re.compile(r"\b([01]?\d|2[0-3])\s*(?:horas|hora|hrs|hs|h)\b")


def _format(hour: int, minute: int = 0) -> Optional[str]:
    if 0 <= hour <= 23 and 0 <= minute <= 59:
        return f"{hour:02d}:{minute:02d}"
    return None


def extract_time(expression: Optional[str]) -> Optional[str]:
    """
    Find a time of day in free text and return it as HH:MM.

    Understands "18:30", "18h30", "18h", "18hrs", "6 da tarde",
    "9 da manhã", "6pm", "meio-dia" and "meia-noite".
    """
    if not expression:
        return None
    text = normalize_token(expression)

    if "meio-dia" in text or "meio dia" in text or "noon" in text:
        return "12:00"
    if "meia-noite" in text or "meia noite" in text or "midnight" in text:
        return "00:00"

    match = _PERIOD_TIME.search(text)
    if match:
        hour, minute = int(match.group(1)), int(match.group(2) or 0)
        period = match.group(3)
        if period in ("tarde", "noite") and hour < 12:
            hour += 12
        elif period == "madrugada" and hour == 12:
            hour = 0
        return _format(hour, minute)

    match = _AMPM_TIME.search(text)
    if match:
        hour, minute = int(match.group(1)) % 12, int(match.group(2) or 0)
        if match.group(3) == "pm":
            hour += 12
        return _format(hour, minute)

    match = _CLOCK_TIME.search(text)
    if match:
        return _format(int(match.group(1)), int(match.group(2)))

    match = _HOUR_TIME.search(text)
    if match:
        return _format(int(match.group(1)))

    return None
