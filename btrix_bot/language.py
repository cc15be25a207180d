"""Reply language detection and policy.

Three languages are supported. The policy mode decides whether the
detected language is used:

- ``single``: always the default language
- ``auto``: whatever was detected
- ``allowed``: the detected language if it is in the allowed list,
  else the default
"""

import logging
import re
from typing import Optional

from btrix_bot.config import LanguageConfig, settings

logger = logging.getLogger(__name__)

SUPPORTED_LANGUAGES: dict[str, str] = {
    "en": "English",
    "pt-BR": "Português (Brasil)",
    "es": "Español",
}

LANGUAGE_KEYWORDS: dict[str, list[str]] = {
    "en": ["english", "inglês", "inglés"],
    "pt-BR": ["português", "portugues", "portuguese", "brasileiro", "pt-br"],
    "es": ["español", "espanol", "spanish", "castellano"],
}

LANGUAGE_INSTRUCTIONS: dict[str, str] = {
    "en": "Respond in English.",
    "pt-BR": "Responda em Português (Brasil).",
    "es": "Responde en Español.",
}

CHANGE_REQUEST_PREFIXES = ("change to", "switch to", "use", "speak", "in", "em", "en", "hablar", "falar")

_PT_PATTERNS = [
    re.compile(r"\b(?:olá|oi|tchau|obrigad[oa]|quero|gostaria|você|vocês)\b", re.IGNORECASE),
    re.compile(r"\b(?:não|sim|está|fazer|falar|preço|preços)\b", re.IGNORECASE),
]
_ES_PATTERNS = [
    re.compile(r"\b(?:hola|adiós|gracias|quiero|gustaría|usted)\b", re.IGNORECASE),
    re.compile(r"\b(?:sí|tiene|está|hacer|hablar|precio|precios)\b", re.IGNORECASE),
]


def _keyword_pattern(keyword: str) -> str:
    return rf"(?<!\w){re.escape(keyword)}(?!\w)"


def detect_language(text: Optional[str], default: Optional[str] = None) -> str:
    """Guess the language of a message: explicit keywords first, then common words."""
    default = default or settings.language.default_language
    if not text or not text.strip():
        return default

    lower = text.lower().strip()
    for language, keywords in LANGUAGE_KEYWORDS.items():
        for keyword in keywords:
            if re.search(_keyword_pattern(keyword), lower):
                logger.debug("Language detected from keyword '%s': %s", keyword, language)
                return language

    # "está" is shared; Portuguese-only words are checked first.
    if any(p.search(text) for p in _PT_PATTERNS):
        return "pt-BR"
    if any(p.search(text) for p in _ES_PATTERNS):
        return "es"
    return "en"


def detect_language_change_request(text: Optional[str]) -> Optional[str]:
    """Return the language asked for by e.g. "switch to spanish", else None."""
    if not text:
        return None
    lower = text.lower()
    for language, keywords in LANGUAGE_KEYWORDS.items():
        for keyword in keywords:
            for prefix in CHANGE_REQUEST_PREFIXES:
                if re.search(_keyword_pattern(f"{prefix} {keyword}"), lower):
                    return language
    return None


def is_language_allowed(language: str, config: Optional[LanguageConfig] = None) -> bool:
    config = config or settings.language
    if config.mode == "single":
        return language == config.default_language
    if config.mode == "allowed":
        return language in config.allowed_languages
    return language in SUPPORTED_LANGUAGES


def resolve_language(
    message: str,
    current: Optional[str] = None,
    override: Optional[str] = None,
    config: Optional[LanguageConfig] = None,
) -> str:
    """
    Decide the reply language for one turn.

    Args:
        message: The inbound user message.
        current: Language already stored on the session, None for a new session.
        override: Language explicitly requested by the caller.
        config: Language policy; defaults to the global settings.

    Returns:
        A supported language code.
    """
    config = config or settings.language

    requested = override or detect_language_change_request(message)
    if requested:
        if is_language_allowed(requested, config):
            logger.info("Language switched to %s", requested)
            return requested
        logger.warning(
            "Language %s not allowed in '%s' mode, keeping %s",
            requested, config.mode, current or config.default_language,
        )
        return current or config.default_language

    if current:
        return current

    if config.mode == "single":
        return config.default_language

    detected = detect_language(message, config.default_language)
    if config.mode == "allowed" and detected not in config.allowed_languages:
        logger.info(
            "Detected language %s not allowed, using %s", detected, config.default_language
        )
        return config.default_language
    return detected


def get_language_instruction(language: str) -> str:
    return LANGUAGE_INSTRUCTIONS.get(language, LANGUAGE_INSTRUCTIONS["en"])


def get_language_display_name(language: str) -> str:
    return SUPPORTED_LANGUAGES.get(language, language)
