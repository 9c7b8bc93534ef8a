"""
Editable analysis prompt, stored in the system_settings table.

The template uses {title} and {content} placeholders, filled by plain
replacement so the JSON example braces in the prompt stay untouched.
"""

import logging
from typing import Tuple

from auditor.exceptions import InvalidPromptError
from auditor.models import SystemSetting

logger = logging.getLogger(__name__)

ANALYSIS_PROMPT_KEY = "analysis_prompt"

MIN_PROMPT_LENGTH = 50

DEFAULT_ANALYSIS_PROMPT = """Analysiere den folgenden Website-Content auf Textqualitätsprobleme.

Titel: {title}
Content:
{content}

Prüfe auf:
1. Grammatik/Rechtschreibung - Fehler in Sprache
2. Redundanz - Wiederholte Phrasen oder Absätze
3. Widersprüche - Inkonsistente Informationen (z.B. verschiedene Material-Angaben)
4. Platzhalter - Lorem Ipsum, TODO, "[hier einfügen]", etc.
5. Leere Inhalte - Fehlende Beschreibungen

Antworte NUR mit einem gültigen JSON-Array im folgenden Format (kein zusätzlicher Text):
[{ "type": "grammar|redundancy|contradiction|placeholder|empty",
   "severity": "low|medium|high",
   "description": "...",
   "snippet": "betroffener Text",
   "suggestion": "Verbesserungsvorschlag" }]

Berechne zusätzlich einen Quality Score (0-100) basierend auf der Anzahl und Schwere der gefundenen Probleme."""


def get_analysis_prompt_state() -> Tuple[str, bool]:
    """
    Current prompt and whether it is the built-in default.

    Returns:
        (prompt, is_default)
    """
    setting = SystemSetting.objects.filter(key=ANALYSIS_PROMPT_KEY).first()
    if setting is None:
        return DEFAULT_ANALYSIS_PROMPT, True
    return setting.value, False


def get_analysis_prompt() -> str:
    """Prompt template used for the next analysis."""
    return get_analysis_prompt_state()[0]


def validate_analysis_prompt(prompt) -> str:
    """
    Check a submitted prompt and return it stripped.

    Raises:
        InvalidPromptError: Not a string, too short, or missing {content}
    """
    if not isinstance(prompt, str) or not prompt.strip():
        raise InvalidPromptError("prompt is required")

    prompt = prompt.strip()
    if len(prompt) < MIN_PROMPT_LENGTH:
        raise InvalidPromptError(
            f"Prompt must be at least {MIN_PROMPT_LENGTH} characters long"
        )
    if "{content}" not in prompt:
        raise InvalidPromptError("Prompt must contain the {content} placeholder")
    return prompt


def set_analysis_prompt(prompt) -> str:
    """
    Validate and store a new analysis prompt.

    Args:
        prompt: New template text

    Returns:
        The stored (stripped) prompt

    Raises:
        InvalidPromptError: Prompt rejected by validate_analysis_prompt()
    """
    prompt = validate_analysis_prompt(prompt)
    SystemSetting.objects.update_or_create(
        key=ANALYSIS_PROMPT_KEY, defaults={"value": prompt}
    )
    logger.info(f"Analysis prompt updated ({len(prompt)} chars)")
    return prompt


def reset_analysis_prompt() -> None:
    """Drop the stored prompt so the default applies again."""
    SystemSetting.objects.filter(key=ANALYSIS_PROMPT_KEY).delete()


def render_prompt(template: str, title: str, content: str) -> str:
    """Fill the {title} and {content} placeholders of a prompt template."""
    return template.replace("{title}", title or "").replace("{content}", content or "")
