"""Supported call locales and the user-facing strings attached to them.

Every locale-indexed table in the pipeline (cue patterns, spoken alerts,
notification wording) is keyed by :class:`Locale`.  Codes arriving from
the transcription collaborator or the command line go through
:func:`resolve_locale`, which falls back to :data:`DEFAULT_LOCALE` rather
than failing on an unknown code.
"""

from __future__ import annotations

import logging
from enum import Enum

logger = logging.getLogger(__name__)


class Locale(str, Enum):
    """BCP-47 codes of the languages the cue tables cover."""

    EN_US = "en-US"
    ES_ES = "es-ES"
    FR_FR = "fr-FR"

    @property
    def language(self) -> str:
        """Two-letter language code (``"en"``, ``"es"``, ``"fr"``)."""
        return self.value.split("-", 1)[0]


DEFAULT_LOCALE: Locale = Locale.EN_US


def resolve_locale(code: str | Locale | None) -> Locale:
    """Map *code* to a :class:`Locale`, falling back to the default.

    Matching is case-insensitive and also accepts a bare language code
    (``"es"`` → ``es-ES``).
    """
    if isinstance(code, Locale):
        return code
    if not code:
        return DEFAULT_LOCALE

    wanted = code.strip().replace("_", "-").lower()
    for locale in Locale:
        if locale.value.lower() == wanted or locale.language == wanted:
            return locale

    logger.warning("Unknown locale %r, falling back to %s", code, DEFAULT_LOCALE.value)
    return DEFAULT_LOCALE


# ---------------------------------------------------------------------------
# Alert wording
# ---------------------------------------------------------------------------

SPOKEN_ALERTS: dict[Locale, str] = {
    Locale.EN_US: (
        "Attention: possible fraud detected. "
        "Do not share codes or personal information."
    ),
    Locale.ES_ES: (
        "Atención: posible fraude detectado. "
        "No comparta códigos ni información personal."
    ),
    Locale.FR_FR: (
        "Attention : fraude possible détectée. "
        "Ne partagez pas de codes ni d'informations personnelles."
    ),
}

HIGH_RISK_TITLES: dict[Locale, str] = {
    Locale.EN_US: "High risk: possible fraud",
    Locale.ES_ES: "Riesgo alto: posible fraude",
    Locale.FR_FR: "Risque élevé : fraude possible",
}

WARNING_TITLES: dict[Locale, str] = {
    Locale.EN_US: "Warning: suspicious activity",
    Locale.ES_ES: "Advertencia: actividad sospechosa",
    Locale.FR_FR: "Avertissement : activité suspecte",
}

REASON_PREFIXES: dict[Locale, str] = {
    Locale.EN_US: "Reason",
    Locale.ES_ES: "Motivo",
    Locale.FR_FR: "Raison",
}
