"""Multilingual scam-cue scanning over a rolling transcript window.

Transcript chunks (interim and final) are appended to a bounded
:class:`TranscriptWindow`; after every append the *whole* window is
rescanned against the locale's cue tables and a :class:`TextSignal`
(score 0–100 plus a short rationale) is returned.

Scoring
-------
1. **High-severity** patterns are explicit asks ("read me your code",
   "buy a gift card").  Any match returns exactly 90 with that cue's
   label; nothing else is added.
2. Otherwise, per window:

   * +35 for each base-table pattern that matches (rationale = label of
     the last match, in table order),
   * +30 for a standalone 4–8 digit token (a read-out verification code),
   * +20 for a money amount (``$50``, ``200 euros``),
   * +20 bonus when two or more base patterns match.

3. The total is clamped to [0, 100].
4. The rationale is sticky: when a scan finds no cue, the previous
   rationale is carried over.

The window keeps the most recent 600 characters.  It is a contiguous
suffix, not a token buffer, so a cue straddling the truncation boundary
can be lost.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field

from voiceshield.core.errors import CueTableError
from voiceshield.core.locales import DEFAULT_LOCALE, Locale, resolve_locale

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Scoring constants
# ---------------------------------------------------------------------------

WINDOW_CAPACITY: int = 600
HIGH_SEVERITY_SCORE: int = 90
CUE_POINTS: int = 35
NUMERIC_CODE_POINTS: int = 30
MONEY_POINTS: int = 20
MULTI_CUE_BONUS: int = 20
MULTI_CUE_THRESHOLD: int = 2
MAX_SCORE: int = 100

NUMERIC_CODE_PATTERN: re.Pattern[str] = re.compile(r"\b\d{4,8}\b")


# ---------------------------------------------------------------------------
# Data types
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class TextSignal:
    """Cue-scan result for the current window."""

    score: int = 0
    rationale: str = ""


@dataclass(frozen=True)
class CuePattern:
    """One case-insensitive scam cue and the label reported when it fires."""

    pattern: re.Pattern[str]
    label: str

    def matches(self, text: str) -> bool:
        return self.pattern.search(text) is not None


@dataclass(frozen=True)
class CueTable:
    """All patterns and labels used to score one locale."""

    base: tuple[CuePattern, ...]
    high_severity: tuple[CuePattern, ...]
    money_pattern: re.Pattern[str]
    numeric_code_label: str
    money_label: str


def _cues(*pairs: tuple[str, str]) -> tuple[CuePattern, ...]:
    return tuple(
        CuePattern(pattern=re.compile(regex, re.IGNORECASE), label=label)
        for regex, label in pairs
    )


def _money(currency_words: str) -> re.Pattern[str]:
    return re.compile(rf"[$€]\s?\d{{2,}}|\d+\s?(?:{currency_words})", re.IGNORECASE)


# ---------------------------------------------------------------------------
# Cue tables
# ---------------------------------------------------------------------------

CUE_TABLES: dict[Locale, CueTable] = {
    Locale.EN_US: CueTable(
        base=_cues(
            (
                r"one[-\s]?time\s?(password|code)|otp|verification\s?(code|sms|text)"
                r"|security\s?code|passcode",
                "requests OTP",
            ),
            (r"pin\s?code|cvv|password|login\s?code", "requests credentials"),
            (
                r"gift\s?card|wire\s?transfer|bank\s?transfer|bitcoin|crypto(\s?payment)?"
                r"|western\s?union",
                "payment request",
            ),
            (
                r"urgent|immediately|act\s?now|limited\s?time|do\s?not\s?tell\s?anyone",
                "pressure cue",
            ),
            (
                r"bank\s?account|routing\s?number|account\s?number|ssn|social\s?security"
                r"|driver'?s?\s?license",
                "asks sensitive info",
            ),
        ),
        high_severity=_cues(
            (
                r"(read|tell|share)\s?(me\s?)?(your\s?)?"
                r"(otp|one[-\s]?time\s?(code|password)|verification\s?code)",
                "explicit OTP request",
            ),
            (r"(buy|purchase)\s?(a\s?)?gift\s?card", "gift card purchase"),
            (r"(wire|bank)\s?transfer\s?now", "urgent transfer"),
        ),
        money_pattern=_money("dollars|euros"),
        numeric_code_label="numeric code",
        money_label="money mention",
    ),
    Locale.ES_ES: CueTable(
        base=_cues(
            (
                r"código\s?(único|de\s?verificación)|otp|contraseña\s?de\s?un\s?solo\s?uso"
                r"|sms\s?de\s?verificación",
                "solicita código",
            ),
            (r"pin|cvv|contraseña|clave\s?de\s?acceso", "solicita credenciales"),
            (r"tarjeta\s?de\s?regalo|transferencia|bitcoin|cripto(\s?pago)?", "pago sospechoso"),
            (
                r"urgente|inmediatamente|actúe\s?ahora|no\s?se\s?lo\s?diga\s?a\s?nadie",
                "presión",
            ),
            (r"cuenta\s?bancaria|número\s?de\s?ruta|dni|seguridad\s?social", "datos sensibles"),
        ),
        high_severity=_cues(
            (r"(dime|compárteme)\s?(tu\s?)?(código|otp)", "solicitud explícita de código"),
            (r"(compre|compre\s?una)\s?tarjeta\s?de\s?regalo", "compra de tarjeta regalo"),
            (r"transferencia\s?bancaria\s?ahora", "transferencia urgente"),
        ),
        money_pattern=_money("dólares|euros"),
        numeric_code_label="código numérico",
        money_label="mención de dinero",
    ),
    Locale.FR_FR: CueTable(
        base=_cues(
            (
                r"code\s?(unique|de\s?vérification)|otp|mot\s?de\s?passe\s?unique"
                r"|sms\s?de\s?vérification",
                "demande de code",
            ),
            (r"code\s?pin|cvv|mot\s?de\s?passe|code\s?d'accès", "demande d'identifiants"),
            (r"carte\s?cadeau|virement|bitcoin|crypto(\s?paiement)?", "paiement suspect"),
            (
                r"urgent|immédiatement|agissez\s?maintenant|n'en\s?parlez\s?à\s?personne",
                "pression",
            ),
            (
                r"compte\s?bancaire|rib|numéro\s?de\s?sécurité\s?sociale|permis\s?de\s?conduire",
                "infos sensibles",
            ),
        ),
        high_severity=_cues(
            (r"(dis|partage)\s?(moi\s?)?(ton\s?)?(code|otp)", "demande explicite de code"),
            (r"(achète|acheter)\s?une\s?carte\s?cadeau", "achat carte cadeau"),
            (r"virement\s?immédiat", "virement urgent"),
        ),
        money_pattern=_money("dollars|euros"),
        numeric_code_label="code numérique",
        money_label="mention d'argent",
    ),
}


def validate_cue_tables(tables: dict[Locale, CueTable]) -> None:
    """Ensure every supported locale has a base and a high-severity table.

    Raises
    ------
    CueTableError
        Naming the first locale with a missing or empty table.
    """
    for locale in Locale:
        table = tables.get(locale)
        if table is None:
            raise CueTableError(f"no cue table for locale {locale.value}")
        if not table.base:
            raise CueTableError(f"empty base cue table for locale {locale.value}")
        if not table.high_severity:
            raise CueTableError(f"empty high-severity cue table for locale {locale.value}")


validate_cue_tables(CUE_TABLES)


# ---------------------------------------------------------------------------
# Scoring
# ---------------------------------------------------------------------------


def score_window(text: str, table: CueTable, previous_rationale: str = "") -> TextSignal:
    """Score *text* against *table*; pure apart from the carried rationale."""
    for cue in table.high_severity:
        if cue.matches(text):
            return TextSignal(score=HIGH_SEVERITY_SCORE, rationale=cue.label)

    score = 0
    hits = 0
    rationale = previous_rationale
    for cue in table.base:
        if cue.matches(text):
            score += CUE_POINTS
            hits += 1
            rationale = cue.label

    if NUMERIC_CODE_PATTERN.search(text):
        score += NUMERIC_CODE_POINTS
        rationale = rationale or table.numeric_code_label

    if table.money_pattern.search(text):
        score += MONEY_POINTS
        rationale = rationale or table.money_label

    if hits >= MULTI_CUE_THRESHOLD:
        score += MULTI_CUE_BONUS

    return TextSignal(score=min(MAX_SCORE, score), rationale=rationale)


# ---------------------------------------------------------------------------
# TranscriptWindow
# ---------------------------------------------------------------------------


@dataclass
class TranscriptWindow:
    """Most recent *capacity* characters of the concatenated transcript."""

    capacity: int = WINDOW_CAPACITY
    text: str = field(default="", init=False)

    def append(self, chunk: str) -> str:
        """Join *chunk* with a space, trim, keep the newest characters."""
        self.text = f"{self.text} {chunk}".strip()[-self.capacity:]
        return self.text

    def clear(self) -> None:
        self.text = ""

    def __len__(self) -> int:
        return len(self.text)


# ---------------------------------------------------------------------------
# TextRiskScanner
# ---------------------------------------------------------------------------


class TextRiskScanner:
    """Owns one transcript window and scores it against a locale's cues.

    Parameters
    ----------
    locale:
        Locale code or :class:`Locale`.  Unknown codes fall back to
        ``en-US``.
    capacity:
        Window size in characters.
    """

    def __init__(
        self,
        locale: str | Locale = DEFAULT_LOCALE,
        capacity: int = WINDOW_CAPACITY,
    ) -> None:
        self._locale: Locale = resolve_locale(locale)
        self._window = TranscriptWindow(capacity=capacity)
        self._signal = TextSignal()

    @property
    def locale(self) -> Locale:
        return self._locale

    @locale.setter
    def locale(self, value: str | Locale) -> None:
        self._locale = resolve_locale(value)

    @property
    def window(self) -> str:
        return self._window.text

    @property
    def signal(self) -> TextSignal:
        """The result of the most recent scan."""
        return self._signal

    def append(self, chunk: str) -> TextSignal:
        """Add *chunk* to the window and rescan the whole window."""
        if chunk and chunk.strip():
            self._window.append(chunk)

        previous = self._signal
        self._signal = score_window(
            self._window.text,
            CUE_TABLES[self._locale],
            previous_rationale=previous.rationale,
        )
        if self._signal != previous:
            logger.debug(
                "Text signal %d -> %d (%s) window=%d chars",
                previous.score,
                self._signal.score,
                self._signal.rationale or "-",
                len(self._window),
            )
        return self._signal

    def carry_rationale(self, rationale: str) -> None:
        """Make *rationale* the reason carried into the next scan.

        The fusion engine feeds its fused rationale back here, so a
        ``"voice spoof-like"`` reason outlives the frame that produced it.
        """
        if rationale and rationale != self._signal.rationale:
            self._signal = TextSignal(score=self._signal.score, rationale=rationale)

    def reset(self) -> None:
        """Clear the window and the carried rationale."""
        self._window.clear()
        self._signal = TextSignal()
