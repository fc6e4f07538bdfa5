"""Fusion of the transcript cue score and the acoustic spoof score.

::

    spoof_percent = round(clamp01(spoof_score) * 100)
    fused         = round(0.7 * text_score + 0.3 * spoof_percent)

    fused >= 65        -> Scam
    30 <= fused < 65   -> Suspicious
    fused < 30         -> Safe

Transcript content is weighted higher because it is the stronger,
lower-false-positive signal; the acoustic cue alone tops out at 30,
enough to lift a quiet call to *Suspicious*.

The rationale prefers the scanner's cue, then ``"voice spoof-like"``
when the spoof channel reaches 60 %, else empty.  The fused rationale is
handed back to the scanner as its carried reason, so once given it
survives later updates until a new cue replaces it.

Rounding is half-up (``24.5 -> 25``), not Python's banker's rounding.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass, replace
from enum import Enum

from voiceshield.core.text_risk import TextRiskScanner, TextSignal

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

TEXT_WEIGHT: float = 0.7
SPOOF_WEIGHT: float = 0.3
SCAM_THRESHOLD: int = 65
SUSPICIOUS_THRESHOLD: int = 30
SPOOF_RATIONALE_THRESHOLD: int = 60
SPOOF_RATIONALE: str = "voice spoof-like"


class RiskLabel(str, Enum):
    """Categorical risk, ordered by severity."""

    SAFE = "Safe"
    SUSPICIOUS = "Suspicious"
    SCAM = "Scam"

    @property
    def severity(self) -> int:
        return _SEVERITY[self]


_SEVERITY: dict[RiskLabel, int] = {
    RiskLabel.SAFE: 0,
    RiskLabel.SUSPICIOUS: 1,
    RiskLabel.SCAM: 2,
}


@dataclass
class RiskState:
    """Fused, externally visible risk snapshot."""

    score: int = 0
    label: RiskLabel = RiskLabel.SAFE
    rationale: str = ""

    def to_dict(self) -> dict[str, object]:
        return {"score": self.score, "label": self.label.value, "rationale": self.rationale}


# ---------------------------------------------------------------------------
# Pure helpers
# ---------------------------------------------------------------------------


def round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def spoof_percent(spoof_score: float) -> int:
    """Clamp *spoof_score* to [0, 1] and express it as a whole percentage."""
    return round_half_up(max(0.0, min(1.0, spoof_score)) * 100)


def label_for_score(score: int) -> RiskLabel:
    if score >= SCAM_THRESHOLD:
        return RiskLabel.SCAM
    if score >= SUSPICIOUS_THRESHOLD:
        return RiskLabel.SUSPICIOUS
    return RiskLabel.SAFE


def fuse(text_signal: TextSignal, spoof_score: float) -> RiskState:
    """Combine one text signal and one spoof score into a :class:`RiskState`."""
    spoof = spoof_percent(spoof_score)
    fused = round_half_up(TEXT_WEIGHT * text_signal.score + SPOOF_WEIGHT * spoof)
    fused = max(0, min(100, fused))

    if text_signal.rationale:
        rationale = text_signal.rationale
    elif spoof >= SPOOF_RATIONALE_THRESHOLD:
        rationale = SPOOF_RATIONALE
    else:
        rationale = ""

    return RiskState(score=fused, label=label_for_score(fused), rationale=rationale)


# ---------------------------------------------------------------------------
# RiskFusionEngine
# ---------------------------------------------------------------------------


class RiskFusionEngine:
    """Keeps the running :class:`RiskState` for one session.

    Each channel remembers its last contribution: a spoof-only update
    keeps the latest text score and vice versa.  The text score is always
    re-read from *scanner* so the fused value tracks its current window.
    The fused rationale is written back to the scanner after every update.

    Parameters
    ----------
    scanner:
        The session's :class:`TextRiskScanner`.
    """

    def __init__(self, scanner: TextRiskScanner) -> None:
        self.scanner: TextRiskScanner = scanner
        self._spoof_score: float = 0.0
        self._state: RiskState = RiskState()

    @property
    def state(self) -> RiskState:
        """A copy of the current state; mutating it has no effect."""
        return replace(self._state)

    @property
    def spoof_score(self) -> float:
        return self._spoof_score

    def update(
        self,
        text_signal: TextSignal | None = None,
        spoof_score: float | None = None,
    ) -> RiskState:
        """Refresh whichever channels are supplied and recompute the fusion.

        Parameters
        ----------
        text_signal:
            Latest scanner result.  When omitted, the scanner's current
            signal is used.
        spoof_score:
            Latest acoustic spoof likelihood in [0, 1].  When omitted, the
            previous value is kept.

        Returns
        -------
        RiskState
            A copy of the new state.
        """
        if spoof_score is not None:
            self._spoof_score = float(spoof_score)
        if text_signal is None:
            text_signal = self.scanner.signal

        previous = self._state
        self._state = fuse(text_signal, self._spoof_score)
        self.scanner.carry_rationale(self._state.rationale)

        if self._state.label is not previous.label:
            logger.info(
                "Risk label %s -> %s (score=%d, rationale=%r)",
                previous.label.value,
                self._state.label.value,
                self._state.score,
                self._state.rationale,
            )
        return self.state

    def push_text(self, chunk: str) -> RiskState:
        """Append *chunk* to the scanner window and fuse the new signal."""
        return self.update(text_signal=self.scanner.append(chunk))

    def push_spoof(self, spoof_score: float) -> RiskState:
        return self.update(spoof_score=spoof_score)

    def reset(self) -> None:
        """Back to ``{0, Safe, ""}`` with an empty transcript window."""
        self.scanner.reset()
        self._spoof_score = 0.0
        self._state = RiskState()
