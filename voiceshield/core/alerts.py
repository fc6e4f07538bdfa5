"""Alert coordination: turn risk updates into throttled user alerts.

Two independent checks run on every :class:`RiskState` update:

* **Escalation notification** – edge-triggered.  Fires only when the
  severity (``Safe=0, Suspicious=1, Scam=2``) strictly increases over the
  previous update, so a call sitting at *Scam* notifies once.
* **Spoken alert** – level-triggered with a cooldown.  Fires while the
  label is *Scam*, or *Suspicious* with a score of at least 50, at most
  once per ``cooldown_seconds`` (default 4 s), and only when spoken alerts
  are enabled.

All timing state lives in an :class:`AlertSession` owned by one
coordinator, so concurrent sessions never share a cooldown.
"""

from __future__ import annotations

import logging
import time
from dataclasses import asdict, dataclass, field
from typing import Any, Callable

from voiceshield.core.locales import (
    DEFAULT_LOCALE,
    HIGH_RISK_TITLES,
    REASON_PREFIXES,
    SPOKEN_ALERTS,
    WARNING_TITLES,
    Locale,
    resolve_locale,
)
from voiceshield.core.risk_fusion import RiskLabel, RiskState

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Defaults
# ---------------------------------------------------------------------------

COOLDOWN_SECONDS: float = 4.0
HIGH_SUSPICIOUS_SCORE: int = 50
DEFAULT_VOLUME: float = 0.6
DEFAULT_RATE: float = 0.95


# ---------------------------------------------------------------------------
# Configuration and requests
# ---------------------------------------------------------------------------


@dataclass
class AlertConfig:
    """Caller-supplied alert settings.  Never persisted.

    Attributes
    ----------
    locale:
        Language of the spoken alert and notification wording.
    spoken_alerts:
        Enables the spoken-alert channel.  Notifications are always on.
    volume:
        Spoken-alert volume in [0, 1].
    rate:
        Speech rate multiplier handed to the speech-output collaborator.
    cooldown_seconds:
        Minimum interval between two spoken alerts.
    """

    locale: Locale = DEFAULT_LOCALE
    spoken_alerts: bool = True
    volume: float = DEFAULT_VOLUME
    rate: float = DEFAULT_RATE
    cooldown_seconds: float = COOLDOWN_SECONDS

    def __post_init__(self) -> None:
        self.locale = resolve_locale(self.locale)
        self.volume = max(0.0, min(1.0, float(self.volume)))


@dataclass(frozen=True)
class SpeakRequest:
    """Speak *text* once, cancelling any utterance still pending."""

    text: str
    locale: str
    volume: float
    rate: float

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class NotificationRequest:
    """One-shot visual notification."""

    title: str
    body: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class AlertDecision:
    """What, if anything, to emit for one risk update."""

    speak: SpeakRequest | None = None
    notify: NotificationRequest | None = None

    def __bool__(self) -> bool:
        return self.speak is not None or self.notify is not None


@dataclass
class AlertSession:
    """Per-session alert memory."""

    last_alerted_at: float | None = None
    last_severity: int = field(default=RiskLabel.SAFE.severity)

    def reset(self) -> None:
        self.last_alerted_at = None
        self.last_severity = RiskLabel.SAFE.severity


# ---------------------------------------------------------------------------
# AlertCoordinator
# ---------------------------------------------------------------------------


class AlertCoordinator:
    """Decide which alerts a risk update should produce.

    Parameters
    ----------
    config:
        Alert settings; may be changed between updates.
    clock:
        Monotonic time source in seconds.  Injectable for tests.
    """

    def __init__(
        self,
        config: AlertConfig | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.config: AlertConfig = config or AlertConfig()
        self.session: AlertSession = AlertSession()
        self._clock = clock

    def observe(self, state: RiskState) -> AlertDecision:
        """Run both checks for *state* and record the observed severity."""
        notify = self._check_escalation(state)
        speak = self._check_spoken_alert(state)
        return AlertDecision(speak=speak, notify=notify)

    def reset(self) -> None:
        self.session.reset()

    # -- Checks --------------------------------------------------------------

    def _check_escalation(self, state: RiskState) -> NotificationRequest | None:
        severity = state.label.severity
        previous = self.session.last_severity
        self.session.last_severity = severity
        if severity <= previous:
            return None

        locale = self.config.locale
        title = HIGH_RISK_TITLES[locale] if severity == 2 else WARNING_TITLES[locale]
        body = f"{REASON_PREFIXES[locale]}: {state.rationale}" if state.rationale else None
        logger.info("Escalation %d -> %d: %s", previous, severity, title)
        return NotificationRequest(title=title, body=body)

    def _check_spoken_alert(self, state: RiskState) -> SpeakRequest | None:
        if not self.config.spoken_alerts:
            return None

        high_suspicious = (
            state.label is RiskLabel.SUSPICIOUS and state.score >= HIGH_SUSPICIOUS_SCORE
        )
        if state.label is not RiskLabel.SCAM and not high_suspicious:
            return None

        now = self._clock()
        last = self.session.last_alerted_at
        if last is not None and now - last < self.config.cooldown_seconds:
            logger.debug(
                "Spoken alert suppressed, cooldown %.1fs remaining",
                self.config.cooldown_seconds - (now - last),
            )
            return None

        self.session.last_alerted_at = now
        locale = self.config.locale
        logger.info("Spoken alert (%s, score=%d)", state.label.value, state.score)
        return SpeakRequest(
            text=SPOKEN_ALERTS[locale],
            locale=locale.value,
            volume=self.config.volume,
            rate=self.config.rate,
        )
