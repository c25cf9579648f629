"""Banded relay allocation policy.

Battery level selects a band, the band caps how many relays may be ON, and a
ranking over the relays (derived from the usage-pattern summary and the user's
preference text) decides which ones. Below the critical level everything is
switched off regardless of any other input.
"""

from __future__ import annotations

import logging
import re
from collections.abc import Sequence
from dataclasses import dataclass, field
from datetime import datetime, timezone

from solaris.config.schema import PolicyConfig, RelayConfig
from solaris.forecast.base import Forecast
from solaris.relays.base import RelayId

logger = logging.getLogger(__name__)

CRITICAL_BAND = "critical"

PREFERENCE_WEIGHT = 2.0
PATTERN_WEIGHT = 1.0

_PRIORITY_CUES = (
    "essential", "critical", "important", "priority", "prioritize", "prioritise",
    "always", "must", "need", "needs", "keep",
)
_NEGATIVE_CUES = (
    "avoid", "non-essential", "nonessential", "not essential", "never", "don't",
    "do not", "least", "unnecessary", "defer", "rarely", "optional", "turn off",
    "switch off", "lowest",
)

_CLAUSE_SPLIT = re.compile(r"[.;!?\n]+|,?\s+but\s+")


@dataclass(frozen=True)
class BandSelection:
    """Which band a battery level falls into and the resulting relay cap."""

    label: str
    max_on: int
    description: str
    is_gap: bool = False
    raised: bool = False


@dataclass(frozen=True)
class AllocationDecision:
    """Desired logical state for every configured relay."""

    per_relay: dict[RelayId, bool]
    rationale: str
    band: str
    max_on: int
    ranking: tuple[RelayId, ...] = ()
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    @property
    def on_ids(self) -> list[RelayId]:
        return sorted(rid for rid, on in self.per_relay.items() if on)

    def to_dict(self) -> dict:
        return {
            "relays": {str(rid): on for rid, on in sorted(self.per_relay.items())},
            "rationale": self.rationale,
            "band": self.band,
            "max_on": self.max_on,
            "ranking": list(self.ranking),
            "created_at": self.created_at.isoformat(),
        }


def _contains(text: str, phrase: str) -> bool:
    return re.search(r"(?<!\w)" + re.escape(phrase) + r"(?!\w)", text) is not None


def _relay_terms(relay: RelayConfig) -> list[str]:
    terms = [relay.name, f"switch {relay.id}", f"relay {relay.id}", *relay.aliases]
    return sorted({t.strip().lower() for t in terms if t.strip()})


def _score_text(text: str, relays: Sequence[RelayConfig], weight: float, scores: dict[RelayId, float]) -> None:
    for clause in _CLAUSE_SPLIT.split(text.lower()):
        if not clause.strip():
            continue
        negative = any(_contains(clause, cue) for cue in _NEGATIVE_CUES)
        priority = not negative and any(_contains(clause, cue) for cue in _PRIORITY_CUES)
        for relay in relays:
            if not any(_contains(clause, term) for term in _relay_terms(relay)):
                continue
            if negative:
                scores[relay.id] -= weight
            elif priority:
                scores[relay.id] += 2 * weight
            else:
                scores[relay.id] += weight


def rank_relays(
    relays: Sequence[RelayConfig],
    usage_pattern: str = "",
    preferences: str = "",
) -> list[RelayId]:
    """Order relays from most to least essential.

    Mentions of a relay (by name, "switch N", "relay N" or an alias) raise its
    score, doubled next to a priority cue and negated next to a deprioritising
    cue. Preference text counts twice as much as the usage pattern. Ties, and
    the case where both texts are empty, fall back to ascending relay id.
    """
    ids = sorted(r.id for r in relays)
    if not usage_pattern.strip() and not preferences.strip():
        return ids

    scores: dict[RelayId, float] = {rid: 0.0 for rid in ids}
    _score_text(usage_pattern, relays, PATTERN_WEIGHT, scores)
    _score_text(preferences, relays, PREFERENCE_WEIGHT, scores)
    return sorted(ids, key=lambda rid: (-scores[rid], rid))


def _fmt(value: float) -> str:
    return f"{value:g}"


class AllocationPolicy:
    """Maps battery level, power, forecast and preferences to relay states."""

    def __init__(self, config: PolicyConfig, relays: Sequence[RelayConfig]) -> None:
        self._config = config
        self._relays = sorted(relays, key=lambda r: r.id)

    @property
    def relay_count(self) -> int:
        return len(self._relays)

    def select_band(self, battery: float, preferences: str = "") -> BandSelection:
        """Find the band for a battery level and its relay cap.

        Levels between two bands use the lower band's cap unless the
        preference text asks for comfort (and not conservation), in which case
        the upper band's cap applies.
        """
        n = self.relay_count
        level = min(max(battery, 0.0), 100.0)
        critical = self._config.critical_below_pct

        if level < critical:
            return BandSelection(
                label=CRITICAL_BAND,
                max_on=0,
                description=f"below {_fmt(critical)}%",
            )

        bands = self._config.bands
        for band in bands:
            if band.min_level <= level <= band.max_level:
                cap = n if band.max_on is None else min(band.max_on, n)
                return BandSelection(
                    label=band.label,
                    max_on=cap,
                    description=f"{_fmt(band.min_level)}-{_fmt(band.max_level)}%",
                )

        lower = next((b for b in reversed(bands) if b.max_level < level), None)
        upper = next((b for b in bands if b.min_level > level), None)
        lower_label = lower.label if lower else CRITICAL_BAND
        lower_cap = 0 if lower is None else (n if lower.max_on is None else min(lower.max_on, n))

        text = preferences.lower()
        wants_more = any(_contains(text, k.lower()) for k in self._config.gap_raise_keywords)
        wants_less = any(_contains(text, k.lower()) for k in self._config.gap_hold_keywords)

        if upper is not None and wants_more and not wants_less:
            upper_cap = n if upper.max_on is None else min(upper.max_on, n)
            return BandSelection(
                label=lower_label,
                max_on=max(lower_cap, upper_cap),
                description=f"between the {lower_label} and {upper.label} bands, raised to the {upper.label} cap by preferences",
                is_gap=True,
                raised=True,
            )

        between = f"between the {lower_label} and {upper.label} bands" if upper else f"above the {lower_label} band"
        return BandSelection(
            label=lower_label,
            max_on=lower_cap,
            description=f"{between}, using the {lower_label} cap",
            is_gap=True,
        )

    def decide(
        self,
        battery: float,
        power: float | None,
        forecast: Forecast | None,
        preferences: str = "",
    ) -> AllocationDecision:
        """Produce a decision covering every configured relay. Never raises."""
        n = self.relay_count
        selection = self.select_band(battery, preferences)
        pattern = forecast.usage_pattern_summary if forecast is not None else ""

        context = f"Power {_fmt(round(power, 1))} W" if power is not None else "Power unknown"
        if forecast is not None:
            context += f", predicted usage {_fmt(round(forecast.predicted_usage, 2))}"

        if selection.max_on == 0:
            per_relay = {r.id: False for r in self._relays}
            if selection.label == CRITICAL_BAND and not selection.is_gap:
                rationale = (
                    f"Battery at {_fmt(round(battery, 1))}% is in the critical band "
                    f"({selection.description}): all {n} relays OFF to protect the battery. {context}."
                )
            else:
                rationale = (
                    f"Battery at {_fmt(round(battery, 1))}% is {selection.description} "
                    f"(0 of {n} relays ON). {context}."
                )
            decision = AllocationDecision(
                per_relay=per_relay,
                rationale=rationale,
                band=selection.label,
                max_on=0,
                ranking=tuple(r.id for r in self._relays),
            )
            logger.info("Allocation: band=%s on=[] (%s)", selection.label, selection.description)
            return decision

        ranking = rank_relays(self._relays, pattern, preferences)
        chosen = set(ranking[: selection.max_on])
        per_relay = {r.id: r.id in chosen for r in self._relays}
        names = ", ".join(r.name for r in self._relays if r.id in chosen)

        if not pattern.strip() and not preferences.strip():
            ranked_by = "by relay id (no usage pattern or preferences given)"
        else:
            ranked_by = "ranked by usage pattern and preferences"

        if selection.is_gap:
            band_text = f"is {selection.description}"
        else:
            band_text = f"is in the {selection.label} band ({selection.description})"

        rationale = (
            f"Battery at {_fmt(round(battery, 1))}% {band_text}: turning on "
            f"{len(chosen)} of {n} relays ({names}) {ranked_by}. {context}."
        )
        logger.info(
            "Allocation: band=%s max_on=%d on=%s ranking=%s",
            selection.label, selection.max_on, sorted(chosen), ranking,
        )
        return AllocationDecision(
            per_relay=per_relay,
            rationale=rationale,
            band=selection.label,
            max_on=selection.max_on,
            ranking=tuple(ranking),
        )
