"""Human-readable insights derived from recurring themes"""

import logging
from collections.abc import Mapping, Sequence
from datetime import UTC, datetime

from journal_memory.models.entities import JournalEntity
from journal_memory.models.queue import EntityRef
from journal_memory.models.themes import (
    InsightType,
    PatternInsight,
    RecurringTheme,
    TemporalPattern,
    ThemeTrend,
    TimeRange,
)
from journal_memory.utils.text import extract_key_phrase

logger = logging.getLogger(__name__)

DAY_MS = 24 * 60 * 60 * 1000


def _describe(phrase: str, frequency: int) -> str:
    if frequency >= 10:
        return f'You frequently write about "{phrase}" ({frequency} times)'
    if frequency >= 5:
        return f'"{phrase}" is a recurring topic ({frequency} times)'
    return f'You\'ve mentioned "{phrase}" several times ({frequency} times)'


def insights_from_themes(
    themes: Sequence[RecurringTheme],
    texts: Mapping[EntityRef, str],
    key_phrase_length: int = 40,
) -> list[PatternInsight]:
    """
    Turn themes into insight sentences

    Each theme is named by the key phrase of its representative entity.
    Themes whose representative text is unavailable are skipped.

    Args:
        themes: Recurring themes, most frequent first
        texts: Entity -> text used for the key phrase
        key_phrase_length: Maximum key phrase length

    Returns:
        One insight per theme that could be named
    """
    insights: list[PatternInsight] = []

    for theme in themes:
        text = texts.get(theme.representative)
        if text is None:
            logger.debug(f"No text for representative {theme.representative}, skipping theme")
            continue

        phrase = extract_key_phrase(text, key_phrase_length)
        insights.append(
            PatternInsight(
                id=f"theme-{theme.id}",
                type=InsightType.RECURRING_THEME,
                description=_describe(phrase, theme.frequency),
                confidence=theme.strength,
                related=list(theme.members),
            )
        )

    return insights


def summary_from_themes(
    themes: Sequence[RecurringTheme],
    texts: Mapping[EntityRef, str],
    top_n: int = 5,
    key_phrase_length: int = 40,
) -> list[str]:
    """Short "<phrase> (<n>×)" lines for the top themes"""
    lines: list[str] = []
    for theme in themes[:top_n]:
        text = texts.get(theme.representative)
        if text is None:
            continue
        lines.append(f"{extract_key_phrase(text, key_phrase_length)} ({theme.frequency}×)")
    return lines


def _resolve(
    theme: RecurringTheme, entities: Mapping[EntityRef, JournalEntity]
) -> list[JournalEntity]:
    return [entities[ref] for ref in theme.members if ref in entities]


def detect_temporal_patterns(
    themes: Sequence[RecurringTheme],
    entities: Mapping[EntityRef, JournalEntity],
) -> list[TemporalPattern]:
    """
    Days on which each theme shows up

    Themes with fewer than two resolvable members are skipped.
    """
    patterns: list[TemporalPattern] = []

    for theme in themes:
        members = _resolve(theme, entities)
        if len(members) < 2:
            continue

        day_ids = sorted({m.day_id for m in members})
        timestamps = [m.timestamp for m in members]

        patterns.append(
            TemporalPattern(
                id=f"temporal-{theme.id}",
                day_ids=day_ids,
                time_range=TimeRange(start=min(timestamps), end=max(timestamps)),
                frequency=len(day_ids),
            )
        )

    return patterns


def analyze_theme_evolution(
    themes: Sequence[RecurringTheme],
    entities: Mapping[EntityRef, JournalEntity],
    window_days: int = 30,
    now: int | None = None,
) -> dict[str, ThemeTrend]:
    """
    Classify each theme as increasing, stable or decreasing

    Members are ordered by time and split in half. The later half is counted
    within the last window, the earlier half within twice the window.

    Args:
        themes: Themes to classify
        entities: Entity lookup for member timestamps
        window_days: Size of the recent window
        now: Reference time in epoch ms (default: current time)

    Returns:
        Theme id -> trend
    """
    now = now if now is not None else int(datetime.now(UTC).timestamp() * 1000)
    window_ms = window_days * DAY_MS
    trends: dict[str, ThemeTrend] = {}

    for theme in themes:
        members = sorted(_resolve(theme, entities), key=lambda m: m.timestamp)
        if len(members) < 4:
            trends[theme.id] = ThemeTrend.STABLE
            continue

        midpoint = len(members) // 2
        recent_count = sum(1 for m in members[midpoint:] if now - m.timestamp < window_ms)
        older_count = sum(1 for m in members[:midpoint] if now - m.timestamp < window_ms * 2)

        if recent_count > older_count * 1.5:
            trends[theme.id] = ThemeTrend.INCREASING
        elif recent_count < older_count * 0.5:
            trends[theme.id] = ThemeTrend.DECREASING
        else:
            trends[theme.id] = ThemeTrend.STABLE

    return trends
