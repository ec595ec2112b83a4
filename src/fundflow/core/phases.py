"""Phase resolution — which phase a funding round is in, purely from its time windows.

Resolution never raises. Windows are checked independently against ``now``;
contiguity is the intended configuration but is not assumed. Malformed windows
are rejected at creation time by ``validate_phase_windows``.
"""

from __future__ import annotations

from collections.abc import Mapping
from datetime import UTC, datetime

from fundflow.core.errors import ConfigurationError
from fundflow.models.funding import (
    WINDOW_ORDER,
    WINDOW_PHASES,
    FundingRound,
    FundingRoundPhase,
    NamedPhaseWindow,
    PhaseResolution,
    PhaseWindow,
)


def _aware(value: datetime) -> datetime:
    """Naive datetimes are read as UTC so mixed inputs still compare."""
    return value if value.tzinfo is not None else value.replace(tzinfo=UTC)


def _configured(windows: Mapping[str, PhaseWindow | None]) -> list[tuple[str, PhaseWindow]]:
    """Configured windows in temporal order. Unknown names and missing windows are skipped."""
    return [
        (name, PhaseWindow(start_date=_aware(w.start_date), end_date=_aware(w.end_date)))
        for name in WINDOW_ORDER
        if (w := windows.get(name)) is not None
    ]


def resolve_phase(
    now: datetime,
    end_date: datetime,
    windows: Mapping[str, PhaseWindow | None],
    start_date: datetime | None = None,
) -> FundingRoundPhase:
    """Map ``now`` to exactly one phase.

    Args:
        now: The instant to resolve.
        end_date: End of the round; strictly after it the round is COMPLETED.
        windows: Phase windows keyed by ``submission``/``consideration``/
            ``deliberation``/``voting``. Any may be ``None``.
        start_date: Start of the round. When absent, the earliest configured
            window start stands in for it.

    Returns:
        UPCOMING before the round starts, COMPLETED after it ends, the phase of
        the first window containing ``now``, or BETWEEN_PHASES otherwise.
    """
    now = _aware(now)
    end_date = _aware(end_date)
    configured = _configured(windows)
    if start_date is not None:
        start_date = _aware(start_date)
    elif configured:
        start_date = min(w.start_date for _, w in configured)
    if start_date is not None and now < start_date:
        return FundingRoundPhase.UPCOMING
    if now > end_date:
        return FundingRoundPhase.COMPLETED
    for name, window in configured:
        if window.contains(now):
            return WINDOW_PHASES[name]
    return FundingRoundPhase.BETWEEN_PHASES


def previous_and_next_windows(
    now: datetime,
    windows: Mapping[str, PhaseWindow | None],
) -> tuple[NamedPhaseWindow | None, NamedPhaseWindow | None]:
    """Nearest previous window (highest end <= now) and next window (lowest start > now)."""
    now = _aware(now)
    previous: tuple[str, PhaseWindow] | None = None
    upcoming: tuple[str, PhaseWindow] | None = None
    for name, window in _configured(windows):
        if window.end_date <= now and (previous is None or window.end_date > previous[1].end_date):
            previous = (name, window)
        if window.start_date > now and (
            upcoming is None or window.start_date < upcoming[1].start_date
        ):
            upcoming = (name, window)

    def _named(entry: tuple[str, PhaseWindow] | None) -> NamedPhaseWindow | None:
        if entry is None:
            return None
        name, window = entry
        return NamedPhaseWindow(
            phase=WINDOW_PHASES[name],
            start_date=window.start_date,
            end_date=window.end_date,
        )

    return _named(previous), _named(upcoming)


def resolve_round(funding_round: FundingRound, now: datetime) -> PhaseResolution:
    """Resolve a round's phase; neighbours are filled in only when between phases."""
    windows = funding_round.windows()
    phase = resolve_phase(now, funding_round.end_date, windows, funding_round.start_date)
    if phase != FundingRoundPhase.BETWEEN_PHASES:
        return PhaseResolution(phase=phase)
    previous, upcoming = previous_and_next_windows(now, windows)
    return PhaseResolution(phase=phase, previous_phase=previous, next_phase=upcoming)


def validate_phase_windows(
    start_date: datetime,
    end_date: datetime,
    windows: Mapping[str, PhaseWindow | None],
) -> None:
    """Reject a round whose dates run backwards. Raises ConfigurationError."""
    start_date = _aware(start_date)
    end_date = _aware(end_date)
    if end_date < start_date:
        raise ConfigurationError(
            f"funding round ends ({end_date.isoformat()}) before it starts "
            f"({start_date.isoformat()})"
        )
    unknown = set(windows) - set(WINDOW_ORDER)
    if unknown:
        raise ConfigurationError(f"unknown phase windows: {sorted(unknown)}")
    for name, window in _configured(windows):
        if window.end_date < window.start_date:
            raise ConfigurationError(
                f"{name} window ends ({window.end_date.isoformat()}) before it starts "
                f"({window.start_date.isoformat()})"
            )
