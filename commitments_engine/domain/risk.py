"""Risk badge engine - adherence of check-ins against the recurrence schedule"""

from datetime import datetime, timedelta

from commitments_engine.domain.models import CommitmentStatus, RiskBadge

FINAL_DAY = timedelta(hours=24)


def calculate_adherence(check_in_count: int, expected_occurrences: int) -> float:
    """
    Ratio of check-ins to expected occurrences.

    No expected occurrences yet means nothing was missed: fully on track.
    """
    if expected_occurrences <= 0:
        return 1.0
    return check_in_count / expected_occurrences


def determine_risk_badge(adherence: float, time_to_deadline: timedelta) -> RiskBadge:
    """
    Map adherence to a badge.

    Inside the final 24 hours the bands are stricter:
    - < 0.50: Critical
    - < 0.75: AtRisk
    - otherwise: OnTrack

    With a day or more left:
    - >= 0.90: OnTrack
    - >= 0.70: SlightlyBehind
    - >= 0.50: Behind
    - otherwise: AtRisk
    """
    if time_to_deadline < FINAL_DAY:
        if adherence < 0.5:
            return RiskBadge.CRITICAL
        elif adherence < 0.75:
            return RiskBadge.AT_RISK
        return RiskBadge.ON_TRACK

    if adherence >= 0.9:
        return RiskBadge.ON_TRACK
    elif adherence >= 0.7:
        return RiskBadge.SLIGHTLY_BEHIND
    elif adherence >= 0.5:
        return RiskBadge.BEHIND
    else:
        return RiskBadge.AT_RISK


def compute_risk_badge(commitment, now: datetime, cap: int | None = None) -> RiskBadge:
    """Main entry point: derive the badge for a commitment as of now"""
    if commitment.status == CommitmentStatus.DECISION_NEEDED:
        return RiskBadge.DECISION_NEEDED

    kwargs = {} if cap is None else {"cap": cap}
    expected = commitment.recurrence.count_occurrences_up_to(now, commitment.deadline_utc, **kwargs)
    adherence = calculate_adherence(len(commitment.check_ins), expected)
    return determine_risk_badge(adherence, commitment.deadline_utc - now)


def calculate_progress_percent(created_at: datetime, deadline: datetime, now: datetime) -> float:
    """Share of the created-to-deadline span already elapsed, 0..100 rounded to 2 places"""
    total = (deadline - created_at).total_seconds()
    if total <= 0:
        return 100.0
    elapsed = min(max((now - created_at).total_seconds(), 0.0), total)
    return round(min(100.0, elapsed / total * 100), 2)
