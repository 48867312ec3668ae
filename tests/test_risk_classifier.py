from __future__ import annotations

import math
from datetime import UTC, date, datetime, timedelta

import pytest

from app.domain.models import AnalysisFlag, BooleanAnswer, GeoPoint
from app.domain.risk_classifier import (
    EARTH_RADIUS_M,
    AnalysisInput,
    Vote,
    analyze,
    geofence_vote,
    haversine_m,
    pending_analysis,
)

SITE = GeoPoint(latitude=40.0, longitude=-75.0)
SUBMITTED_AT = datetime(2026, 3, 10, 9, 30, tzinfo=UTC)
METERS_PER_DEGREE_LAT = EARTH_RADIUS_M * math.pi / 180


def _north_of_site(meters: float) -> GeoPoint:
    return GeoPoint(latitude=SITE.latitude + meters / METERS_PER_DEGREE_LAT, longitude=SITE.longitude)


def _input(**overrides: object) -> AnalysisInput:
    values: dict[str, object] = {
        "submitted_at": SUBMITTED_AT,
        "inspection_location": _north_of_site(50),
        "site_location": SITE,
        "responses": {"toilets_clean": BooleanAnswer(value=True)},
        "strengths": "Classrooms were orderly and attendance registers were up to date for all grades.",
        "improvements": "Drinking water storage needs covering and the kitchen floor needs repair.",
        "recommendations": "Schedule a follow-up visit after the water tank is replaced next term.",
        "inspection_date": SUBMITTED_AT.date(),
    }
    values.update(overrides)
    return AnalysisInput(**values)  # type: ignore[arg-type]


def test_haversine_same_point_is_zero() -> None:
    assert haversine_m(40.0, -75.0, 40.0, -75.0) == 0.0
    assert geofence_vote(0.0) == (Vote.GREEN, None)


@pytest.mark.parametrize(
    ("distance", "expected"),
    [
        (199.99, Vote.GREEN),
        (200.0, Vote.YELLOW),
        (999.99, Vote.YELLOW),
        (1000.0, Vote.RED),
        (25_000.0, Vote.RED),
    ],
)
def test_geofence_thresholds(distance: float, expected: Vote) -> None:
    vote, _issue = geofence_vote(distance)
    assert vote == expected


def test_clean_report_is_green_and_deterministic() -> None:
    data = _input()
    first = analyze(data)
    second = analyze(data)

    assert first == second
    assert first.flag == AnalysisFlag.GREEN
    assert first.issues == []
    assert first.summary == [
        "Location verification successful.",
        "All key fields filled.",
        "Qualitative feedback provided is detailed.",
    ]
    assert first.verified_at == SUBMITTED_AT


def test_far_inspector_is_red_with_rounded_distance() -> None:
    result = analyze(_input(inspection_location=_north_of_site(1500)))

    assert result.flag == AnalysisFlag.RED
    assert "Location mismatch: Inspector was 1500m away from school coordinates." in result.issues


def test_nearby_but_outside_radius_is_yellow() -> None:
    result = analyze(_input(inspection_location=_north_of_site(450)))

    assert result.flag == AnalysisFlag.YELLOW
    assert result.issues == ["Location warning: Inspector was 450m away from school coordinates."]


def test_missing_and_incomplete_location_vote_yellow() -> None:
    missing = analyze(_input(inspection_location=None))
    incomplete = analyze(_input(site_location=GeoPoint(latitude=40.0)))

    assert missing.flag == AnalysisFlag.YELLOW
    assert "Missing location data for verification." in missing.issues
    assert incomplete.flag == AnalysisFlag.YELLOW
    assert "Incomplete location data for verification." in incomplete.issues


def test_empty_responses_are_critical() -> None:
    result = analyze(_input(responses={}))

    assert result.flag == AnalysisFlag.RED
    assert "Critical: Missing questionnaire responses." in result.issues


def test_missing_narrative_fields_are_listed() -> None:
    result = analyze(_input(improvements="", recommendations=None))

    assert result.flag == AnalysisFlag.YELLOW
    assert "Incomplete qualitative fields: Improvements, Recommendations." in result.issues
    assert not any("very brief" in issue for issue in result.issues)


def test_brief_feedback_is_yellow_when_fields_present() -> None:
    result = analyze(_input(strengths="Good.", improvements="None.", recommendations="Keep going."))

    assert result.flag == AnalysisFlag.YELLOW
    assert result.issues == ["Qualitative feedback is very brief. More detailed reporting is recommended."]


def test_future_inspection_date_is_red() -> None:
    result = analyze(_input(inspection_date=(SUBMITTED_AT + timedelta(days=3)).date()))

    assert result.flag == AnalysisFlag.RED
    assert "Invalid Inspection Date: Date is in the future." in result.issues


def test_next_day_inspection_date_is_tolerated() -> None:
    result = analyze(_input(inspection_date=(SUBMITTED_AT + timedelta(days=1)).date()))

    assert result.flag == AnalysisFlag.GREEN


def test_old_inspection_date_passes() -> None:
    result = analyze(_input(inspection_date=date(2019, 1, 1)))

    assert result.flag == AnalysisFlag.GREEN


def test_pending_analysis_is_neutral() -> None:
    result = pending_analysis(SUBMITTED_AT, "ZeroDivisionError")

    assert result.flag == AnalysisFlag.PENDING
    assert result.issues == ["Automatic analysis unavailable: ZeroDivisionError"]
