"""Rule-based risk classification of submitted inspection reports.

Four independent checks vote red / yellow / green:

- geofence: great-circle distance between the inspector's captured position
  and the site's canonical position
- completeness: narrative fields and the questionnaire responses
- temporal sanity: inspection dated more than a day after submission
- content depth: combined narrative length

The overall flag is Red if any check voted red, else Yellow if any voted
yellow, else Green. ``analyze`` has no side effects; callers decide what a
Green flag implies for the report.
"""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from datetime import UTC, date, datetime, time, timedelta
from enum import StrEnum
from typing import Any

from app.domain.models import AnalysisFlag, AutomaticAnalysis, GeoPoint

EARTH_RADIUS_M = 6_371_000.0
GEOFENCE_RED_M = 1000.0
GEOFENCE_YELLOW_M = 200.0
FUTURE_DATE_TOLERANCE = timedelta(hours=24)
BRIEF_FEEDBACK_CHARS = 50


class Vote(StrEnum):
    RED = "red"
    YELLOW = "yellow"
    GREEN = "green"


@dataclass(frozen=True)
class AnalysisInput:
    submitted_at: datetime
    inspection_location: GeoPoint | None = None
    site_location: GeoPoint | None = None
    responses: dict[str, Any] = field(default_factory=dict)
    strengths: str | None = None
    improvements: str | None = None
    recommendations: str | None = None
    inspection_date: date | None = None


@dataclass
class _Tally:
    votes: list[Vote] = field(default_factory=list)
    issues: list[str] = field(default_factory=list)
    summary: list[str] = field(default_factory=list)

    def flag(self) -> AnalysisFlag:
        if Vote.RED in self.votes:
            return AnalysisFlag.RED
        if Vote.YELLOW in self.votes:
            return AnalysisFlag.YELLOW
        return AnalysisFlag.GREEN


def haversine_m(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    phi1 = math.radians(lat1)
    phi2 = math.radians(lat2)
    d_phi = math.radians(lat2 - lat1)
    d_lambda = math.radians(lon2 - lon1)
    a = math.sin(d_phi / 2) ** 2 + math.cos(phi1) * math.cos(phi2) * math.sin(d_lambda / 2) ** 2
    c = 2 * math.atan2(math.sqrt(a), math.sqrt(1 - a))
    return EARTH_RADIUS_M * c


def _round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def geofence_vote(distance_m: float) -> tuple[Vote, str | None]:
    rounded = _round_half_up(distance_m)
    if distance_m >= GEOFENCE_RED_M:
        return Vote.RED, f"Location mismatch: Inspector was {rounded}m away from school coordinates."
    if distance_m >= GEOFENCE_YELLOW_M:
        return Vote.YELLOW, f"Location warning: Inspector was {rounded}m away from school coordinates."
    return Vote.GREEN, None


def _is_complete(point: GeoPoint) -> bool:
    return point.latitude is not None and point.longitude is not None


def _check_geofence(data: AnalysisInput, tally: _Tally) -> None:
    if data.inspection_location is None or data.site_location is None:
        tally.votes.append(Vote.YELLOW)
        tally.issues.append("Missing location data for verification.")
        return
    if not (_is_complete(data.inspection_location) and _is_complete(data.site_location)):
        tally.votes.append(Vote.YELLOW)
        tally.issues.append("Incomplete location data for verification.")
        return
    distance = haversine_m(
        data.inspection_location.latitude,  # type: ignore[arg-type]
        data.inspection_location.longitude,  # type: ignore[arg-type]
        data.site_location.latitude,  # type: ignore[arg-type]
        data.site_location.longitude,  # type: ignore[arg-type]
    )
    vote, issue = geofence_vote(distance)
    tally.votes.append(vote)
    if issue is None:
        tally.summary.append("Location verification successful.")
    else:
        tally.issues.append(issue)


def _missing_fields(data: AnalysisInput) -> list[str]:
    missing: list[str] = []
    if not data.strengths:
        missing.append("Strengths")
    if not data.improvements:
        missing.append("Improvements")
    if not data.recommendations:
        missing.append("Recommendations")
    if not data.responses:
        missing.append("Questionnaire Responses")
    return missing


def _check_completeness(missing: list[str], tally: _Tally) -> None:
    if not missing:
        tally.votes.append(Vote.GREEN)
        tally.summary.append("All key fields filled.")
        return
    if "Questionnaire Responses" in missing:
        tally.votes.append(Vote.RED)
        tally.issues.append("Critical: Missing questionnaire responses.")
        return
    tally.votes.append(Vote.YELLOW)
    tally.issues.append(f"Incomplete qualitative fields: {', '.join(missing)}.")


def _check_temporal(data: AnalysisInput, tally: _Tally) -> None:
    # No lower bound: old inspection dates pass.
    if data.inspection_date is None:
        return
    inspected_at = datetime.combine(data.inspection_date, time.min, tzinfo=UTC)
    submitted_at = data.submitted_at if data.submitted_at.tzinfo else data.submitted_at.replace(tzinfo=UTC)
    if inspected_at > submitted_at + FUTURE_DATE_TOLERANCE:
        tally.votes.append(Vote.RED)
        tally.issues.append("Invalid Inspection Date: Date is in the future.")


def _check_content_depth(data: AnalysisInput, missing: list[str], tally: _Tally) -> None:
    text = " ".join(
        [data.strengths or "", data.improvements or "", data.recommendations or ""],
    )
    if len(text) < BRIEF_FEEDBACK_CHARS and not missing:
        tally.votes.append(Vote.YELLOW)
        tally.issues.append("Qualitative feedback is very brief. More detailed reporting is recommended.")
    elif len(text) > BRIEF_FEEDBACK_CHARS:
        tally.summary.append("Qualitative feedback provided is detailed.")


def analyze(data: AnalysisInput) -> AutomaticAnalysis:
    tally = _Tally()
    _check_geofence(data, tally)
    missing = _missing_fields(data)
    _check_completeness(missing, tally)
    _check_temporal(data, tally)
    _check_content_depth(data, missing, tally)
    return AutomaticAnalysis(
        flag=tally.flag(),
        issues=tally.issues,
        summary=tally.summary,
        verified_at=data.submitted_at,
    )


def pending_analysis(verified_at: datetime, reason: str) -> AutomaticAnalysis:
    return AutomaticAnalysis(
        flag=AnalysisFlag.PENDING,
        issues=[f"Automatic analysis unavailable: {reason}"],
        summary=[],
        verified_at=verified_at,
    )
