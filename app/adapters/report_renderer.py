from __future__ import annotations

import os
from datetime import UTC, datetime
from html import escape
from pathlib import Path
from typing import Any

from app.domain.models import InspectionReport

REPORT_OUTPUT_DIR = Path(os.getenv("REPORT_OUTPUT_DIR", "logs/reports"))


def _cell(value: object) -> str:
    if value is None or value == "":
        return "-"
    return escape(str(value))


def _answer_text(answer: Any) -> str:
    if not isinstance(answer, dict):
        return _cell(answer)
    if answer.get("kind") == "photo":
        return f"<a href='{escape(str(answer.get('url', '')))}'>photo</a>"
    value = answer.get("value")
    if isinstance(value, bool):
        return "Yes" if value else "No"
    return _cell(value)


class HtmlReportRenderer:
    def __init__(self, output_dir: Path | None = None) -> None:
        self._output_dir = output_dir or REPORT_OUTPUT_DIR

    def render(self, report: InspectionReport) -> Path:
        self._output_dir.mkdir(parents=True, exist_ok=True)
        path = self._output_dir / f"{report.id}.html"
        path.write_text(self._render_html(report), encoding="utf-8")
        return path

    def _render_html(self, report: InspectionReport) -> str:
        snapshot = report.site_snapshot or {}
        analysis = report.analysis or {}
        response_rows = "\n".join(
            f"<tr><td>{escape(key)}</td><td>{_answer_text(answer)}</td></tr>"
            for key, answer in sorted(report.responses.items())
        )
        issue_items = "".join(f"<li>{escape(item)}</li>" for item in analysis.get("issues", []))
        summary_items = "".join(f"<li>{escape(item)}</li>" for item in analysis.get("summary", []))
        generated_at = datetime.now(UTC).isoformat()
        return (
            "<html><head><meta charset='utf-8'><title>Inspection Report</title></head><body>"
            f"<h1>Inspection Report: {_cell(snapshot.get('name'))}</h1>"
            f"<p>Report ID: {escape(report.id)}</p>"
            f"<p>Address: {_cell(snapshot.get('address'))}</p>"
            f"<p>Site Type: {_cell(snapshot.get('site_type'))}</p>"
            f"<p>Principal: {_cell(snapshot.get('principal_name'))}</p>"
            f"<p>Inspector: {_cell(report.submitter_name)} ({_cell(report.submitter_role)})</p>"
            f"<p>Inspection Date: {_cell(report.inspection_date)}</p>"
            f"<p>Submitted At: {_cell(report.submitted_at.isoformat())}</p>"
            f"<p>Generated At: {generated_at}</p>"
            f"<h2>Automatic Analysis: {_cell(analysis.get('flag'))}</h2>"
            f"<h3>Issues</h3><ul>{issue_items}</ul>"
            f"<h3>Summary</h3><ul>{summary_items}</ul>"
            "<h2>Responses</h2>"
            "<table border='1' cellpadding='6' cellspacing='0'>"
            "<thead><tr><th>Question</th><th>Answer</th></tr></thead>"
            f"<tbody>{response_rows}</tbody>"
            "</table>"
            "<h2>Observations</h2>"
            f"<p><strong>Strengths:</strong> {_cell(report.strengths)}</p>"
            f"<p><strong>Improvements:</strong> {_cell(report.improvements)}</p>"
            f"<p><strong>Recommendations:</strong> {_cell(report.recommendations)}</p>"
            "<h2>Review</h2>"
            f"<p>Tier-1: {_cell(report.tier1_decision)} by {_cell(report.tier1_signer_name)}"
            f" at {_cell(report.tier1_decided_at)}</p>"
            f"<p>Tier-2: {_cell(report.tier2_decision)} by {_cell(report.tier2_reviewer_name)}"
            f" at {_cell(report.tier2_decided_at)}</p>"
            f"<p>Final Status: {_cell(report.final_status)}</p>"
            "</body></html>"
        )
