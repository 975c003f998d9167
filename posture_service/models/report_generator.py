"""
POSTUREIQ Posture Service - Report Generator

Structured progress reports built from a ComparisonResult, plus an HTML
projection rendered with Jinja2. The structured report is the source of
truth; the HTML can be regenerated from it at any time.
"""

import logging
import pathlib
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from jinja2 import Environment, FileSystemLoader, select_autoescape

from .comparison_engine import ChangeStatus, ComparisonResult, DeviationComparison
from .deviation_analyzer import AssessmentAnalysis, recommendations_for, summarize_deviations
from .entities import Assessment, as_utc
from .landmark_catalog import MeasurementUnit
from .severity import max_severity

logger = logging.getLogger(__name__)

TEMPLATES_DIR = pathlib.Path(__file__).resolve().parent.parent / "templates"

env = Environment(
    loader=FileSystemLoader(str(TEMPLATES_DIR)),
    autoescape=select_autoescape(["html", "xml"]),
)

DISCLAIMER = (
    "This report is generated based on visual posture analysis and AI-assisted landmark detection. "
    "Measurements should be interpreted in conjunction with clinical examination. This report is "
    "for clinical reference only and should not be used as the sole basis for diagnosis or treatment."
)


# ═══════════════════════════════════════════════════════════════════════════════
# INPUT TYPES
# ═══════════════════════════════════════════════════════════════════════════════

@dataclass
class ReportIdentities:
    """Display strings supplied by the caller; nothing here is looked up."""
    patient_name: str
    practitioner_name: str
    organization_name: str
    patient_mrn: Optional[str] = None
    patient_dob: Optional[str] = None
    practitioner_title: Optional[str] = None
    practitioner_credentials: Optional[str] = None
    organization_address: Optional[str] = None
    organization_phone: Optional[str] = None

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ReportIdentities":
        known = set(cls.__dataclass_fields__)
        return cls(**{k: v for k, v in data.items() if k in known})


@dataclass
class TreatmentGoal:
    goal: str
    baseline: Optional[float] = None
    target: Optional[float] = None
    current: Optional[float] = None
    unit: str = ""

    @property
    def progress_percent(self) -> Optional[float]:
        """Share of the baseline -> target distance covered so far (0-100)."""
        if None in (self.baseline, self.target, self.current) or self.baseline == self.target:
            return None
        progress = (self.baseline - self.current) / (self.baseline - self.target) * 100
        return round(max(0.0, min(100.0, progress)), 1)

    def to_dict(self) -> dict:
        return {
            "goal": self.goal,
            "baseline": self.baseline,
            "target": self.target,
            "current": self.current,
            "unit": self.unit,
            "progress": self.progress_percent,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "TreatmentGoal":
        return cls(
            goal=data["goal"],
            baseline=data.get("baseline"),
            target=data.get("target"),
            current=data.get("current"),
            unit=data.get("unit", ""),
        )


# ═══════════════════════════════════════════════════════════════════════════════
# FORMATTING HELPERS
# ═══════════════════════════════════════════════════════════════════════════════

def format_measurement(value: Optional[float], unit: MeasurementUnit) -> str:
    if value is None:
        return "N/A"
    return f"{value:.1f}{MeasurementUnit(unit).symbol}"


def format_change(change: Optional[float], unit: MeasurementUnit) -> str:
    if change is None:
        return "N/A"
    sign = "+" if change > 0 else ""
    return f"{sign}{change:.1f}{MeasurementUnit(unit).symbol}"


def format_date(value: datetime) -> str:
    return value.strftime("%B %d, %Y")


def _change_text(comparison: DeviationComparison) -> str:
    if comparison.status in (ChangeStatus.NEW, ChangeStatus.RESOLVED):
        return comparison.status.label
    return format_change(comparison.value_delta, comparison.unit)


def _finding_label(comparison: DeviationComparison) -> str:
    if comparison.side:
        return f"{comparison.name} ({comparison.side})"
    return comparison.name


# ═══════════════════════════════════════════════════════════════════════════════
# COMPARISON REPORT
# ═══════════════════════════════════════════════════════════════════════════════

def _executive_summary(comparison: ComparisonResult) -> str:
    progress = comparison.overall_progress
    return (
        "This posture comparison report documents the changes observed between assessments conducted on "
        f"{format_date(comparison.previous.date)} and {format_date(comparison.current.date)}, "
        f"a period of {comparison.days_between} days.\n\n"
        f"{progress.summary}\n\n"
        f"Overall Progress Score: {progress.improvement_score}/100\n"
        f"Previous Overall Severity: {progress.previous_severity.value}\n"
        f"Current Overall Severity: {progress.current_severity.value}"
    )


def build_comparison_report(
    comparison: ComparisonResult,
    identities: ReportIdentities,
    goals: Optional[List[TreatmentGoal]] = None,
    generated_at: Optional[datetime] = None,
) -> Dict[str, Any]:
    """Structured, serializable comparison report."""
    generated_at = as_utc(generated_at) or datetime.now(timezone.utc)
    progress = comparison.overall_progress

    view_summaries = []
    measurement_table = []
    for view_comparison in comparison.view_comparisons:
        if not view_comparison.comparable:
            continue
        view_summaries.append({
            "view": view_comparison.view.value,
            "view_label": view_comparison.view.label,
            "previous_image_url": view_comparison.previous_image_url,
            "current_image_url": view_comparison.current_image_url,
            "findings": [
                {
                    "finding": _finding_label(c),
                    "change": _change_text(c),
                    "status": c.status.value,
                    "status_label": c.status.label,
                }
                for c in view_comparison.comparisons
            ],
        })
        for c in view_comparison.comparisons:
            reference = c.reference
            symbol = reference.measurement_unit.symbol
            measurement_table.append({
                "measurement": _finding_label(c),
                "view": view_comparison.view.label,
                "previous_value": format_measurement(c.previous.measurement_value if c.previous else None, c.unit),
                "current_value": format_measurement(c.current.measurement_value if c.current else None, c.unit),
                "change": format_change(c.value_delta, c.unit),
                "normal_range": f"{reference.normal_range_min:g} - {reference.normal_range_max:g}{symbol}",
                "status": c.status.value,
                "status_label": c.status.label,
            })

    counts = progress.status_counts
    progress_charts = [
        {
            "title": "Overall Progress",
            "type": "gauge",
            "data": {"value": progress.improvement_score, "min": 0, "max": 100, "label": "Improvement Score"},
        },
        {
            "title": "Deviation Changes",
            "type": "bar",
            "data": {status.value: counts.get(status.value, 0) for status in ChangeStatus},
        },
    ]

    practitioner_line = identities.practitioner_name
    if identities.practitioner_credentials:
        practitioner_line = f"{practitioner_line}, {identities.practitioner_credentials}"

    report = {
        "title": f"Posture Comparison Report - {identities.patient_name}",
        "generated_at": generated_at.isoformat(),
        "patient_info": {
            "name": identities.patient_name,
            "mrn": identities.patient_mrn,
            "dob": identities.patient_dob,
        },
        "practitioner_info": {
            "name": identities.practitioner_name,
            "title": identities.practitioner_title,
            "credentials": identities.practitioner_credentials,
        },
        "organization_info": {
            "name": identities.organization_name,
            "address": identities.organization_address,
            "phone": identities.organization_phone,
        },
        "comparison_dates": {
            "previous": comparison.previous.date.isoformat(),
            "current": comparison.current.date.isoformat(),
            "previous_display": format_date(comparison.previous.date),
            "current_display": format_date(comparison.current.date),
            "days_between": comparison.days_between,
        },
        "improvement_score": progress.improvement_score,
        "overall_severity": {
            "previous": progress.previous_severity.value,
            "current": progress.current_severity.value,
        },
        "executive_summary": _executive_summary(comparison),
        "narrative": progress.summary,
        "view_summaries": view_summaries,
        "measurement_table": measurement_table,
        "progress_charts": progress_charts,
        "recommendations": list(comparison.recommendations),
        "treatment_goals": [goal.to_dict() for goal in goals or []],
        "signature_block": {
            "practitioner": practitioner_line,
            "title": identities.practitioner_title,
            "organization": identities.organization_name,
            "date": format_date(generated_at),
        },
        "disclaimer": DISCLAIMER,
    }
    return report


def render_report_html(report: Dict[str, Any]) -> str:
    """HTML projection of a structured comparison report."""
    template = env.get_template("comparison_report.html")
    return template.render(report=report)


def build_report(
    comparison: ComparisonResult,
    identities,
    goals: Optional[List] = None,
    generated_at: Optional[datetime] = None,
) -> Dict[str, Any]:
    """Structured report plus its HTML rendering."""
    if isinstance(identities, dict):
        identities = ReportIdentities.from_dict(identities)
    goals = [g if isinstance(g, TreatmentGoal) else TreatmentGoal.from_dict(g) for g in goals or []]

    report = build_comparison_report(comparison, identities, goals, generated_at)
    html = render_report_html(report)
    logger.info(f"📝 Report generated for {identities.patient_name} ({len(report['measurement_table'])} measurements)")
    return {"report": report, "html": html}


# ═══════════════════════════════════════════════════════════════════════════════
# SINGLE ASSESSMENT REPORT
# ═══════════════════════════════════════════════════════════════════════════════

def build_assessment_report(
    assessment: Assessment,
    patient_name: str,
    practitioner_name: str,
    analysis: Optional[AssessmentAnalysis] = None,
) -> Dict[str, Any]:
    """Deviation report for one assessment (no comparison)."""
    if analysis is not None:
        deviations = analysis.deviations
        overall = analysis.overall_severity
        summary = analysis.summary
        views = [v.value for v in analysis.analyzed_views]
        recommendations = analysis.recommendations
    else:
        deviations = assessment.deviations
        overall = assessment.overall_severity or max_severity(d.severity for d in deviations)
        summary = assessment.summary or summarize_deviations(deviations)
        views = list(dict.fromkeys(d.view.value for d in deviations))
        recommendations = recommendations_for(deviations)

    return {
        "patient_name": patient_name,
        "assessment_date": assessment.assessment_date.isoformat(),
        "practitioner_name": practitioner_name,
        "deviations": [d.to_dict() for d in deviations],
        "overall_severity": overall.value,
        "summary_notes": summary,
        "recommendations": list(recommendations),
        "views_analyzed": views,
    }
