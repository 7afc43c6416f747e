"""
Report Renderers

Turn a ReportDocument into file bytes. PDF is drawn directly on a reportlab
canvas, JSON keeps the camelCase keys existing API consumers read, CSV has
one row per issue.
"""
import csv
import io
import json
from typing import Callable, Dict

from reportlab.lib.pagesizes import letter
from reportlab.lib.units import inch
from reportlab.pdfgen import canvas

from app.features.reports.models.report import ReportFormat
from app.features.reports.schemas.report_document import ReportDocument

CSV_COLUMNS = [
    "page_url",
    "rule_id",
    "impact",
    "wcag_criteria",
    "description",
    "help",
    "help_url",
    "selector",
    "html",
]


def _iso(value):
    return value.isoformat() if value else None


def render_json(doc: ReportDocument) -> bytes:
    payload = {
        "version": doc.version,
        "generatedAt": _iso(doc.generated_at),
        "tool": {"name": doc.tool_name},
        doc.subject_kind: {
            "id": doc.subject_id,
            "url": doc.url,
            "wcagLevel": doc.wcag_level,
            "completedAt": _iso(doc.completed_at),
            "duration": doc.duration_ms,
            **({"counts": doc.batch_counts} if doc.batch_counts else {}),
        },
        "summary": {
            "totalIssues": doc.total_issues,
            "bySeverity": doc.by_severity.model_dump(),
            "passed": doc.passed,
        },
        "disclaimer": doc.disclaimer,
        "pages": [
            {
                "scanId": page.scan_id,
                "url": page.url,
                "status": page.status,
                "totalIssues": page.total_issues,
                "bySeverity": page.by_severity.model_dump(),
                "passed": page.passed,
            }
            for page in doc.pages
        ],
        "issues": [
            {
                "id": issue.id,
                "pageUrl": issue.page_url,
                "ruleId": issue.rule_id,
                "impact": issue.impact,
                "description": issue.description,
                "help": issue.help,
                "helpUrl": issue.help_url,
                "wcagCriteria": issue.wcag_criteria,
                "element": {"selector": issue.selector, "html": issue.html},
            }
            for issue in doc.issues
        ],
    }
    if doc.coverage is not None:
        payload["criteriaCoverage"] = {
            "verified": doc.coverage.verified,
            "passed": doc.coverage.passed,
            "failed": doc.coverage.failed,
            "notTested": doc.coverage.not_tested,
        }
    return json.dumps(payload, indent=2, ensure_ascii=False).encode("utf-8")


def render_csv(doc: ReportDocument) -> bytes:
    buffer = io.StringIO()
    writer = csv.DictWriter(buffer, fieldnames=CSV_COLUMNS)
    writer.writeheader()
    for issue in doc.issues:
        writer.writerow(
            {
                "page_url": issue.page_url,
                "rule_id": issue.rule_id,
                "impact": issue.impact,
                "wcag_criteria": ";".join(issue.wcag_criteria),
                "description": issue.description,
                "help": issue.help,
                "help_url": issue.help_url,
                "selector": issue.selector,
                "html": issue.html,
            }
        )
    # BOM so spreadsheet apps detect UTF-8
    return buffer.getvalue().encode("utf-8-sig")


def _wrap_text(c: canvas.Canvas, text: str, x: float, y: float, max_width: float, size=10, leading=12) -> float:
    c.setFont("Helvetica", size)
    line = ""
    for word in (text or "").split():
        candidate = (line + " " + word).strip()
        if c.stringWidth(candidate, "Helvetica", size) <= max_width:
            line = candidate
        else:
            c.drawString(x, y, line)
            y -= leading
            line = word
    if line:
        c.drawString(x, y, line)
        y -= leading
    return y


def render_pdf(doc: ReportDocument) -> bytes:
    buf = io.BytesIO()
    c = canvas.Canvas(buf, pagesize=letter)
    c.setTitle(f"Accessibility report {doc.subject_id}")
    width, height = letter
    margin = 0.75 * inch
    x = margin
    y = height - margin
    max_w = width - 2 * margin

    def ensure_space(current_y: float) -> float:
        if current_y < 1.2 * inch:
            c.showPage()
            return height - margin
        return current_y

    title = "Batch Accessibility Report" if doc.subject_kind == "batch" else "Accessibility Report"
    c.setFont("Helvetica-Bold", 18)
    c.drawString(x, y, f"{doc.tool_name}: {title}")
    y -= 22

    c.setFont("Helvetica", 10)
    y = _wrap_text(c, f"URL: {doc.url}", x, y, max_w)
    c.drawString(x, y, f"WCAG level: {doc.wcag_level} | Generated (UTC): {doc.generated_at:%Y-%m-%d %H:%M}")
    y -= 12
    if doc.batch_counts:
        c.drawString(
            x, y,
            f"Pages: {doc.batch_counts['total_urls']} | Completed: {doc.batch_counts['completed']} | "
            f"Failed: {doc.batch_counts['failed']}",
        )
        y -= 12
    y -= 6

    c.setFont("Helvetica-Bold", 12)
    c.drawString(x, y, "Summary")
    y -= 14
    sev = doc.by_severity
    c.setFont("Helvetica", 10)
    c.drawString(
        x, y,
        f"Issues: {doc.total_issues} | Critical: {sev.critical} | Serious: {sev.serious} | "
        f"Moderate: {sev.moderate} | Minor: {sev.minor} | Passed checks: {doc.passed}",
    )
    y -= 14
    if doc.coverage is not None:
        cov = doc.coverage
        c.drawString(
            x, y,
            f"WCAG criteria verified: {cov.verified} | Passed: {cov.passed} | Failed: {cov.failed} | "
            f"Not tested: {cov.not_tested}",
        )
        y -= 14
    y = _wrap_text(c, doc.disclaimer, x, y, max_w, size=9, leading=11)
    y -= 10

    if len(doc.pages) > 1:
        c.setFont("Helvetica-Bold", 12)
        c.drawString(x, y, "Pages")
        y -= 14
        for page in doc.pages:
            y = ensure_space(y)
            y = _wrap_text(
                c, f"{page.url} ({page.status}): {page.total_issues} issues", x, y, max_w, size=9, leading=11
            )
        y -= 10

    y = ensure_space(y)
    c.setFont("Helvetica-Bold", 12)
    c.drawString(x, y, "Issues")
    y -= 16

    if not doc.issues:
        c.setFont("Helvetica", 11)
        c.drawString(x, y, "No automated issues were found.")
        c.save()
        return buf.getvalue()

    for issue in doc.issues:
        y = ensure_space(y)
        c.setFont("Helvetica-Bold", 10)
        c.drawString(x, y, f"[{issue.impact.upper()}] {issue.rule_id}")
        y -= 12
        y = _wrap_text(c, issue.description, x, y, max_w, size=9, leading=11)
        if issue.wcag_criteria:
            y = _wrap_text(c, f"WCAG: {', '.join(issue.wcag_criteria)}", x, y, max_w, size=9, leading=11)
        y = _wrap_text(c, f"Element: {issue.selector}", x, y, max_w, size=9, leading=11)
        if doc.subject_kind == "batch":
            y = _wrap_text(c, f"Page: {issue.page_url}", x, y, max_w, size=9, leading=11)
        y = _wrap_text(c, f"How to fix: {issue.help} ({issue.help_url})", x, y, max_w, size=9, leading=11)
        y -= 6

    c.save()
    return buf.getvalue()


RENDERERS: Dict[ReportFormat, Callable[[ReportDocument], bytes]] = {
    ReportFormat.PDF: render_pdf,
    ReportFormat.JSON: render_json,
    ReportFormat.CSV: render_csv,
}


def render_report(doc: ReportDocument, fmt: ReportFormat) -> bytes:
    return RENDERERS[fmt](doc)
