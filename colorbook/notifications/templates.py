"""Email templates for batch generation outcomes.

Email HTML must be table-based and rely on inline styles for compatibility with major clients.
Placeholders use {{name}} syntax and are HTML-escaped in the HTML body.
"""

from __future__ import annotations

import html
import re
from dataclasses import dataclass
from typing import Any

_PLACEHOLDER_RE = re.compile(r"\{\{\s*([a-zA-Z0-9_]+)\s*\}\}")

_HTML_SHELL = """<table role="presentation" width="100%" cellpadding="0" cellspacing="0" style="background-color:#f6f6f6;padding:24px 0;">
  <tr>
    <td align="center">
      <table role="presentation" width="560" cellpadding="0" cellspacing="0" style="background-color:#ffffff;border-radius:8px;padding:32px;font-family:Arial,Helvetica,sans-serif;color:#222222;">
        <tr><td style="font-size:20px;font-weight:bold;padding-bottom:16px;">{heading}</td></tr>
{rows}
      </table>
    </td>
  </tr>
</table>
"""

_HTML_ROW = '        <tr><td style="font-size:15px;line-height:22px;padding-bottom:8px;">{text}</td></tr>'


@dataclass(frozen=True)
class EmailTemplate:
  """Subject, body text and HTML for one notification kind."""

  template_id: str
  subject_template: str
  text_template: str
  html_template: str
  required_placeholders: frozenset[str]


def _html(heading: str, *rows: str) -> str:
  return _HTML_SHELL.format(heading=heading, rows="\n".join(_HTML_ROW.format(text=row) for row in rows))


TEMPLATES: dict[str, EmailTemplate] = {
  "generation_completed_v1": EmailTemplate(
    template_id="generation_completed_v1",
    subject_template="Batch generation complete - {{completed_count}} pages ready!",
    text_template="Your coloring book pages are ready.\n\nPages generated: {{completed_count}}\n{{failed_line}}\nOpen your book to review the new pages.\n",
    html_template=_html("Your coloring book pages are ready", "Pages generated: <strong>{{completed_count}}</strong>", "{{failed_line}}", "Open your book to review the new pages."),
    required_placeholders=frozenset({"completed_count", "failed_line"}),
  ),
  "generation_stopped_v1": EmailTemplate(
    template_id="generation_stopped_v1",
    subject_template="Batch generation stopped - {{completed_count}} pages completed",
    text_template="Your batch generation stopped early: {{reason}}.\n\nPages completed: {{completed_count}}\nPages failed: {{failed_count}}\n\nPlease check your credits or usage limits before starting another batch.\n",
    html_template=_html(
      "Your batch generation stopped early",
      "Reason: {{reason}}",
      "Pages completed: <strong>{{completed_count}}</strong>",
      "Pages failed: {{failed_count}}",
      "Please check your credits or usage limits before starting another batch.",
    ),
    required_placeholders=frozenset({"completed_count", "failed_count", "reason"}),
  ),
}


def render_email_template(*, template_id: str, placeholders: dict[str, Any]) -> tuple[str, str, str]:
  """Render subject/text/html for a template id using escaped placeholders."""
  template = TEMPLATES.get(template_id)
  if template is None:
    raise ValueError(f"Unknown notification template: {template_id}")
  missing = sorted(template.required_placeholders - set(placeholders.keys()))
  if missing:
    raise ValueError(f"Missing placeholders for template '{template_id}': {', '.join(missing)}")

  subject = _render_text(template.subject_template, placeholders=placeholders, escape_html=False)
  text_payload = _render_text(template.text_template, placeholders=placeholders, escape_html=False)
  html_payload = _render_text(template.html_template, placeholders=placeholders, escape_html=True)
  return subject, text_payload, html_payload


def _render_text(raw_template: str, *, placeholders: dict[str, Any], escape_html: bool) -> str:
  def _replace(match: re.Match[str]) -> str:
    value = placeholders.get(match.group(1), "")
    rendered = str(value) if value is not None else ""
    if escape_html:
      return html.escape(rendered, quote=True)
    return rendered

  return _PLACEHOLDER_RE.sub(_replace, raw_template)
