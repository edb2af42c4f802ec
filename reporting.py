"""
Structured reporting.

stdout carries one JSON record per event so a calling process can parse
progress without scraping logs; the final line is the WorkflowResult.
Human-readable logging goes to stderr through the logging module.
"""

from __future__ import annotations

import json
import sys
from typing import Any, Optional, TextIO

from bs4 import BeautifulSoup

from workflow_models import StepOutcome, WorkflowResult, utc_now


class EventEmitter:
    """Writes JSON-lines events to a stream (stdout by default)."""

    def __init__(self, stream: Optional[TextIO] = None):
        self.stream = stream
        self.records: list[dict[str, Any]] = []

    def _write(self, record: dict[str, Any]) -> None:
        self.records.append(record)
        stream = self.stream or sys.stdout
        stream.write(json.dumps(record, ensure_ascii=False) + "\n")
        stream.flush()

    def emit(self, status: str, message: str, **extra: Any) -> None:
        record = {"status": status, "message": message, "timestamp": utc_now()}
        record.update({k: v for k, v in extra.items() if v is not None})
        self._write(record)

    def step(self, outcome: StepOutcome) -> None:
        record = {
            "status": outcome.status.value,
            "message": outcome.detail or "",
            "timestamp": outcome.timestamp,
            "step": outcome.step,
        }
        if outcome.artifacts:
            record["artifacts"] = outcome.artifacts
        self._write(record)

    def result(self, result: WorkflowResult) -> None:
        """Emit the terminal record. Must be the last call."""
        record = {"status": "complete" if result.success else "fatal", "timestamp": utc_now()}
        record.update(result.model_dump())
        self._write(record)


def page_snapshot(url: str, html: str) -> dict[str, Any]:
    """
    Reduce a page to what a human needs to tell two remote states apart.

    Args:
        url: Current page URL
        html: Page HTML

    Returns:
        Dict with url, title, headings, forms (action + field names) and
        flash/validation messages
    """
    soup = BeautifulSoup(html, 'lxml')

    title = soup.title.get_text(strip=True) if soup.title else ""
    headings = [h.get_text(" ", strip=True) for h in soup.find_all(['h1', 'h2', 'h3', 'h4'])]

    forms = []
    for form in soup.find_all('form'):
        fields = []
        for tag in form.find_all(['input', 'textarea', 'select']):
            if tag.get('type') == 'hidden':
                continue
            name = tag.get('name') or tag.get('id')
            if name:
                fields.append(name)
        forms.append({
            'action': form.get('action', ''),
            'method': (form.get('method') or 'get').lower(),
            'fields': fields,
        })

    messages = []
    for tag in soup.select('.ui.message, .flash-message, .flash-error, .flash-success'):
        text = tag.get_text(" ", strip=True)
        if text:
            messages.append(text)

    return {
        'url': url,
        'title': title,
        'headings': headings[:20],
        'forms': forms,
        'messages': messages,
    }
