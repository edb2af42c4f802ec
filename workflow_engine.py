"""
Step Executor: runs a sequence of WorkflowSteps against a Session.

No retries: each step is performed once, in order. Steps wait for
their own post-condition (navigation settled or target visible) before the
next one starts. A step that cannot complete is skipped when optional and
halts the sequence otherwise.
"""

from __future__ import annotations

import logging
import re
from typing import Iterable, Optional
from urllib.parse import urlparse, urlunparse

from browser_session import Session
from errors import BrowserFault, ProvisionError, StepTimeout
from locators import LocatorResolver
from reporting import EventEmitter
from workflow_models import (
    ActionKind,
    NavigationWait,
    SelectorWait,
    StepOutcome,
    StepStatus,
    WorkflowStep,
)

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 30.0

# Template pattern: {{input.field_name}}
_TEMPLATE_RE = re.compile(r"\{\{input\.(\w+)\}\}")


def interpolate(value: str, inputs: dict[str, str]) -> str:
    """Replace {{input.xxx}} placeholders with actual values."""
    def replacer(m: re.Match) -> str:
        key = m.group(1)
        return inputs.get(key, m.group(0))
    return _TEMPLATE_RE.sub(replacer, value)


def normalize_url(url: str) -> str:
    """Drop the fragment and trailing slash so equivalent URLs compare equal."""
    parsed = urlparse(url)
    return urlunparse((
        parsed.scheme,
        parsed.netloc,
        parsed.path.rstrip('/') if parsed.path != '/' else parsed.path,
        parsed.params,
        parsed.query,
        ''
    ))


def status_of(outcomes: Iterable[StepOutcome], step_name: str) -> Optional[StepStatus]:
    """Terminal status recorded for a step, or None if it never finished."""
    status = None
    for outcome in outcomes:
        if outcome.step == step_name and outcome.status != StepStatus.STARTED:
            status = outcome.status
    return status


def halted(outcomes: list[StepOutcome]) -> bool:
    """True when the sequence stopped on a failed step."""
    return bool(outcomes) and outcomes[-1].status == StepStatus.FAILED


class StepExecutor:
    """Interprets WorkflowStep sequences. Holds no per-run state."""

    def __init__(self, resolver: Optional[LocatorResolver] = None,
                 emitter: Optional[EventEmitter] = None,
                 default_timeout: float = DEFAULT_TIMEOUT):
        self.resolver = resolver or LocatorResolver()
        self.emitter = emitter
        self.default_timeout = default_timeout

    def run(self, steps: Iterable[WorkflowStep], session: Session,
            inputs: Optional[dict[str, str]] = None) -> list[StepOutcome]:
        """
        Execute steps strictly in order.

        Returns:
            The outcome log: started + terminal record per executed step.
            The sequence halted if the last outcome is FAILED.

        Raises:
            BrowserFault: After recording a failed outcome with diagnostics,
                when the browser itself is unusable or the host unreachable
        """
        inputs = inputs or {}
        outcomes: list[StepOutcome] = []

        for step in steps:
            self._record(outcomes, step, StepStatus.STARTED, step.description or step.name)
            timeout = step.timeout if step.timeout is not None else self.default_timeout

            try:
                ok, detail = self._perform(step, session, inputs, timeout)
            except BrowserFault as e:
                artifacts = session.capture_failure(step.name)
                self._record(outcomes, step, StepStatus.FAILED, e.message, artifacts)
                raise

            if ok:
                self._record(outcomes, step, StepStatus.SUCCEEDED, detail)
            elif step.optional:
                self._record(outcomes, step, StepStatus.SKIPPED, f"{detail} ({session.describe()})")
            else:
                artifacts = session.capture_failure(step.name)
                self._record(outcomes, step, StepStatus.FAILED,
                             f"{detail} ({session.describe()})", artifacts)
                break

        return outcomes

    def _record(self, outcomes: list[StepOutcome], step: WorkflowStep, status: StepStatus,
                detail: str, artifacts: Optional[list[str]] = None) -> None:
        outcome = StepOutcome(step=step.name, status=status, detail=detail,
                              artifacts=artifacts or [])
        outcomes.append(outcome)

        if status == StepStatus.FAILED:
            logger.error(f"[{step.name}] failed: {detail}")
        elif status == StepStatus.SKIPPED:
            logger.info(f"[{step.name}] skipped: {detail}")
        else:
            logger.info(f"[{step.name}] {status.value}: {detail}")

        if self.emitter:
            self.emitter.step(outcome)

    def _perform(self, step: WorkflowStep, session: Session, inputs: dict[str, str],
                 timeout: float) -> tuple[bool, str]:
        """Run one action plus its wait condition. Returns (ok, detail)."""
        page = session.page
        action = step.action
        navigation = step.wait.until if isinstance(step.wait, NavigationWait) else None

        if action == ActionKind.NAVIGATE:
            url = interpolate(step.url, inputs)
            try:
                page.navigate(url, navigation or "networkidle", timeout)
            except StepTimeout as e:
                return False, f"Navigation to {url} did not settle: {e.message}"
            detail = f"Navigated to {url}"

        elif action == ActionKind.FILL:
            element = self.resolver.resolve(step.target, page, timeout)
            if element is None:
                return False, f"'{step.target}' not found within {timeout}s"
            try:
                page.fill(element, interpolate(step.input, inputs), timeout)
            except StepTimeout as e:
                return False, f"Could not fill '{step.target}': {e.message}"
            # Input values are never echoed; they include passwords
            detail = f"Filled '{step.target}'"

        elif action == ActionKind.CLICK:
            element = self.resolver.resolve(step.target, page, timeout)
            if element is None:
                return False, f"'{step.target}' not found within {timeout}s"
            try:
                page.click(element, timeout, wait_until=navigation)
            except StepTimeout as e:
                return False, f"Click on '{step.target}' did not complete: {e.message}"
            detail = f"Clicked '{step.target}'"
            if navigation:
                detail += f", landed on {page.current_url()}"

        elif action == ActionKind.WAIT_FOR_SELECTOR:
            element = self.resolver.resolve(step.target, page, timeout)
            if element is None:
                return False, f"'{step.target}' did not appear within {timeout}s"
            detail = f"'{step.target}' present"

        elif action == ActionKind.SCREENSHOT:
            try:
                path = session.screenshot(interpolate(step.path, inputs))
            except (ProvisionError, OSError) as e:
                return False, f"Could not save screenshot: {e}"
            return True, f"Saved screenshot {path}"

        elif action == ActionKind.EXPECT_URL:
            expected = interpolate(step.url, inputs)
            actual = page.current_url()
            if normalize_url(actual) != normalize_url(expected):
                return False, f"Expected URL {expected}, got {actual}"
            return True, f"At expected URL {actual}"

        else:
            raise ValueError(f"Unsupported action: {action}")

        if isinstance(step.wait, SelectorWait):
            if self.resolver.resolve(step.wait.target, page, timeout) is None:
                return False, f"{detail}, but '{step.wait.target}' did not appear within {timeout}s"

        return True, detail
