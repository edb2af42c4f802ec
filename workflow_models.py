"""
Workflow data models.

Steps are immutable data interpreted by the StepExecutor; outcomes and
results are the records the run produces.
"""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Optional, Union

from pydantic import BaseModel, ConfigDict, Field, model_validator


def utc_now() -> str:
    return datetime.now(timezone.utc).isoformat()


class ActionKind(str, Enum):
    NAVIGATE = "navigate"
    FILL = "fill"
    CLICK = "click"
    WAIT_FOR_SELECTOR = "wait_for_selector"
    SCREENSHOT = "screenshot"
    EXPECT_URL = "expect_url"


class StepStatus(str, Enum):
    STARTED = "started"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    SKIPPED = "skipped"


class NavigationWait(BaseModel):
    """Wait for the page to finish navigating."""
    model_config = ConfigDict(frozen=True)

    until: str = "networkidle"  # "load", "domcontentloaded", "networkidle"


class SelectorWait(BaseModel):
    """Wait for a logical locator to become visible after the action."""
    model_config = ConfigDict(frozen=True)

    target: str


WaitCondition = Union[NavigationWait, SelectorWait]


class LocatorStrategy(BaseModel):
    model_config = ConfigDict(frozen=True)

    selector: str
    structural: bool = False  # positional DOM path, breaks on layout changes


class LogicalLocator(BaseModel):
    """
    A named UI element with concrete selectors tried in priority order.

    Every locator needs a semantic selector (id, name, class) and all
    semantic selectors come before the structural fallbacks.
    """
    model_config = ConfigDict(frozen=True)

    name: str
    strategies: tuple[LocatorStrategy, ...]

    @model_validator(mode="after")
    def _check_strategy_order(self) -> "LogicalLocator":
        if not self.strategies:
            raise ValueError(f"Locator '{self.name}' has no strategies")
        if all(s.structural for s in self.strategies):
            raise ValueError(f"Locator '{self.name}' needs at least one semantic strategy")
        seen_structural = False
        for strategy in self.strategies:
            if strategy.structural:
                seen_structural = True
            elif seen_structural:
                raise ValueError(
                    f"Locator '{self.name}': semantic strategy '{strategy.selector}' "
                    f"listed after a structural fallback"
                )
        return self


class WorkflowStep(BaseModel):
    model_config = ConfigDict(frozen=True)

    name: str
    action: ActionKind
    target: Optional[str] = None  # logical locator name
    url: Optional[str] = None  # navigate / expect_url
    input: Optional[str] = None  # fill text, may hold {{input.x}} placeholders
    path: Optional[str] = None  # screenshot file name
    wait: Optional[WaitCondition] = None
    timeout: Optional[float] = None  # seconds; None = executor default
    optional: bool = False
    description: str = ""

    @model_validator(mode="after")
    def _check_required_params(self) -> "WorkflowStep":
        needs_target = {ActionKind.FILL, ActionKind.CLICK, ActionKind.WAIT_FOR_SELECTOR}
        if self.action in needs_target and not self.target:
            raise ValueError(f"Step '{self.name}': {self.action.value} requires a target")
        if self.action == ActionKind.FILL and self.input is None:
            raise ValueError(f"Step '{self.name}': fill requires input")
        if self.action in (ActionKind.NAVIGATE, ActionKind.EXPECT_URL) and not self.url:
            raise ValueError(f"Step '{self.name}': {self.action.value} requires a url")
        if self.action == ActionKind.SCREENSHOT and not self.path:
            raise ValueError(f"Step '{self.name}': screenshot requires a path")
        return self


class StepOutcome(BaseModel):
    step: str
    status: StepStatus
    timestamp: str = Field(default_factory=utc_now)
    detail: Optional[str] = None
    artifacts: list[str] = Field(default_factory=list)


class FlowResult(BaseModel):
    """Terminal state of one workflow definition."""
    workflow: str
    state: str
    success: bool
    message: str = ""


class WorkflowResult(BaseModel):
    success: bool
    message: str
    artifacts: list[str] = Field(default_factory=list)
    states: dict[str, str] = Field(default_factory=dict)
