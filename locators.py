"""
Locator Resolver.

Workflow steps refer to UI elements by logical name only ("login_username",
"key_submit"). This module owns the concrete selectors for each name and
resolves them against the live page, semantic selectors first and the
positional XPath paths only as a last resort.
A UI redesign should only require edits here.
"""

from __future__ import annotations

import logging
import time
from typing import Any, Callable, Iterable, Mapping, Optional

from browser_session import BrowserPage
from errors import UnknownLocatorError
from workflow_models import LocatorStrategy, LogicalLocator

logger = logging.getLogger(__name__)


def locator(name: str, *selectors: str, fallback: Iterable[str] = ()) -> LogicalLocator:
    """Build a LogicalLocator from semantic selectors plus structural fallbacks."""
    strategies = [LocatorStrategy(selector=s) for s in selectors]
    strategies += [LocatorStrategy(selector=s, structural=True) for s in fallback]
    return LogicalLocator(name=name, strategies=tuple(strategies))


def build_registry(locators: Iterable[LogicalLocator]) -> dict[str, LogicalLocator]:
    registry: dict[str, LogicalLocator] = {}
    for loc in locators:
        if loc.name in registry:
            raise ValueError(f"Duplicate locator name: {loc.name}")
        registry[loc.name] = loc
    return registry


_LOGIN_FORM = "xpath=/html/body/div/div/div/div/div/form"
_KEY_FORM = "xpath=/html/body/div[1]/div/div/div[2]/div/div[1]/div[1]/form"

GITEA_LOCATORS = build_registry([
    # Install page
    locator("install_trigger",
            'form[action="/"] button.ui.primary.button',
            'form.ui.form button.ui.primary.button:has-text("Install")'),
    locator("install_site_title", "#app_name", 'input[name="app_name"]'),
    locator("install_ssh_port", "#ssh_port", 'input[name="ssh_port"]'),
    locator("install_app_url", "#app_url", 'input[name="app_url"]'),

    # Sign-up page
    locator("signup_form", 'form.ui.form:has(input[name="retype"])', "form.ui.form"),
    locator("signup_username", "#user_name", 'input[name="user_name"]'),
    locator("signup_email", "#email", 'input[name="email"]'),
    locator("signup_password", "#password", 'input[name="password"]'),
    locator("signup_retype", "#retype", 'input[name="retype"]'),
    locator("signup_submit", "form.ui.form button.ui.primary.button", "button.ui.primary.button"),

    # Login page
    locator("login_username", "#user_name", 'input[name="user_name"]',
            fallback=[f"{_LOGIN_FORM}/div[1]/input"]),
    locator("login_password", "#password", 'input[name="password"]',
            fallback=[f"{_LOGIN_FORM}/div[2]/input"]),
    locator("login_submit", "form.ui.form button.ui.primary.button",
            fallback=[f"{_LOGIN_FORM}/div[4]/button"]),
    locator("dashboard", ".dashboard"),

    # Repository creation
    locator("repo_name", "#repo_name", 'input[name="repo_name"]'),
    locator("repo_submit", "form.ui.form button.ui.primary.button"),

    # SSH keys settings
    locator("add_key_button", 'button.show-panel[data-panel="#add-ssh-key-panel"]',
            "button.show-panel",
            fallback=["xpath=/html/body/div[1]/div/div/div[2]/div/h4[1]/div/button"]),
    locator("key_title", "#ssh-key-title", 'input[name="title"]',
            fallback=[f"{_KEY_FORM}/div[1]/input"]),
    locator("key_content", "#ssh-key-content", 'textarea[name="content"]',
            fallback=[f"{_KEY_FORM}/div[2]/textarea"]),
    locator("key_submit", "#add-ssh-key-panel button.ui.primary.button",
            fallback=[f"{_KEY_FORM}/button[1]"]),
    locator("success_banner", ".ui.positive.message", ".flash-success",
            'xpath=//div[contains(@class, "ui") and contains(@class, "positive") '
            'and contains(@class, "message")]'),
])


class LocatorResolver:
    """
    Resolves logical locator names to elements on a page.

    resolve() never raises for a missing element: it returns None once no
    strategy has matched within the timeout.
    """

    def __init__(self, registry: Mapping[str, LogicalLocator] = GITEA_LOCATORS,
                 poll_interval: float = 0.25,
                 clock: Callable[[], float] = time.monotonic,
                 sleep: Callable[[float], None] = time.sleep):
        self.registry = registry
        self.poll_interval = poll_interval
        self._clock = clock
        self._sleep = sleep

    def get(self, name: str) -> LogicalLocator:
        try:
            return self.registry[name]
        except KeyError:
            raise UnknownLocatorError(name) from None

    def resolve(self, name: str, page: BrowserPage, timeout: float) -> Optional[Any]:
        """
        Find the element for a logical locator.

        Args:
            name: Logical locator name
            page: Page to query (read-only)
            timeout: Seconds to keep polling before giving up

        Returns:
            The first visible match of the highest-priority strategy, or None
        """
        loc = self.get(name)
        deadline = self._clock() + timeout

        while True:
            for strategy in loc.strategies:
                element = page.locate(strategy.selector)
                if element is None:
                    continue
                if strategy.structural:
                    logger.warning(
                        f"Locator '{name}' matched only by structural fallback "
                        f"{strategy.selector}; semantic selectors need updating"
                    )
                else:
                    logger.debug(f"Locator '{name}' resolved via {strategy.selector}")
                return element

            remaining = deadline - self._clock()
            if remaining <= 0:
                logger.debug(f"Locator '{name}' not found within {timeout}s")
                return None
            self._sleep(min(self.poll_interval, remaining))
