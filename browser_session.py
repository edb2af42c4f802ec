"""
Browser session: the single browser process + page a provisioning run owns.

BrowserPage is the capability the rest of the code talks to; PlaywrightPage
implements it on top of the Playwright sync API and translates Playwright
errors into the provisioner's own exceptions. open_session() guarantees
the browser is released on every exit path.
"""

from __future__ import annotations

import json
import logging
import re
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Callable, Iterator, Optional, Protocol

from playwright.sync_api import (
    Error as PlaywrightError,
    Page,
    TimeoutError as PlaywrightTimeoutError,
    sync_playwright,
)

from config_loader import ProvisionConfig
from errors import BrowserFault, ProvisionError, ServiceUnreachable, StepTimeout
from reporting import page_snapshot

logger = logging.getLogger(__name__)

BROWSER_ARGS = [
    "--disable-dev-shm-usage",
    "--no-sandbox",
    "--disable-setuid-sandbox",
]

# Playwright raises these while the page is between two documents
_TRANSIENT_ERRORS = ("Execution context was destroyed", "Cannot find context", "navigating")


class BrowserPage(Protocol):
    """Capabilities the executor needs from a browser page. Timeouts are in seconds."""

    def navigate(self, url: str, wait_until: str, timeout: float) -> None:
        ...

    def locate(self, selector: str) -> Optional[Any]:
        """Return the first visible element for selector, or None."""
        ...

    def fill(self, element: Any, text: str, timeout: float) -> None:
        ...

    def click(self, element: Any, timeout: float, wait_until: Optional[str] = None) -> None:
        """Click element; with wait_until, also wait for the resulting navigation."""
        ...

    def current_url(self) -> str:
        ...

    def title(self) -> str:
        ...

    def content(self) -> str:
        ...

    def screenshot(self, path: str) -> None:
        ...


def _ms(timeout: float) -> float:
    """Seconds to Playwright milliseconds. Playwright reads 0 as 'no timeout'."""
    return max(timeout * 1000, 1)


def _translate(error: PlaywrightError, url: str = "") -> Exception:
    """Map a Playwright error onto the provisioner's exceptions."""
    message = str(error).splitlines()[0] if str(error) else repr(error)
    if isinstance(error, PlaywrightTimeoutError):
        return StepTimeout(message)
    if "net::ERR_" in message or "NS_ERROR_" in message:
        return ServiceUnreachable(url, message)
    return BrowserFault(message)


class PlaywrightPage:
    """BrowserPage backed by a Playwright sync Page."""

    def __init__(self, page: Page):
        self._page = page

    def navigate(self, url: str, wait_until: str, timeout: float) -> None:
        try:
            self._page.goto(url, wait_until=wait_until, timeout=_ms(timeout))
        except PlaywrightError as e:
            raise _translate(e, url) from e

    def locate(self, selector: str) -> Optional[Any]:
        try:
            return self._page.query_selector(f"{selector} >> visible=true")
        except PlaywrightError as e:
            if any(marker in str(e) for marker in _TRANSIENT_ERRORS):
                return None
            raise _translate(e) from e

    def fill(self, element: Any, text: str, timeout: float) -> None:
        try:
            element.fill(text, timeout=_ms(timeout))
        except PlaywrightError as e:
            raise _translate(e) from e

    def click(self, element: Any, timeout: float, wait_until: Optional[str] = None) -> None:
        try:
            if wait_until:
                with self._page.expect_navigation(wait_until=wait_until, timeout=_ms(timeout)):
                    element.click(timeout=_ms(timeout))
            else:
                element.click(timeout=_ms(timeout))
        except PlaywrightError as e:
            raise _translate(e, self._page.url) from e

    def current_url(self) -> str:
        return self._page.url

    def title(self) -> str:
        try:
            return self._page.title()
        except PlaywrightError as e:
            raise _translate(e) from e

    def content(self) -> str:
        try:
            return self._page.content()
        except PlaywrightError as e:
            raise _translate(e) from e

    def screenshot(self, path: str) -> None:
        try:
            self._page.screenshot(path=path, full_page=True)
        except PlaywrightError as e:
            raise _translate(e) from e


def _safe_name(name: str) -> str:
    return re.sub(r"[^A-Za-z0-9_.-]+", "-", name).strip("-") or "step"


class Session:
    """
    One page exclusively owned by one provisioning run.

    Artifacts written through the session are collected in self.artifacts.
    close() runs the release callback exactly once.
    """

    def __init__(self, page: BrowserPage, artifacts_dir: str | Path = ".",
                 on_close: Optional[Callable[[], None]] = None):
        self.page = page
        self.artifacts_dir = Path(artifacts_dir)
        self.artifacts: list[str] = []
        self._on_close = on_close
        self.closed = False

    def screenshot(self, filename: str) -> str:
        """Full-page screenshot into the artifacts dir. Errors propagate."""
        self.artifacts_dir.mkdir(parents=True, exist_ok=True)
        path = str(self.artifacts_dir / filename)
        self.page.screenshot(path)
        self.artifacts.append(path)
        return path

    def snapshot(self, name: str) -> Optional[str]:
        """Write URL/title/forms/messages of the current page as JSON."""
        try:
            data = page_snapshot(self.page.current_url(), self.page.content())
        except ProvisionError as e:
            logger.warning(f"Could not snapshot page: {e}")
            return None
        path = self.artifacts_dir / f"{_safe_name(name)}.json"
        try:
            self.artifacts_dir.mkdir(parents=True, exist_ok=True)
            path.write_text(json.dumps(data, indent=2, ensure_ascii=False))
        except OSError as e:
            logger.warning(f"Could not write page snapshot {path}: {e}")
            return None
        self.artifacts.append(str(path))
        return str(path)

    def capture_failure(self, step_name: str) -> list[str]:
        """
        Best-effort diagnostics for a failed step: screenshot and page snapshot.

        Returns the artifact paths that were written.
        """
        written = []
        try:
            written.append(self.screenshot(f"error-screenshot-{_safe_name(step_name)}.png"))
        except (ProvisionError, OSError) as e:
            logger.error(f"Failed to save error screenshot: {e}")
        snapshot = self.snapshot(f"error-snapshot-{step_name}")
        if snapshot:
            written.append(snapshot)
        return written

    def describe(self) -> str:
        """Short human-readable context of where the page is."""
        try:
            return f"url={self.page.current_url()} title={self.page.title()!r}"
        except ProvisionError:
            return f"url={self.page.current_url()}"

    def close(self) -> None:
        if self.closed:
            return
        self.closed = True
        if self._on_close:
            self._on_close()


@contextmanager
def open_session(config: ProvisionConfig) -> Iterator[Session]:
    """
    Launch Chromium, open one page and yield it as a Session.

    The browser and Playwright driver are stopped when the block exits,
    whether it returns normally or raises.

    Raises:
        BrowserFault: If Playwright or the browser cannot be started
    """
    try:
        playwright = sync_playwright().start()
    except PlaywrightError as e:
        raise BrowserFault(f"Could not start Playwright: {e}") from e

    try:
        browser = playwright.chromium.launch(headless=config.browser.headless, args=BROWSER_ARGS)
    except PlaywrightError as e:
        error_msg = str(e)
        if "playwright install" in error_msg.lower() or "executable doesn't exist" in error_msg.lower():
            logger.error("Playwright browsers not installed!")
            logger.error("Please run: playwright install chromium")
        playwright.stop()
        raise BrowserFault(f"Browser launch failed: {error_msg.splitlines()[0]}") from e

    mode = "headless" if config.browser.headless else "visible"
    logger.info(f"Playwright browser initialized ({mode} mode)")

    def release() -> None:
        logger.info("Closing browser")
        try:
            browser.close()
        except PlaywrightError as e:
            logger.warning(f"Could not close browser cleanly: {e}")
        try:
            playwright.stop()
        except PlaywrightError as e:
            logger.warning(f"Could not stop Playwright cleanly: {e}")

    try:
        ctx = browser.new_context(
            viewport={"width": config.browser.viewport_width, "height": config.browser.viewport_height},
            locale="en-US",
        )
        page = ctx.new_page()
        page.set_default_timeout(_ms(config.timeouts.step))
    except PlaywrightError as e:
        release()
        raise BrowserFault(f"Could not open page: {e}") from e

    session = Session(PlaywrightPage(page), config.artifacts_dir, on_close=release)
    try:
        yield session
    finally:
        session.close()
