"""
Workflow definitions for first-run Gitea provisioning.

Each workflow is a few immutable step sequences plus the branch logic
that picks between them based on what the remote UI currently shows.
Nothing is remembered between runs: "already installed" or "already
registered" is detected again every time.

When a UI state is ambiguous (a form that is missing could mean "already
done" or "unexpected page") the workflows take the non-destructive reading,
skip, and leave the URL and a page snapshot behind for a human.
"""

from __future__ import annotations

import logging
from typing import Optional

import provision_config
from browser_session import Session
from config_loader import TimeoutConfig
from workflow_engine import StepExecutor, halted, status_of
from workflow_models import (
    ActionKind,
    FlowResult,
    NavigationWait,
    SelectorWait,
    StepOutcome,
    StepStatus,
    WorkflowStep,
)

logger = logging.getLogger(__name__)

BASE = "{{input.base_url}}"
SUCCESS_SCREENSHOT = "success-screenshot.png"


class Workflow:
    """Base class: subclasses build their steps once and implement run()."""

    name = "workflow"

    def __init__(self, timeouts: Optional[TimeoutConfig] = None):
        self.timeouts = timeouts or TimeoutConfig()
        self.outcomes: list[StepOutcome] = []

    def run(self, executor: StepExecutor, session: Session,
            inputs: dict[str, str]) -> FlowResult:
        raise NotImplementedError

    def _execute(self, executor: StepExecutor, steps, session: Session,
                 inputs: dict[str, str]) -> list[StepOutcome]:
        outcomes = executor.run(steps, session, inputs)
        self.outcomes.extend(outcomes)
        return outcomes

    def _finish(self, executor: StepExecutor, state: str, success: bool,
                message: str) -> FlowResult:
        log = logger.info if success else logger.error
        log(f"{self.name}: {state} - {message}")
        if executor.emitter:
            executor.emitter.emit("state", message, workflow=self.name, state=state)
        return FlowResult(workflow=self.name, state=state, success=success, message=message)


# --- Install ---


def install_probe_steps(timeouts: TimeoutConfig) -> tuple[WorkflowStep, ...]:
    return (
        WorkflowStep(name="open_home", action=ActionKind.NAVIGATE,
                     url=BASE + provision_config.INSTALL_PATH, wait=NavigationWait(),
                     description="Open home page"),
        WorkflowStep(name="detect_install_page", action=ActionKind.WAIT_FOR_SELECTOR,
                     target="install_trigger", timeout=timeouts.probe, optional=True,
                     description="Check for the installation form"),
    )


def install_submit_steps(timeouts: TimeoutConfig) -> tuple[WorkflowStep, ...]:
    return (
        WorkflowStep(name="fill_site_title", action=ActionKind.FILL, target="install_site_title",
                     input="{{input.site_title}}", timeout=timeouts.probe, optional=True,
                     description="Enter site title"),
        WorkflowStep(name="fill_ssh_port", action=ActionKind.FILL, target="install_ssh_port",
                     input="{{input.ssh_port}}", timeout=timeouts.probe, optional=True,
                     description="Enter SSH port"),
        WorkflowStep(name="fill_app_url", action=ActionKind.FILL, target="install_app_url",
                     input="{{input.app_url}}", timeout=timeouts.probe, optional=True,
                     description="Enter base URL"),
        WorkflowStep(name="submit_install", action=ActionKind.CLICK, target="install_trigger",
                     wait=NavigationWait(), timeout=timeouts.install,
                     description="Click Install"),
    )


class InstallWorkflow(Workflow):
    """CheckInstallPage -> InstallComplete | AlreadyInstalled."""

    name = "install"

    def __init__(self, timeouts: Optional[TimeoutConfig] = None):
        super().__init__(timeouts)
        self.probe_steps = install_probe_steps(self.timeouts)
        self.submit_steps = install_submit_steps(self.timeouts)

    def run(self, executor, session, inputs):
        outcomes = self._execute(executor, self.probe_steps, session, inputs)
        if halted(outcomes):
            return self._finish(executor, "HomeUnavailable", False,
                                "Could not open the home page")

        if status_of(outcomes, "detect_install_page") == StepStatus.SKIPPED:
            return self._finish(executor, "AlreadyInstalled", True,
                                "Installation page not found; assuming already installed")

        outcomes = self._execute(executor, self.submit_steps, session, inputs)
        if halted(outcomes):
            return self._finish(executor, "InstallFailed", False,
                                "Installation form could not be submitted")
        return self._finish(executor, "InstallComplete", True, "Initial configuration completed")


# --- Login ---


def login_steps(timeouts: TimeoutConfig) -> tuple[WorkflowStep, ...]:
    return (
        WorkflowStep(name="open_login", action=ActionKind.NAVIGATE,
                     url=BASE + provision_config.LOGIN_PATH, wait=NavigationWait(),
                     description="Open login page"),
        WorkflowStep(name="detect_login_form", action=ActionKind.WAIT_FOR_SELECTOR,
                     target="login_username", timeout=timeouts.probe, optional=True,
                     description="Check for the login form"),
    )


def login_submit_steps(timeouts: TimeoutConfig) -> tuple[WorkflowStep, ...]:
    return (
        WorkflowStep(name="fill_login_username", action=ActionKind.FILL, target="login_username",
                     input="{{input.username}}", description="Enter username"),
        WorkflowStep(name="fill_login_password", action=ActionKind.FILL, target="login_password",
                     input="{{input.password}}", description="Enter password"),
        WorkflowStep(name="submit_login", action=ActionKind.CLICK, target="login_submit",
                     wait=NavigationWait(), description="Click Sign In"),
        WorkflowStep(name="verify_dashboard", action=ActionKind.WAIT_FOR_SELECTOR,
                     target="dashboard", timeout=timeouts.probe,
                     description="Check for the dashboard"),
    )


def already_logged_in_steps(timeouts: TimeoutConfig) -> tuple[WorkflowStep, ...]:
    return (
        WorkflowStep(name="verify_existing_session", action=ActionKind.WAIT_FOR_SELECTOR,
                     target="dashboard", timeout=timeouts.probe,
                     description="Check for the dashboard of an existing session"),
    )


class LoginWorkflow(Workflow):
    """
    Login -> LoggedIn | LoginFailed.

    If the login page redirects away because the session is already
    signed in (Gitea signs new users in after registration), the dashboard
    is accepted as proof of login.
    """

    name = "login"

    def __init__(self, timeouts: Optional[TimeoutConfig] = None):
        super().__init__(timeouts)
        self.open_steps = login_steps(self.timeouts)
        self.submit_steps = login_submit_steps(self.timeouts)
        self.session_steps = already_logged_in_steps(self.timeouts)

    def run(self, executor, session, inputs):
        outcomes = self._execute(executor, self.open_steps, session, inputs)
        if halted(outcomes):
            return self._finish(executor, "LoginFailed", False, "Could not open the login page")

        if status_of(outcomes, "detect_login_form") == StepStatus.SKIPPED:
            outcomes = self._execute(executor, self.session_steps, session, inputs)
            if halted(outcomes):
                return self._finish(executor, "LoginFailed", False,
                                    f"No login form and no dashboard ({session.describe()})")
            return self._finish(executor, "LoggedIn", True, "Already logged in")

        outcomes = self._execute(executor, self.submit_steps, session, inputs)
        if halted(outcomes):
            return self._finish(executor, "LoginFailed", False,
                                f"Login failed ({session.describe()})")
        return self._finish(executor, "LoggedIn", True, "Logged in successfully")


# --- Register or login ---


def signup_probe_steps(timeouts: TimeoutConfig) -> tuple[WorkflowStep, ...]:
    return (
        WorkflowStep(name="open_signup", action=ActionKind.NAVIGATE,
                     url=BASE + provision_config.SIGN_UP_PATH, wait=NavigationWait(),
                     description="Open registration page"),
        WorkflowStep(name="detect_signup_form", action=ActionKind.WAIT_FOR_SELECTOR,
                     target="signup_form", timeout=timeouts.probe, optional=True,
                     description="Check for the registration form"),
    )


def signup_submit_steps(timeouts: TimeoutConfig) -> tuple[WorkflowStep, ...]:
    return (
        WorkflowStep(name="fill_signup_username", action=ActionKind.FILL, target="signup_username",
                     input="{{input.username}}", description="Enter username"),
        WorkflowStep(name="fill_signup_email", action=ActionKind.FILL, target="signup_email",
                     input="{{input.email}}", description="Enter email"),
        WorkflowStep(name="fill_signup_password", action=ActionKind.FILL, target="signup_password",
                     input="{{input.password}}", description="Enter password"),
        WorkflowStep(name="fill_signup_retype", action=ActionKind.FILL, target="signup_retype",
                     input="{{input.password}}", description="Retype password"),
        WorkflowStep(name="submit_signup", action=ActionKind.CLICK, target="signup_submit",
                     wait=NavigationWait(), description="Submit registration form"),
        WorkflowStep(name="verify_signup_redirect", action=ActionKind.EXPECT_URL,
                     url=BASE + provision_config.LOGIN_PATH,
                     description="Check redirect to login page"),
    )


class RegisterOrLoginWorkflow(Workflow):
    """
    Register -> [Registered | AlreadyExists | Unknown] -> Login -> [LoggedIn | LoginFailed].

    "User already exists" and "registration succeeded" look alike from
    the UI, so registration never decides the run: it always falls through
    to an explicit login, and only a failed login is fatal.
    """

    name = "register_or_login"

    def __init__(self, timeouts: Optional[TimeoutConfig] = None):
        super().__init__(timeouts)
        self.probe_steps = signup_probe_steps(self.timeouts)
        self.submit_steps = signup_submit_steps(self.timeouts)
        self.login = LoginWorkflow(self.timeouts)
        self.register_state: Optional[str] = None

    def _register(self, executor, session, inputs) -> str:
        outcomes = self._execute(executor, self.probe_steps, session, inputs)
        if halted(outcomes):
            return "Unknown"

        if status_of(outcomes, "detect_signup_form") == StepStatus.SKIPPED:
            logger.info(f"Registration form not found; user may already exist ({session.describe()})")
            session.snapshot("signup-page-snapshot")
            return "AlreadyExists"

        outcomes = self._execute(executor, self.submit_steps, session, inputs)
        if halted(outcomes):
            logger.warning(f"Registration may have failed or led to an unexpected page: "
                           f"{session.page.current_url()}")
            return "Unknown"
        return "Registered"

    def run(self, executor, session, inputs):
        self.register_state = self._register(executor, session, inputs)
        if executor.emitter:
            executor.emitter.emit("state", f"Registration result: {self.register_state}",
                                  workflow=self.name, state=self.register_state)

        result = self.login.run(executor, session, inputs)
        self.outcomes.extend(self.login.outcomes)
        message = f"registration {self.register_state}; {result.message}"
        return self._finish(executor, result.state, result.success, message)


# --- Create repository ---


def create_repository_steps(timeouts: TimeoutConfig) -> tuple[WorkflowStep, ...]:
    repo_url = BASE + "/{{input.username}}/{{input.repo_name}}"
    return (
        WorkflowStep(name="open_repo_create", action=ActionKind.NAVIGATE,
                     url=BASE + provision_config.REPO_CREATE_PATH, wait=NavigationWait(),
                     description="Open new repository page"),
        WorkflowStep(name="fill_repo_name", action=ActionKind.FILL, target="repo_name",
                     input="{{input.repo_name}}", description="Enter repository name"),
        WorkflowStep(name="submit_repo", action=ActionKind.CLICK, target="repo_submit",
                     wait=NavigationWait(), description="Create repository"),
        WorkflowStep(name="verify_repo_url", action=ActionKind.EXPECT_URL, url=repo_url,
                     description="Check redirect to the repository page"),
    )


class CreateRepositoryWorkflow(Workflow):
    """
    Navigate -> Fill(name) -> Submit -> Verify(url) -> Created.

    Gitea redirects to /<user>/<repo> only after a successful create; a
    missing repository renders its 404 page at that same URL, so the URL
    is checked on the redirect rather than by opening it. A mismatch is
    fatal: later steps and callers assume the repository exists.
    """

    name = "create_repository"

    def __init__(self, timeouts: Optional[TimeoutConfig] = None):
        super().__init__(timeouts)
        self.steps = create_repository_steps(self.timeouts)

    def run(self, executor, session, inputs):
        outcomes = self._execute(executor, self.steps, session, inputs)
        if halted(outcomes):
            if outcomes[-1].step == "verify_repo_url":
                return self._finish(executor, "VerificationFailed", False,
                                    f"Repository not found at the expected URL: {outcomes[-1].detail}")
            return self._finish(executor, "CreateFailed", False,
                                f"Repository creation failed at step {outcomes[-1].step}")
        return self._finish(executor, "Created", True,
                            f"Repository {inputs.get('repo_name')} created")


# --- Upload SSH key ---


def upload_key_steps(timeouts: TimeoutConfig) -> tuple[WorkflowStep, ...]:
    return (
        WorkflowStep(name="open_keys_page", action=ActionKind.NAVIGATE,
                     url=BASE + provision_config.SSH_KEYS_PATH, wait=NavigationWait(),
                     description="Open SSH Keys page"),
        WorkflowStep(name="open_add_key_form", action=ActionKind.CLICK, target="add_key_button",
                     wait=SelectorWait(target="key_title"), description="Click Add Key button"),
        WorkflowStep(name="fill_key_title", action=ActionKind.FILL, target="key_title",
                     input="{{input.key_title}}", description="Enter key title"),
        WorkflowStep(name="fill_key_content", action=ActionKind.FILL, target="key_content",
                     input="{{input.ssh_key}}", description="Paste SSH key"),
        WorkflowStep(name="submit_key", action=ActionKind.CLICK, target="key_submit",
                     wait=NavigationWait(), description="Submit SSH key form"),
        WorkflowStep(name="verify_success_banner", action=ActionKind.WAIT_FOR_SELECTOR,
                     target="success_banner", timeout=timeouts.banner,
                     description="Check for success message"),
        WorkflowStep(name="save_success_screenshot", action=ActionKind.SCREENSHOT,
                     path=SUCCESS_SCREENSHOT, optional=True,
                     description="Save success screenshot"),
    )


class UploadSSHKeyWorkflow(Workflow):
    """
    Login -> NavigateKeysPage -> OpenAddKeyForm -> FillTitleAndKey -> Submit -> VerifySuccessBanner.

    The banner check is best-effort: the banner can be gone before the
    check runs, so a timeout fails the run even though Gitea may have
    accepted the key. A longer timeout would only move the race.
    """

    name = "upload_ssh_key"

    def __init__(self, timeouts: Optional[TimeoutConfig] = None, login_first: bool = True):
        super().__init__(timeouts)
        self.login = LoginWorkflow(self.timeouts) if login_first else None
        self.steps = upload_key_steps(self.timeouts)

    def run(self, executor, session, inputs):
        if self.login:
            result = self.login.run(executor, session, inputs)
            self.outcomes.extend(self.login.outcomes)
            if not result.success:
                return self._finish(executor, result.state, False, result.message)

        outcomes = self._execute(executor, self.steps, session, inputs)
        if halted(outcomes):
            if outcomes[-1].step == "verify_success_banner":
                return self._finish(executor, "BannerMissing", False,
                                    "Success message not shown after submitting the key; "
                                    "the key may or may not have been accepted")
            return self._finish(executor, "UploadFailed", False,
                                f"SSH key upload failed at step {outcomes[-1].step}")
        return self._finish(executor, "Uploaded", True, "SSH key uploaded successfully")
