"""
Provisioner: the session/reporting boundary around the workflows.

Owns the browser session for exactly one run, runs the workflows in
order, stops at the first fatal one, and turns everything that happened
into the single WorkflowResult the CLI prints.
"""

from __future__ import annotations

import logging
from typing import Callable, ContextManager, Optional, Sequence

from browser_session import Session, open_session
from config_loader import ProvisionConfig
from errors import ProvisionError
from locators import LocatorResolver
from readiness import wait_for_service
from reporting import EventEmitter
from workflow_engine import StepExecutor
from workflow_models import WorkflowResult, utc_now
from workflows import (
    CreateRepositoryWorkflow,
    InstallWorkflow,
    RegisterOrLoginWorkflow,
    UploadSSHKeyWorkflow,
    Workflow,
)

logger = logging.getLogger(__name__)

SessionFactory = Callable[[ProvisionConfig], ContextManager[Session]]


def build_inputs(config: ProvisionConfig, username: str, password: str, email: str = "",
                 repo_name: str = "", ssh_key: str = "") -> dict[str, str]:
    """Values available to step templates as {{input.<key>}}."""
    base_url = config.base_url.rstrip('/')
    return {
        "base_url": base_url,
        "app_url": base_url + "/",
        "site_title": config.install.site_title,
        "ssh_port": config.install.ssh_port,
        "username": username,
        "password": password,
        "email": email,
        "repo_name": repo_name,
        "ssh_key": ssh_key,
        "key_title": f"Provisioned Key ({utc_now()})",
    }


def setup_plan(config: ProvisionConfig, with_repository: bool = True,
               with_key: bool = False) -> list[Workflow]:
    """install -> register/login -> [create repository] -> [upload key]."""
    timeouts = config.timeouts
    plan: list[Workflow] = [InstallWorkflow(timeouts), RegisterOrLoginWorkflow(timeouts)]
    if with_repository:
        plan.append(CreateRepositoryWorkflow(timeouts))
    if with_key:
        # Still signed in from register_or_login
        plan.append(UploadSSHKeyWorkflow(timeouts, login_first=False))
    return plan


def upload_key_plan(config: ProvisionConfig) -> list[Workflow]:
    return [UploadSSHKeyWorkflow(config.timeouts, login_first=True)]


class Provisioner:
    """Runs a plan of workflows inside one browser session."""

    def __init__(self, config: ProvisionConfig,
                 emitter: Optional[EventEmitter] = None,
                 session_factory: SessionFactory = open_session,
                 resolver: Optional[LocatorResolver] = None,
                 readiness_check: Callable[..., int] = wait_for_service):
        self.config = config
        self.emitter = emitter
        self.session_factory = session_factory
        self.resolver = resolver or LocatorResolver(poll_interval=config.timeouts.poll_interval)
        self.readiness_check = readiness_check

    def run(self, plan: Sequence[Workflow], inputs: dict[str, str]) -> WorkflowResult:
        """
        Execute the plan and return the one WorkflowResult for this run.

        The session is closed before this returns, on every path. Faults
        (browser launch failure, unreachable host, crashed page) become a
        failed result; anything else propagates to the caller.
        """
        executor = StepExecutor(self.resolver, self.emitter, default_timeout=self.config.timeouts.step)
        states: dict[str, str] = {}
        artifacts: list[str] = []
        failure: Optional[str] = None

        try:
            if self.config.timeouts.ready > 0:
                self.readiness_check(self.config.url("/"), self.config.timeouts.ready)

            with self.session_factory(self.config) as session:
                try:
                    for workflow in plan:
                        self._emit("workflow", f"Starting {workflow.name}", workflow=workflow.name)
                        flow = workflow.run(executor, session, inputs)
                        states[workflow.name] = flow.state
                        if not flow.success:
                            failure = f"{workflow.name} failed: {flow.message}"
                            break
                finally:
                    artifacts = list(session.artifacts)
        except ProvisionError as e:
            logger.error(f"Provisioning aborted: {e.message}")
            failure = e.message

        if failure is None:
            summary = ", ".join(f"{name}={state}" for name, state in states.items())
            result = WorkflowResult(success=True,
                                    message=f"Provisioning completed successfully ({summary})",
                                    artifacts=artifacts, states=states)
        else:
            result = WorkflowResult(success=False, message=failure,
                                    artifacts=artifacts, states=states)

        if self.emitter:
            self.emitter.result(result)
        return result

    def _emit(self, status: str, message: str, **extra) -> None:
        logger.info(message)
        if self.emitter:
            self.emitter.emit(status, message, **extra)
