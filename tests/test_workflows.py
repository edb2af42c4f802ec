"""
Workflow and end-to-end tests against the scripted Gitea fake.

No browser and no network: FakeGitea implements the page protocol.
"""

import io
import json
import tempfile
import unittest
from pathlib import Path

from locators import LocatorResolver
from provisioner import Provisioner, build_inputs, setup_plan, upload_key_plan
from reporting import EventEmitter
from workflow_engine import StepExecutor
from workflow_models import StepStatus
from workflows import (
    CreateRepositoryWorkflow,
    InstallWorkflow,
    RegisterOrLoginWorkflow,
    UploadSSHKeyWorkflow,
)
from browser_session import Session

from tests.fakes import BASE_URL, CloseCounter, FakeGitea, fake_session_factory, fast_config, sel

PUBLIC_KEY = "ssh-ed25519 AAAAC3NzaC1lZDI1NTE5AAAAIGq1 alice@example.com"


class WorkflowTestCase(unittest.TestCase):
    """Shared setup: temp artifacts dir, zero-timeout config, captured stdout events."""

    def setUp(self):
        self._tmp = tempfile.TemporaryDirectory()
        self.addCleanup(self._tmp.cleanup)
        self.config = fast_config(self._tmp.name)
        self.stream = io.StringIO()
        self.emitter = EventEmitter(self.stream)
        self.closer = CloseCounter()

    def provisioner(self, site):
        return Provisioner(
            self.config,
            emitter=self.emitter,
            session_factory=fake_session_factory(site, self._tmp.name, self.closer),
            resolver=LocatorResolver(poll_interval=0),
        )

    def executor(self):
        return StepExecutor(LocatorResolver(poll_interval=0), self.emitter, default_timeout=0)

    def session(self, site):
        return Session(site, self._tmp.name, on_close=self.closer)

    def inputs(self, username="alice", password="pw123", email="a@x.com",
               repo_name="myrepo", ssh_key=""):
        return build_inputs(self.config, username, password, email, repo_name, ssh_key)

    def stdout_records(self):
        return [json.loads(line) for line in self.stream.getvalue().splitlines()]


class TestInstallWorkflow(WorkflowTestCase):

    def test_already_installed_skips_form(self):
        """No install trigger on the home page: AlreadyInstalled, nothing submitted."""
        site = FakeGitea(installed=True)
        flow = InstallWorkflow(self.config.timeouts)
        result = flow.run(self.executor(), self.session(site), self.inputs())

        self.assertTrue(result.success)
        self.assertEqual(result.state, "AlreadyInstalled")
        self.assertEqual(site.ops("fill"), [])
        self.assertEqual(site.ops("click"), [])

    def test_fresh_instance_is_installed(self):
        """Install trigger present: configuration filled and submitted."""
        site = FakeGitea(installed=False)
        flow = InstallWorkflow(self.config.timeouts)
        result = flow.run(self.executor(), self.session(site), self.inputs())

        self.assertEqual(result.state, "InstallComplete")
        self.assertTrue(site.installed)
        self.assertEqual(site.install_values[sel("install_ssh_port")], "22")
        self.assertEqual(site.install_values[sel("install_app_url")], BASE_URL + "/")


class TestRegisterOrLogin(WorkflowTestCase):

    def test_new_user_registers_and_logs_in(self):
        site = FakeGitea()
        flow = RegisterOrLoginWorkflow(self.config.timeouts)
        result = flow.run(self.executor(), self.session(site), self.inputs())

        self.assertTrue(result.success)
        self.assertEqual(flow.register_state, "Registered")
        self.assertEqual(result.state, "LoggedIn")
        self.assertEqual(site.users["alice"], "pw123")

    def test_existing_user_falls_through_to_login(self):
        """Registration reports failure, login with the same credentials succeeds."""
        site = FakeGitea(users={"alice": "pw123"})
        flow = RegisterOrLoginWorkflow(self.config.timeouts)
        result = flow.run(self.executor(), self.session(site), self.inputs())

        self.assertTrue(result.success)
        self.assertEqual(flow.register_state, "Unknown")
        failed = [o for o in flow.outcomes if o.status == StepStatus.FAILED]
        self.assertEqual([o.step for o in failed], ["verify_signup_redirect"])
        self.assertEqual(site.logged_in, "alice")

    def test_missing_signup_form_is_not_fatal(self):
        """Form absent: recorded as AlreadyExists with a page snapshot, then login."""
        site = FakeGitea(users={"alice": "pw123"}, registration_open=False)
        session = self.session(site)
        flow = RegisterOrLoginWorkflow(self.config.timeouts)
        result = flow.run(self.executor(), session, self.inputs())

        self.assertTrue(result.success)
        self.assertEqual(flow.register_state, "AlreadyExists")
        self.assertTrue(any(p.endswith("signup-page-snapshot.json") for p in session.artifacts))
        self.assertFalse(site.clicked("signup_submit", "/user/sign_up"))

    def test_signed_in_after_signup(self):
        """Gitea may sign the new user in directly; the dashboard counts as logged in."""
        site = FakeGitea(login_after_signup=True)
        flow = RegisterOrLoginWorkflow(self.config.timeouts)
        result = flow.run(self.executor(), self.session(site), self.inputs())

        self.assertTrue(result.success)
        self.assertEqual(result.state, "LoggedIn")
        self.assertFalse(site.clicked("login_submit", "/user/login"))

    def test_login_failure_is_fatal(self):
        site = FakeGitea(users={"alice": "other"}, registration_open=False)
        flow = RegisterOrLoginWorkflow(self.config.timeouts)
        result = flow.run(self.executor(), self.session(site), self.inputs())

        self.assertFalse(result.success)
        self.assertEqual(result.state, "LoginFailed")


class TestCreateRepository(WorkflowTestCase):

    def _logged_in_site(self, **kwargs):
        site = FakeGitea(users={"alice": "pw123"}, **kwargs)
        site.logged_in = "alice"
        return site

    def test_repository_created(self):
        site = self._logged_in_site()
        flow = CreateRepositoryWorkflow(self.config.timeouts)
        result = flow.run(self.executor(), self.session(site), self.inputs())

        self.assertEqual(result.state, "Created")
        self.assertIn(("alice", "myrepo"), site.repos)

    def test_url_mismatch_is_fatal(self):
        """Creation appears to submit but the repository URL does not resolve."""
        site = self._logged_in_site(create_repo_works=False)
        flow = CreateRepositoryWorkflow(self.config.timeouts)
        result = flow.run(self.executor(), self.session(site), self.inputs())

        self.assertFalse(result.success)
        self.assertEqual(result.state, "VerificationFailed")

    def test_missing_repository_is_not_reported_created(self):
        """A missing repository's 404 page keeps its URL; only the create redirect counts."""
        site = self._logged_in_site(create_repo_works=False)
        site.navigate(BASE_URL + "/alice/myrepo", "load", 0)
        self.assertEqual(site.current_url(), BASE_URL + "/alice/myrepo")
        self.assertEqual(site.title(), "Page Not Found - Gitea")

        flow = CreateRepositoryWorkflow(self.config.timeouts)
        result = flow.run(self.executor(), self.session(site), self.inputs())

        self.assertEqual(result.state, "VerificationFailed")
        self.assertEqual(site.repos, set())
        navigated = [c[1] for c in site.ops("navigate")]
        self.assertEqual(navigated.count(BASE_URL + "/alice/myrepo"), 1)


class TestUploadSSHKey(WorkflowTestCase):

    def test_key_uploaded(self):
        site = FakeGitea(users={"alice": "pw123"})
        session = self.session(site)
        flow = UploadSSHKeyWorkflow(self.config.timeouts)
        result = flow.run(self.executor(), session, self.inputs(ssh_key=PUBLIC_KEY))

        self.assertEqual(result.state, "Uploaded")
        self.assertEqual(len(site.keys), 1)
        title, content = site.keys[0]
        self.assertTrue(title.startswith("Provisioned Key ("))
        self.assertEqual(content, PUBLIC_KEY)
        self.assertTrue(any(p.endswith("success-screenshot.png") for p in session.artifacts))

    def test_success_screenshot_failure_is_not_fatal(self):
        site = FakeGitea(users={"alice": "pw123"})
        site.screenshot_error = True
        flow = UploadSSHKeyWorkflow(self.config.timeouts)
        result = flow.run(self.executor(), self.session(site), self.inputs(ssh_key=PUBLIC_KEY))

        self.assertTrue(result.success)
        skipped = [o.step for o in flow.outcomes if o.status == StepStatus.SKIPPED]
        self.assertIn("save_success_screenshot", skipped)

    def test_login_failure_stops_before_keys_page(self):
        site = FakeGitea(users={"alice": "other"})
        flow = UploadSSHKeyWorkflow(self.config.timeouts)
        result = flow.run(self.executor(), self.session(site), self.inputs(ssh_key=PUBLIC_KEY))

        self.assertEqual(result.state, "LoginFailed")
        self.assertFalse(site.clicked("add_key_button"))


class TestProvisioner(WorkflowTestCase):

    def test_scenario_fresh_instance(self):
        """alice/pw123/a@x.com/myrepo on a fresh instance: success, repo at /alice/myrepo."""
        site = FakeGitea(installed=False)
        plan = setup_plan(self.config, with_repository=True)
        result = self.provisioner(site).run(plan, self.inputs())

        self.assertTrue(result.success)
        self.assertIn("successfully", result.message)
        self.assertIn(("alice", "myrepo"), site.repos)
        self.assertEqual(site.current_url(), BASE_URL + "/alice/myrepo")
        self.assertEqual(result.states["install"], "InstallComplete")
        self.assertEqual(self.closer.count, 1)

    def test_scenario_existing_user(self):
        site = FakeGitea(users={"alice": "pw123"})
        plan = setup_plan(self.config, with_repository=True)
        result = self.provisioner(site).run(plan, self.inputs())

        self.assertTrue(result.success)
        self.assertEqual(result.states["register_or_login"], "LoggedIn")
        # the failed registration check still left its diagnostics behind
        self.assertTrue(any("verify_signup_redirect" in p for p in result.artifacts))

    def test_scenario_rejected_key(self):
        """Malformed key: no success banner, failed result with an error screenshot."""
        site = FakeGitea(users={"alice": "pw123"})
        inputs = self.inputs(ssh_key="not-a-key")
        result = self.provisioner(site).run(upload_key_plan(self.config), inputs)

        self.assertFalse(result.success)
        self.assertEqual(result.states["upload_ssh_key"], "BannerMissing")
        self.assertTrue(any(p.endswith("error-screenshot-verify_success_banner.png")
                            for p in result.artifacts))
        self.assertEqual(self.closer.count, 1)

    def test_login_failure_skips_repository_and_key(self):
        site = FakeGitea(users={"alice": "wrong"}, registration_open=False)
        plan = setup_plan(self.config, with_repository=True, with_key=True)
        inputs = self.inputs(ssh_key=PUBLIC_KEY)
        result = self.provisioner(site).run(plan, inputs)

        self.assertFalse(result.success)
        self.assertNotIn("create_repository", result.states)
        self.assertNotIn("upload_ssh_key", result.states)
        navigated = [c[1] for c in site.ops("navigate")]
        self.assertNotIn(BASE_URL + "/repo/create", navigated)
        self.assertNotIn(BASE_URL + "/user/settings/keys", navigated)

    def test_full_setup_with_key(self):
        site = FakeGitea()
        plan = setup_plan(self.config, with_repository=True, with_key=True)
        result = self.provisioner(site).run(plan, self.inputs(ssh_key=PUBLIC_KEY))

        self.assertTrue(result.success)
        self.assertEqual(result.states["upload_ssh_key"], "Uploaded")
        # the key workflow reuses the session from register_or_login
        self.assertEqual(len(site.ops("navigate")), 5)

    def test_failed_outcomes_have_artifacts_in_result(self):
        site = FakeGitea(users={"alice": "pw123"})
        plan = setup_plan(self.config, with_repository=True)
        provisioner = self.provisioner(site)
        result = provisioner.run(plan, self.inputs())

        failed = [r for r in self.stdout_records() if r.get("status") == "failed"]
        self.assertTrue(failed)
        for record in failed:
            self.assertTrue(record["artifacts"])
            for path in record["artifacts"]:
                self.assertIn(path, result.artifacts)

    def test_unreachable_host_fails_without_retry(self):
        site = FakeGitea()
        site.unreachable = True
        result = self.provisioner(site).run(setup_plan(self.config), self.inputs())

        self.assertFalse(result.success)
        self.assertIn("unreachable", result.message.lower())
        self.assertEqual(len(site.ops("navigate")), 1)
        self.assertEqual(self.closer.count, 1)

    def test_unwritable_artifacts_dir_keeps_real_failure(self):
        """Diagnostics that cannot be written must not hide the login failure."""
        blocker = Path(self._tmp.name) / "blocker"
        blocker.write_text("not a directory")
        site = FakeGitea(users={"alice": "wrong"}, registration_open=False)
        provisioner = Provisioner(
            self.config,
            emitter=self.emitter,
            session_factory=fake_session_factory(site, str(blocker), self.closer),
            resolver=LocatorResolver(poll_interval=0),
        )
        result = provisioner.run(setup_plan(self.config), self.inputs())

        self.assertFalse(result.success)
        self.assertEqual(result.states["register_or_login"], "LoginFailed")
        self.assertEqual(result.artifacts, [])
        self.assertEqual(self.stdout_records()[-1]["status"], "fatal")
        self.assertEqual(self.closer.count, 1)

    def test_session_closed_once_when_any_operation_crashes(self):
        """Inject a browser crash at every page operation of a full run."""
        reference = FakeGitea(installed=False)
        plan = setup_plan(self.config, with_repository=True, with_key=True)
        self.provisioner(reference).run(plan, self.inputs(ssh_key=PUBLIC_KEY))
        total = len(reference.calls)
        self.assertGreater(total, 10)

        for crash_at in range(1, total + 1):
            with self.subTest(crash_at=crash_at):
                site = FakeGitea(installed=False)
                site.crash_at = crash_at
                closer = CloseCounter()
                provisioner = Provisioner(
                    self.config,
                    emitter=EventEmitter(io.StringIO()),
                    session_factory=fake_session_factory(site, self._tmp.name, closer),
                    resolver=LocatorResolver(poll_interval=0),
                )
                plan = setup_plan(self.config, with_repository=True, with_key=True)
                result = provisioner.run(plan, self.inputs(ssh_key=PUBLIC_KEY))

                if crash_at < total:
                    self.assertFalse(result.success)
                self.assertEqual(closer.count, 1)

    def test_result_is_last_stdout_line(self):
        site = FakeGitea()
        result = self.provisioner(site).run(setup_plan(self.config), self.inputs())

        records = self.stdout_records()
        self.assertEqual(records[-1]["status"], "complete")
        self.assertEqual(records[-1]["success"], result.success)
        self.assertEqual(sum(1 for r in records if "success" in r), 1)
        for record in records:
            self.assertIn("timestamp", record)
            self.assertIn("message", record)

    def test_readiness_check_runs_before_browser(self):
        seen = []
        self.config.timeouts.ready = 30

        def readiness(url, timeout):
            seen.append((url, timeout, self.closer.count))
            return 1

        site = FakeGitea()
        provisioner = self.provisioner(site)
        provisioner.readiness_check = readiness
        result = provisioner.run(setup_plan(self.config, with_repository=False), self.inputs())

        self.assertTrue(result.success)
        self.assertEqual(seen, [(BASE_URL + "/", 30, 0)])


if __name__ == '__main__':
    unittest.main()
