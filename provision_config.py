"""
Default settings for the Gitea UI provisioner.

Each value can be overridden through the environment, a YAML config file
(see config_loader.py) or command line flags, in increasing priority.
"""

import os

# Base URL of the Gitea instance; every workflow path is relative to it
BASE_URL = os.environ.get("PROVISION_BASE_URL", "http://localhost:3000")

# Browser headless mode
# False = browser window visible (useful when debugging a flow)
HEADLESS = os.environ.get("PROVISION_HEADLESS", "1") not in ("0", "false", "no")

# Viewport of the single page the run owns
VIEWPORT_WIDTH = 1280
VIEWPORT_HEIGHT = 800

# Default per-step timeout in seconds (locator resolution and navigation)
STEP_TIMEOUT = float(os.environ.get("PROVISION_STEP_TIMEOUT", "30"))

# Short timeout for probes that detect remote state (install page, sign-up form)
PROBE_TIMEOUT = 5.0

# Success banner check after key upload; best-effort, see UploadSSHKeyWorkflow
BANNER_TIMEOUT = 5.0

# Installation can take a while on first boot
INSTALL_TIMEOUT = 120.0

# Interval between polls when resolving a locator
POLL_INTERVAL = 0.25

# Where screenshots and page snapshots are written
ARTIFACTS_DIR = os.environ.get("PROVISION_ARTIFACTS_DIR", ".")

# Readiness wait before opening the browser (seconds, 0 = disabled)
READY_TIMEOUT = 0
READY_INTERVAL = 1.0

# Values filled into the install form when it is shown
SITE_TITLE = "Gitea: Git with a cup of tea"
SSH_PORT = "22"

# Remote paths
INSTALL_PATH = "/"
SIGN_UP_PATH = "/user/sign_up"
LOGIN_PATH = "/user/login"
REPO_CREATE_PATH = "/repo/create"
SSH_KEYS_PATH = "/user/settings/keys"
