"""
Config loader for the provisioner.

Loads an optional YAML file that overrides the defaults in
provision_config.py. Example:

    base_url: http://gitea.internal:3000
    artifacts_dir: output/artifacts
    browser:
      headless: false
      viewport: {width: 1440, height: 900}
    timeouts:
      step: 45
      banner: 5
    install:
      site_title: Team Gitea
      ssh_port: "2222"
"""

from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml

import provision_config
from errors import ConfigError


@dataclass
class BrowserConfig:
    """Browser launch settings."""
    headless: bool = provision_config.HEADLESS
    viewport_width: int = provision_config.VIEWPORT_WIDTH
    viewport_height: int = provision_config.VIEWPORT_HEIGHT


@dataclass
class TimeoutConfig:
    """Timeouts in seconds."""
    step: float = provision_config.STEP_TIMEOUT
    probe: float = provision_config.PROBE_TIMEOUT
    banner: float = provision_config.BANNER_TIMEOUT
    install: float = provision_config.INSTALL_TIMEOUT
    poll_interval: float = provision_config.POLL_INTERVAL
    ready: float = provision_config.READY_TIMEOUT


@dataclass
class InstallConfig:
    """Values filled into the install form."""
    site_title: str = provision_config.SITE_TITLE
    ssh_port: str = provision_config.SSH_PORT


@dataclass
class ProvisionConfig:
    """
    Complete run configuration.

    Immutable in practice: overrides produce a new instance via with_overrides().
    """
    base_url: str = provision_config.BASE_URL
    artifacts_dir: str = provision_config.ARTIFACTS_DIR
    browser: BrowserConfig = field(default_factory=BrowserConfig)
    timeouts: TimeoutConfig = field(default_factory=TimeoutConfig)
    install: InstallConfig = field(default_factory=InstallConfig)

    def url(self, path: str) -> str:
        """Join a remote path onto the base URL."""
        return self.base_url.rstrip('/') + '/' + path.lstrip('/')

    def with_overrides(self, base_url: Optional[str] = None,
                       artifacts_dir: Optional[str] = None,
                       headless: Optional[bool] = None,
                       step_timeout: Optional[float] = None,
                       ready_timeout: Optional[float] = None) -> 'ProvisionConfig':
        """Return a copy with command line values applied (None = keep)."""
        config = replace(self, browser=replace(self.browser), timeouts=replace(self.timeouts),
                         install=replace(self.install))
        if base_url:
            config.base_url = base_url
        if artifacts_dir:
            config.artifacts_dir = artifacts_dir
        if headless is not None:
            config.browser.headless = headless
        if step_timeout is not None:
            config.timeouts.step = step_timeout
        if ready_timeout is not None:
            config.timeouts.ready = ready_timeout
        return config

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'ProvisionConfig':
        """
        Create a ProvisionConfig from a dictionary (loaded from YAML).

        Args:
            data: Dictionary from YAML file

        Returns:
            ProvisionConfig instance

        Raises:
            ConfigError: If a field has the wrong type or value
        """
        config = cls()

        if 'base_url' in data:
            base_url = data['base_url']
            if not isinstance(base_url, str) or not base_url.strip():
                raise ConfigError("'base_url' must be a non-empty string")
            config.base_url = base_url

        if 'artifacts_dir' in data:
            config.artifacts_dir = str(data['artifacts_dir'])

        browser_data = _section(data, 'browser')
        if 'headless' in browser_data:
            config.browser.headless = bool(browser_data['headless'])
        viewport = browser_data.get('viewport')
        if viewport is not None:
            if not isinstance(viewport, dict):
                raise ConfigError("'browser.viewport' must be a dictionary")
            config.browser.viewport_width = _positive_int(viewport, 'width', config.browser.viewport_width)
            config.browser.viewport_height = _positive_int(viewport, 'height', config.browser.viewport_height)

        timeouts_data = _section(data, 'timeouts')
        for name in ('step', 'probe', 'banner', 'install', 'poll_interval', 'ready'):
            if name in timeouts_data:
                value = timeouts_data[name]
                if not isinstance(value, (int, float)) or value < 0:
                    raise ConfigError(f"'timeouts.{name}' must be a non-negative number")
                setattr(config.timeouts, name, float(value))

        install_data = _section(data, 'install')
        if 'site_title' in install_data:
            config.install.site_title = str(install_data['site_title'])
        if 'ssh_port' in install_data:
            config.install.ssh_port = str(install_data['ssh_port'])

        return config


def _section(data: Dict[str, Any], name: str) -> Dict[str, Any]:
    value = data.get(name) or {}
    if not isinstance(value, dict):
        raise ConfigError(f"'{name}' must be a dictionary")
    return value


def _positive_int(data: Dict[str, Any], key: str, default: int) -> int:
    value = data.get(key, default)
    if not isinstance(value, int) or value <= 0:
        raise ConfigError(f"'browser.viewport.{key}' must be a positive integer")
    return value


def load_config(file_path: Optional[str] = None) -> ProvisionConfig:
    """
    Load configuration from a YAML file, or defaults when no path is given.

    Raises:
        ConfigError: If the file is missing or invalid
    """
    if not file_path:
        return ProvisionConfig()

    path = Path(file_path)
    if not path.exists():
        raise ConfigError(f"Config file not found: {file_path}")

    try:
        with open(path, 'r', encoding='utf-8') as f:
            data = yaml.safe_load(f)
    except yaml.YAMLError as e:
        raise ConfigError(f"Could not parse {file_path}: {e}") from e

    if data is None:
        return ProvisionConfig()
    if not isinstance(data, dict):
        raise ConfigError("Config file must contain a YAML dictionary")

    return ProvisionConfig.from_dict(data)


def validate_config(config: ProvisionConfig) -> List[str]:
    """
    Validate a config and return a list of warnings (not errors).
    """
    warnings = []

    if not config.base_url.startswith('http://') and not config.base_url.startswith('https://'):
        warnings.append(f"base_url may be invalid (missing http/https): {config.base_url}")

    if config.timeouts.step > 120:
        warnings.append(f"step timeout is very high: {config.timeouts.step}s")

    if config.timeouts.banner > config.timeouts.step:
        warnings.append("banner timeout exceeds the step timeout; the banner check stays best-effort")

    if not config.install.ssh_port.isdigit():
        warnings.append(f"install.ssh_port is not numeric: {config.install.ssh_port}")

    return warnings
