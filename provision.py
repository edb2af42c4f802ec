#!/usr/bin/env python3
"""
Gitea UI Provisioner CLI

Completes first-run setup of a Gitea instance through its web UI.

Usage:
    python provision.py setup <username> <password> <email> [repo_name] [ssh_key] [--generate-key]
    python provision.py upload-key <username> <password> <ssh_key>

Global options (before the command):
    --config <file.yaml>   --base-url <url>   --visible   --timeout <s>
    --artifacts-dir <dir>  --wait-ready <s>   --verbose

stdout receives one JSON record per event; the last line is the final
result. Logs go to stderr. Exit code 0 on success, 1 otherwise.
"""

import argparse
import logging
import sys

from config_loader import load_config, validate_config
from errors import ConfigError, ProvisionError
from provisioner import Provisioner, build_inputs, setup_plan, upload_key_plan
from reporting import EventEmitter
from ssh_keys import generate_key_pair, looks_like_public_key, read_public_key
from workflow_models import WorkflowResult

logger = logging.getLogger(__name__)


def _require(args, *names):
    """Empty strings pass argparse; treat them as missing."""
    missing = [name for name in names if not getattr(args, name)]
    if missing:
        raise ConfigError(f"Missing required arguments: {', '.join(missing)}")


def _ssh_key(args):
    key = read_public_key(args.ssh_key)
    if not looks_like_public_key(key):
        logger.warning("ssh_key does not look like an OpenSSH public key; Gitea will probably reject it")
    return key


def cmd_setup(args, config, emitter):
    _require(args, "username", "password", "email")

    ssh_key = ""
    if args.ssh_key:
        ssh_key = _ssh_key(args)
    elif args.generate_key:
        key_path, ssh_key = generate_key_pair(args.username, args.email)
        emitter.emit("artifact", f"Generated SSH key {key_path}", path=str(key_path))

    inputs = build_inputs(config, args.username, args.password, args.email,
                          repo_name=args.repo_name or "", ssh_key=ssh_key)
    plan = setup_plan(config, with_repository=bool(args.repo_name), with_key=bool(ssh_key))
    return Provisioner(config, emitter).run(plan, inputs)


def cmd_upload_key(args, config, emitter):
    _require(args, "username", "password", "ssh_key")
    inputs = build_inputs(config, args.username, args.password, ssh_key=_ssh_key(args))
    return Provisioner(config, emitter).run(upload_key_plan(config), inputs)


def main(argv=None):
    parser = argparse.ArgumentParser(description="Gitea UI Provisioner")
    parser.add_argument("--config", help="YAML config file")
    parser.add_argument("--base-url", help="Gitea base URL (default http://localhost:3000)")
    parser.add_argument("--visible", action="store_true", help="Run with visible browser")
    parser.add_argument("--timeout", type=float, help="Per-step timeout in seconds")
    parser.add_argument("--artifacts-dir", help="Directory for screenshots and snapshots")
    parser.add_argument("--wait-ready", type=float, metavar="SECONDS",
                        help="Wait for the instance to answer before starting")
    parser.add_argument("--verbose", action="store_true", help="Debug logging")

    sub = parser.add_subparsers(dest="command", required=True)

    # setup
    p_setup = sub.add_parser("setup", help="Install, register/login, create repo, upload key")
    p_setup.add_argument("username")
    p_setup.add_argument("password")
    p_setup.add_argument("email")
    p_setup.add_argument("repo_name", nargs="?")
    p_setup.add_argument("ssh_key", nargs="?", help="Public key text or path to a .pub file")
    p_setup.add_argument("--generate-key", action="store_true",
                         help="Generate an ed25519 key when no ssh_key is given")

    # upload-key
    p_key = sub.add_parser("upload-key", help="Log in and upload an SSH public key")
    p_key.add_argument("username")
    p_key.add_argument("password")
    p_key.add_argument("ssh_key", help="Public key text or path to a .pub file")

    args = parser.parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format='%(asctime)s - %(levelname)s - %(message)s',
        stream=sys.stderr,
    )

    emitter = EventEmitter()
    commands = {
        "setup": cmd_setup,
        "upload-key": cmd_upload_key,
    }

    try:
        config = load_config(args.config).with_overrides(
            base_url=args.base_url,
            artifacts_dir=args.artifacts_dir,
            headless=False if args.visible else None,
            step_timeout=args.timeout,
            ready_timeout=args.wait_ready,
        )
        for warning in validate_config(config):
            logger.warning(warning)

        emitter.emit("starting", f"Running {args.command} against {config.base_url}")
        result = commands[args.command](args, config, emitter)
    except ConfigError as e:
        logger.error(e.message)
        emitter.emit("error", e.message)
        emitter.result(WorkflowResult(success=False, message=e.message))
        sys.exit(1)
    except ProvisionError as e:
        logger.error(f"Provisioning failed: {e.message}")
        emitter.result(WorkflowResult(success=False, message=e.message))
        sys.exit(1)
    except Exception as e:
        logger.exception("Unhandled error")
        emitter.result(WorkflowResult(success=False, message=f"Unhandled error: {e}"))
        sys.exit(1)

    if not result.success:
        logger.error(result.message)
        sys.exit(1)
    logger.info(result.message)


if __name__ == "__main__":
    main()
