#!/usr/bin/env python3
"""
n8n Watchtower Setup
Adds or updates a Watchtower service in an existing docker-compose.yml so the
n8n container is updated automatically every night, then restarts the stack.
"""

import os
import sys
import time
import logging
import argparse
import shutil
from typing import List, Optional, Tuple

from setup_core.logging_utils import ColorFormatter, JSONFormatter
from setup_core.compose_utils import (
    backup_compose_file as cu_backup_compose_file,
    compose_ps_names as cu_compose_ps_names,
    compose_up as cu_compose_up,
    get_compose_command as cu_get_compose_command,
    restore_backup as cu_restore_backup,
    validate_compose_file as cu_validate_compose_file,
    write_compose_atomic as cu_write_compose_atomic,
)
from setup_core import config_utils as cfg
from setup_core import discovery_utils as disc
from setup_core import docker_utils as du
from setup_core import merge_utils as mu
from setup_core.errors import PreflightFailure, SetupError, ValidationFailure
from setup_core.models import SetupConfig, SetupPlan

TOTAL_STEPS = 7


def setup_logging(level: Optional[str] = None, fmt: Optional[str] = None) -> logging.Logger:
    """Configure root logging for console (and optionally file) output."""
    log_level = (level or os.getenv('LOG_LEVEL', 'INFO')).upper()
    default_fmt = 'color' if sys.stdout.isatty() else 'plain'
    log_format = (fmt or os.getenv('LOG_FORMAT', default_fmt)).lower()

    handlers: List[logging.Handler] = [logging.StreamHandler(sys.stdout)]
    log_dir = os.getenv('LOG_DIR')
    file_handler = None
    if log_dir:
        try:
            os.makedirs(log_dir, exist_ok=True)
            file_handler = logging.FileHandler(os.path.join(log_dir, 'watchtower_setup.log'))
            handlers.append(file_handler)
        except OSError as e:
            print(f"Cannot write logs to {log_dir}: {e}", file=sys.stderr)

    logging.basicConfig(level=getattr(logging, log_level, logging.INFO), handlers=handlers, force=True)
    plain = logging.Formatter('%(asctime)s - %(levelname)s - %(message)s')
    if log_format == 'json':
        console = JSONFormatter()
    elif log_format == 'color':
        console = ColorFormatter()
    else:
        console = plain
    for h in logging.getLogger().handlers:
        h.setFormatter(plain if h is file_handler else console)
    return logging.getLogger(__name__)


class WatchtowerSetup:
    """Installs or updates the Watchtower service next to n8n."""

    def __init__(self, config: SetupConfig, docker_client=None):
        self.config = config
        self.logger = logging.getLogger(__name__)
        self.docker_client = docker_client

    def _step(self, n: int, msg: str):
        step = f"{n}/{TOTAL_STEPS}"
        self.logger.info(f"[{step}] {msg}", extra={'step': step})

    def _success(self, msg: str):
        self.logger.info(msg, extra={'success': True})

    def get_compose_command(self) -> Optional[List[str]]:
        """Determine docker compose command (plugin or standalone)."""
        return cu_get_compose_command(shutil)

    def preflight(self):
        """Root, Docker CLI and daemon checks."""
        self._step(1, "Running pre-flight checks...")
        if hasattr(os, 'geteuid') and os.geteuid() != 0:
            raise PreflightFailure("This script must be run as root or with sudo")
        if shutil.which('docker') is None:
            raise PreflightFailure("Docker is not installed!")
        if self.docker_client is None:
            self.docker_client = du.init_docker_client(self.logger)
        self._success("Pre-flight checks passed")

    def locate_compose_file(self) -> str:
        self._step(2, "Searching for docker-compose.yml...")
        path = disc.find_compose_file(
            self.config.candidate_paths,
            self.config.search_roots,
            self.config.search_depth,
            self.config.marker,
            self.logger,
            explicit=self.config.compose_file,
        )
        self._success(f"Found: {path}")
        return path

    def find_n8n_container(self) -> str:
        self._step(3, f"Checking for {self.config.marker} container...")
        name = du.find_container(self.docker_client, self.config.marker, self.logger)
        self._success(f"Found {self.config.marker} container: {name}")
        return name

    def detect_mode(self, text: str) -> Tuple[str, Optional[int]]:
        """Return ('update', current hour) when a Watchtower block exists, else ('install', None)."""
        self._step(4, "Detecting installation mode...")
        if mu.has_block(text, self.config.service_name):
            current = mu.extract_schedule_hour(text, self.config.service_name)
            shown = f"{current}:00" if current is not None else "unknown"
            self.logger.warning(f"Watchtower already configured (current time: {shown})")
            self.logger.info("Mode: UPDATE - Will update existing configuration")
            return 'update', current
        self._success("Mode: INSTALL - Fresh installation")
        return 'install', None

    def confirm(self, plan: SetupPlan) -> bool:
        self.logger.info("Configuration:")
        self.logger.info(f"  • {self.config.marker} container: {plan.n8n_container}")
        self.logger.info(f"  • Update time: {self.config.update_time}:00 {self.config.timezone}")
        if plan.mode == 'update' and plan.current_time is not None and plan.current_time != self.config.update_time:
            self.logger.info(f"  • Time change: {plan.current_time}:00 → {self.config.update_time}:00")
        if self.config.assume_yes:
            return True
        try:
            answer = input("Continue? (Y/n): ").strip()
        except EOFError:
            answer = ''
        return (answer or 'Y') in ('Y', 'y')

    def build_document(self, text: str, plan: SetupPlan) -> str:
        block = cfg.render_watchtower_block(self.config.update_time, self.config.timezone, plan.n8n_container)
        return mu.merge(text, self.config.service_name, block, self.config.anchor_key)

    def apply(self, text: str, plan: SetupPlan, compose_cmd: Optional[List[str]]):
        """Back up, write the merged document and validate it, restoring on failure."""
        self._step(5, "Creating backup...")
        merged = self.build_document(text, plan)
        plan.backup_file = cu_backup_compose_file(plan.compose_file, self.logger)

        self._step(6, "Configuring Watchtower...")
        try:
            cu_write_compose_atomic(plan.compose_file, merged, self.logger)
        except OSError as e:
            raise SetupError(f"Failed to write {plan.compose_file}: {e}")
        if plan.mode == 'update':
            self._success("Replaced old Watchtower configuration")
        self._success("Watchtower configuration added")

        self.logger.info("Validating docker-compose.yml syntax...")
        try:
            cu_validate_compose_file(plan.compose_file, compose_cmd, self.logger, self.config.compose_timeout_sec)
        except ValidationFailure:
            self.logger.error("docker-compose.yml syntax error! Restoring backup...")
            cu_restore_backup(plan.backup_file, plan.compose_file, self.logger)
            raise
        self._success("Syntax validation passed")

    def restart(self, plan: SetupPlan, compose_cmd: Optional[List[str]]):
        self._step(7, "Starting containers...")
        if not compose_cmd:
            raise PreflightFailure("Neither 'docker compose' nor 'docker-compose' found!")
        if self.config.service_name in du.list_container_names(self.docker_client, self.logger):
            self.logger.info("Stopping existing Watchtower container...")
            du.remove_container(self.docker_client, self.config.service_name, self.logger)
        try:
            cu_compose_up(plan.compose_file, compose_cmd, self.logger, self.config.compose_timeout_sec)
        except RuntimeError as e:
            raise SetupError(str(e))

        self.logger.info("Waiting for containers to initialize...")
        time.sleep(self.config.settle_seconds)
        names = cu_compose_ps_names(plan.compose_file, compose_cmd, self.logger, self.config.compose_timeout_sec)
        failed = du.not_running(self.docker_client, names, self.logger)
        if failed:
            self.logger.warning(f"Some containers may not be running properly: {' '.join(failed)}")
            self.logger.info("Check with: docker ps -a")
        return failed

    def summary(self, plan: SetupPlan):
        if plan.mode == 'update':
            self._success("Watchtower configuration updated!")
        else:
            self._success("Watchtower installation complete!")
        hour = self.config.update_time
        self.logger.info("Running containers:")
        patterns = [self.config.marker, self.config.service_name, 'traefik']
        try:
            rows = du.container_table(self.docker_client, patterns, self.logger)
        except SetupError as e:
            self.logger.warning(str(e))
            rows = []
        for name, status, image in rows:
            self.logger.info(f"  {name:<24} {status:<12} {image}")
        self.logger.info("Summary:")
        self.logger.info(f"  • {self.config.marker} container: {plan.n8n_container}")
        self.logger.info(f"  • Update schedule: Every day at {hour}:00 {self.config.timezone}")
        self.logger.info(f"  • Backup location: {plan.backup_file}")
        self.logger.info(f"Watchtower will automatically update {self.config.marker} every night at {hour}:00.")
        self.logger.info("Useful commands:")
        self.logger.info("  • Check logs:     docker logs watchtower")
        self.logger.info("  • Force update:   docker exec watchtower /watchtower --run-once")
        self.logger.info(f"  • Change time:    UPDATE_TIME={(hour + 1) % 24} watchtower-setup")

    def run(self) -> int:
        """Run all steps. Returns the process exit code."""
        self.preflight()
        compose_file = self.locate_compose_file()
        container = self.find_n8n_container()

        with open(compose_file, 'r', encoding='utf-8') as f:
            text = f.read()
        mode, current = self.detect_mode(text)
        plan = SetupPlan(compose_file=compose_file, n8n_container=container, mode=mode, current_time=current)

        if not self.confirm(plan):
            self.logger.info("Aborted by user.")
            return 0

        compose_cmd = self.get_compose_command()
        self.apply(text, plan, compose_cmd)
        self.restart(plan, compose_cmd)
        self.summary(plan)
        return 0


def main():
    """Main entry point."""
    parser = argparse.ArgumentParser(description='Add or update Watchtower auto-updates for n8n')
    parser.add_argument('-f', '--compose-file', dest='compose_file', help='Path to docker-compose.yml (skips discovery)')
    parser.add_argument('-t', '--update-time', dest='update_time', help='Hour of day (0-23) for the nightly update')
    parser.add_argument('--timezone', dest='timezone', help='Timezone for the update schedule, e.g. Europe/Berlin')
    parser.add_argument('-y', '--yes', action='store_true', help='Do not ask for confirmation')
    parser.add_argument('--env-file', dest='env_file', help='Optional .env file with UPDATE_TIME/TIMEZONE')
    parser.add_argument('--log-level', dest='log_level', help='DEBUG, INFO, WARNING or ERROR')
    parser.add_argument('--log-format', dest='log_format', choices=['plain', 'color', 'json'])
    args = parser.parse_args()

    logger = setup_logging(args.log_level, args.log_format)
    cfg.load_env_file(args.env_file, logger)
    try:
        config = cfg.load_settings(args)
        code = WatchtowerSetup(config).run()
    except SetupError as e:
        logger.error(str(e))
        sys.exit(1)
    except KeyboardInterrupt:
        logger.info("Interrupted.")
        sys.exit(130)
    sys.exit(code)


if __name__ == "__main__":
    main()
