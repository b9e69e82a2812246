import os
import shutil
import tempfile
import subprocess
from datetime import datetime
from typing import List, Optional

from yaml import safe_load, YAMLError

from setup_core.errors import PreflightFailure, ValidationFailure


def backup_compose_file(compose_path: str, logger, now: Optional[datetime] = None) -> str:
    """Copy the compose file to `<path>.backup.<YYYYmmdd_HHMMSS>` and return the backup path."""
    ts = (now or datetime.now()).strftime('%Y%m%d_%H%M%S')
    backup_path = f"{compose_path}.backup.{ts}"
    try:
        shutil.copy2(compose_path, backup_path)
    except OSError as e:
        raise PreflightFailure(f"Failed to create backup: {e}")
    if not os.path.isfile(backup_path):
        raise PreflightFailure("Failed to create backup!")
    logger.info(f"Backup created: {backup_path}")
    return backup_path


def restore_backup(backup_path: str, compose_path: str, logger) -> None:
    shutil.copy2(backup_path, compose_path)
    logger.warning(f"Restored {compose_path} from {backup_path}")


def write_compose_atomic(compose_path: str, text: str, logger) -> None:
    """Write text next to the compose file, then move it into place.

    Mode and ownership of the existing file are carried over where possible.
    """
    compose_dir = os.path.dirname(os.path.abspath(compose_path))
    try:
        st = os.stat(compose_path)
        orig_mode = st.st_mode & 0o777
        orig_uid, orig_gid = st.st_uid, st.st_gid
    except FileNotFoundError:
        orig_mode = orig_uid = orig_gid = None

    fd, tmp_path = tempfile.mkstemp(prefix='.docker-compose-', suffix='.yml.tmp', dir=compose_dir)
    try:
        with os.fdopen(fd, 'w', encoding='utf-8') as tf:
            tf.write(text)
            tf.flush()
            os.fsync(tf.fileno())
        if orig_mode is not None:
            os.chmod(tmp_path, orig_mode)
        os.replace(tmp_path, compose_path)
    except Exception:
        if os.path.exists(tmp_path):
            os.remove(tmp_path)
        raise
    if orig_uid is not None:
        try:
            os.chown(compose_path, orig_uid, orig_gid)
        except PermissionError:
            logger.warning(f"Could not restore ownership of {compose_path}")
    logger.debug(f"Wrote {compose_path}")


def get_compose_command(shutil_module, runner=subprocess.run) -> Optional[List[str]]:
    """Determine docker compose command (plugin or standalone).

    Accepts the calling module's `shutil` so callers can allow monkeypatching
    on their own imported object. Returns None when neither is available.
    """
    if shutil_module.which('docker') is not None:
        try:
            runner(['docker', 'compose', 'version'], capture_output=True, text=True, check=True)
            return ['docker', 'compose']
        except (subprocess.CalledProcessError, OSError):
            pass
    if shutil_module.which('docker-compose') is not None:
        return ['docker-compose']
    return None


def run_compose(args: List[str], cwd: str, logger, timeout: Optional[int] = None) -> subprocess.CompletedProcess:
    """Run a compose command, raising RuntimeError with its stderr on failure."""
    logger.debug(f"Running: {' '.join(args)}")
    try:
        return subprocess.run(
            args, cwd=cwd, capture_output=True, text=True, check=True, timeout=timeout
        )
    except subprocess.CalledProcessError as e:
        raise RuntimeError(f"Compose command failed: {(e.stderr or '').strip() or e}")
    except subprocess.TimeoutExpired:
        raise RuntimeError(f"Compose command timed out after {timeout}s: {' '.join(args)}")


def check_compose_yaml(text: str) -> None:
    """Parse merged compose text locally; it must be a mapping with services."""
    try:
        data = safe_load(text)
    except YAMLError as e:
        raise ValidationFailure(f"docker-compose.yml syntax error: {e}")
    if not isinstance(data, dict):
        raise ValidationFailure("docker-compose.yml must contain a mapping at the top level")
    if not isinstance(data.get('services'), dict):
        raise ValidationFailure("docker-compose.yml has no 'services' mapping")


def validate_compose_file(compose_path: str, compose_cmd: Optional[List[str]], logger, timeout: Optional[int] = None) -> None:
    """Validate the compose file locally and, when available, with `compose config`."""
    with open(compose_path, 'r', encoding='utf-8') as f:
        check_compose_yaml(f.read())
    if not compose_cmd:
        logger.warning("No compose command available; skipped 'compose config' validation")
        return
    cwd = os.path.dirname(os.path.abspath(compose_path))
    try:
        run_compose([*compose_cmd, '-f', compose_path, 'config', '-q'], cwd, logger, timeout)
    except RuntimeError as e:
        raise ValidationFailure(f"docker-compose.yml syntax error! {e}")


def compose_up(compose_path: str, compose_cmd: List[str], logger, timeout: Optional[int] = None) -> None:
    cwd = os.path.dirname(os.path.abspath(compose_path))
    run_compose([*compose_cmd, '-f', compose_path, 'up', '-d'], cwd, logger, timeout)


def compose_ps_names(compose_path: str, compose_cmd: List[str], logger, timeout: Optional[int] = None) -> List[str]:
    """Names of the containers belonging to the compose project."""
    cwd = os.path.dirname(os.path.abspath(compose_path))
    try:
        result = run_compose([*compose_cmd, '-f', compose_path, 'ps', '--format', '{{.Names}}'], cwd, logger, timeout)
    except RuntimeError as e:
        logger.warning(f"Could not list compose containers: {e}")
        return []
    return [line.strip() for line in result.stdout.splitlines() if line.strip()]
