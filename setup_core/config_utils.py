import os
import re
from typing import Any, Mapping, Optional

from dotenv import load_dotenv

from setup_core.errors import PreflightFailure
from setup_core.models import SetupConfig

DEFAULT_ENV_FILE = '/etc/n8n-watchtower/.env'

WATCHTOWER_TEMPLATE = """watchtower:
  image: containrrr/watchtower
  container_name: watchtower
  restart: always
  volumes:
    - /var/run/docker.sock:/var/run/docker.sock
  environment:
    - WATCHTOWER_CLEANUP=true
    - WATCHTOWER_SCHEDULE=0 0 {update_time} * * *
    - WATCHTOWER_ROLLING_RESTART=true
    - WATCHTOWER_INCLUDE_RESTARTING=true
    - TZ={timezone}
  command: {container}"""


def load_env_file(path: Optional[str], logger) -> bool:
    """Load KEY=VALUE pairs from a .env file if it exists. Existing env wins."""
    env_file = path or os.getenv('ENV_FILE', DEFAULT_ENV_FILE)
    if not os.path.exists(env_file):
        return False
    try:
        load_dotenv(env_file, override=False)
        logger.debug(f"Loaded environment variables from {env_file}")
        return True
    except PermissionError:
        logger.warning(f"Permission denied reading {env_file}")
        return False


def validate_update_time(value: Any) -> int:
    """Return the update hour as int; digits only, 0-23."""
    text = str(value).strip()
    if not re.fullmatch(r'[0-9]+', text) or not 0 <= int(text) <= 23:
        raise PreflightFailure("UPDATE_TIME must be a number between 0 and 23")
    return int(text)


def _int_env(env: Mapping[str, str], name: str, default: int) -> int:
    try:
        return int(env.get(name, default))
    except (TypeError, ValueError):
        return default


def _truthy(value: Optional[str]) -> bool:
    return (value or '').strip().lower() in ('1', 'true', 'yes', 'y')


def load_settings(args=None, env: Optional[Mapping[str, str]] = None) -> SetupConfig:
    """Build SetupConfig from the environment, with CLI arguments taking precedence."""
    if env is None:
        env = os.environ

    update_time = env.get('UPDATE_TIME', '2')
    timezone = env.get('TIMEZONE', 'Europe/Berlin')
    compose_file = env.get('COMPOSE_FILE') or None
    assume_yes = _truthy(env.get('ASSUME_YES'))

    if args is not None:
        if getattr(args, 'update_time', None) is not None:
            update_time = args.update_time
        if getattr(args, 'timezone', None):
            timezone = args.timezone
        if getattr(args, 'compose_file', None):
            compose_file = args.compose_file
        if getattr(args, 'yes', False):
            assume_yes = True

    if not timezone or not timezone.strip():
        raise PreflightFailure("TIMEZONE must not be empty")

    return SetupConfig(
        update_time=validate_update_time(update_time),
        timezone=timezone.strip(),
        compose_file=compose_file,
        assume_yes=assume_yes,
        compose_timeout_sec=_int_env(env, 'COMPOSE_TIMEOUT', 120),
        settle_seconds=_int_env(env, 'SETTLE_SECONDS', 5),
    )


def render_watchtower_block(update_time: int, timezone: str, container: str, indent: int = 2) -> str:
    """Render the Watchtower service block, indented to sit under `services:`."""
    text = WATCHTOWER_TEMPLATE.format(update_time=update_time, timezone=timezone, container=container)
    pad = ' ' * indent
    return '\n'.join(pad + line for line in text.splitlines())
