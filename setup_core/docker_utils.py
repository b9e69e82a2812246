from typing import Any, List, Tuple

import docker
from docker.errors import DockerException, NotFound, APIError

from setup_core.errors import DiscoveryFailure, PreflightFailure, SetupError


def init_docker_client(logger) -> Any:
    """Return a Docker client after checking the daemon answers."""
    try:
        client = docker.from_env()
        client.ping()
    except DockerException as e:
        logger.debug(f"Docker client init failed: {e}")
        raise PreflightFailure("Docker daemon is not running!")
    logger.debug("Docker client initialized successfully")
    return client


def _running_containers(docker_client, logger=None) -> list:
    try:
        return docker_client.containers.list()
    except DockerException as e:
        if logger:
            logger.debug(f"Container listing failed: {e}")
        raise SetupError(f"Cannot list containers, Docker daemon did not answer: {e}")


def list_container_names(docker_client, logger=None) -> List[str]:
    """Names of running containers."""
    return [c.name for c in _running_containers(docker_client, logger)]


def find_container(docker_client, pattern: str, logger) -> str:
    """First running container whose name contains `pattern` (case-insensitive)."""
    names = list_container_names(docker_client, logger)
    for name in names:
        if pattern.lower() in name.lower():
            return name
    logger.info("Running containers:")
    for name in names:
        logger.info(f"  {name}")
    raise DiscoveryFailure(f"No running {pattern} container found!")


def remove_container(docker_client, name: str, logger) -> bool:
    """Stop and remove a container by name. Returns False when it does not exist."""
    try:
        container = docker_client.containers.get(name)
    except NotFound:
        return False
    except DockerException as e:
        raise SetupError(f"Cannot inspect container {name}: {e}")
    try:
        container.stop()
    except APIError as e:
        logger.warning(f"Failed to stop {name}: {e}")
    try:
        container.remove()
    except NotFound:
        pass
    except APIError as e:
        logger.warning(f"Failed to remove {name}: {e}")
    return True


def not_running(docker_client, names: List[str], logger) -> List[str]:
    """Subset of `names` whose containers are not in the running state."""
    failed = []
    for name in names:
        try:
            c = docker_client.containers.get(name)
            c.reload()
            if not c.attrs.get('State', {}).get('Running'):
                failed.append(name)
        except DockerException as e:
            logger.debug(f"Inspect failed for {name}: {e}")
            failed.append(name)
    return failed


def container_table(docker_client, patterns: List[str], logger=None) -> List[Tuple[str, str, str]]:
    """(name, status, image) for running containers whose name matches any pattern."""
    rows = []
    for c in _running_containers(docker_client, logger):
        if not any(p in c.name for p in patterns):
            continue
        tags = getattr(c.image, 'tags', None) or []
        image = tags[0] if tags else c.attrs.get('Config', {}).get('Image', '')
        rows.append((c.name, c.status, image))
    return rows
