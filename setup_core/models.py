import os
from dataclasses import dataclass, field
from typing import List, Optional

DEFAULT_CANDIDATE_PATHS = [
    '/root/docker-compose.yml',
    '/root/docker-compose.yaml',
    '/opt/n8n/docker-compose.yml',
    '/opt/n8n/docker-compose.yaml',
    '/home/*/docker-compose.yml',
    '/opt/docker-compose.yml',
]
DEFAULT_SEARCH_ROOTS = ['/root', '/opt', '/home']


@dataclass
class SetupConfig:
    """Settings for one setup run."""
    update_time: int = 2  # hour of day, 0-23
    timezone: str = 'Europe/Berlin'
    compose_file: Optional[str] = None  # skips discovery when set
    assume_yes: bool = False
    compose_timeout_sec: int = 120
    settle_seconds: int = 5
    marker: str = 'n8n'
    service_name: str = 'watchtower'
    anchor_key: str = 'volumes'
    candidate_paths: List[str] = field(default_factory=lambda: list(DEFAULT_CANDIDATE_PATHS))
    search_roots: List[str] = field(default_factory=lambda: list(DEFAULT_SEARCH_ROOTS))
    search_depth: int = 4


@dataclass
class SetupPlan:
    """What a run found on the host and what it is about to change."""
    compose_file: str
    n8n_container: str
    mode: str = 'install'  # install, update
    current_time: Optional[int] = None
    backup_file: Optional[str] = None

    @property
    def compose_dir(self) -> str:
        return os.path.dirname(os.path.abspath(self.compose_file))
