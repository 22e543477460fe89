# app/core/seed.py
"""
Fairness seed for priority scoring and claim codes.

The seed is a 12-hex-char SHA-256 prefix of repository-identifying data:

    "{remote_url}|{first_commit_epoch}|{project_start_time}"

Three small coefficients derived from the seed bound the jitter terms of the
priority score:

    A in [7, 11]   (join latency modulus)
    B in [13, 19]  (account age modulus)
    C in [3, 5]    (burst penalty modulus)

The seed is computed once per process (at startup) and handed to the
services that need it. Missing git metadata never prevents generation.
"""

import hashlib
import logging
import subprocess
import threading
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Optional

from app.core.config import settings

logger = logging.getLogger(__name__)

FALLBACK_REMOTE_URL = "local-development"


@dataclass(frozen=True)
class Coefficients:
    a: int
    b: int
    c: int


@dataclass(frozen=True)
class SeedData:
    seed: str
    coefficients: Coefficients
    project_start_time: str
    remote_url: str
    first_commit_epoch: str


def derive_coefficients(seed: str) -> Coefficients:
    """Map three two-hex-digit windows of the seed into the coefficient ranges."""
    return Coefficients(
        a=7 + int(seed[0:2], 16) % 5,
        b=13 + int(seed[2:4], 16) % 7,
        c=3 + int(seed[4:6], 16) % 3,
    )


def compute_seed(remote_url: str, first_commit_epoch: str, project_start_time: str) -> str:
    raw = f"{remote_url}|{first_commit_epoch}|{project_start_time}"
    return hashlib.sha256(raw.encode()).hexdigest()[:12]


def _run_git(args: list[str], cwd: Optional[str]) -> Optional[str]:
    try:
        result = subprocess.run(
            ["git", *args],
            cwd=cwd,
            capture_output=True,
            text=True,
            timeout=5,
            check=True,
        )
    except (OSError, subprocess.SubprocessError):
        return None
    output = result.stdout.strip()
    return output or None


class SeedAuthority:
    """Computes the seed once and hands out the same SeedData afterwards."""

    def __init__(
        self,
        project_start_time: Optional[str] = None,
        repository_url: Optional[str] = None,
        repo_path: Optional[str] = None,
    ):
        self._project_start_time = project_start_time
        self._repository_url = repository_url
        self._repo_path = repo_path
        self._seed_data: Optional[SeedData] = None
        self._lock = threading.Lock()

    def generate(self) -> SeedData:
        if self._seed_data is not None:
            return self._seed_data

        with self._lock:
            if self._seed_data is None:
                self._seed_data = self._build()
                logger.info(
                    f"Fairness seed initialized: {self._seed_data.seed} "
                    f"(A={self._seed_data.coefficients.a}, "
                    f"B={self._seed_data.coefficients.b}, "
                    f"C={self._seed_data.coefficients.c})"
                )
        return self._seed_data

    def current(self) -> Optional[SeedData]:
        return self._seed_data

    def reset(self) -> None:
        """Clear the cached seed. Only meant for tests."""
        with self._lock:
            self._seed_data = None

    def _build(self) -> SeedData:
        project_start_time = self._project_start_time or datetime.now(timezone.utc).strftime("%Y%m%d%H%M")

        remote_url = self._repository_url or _run_git(["config", "--get", "remote.origin.url"], self._repo_path)
        if not remote_url:
            logger.warning("No git remote found, using fallback identifier for the fairness seed")
            remote_url = FALLBACK_REMOTE_URL

        first_commit_epoch = None
        history = _run_git(["log", "--reverse", "--format=%ct"], self._repo_path)
        if history:
            first_commit_epoch = history.splitlines()[0].strip()
        if not first_commit_epoch:
            first_commit_epoch = str(int(time.time()))

        seed = compute_seed(remote_url, first_commit_epoch, project_start_time)
        return SeedData(
            seed=seed,
            coefficients=derive_coefficients(seed),
            project_start_time=project_start_time,
            remote_url=remote_url,
            first_commit_epoch=first_commit_epoch,
        )


# Process-wide authority, generated once in the application lifespan.
seed_authority = SeedAuthority(
    project_start_time=settings.PROJECT_START_TIME,
    repository_url=settings.REPOSITORY_URL,
)
