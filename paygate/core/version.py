# paygate/core/version.py
"""Version string from a VERSION file, installed package metadata, or git."""
import subprocess
from functools import lru_cache
from importlib import metadata
from pathlib import Path


DISTRIBUTION_NAME = "x402-fortune-gate"
VERSION_FILE = Path(__file__).parent.parent.parent / "VERSION"


def _git_version() -> str:
    commit_count = subprocess.run(
        ["git", "rev-list", "--count", "HEAD"],
        capture_output=True,
        text=True,
        check=True
    ).stdout.strip()
    short_hash = subprocess.run(
        ["git", "rev-parse", "--short", "HEAD"],
        capture_output=True,
        text=True,
        check=True
    ).stdout.strip()
    return f"0.{commit_count}.{short_hash}"


@lru_cache()
def get_version() -> str:
    """Resolve the running version.

    Priority:
    1. VERSION file (container builds)
    2. Installed distribution metadata
    3. Git commit count + short hash (source checkouts)
    4. Fallback to 0.0.0-unknown
    """
    if VERSION_FILE.exists():
        version = VERSION_FILE.read_text().strip()
        if version:
            return version

    try:
        return metadata.version(DISTRIBUTION_NAME)
    except metadata.PackageNotFoundError:
        pass

    try:
        return _git_version()
    except (subprocess.CalledProcessError, FileNotFoundError):
        return "0.0.0-unknown"


VERSION = get_version()
