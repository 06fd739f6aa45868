"""
Session store configuration.

The only value a host normally changes is the pool service base URL.
It can come from the environment or from the ``pool`` section of a
settings file:

```yaml
pool:
  base_url: "https://pool.example.com"
  timeout_seconds: 15
  page_size: 12
```

Environment Variables:
    POOL_API_URL: Pool service base URL (wins over the settings file)
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any

import yaml

logger = logging.getLogger(__name__)

DEFAULT_POOL_BASE_URL = "http://localhost:3005"
DEFAULT_TIMEOUT_SECONDS = 15.0
DEFAULT_SESSION_PAGE_SIZE = 12

POOL_URL_ENV = "POOL_API_URL"


@dataclass
class SessionStoreConfig:
    """Configuration for the session store.

    Attributes:
        base_url: Pool service base URL (the client appends ``/pool``)
        timeout_seconds: Total timeout for each pool request
        page_size: Default session list page size
    """

    base_url: str = DEFAULT_POOL_BASE_URL
    timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS
    page_size: int = DEFAULT_SESSION_PAGE_SIZE

    @property
    def pool_url(self) -> str:
        """Base URL of the pool API, without a trailing slash."""
        return f"{self.base_url.rstrip('/')}/pool"

    @classmethod
    def from_environment(cls) -> SessionStoreConfig:
        """Create configuration from environment variables."""
        return cls(base_url=os.environ.get(POOL_URL_ENV) or DEFAULT_POOL_BASE_URL)

    @classmethod
    def from_settings_file(cls, path: Path | None = None) -> SessionStoreConfig:
        """Load the ``pool`` section of a YAML settings file.

        Args:
            path: Settings file. Defaults to ~/.clover/settings.yaml

        A missing or unreadable file yields the defaults. POOL_API_URL
        still overrides the file's base URL.
        """
        settings_path = path or Path.home() / ".clover" / "settings.yaml"
        section = _load_pool_section(settings_path)

        config = cls()
        base_url = section.get("base_url")
        if isinstance(base_url, str) and base_url.strip():
            config.base_url = base_url.strip()

        timeout = section.get("timeout_seconds")
        if isinstance(timeout, (int, float)) and timeout > 0:
            config.timeout_seconds = float(timeout)

        page_size = section.get("page_size")
        if isinstance(page_size, int) and page_size > 0:
            config.page_size = page_size

        env_url = os.environ.get(POOL_URL_ENV)
        if env_url:
            config.base_url = env_url
        return config


def _load_pool_section(path: Path) -> dict[str, Any]:
    if not path.exists():
        return {}

    try:
        content = yaml.safe_load(path.read_text()) or {}
    except (OSError, yaml.YAMLError) as e:
        logger.warning(f"Could not read settings file {path}: {e}")
        return {}

    section = content.get("pool") if isinstance(content, dict) else None
    return section if isinstance(section, dict) else {}
