"""Environment-based credential lookup.

The bearer token is supplied out-of-band: an environment variable, optionally
seeded from a ``.env`` file. The resolved value is handed to the issue client
constructor explicitly and is never logged.
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path

from dotenv import load_dotenv

from .errors import ConfigError
from .logging import get_logger

ALTERNATIVE_TOKEN_VARS = ("GH_TOKEN", "GITHUB_ACCESS_TOKEN", "GH_ACCESS_TOKEN", "GITHUB_PAT")


@dataclass
class EnvAuthConfig:
    """Configuration for environment-based authentication."""

    load_dotenv: bool = True
    dotenv_path: str | None = None
    github_token_var: str = "GITHUB_TOKEN"


class EnvironmentAuthManager:
    """Resolves the GitHub token from environment variables and .env files."""

    def __init__(self, config: EnvAuthConfig):
        self.config = config
        self.logger = get_logger()
        self._dotenv_loaded = False
        if config.load_dotenv:
            self._load_dotenv()

    @property
    def dotenv_loaded(self) -> bool:
        return self._dotenv_loaded

    def _load_dotenv(self) -> None:
        candidates = [self.config.dotenv_path] if self.config.dotenv_path else ['.env', '.env.local']
        for location in candidates:
            env_path = Path(location)
            if env_path.exists():
                # Real environment variables win over the file.
                load_dotenv(str(env_path), override=False)
                self._dotenv_loaded = True
                self.logger.debug(f"Loaded environment variables from {env_path}")
                return

    def get_github_token(self) -> str | None:
        """Get GitHub token from environment variables."""
        for var in (self.config.github_token_var, *ALTERNATIVE_TOKEN_VARS):
            raw = os.getenv(var)
            token = raw.strip() if raw else ""
            if token:
                self.logger.debug(f"Found GitHub token in {var}")
                return token
        return None

    def require_github_token(self) -> str:
        token = self.get_github_token()
        if not token:
            names = ", ".join((self.config.github_token_var, *ALTERNATIVE_TOKEN_VARS))
            raise ConfigError(f"No GitHub token found; set one of: {names}")
        return token


def create_env_auth_manager(config: EnvAuthConfig | None = None) -> EnvironmentAuthManager:
    """Factory function to create environment authentication manager."""
    if config is None:
        config = EnvAuthConfig()
    return EnvironmentAuthManager(config)


__all__ = [
    "EnvAuthConfig",
    "EnvironmentAuthManager",
    "create_env_auth_manager",
]
