import os
from typing import Union

from .types import DEFAULT_BASE_URL, DEFAULT_USER_AGENT, ClientConfig

DEFAULT_ENV_PREFIX = "ANVIL_"


def _parse_env_file(env_path: str) -> dict[str, str]:
    """Read KEY=VALUE pairs from a .env file without touching os.environ.

    Comments and blank lines are skipped, an optional ``export`` prefix is
    dropped, and surrounding quotes are stripped from values.
    """
    values: dict[str, str] = {}
    try:
        with open(env_path) as f:
            for raw_line in f:
                line = raw_line.strip()
                if not line or line.startswith("#") or "=" not in line:
                    continue
                if line.startswith("export "):
                    line = line[len("export ") :]
                key, val = line.split("=", 1)
                key = key.strip()
                if key:
                    values[key] = val.strip().strip('"').strip("'")
    except FileNotFoundError:
        # a missing file just means nothing to add
        pass
    return values


def load_config_from_env(
    prefix: str = DEFAULT_ENV_PREFIX,
    env_path: Union[str, None] = None,
    **overrides,
) -> ClientConfig:
    """Build a ClientConfig from ``<prefix>API_KEY``, ``<prefix>ACCESS_TOKEN``,
    ``<prefix>BASE_URL`` and ``<prefix>USER_AGENT``.

    Values from the real environment take precedence over ``env_path``;
    explicit keyword ``overrides`` (api_key, access_token, base_url,
    user_agent) take precedence over both.
    """
    file_env = _parse_env_file(env_path) if env_path else {}
    env_map: dict[str, str] = {**file_env, **os.environ}

    def lookup(name: str) -> Union[str, None]:
        return env_map.get(f"{prefix}{name}") or None

    values = {
        "api_key": lookup("API_KEY"),
        "access_token": lookup("ACCESS_TOKEN"),
        "base_url": lookup("BASE_URL") or DEFAULT_BASE_URL,
        "user_agent": lookup("USER_AGENT") or DEFAULT_USER_AGENT,
    }
    values.update({k: v for k, v in overrides.items() if v is not None})
    return ClientConfig(**values)
