"""
Session Relay Configuration Loader

Loads configuration from YAML files with environment variable interpolation.

Environment Variable Interpolation:
- ${VAR_NAME} - Required variable, raises error if not set
- ${VAR_NAME:-default} - Optional variable with default value

Example:
```yaml
bridge:
  http_url: "${BRIDGE_URL:-http://localhost:3100}"
sessions:
  auth_root: "${RELAY_AUTH_ROOT}"
```
"""

import logging
import os
import re
from pathlib import Path
from typing import Any, Optional, Union

import yaml

from .schema import RelayConfig

logger = logging.getLogger(__name__)

CONFIG_FILENAME = "relay.yaml"

# ${VAR} or ${VAR:-default}
ENV_VAR_PATTERN = re.compile(r'\$\{([^}:]+)(?::-([^}]*))?\}')


def _env_value(match: "re.Match") -> str:
    name, default = match.group(1), match.group(2)
    value = os.environ.get(name, default)
    if value is None:
        raise KeyError(
            f"Environment variable '{name}' is required but not set "
            f"(use ${{{name}:-default}} to make it optional)"
        )
    return value


def interpolate_env_vars(value: Any) -> Any:
    """
    Substitute ``${VAR}`` references in every string of a parsed YAML tree.

    Raises:
        KeyError: A referenced variable without a default is not set
    """
    if isinstance(value, dict):
        return {key: interpolate_env_vars(item) for key, item in value.items()}
    if isinstance(value, list):
        return [interpolate_env_vars(item) for item in value]
    if isinstance(value, str):
        return ENV_VAR_PATTERN.sub(_env_value, value)
    return value


def load_config_from_file(config_path: Union[str, Path]) -> RelayConfig:
    """
    Read a relay.yaml; relative paths in it resolve against its directory.

    Raises:
        FileNotFoundError: The file does not exist
        KeyError: A required environment variable is not set
        yaml.YAMLError: The YAML is malformed
    """
    config_path = Path(config_path)
    if not config_path.is_file():
        raise FileNotFoundError(f"Configuration file not found: {config_path}")

    logger.info(f"Loading configuration from {config_path}")
    data = interpolate_env_vars(yaml.safe_load(config_path.read_text()) or {})
    data.setdefault("working_dir", str(config_path.parent.absolute()))

    return RelayConfig.from_dict(data)


def load_config(
    config_path: Optional[Union[str, Path]] = None,
    working_dir: Optional[Union[str, Path]] = None,
) -> RelayConfig:
    """
    Load relay configuration with sensible defaults.

    Search order:
    1. Explicit config_path if provided
    2. relay.yaml (or config/relay.yaml) in working_dir
    3. relay.yaml (or config/relay.yaml) in current directory
    4. Default configuration
    """
    if config_path:
        return load_config_from_file(config_path)

    search_paths = []

    if working_dir:
        working_dir = Path(working_dir)
        search_paths.append(working_dir / CONFIG_FILENAME)
        search_paths.append(working_dir / "config" / CONFIG_FILENAME)

    cwd = Path.cwd()
    search_paths.append(cwd / CONFIG_FILENAME)
    search_paths.append(cwd / "config" / CONFIG_FILENAME)

    for path in search_paths:
        if path.exists():
            logger.info(f"Found configuration at {path}")
            return load_config_from_file(path)

    logger.info(f"No {CONFIG_FILENAME} found, using default configuration")
    return RelayConfig(
        working_dir=Path(working_dir) if working_dir else cwd
    )


def create_default_config(output_path: Optional[Union[str, Path]] = None) -> Path:
    """
    Write a starter relay.yaml.

    Returns:
        Path to created configuration file
    """
    output_path = Path(output_path) if output_path else Path(CONFIG_FILENAME)

    default_config = """# Session Relay Configuration
# Environment variables can be used: ${VAR_NAME} or ${VAR_NAME:-default}

server:
  host: "0.0.0.0"
  port: 3000

sessions:
  # Each session keeps its credentials in <auth_root>/auth_info_<sessionId>/
  auth_root: "./sessions"
  default_session_id: "default"
  domain: "s.whatsapp.net"
  command_prefix: "!"

bridge:
  http_url: "${BRIDGE_URL:-http://localhost:3100}"
  ws_url: "${BRIDGE_WS_URL:-ws://localhost:3100}"

timeouts:
  open: 30
  send: 30
  pair_wait: 120

# Reconnect backoff for dropped connections (max_attempts: 0 = unbounded)
reconnect:
  max_attempts: 10
  base_delay: 1.0
  factor: 2.0
  max_delay: 60.0
  jitter: 0.5

logging:
  level: "INFO"
"""

    with open(output_path, 'w') as f:
        f.write(default_config)

    logger.info(f"Created default configuration at {output_path}")
    return output_path
