"""
Runtime configuration for the supervised proxy.

The proxy reads a YAML file passed with --config. It is regenerated from the
settings blob before every start because the proxy rewrites the management
secret in place, and the plaintext key is needed for management calls.
"""

import json
import logging
from pathlib import Path

from jinja2 import Environment, PackageLoader, StrictUndefined

from .config import ProxySettings
from .exceptions import ConfigWriteError

logger = logging.getLogger(__name__)

TEMPLATE_NAME = "proxy-config.yaml.j2"


def _yaml_bool(value: bool) -> str:
    return "true" if value else "false"


def _yaml_str(value: str) -> str:
    # JSON string literals are valid double-quoted YAML scalars
    return json.dumps(str(value))


_env = Environment(
    loader=PackageLoader("proxyminder", "templates"),
    undefined=StrictUndefined,
    trim_blocks=True,
    lstrip_blocks=True,
    keep_trailing_newline=True,
)
_env.filters["yaml_bool"] = _yaml_bool
_env.filters["yaml_str"] = _yaml_str


def render_proxy_config(settings: ProxySettings, management_key: str) -> str:
    """Render the proxy YAML for the given settings."""
    template = _env.get_template(TEMPLATE_NAME)
    return template.render(
        settings=settings,
        management_key=management_key,
        mappings=[m for m in settings.amp_model_mappings if m.enabled],
    )


def write_proxy_config(path: Path, settings: ProxySettings, management_key: str) -> Path:
    """
    Write the proxy configuration file.

    Raises:
        ConfigWriteError: If the file cannot be written.
    """
    path = Path(path)
    try:
        content = render_proxy_config(settings, management_key)
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(content)
    except OSError as e:
        error = f"Error writing proxy config to {path}: {e}"
        logger.error(error)
        raise ConfigWriteError(error) from e

    logger.info(f"Wrote proxy config to {path}")
    return path
