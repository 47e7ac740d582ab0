import logging
import os
import re
from pathlib import Path
from typing import Dict, List, Optional

import yaml
from pydantic import BaseModel, Field, ValidationError

from autoupdate.domain.exceptions import ConfigurationException

logger = logging.getLogger(__name__)

CONFIG_LOCATIONS = [".", ".config", "configs"]
CONFIG_FILENAMES = [
    ".autoupdate.yaml",
    ".autoupdate.yml",
    "autoupdate.yaml",
    "autoupdate.yml",
]

# Matches ${VAR_NAME} placeholders
ENV_VAR_PATTERN = re.compile(r"\$\{([^}]+)}")


class ProviderConfig(BaseModel):
    type: str = Field(default="", description="Provider identifier, e.g. github")
    token: str = Field(default="", description="Inline token, ${ENV_VAR} or a path to a token file")
    organizations: List[str] = Field(default_factory=list)


class UpdaterConfig(BaseModel):
    enabled: bool = True
    auto_complete: bool = False
    target_branch: str = ""


class Config(BaseModel):
    """Top-level autoupdate configuration."""
    providers: List[ProviderConfig] = Field(default_factory=list)
    updaters: Dict[str, UpdaterConfig] = Field(default_factory=dict)


def find_config_file(home_dir: Optional[Path] = None) -> Path:
    """
    Looks for a configuration file in the working directory, its .config and
    configs folders, then the user's home and ~/.config.

    Raises:
        ConfigurationException: If no configuration file exists in any location.
    """
    locations = [Path(location) for location in CONFIG_LOCATIONS]
    if home_dir is None:
        try:
            home_dir = Path.home()
        except RuntimeError:
            home_dir = None
    if home_dir is not None:
        locations += [home_dir, home_dir / ".config"]

    for location in locations:
        for filename in CONFIG_FILENAMES:
            candidate = location / filename
            if candidate.is_file():
                return candidate

    raise ConfigurationException("config file not found in default locations")


def load_config(path: Path) -> Config:
    """
    Reads and validates a configuration file, expanding environment variables
    and token file paths in provider tokens.

    Raises:
        ConfigurationException: If the file cannot be read, parsed or validated.
    """
    try:
        raw = Path(path).read_text(encoding="utf-8")
    except OSError as e:
        raise ConfigurationException(f"failed to read config file '{path}': {e}") from e

    try:
        data = yaml.safe_load(raw) or {}
    except yaml.YAMLError as e:
        raise ConfigurationException(f"failed to parse config file: {e}") from e

    try:
        config = Config.model_validate(data)
    except ValidationError as e:
        raise ConfigurationException(f"invalid config file '{path}': {e}") from e

    for provider in config.providers:
        provider.token = resolve_token(provider.token)

    validate_config(config)
    return config


def resolve_token(raw: str) -> str:
    """
    Expands ${ENV_VAR} references and, when the result names an existing
    file, returns the stripped content of that file instead.
    """
    if not raw:
        return raw

    def _expand(match: re.Match) -> str:
        var_name = match.group(1)
        value = os.getenv(var_name)
        if value:
            return value
        logger.warning(f"Environment variable '{var_name}' is not set.")
        return ""

    resolved = ENV_VAR_PATTERN.sub(_expand, raw)
    if not resolved:
        return resolved

    token_file = Path(resolved)
    try:
        is_token_file = token_file.is_file()
    except OSError:
        # Long inline tokens exceed the file name limit.
        is_token_file = False

    if is_token_file:
        try:
            token = token_file.read_text(encoding="utf-8").strip()
        except OSError as e:
            logger.warning(f"Failed to read token file '{resolved}': {e}")
            return resolved
        logger.info(f"Read token from file '{resolved}'.")
        return token

    return resolved


def validate_config(config: Config) -> None:
    if not config.providers:
        raise ConfigurationException("at least one provider must be configured")

    for i, provider in enumerate(config.providers):
        if not provider.type:
            raise ConfigurationException(f"providers[{i}].type is required")
        if not provider.token:
            raise ConfigurationException(
                f"providers[{i}].token is required (set inline, via ${{ENV_VAR}}, or as file path)"
            )
        if not provider.organizations:
            raise ConfigurationException(f"providers[{i}].organizations must have at least one entry")
