from collections.abc import Mapping
from pathlib import Path
from typing import Any, Dict, Optional, Union

import yaml
from pydantic import ValidationError

from cms_infra.config import settings
from cms_infra.exceptions.config_exceptions import (
    ConfigFileNotFoundError,
    InvalidConfigError,
)
from cms_infra.logging_config import get_logger
from cms_infra.schemas.config import ConfigDocument

logger = get_logger(__name__)


def _format_errors(exc: ValidationError) -> str:
    parts = []
    for error in exc.errors():
        location = ".".join(str(item) for item in error["loc"])
        parts.append(f"{location}: {error['msg']}")
    return "; ".join(parts)


def parse_config(payload: Dict[str, Any], source: str = "<memory>") -> ConfigDocument:
    try:
        document = ConfigDocument.model_validate(payload)
    except ValidationError as exc:
        raise InvalidConfigError(
            f"Invalid configuration in {source}: {_format_errors(exc)}"
        ) from exc

    logger.info(
        "config_loaded",
        source=source,
        accounts=len(document.accounts),
        secrets=len(document.ssms),
        apps={name: sorted(env.apps) for name, env in document.environments()},
    )
    return document


def load_config(path: Optional[Union[str, Path]] = None) -> ConfigDocument:
    """Read and validate the YAML configuration document.

    ``path`` defaults to ``settings.config_file``.
    """
    config_path = Path(path or settings.config_file)
    try:
        with open(config_path, "r", encoding="utf-8") as handle:
            payload = yaml.safe_load(handle)
    except FileNotFoundError as exc:
        raise ConfigFileNotFoundError(
            f"Configuration file {config_path} does not exist"
        ) from exc
    except yaml.YAMLError as exc:
        raise InvalidConfigError(f"Invalid YAML in {config_path}: {exc}") from exc

    if not isinstance(payload, Mapping):
        raise InvalidConfigError(
            f"Configuration file must contain a YAML mapping: {config_path}"
        )
    return parse_config(dict(payload), source=str(config_path))
