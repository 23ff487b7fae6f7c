"""Layered settings for figmakeys, loaded with Prepper.

Layers are applied in order, later ones winning: discovered ``figmakeys``
YAML files, a ``.env`` file in the working directory, then the process
environment. Nothing is mandatory at load time; credentials are checked by
the component that needs them, so ``--estimate-only`` runs work without an
API key.
"""

from __future__ import annotations

import os
from functools import lru_cache
from pathlib import Path
from typing import Any, Dict, Iterator, List, Literal, Mapping, Tuple

from dotenv import dotenv_values
from prepper import (
    ConfigNotFound,
    Field,
    IoError,
    SchemaError,
    SchemaModel,
    ValidationError,
    model_validator,
)
from prepper.config import ConfigInstance
from prepper.loaders import _parse_file, _path_to_source, discover_file_paths
from prepper.merge import merge_layer
from prepper.provenance import ProvenanceRecorder

from .errors import ProviderConfigurationError

APP_NAME = "figmakeys"
DEFAULT_USAGE_DB = "figmakeys_usage.sqlite3"

PROVIDER_ALIASES = {
    "azure": "azure_openai",
    "azure_open_ai": "azure_openai",
    "azureopenai": "azure_openai",
    "gpt": "openai",
}
AZURE_SETTINGS = (
    "AZURE_OPENAI_API_KEY",
    "AZURE_OPENAI_ENDPOINT",
    "AZURE_OPENAI_API_VERSION",
    "AZURE_OPENAI_DEPLOYMENT_NAME",
)


class FigmakeysConfig(SchemaModel):
    """Every setting figmakeys understands."""

    LLM_PROVIDER: Literal["azure_openai", "openai"] = Field(
        default="openai",
        description="Chat completion backend used for key generation.",
    )
    OPENAI_API_KEY: str | None = Field(default=None, secret=True)
    OPENAI_MODEL: str | None = Field(
        default=None,
        description="Chat model used for key generation (default gpt-4o-mini).",
    )
    AZURE_OPENAI_API_KEY: str | None = Field(default=None, secret=True)
    AZURE_OPENAI_ENDPOINT: str | None = Field(default=None)
    AZURE_OPENAI_API_VERSION: str | None = Field(default=None)
    AZURE_OPENAI_DEPLOYMENT_NAME: str | None = Field(default=None)
    FIGMA_API_TOKEN: str | None = Field(
        default=None,
        secret=True,
        description="Personal access token used for private Figma files.",
    )
    FIGMAKEYS_ADMIN_EMAIL: str | None = Field(
        default=None,
        description="Identity that is an administrator until others are added.",
    )
    FIGMAKEYS_USAGE_DB: str = Field(
        default=DEFAULT_USAGE_DB,
        description="SQLite database recording users and token usage.",
    )
    FIGMAKEYS_BATCH_SIZE: int = Field(
        default=10,
        description="Texts sent to the model per generation request.",
    )
    FIGMAKEYS_PROVIDER_DEBUG: bool = Field(default=False)

    @model_validator(mode="before")
    def _canonical_provider(data: Any) -> Any:
        if isinstance(data, dict) and isinstance(data.get("LLM_PROVIDER"), str):
            name = data["LLM_PROVIDER"].strip().lower().replace("-", "_")
            name = PROVIDER_ALIASES.get(name, name)
            data["LLM_PROVIDER"] = name if name == "azure_openai" else "openai"
        return data


def _yaml_layers(app_dir: Path) -> Iterator[Tuple[Mapping[str, Any], str]]:
    """Yield each discovered YAML file with its provenance label."""

    for path, label in discover_file_paths(APP_NAME, "yaml", app_dir=app_dir, extra_paths=None):
        parsed = _parse_file(path, "yaml")
        if not isinstance(parsed, Mapping):
            raise IoError(f"{path} must contain a mapping at the top level.")
        yield parsed, _path_to_source(label, "yaml", path)


def _environment_layers(app_dir: Path) -> Iterator[Tuple[Mapping[str, str], str]]:
    """Yield the ``.env`` file values, then the process environment."""

    dotenv_path = app_dir / ".env"
    if dotenv_path.exists():
        values = dotenv_values(dotenv_path)
        yield {key: value for key, value in values.items() if value is not None}, ".env"
    yield dict(os.environ), "process"


def _collect(app_dir: Path) -> Tuple[Dict[str, Any], ProvenanceRecorder]:
    provenance = ProvenanceRecorder()
    combined: Dict[str, Any] = {}

    for parsed, source in _yaml_layers(app_dir):
        merge_layer(combined, parsed, provenance=provenance, source=source, layer="file")

    known = set(FigmakeysConfig.__field_infos__.keys())
    for values, origin in _environment_layers(app_dir):
        # One layer per variable so provenance points at the exact source.
        for key in sorted(known.intersection(values)):
            merge_layer(
                combined,
                {key: values[key]},
                provenance=provenance,
                source=f"env:{origin}:{key}",
                layer="env",
            )
    return combined, provenance


def settings_problems(settings: FigmakeysConfig) -> List[str]:
    """List inconsistencies that make the loaded settings unusable."""

    problems: List[str] = []
    if settings.FIGMAKEYS_BATCH_SIZE < 1:
        problems.append("FIGMAKEYS_BATCH_SIZE must be at least 1.")
    if settings.LLM_PROVIDER == "azure_openai":
        missing = [name for name in AZURE_SETTINGS if not getattr(settings, name)]
        if missing:
            problems.append(
                "LLM_PROVIDER is 'azure_openai' but these settings are empty: "
                + ", ".join(missing)
                + "."
            )
    return problems


def _describe_issue(entry: Mapping[str, Any]) -> str:
    path = entry.get("path") or []
    if isinstance(path, (list, tuple)):
        location = ".".join(str(part) for part in path if part not in {None, ""})
    else:
        location = str(path)
    text = str(entry.get("message") or entry.get("msg") or "Invalid value")
    if location:
        text = f"{location}: {text}"
    if entry.get("source"):
        text += f" (source: {entry['source']})"
    return text


def _as_error(issues: List[str]) -> ProviderConfigurationError:
    return ProviderConfigurationError(
        "Invalid figmakeys configuration:\n" + "\n".join(f"- {issue}" for issue in issues)
    )


@lru_cache(maxsize=1)
def _load_config_instance(app_dir: Path | None = None) -> ConfigInstance:
    try:
        combined, provenance = _collect(app_dir or Path.cwd())
        model = FigmakeysConfig.validate(combined, provenance=provenance)
    except ConfigNotFound as exc:
        raise ProviderConfigurationError(f"Configuration could not be located: {exc}") from exc
    except IoError as exc:
        raise ProviderConfigurationError(f"Configuration files could not be read: {exc}") from exc
    except SchemaError as exc:
        raise ProviderConfigurationError(f"Configuration schema error: {exc}") from exc
    except ValidationError as exc:
        raise _as_error([_describe_issue(entry) for entry in exc.to_dict()]) from exc

    problems = settings_problems(model)
    if problems:
        raise _as_error(problems)

    return ConfigInstance(
        model=model,
        provenance=provenance,
        env_prefix=None,
        schema_cls=FigmakeysConfig,
    )


def get_config(app_dir: Path | None = None) -> ConfigInstance:
    """Return the cached configuration instance, with provenance."""

    return _load_config_instance(app_dir=app_dir)


def get_settings(app_dir: Path | None = None) -> FigmakeysConfig:
    """Return the validated settings for typed access."""

    return get_config(app_dir=app_dir).model()
