"""Key generation provider abstractions."""

from __future__ import annotations

import json
import os
import sys
from abc import ABC, abstractmethod
from typing import Any

from openai import AzureOpenAI, OpenAI

from .errors import ProviderConfigurationError, ProviderError
from .structures import Completion, TokenUsage


def strip_code_fence(text: str) -> str:
    """Remove leading/trailing markdown code fences if present."""

    stripped = text.strip()
    if not stripped.startswith("```"):
        return stripped

    # Drop opening fence and optional language hint.
    first_newline = stripped.find("\n")
    if first_newline == -1:
        return stripped
    body = stripped[first_newline + 1 :]
    closing_index = body.rfind("```")
    if closing_index != -1:
        body = body[:closing_index]
    return body.strip()


class KeyGenerationProvider(ABC):
    """Abstract adapter for chat-style completion providers."""

    @abstractmethod
    def complete(
        self,
        *,
        system_prompt: str,
        user_prompt: str,
        temperature: float,
    ) -> Completion:
        """Return the JSON text produced for the prompt and its token usage."""


class OpenAIKeyProvider(KeyGenerationProvider):
    """Provider backed by the OpenAI (or Azure OpenAI) Chat Completions API."""

    DEFAULT_MODEL = "gpt-4o-mini"

    def __init__(
        self,
        *,
        kind: str | None = None,
        api_key: str | None = None,
        model: str | None = None,
        settings: Any = None,
        debug: bool = False,
    ) -> None:
        self.debug = debug
        self._api_key = api_key
        self._settings = settings
        provider_value = kind or self._setting("LLM_PROVIDER") or "openai"
        normalized = provider_value.strip().lower()
        if normalized in {"azure_open_ai", "azure-openai"}:
            normalized = "azure_openai"
        if normalized not in {"openai", "azure_openai"}:
            normalized = "openai"

        self.provider_kind = normalized
        self._client, default_model = self._build_client()
        self.model = model or default_model

    def _setting(self, name: str) -> str | None:
        """Look a value up in the loaded settings, then in the environment."""

        value = getattr(self._settings, name, None)
        if value:
            return str(value)
        return os.getenv(name)

    def _build_client(self) -> tuple[Any, str]:
        if self.provider_kind == "azure_openai":
            return self._build_azure_client()

        return self._build_openai_client()

    def _build_openai_client(self) -> tuple[Any, str]:
        api_key = self._api_key or self._setting("OPENAI_API_KEY")
        if not api_key:
            raise ProviderConfigurationError(
                "OpenAI API key is required. Set OPENAI_API_KEY or pass --api-key."
            )
        return OpenAI(api_key=api_key), self._setting("OPENAI_MODEL") or self.DEFAULT_MODEL

    def _build_azure_client(self) -> tuple[Any, str]:
        api_key = self._api_key or self._setting("AZURE_OPENAI_API_KEY")
        endpoint = self._setting("AZURE_OPENAI_ENDPOINT")
        api_version = self._setting("AZURE_OPENAI_API_VERSION")
        deployment_name = self._setting("AZURE_OPENAI_DEPLOYMENT_NAME")

        missing = [
            name
            for name, value in {
                "AZURE_OPENAI_API_KEY": api_key,
                "AZURE_OPENAI_ENDPOINT": endpoint,
                "AZURE_OPENAI_API_VERSION": api_version,
                "AZURE_OPENAI_DEPLOYMENT_NAME": deployment_name,
            }.items()
            if not value
        ]
        if missing:
            raise ProviderConfigurationError(
                "Azure OpenAI configuration incomplete. Please set: "
                + ", ".join(missing)
                + "."
            )

        client = AzureOpenAI(
            api_key=api_key,
            api_version=api_version,
            azure_endpoint=endpoint,
        )
        return client, deployment_name  # type: ignore[return-value]

    def complete(
        self,
        *,
        system_prompt: str,
        user_prompt: str,
        temperature: float,
    ) -> Completion:
        self._log_debug("provider.request.system_prompt", system_prompt)
        self._log_debug("provider.request.user_prompt", user_prompt)

        try:
            response = self._client.chat.completions.create(
                model=self.model,
                temperature=temperature,
                messages=[
                    {"role": "system", "content": system_prompt},
                    {"role": "user", "content": user_prompt},
                ],
                response_format={"type": "json_object"},
            )
        except Exception as exc:  # pragma: no cover - network call
            raise ProviderError(
                f"Key generation service unavailable: {exc}"
            ) from exc
        self._log_debug("provider.response.raw", self._safe_dump_response(response))

        choices = getattr(response, "choices", None) or []
        message = getattr(choices[0], "message", None) if choices else None
        content = getattr(message, "content", None) if message is not None else None
        if not content:
            raise ProviderError("No response from OpenAI")

        return Completion(content=str(content), usage=self._extract_usage(response))

    def _extract_usage(self, response: Any) -> TokenUsage:
        usage = getattr(response, "usage", None)
        if usage is None:
            return TokenUsage()
        return TokenUsage(
            prompt_tokens=int(getattr(usage, "prompt_tokens", 0) or 0),
            completion_tokens=int(getattr(usage, "completion_tokens", 0) or 0),
            total_tokens=int(getattr(usage, "total_tokens", 0) or 0),
        )

    def _log_debug(self, label: str, payload: Any) -> None:
        """Emit structured debug information when enabled."""

        if not getattr(self, "debug", False):
            return
        try:
            if isinstance(payload, (dict, list)):
                message = json.dumps(payload, ensure_ascii=False, indent=2)
            else:
                message = str(payload)
        except (TypeError, ValueError):
            message = repr(payload)
        print(f"[figmakeys][provider-debug] {label}:\n{message}", file=sys.stderr)

    def _safe_dump_response(self, response: Any) -> Any:
        """Best-effort conversion of SDK response objects into JSON-friendly data."""

        dump = getattr(response, "model_dump", None)
        if dump:
            try:
                return dump()
            except Exception:
                pass
        return str(response)


def build_provider(
    name: str | None,
    *,
    api_key: str | None = None,
    model: str | None = None,
    settings: Any = None,
    debug: bool = False,
) -> KeyGenerationProvider:
    """Factory to create providers by name."""

    normalized = (name or "").strip().lower()
    if normalized in {"", "default"}:
        kind = None
    elif normalized in {"openai", "gpt"}:
        kind = "openai"
    elif normalized in {"azure_openai", "azure-openai", "azure"}:
        kind = "azure_openai"
    else:
        raise ProviderConfigurationError(f"Unknown key generation provider '{name}'.")
    return OpenAIKeyProvider(
        kind=kind,
        api_key=api_key,
        model=model,
        settings=settings,
        debug=debug,
    )
