"""Error definitions for the figmakeys pipeline."""

from __future__ import annotations

from enum import Enum, auto


class ErrorCategory(Enum):
    """Categorises failures so the outer layer can map them to exit codes."""

    ARGUMENT = auto()
    RESOLUTION = auto()
    ACCESS = auto()
    PROVIDER = auto()
    CONFIGURATION = auto()
    FORMAT = auto()
    OTHER = auto()


class FigmakeysError(Exception):
    """Base exception for all custom errors."""

    category = ErrorCategory.OTHER


class AbortRequested(FigmakeysError):
    """Raised when the user elects not to continue with generation."""

    category = ErrorCategory.ARGUMENT


class DocumentSourceError(FigmakeysError):
    """Raised when the design document cannot be fetched."""


class DocumentAccessError(DocumentSourceError):
    """Raised when the document is private or the access token is rejected."""

    category = ErrorCategory.ACCESS


class DocumentNotFoundError(FigmakeysError):
    """Raised when a document, page or node identifier does not resolve."""

    category = ErrorCategory.RESOLUTION


class PageNotFoundError(DocumentNotFoundError):
    """Raised when the requested page is not part of the document."""


class NodeNotFoundError(DocumentNotFoundError):
    """Raised when the requested node is not part of the document."""


class ProviderConfigurationError(FigmakeysError):
    """Raised when the key generation provider is misconfigured."""

    category = ErrorCategory.CONFIGURATION


class ProviderError(FigmakeysError):
    """Raised when the key generation provider fails or answers badly."""

    category = ErrorCategory.PROVIDER


class LocalizationFormatError(FigmakeysError):
    """Raised when a localization file is not a JSON object of strings."""

    category = ErrorCategory.FORMAT


class AccessDeniedError(FigmakeysError):
    """Raised when a user is not registered to use the tool."""

    category = ErrorCategory.ACCESS


class InvalidFigmaUrlError(FigmakeysError):
    """Raised when a URL does not point at a Figma file."""

    category = ErrorCategory.ARGUMENT
