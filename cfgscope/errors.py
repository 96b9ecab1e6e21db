"""
cfgscope — control-flow, dead code and clone analysis for Python
source trees.

Copyright (c) 2026 Den Rozhnovskiy
Licensed under the MIT License.
"""

from __future__ import annotations

from .ast_model import Span


class CfgScopeError(Exception):
    """Base exception for cfgscope."""


class FileProcessingError(CfgScopeError):
    """Error processing a source file."""


class ParseError(FileProcessingError):
    """AST parsing failed."""


class StructuralError(CfgScopeError):
    """Malformed or unsupported AST shape inside one function."""

    __slots__ = ("qualname", "span")

    def __init__(
        self,
        message: str,
        *,
        qualname: str | None = None,
        span: Span | None = None,
    ) -> None:
        super().__init__(message)
        self.qualname = qualname
        self.span = span


class UnresolvedJumpTarget(StructuralError):
    """break/continue without a matching enclosing construct."""


class MalformedAST(StructuralError):
    """Required child missing or node kind not understood."""


class ValidationError(CfgScopeError):
    """Invalid scan root or input."""


class ConfigError(CfgScopeError):
    """Invalid analysis configuration."""


class CacheError(CfgScopeError):
    """Cache operation failed."""


class AnalysisCancelled(CfgScopeError):
    """The run was cancelled before completion."""
