"""
MCP response envelopes shared by every tool handler.

Handlers never raise. Success is ``{"content": [...], "data": {...}}``;
failure is ``{"isError": True, "content": [...]}`` whose text starts with the
error kind (``not_found``, ``conflict``, ``policy_violation``, ...) so a client
can tell "fix the request" from "retry later".
"""

import logging
from typing import Any

import pydantic

from ..database.errors import RepositoryException, StoreError, TransientError

logger = logging.getLogger(__name__)


def success_response(message: str, data: dict[str, Any]) -> dict[str, Any]:
    return {
        "content": [{"type": "text", "text": message}],
        "data": data,
    }


def error_response(message: str) -> dict[str, Any]:
    return {
        "isError": True,
        "content": [{"type": "text", "text": message}],
    }


def invalid_arguments_response(tool_name: str, error: pydantic.ValidationError) -> dict[str, Any]:
    logger.warning("Invalid %s parameters: %s", tool_name, error)
    return error_response(f"validation_error: Invalid {tool_name} parameters: {error}")


def repository_error_response(tool_name: str, error: RepositoryException) -> dict[str, Any]:
    """Map a repository failure to an error payload, logging by severity."""
    if isinstance(error, StoreError):
        logger.error("%s failed - store error: %s", tool_name, error)
    elif isinstance(error, TransientError):
        logger.warning("%s failed - retry advised: %s", tool_name, error)
    else:
        logger.info("%s failed - %s: %s", tool_name, error.kind, error)
    return error_response(f"{error.kind}: {error}")


def unexpected_error_response(tool_name: str, error: Exception) -> dict[str, Any]:
    logger.exception("Unexpected error in %s tool", tool_name)
    return error_response(f"An unexpected error occurred: {error!s}")
