"""Eligibility tool: can this borrower take another book right now?"""

import logging
from typing import Any

import pydantic
from pydantic import BaseModel, Field

from ..database.eligibility_repository import EligibilityRepository
from ..database.errors import RepositoryException
from ..database.session import get_session
from .responses import (
    invalid_arguments_response,
    repository_error_response,
    success_response,
    unexpected_error_response,
)

logger = logging.getLogger(__name__)


class CheckEligibilityInput(BaseModel):
    tenant_id: str = Field(..., min_length=1, examples=["school_001"])
    borrower_id: str = Field(..., min_length=1)
    compare: bool | None = Field(
        default=None,
        description="Also run the fallback computation and return its verdict as cross_check",
    )


async def check_eligibility_handler(arguments: dict[str, Any]) -> dict[str, Any]:
    """
    Handler for the check_eligibility tool.

    An ineligible verdict is a normal answer, not an error: the response is
    successful and ``data.eligible`` is false.
    """
    try:
        try:
            params = CheckEligibilityInput.model_validate(arguments)
        except pydantic.ValidationError as e:
            return invalid_arguments_response("check_eligibility", e)

        with get_session() as session:
            try:
                result = EligibilityRepository(
                    session, params.tenant_id, compare_paths=params.compare
                ).check_eligibility(params.borrower_id)
            except RepositoryException as e:
                return repository_error_response("check_eligibility", e)

        message = result.message
        if result.warnings:
            message += ". " + "; ".join(result.warnings)
        if result.cross_check is not None and result.cross_check.eligible != result.eligible:
            message += f". Fallback check disagrees: {result.cross_check.message}"

        return success_response(message, result.model_dump(mode="json"))

    except Exception as e:
        return unexpected_error_response("check_eligibility", e)


check_eligibility = {
    "name": "check_eligibility",
    "description": (
        "Check whether a borrower may take another book: active account, no overdue "
        "books, under the loan limit. Outstanding fines are reported as warnings."
    ),
    "inputSchema": CheckEligibilityInput.model_json_schema(),
    "handler": check_eligibility_handler,
}
