from typing import Annotated
import logging

from fastapi import Depends, HTTPException
from sqlalchemy.ext.asyncio import AsyncSession

from marfanet.database import get_db
from marfanet.core.exceptions import LedgerEngineError


logger = logging.getLogger(__name__)


def http_error(error: LedgerEngineError) -> HTTPException:
    """
    Translate a domain error into an HTTPException using its status hint.

    Usage:
        try:
            invoice = await service.create_invoice(data)
        except LedgerEngineError as e:
            raise http_error(e)
    """
    if error.status_code >= 500:
        logger.error(f"{type(error).__name__}: {error.message}")
    return HTTPException(
        status_code=error.status_code,
        detail={
            "error": error.message,
            "type": type(error).__name__,
            "details": error.details,
        },
    )


DB = Annotated[AsyncSession, Depends(get_db)]
