# linkledger/api/errors.py
from fastapi import HTTPException, status

from ..services.ledger_service import LedgerInvariantError
from ..services.subscription_service import (
    ClientNotFoundError,
    ConcurrentModificationError,
    InvalidTransitionError,
)


def to_http_error(e: Exception) -> HTTPException:
    """Maps domain exceptions to the HTTP error the admin API returns."""
    if isinstance(e, (ClientNotFoundError, LookupError)):
        return HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))
    if isinstance(e, (InvalidTransitionError, ConcurrentModificationError, LedgerInvariantError)):
        return HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(e))
    if isinstance(e, ValueError):
        return HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))
    return HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=str(e))


DOMAIN_ERRORS = (
    ClientNotFoundError,
    LookupError,
    InvalidTransitionError,
    ConcurrentModificationError,
    LedgerInvariantError,
    ValueError,
)
