from fastapi import HTTPException

from resq.models.emergency import TransitionResult

ERROR_STATUS = {
    "not_found": 404,
    "unknown_hospital": 404,
    "invalid_fix": 422,
    "unknown_outcome": 422,
    "store_error": 503,
}


def raise_for_result(result: TransitionResult) -> TransitionResult:
    """Turn a failed dispatch result into an HTTP error; conflicts are 409."""
    if result.ok:
        return result
    status_code = ERROR_STATUS.get(result.error or "", 409)
    raise HTTPException(
        status_code=status_code,
        detail={
            "error": result.error,
            "reason": result.reason,
            "retryable": result.retryable,
            "status": result.status.value if result.status else None,
        },
    )
