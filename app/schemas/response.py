from pydantic import BaseModel
from typing import Optional, Any, Dict, List

class ErrorResponse(BaseModel):
    """
    Standard error response structure.
    """
    error: str
    code: str
    details: Optional[Any] = None


class ActionResult(BaseModel):
    """
    Outcome of a workflow operation.

    Business failures are reported here instead of raised; callers branch
    on `success`. `errors` is keyed by form field for validation failures.
    """
    success: bool
    message: Optional[str] = None
    error: Optional[str] = None
    detail: Optional[str] = None
    data: Optional[Any] = None
    errors: Optional[Dict[str, List[str]]] = None

    @classmethod
    def ok(cls, message: Optional[str] = None, data: Any = None) -> "ActionResult":
        return cls(success=True, message=message, data=data)

    @classmethod
    def fail(
        cls,
        message: str,
        detail: Optional[str] = None,
        data: Any = None,
        errors: Optional[Dict[str, List[str]]] = None,
    ) -> "ActionResult":
        return cls(success=False, message=message, error=message, detail=detail, data=data, errors=errors)
