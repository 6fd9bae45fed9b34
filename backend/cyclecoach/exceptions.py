"""
Domain exceptions raised by services.

Routers never build error responses themselves: main.py maps every
CycleCoachError to a JSON body with a stable error code.
"""
from typing import Optional


class CycleCoachError(Exception):
    """Base error with the HTTP status it surfaces as."""
    
    status_code = 500
    error_code = "INTERNAL_ERROR"
    
    def __init__(self, detail: str, error_code: Optional[str] = None):
        super().__init__(detail)
        self.detail = detail
        if error_code:
            self.error_code = error_code


class ValidationError(CycleCoachError):
    """Malformed or out-of-range input. Never retried."""
    
    status_code = 422
    error_code = "VALIDATION_ERROR"
    
    def __init__(self, detail: str, field: Optional[str] = None):
        super().__init__(
            detail,
            error_code=f"VALIDATION_ERROR_{field.upper()}" if field else None,
        )
        self.field = field


class ConflictError(CycleCoachError):
    """State conflict the caller can act on (active plan exists, nothing pending, lost race)."""
    
    status_code = 409
    error_code = "CONFLICT"


class NotFoundError(CycleCoachError):
    """Missing resource. Identical whether it does not exist or belongs to someone else."""
    
    status_code = 404
    error_code = "NOT_FOUND"
    
    def __init__(self, resource: str):
        super().__init__(f"{resource} not found")
        self.resource = resource


class PlanGenerationError(CycleCoachError):
    """The plan-content generator failed or returned an unusable plan."""
    
    status_code = 502
    error_code = "PLAN_GENERATION_FAILED"


class JobDispatchError(CycleCoachError):
    """The job queue refused an adaptation job. Recalculation state is rolled back."""
    
    status_code = 503
    error_code = "JOB_DISPATCH_FAILED"
