from typing import Dict, Optional
from pydantic import BaseModel, Field


class AutoConfirmationDecision(BaseModel):
    """Outcome of the ordered auto-confirmation checks.

    ``checks`` always lists all nine checks in order; anything after the first
    failing check was never evaluated and is reported as ``False``.
    """

    should_auto_confirm: bool
    reason: str
    checks: Dict[str, bool] = Field(default_factory=dict)
    failed_check: Optional[str] = None


class AutoConfirmationEvaluation(BaseModel):
    reservation_id: int
    can_auto_confirm: bool
    reason: str
    checks: Dict[str, bool]


class AutoConfirmationResult(BaseModel):
    reservation_id: int
    applied: bool
    reason: str
    checks: Dict[str, bool]
