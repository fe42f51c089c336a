"""
Validation Result Models

Issues found when checking a stake, unstake or vault flow before it
touches the ledger. Validation never silently fixes anything; it reports.
"""

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, Field, computed_field

from nami.models.ledger import utc_now


class ValidationIssue(BaseModel):
    """A single validation issue found."""

    field: str = Field(
        ...,
        description="Field with the issue"
    )
    issue_type: str = Field(
        ...,
        description="Type of issue (e.g., 'missing', 'over_unstake', 'suspicious_value')"
    )
    message: str = Field(
        ...,
        description="Human-readable description of the issue"
    )
    severity: str = Field(
        ...,
        pattern="^(error|warning|info)$",
        description="Issue severity"
    )
    suggested_fix: Optional[str] = Field(
        default=None,
        description="Suggested fix if available"
    )


class ValidationResult(BaseModel):
    """Outcome of validating one ledger operation."""

    operation: str = Field(
        ...,
        description="Operation validated (stake, unstake, deposit, withdraw)"
    )
    validated_at: datetime = Field(
        default_factory=utc_now
    )
    issues: list[ValidationIssue] = Field(
        default_factory=list
    )

    @computed_field
    @property
    def is_valid(self) -> bool:
        return not any(issue.severity == "error" for issue in self.issues)

    @property
    def errors(self) -> list[ValidationIssue]:
        return [issue for issue in self.issues if issue.severity == "error"]

    @property
    def warnings(self) -> list[str]:
        return [issue.message for issue in self.issues if issue.severity == "warning"]

    def summary(self) -> str:
        """Errors joined into one line, for exception messages."""
        return "; ".join(issue.message for issue in self.errors)
