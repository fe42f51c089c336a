"""
Ledger Operation Validation

DESIGN DECISION: Every stake, unstake and vault flow is validated before
it touches storage. Validation has two kinds of findings:

ERRORS - the operation would break an accounting invariant:
- Non-positive quantities
- Unstaking more than the remaining quantity
- Unstaking from a closed position
- Exit dated before the deposit

WARNINGS - the operation is legal but suspicious:
- Flows dated in the future
- Absurdly large USD values

IMPORTANT: Validation NEVER silently fixes issues (no clamping an
over-unstake down to the remaining quantity). It reports them and the
caller rejects the operation.
"""

from datetime import datetime, timedelta
from decimal import Decimal
from typing import Optional

from nami.config import AppSettings, get_settings
from nami.models.ledger import VaultEntryType, utc_now
from nami.models.position import Position, UnstakeRequest
from nami.models.validation import ValidationIssue, ValidationResult


# Clock skew allowed before a timestamp counts as "in the future"
FUTURE_TOLERANCE = timedelta(days=1)


class LedgerValidator:
    """
    Validates ledger operations.

    Stateless apart from settings; safe to share.
    """

    def __init__(self, settings: Optional[AppSettings] = None):
        self._settings = settings or get_settings().app

    def _check_future(
        self,
        at: datetime,
        field: str,
        issues: list[ValidationIssue],
    ) -> None:
        if at > utc_now() + FUTURE_TOLERANCE:
            issues.append(ValidationIssue(
                field=field,
                issue_type="future_date",
                message=f"Timestamp ({at.isoformat()}) is in the future",
                severity="warning",
                suggested_fix="Please verify the date is correct",
            ))

    def _check_usd_value(
        self,
        value: Optional[Decimal],
        field: str,
        issues: list[ValidationIssue],
    ) -> None:
        if value is None:
            return
        if value < 0:
            issues.append(ValidationIssue(
                field=field,
                issue_type="negative_value",
                message=f"USD value ({value}) cannot be negative",
                severity="error",
            ))
        elif value > Decimal(str(self._settings.max_flow_amount_usd)):
            issues.append(ValidationIssue(
                field=field,
                issue_type="suspicious_value",
                message=f"USD value (${value:,.2f}) seems unusually high",
                severity="warning",
                suggested_fix="Please verify this amount is correct",
            ))

    def validate_stake(
        self,
        qty: Decimal,
        cost_usd: Optional[Decimal],
        at: datetime,
    ) -> ValidationResult:
        """Check a stake request before a position is opened."""
        issues = []

        if qty <= 0:
            issues.append(ValidationIssue(
                field="qty",
                issue_type="non_positive",
                message=f"Stake quantity must be positive (got {qty})",
                severity="error",
            ))

        self._check_usd_value(cost_usd, "cost_usd", issues)
        self._check_future(at, "at", issues)

        return ValidationResult(operation="stake", issues=issues)

    def validate_unstake(
        self,
        position: Position,
        request: UnstakeRequest,
    ) -> ValidationResult:
        """
        Check an unstake against the position's current state.

        Over-unstaking is an error, never clamped.
        """
        issues = []

        if not position.is_open:
            issues.append(ValidationIssue(
                field="position",
                issue_type="position_closed",
                message=f"Position {position.id} is already closed",
                severity="error",
            ))

        if not request.close_all:
            if request.qty is None:
                issues.append(ValidationIssue(
                    field="qty",
                    issue_type="missing",
                    message="Quantity is required unless close_all is set",
                    severity="error",
                    suggested_fix="Pass qty or set close_all",
                ))
            elif request.qty <= 0:
                issues.append(ValidationIssue(
                    field="qty",
                    issue_type="non_positive",
                    message=f"Unstake quantity must be positive (got {request.qty})",
                    severity="error",
                ))
            elif request.qty > position.remaining_qty:
                issues.append(ValidationIssue(
                    field="qty",
                    issue_type="over_unstake",
                    message=(
                        f"Unstake quantity {request.qty} exceeds remaining "
                        f"{position.remaining_qty}"
                    ),
                    severity="error",
                    suggested_fix="Unstake at most the remaining quantity, or use close_all",
                ))

        if request.at < position.deposit_date:
            issues.append(ValidationIssue(
                field="at",
                issue_type="inconsistent",
                message="Unstake is dated before the stake",
                severity="error",
            ))

        self._check_usd_value(request.exit_value_usd, "exit_value_usd", issues)
        self._check_future(request.at, "at", issues)

        return ValidationResult(operation="unstake", issues=issues)

    def validate_flow(
        self,
        entry_type: VaultEntryType,
        amount: Decimal,
        usd_value: Optional[Decimal],
        at: datetime,
    ) -> ValidationResult:
        """Check a deposit/withdraw/valuation before it is appended."""
        issues = []

        if entry_type != VaultEntryType.VALUATION and amount <= 0:
            issues.append(ValidationIssue(
                field="amount",
                issue_type="non_positive",
                message=f"{entry_type.value.capitalize()} amount must be positive (got {amount})",
                severity="error",
            ))
        if entry_type == VaultEntryType.VALUATION and usd_value is None:
            issues.append(ValidationIssue(
                field="usd_value",
                issue_type="missing",
                message="Valuation needs a USD value",
                severity="error",
            ))

        self._check_usd_value(usd_value, "usd_value", issues)
        self._check_future(at, "at", issues)

        return ValidationResult(operation=entry_type.value.lower(), issues=issues)
