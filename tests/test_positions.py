"""
Tests for position accounting.

Covers the pure stake/unstake transitions and the PositionAccountant
service around them (validation, pricing, persistence, audit).
"""

import asyncio
from datetime import datetime, timedelta, timezone
from decimal import Decimal

import pytest
from pydantic import ValidationError

from conftest import FakeProvider, make_resolver
from nami.audit import AuditLogger
from nami.models.audit import AuditEventType
from nami.models.ledger import Asset
from nami.models.position import Position, UnstakeRequest
from nami.positions import (
    AccountingViolationError,
    PositionAccountant,
    PositionClosedError,
    PositionNotFoundError,
    apply_unstake,
    open_position,
)
from nami.services.storage import InMemoryAuditStorage, InMemoryPositionStorage


T0 = datetime(2024, 1, 1, tzinfo=timezone.utc)


def stake(qty="1000", cost="1000", asset=None):
    return open_position(asset or Asset.crypto("USDT"), "Binance", qty, cost, T0)


def unstake_req(value, qty=None, close_all=False, days=10):
    return UnstakeRequest(
        exit_value_usd=Decimal(value),
        qty=Decimal(qty) if qty is not None else None,
        at=T0 + timedelta(days=days),
        close_all=close_all,
    )


class TestApplyUnstake:
    """Tests for the pure unstake transition."""

    def test_full_close_uses_whole_cost(self):
        """close_all realizes exit value minus the full cost, not a prorated one."""
        position = stake("500", "500")
        updated, realized = apply_unstake(position, unstake_req("275", close_all=True))

        assert realized.pnl == Decimal("-225")
        assert realized.roi_percent == Decimal("-45")
        assert realized.closed is True
        assert updated.remaining_qty == 0
        assert updated.is_open is False
        assert updated.exit_date == T0 + timedelta(days=10)

    def test_partial_unstake_prorates_cost(self):
        """Cost of q units is (q / Q) x C."""
        position = stake()
        updated, realized = apply_unstake(position, unstake_req("330", qty="300"))

        assert realized.cost_basis == Decimal("300")
        assert realized.pnl == Decimal("30")
        assert realized.roi_percent == Decimal("10")
        assert realized.closed is False
        assert updated.remaining_qty == Decimal("700")
        assert updated.is_open is True
        assert updated.exit_date is None

    def test_input_position_untouched(self):
        """The transition returns a new position and leaves the old one alone."""
        position = stake()
        apply_unstake(position, unstake_req("330", qty="300"))

        assert position.remaining_qty == Decimal("1000")
        assert position.exits == []
        assert position.realized_pnl == 0

    def test_partials_are_additive(self):
        """Three partials exhausting the stake sum to $80 PnL and 8% ROI."""
        position = stake()
        total_pnl = Decimal("0")
        total_cost = Decimal("0")

        for qty, value, day in (("300", "330", 10), ("400", "480", 20), ("300", "270", 30)):
            position, realized = apply_unstake(position, unstake_req(value, qty=qty, days=day))
            total_pnl += realized.pnl
            total_cost += realized.cost_basis

        assert total_pnl == Decimal("80")
        assert total_pnl / total_cost * 100 == Decimal("8")
        assert position.realized_pnl == Decimal("80")
        assert position.remaining_qty == 0
        assert position.is_open is False
        assert position.withdrawn_qty == Decimal("1000")
        assert position.withdrawn_value == Decimal("1080")
        assert len(position.exits) == 3

    def test_close_all_after_partials_uses_remaining_cost(self):
        """close_all after earlier exits is charged the unattributed cost only."""
        position = stake()
        position, _ = apply_unstake(position, unstake_req("330", qty="300", days=10))
        position, _ = apply_unstake(position, unstake_req("480", qty="400", days=20))
        position, realized = apply_unstake(position, unstake_req("270", close_all=True, days=30))

        assert realized.quantity == Decimal("300")
        assert realized.cost_basis == Decimal("300")
        assert position.realized_pnl == Decimal("80")
        assert position.cost_basis_exited == Decimal("1000")
        assert position.remaining_qty == 0

    def test_over_unstake_rejected(self):
        """Asking for more than remains is an error, never clamped."""
        position = stake()
        with pytest.raises(AccountingViolationError):
            apply_unstake(position, unstake_req("1100", qty="1000.0001"))

    def test_missing_qty_rejected(self):
        """A partial unstake needs a quantity."""
        with pytest.raises(AccountingViolationError):
            apply_unstake(stake(), unstake_req("100"))

    def test_non_positive_qty_rejected(self):
        """Zero quantity is not an unstake."""
        with pytest.raises(AccountingViolationError):
            apply_unstake(stake(), unstake_req("0", qty="0"))

    def test_closed_position_rejected(self):
        """Nothing leaves CLOSED."""
        closed, _ = apply_unstake(stake(), unstake_req("1000", close_all=True))
        with pytest.raises(PositionClosedError):
            apply_unstake(closed, unstake_req("10", qty="1", days=20))

    def test_exit_before_stake_rejected(self):
        """An exit cannot predate its stake."""
        with pytest.raises(AccountingViolationError):
            apply_unstake(stake(), unstake_req("100", qty="100", days=-1))

    def test_zero_cost_roi(self):
        """A free stake (airdrop) reports 0% ROI instead of dividing by zero."""
        position = stake("100", "0")
        _, realized = apply_unstake(position, unstake_req("50", close_all=True))
        assert realized.pnl == Decimal("50")
        assert realized.roi_percent == 0


class TestPositionModel:
    """Tests for Position invariants enforced by the model."""

    def test_remaining_cannot_exceed_deposit(self):
        """remaining_qty <= deposit_qty."""
        with pytest.raises(ValidationError):
            Position(
                asset=Asset.crypto("BTC"),
                account="Ledger",
                deposit_qty=Decimal("1"),
                deposit_cost=Decimal("100"),
                remaining_qty=Decimal("2"),
            )

    def test_deposit_qty_must_be_positive(self):
        """A stake of nothing is rejected."""
        with pytest.raises(ValidationError):
            open_position(Asset.crypto("BTC"), "Ledger", "0", "0", T0)

    def test_exit_before_deposit_rejected(self):
        """exit_date >= deposit_date."""
        with pytest.raises(ValidationError):
            Position(
                asset=Asset.crypto("BTC"),
                account="Ledger",
                deposit_qty=Decimal("1"),
                deposit_cost=Decimal("100"),
                deposit_date=T0,
                exit_date=T0 - timedelta(days=1),
                remaining_qty=Decimal("0"),
            )

    def test_unit_cost(self):
        """deposit_unit_cost is cost per staked unit."""
        assert stake("4", "100").deposit_unit_cost == Decimal("25")


class TestPositionAccountant:
    """Tests for the persisted, audited accountant service."""

    def _accountant(self, provider=None):
        audit_storage = InMemoryAuditStorage()
        resolver = make_resolver(
            providers=[provider] if provider else [],
            disable_external=provider is None,
        )
        accountant = PositionAccountant(
            InMemoryPositionStorage(),
            rate_resolver=resolver,
            audit_logger=AuditLogger(audit_storage),
        )
        return accountant, audit_storage

    def test_stake_and_partial_unstake(self):
        """Scenario: 1000 staked, 300 exited at $330."""
        accountant, audit = self._accountant()

        async def run():
            position = await accountant.stake(Asset.crypto("USDT"), "Binance", "1000", "1000", T0)
            updated, realized = await accountant.unstake(
                position.id, exit_value_usd="330", qty="300", at=T0 + timedelta(days=5),
            )
            stored = await accountant.get_position(position.id)
            return updated, realized, stored

        updated, realized, stored = asyncio.run(run())

        assert realized.pnl == Decimal("30")
        assert stored.remaining_qty == Decimal("700")
        assert stored == updated
        types = [e.event_type for e in audit.events]
        assert types == [AuditEventType.POSITION_OPENED, AuditEventType.POSITION_REDUCED]

    def test_close_all_audited_as_closed(self):
        """A full close emits POSITION_CLOSED."""
        accountant, audit = self._accountant()

        async def run():
            position = await accountant.stake(Asset.crypto("USDT"), "Binance", "500", "500", T0)
            return await accountant.unstake(
                position.id, exit_value_usd="275", close_all=True, at=T0 + timedelta(days=1),
            )

        updated, realized = asyncio.run(run())

        assert realized.pnl == Decimal("-225")
        assert updated.is_open is False
        assert audit.events[-1].event_type == AuditEventType.POSITION_CLOSED

    def test_over_unstake_rejected_and_audited(self):
        """Validation failure raises, audits, and leaves the position unchanged."""
        accountant, audit = self._accountant()

        async def run():
            position = await accountant.stake(Asset.crypto("USDT"), "Binance", "100", "100", T0)
            with pytest.raises(AccountingViolationError) as exc_info:
                await accountant.unstake(position.id, exit_value_usd="150", qty="150", at=T0)
            return position, exc_info.value, await accountant.get_position(position.id)

        position, error, stored = asyncio.run(run())

        assert error.result is not None
        assert error.result.errors[0].issue_type == "over_unstake"
        assert stored.remaining_qty == Decimal("100")
        assert audit.events[-1].event_type == AuditEventType.ACCOUNTING_VIOLATION

    def test_negative_exit_value_rejected(self):
        """A negative exit value is an accounting violation, not a model error."""
        accountant, audit = self._accountant()

        async def run():
            position = await accountant.stake(Asset.crypto("USDT"), "Binance", "100", "100", T0)
            with pytest.raises(AccountingViolationError) as exc_info:
                await accountant.unstake(position.id, exit_value_usd="-5", qty="10", at=T0)
            return exc_info.value, await accountant.get_position(position.id)

        error, stored = asyncio.run(run())

        assert [i.issue_type for i in error.result.errors] == ["negative_value"]
        assert stored.remaining_qty == Decimal("100")
        assert audit.events[-1].event_type == AuditEventType.ACCOUNTING_VIOLATION

    def test_unstake_closed_position(self):
        """A second close raises PositionClosedError."""
        accountant, _ = self._accountant()

        async def run():
            position = await accountant.stake(Asset.crypto("USDT"), "Binance", "10", "10", T0)
            await accountant.unstake(position.id, exit_value_usd="10", close_all=True, at=T0)
            await accountant.unstake(position.id, exit_value_usd="10", close_all=True, at=T0)

        with pytest.raises(PositionClosedError):
            asyncio.run(run())

    def test_unknown_position(self):
        """Unknown ids raise PositionNotFoundError."""
        accountant, _ = self._accountant()
        position = stake()

        with pytest.raises(PositionNotFoundError):
            asyncio.run(accountant.unstake(position.id, exit_value_usd="1", qty="1"))

    def test_stake_rejects_non_positive_qty(self):
        """Stake validation runs before anything is stored."""
        accountant, _ = self._accountant()

        async def run():
            with pytest.raises(AccountingViolationError):
                await accountant.stake(Asset.crypto("USDT"), "Binance", "-1", "10", T0)
            return await accountant.list_positions()

        assert asyncio.run(run()) == []

    def test_missing_values_priced_by_resolver(self):
        """Cost and exit value default to qty x rate at the transaction time."""
        provider = FakeProvider({"BTC": "50000"})
        accountant, _ = self._accountant(provider)

        async def run():
            position = await accountant.stake(Asset.crypto("BTC"), "Ledger", "0.5", at=T0)
            _, realized = await accountant.unstake(
                position.id, qty="0.1", at=T0 + timedelta(days=1),
            )
            return position, realized

        position, realized = asyncio.run(run())

        assert position.deposit_cost == Decimal("25000")
        assert realized.exit_value_usd == Decimal("5000")
        assert realized.pnl == Decimal("0")

    def test_find_open_positions(self):
        """Only open positions of the asset/account pair are returned, oldest first."""
        accountant, _ = self._accountant()
        usdt = Asset.crypto("USDT")

        async def run():
            first = await accountant.stake(usdt, "Binance", "10", "10", T0)
            second = await accountant.stake(usdt, "Binance", "20", "20", T0 + timedelta(days=1))
            await accountant.stake(usdt, "OKX", "30", "30", T0)
            closed = await accountant.stake(usdt, "Binance", "5", "5", T0)
            await accountant.unstake(closed.id, exit_value_usd="5", close_all=True, at=T0)
            return first, second, await accountant.find_open_positions(usdt, "Binance")

        first, second, found = asyncio.run(run())

        assert [p.id for p in found] == [first.id, second.id]


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
