"""Tests for the settlement engine and its tick drivers."""

import asyncio
import logging
import threading
from datetime import datetime, timedelta

import pytest

from microgrid.domain.errors import AccountingError
from microgrid.domain.models import EventType, ResetMode, SettlementConfig
from microgrid.engine import SettlementEngine, TickScheduler, run_periodic_ticks


class TestTickInvariants:
    """Invariants that must hold after every tick."""

    def test_invariants_over_a_day(self, dusk_engine: SettlementEngine) -> None:
        """Test conservation, exclusivity, SOC band and monotonic totals."""
        earned = {h.household_id: 0.0 for h in dusk_engine.state.households}
        used = dict(earned)

        for _ in range(96):
            dusk_engine.advance_tick()
            households = dusk_engine.state.households

            assert sum(h.credits_delta_kwh for h in households) == pytest.approx(0.0, abs=1e-6)
            for h in households:
                assert h.share_kw >= 0.0
                assert h.receive_kw >= 0.0
                assert h.share_kw == 0.0 or h.receive_kw == 0.0
                assert 5.0 <= h.battery_soc_pct <= 95.0
                assert h.earned_today_kwh >= earned[h.household_id]
                assert h.used_today_kwh >= used[h.household_id]
                earned[h.household_id] = h.earned_today_kwh
                used[h.household_id] = h.used_today_kwh

        assert dusk_engine.accounting_error_count == 0

    def test_balances_sum_to_zero(self, dusk_engine: SettlementEngine) -> None:
        """Test the community ledger stays closed over many ticks."""
        for _ in range(48):
            dusk_engine.advance_tick()

        total = sum(h.credits_balance_kwh for h in dusk_engine.state.households)
        assert total == pytest.approx(0.0, abs=1e-6)

    def test_matched_energy_reported(self, dusk_engine: SettlementEngine) -> None:
        """Test the snapshot carries the pass's matched energy."""
        snapshot = dusk_engine.advance_tick()

        assert dusk_engine.last_matching is not None
        assert snapshot.community.matched_kwh == pytest.approx(
            round(dusk_engine.last_matching.total_matched_kwh, 1)
        )


class TestEngineTicks:
    """Tests for tick publication."""

    def test_initial_snapshot(self, engine: SettlementEngine, config: SettlementConfig) -> None:
        """Test a snapshot exists before the first tick."""
        snapshot = engine.get_snapshot()

        assert snapshot.tick_index == 0
        assert snapshot.timestamp == config.start_time
        assert len(snapshot.households) == 25

    def test_advance_moves_clock(self, engine: SettlementEngine, config: SettlementConfig) -> None:
        snapshot = engine.advance_tick()

        assert snapshot.tick_index == 1
        assert snapshot.timestamp == config.start_time + timedelta(minutes=15)
        assert engine.get_snapshot() is snapshot

    def test_published_snapshot_never_changes(self, engine: SettlementEngine) -> None:
        """Test readers holding an old snapshot are unaffected by later ticks."""
        before = engine.get_snapshot()
        dumped = before.model_dump()

        engine.advance_tick()

        assert before.model_dump() == dumped
        assert engine.get_snapshot() is not before

    def test_concurrent_ticks_are_serialized(self, engine: SettlementEngine) -> None:
        """Test ticks from several threads never interleave."""

        def run() -> None:
            for _ in range(10):
                engine.advance_tick()

        threads = [threading.Thread(target=run) for _ in range(4)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        assert engine.tick_index == 40
        assert engine.state.tick_index == 40

    def test_accounting_error_recorded_and_tick_completes(
        self,
        engine: SettlementEngine,
        monkeypatch: pytest.MonkeyPatch,
    ) -> None:
        """Test an imbalance is logged and recorded but the tick still publishes."""

        def broken_check(households: object) -> tuple[float, AccountingError]:
            return 0.5, AccountingError(0.5, 1e-6)

        monkeypatch.setattr(engine._matcher, "check_conservation", broken_check)

        snapshot = engine.advance_tick()

        assert snapshot.tick_index == 1
        assert engine.accounting_error_count == 1
        error = engine.accounting_errors[-1]
        assert error.tick_index == 1
        assert error.timestamp == snapshot.timestamp


class TestOutage:
    """Tests for grid outages driven through the engine."""

    def test_outage_covers_two_ticks(self, engine: SettlementEngine) -> None:
        """Test a 30-minute outage zeroes grid flow for exactly two ticks."""
        engine.trigger_outage(30)
        pending = engine.get_snapshot()
        assert pending.outage_active
        assert pending.outage_remaining_minutes == 30

        first = engine.advance_tick()
        assert first.outage_active
        assert first.outage_remaining_minutes == 15
        assert first.grid.import_kw == 0.0
        assert first.grid.export_kw == 0.0

        second = engine.advance_tick()
        assert not second.outage_active
        assert second.outage_remaining_minutes == 0
        assert second.grid.import_kw == 0.0
        assert second.grid.export_kw == 0.0

        third = engine.advance_tick()
        assert not engine.last_tick.outage_active
        assert third.grid.import_kw > 0.0

    def test_outage_end_logged(
        self,
        engine: SettlementEngine,
        caplog: pytest.LogCaptureFixture,
    ) -> None:
        caplog.set_level(logging.INFO)
        engine.trigger_outage(15)
        engine.advance_tick()

        assert "Grid outage ended" in caplog.text

    def test_unserved_load_during_night_outage(self, engine: SettlementEngine) -> None:
        """Test night-time deficit beyond the receive cap shows up as unserved."""
        engine.trigger_outage(60)
        snapshot = engine.advance_tick()

        assert snapshot.community.unserved_kw > 0.0
        assert all(h.grid_import_kw == 0.0 for h in snapshot.households)

    def test_midday_outage_curtails_surplus(self) -> None:
        """Test surplus beyond the share cap is published as curtailment."""
        engine = SettlementEngine(
            SettlementConfig(seed=11, start_time=datetime(2025, 7, 15, 11, 45))
        )
        engine.trigger_outage(60)

        snapshot = engine.advance_tick()

        assert snapshot.grid.export_kw == 0.0
        assert snapshot.community.curtailed_kw > 0.0
        for home in snapshot.households:
            assert home.curtailed_kw > 0.0
            assert home.curtailed_today_kwh == home.curtailed_kw
        assert snapshot.community.curtailed_kw == pytest.approx(
            round(sum(h.curtailed_kw for h in engine.state.households), 1)
        )

    def test_community_costs_match_summary(self, dusk_engine: SettlementEngine) -> None:
        """Test the published community costs are the economics summary."""
        for _ in range(8):
            snapshot = dusk_engine.advance_tick()

        summary = dusk_engine.last_economics
        assert summary is not None
        assert snapshot.community.baseline_cost_usd == round(summary.baseline_cost_usd, 2)
        assert snapshot.community.microgrid_cost_usd == round(summary.microgrid_cost_usd, 2)
        assert snapshot.community.savings_usd == round(summary.savings_usd, 2)

    @pytest.mark.parametrize("duration", [0, -30])
    def test_invalid_duration_rejected(self, engine: SettlementEngine, duration: int) -> None:
        with pytest.raises(ValueError):
            engine.trigger_outage(duration)
        assert not engine.get_snapshot().outage_active

    def test_unknown_event_rejected(self, engine: SettlementEngine) -> None:
        with pytest.raises(ValueError):
            engine.trigger_event("BLIZZARD", 30)

    def test_other_events_listed(self, engine: SettlementEngine) -> None:
        engine.trigger_event(EventType.HEATWAVE, 60)
        engine.trigger_event("EV_SURGE", 30)

        snapshot = engine.get_snapshot()
        assert set(snapshot.active_events) == {EventType.HEATWAVE, EventType.EV_SURGE}
        assert not snapshot.outage_active


class TestHouseholdLookup:
    """Tests for household lookup by id."""

    @pytest.mark.parametrize("raw", ["H007", "h7", "7", 7, "H0007"])
    def test_normalized_lookup(self, engine: SettlementEngine, raw: str | int) -> None:
        view = engine.get_household(raw)

        assert view is not None
        assert view.household_id == "H007"

    @pytest.mark.parametrize("raw", ["H099", "nope", "", "1.5", "H003-2", "H1x2"])
    def test_unknown_household(self, engine: SettlementEngine, raw: str) -> None:
        assert engine.get_household(raw) is None


class TestReset:
    """Tests for the reset modes."""

    def test_clock_reset_keeps_accumulators(
        self, engine: SettlementEngine, config: SettlementConfig
    ) -> None:
        """Test the default reset only rewinds the clock."""
        for _ in range(3):
            engine.advance_tick()
        engine.state.households[0].credits_balance_kwh = 5.0
        engine.state.households[0].earned_today_kwh = 5.0

        snapshot = engine.reset()

        assert snapshot.tick_index == 0
        assert snapshot.timestamp == config.start_time
        assert engine.state.households[0].credits_balance_kwh == 5.0
        assert engine.state.households[0].earned_today_kwh == 5.0

    def test_daily_reset_clears_day_totals(self, engine: SettlementEngine) -> None:
        engine.advance_tick()
        engine.state.households[0].credits_balance_kwh = 5.0
        engine.state.households[0].earned_today_kwh = 5.0

        engine.reset(ResetMode.DAILY)

        assert engine.state.households[0].credits_balance_kwh == 5.0
        assert engine.state.households[0].earned_today_kwh == 0.0

    def test_full_reset_rebuilds_community(self, engine: SettlementEngine) -> None:
        engine.advance_tick()
        engine.trigger_outage(120)
        engine.state.households[0].credits_balance_kwh = 5.0

        snapshot = engine.reset("full")

        assert engine.state.households[0].credits_balance_kwh == 0.0
        assert not snapshot.outage_active
        assert engine.accounting_error_count == 0
        assert engine.last_matching is None
        assert len(snapshot.households) == 25

    def test_configured_reset_mode(self, base_timestamp: datetime) -> None:
        engine = SettlementEngine(
            SettlementConfig(seed=3, start_time=base_timestamp, reset_mode=ResetMode.DAILY)
        )
        engine.state.households[0].used_today_kwh = 2.0

        engine.reset()

        assert engine.state.households[0].used_today_kwh == 0.0


class TestTickDrivers:
    """Tests for the lazy scheduler and the periodic driver."""

    def test_scheduler_debounces(self, engine: SettlementEngine) -> None:
        """Test reads within one interval share a single tick."""
        times = iter([0.0, 1.0, 1.9, 2.5, 2.6])
        scheduler = TickScheduler(engine, interval_seconds=2.0, clock=lambda: next(times))

        results = [scheduler.maybe_advance() for _ in range(5)]

        assert results == [True, False, False, True, False]
        assert engine.tick_index == 2

    def test_scheduler_rejects_negative_interval(self, engine: SettlementEngine) -> None:
        with pytest.raises(ValueError):
            TickScheduler(engine, interval_seconds=-1.0)

    def test_periodic_ticks(self, engine: SettlementEngine) -> None:
        asyncio.run(run_periodic_ticks(engine, interval_seconds=0, max_ticks=3))

        assert engine.tick_index == 3

    def test_periodic_ticks_survive_a_failing_tick(
        self,
        engine: SettlementEngine,
        monkeypatch: pytest.MonkeyPatch,
        caplog: pytest.LogCaptureFixture,
    ) -> None:
        """Test an exception in one tick is logged and later ticks still run."""
        advance = engine.advance_tick
        calls: list[int] = []

        def flaky_advance() -> object:
            calls.append(1)
            if len(calls) == 1:
                raise RuntimeError("boom")
            return advance()

        monkeypatch.setattr(engine, "advance_tick", flaky_advance)

        asyncio.run(run_periodic_ticks(engine, interval_seconds=0, max_ticks=3))

        assert len(calls) == 3
        assert engine.tick_index == 2
        assert "timer keeps running" in caplog.text
        assert "RuntimeError: boom" in caplog.text
