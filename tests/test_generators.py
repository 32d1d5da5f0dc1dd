"""Tests for production/load profiles and the tick generator."""

from datetime import datetime, timedelta

import pytest

from microgrid.domain.models import (
    EventType,
    SettlementConfig,
    SimulationState,
    SplitPolicy,
)
from microgrid.generators.profiles import (
    CLOUDBURST_PRODUCTION_FACTOR,
    EV_SURGE_LOAD_KW,
    HEATWAVE_LOAD_FACTOR,
    ProfileGenerator,
)
from microgrid.generators.tick import TickGenerator, split_energy_balance


class TestProfileGenerator:
    """Tests for ProfileGenerator."""

    @pytest.fixture
    def generator(self) -> ProfileGenerator:
        """Generator with noise switched off."""
        return ProfileGenerator(peak_production_kw=6.0, production_noise_kw=0.0, seed=42)

    @pytest.mark.parametrize(
        ("hour", "expected"),
        [
            (3, 0.6),
            (6, 1.2),
            (8, 1.4),
            (12, 0.8),
            (17, 1.5),
            (20, 2.1),
            (22, 2.5),
            (23, 0.6),
        ],
    )
    def test_load_shape(self, hour: int, expected: float) -> None:
        """Test morning ramp, evening peak and night floor."""
        assert ProfileGenerator.base_load_kw(hour) == pytest.approx(expected)

    def test_production_peaks_at_noon(self, generator: ProfileGenerator) -> None:
        """Test clear-sky production equals the peak at solar noon."""
        noon = datetime(2025, 7, 15, 12, 0)
        assert generator.production_kw(noon) == pytest.approx(6.0)

    def test_no_production_at_night(self, generator: ProfileGenerator) -> None:
        """Test the half-sine is zero outside daylight."""
        for hour in (0, 3, 5, 19, 23):
            ts = datetime(2025, 7, 15, hour, 0)
            assert generator.production_kw(ts) == 0.0

    def test_noisy_production_never_negative(self) -> None:
        """Test noise is bounded and production is floored at zero."""
        generator = ProfileGenerator(production_noise_kw=1.0, seed=1)
        start = datetime(2025, 7, 15, 0, 0)
        for step in range(96):
            ts = start + timedelta(minutes=15 * step)
            clear_sky = ProfileGenerator._daylight_factor(ts.hour + ts.minute / 60) * 6.0
            value = generator.production_kw(ts)
            assert value >= 0.0
            assert abs(value - clear_sky) <= 0.5 + 1e-9 or value == 0.0

    def test_event_modifiers(self, generator: ProfileGenerator) -> None:
        """Test cloudburst, heatwave and EV surge adjust the profiles."""
        noon = datetime(2025, 7, 15, 12, 0)

        assert generator.production_kw(noon, [EventType.CLOUDBURST]) == pytest.approx(
            6.0 * CLOUDBURST_PRODUCTION_FACTOR
        )
        assert generator.load_kw(noon, [EventType.HEATWAVE]) == pytest.approx(
            0.8 * HEATWAVE_LOAD_FACTOR
        )
        assert generator.load_kw(noon, [EventType.EV_SURGE]) == pytest.approx(
            0.8 + EV_SURGE_LOAD_KW
        )

    def test_reproducibility(self) -> None:
        """Test that the same seed produces the same households."""
        first = ProfileGenerator(seed=123).initial_households(10)
        second = ProfileGenerator(seed=123).initial_households(10)

        assert first == second

    def test_initial_households(self) -> None:
        """Test initial ids, rates and battery levels."""
        households = ProfileGenerator(seed=5).initial_households(25)

        assert [h.household_id for h in households][:3] == ["H001", "H002", "H003"]
        assert households[-1].household_id == "H025"
        for household in households:
            assert 0.0 <= household.production_kw <= 0.5
            assert 1.0 <= household.load_kw <= 1.5
            assert 12.0 <= household.battery_soc_pct <= 22.0


class TestEnergySplit:
    """Tests for split_energy_balance."""

    @pytest.fixture
    def normal(self, config: SettlementConfig) -> SplitPolicy:
        return config.normal_split

    @pytest.fixture
    def outage(self, config: SettlementConfig) -> SplitPolicy:
        return config.outage_split

    def test_surplus_normal(self, normal: SplitPolicy) -> None:
        """Test surplus is shared at 60 % and the rest exported."""
        split = split_energy_balance(2.0, normal, outage=False)

        assert split.share_kw == pytest.approx(1.2)
        assert split.grid_export_kw == pytest.approx(0.8)
        assert split.receive_kw == 0.0
        assert split.grid_import_kw == 0.0
        assert split.curtailed_kw == 0.0

    def test_surplus_capped(self, normal: SplitPolicy) -> None:
        """Test share is capped at 2 kW."""
        split = split_energy_balance(5.0, normal, outage=False)

        assert split.share_kw == pytest.approx(2.0)
        assert split.grid_export_kw == pytest.approx(3.0)

    def test_surplus_during_outage(self, outage: SplitPolicy) -> None:
        """Test outage widens the share and curtails the rest."""
        split = split_energy_balance(5.0, outage, outage=True)

        assert split.share_kw == pytest.approx(3.0)
        assert split.grid_export_kw == 0.0
        assert split.curtailed_kw == pytest.approx(2.0)

    def test_deficit_normal(self, normal: SplitPolicy) -> None:
        """Test deficit is requested at 40 % and the rest imported."""
        split = split_energy_balance(-1.0, normal, outage=False)

        assert split.receive_kw == pytest.approx(0.4)
        assert split.grid_import_kw == pytest.approx(0.6)
        assert split.share_kw == 0.0

    def test_deficit_capped(self, normal: SplitPolicy) -> None:
        """Test receive is capped at 1.5 kW."""
        split = split_energy_balance(-5.0, normal, outage=False)

        assert split.receive_kw == pytest.approx(1.5)
        assert split.grid_import_kw == pytest.approx(3.5)

    def test_deficit_during_outage(self, outage: SplitPolicy) -> None:
        """Test outage forces import to zero and reports unserved load."""
        split = split_energy_balance(-5.0, outage, outage=True)

        assert split.receive_kw == pytest.approx(2.5)
        assert split.grid_import_kw == 0.0
        assert split.unserved_kw == pytest.approx(2.5)

    def test_zero_balance(self, normal: SplitPolicy) -> None:
        """Test a balanced household neither shares nor receives."""
        split = split_energy_balance(0.0, normal, outage=False)

        assert split.share_kw == 0.0
        assert split.receive_kw == 0.0
        assert split.grid_import_kw == 0.0
        assert split.grid_export_kw == 0.0


class TestTickGenerator:
    """Tests for TickGenerator."""

    @pytest.fixture
    def generator(self, config: SettlementConfig) -> TickGenerator:
        return TickGenerator(config)

    def test_clock_advances_one_step(
        self, generator: TickGenerator, state: SimulationState
    ) -> None:
        """Test each tick moves the clock by 15 minutes."""
        start = state.clock
        context = generator.advance(state)

        assert state.clock == start + timedelta(minutes=15)
        assert context.timestamp == state.clock
        assert state.tick_index == 1

    def test_invariants_over_a_day(
        self, generator: TickGenerator, state: SimulationState
    ) -> None:
        """Test exclusivity, non-negativity and SOC band on every tick."""
        for _ in range(96):
            generator.advance(state)
            for h in state.households:
                assert h.share_kw >= 0.0
                assert h.receive_kw >= 0.0
                assert h.share_kw == 0.0 or h.receive_kw == 0.0
                assert h.grid_import_kw >= 0.0
                assert h.grid_export_kw >= 0.0
                assert 5.0 <= h.battery_soc_pct <= 95.0

    def test_outage_lasts_exactly_its_duration(
        self, generator: TickGenerator, state: SimulationState
    ) -> None:
        """Test a 30-minute outage covers two ticks and then clears."""
        state.outage.start(30)

        first = generator.advance(state)
        assert first.outage_active
        assert state.outage.active
        assert state.outage.remaining_minutes == 15

        second = generator.advance(state)
        assert second.outage_active
        assert not state.outage.active
        assert state.outage.remaining_minutes == 0
        assert second.ended_events == [EventType.OUTAGE]

        third = generator.advance(state)
        assert not third.outage_active

    def test_outage_cuts_grid_flow(
        self, generator: TickGenerator, state: SimulationState
    ) -> None:
        """Test no household imports or exports during an outage."""
        state.outage.start(24 * 60)
        for _ in range(96):
            generator.advance(state)
            for h in state.households:
                assert h.grid_import_kw == 0.0
                assert h.grid_export_kw == 0.0

    def test_soc_clamped_under_extreme_imbalance(
        self, config: SettlementConfig, state: SimulationState
    ) -> None:
        """Test SOC stays in band even with a huge production peak."""
        generator = TickGenerator(config.model_copy(update={"peak_production_kw": 5000.0}))
        noon = datetime(2025, 7, 15, 12, 0)
        state.clock = noon
        state.households[0].battery_soc_pct = 94.0

        generator.advance(state)

        assert state.households[0].battery_soc_pct == 95.0

    def test_rates_are_metered(
        self, generator: TickGenerator, state: SimulationState
    ) -> None:
        """Test generated rates carry at most one decimal."""
        state.clock = datetime(2025, 7, 15, 9, 0)
        generator.advance(state)

        for h in state.households:
            for value in (h.production_kw, h.share_kw, h.receive_kw, h.grid_export_kw):
                assert round(value, 1) == value

    def test_daily_rollover(self, state: SimulationState) -> None:
        """Test crossing midnight resets day-to-date totals when enabled."""
        config = SettlementConfig(seed=1, daily_rollover=True)
        generator = TickGenerator(config)
        state.clock = datetime(2025, 7, 15, 23, 50)
        state.households[0].earned_today_kwh = 4.0
        state.households[0].credits_balance_kwh = 4.0

        context = generator.advance(state)

        assert context.rolled_over
        assert state.households[0].earned_today_kwh == 0.0
        assert state.households[0].credits_balance_kwh == 4.0

    def test_no_rollover_by_default(
        self, generator: TickGenerator, state: SimulationState
    ) -> None:
        """Test day-to-date totals survive midnight unless rollover is enabled."""
        state.clock = datetime(2025, 7, 15, 23, 50)
        state.households[0].earned_today_kwh = 4.0

        context = generator.advance(state)

        assert not context.rolled_over
        assert state.households[0].earned_today_kwh == 4.0
