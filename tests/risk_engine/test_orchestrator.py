from datetime import datetime, timedelta, timezone

import pytest

from rwa_risk.config.models import ProtectionConfig, RiskEngineConfig, RiskThresholds
from rwa_risk.errors import ConfigurationError, EmptyObservationSetError
from rwa_risk.models import AlertLevel, MarketMomentum, PriceObservation
from rwa_risk.risk_engine.orchestrator import RiskOrchestrator, cross_asset_variance
from rwa_risk.risk_engine.state_store import MonitorState

START = datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc)


def _obs(symbol, *prices):
    return tuple(PriceObservation(symbol=symbol, price=p, source=f"s{i}", timestamp=START) for i, p in enumerate(prices))


def _orchestrator(**protection):
    config = RiskEngineConfig(anchor_symbol="PAXG", protection=ProtectionConfig(**protection))
    return RiskOrchestrator(config, clock=lambda: START)


def _scenario_a():
    return [
        {"PAXG": _obs("PAXG", 243.75), "MSFT": _obs("MSFT", 438.20)},
        {"PAXG": _obs("PAXG", 240.50), "MSFT": _obs("MSFT", 438.20)},
        {"PAXG": _obs("PAXG", 180.00), "MSFT": _obs("MSFT", 438.20)},
    ]


def test_scenario_anchor_crash_halts_on_third_cycle():
    orchestrator = _orchestrator()
    state = MonitorState()

    snapshots = [orchestrator.evaluate(cycle, state) for cycle in _scenario_a()]

    first, second, third = snapshots
    assert first.alert is AlertLevel.NORMAL and not first.actuation_requested
    assert first.deviations["PAXG"] is None
    assert second.deviations["PAXG"] == pytest.approx(3.25 / 243.75)
    assert second.alert is AlertLevel.NORMAL and not second.actuation_requested
    assert third.alert is AlertLevel.CRITICAL_HALT
    assert third.market_momentum is MarketMomentum.CRITICAL
    assert third.system_risk_score == 10.0
    assert third.actuation_requested
    assert third.deviations["PAXG"] == pytest.approx(60.5 / 240.5)
    assert third.deviations["PAXG"] > 0.05
    assert "Circuit breaker" in third.rationale
    assert state.cycles == 3


def test_replaying_cycles_on_fresh_state_is_deterministic():
    first_run = [_orchestrator().evaluate(cycle, MonitorState(), now=START) for cycle in _scenario_a()]
    state_a, state_b = MonitorState(), MonitorState()
    run_a = [_orchestrator().evaluate(cycle, state_a, now=START + timedelta(minutes=i)) for i, cycle in enumerate(_scenario_a())]
    run_b = [_orchestrator().evaluate(cycle, state_b, now=START + timedelta(minutes=i)) for i, cycle in enumerate(_scenario_a())]

    assert [s.to_payload() for s in run_a] == [s.to_payload() for s in run_b]
    assert state_a.to_payload() == state_b.to_payload()
    assert all(not s.actuation_requested for s in first_run)


def test_empty_observation_set_leaves_state_untouched():
    orchestrator = _orchestrator()
    state = MonitorState()
    orchestrator.evaluate({"PAXG": _obs("PAXG", 100.0), "MSFT": _obs("MSFT", 400.0)}, state)
    before = state.to_payload()

    with pytest.raises(EmptyObservationSetError):
        orchestrator.evaluate({"PAXG": _obs("PAXG", 150.0), "MSFT": ()}, state)

    assert state.to_payload() == before


def test_missing_anchor_is_rejected_before_evaluation():
    orchestrator = _orchestrator()
    state = MonitorState()

    with pytest.raises(EmptyObservationSetError) as excinfo:
        orchestrator.evaluate({"MSFT": _obs("MSFT", 400.0)}, state)

    assert excinfo.value.symbol == "PAXG"
    assert state.cycles == 0


def test_high_cross_asset_variance_bumps_score():
    orchestrator = _orchestrator()
    state = MonitorState()
    # PAXG is tight; XAU spreads ~8.2% which is High (7) on its own.
    snapshot = orchestrator.evaluate(
        {"PAXG": _obs("PAXG", 100.0, 100.0), "XAU": _obs("XAU", 90.0, 100.0, 110.0)},
        state,
    )

    assert snapshot.cross_asset_variance == pytest.approx(8.16496580927726)
    assert snapshot.alert is AlertLevel.HIGH_VOLATILITY
    # Average of tier scores (0 + 7) / 2 = 3.5, plus the volatility bump.
    assert snapshot.system_risk_score == pytest.approx(5.5)
    assert not snapshot.actuation_requested


def test_elevated_cross_asset_variance_has_no_score_bump():
    orchestrator = _orchestrator()
    state = MonitorState()
    snapshot = orchestrator.evaluate(
        {"PAXG": _obs("PAXG", 100.0), "XAU": _obs("XAU", 97.0, 103.0)},
        state,
    )

    assert snapshot.cross_asset_variance == pytest.approx(3.0)
    assert snapshot.alert is AlertLevel.ELEVATED_VOLATILITY
    assert snapshot.system_risk_score == pytest.approx(2.0)


def test_accelerating_divergence_adds_predictive_bonus():
    orchestrator = _orchestrator()
    state = MonitorState()
    cycles = [
        {"PAXG": _obs("PAXG", 100.0), "XAU": _obs("XAU", 100.0)},
        {"PAXG": _obs("PAXG", 100.0), "XAU": _obs("XAU", 99.0, 101.0)},
        {"PAXG": _obs("PAXG", 100.0), "XAU": _obs("XAU", 96.0, 104.0)},
    ]

    snapshots = [orchestrator.evaluate(cycle, state) for cycle in cycles]

    last = snapshots[-1]
    assert last.market_momentum is MarketMomentum.UNSTABLE
    assert last.acceleration == pytest.approx(2.0)
    # Elevated XAU (4) and normal PAXG (0) average to 2, plus the bonus of 3.
    assert last.system_risk_score == pytest.approx(5.0)


def test_score_at_actuation_threshold_requests_actuation_when_enabled():
    state = MonitorState()
    cycles = [
        {"PAXG": _obs("PAXG", 100.0, 100.0), "XAU": _obs("XAU", 100.0)},
        {"PAXG": _obs("PAXG", 100.0, 100.0), "XAU": _obs("XAU", 99.0, 101.0)},
        {"PAXG": _obs("PAXG", 80.0, 120.0), "XAU": _obs("XAU", 50.0, 150.0)},
    ]
    enabled = _orchestrator()
    snapshots = [enabled.evaluate(cycle, state) for cycle in cycles]

    last = snapshots[-1]
    assert last.alert is AlertLevel.HIGH_VOLATILITY
    assert last.system_risk_score == 10.0
    assert last.actuation_requested


def test_disabled_circuit_breaker_only_suppresses_score_actuation():
    state = MonitorState()
    orchestrator = _orchestrator(circuit_breaker_enabled=False)
    # Both assets Extreme: score 10 without any deviation trip.
    snapshot = orchestrator.evaluate(
        {"PAXG": _obs("PAXG", 50.0, 150.0), "XAU": _obs("XAU", 50.0, 150.0)},
        state,
    )

    assert snapshot.system_risk_score == 10.0
    assert snapshot.alert is AlertLevel.NORMAL
    assert not snapshot.actuation_requested

    halted = orchestrator.evaluate({"PAXG": _obs("PAXG", 500.0), "XAU": _obs("XAU", 100.0)}, state)
    assert halted.alert is AlertLevel.CRITICAL_HALT
    assert halted.actuation_requested


def test_guarded_symbols_extend_the_circuit_breaker():
    config = RiskEngineConfig(anchor_symbol="PAXG", guarded_symbols=("XAUT",))
    orchestrator = RiskOrchestrator(config, clock=lambda: START)
    state = MonitorState()
    orchestrator.evaluate({"PAXG": _obs("PAXG", 100.0), "XAUT": _obs("XAUT", 100.0)}, state)

    snapshot = orchestrator.evaluate({"PAXG": _obs("PAXG", 100.0), "XAUT": _obs("XAUT", 120.0)}, state)

    assert snapshot.alert is AlertLevel.CRITICAL_HALT
    assert "XAUT" in snapshot.rationale


def test_anchor_override_keeps_configured_guard_order():
    config = RiskEngineConfig(anchor_symbol="PAXG", guarded_symbols=("PAXG", "XAUT"))
    orchestrator = RiskOrchestrator(config, clock=lambda: START)

    snapshot = orchestrator.evaluate(
        {"PAXG": _obs("PAXG", 100.0), "XAUT": _obs("XAUT", 100.0)}, MonitorState(), anchor_symbol="XAUT"
    )

    assert list(snapshot.deviations) == ["XAUT", "PAXG"]
    assert snapshot.anchor_symbol == "XAUT"
    with pytest.raises(EmptyObservationSetError) as excinfo:
        orchestrator.evaluate({"PAXG": _obs("PAXG", 100.0)}, MonitorState(), anchor_symbol="XAUT")
    assert excinfo.value.symbol == "XAUT"


def test_unguarded_symbols_do_not_trip_the_breaker():
    orchestrator = _orchestrator()
    state = MonitorState()
    orchestrator.evaluate({"PAXG": _obs("PAXG", 100.0), "MSFT": _obs("MSFT", 400.0)}, state)

    snapshot = orchestrator.evaluate({"PAXG": _obs("PAXG", 100.0), "MSFT": _obs("MSFT", 800.0)}, state)

    assert snapshot.alert is AlertLevel.NORMAL
    assert "MSFT" not in snapshot.deviations


def test_cross_asset_variance_uses_largest_pairwise_gap():
    orchestrator = _orchestrator()
    snapshot = orchestrator.evaluate(
        {
            "PAXG": _obs("PAXG", 100.0),
            "A": _obs("A", 99.0, 101.0),
            "B": _obs("B", 98.0, 102.0),
        },
        MonitorState(),
    )

    assert snapshot.cross_asset_variance == pytest.approx(2.0)
    assert cross_asset_variance([]) == 0.0


def test_single_asset_has_zero_cross_variance():
    snapshot = _orchestrator().evaluate({"PAXG": _obs("PAXG", 100.0)}, MonitorState())

    assert snapshot.cross_asset_variance == 0.0
    assert snapshot.rationale == "All signals within tolerance"


@pytest.mark.parametrize(
    "thresholds, protection",
    [
        (RiskThresholds(2.0, 2.0, 10.0), ProtectionConfig()),
        (RiskThresholds(2.0, 5.0, 4.0), ProtectionConfig()),
        (RiskThresholds(), ProtectionConfig(max_deviation_pct=0.0)),
        (RiskThresholds(), ProtectionConfig(max_deviation_pct=5.0)),
        (RiskThresholds(), ProtectionConfig(acceleration_threshold=-1.0)),
        (RiskThresholds(), ProtectionConfig(acceleration_threshold=float("nan"))),
        (RiskThresholds(), ProtectionConfig(predictive_risk_bonus=float("nan"))),
        (RiskThresholds(), ProtectionConfig(max_deviation_pct=float("nan"))),
        (RiskThresholds(float("nan"), 5.0, 10.0), ProtectionConfig()),
        (RiskThresholds(2.0, float("nan"), 10.0), ProtectionConfig()),
        (RiskThresholds(2.0, 5.0, float("inf")), ProtectionConfig()),
    ],
)
def test_invalid_configuration_is_rejected(thresholds, protection):
    with pytest.raises(ConfigurationError):
        RiskOrchestrator(RiskEngineConfig(anchor_symbol="PAXG", thresholds=thresholds, protection=protection))


def test_anchor_symbol_is_required():
    with pytest.raises(ConfigurationError):
        RiskOrchestrator(RiskEngineConfig(anchor_symbol=""))
