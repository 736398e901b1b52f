import io
import json
from pathlib import Path

import pytest

from rwa_risk import cli
from rwa_risk.errors import ConfigurationError


def _write_config(tmp_path: Path) -> Path:
    payload = {
        "risk": {
            "anchor_symbol": "PAXG",
            "consensus": {"max_variance_pct": 2.0},
            "risk_parameters": {"high_volatility_pct": 5.0, "extreme_volatility_pct": 10.0},
            "protection": {
                "max_deviation_pct": 0.05,
                "acceleration_threshold": 0.5,
                "predictive_risk_bonus": 3.0,
            },
        },
        "assets": [
            {"symbol": "PAXG", "sources": [{"kind": "ccxt", "exchange": "binance", "instrument": "PAXG/USDT"}]},
            {"symbol": "MSFT", "sources": [{"kind": "alpha_vantage", "instrument": "MSFT"}]},
        ],
        "actuation": {"emitter": "telegram", "dry_run": False},
    }
    path = tmp_path / "monitor.json"
    path.write_text(json.dumps(payload), encoding="utf-8")
    return path


def _write_scenario(tmp_path: Path) -> Path:
    cycles = []
    for minute, paxg in enumerate((243.75, 240.50, 180.00)):
        cycles.append(
            {
                "timestamp": f"2024-05-01T00:0{minute}:00+00:00",
                "observations": {
                    "PAXG": [{"price": paxg, "source": "binance"}],
                    "MSFT": [{"price": 438.20, "source": "alpha_vantage"}],
                },
            }
        )
    path = tmp_path / "scenario.json"
    path.write_text(json.dumps({"cycles": cycles}), encoding="utf-8")
    return path


def test_replay_prints_one_outcome_per_cycle(tmp_path, monkeypatch):
    for name in ("ALPHA_VANTAGE_API_KEY", "RWA_RISK_TELEGRAM_TOKEN", "RWA_RISK_DRY_RUN"):
        monkeypatch.delenv(name, raising=False)
    output = io.StringIO()

    exit_code = cli.main(
        ["replay", "--config", str(_write_config(tmp_path)), "--scenario", str(_write_scenario(tmp_path))],
        output=output,
    )

    assert exit_code == 0
    outcomes = [json.loads(line) for line in output.getvalue().splitlines()]
    assert [o["cycle"] for o in outcomes] == [1, 2, 3]
    assert [o["snapshot"]["alert"] for o in outcomes] == ["Normal", "Normal", "CRITICAL_HALT"]
    assert outcomes[2]["snapshot"]["timestamp"] == "2024-05-01T00:02:00+00:00"
    assert outcomes[2]["actuation"]["emitter"] == "dry_run"
    assert outcomes[0]["actuation"] is None


def test_run_fails_fast_without_credentials(tmp_path, monkeypatch, capsys):
    for name in ("ALPHA_VANTAGE_API_KEY", "RWA_RISK_TELEGRAM_TOKEN", "RWA_RISK_TELEGRAM_CHAT_ID"):
        monkeypatch.delenv(name, raising=False)

    exit_code = cli.main(["run", "--config", str(_write_config(tmp_path)), "--cycles", "1"])

    assert exit_code == 2
    assert "Configuration error" in capsys.readouterr().err


def test_load_scenario_rejects_cycles_without_timestamp(tmp_path):
    path = tmp_path / "scenario.json"
    path.write_text(json.dumps([{"observations": {}}]), encoding="utf-8")

    with pytest.raises(ConfigurationError, match="timestamp"):
        cli.load_scenario(path)


def test_load_scenario_rejects_invalid_quotes(tmp_path):
    path = tmp_path / "scenario.json"
    path.write_text(
        json.dumps([{"timestamp": 1714521600, "observations": {"PAXG": [{"price": -1}]}}]),
        encoding="utf-8",
    )

    with pytest.raises(ConfigurationError, match="PAXG"):
        cli.load_scenario(path)


def test_parser_requires_a_command():
    with pytest.raises(SystemExit):
        cli.build_parser().parse_args([])
