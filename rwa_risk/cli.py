"""Command line entry point for the RWA risk monitor."""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import sys
from pathlib import Path
from typing import TYPE_CHECKING, Any, Dict, List, Mapping, Optional, Sequence, TextIO, Tuple

from services.telemetry import Telemetry

from .audit import build_audit_logger
from .config.models import MonitorConfig
from .configuration import _configure_default_logging, load_monitor_config
from .errors import ConfigurationError
from .models import PriceObservation, parse_timestamp
from .risk_engine import (
    DryRunReportEmitter,
    FileStateStore,
    InMemoryStateStore,
    MetricRegistry,
    ObservationFetcher,
    RiskOrchestrator,
    SnapshotHistory,
    StateStore,
    build_report_emitter,
    evaluate_cycle,
    risk_loop,
)

if TYPE_CHECKING:  # pragma: no cover - used only for type hints
    import uvicorn

logger = logging.getLogger(__name__)


def _import_uvicorn() -> "uvicorn":
    """Import :mod:`uvicorn` with a helpful error message when missing."""

    try:
        import uvicorn  # type: ignore[import]
    except ModuleNotFoundError as exc:  # pragma: no cover - depends on runtime environment
        raise ModuleNotFoundError(
            "The 'uvicorn' package is required to serve the risk API. "
            "Reinstall rwa-risk-monitor or add uvicorn to your environment."
        ) from exc
    return uvicorn


def _build_state_store(config: MonitorConfig) -> StateStore:
    if config.state_path is None:
        logger.warning("No 'state_path' configured; risk history will not survive a restart")
        return InMemoryStateStore()
    return FileStateStore(config.state_path)


async def _run_monitor(config: MonitorConfig, args: argparse.Namespace) -> int:
    metrics = MetricRegistry()
    telemetry = Telemetry(policy=config.resilience)
    fetcher = ObservationFetcher.from_config(config, telemetry=telemetry, metrics=metrics)
    orchestrator = RiskOrchestrator(config.risk)
    emitter = build_report_emitter(config.actuation)
    audit = build_audit_logger(config.audit)
    history = SnapshotHistory()
    interval = args.interval if args.interval is not None else config.interval_seconds

    server = None
    server_task: Optional[asyncio.Task] = None
    if args.serve:
        from .web import create_app  # imported lazily to avoid heavy dependencies at import time

        uvicorn = _import_uvicorn()
        app = create_app(history, telemetry=telemetry, metrics=metrics)
        server = uvicorn.Server(uvicorn.Config(app, host=args.host, port=args.port, log_level="info"))
        server_task = asyncio.create_task(server.serve())

    if audit is not None:
        audit.log(
            "monitor.start",
            "system",
            {"anchor": config.risk.anchor_symbol, "assets": fetcher.symbols, "emitter": emitter.name},
        )
    logger.info(
        "Starting risk monitor",
        extra={"anchor": config.risk.anchor_symbol, "interval": interval, "emitter": emitter.name},
    )
    try:
        await risk_loop(
            fetcher,
            orchestrator,
            _build_state_store(config),
            emitter,
            interval_seconds=interval,
            max_cycles=args.cycles,
            metrics=metrics,
            audit=audit,
            history=history,
            actuation_timeout=config.actuation.timeout_seconds,
        )
    finally:
        await fetcher.close()
        if server is not None and server_task is not None:
            server.should_exit = True
            await server_task
    return 0


def load_scenario(path: Path) -> List[Tuple[Any, Dict[str, Tuple[PriceObservation, ...]]]]:
    """Parse a recorded scenario into ``(timestamp, observation_sets)`` pairs.

    The file holds either a list of cycles or ``{"cycles": [...]}``; each cycle
    has a ``timestamp`` and ``observations`` mapping symbol to quotes.
    """

    try:
        payload = json.loads(Path(path).read_text(encoding="utf-8"))
    except FileNotFoundError as exc:
        raise ConfigurationError(f"Scenario file not found: {path}") from exc
    except json.JSONDecodeError as exc:
        raise ConfigurationError(f"Invalid JSON in scenario file {path}: {exc}") from exc

    cycles_raw = payload.get("cycles") if isinstance(payload, Mapping) else payload
    if not isinstance(cycles_raw, list):
        raise ConfigurationError("Scenario must be a list of cycles or an object with a 'cycles' array.")

    cycles = []
    for index, cycle in enumerate(cycles_raw, start=1):
        if not isinstance(cycle, Mapping) or "timestamp" not in cycle:
            raise ConfigurationError(f"Scenario cycle {index} requires a 'timestamp'.")
        timestamp = parse_timestamp(cycle["timestamp"])
        observations_raw = cycle.get("observations") or {}
        if not isinstance(observations_raw, Mapping):
            raise ConfigurationError(f"Scenario cycle {index} 'observations' must map symbols to quotes.")
        observation_sets: Dict[str, Tuple[PriceObservation, ...]] = {}
        for symbol, quotes in observations_raw.items():
            try:
                observation_sets[str(symbol)] = tuple(
                    PriceObservation.from_payload({"timestamp": timestamp, **quote}, symbol=str(symbol))
                    for quote in quotes
                )
            except (KeyError, TypeError, ValueError) as exc:
                raise ConfigurationError(f"Scenario cycle {index} has an invalid quote for {symbol}: {exc}") from exc
        cycles.append((timestamp, observation_sets))
    return cycles


async def _replay(config: MonitorConfig, scenario: Path, output: TextIO) -> int:
    orchestrator = RiskOrchestrator(config.risk)
    state_store = InMemoryStateStore()
    emitter = DryRunReportEmitter()
    for cycle, (timestamp, observation_sets) in enumerate(load_scenario(scenario), start=1):
        outcome = await evaluate_cycle(
            observation_sets,
            orchestrator,
            state_store,
            emitter,
            cycle=cycle,
            now=timestamp,
        )
        output.write(json.dumps(outcome.to_payload(), sort_keys=True) + "\n")
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="rwa-risk", description="Market risk monitor for RWA vaults")
    subparsers = parser.add_subparsers(dest="command", required=True)

    run = subparsers.add_parser("run", help="Poll price sources and evaluate risk continuously")
    run.add_argument("--config", type=Path, required=True, help="Path to the monitor configuration file")
    run.add_argument("--cycles", type=int, help="Stop after this many cycles (default: run forever)")
    run.add_argument("--interval", type=float, help="Override the configured polling interval in seconds")
    run.add_argument("--serve", action="store_true", help="Expose the read-only snapshot API while running")
    run.add_argument("--host", default="127.0.0.1", help="Host address for the snapshot API")
    run.add_argument("--port", type=int, default=8000, help="Port for the snapshot API")
    run.add_argument("--debug", type=int, choices=(0, 1, 2), help="Logging verbosity (0=warning, 1=info, 2=debug)")

    replay = subparsers.add_parser("replay", help="Evaluate recorded cycles offline and print snapshots")
    replay.add_argument("--config", type=Path, required=True, help="Path to the monitor configuration file")
    replay.add_argument("--scenario", type=Path, required=True, help="JSON file of recorded observation cycles")
    replay.add_argument("--debug", type=int, choices=(0, 1, 2), default=0, help="Logging verbosity")
    return parser


def main(argv: Optional[Sequence[str]] = None, *, output: Optional[TextIO] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    output = output or sys.stdout

    try:
        config = load_monitor_config(args.config, require_credentials=args.command == "run")
    except ConfigurationError as exc:
        print(f"Configuration error: {exc}", file=sys.stderr)
        return 2

    _configure_default_logging(args.debug if args.debug is not None else config.debug)

    try:
        if args.command == "replay":
            return asyncio.run(_replay(config, args.scenario, output))
        if args.cycles is not None and args.cycles <= 0:
            parser.error("--cycles must be a positive integer")
        return asyncio.run(_run_monitor(config, args))
    except ConfigurationError as exc:
        print(f"Configuration error: {exc}", file=sys.stderr)
        return 2
    except KeyboardInterrupt:
        logger.info("Risk monitor stopped by operator")
        return 130


if __name__ == "__main__":
    sys.exit(main())
