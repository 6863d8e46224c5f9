"""Command-line interface for twinsim."""

from __future__ import annotations

import argparse
import json
import logging
import sys
from dataclasses import replace
from pathlib import Path
from time import perf_counter
from typing import Any, Dict, List, Optional

from twinsim.config import DEFAULT_CONFIG
from twinsim.dsl.loader import ScenarioFile, load_scenario_file
from twinsim.logging import get_logger, set_global_log_level
from twinsim.results.results import MonteCarloResult
from twinsim.simulation.engine import SimulationEngine, SimulationHandle
from twinsim.validation import validate_topology

logger = get_logger(__name__)


def _format_table(headers: List[str], rows: List[List[Any]], min_width: int = 6) -> str:
    """Format rows as a simple ASCII table."""
    if not rows:
        return ""
    cells = [[str(h) for h in headers]] + [[str(item) for item in row] for row in rows]
    widths = [
        max(min_width, max(len(row[i]) for row in cells)) for i in range(len(headers))
    ]

    def format_row(row: List[str]) -> str:
        return "   " + " | ".join(f"{item:<{widths[i]}}" for i, item in enumerate(row))

    lines = [format_row(cells[0]), "   " + "-+-".join("-" * w for w in widths)]
    lines.extend(format_row(row) for row in cells[1:])
    return "\n".join(lines)


def _format_duration(seconds: float) -> str:
    """Return a concise duration string, e.g. "123.0 ms", "1.23 s", "1m 15.2s"."""
    if seconds < 1.0:
        return f"{seconds * 1000.0:.1f} ms"
    if seconds < 60.0:
        return f"{seconds:.2f} s"
    minutes = int(seconds // 60)
    return f"{minutes}m {seconds - minutes * 60:.1f}s"


def _summary_row(handle: SimulationHandle, outcome: Any) -> List[Any]:
    sim = handle.simulation
    if isinstance(outcome, MonteCarloResult):
        headline = (
            f"mean impact {outcome.mean_impact:.2f}, "
            f"p95 {outcome.get_percentile_impact(95):.2f}, risk {outcome.risk_level}"
        )
    elif outcome is not None:
        hit = len(outcome.compromised_devices) or len(outcome.affected_devices)
        headline = f"{hit} device(s) hit, impact {outcome.impact_score:.2f}"
    else:
        headline = sim.error_message or "-"
    return [sim.name, sim.scenario_type, sim.status.value, headline]


def _inspect_scenario(path: Path, detail: bool = False, rules: Optional[List[str]] = None) -> None:
    """Print a topology summary, the declared simulations and a validation report."""
    logger.info(f"Inspecting scenario from: {path}")
    start = perf_counter()
    try:
        scenario_file = load_scenario_file(path)
        topology = scenario_file.topology

        print(f"Topology: {topology.name or path.stem}")
        print(f"  Devices: {topology.device_count}")
        print(f"  Connections: {topology.connection_count}")
        type_counts: Dict[str, int] = {}
        for device in topology.devices():
            type_counts[device.type] = type_counts.get(device.type, 0) + 1
        if type_counts:
            print(_format_table(["Type", "Count"], sorted(type_counts.items())))

        if detail and topology.device_count:
            print("\nDevices:")
            print(
                _format_table(
                    ["Id", "Type", "Criticality", "Status", "IP"],
                    [
                        [d.id, d.type, d.criticality or "-", d.status.value, d.ip or "-"]
                        for d in topology.devices()
                    ],
                )
            )

        print(f"\nSimulations: {len(scenario_file.simulations)}")
        for spec in scenario_file.simulations:
            scenario = spec.scenario
            print(f"  - {scenario.name} ({scenario.kind}, {scenario.total_units} units)")

        report = validate_topology(topology, rules=rules)
        print("\nValidation:")
        print(
            _format_table(
                ["Rule", "Status", "Alerts"],
                [
                    [rule, res["status"], res.get("alert_count", res.get("error", ""))]
                    for rule, res in report.rule_results.items()
                ],
            )
        )
        for alert in report.alerts:
            print(f"  [{alert.severity.value}] {alert.message}")

        logger.info(f"Scenario inspection completed in {_format_duration(perf_counter() - start)}")
    except FileNotFoundError:
        print(f"❌ ERROR: Scenario file not found: {path}")
        sys.exit(1)
    except Exception as e:
        logger.error(f"Failed to inspect scenario: {e}")
        print("❌ ERROR: Failed to inspect scenario")
        print(f"  {type(e).__name__}: {e}")
        sys.exit(1)


def _submit_all(engine: SimulationEngine, scenario_file: ScenarioFile) -> List[SimulationHandle]:
    # Each simulation gets its own copy so runs do not see each other's mutations
    return [
        engine.submit(
            spec.scenario,
            scenario_file.topology.copy(),
            seed=spec.seed,
            user=spec.user,
        )
        for spec in scenario_file.simulations
    ]


def _run_scenario(
    path: Path,
    results_path: Optional[Path],
    no_results: bool,
    stdout: bool,
    workers: Optional[int] = None,
    timeout: Optional[float] = None,
    plot_dir: Optional[Path] = None,
) -> None:
    """Run every simulation of a scenario file and export results as JSON."""
    logger.info(f"Loading scenario from: {path}")
    start = perf_counter()
    try:
        scenario_file = load_scenario_file(path)
        if not scenario_file.simulations:
            print("No simulations defined")
            return

        config = DEFAULT_CONFIG
        if workers is not None:
            config = replace(config, engine=replace(config.engine, max_workers=workers))

        with SimulationEngine(config) as engine:
            handles = _submit_all(engine, scenario_file)
            outcomes = [handle.result(timeout=timeout) for handle in handles]

        print(
            _format_table(
                ["Simulation", "Type", "Status", "Outcome"],
                [_summary_row(h, o) for h, o in zip(handles, outcomes)],
            )
        )

        if plot_dir is not None:
            from twinsim.report import plot_impact_distribution

            plot_dir.mkdir(parents=True, exist_ok=True)
            for handle, outcome in zip(handles, outcomes):
                if isinstance(outcome, MonteCarloResult) and outcome.iterations:
                    target = plot_dir / f"{handle.id}.impact.png"
                    plot_impact_distribution(outcome, target)
                    print(f"✅ Plot written to: {target}")

        results: Dict[str, Any] = {
            "scenario": str(path),
            "seed": scenario_file.seed,
            "simulations": [
                {
                    "simulation": handle.simulation.to_dict(),
                    "result": outcome.to_dict() if outcome is not None else None,
                }
                for handle, outcome in zip(handles, outcomes)
            ],
        }
        json_str = json.dumps(results, indent=2, default=str)

        if not no_results:
            target = results_path or Path(f"{path.stem}.results.json")
            target.parent.mkdir(parents=True, exist_ok=True)
            target.write_text(json_str, encoding="utf-8")
            logger.info(f"Results written to: {target}")
            print(f"✅ Results written to: {target}")
        if stdout:
            print(json_str)

        logger.info(f"Scenario run completed in {_format_duration(perf_counter() - start)}")
    except FileNotFoundError:
        logger.error(f"Scenario file not found: {path}")
        print(f"❌ ERROR: Scenario file not found: {path}")
        sys.exit(1)
    except Exception as e:
        logger.error(f"Failed to run scenario: {type(e).__name__}: {e}")
        print(f"❌ ERROR: Failed to run scenario: {type(e).__name__}: {e}")
        sys.exit(1)


def main(argv: Optional[List[str]] = None) -> None:
    """Entry point for the ``twinsim`` command.

    Args:
        argv: Optional list of command-line arguments. If ``None``, ``sys.argv``
            is used.
    """
    parser = argparse.ArgumentParser(
        prog="twinsim",
        description="Run attack, failure and Monte Carlo simulations on network topologies.",
    )
    parser.add_argument("--verbose", "-v", action="store_true", help="Enable debug logging")
    parser.add_argument(
        "--quiet", action="store_true", help="Only log warnings and errors"
    )

    subparsers = parser.add_subparsers(
        dest="command",
        required=True,
        title="Available commands",
        metavar="{run,inspect}",
        help="Available commands",
    )

    run_parser = subparsers.add_parser("run", help="Run every simulation of a scenario")
    run_parser.add_argument("scenario", type=Path, help="Path to scenario YAML")
    run_parser.add_argument(
        "--results",
        "-r",
        type=Path,
        default=None,
        help="Export results to this JSON file (default: <scenario_name>.results.json)",
    )
    run_parser.add_argument(
        "--no-results", action="store_true", help="Disable results file generation"
    )
    run_parser.add_argument("--stdout", action="store_true", help="Print results to stdout")
    run_parser.add_argument(
        "--workers", "-w", type=int, default=None, help="Number of engine worker threads"
    )
    run_parser.add_argument(
        "--timeout",
        type=float,
        default=None,
        help="Seconds to wait for each simulation before giving up",
    )
    run_parser.add_argument(
        "--plot-dir",
        type=Path,
        default=None,
        help="Write Monte Carlo impact histograms into this directory",
    )

    inspect_parser = subparsers.add_parser(
        "inspect", help="Summarize and validate a scenario's topology"
    )
    inspect_parser.add_argument("scenario", type=Path, help="Path to scenario YAML")
    inspect_parser.add_argument(
        "--detail", "-d", action="store_true", help="Show the complete device table"
    )
    inspect_parser.add_argument(
        "--rules",
        nargs="+",
        default=None,
        help="Validation rules to run (default: all)",
    )

    effective_args = sys.argv[1:] if argv is None else argv
    if not effective_args:
        parser.print_help()
        raise SystemExit(0)

    args = parser.parse_args(effective_args)

    if args.verbose:
        set_global_log_level(logging.DEBUG)
        logger.debug("Debug logging enabled")
    elif args.quiet:
        set_global_log_level(logging.WARNING)
    else:
        set_global_log_level(logging.INFO)

    if args.command == "run":
        _run_scenario(
            path=args.scenario,
            results_path=args.results,
            no_results=args.no_results,
            stdout=args.stdout,
            workers=args.workers,
            timeout=args.timeout,
            plot_dir=args.plot_dir,
        )
    elif args.command == "inspect":
        _inspect_scenario(args.scenario, args.detail, args.rules)


if __name__ == "__main__":
    main()
