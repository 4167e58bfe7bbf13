#!/usr/bin/env python3
from __future__ import annotations

import argparse
import json
import logging
from pathlib import Path
import sys
import time

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

import config
import messenger_state as ms
import scenario_fixtures as sf


FIXTURE_DIR = ROOT / "tests" / "fixtures" / "scenarios"


def _run_once(scenarios: list[sf.Scenario], loops: int) -> tuple[float, int]:
    reduce_count = 0
    t0 = time.perf_counter()
    for _ in range(loops):
        for scenario in scenarios:
            state = scenario.initial_state
            for event in scenario.events:
                state = ms.reduce(state, event)
                reduce_count += 1
    elapsed = time.perf_counter() - t0
    return elapsed, reduce_count


def _fmt(elapsed: float, count: int) -> tuple[float, float]:
    ms_per = (elapsed / count) * 1000.0
    rps = count / elapsed if elapsed > 0 else 0.0
    return ms_per, rps


def _dump_final_states(scenarios: list[sf.Scenario]) -> None:
    for scenario in scenarios:
        state = scenario.initial_state
        for event in scenario.events:
            state = ms.reduce(state, event)
        print(json.dumps({"name": scenario.name, "state": ms.to_dict(state)}, indent=2, sort_keys=True))


def main() -> None:
    parser = argparse.ArgumentParser(
        description="Replay JSON event scenarios through the messenger reducer."
    )
    parser.add_argument(
        "--fixtures",
        type=Path,
        default=FIXTURE_DIR,
        help=f"Directory of scenario JSON files (default: {FIXTURE_DIR})",
    )
    parser.add_argument(
        "--loops",
        type=int,
        default=200,
        help="Measured loops over the full scenario corpus (default: 200)",
    )
    parser.add_argument(
        "--warmup-loops",
        type=int,
        default=10,
        help="Warmup loops over the full corpus before timing (default: 10)",
    )
    parser.add_argument(
        "--dump",
        action="store_true",
        help="Print each scenario's final state instead of timing",
    )
    args = parser.parse_args()

    if args.loops <= 0:
        raise SystemExit("--loops must be > 0")
    if args.warmup_loops < 0:
        raise SystemExit("--warmup-loops must be >= 0")
    if not args.fixtures.is_dir():
        raise SystemExit(f"Fixture directory not found: {args.fixtures}")

    config.setup_logging()
    scenarios = sf.load_scenarios(args.fixtures)
    if not scenarios:
        raise SystemExit(f"No scenarios in {args.fixtures}")

    if args.dump:
        _dump_final_states(scenarios)
        return

    events_per_corpus = sum(len(s.events) for s in scenarios)
    print(
        f"Loaded {len(scenarios)} scenarios from {args.fixtures} "
        f"({events_per_corpus} events per corpus loop)"
    )

    # Keep per-event warnings from flooding the timing run.
    logging.getLogger().setLevel(logging.ERROR)
    if args.warmup_loops > 0:
        _run_once(scenarios, args.warmup_loops)
    elapsed, count = _run_once(scenarios, args.loops)
    ms_per, rps = _fmt(elapsed, count)
    print(f"reduce: {count} events in {elapsed:.3f}s  ({ms_per:.4f} ms/event, {rps:,.0f} events/s)")


if __name__ == "__main__":
    main()
