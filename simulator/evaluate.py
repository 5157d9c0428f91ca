# simulator/evaluate.py
"""
Evaluator: naive vs optimized request paths, one flow at a time.

Outputs per (flow, variant) row:
- calls, cache_hits, errors
- total_time_ms, avg_response_ms, p95_latency_ms
- cache_hit_pct, error_pct
- response_time_reduction_pct, server_load_reduction_pct (on "after" rows)
- provenance: delay_ms, ttl_ms, debounce_ms, page_size, failure_mode, seed

CLI:
  python -m simulator.evaluate --out report.csv --flows caching debounce \
    --delay-ms 800 --ttl-ms 300000 --debounce-ms 500 --page-size 10 --seed 123 \
    --plot --plot-save plot.png
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import random
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence

import pandas as pd

from harness.metrics import MetricsAggregator
from harness.schemas import FailureMode
from harness.settings import HarnessSettings, load_settings
from simulator import flows as flow_mod

COLUMNS = [
    "flow", "variant",
    "calls", "cache_hits", "errors",
    "total_time_ms", "avg_response_ms", "p95_latency_ms",
    "cache_hit_pct", "error_pct",
    "response_time_reduction_pct", "server_load_reduction_pct",
    "delay_ms", "ttl_ms", "debounce_ms", "page_size", "failure_mode", "seed",
]


async def _run_flow(name: str, metrics: MetricsAggregator, settings: HarnessSettings,
                    rng: random.Random) -> Dict[str, Any]:
    if name == "caching":
        return await flow_mod.run_caching(metrics, delay_ms=settings.delay_ms, ttl_ms=settings.ttl_ms,
                                          failure_mode=settings.failure_mode, rng=rng)
    if name == "prefetch":
        return await flow_mod.run_prefetch(metrics, delay_ms=settings.delay_ms, hover_ms=settings.delay_ms + 100,
                                           ttl_ms=settings.ttl_ms, failure_mode=settings.failure_mode,
                                           seed=settings.seed, rng=rng)
    if name == "debounce":
        return await flow_mod.run_debounce(metrics, debounce_ms=settings.debounce_ms,
                                           failure_mode=settings.failure_mode, rng=rng)
    if name == "optimistic":
        return await flow_mod.run_optimistic(metrics, delay_ms=settings.delay_ms,
                                             failure_mode=settings.failure_mode, rng=rng)
    if name == "pagination":
        return await flow_mod.run_pagination(metrics, page_size=settings.page_size,
                                             delay_ms=settings.delay_ms, failure_mode=settings.failure_mode, rng=rng)
    raise ValueError(f"Unknown flow {name!r} (choices: {', '.join(flow_mod.FLOWS)})")


def _row(metrics: MetricsAggregator, flow: str, variant: str) -> Dict[str, Any]:
    snap = metrics.snapshot(f"{flow}:{variant}")
    return {
        "flow": flow,
        "variant": variant,
        "calls": snap.calls,
        "cache_hits": snap.cache_hits,
        "errors": snap.errors,
        "total_time_ms": round(snap.total_time_ms, 4),
        "avg_response_ms": round(snap.avg_response_ms, 4),
        "p95_latency_ms": round(snap.p95_latency_ms, 4),
        "cache_hit_pct": round(snap.cache_hit_pct, 4),
        "error_pct": round(snap.error_pct, 4),
    }


async def evaluate_flows(names: Sequence[str], settings: HarnessSettings) -> List[Dict[str, Any]]:
    rng = random.Random(settings.seed)
    rows: List[Dict[str, Any]] = []
    for name in names:
        metrics = MetricsAggregator()
        print(f"[evaluate] running {name}...")
        extras = await _run_flow(name, metrics, settings, rng)
        before = _row(metrics, name, "before")
        after = _row(metrics, name, "after")
        after.update(metrics.compare(f"{name}:before", f"{name}:after"))
        after.pop("before_avg_ms", None)
        after.pop("after_avg_ms", None)
        # keep scalar extras only; lists (task dumps) stay out of the CSV
        for k, v in extras.items():
            if isinstance(v, (int, float, str, bool)):
                after[k] = v
        rows.extend([before, after])

    for r in rows:
        r["delay_ms"] = settings.delay_ms
        r["ttl_ms"] = settings.ttl_ms
        r["debounce_ms"] = settings.debounce_ms
        r["page_size"] = settings.page_size
        r["failure_mode"] = settings.failure_mode.kind
        r["seed"] = settings.seed if settings.seed is not None else ""
    return rows


def evaluate_all(names: Sequence[str], settings: Optional[HarnessSettings] = None) -> List[Dict[str, Any]]:
    return asyncio.run(evaluate_flows(names, settings or load_settings()))


def save_report_csv(path: str, rows: List[Dict[str, Any]]) -> pd.DataFrame:
    out_p = Path(path)
    out_p.parent.mkdir(parents=True, exist_ok=True)
    # fixed column order; extras appended without dropping data
    extra: List[str] = []
    for r in rows:
        for k in r.keys():
            if k not in COLUMNS and k not in extra:
                extra.append(k)
    df = pd.DataFrame(rows).reindex(columns=COLUMNS + extra)
    df.to_csv(out_p, index=False)
    return df


def plot_comparison(rows: List[Dict[str, Any]], save_path: Optional[str] = None) -> bool:
    try:
        import matplotlib
        matplotlib.use("Agg")
        import matplotlib.pyplot as plt
    except ImportError:
        print("[evaluate] matplotlib not installed; skipping plot (pip install .[plot])")
        return False

    df = pd.DataFrame(rows)
    if df.empty:
        return False
    avg = df.pivot(index="flow", columns="variant", values="avg_response_ms")
    calls = df.pivot(index="flow", columns="variant", values="calls")

    fig, (ax1, ax2) = plt.subplots(1, 2, figsize=(11, 4))
    avg.plot.bar(ax=ax1, rot=0)
    ax1.set_title("Avg response (ms)")
    calls.plot.bar(ax=ax2, rot=0)
    ax2.set_title("API calls")
    fig.suptitle("Request optimization: before vs after")
    fig.tight_layout()
    if save_path:
        base = Path(save_path)
        base.parent.mkdir(parents=True, exist_ok=True)
        fig.savefig(str(base))
        print(f"Saved comparison plot to {base}")
    plt.close(fig)
    return True


# -------------------------
# CLI
# -------------------------
def main(argv: Optional[Sequence[str]] = None):
    defaults = load_settings()
    p = argparse.ArgumentParser(description="Compare naive vs optimized request flows")
    p.add_argument("--out", required=True, help="CSV output")
    p.add_argument("--flows", nargs="+", choices=flow_mod.FLOWS, default=list(flow_mod.FLOWS))
    p.add_argument("--delay-ms", type=int, default=defaults.delay_ms)
    p.add_argument("--ttl-ms", type=int, default=defaults.ttl_ms)
    p.add_argument("--debounce-ms", type=int, default=defaults.debounce_ms)
    p.add_argument("--page-size", type=int, default=defaults.page_size)
    p.add_argument("--failure-mode", choices=["none", "always", "probability"], default=defaults.failure_mode.kind)
    p.add_argument("--failure-rate", type=float, default=defaults.failure_mode.rate)
    p.add_argument("--seed", type=int, default=defaults.seed, help="Optional RNG seed for reproducibility")
    p.add_argument("--plot", action="store_true")
    p.add_argument("--plot-save", default=None, help="Where --plot saves its chart (default: --out with a .png suffix)")
    p.add_argument("--log-level", default="WARNING")
    args = p.parse_args(argv)

    logging.basicConfig(level=args.log_level.upper(), format="%(asctime)s %(levelname)s %(name)s: %(message)s")

    if args.failure_mode == "probability":
        failure = FailureMode.probability(args.failure_rate)
    elif args.failure_mode == "always":
        failure = FailureMode.always()
    else:
        failure = FailureMode.none()
    settings = HarnessSettings(
        delay_ms=args.delay_ms,
        failure_mode=failure,
        ttl_ms=args.ttl_ms,
        debounce_ms=args.debounce_ms,
        page_size=args.page_size,
        seed=args.seed,
    )

    rows = evaluate_all(args.flows, settings)
    save_report_csv(args.out, rows)
    print(f"Wrote {len(rows)} rows to {args.out}")
    if args.plot:
        plot_comparison(rows, args.plot_save or str(Path(args.out).with_suffix(".png")))


if __name__ == "__main__":
    main()
