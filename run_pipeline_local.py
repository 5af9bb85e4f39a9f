#!/usr/bin/env python3
"""
Local Pipeline Runner - drive one model through its whole lifecycle.

Steps:
1. Register a draft model
2. Walk-forward validate its configuration
3. Train on a holdout split
4. Promote the run and predict the next bar

Bars come from yfinance (cached under data/raw) unless --synthetic is given.
Settings are read from keys.env / environment (LIFECYCLE_*).
"""

import sys
import json
import logging
import argparse
from pathlib import Path

import numpy as np
import pandas as pd

# Add src to path
sys.path.insert(0, str(Path(__file__).parent / "src"))

from lifecycle import ModelLifecycleEngine, ModelSpec
from lifecycle.data import InMemoryBarSource, PriceFetcher
from lifecycle.exceptions import InvalidPromotionError, LifecycleError

logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)


def synthetic_bars(n: int, seed: int = 42) -> pd.DataFrame:
    """Random-walk daily bars for offline runs."""
    rng = np.random.default_rng(seed)
    dates = pd.bdate_range('2020-01-01', periods=n)
    close = 100 * np.exp(np.cumsum(0.0005 + 0.01 * rng.standard_normal(n)))
    open_ = np.concatenate([[100.0], close[:-1]])
    spread = np.abs(rng.standard_normal(n)) * 0.005 * close
    return pd.DataFrame({
        'open': open_,
        'high': np.maximum(open_, close) + spread,
        'low': np.minimum(open_, close) - spread,
        'close': close,
        'volume': rng.integers(1_000_000, 10_000_000, n).astype(float),
    }, index=dates)


def banner(title: str):
    print("\n" + "=" * 70)
    print(title)
    print("=" * 70)


def main():
    parser = argparse.ArgumentParser(description="Model lifecycle pipeline runner")
    parser.add_argument("--symbol", default="SPY", help="Ticker to model")
    parser.add_argument("--start", default="2018-01-01", help="First bar date")
    parser.add_argument("--end", default="2023-12-31", help="Last bar date")
    parser.add_argument("--algorithm", default="xgboost",
                        choices=["linear", "random_forest", "xgboost", "lightgbm", "neural"])
    parser.add_argument("--window-type", default="expanding", choices=["expanding", "rolling"])
    parser.add_argument("--synthetic", action="store_true", help="Use generated bars (no network)")
    args = parser.parse_args()

    if args.synthetic:
        bars = synthetic_bars(1000)
        source = InMemoryBarSource({(args.symbol, '1d'): bars})
    else:
        source = PriceFetcher()

    with ModelLifecycleEngine(bar_source=source) as engine:
        banner("STEP 1: REGISTER MODEL")
        model_id = engine.create_model(ModelSpec(
            name=f"{args.symbol.lower()}-{args.algorithm}",
            symbols=[args.symbol],
            algorithm=args.algorithm,
        ))
        print(f"✓ Model {model_id} created")

        banner("STEP 2: WALK-FORWARD VALIDATION")
        try:
            report_id = engine.validate_model(
                model_id, {'window_type': args.window_type},
                start=args.start, end=args.end, wait=True
            ).result()
        except LifecycleError as e:
            logger.error(f"Walk-forward validation failed: {e}")
            return 1

        report = engine.get_report(report_id)
        for window in report.windows:
            acc = window['accuracy']
            shown = f"{acc:.4f}" if acc is not None else window['error']
            print(f"  Window {window['window_index']}: test {window['test_range'][0]} -> "
                  f"{window['test_range'][1]}  acc {shown}")
        agg = report.aggregate
        print(f"\nMean accuracy: {agg['mean_accuracy']:.4f} (std {agg['std_accuracy']:.4f})")
        print(f"Consistency:   {agg['consistency_score']:.4f}")
        print(f"Verdict:       {report.recommendation} - {agg['recommendation_message']}")

        banner("STEP 3: TRAIN")
        try:
            run_id = engine.train_model(model_id, start=args.start, end=args.end,
                                        wait=True).result()
        except LifecycleError as e:
            logger.error(f"Training failed: {e}")
            return 1

        status = engine.get_model_status(model_id).to_dict()
        print(json.dumps(status['latest_run'], indent=2, default=str))
        print("\nTop features:")
        for item in engine.feature_importance(run_id)[:5]:
            print(f"  {item.rank}. {item.feature_name}: {item.importance:.4f}")

        banner("STEP 4: PROMOTE AND PREDICT")
        try:
            engine.promote(model_id, run_id)
        except InvalidPromotionError as e:
            print(f"✗ Not promoted: {e}")
            return 0

        recent = source.load_bars(args.symbol, '1d', end=args.end)
        prediction = engine.predict(model_id, recent.tail(100))
        print(json.dumps(prediction, indent=2))

    return 0


if __name__ == "__main__":
    sys.exit(main())
