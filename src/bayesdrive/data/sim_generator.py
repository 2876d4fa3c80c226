import argparse
import logging
import os

import numpy as np
import pandas as pd

from bayesdrive.config import DrivingSimulationConfig, SimulationConfig
from bayesdrive.logging_config import setup_logging

logger = logging.getLogger(__name__)

DECELERATION_MPS2 = 7.0  # dry asphalt, full braking


def simulate_height_weight(cfg: SimulationConfig) -> pd.DataFrame:
    rng = np.random.default_rng(cfg.seed)
    height = rng.normal(cfg.height_mean_cm, cfg.height_std_cm, cfg.samples)
    mu = cfg.intercept_kg + cfg.slope_kg_per_cm * (height - cfg.height_mean_cm)
    weight = rng.normal(mu, cfg.sigma_kg)
    return pd.DataFrame({"height": height, "weight": weight})


def _experience(rng: np.random.Generator, age: np.ndarray) -> np.ndarray:
    # share of adult years spent licensed
    licensed_share = rng.uniform(0.4, 1.0, age.shape[0])
    return np.clip((age - 18.0) * licensed_share, 0.0, None)


def _braking_distance(speed_kmh: np.ndarray, reaction_ms: np.ndarray) -> np.ndarray:
    speed = speed_kmh / 3.6
    return speed * reaction_ms / 1000.0 + speed ** 2 / (2 * DECELERATION_MPS2)


def simulate_driving(cfg: DrivingSimulationConfig) -> pd.DataFrame:
    rng = np.random.default_rng(cfg.seed)
    n = cfg.samples
    levels = list(cfg.phone_effect_ms)
    if len(cfg.phone_probs) != len(levels):
        raise ValueError("phone_probs must have one entry per phone_use level")

    age = rng.uniform(cfg.age_range[0], cfg.age_range[1], n)
    experience = _experience(rng, age)
    phone_use = rng.choice(levels, size=n, p=np.asarray(cfg.phone_probs) / np.sum(cfg.phone_probs))
    speed = np.clip(rng.normal(cfg.speed_mean_kmh, cfg.speed_std_kmh, n), 10.0, None)

    phone_shift = np.array([cfg.phone_effect_ms[p] for p in phone_use])
    reaction = (
        cfg.reaction_base_ms
        + cfg.age_effect_ms * (age - 18.0)
        + cfg.experience_effect_ms * experience
        + phone_shift
        + rng.normal(0.0, cfg.reaction_noise_ms, n)
    )
    reaction = np.clip(reaction, 150.0, None)
    braking = _braking_distance(speed, reaction) + rng.normal(0.0, cfg.braking_noise_m, n)

    return pd.DataFrame(
        {
            "age": age.round(1),
            "experience": experience.round(1),
            "phone_use": pd.Categorical(phone_use, categories=sorted(levels)),
            "speed": speed.round(1),
            "reaction_time": reaction.round(0),
            "braking_distance": braking.round(2),
        }
    )


def main():
    parser = argparse.ArgumentParser(description="Simulate toy and driving-behaviour datasets.")
    parser.add_argument("--kind", choices=["height", "driving"], default="driving")
    parser.add_argument("--out", required=True, help="Output .csv path")
    parser.add_argument("--samples", type=int, default=None, help="Number of observations")
    parser.add_argument("--seed", type=int, default=None)
    args = parser.parse_args()
    setup_logging()

    if args.kind == "height":
        cfg = SimulationConfig(seed=args.seed)
        if args.samples:
            cfg.samples = args.samples
        df = simulate_height_weight(cfg)
    else:
        cfg = DrivingSimulationConfig(seed=args.seed)
        if args.samples:
            cfg.samples = args.samples
        df = simulate_driving(cfg)

    out_dir = os.path.dirname(args.out)
    if out_dir:
        os.makedirs(out_dir, exist_ok=True)
    df.to_csv(args.out, index=False)
    logger.info("Saved %s dataset to %s with shape %s", args.kind, args.out, df.shape)


if __name__ == "__main__":
    main()
