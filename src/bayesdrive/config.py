from dataclasses import dataclass, field
from typing import Dict, Optional, Tuple


@dataclass
class SimulationConfig:
    samples: int = 200
    height_mean_cm: float = 160.0
    height_std_cm: float = 10.0
    intercept_kg: float = 45.0  # weight at mean height
    slope_kg_per_cm: float = 0.5
    sigma_kg: float = 4.0
    seed: Optional[int] = None


@dataclass
class DrivingSimulationConfig:
    samples: int = 300
    age_range: Tuple[float, float] = (18.0, 75.0)
    speed_mean_kmh: float = 60.0
    speed_std_kmh: float = 12.0
    # effects on reaction time (ms)
    reaction_base_ms: float = 700.0
    age_effect_ms: float = 4.0  # per year over 18
    experience_effect_ms: float = -6.0  # per year licensed
    phone_effect_ms: Dict[str, float] = field(
        default_factory=lambda: {"none": 0.0, "handsfree": 60.0, "handheld": 180.0}
    )
    phone_probs: Tuple[float, ...] = (0.6, 0.25, 0.15)
    reaction_noise_ms: float = 80.0
    braking_noise_m: float = 3.0
    seed: Optional[int] = None


@dataclass
class QuapConfig:
    max_iter: int = 200
    tolerance: float = 1e-9
    learning_rate: float = 1.0
    history_size: int = 20
    hessian_jitter: float = 0.0
    passes: int = 4  # LBFGS passes; stops early once the loss is stable


@dataclass
class SamplingConfig:
    samples: int = 10000
    prob: float = 0.89
    seed: Optional[int] = None
