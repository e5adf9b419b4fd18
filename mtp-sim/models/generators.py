import math
import random


def next_sine(t_seconds: float, amplitude: float = 1.0, period_seconds: float = 60.0) -> float:
    """Sine wave sample at time t."""
    omega = 2.0 * math.pi / max(1e-6, period_seconds)
    return amplitude * math.sin(omega * t_seconds)


def add_noise(value: float, noise_amplitude: float, rng: random.Random = None) -> float:
    """Add uniform noise in [-noise_amplitude, +noise_amplitude]."""
    rng = rng or random
    return value + rng.uniform(-noise_amplitude, noise_amplitude)
