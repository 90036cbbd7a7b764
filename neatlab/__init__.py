"""Experiment runner, statistics and XOR and pole-balancing tasks for NEAT neuroevolution."""

__version__ = "0.1.0"

__all__ = [
    "context",
    "experiment",
    "floats",
    "generation",
    "pole",
    "pole2",
    "pole2_eval",
    "trial",
    "xor",
]