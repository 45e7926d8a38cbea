"""
Generators Module

Synthetic control-change waveforms for pipeline testing.
"""

from .waveforms import clamp_value, randomized, run_self_test, smooth, stepped

__all__ = [
    'clamp_value',
    'randomized',
    'run_self_test',
    'smooth',
    'stepped',
]
