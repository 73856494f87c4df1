"""
Perceptual volume mapping.

A linear 0-100 slider is heard as anything but linear, so the UI level is
mapped onto an exponential gain curve between -60 dB and 0 dB.
"""

from __future__ import annotations

import math

from utils import clamp

MIN_LEVEL = 1
MAX_LEVEL = 100

MIN_GAIN = math.log(0.001)
MAX_GAIN = math.log(1.0)
SCALE = (MAX_GAIN - MIN_GAIN) / (100 - 0)


def volume_curve(level: float) -> float:
    # exp() never reaches zero, so mute is special-cased.
    if level == 0:
        return 0.0
    level = clamp(level, MIN_LEVEL, MAX_LEVEL)
    if level == MAX_LEVEL:
        return 1.0
    return math.exp(MIN_GAIN + SCALE * level)
