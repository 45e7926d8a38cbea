"""
Waveform Generators

Deterministic control-change sequences used to exercise the pipeline end to
end. Generators send with the queue's blocking mode, so a full queue slows
them down instead of losing values.
"""

import math
import time
import logging
from typing import Callable

from ..midi.messages import ControlChangeEvent, MAX_CHANNEL, MAX_DATA
from ..midi.message_queue import MessageQueue

log = logging.getLogger(__name__)

STEP_TICK = 0.05     # seconds between stepped samples
SMOOTH_TICK = 0.02   # sampling period of the smooth wiggle

MAX_CONTROLLER = 126


def clamp_value(value: float) -> int:
    """Round to the nearest integer and clamp to the 0-127 MIDI data range"""
    return max(0, min(MAX_DATA, int(round(value))))


def _check_arguments(name: str, controller: int, center: int, channel: int) -> bool:
    if not 0 <= center <= MAX_DATA:
        log.error(f"{name}: center value {center} out of range (0-127)")
        return False
    if not 0 <= controller <= MAX_CONTROLLER:
        log.error(f"{name}: CC number {controller} out of range (0-126)")
        return False
    if not 0 <= channel <= MAX_CHANNEL:
        log.error(f"{name}: MIDI channel {channel} out of range (0-15)")
        return False
    return True


def _emit(queue: MessageQueue, channel: int, controller: int, value: float):
    queue.send(ControlChangeEvent(channel=channel, controller=controller, value=clamp_value(value)))


def stepped(queue: MessageQueue, controller: int, center: int, amplitude: float,
            steps: int, channel: int = 0, tick: float = STEP_TICK,
            sleep: Callable[[float], None] = time.sleep) -> int:
    """
    One full sine period in a fixed number of steps

    Sample i is center + amplitude * sin(2*pi*i / (steps - 1)), so the first
    and last samples both sit on the center value.

    Args:
        queue: Destination queue (blocking sends)
        controller: CC number (0-126)
        center: Value the wave oscillates around (0-127)
        amplitude: Peak deviation from center
        steps: Number of samples
        channel: MIDI channel (0-15)
        tick: Seconds between samples
        sleep: Wait function, injectable for tests

    Returns:
        Number of events sent
    """
    if not _check_arguments("Stepped wiggle", controller, center, channel):
        return 0

    log.info(f"Stepped wiggle: CC{controller} center={center} amplitude={amplitude} "
             f"steps={steps} channel={channel}")

    sent = 0
    for i in range(steps):
        angle = 2.0 * math.pi * i / (steps - 1) if steps > 1 else 0.0
        _emit(queue, channel, controller, center + amplitude * math.sin(angle))
        sent += 1
        sleep(tick)

    log.info(f"Stepped wiggle completed ({sent} events)")
    return sent


def smooth(queue: MessageQueue, controller: int, center: int, amplitude: float,
           duration: float, frequency: float, channel: int = 0, tick: float = SMOOTH_TICK,
           sleep: Callable[[float], None] = time.sleep) -> int:
    """
    Continuous sine at a given frequency for a given duration

    Samples are taken at t = i * tick for every t below duration, each
    center + amplitude * sin(2*pi*frequency*t).

    Returns:
        Number of events sent
    """
    if not _check_arguments("Smooth wiggle", controller, center, channel):
        return 0

    log.info(f"Smooth wiggle: CC{controller} center={center} amplitude={amplitude} "
             f"duration={duration:.1f}s frequency={frequency:.1f}Hz channel={channel}")

    sample_count = max(0, int(math.ceil(duration / tick - 1e-9)))

    sent = 0
    for i in range(sample_count):
        t = i * tick
        _emit(queue, channel, controller, center + amplitude * math.sin(2.0 * math.pi * frequency * t))
        sent += 1
        sleep(tick)

    log.info(f"Smooth wiggle completed ({sent} events)")
    return sent


def randomized(queue: MessageQueue, controller: int, center: int, amplitude: float,
               count: int, delay: float, channel: int = 0,
               sleep: Callable[[float], None] = time.sleep) -> int:
    """
    Irregular-looking but reproducible wiggle

    Sample i is center + amplitude*sin(0.3i) + 0.5*amplitude*cos(0.7i).

    Args:
        delay: Seconds between samples

    Returns:
        Number of events sent
    """
    if not _check_arguments("Random wiggle", controller, center, channel):
        return 0

    log.info(f"Random wiggle: CC{controller} center={center} max deviation={amplitude} "
             f"count={count} delay={delay * 1000:.0f}ms channel={channel}")

    sent = 0
    for i in range(count):
        deviation = math.sin(i * 0.3) * amplitude + math.cos(i * 0.7) * amplitude * 0.5
        _emit(queue, channel, controller, center + deviation)
        sent += 1
        sleep(delay)

    log.info(f"Random wiggle completed ({sent} events)")
    return sent


def run_self_test(queue: MessageQueue, channel: int = 0,
                  sleep: Callable[[float], None] = time.sleep) -> int:
    """
    Run the standard wiggle sequence on common synth controllers

    Returns:
        Total number of events sent
    """
    sent = 0
    # Modulation
    sent += stepped(queue, 1, 64, 30, 20, channel, sleep=sleep)
    # Volume
    sent += smooth(queue, 7, 100, 20, 3.0, 2.0, channel, sleep=sleep)
    # Pan
    sent += randomized(queue, 10, 64, 40, 15, 0.1, channel, sleep=sleep)
    # Filter cutoff
    sent += smooth(queue, 74, 80, 25, 2.0, 1.0, channel, sleep=sleep)
    return sent
