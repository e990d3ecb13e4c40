"""
Meter Monitor — optical pulse counting for electricity meters.
Point the camera at the meter's blinking indicator LED; the system samples
the brightness of a small region of each frame, counts LED flashes and
converts the pulse rate into an estimate of the power being drawn.
"""

__version__ = "0.1.0"
