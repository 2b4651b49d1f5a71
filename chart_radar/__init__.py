"""
Chart Radar.

Quota-gated trading chart analysis: capture validation, tiered usage limits,
a remote analysis provider and a tolerant response parser.
"""

__version__ = "0.1.0"
