"""
Core modules for Chart Radar.

This package contains capture validation, quota accounting, response
parsing and the analysis pipeline that ties them together.
"""
