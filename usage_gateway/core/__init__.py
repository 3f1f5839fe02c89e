"""
Core modules for the usage gateway.

This package contains metric parsing, task resolution, the concurrent
fan-out aggregator, outcome normalisation and event validation.
"""
