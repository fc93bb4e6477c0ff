"""
Core modules for Usage Meter.

This package contains the period resolver, the usage aggregator,
the calendar projector and the activity feed helpers.
"""
