"""
Race telemetry decoding and multi-race analytics.
"""

from .aggregation import AggregateReport, GroupKey, aggregate, prepare_races  # noqa: F401
from .race_file import RaceInput, load_race_directory, read_race_file  # noqa: F401

__all__ = [
    "AggregateReport",
    "GroupKey",
    "aggregate",
    "prepare_races",
    "RaceInput",
    "load_race_directory",
    "read_race_file",
]
