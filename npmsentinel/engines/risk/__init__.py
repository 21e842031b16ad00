"""Risk aggregation engine — pure scoring, no I/O."""

from npmsentinel.engines.risk.scorer import highest_severity, level_for, score, should_report

__all__ = [
    "highest_severity",
    "level_for",
    "score",
    "should_report",
]
