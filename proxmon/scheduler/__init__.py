"""
Scheduler module initialization.
"""

from .scheduler import CollectionScheduler
from .retention import RetentionSweeper

__all__ = [
    'CollectionScheduler',
    'RetentionSweeper'
]
