"""
stakepool Validator Module

Validator records and the linked-list registry walked by the crank.
"""

from .registry import ValidatorRegistry
from .types import ValidatorRecord, ValidatorStats, normalize_operator

__all__ = [
    'ValidatorRegistry',
    'ValidatorRecord',
    'ValidatorStats',
    'normalize_operator',
]
