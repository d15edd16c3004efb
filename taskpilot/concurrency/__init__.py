"""
Exclusive resource locks and the background loop supervisor.
"""

from .mutex import LockAcquisition, ResourceGuard, kill_processes
from .supervisor import LoopState, LoopSupervisor

__all__ = [
    'LockAcquisition',
    'ResourceGuard',
    'kill_processes',
    'LoopState',
    'LoopSupervisor',
]
