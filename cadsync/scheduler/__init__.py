"""
Scheduler Module

Scheduled sync runs.

Author: CADSync Project
License: MIT
"""

from .task_scheduler import TaskScheduler

__all__ = ['TaskScheduler']
