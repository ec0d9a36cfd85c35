"""
Account Scheduling System

Реестр состояний кошельков и главный цикл планирования прогонов.
"""

from .account_registry import AccountRegistry, AccountState, RegistryStats
from .scheduler_loop import SchedulerLoop

__all__ = ['AccountRegistry', 'AccountState', 'RegistryStats', 'SchedulerLoop']
