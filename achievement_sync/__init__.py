"""achievement-sync: progress reconciliation and achievement evaluation"""

__version__ = "1.0.0"
