"""
Control Money - Source Package

A personal finance tracker for expenses, savings goals, investments
and the running balance.

DESIGN PRINCIPLES:
1. Storage backend is swappable (local file or remote database)
2. Recurring expenses are projected, never duplicated
3. Both backends can be synchronized with each other
4. Every backend decision is logged
"""

__version__ = "1.0.0"
__author__ = "Control Money Team"
