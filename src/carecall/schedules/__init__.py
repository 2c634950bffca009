"""
Recurring call schedules and the evaluator that fires them.
"""

__all__: list[str] = []
