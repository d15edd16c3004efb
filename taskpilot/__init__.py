"""
TaskPilot - autonomous task agent.

Give it a goal; it plans, runs real tools, adapts when steps fail,
persists its state and learns from every task.
"""

__version__ = "0.1.0"
