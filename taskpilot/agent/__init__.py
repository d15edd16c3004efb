"""
Autonomous Agent

Plans a goal into steps, executes them through the tool registry,
adapts on failure, synthesizes a result and learns from the outcome.

Components:
1. Planning - prompts plus a layered JSON plan decoder
2. Tools - per-orchestrator registry with time-bounded dispatch
3. Execution - retries with backoff, replanning, placeholders
4. Learning - memories that feed future plans

Usage:
    from taskpilot.agent import create_orchestrator

    orchestrator = create_orchestrator()
    task = orchestrator.submit_task("Get the weather in Paris")
    print(orchestrator.summarize_task(task))
"""

# Lazy import to avoid circular dependencies
def create_orchestrator(*args, **kwargs):
    """Build an orchestrator from environment configuration."""
    from .orchestrator import create_orchestrator as _create
    return _create(*args, **kwargs)


__all__ = [
    'create_orchestrator',
]
