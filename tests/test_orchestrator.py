"""
Tests for the Agent Orchestrator

Drives the plan -> execute -> adapt -> synthesize loop with a scripted
provider, local tools, a fake clock and a recorded sleep.
"""

import json

import pytest

from taskpilot.agent import create_orchestrator
from taskpilot.agent.models import StepStatus, TaskStatus
from taskpilot.agent.orchestrator import NO_RESULTS
from taskpilot.agent.prompts import (
    PLANNER_SYSTEM,
    REPLANNER_SYSTEM,
    STRICT_PLANNER_SYSTEM,
    SYNTHESIZER_SYSTEM,
    THINKER_SYSTEM,
)
from taskpilot.agent.tools import FunctionTool, ToolCategory
from taskpilot.concurrency import ResourceGuard
from taskpilot.errors import ProviderError, ValidationError


def plan(*steps) -> str:
    return json.dumps(list(steps))


def step(action, tool=None, **args) -> dict:
    return {"action": action, "tool": tool, "args": args}


class TestHappyPath:
    """A plan whose steps all succeed."""

    def test_weather_goal_completes(self, make_orchestrator, provider, store):
        provider.queue(
            plan(step("Get the weather", "get_weather", location="Paris")),
            "It is sunny in Paris, 18C.",
        )
        orchestrator = make_orchestrator()

        task = orchestrator.submit_task("What's the weather in Paris?")

        assert task.status == TaskStatus.COMPLETED
        assert task.result == "It is sunny in Paris, 18C."
        assert task.error is None
        assert task.plan[0].status == StepStatus.SUCCESS
        assert task.plan[0].output["conditions"] == "Sunny"
        assert task.observations[0].type == "result"
        assert task.observations[0].content.startswith("get_weather succeeded:")
        assert task.tokens_used == 30
        assert provider.system_prompts() == [PLANNER_SYSTEM, SYNTHESIZER_SYSTEM]

    def test_snapshots_follow_lifecycle(self, make_orchestrator, provider, store):
        provider.queue(plan(step("Say hi", "echo", text="hi")), "hi")
        orchestrator = make_orchestrator()

        task = orchestrator.submit_task("Say hi to me")

        assert store.saved_statuses[0] == "planning"
        assert "executing" in store.saved_statuses
        assert store.saved_statuses[-1] == "completed"

        saved = store.get_task(task.id)
        assert saved.status == TaskStatus.COMPLETED
        assert saved.result == "hi"
        assert saved.completed_at is not None
        assert saved.plan[0].output == "hi"

    def test_goal_is_stripped(self, make_orchestrator, provider):
        provider.queue(plan(step("Note only")))
        orchestrator = make_orchestrator()

        task = orchestrator.submit_task("   check the logs   ")

        assert task.goal == "check the logs"

    def test_learnings_recorded(self, make_orchestrator, provider, store):
        provider.queue(plan(step("Get the weather", "get_weather", location="Oslo")), "Cold.")
        orchestrator = make_orchestrator()

        orchestrator.submit_task("weather forecast for Oslo", user_id="alice")

        learnings = store.get_recent_memories("alice", "learning")
        assert learnings[0].content == 'For "weather" goals, this tool chain works: get_weather'
        outcomes = store.get_recent_memories("alice", "task")
        assert outcomes[0].content.startswith("Completed: weather forecast for Oslo -> Cold.")

    def test_metrics_recorded(self, make_orchestrator, provider):
        provider.queue(plan(step("Say hi", "echo", text="hi")), "hi")
        orchestrator = make_orchestrator()

        orchestrator.submit_task("Say hi to me")

        assert orchestrator.metrics.tasks_completed.get() == 1
        assert orchestrator.metrics.tasks_active.get() == 0
        assert orchestrator.metrics.tool_calls_total.get(tool="echo") == 1
        assert orchestrator.metrics.llm_calls_total.get() == 2


class TestValidation:
    """Goal validation happens before anything is persisted."""

    @pytest.mark.parametrize("goal", ["", "   ", "x", "a" * 5001])
    def test_rejects_bad_goals(self, make_orchestrator, store, goal):
        orchestrator = make_orchestrator()

        with pytest.raises(ValidationError):
            orchestrator.submit_task(goal)

        assert store.saved_statuses == []

    def test_rejects_non_string(self, make_orchestrator):
        with pytest.raises(ValidationError):
            make_orchestrator().submit_task(None)


class TestPlanning:
    """Plan decoding, strict retry and planning failure."""

    def test_strict_retry_recovers(self, make_orchestrator, provider):
        provider.queue(
            "I'd be happy to help! First I will look things up.",
            plan(step("Say hi", "echo", text="hi")),
            "hi",
        )
        orchestrator = make_orchestrator()

        task = orchestrator.submit_task("Say hi to me")

        assert task.status == TaskStatus.COMPLETED
        assert provider.system_prompts()[:2] == [PLANNER_SYSTEM, STRICT_PLANNER_SYSTEM]

    def test_planning_failure_fails_task(self, make_orchestrator, provider, store):
        provider.queue("no idea", "still no idea")
        orchestrator = make_orchestrator()

        task = orchestrator.submit_task("Do something useful")

        assert task.status == TaskStatus.FAILED
        assert "Planner returned no usable steps after retry" in task.error
        assert task.plan == []
        assert store.get_task(task.id).status == TaskStatus.FAILED
        failures = store.get_recent_memories("default", "learning")
        assert failures[0].content.startswith('"general" tasks can fail:')

    def test_empty_plan_counts_as_unusable(self, make_orchestrator, provider):
        provider.queue("[]", "[]")
        orchestrator = make_orchestrator()

        task = orchestrator.submit_task("Do something useful")

        assert task.status == TaskStatus.FAILED

    def test_provider_error_fails_task(self, make_orchestrator, provider):
        provider.queue(ProviderError("upstream down", provider="fake"))
        orchestrator = make_orchestrator()

        task = orchestrator.submit_task("Do something useful")

        assert task.status == TaskStatus.FAILED
        assert task.error == "upstream down"
        assert orchestrator.metrics.llm_errors_total.get() == 1

    def test_plan_truncated_to_max_steps(self, make_orchestrator, provider):
        provider.queue(plan(*[step(f"Echo {i}", "echo", text=str(i)) for i in range(5)]), "done")
        orchestrator = make_orchestrator(max_steps=3)

        task = orchestrator.submit_task("Echo some numbers")

        assert [s.index for s in task.plan] == [0, 1, 2]

    def test_memory_context_reaches_planner(self, make_orchestrator, provider, store):
        store.save_memory("default", "learning", "For weather goals use get_weather", score=0.8)
        provider.queue(plan(step("Note only")))
        orchestrator = make_orchestrator()

        orchestrator.submit_task("weather in Rome")

        first_user_message = provider.calls[0][0][1].content
        assert "For weather goals use get_weather" in first_user_message


class TestRetries:
    """Local retries with exponential backoff."""

    def _flaky(self, registry, failures: int):
        calls = {"n": 0}

        def flaky():
            calls["n"] += 1
            if calls["n"] <= failures:
                raise RuntimeError(f"attempt {calls['n']} failed")
            return "ok"

        registry.register(FunctionTool("flaky", "Fails a few times.", ToolCategory.COMPUTE, flaky))
        return calls

    def test_retry_then_success(self, make_orchestrator, provider, registry, sleeps):
        calls = self._flaky(registry, failures=1)
        provider.queue(plan(step("Try it", "flaky")), "worked")
        orchestrator = make_orchestrator()

        task = orchestrator.submit_task("Try the flaky thing")

        assert calls["n"] == 2
        assert sleeps == [1.0]
        assert task.plan[0].status == StepStatus.SUCCESS
        assert task.plan[0].retries == 1
        assert task.observations[0].content == "Retry 1/2: attempt 1 failed"
        assert task.observations[1].content.startswith("flaky succeeded:")
        assert orchestrator.metrics.step_retries_total.get() == 1

    def test_backoff_doubles(self, make_orchestrator, provider, registry, sleeps):
        self._flaky(registry, failures=2)
        provider.queue(plan(step("Try it", "flaky")), "worked")
        orchestrator = make_orchestrator(retry_base_delay_ms=500)

        task = orchestrator.submit_task("Try the flaky thing")

        assert sleeps == [0.5, 1.0]
        assert task.plan[0].retries == 2

    def test_permanent_failure_is_tolerated(self, make_orchestrator, provider, sleeps):
        provider.queue(
            plan(step("Call the broken service", "broken"), step("Say done", "echo", text="done")),
            "Partially done.",
        )
        orchestrator = make_orchestrator(max_retries=1, max_replans=0)

        task = orchestrator.submit_task("Call the service and report")

        assert sleeps == [1.0]
        assert task.status == TaskStatus.COMPLETED
        failed = task.plan[0]
        assert failed.status == StepStatus.FAILED
        assert failed.retries == 1
        assert failed.error == "service unavailable"
        assert [o.content for o in task.observations[:2]] == [
            "Retry 1/1: service unavailable",
            "FAILED after 1 retries: service unavailable",
        ]
        assert task.plan[1].status == StepStatus.SUCCESS
        assert task.result == "Partially done."

    def test_unknown_tool_fails_step(self, make_orchestrator, provider):
        provider.queue(plan(step("Use a made-up tool", "teleport")))
        orchestrator = make_orchestrator(max_retries=0, max_replans=0)

        task = orchestrator.submit_task("Teleport me home")

        assert task.plan[0].status == StepStatus.FAILED
        assert task.plan[0].error.startswith("Unknown tool: teleport")
        assert task.result == NO_RESULTS


class TestReplanning:
    """Replacing the remaining plan after a permanent failure."""

    def test_replan_splices_after_failed_step(self, make_orchestrator, provider):
        provider.queue(
            plan(
                step("Say start", "echo", text="start"),
                step("Call the broken service", "broken"),
                step("Never runs", "echo", text="old"),
            ),
            plan(step("Use the alternative", "echo", text="alt")),
            "Done via alternative.",
        )
        orchestrator = make_orchestrator(max_retries=0, max_replans=1)

        task = orchestrator.submit_task("Call the service and report")

        assert task.status == TaskStatus.COMPLETED
        assert task.replans == 1
        assert [s.index for s in task.plan] == [0, 1, 3]
        assert task.plan[2].id == f"{task.id}_s3"
        assert task.plan[2].output == "alt"
        assert "Replanned with 1 new steps" in [o.content for o in task.observations]
        assert REPLANNER_SYSTEM in provider.system_prompts()
        assert orchestrator.metrics.replans_total.get() == 1

    def test_replan_prompt_explains_numbering(self, make_orchestrator, provider):
        provider.queue(
            plan(
                step("Say start", "echo", text="start"),
                step("Call the broken service", "broken"),
                step("Never runs", "echo", text="old"),
            ),
            plan(step("Use the alternative", "echo", text="alt")),
            "Done via alternative.",
        )
        orchestrator = make_orchestrator(max_retries=0, max_replans=1)

        orchestrator.submit_task("Call the service and report")

        replan_messages, _ = provider.calls[1]
        prompt = replan_messages[1].content
        assert replan_messages[0].content == REPLANNER_SYSTEM
        assert "{{step_N}}" in prompt
        assert "numbered from step 4" in prompt

    def test_unparsable_replan_keeps_plan(self, make_orchestrator, provider):
        provider.queue(
            plan(step("Call the broken service", "broken"), step("Say done", "echo", text="done")),
            "Sorry, I cannot come up with anything.",
            "Done.",
        )
        orchestrator = make_orchestrator(max_retries=0, max_replans=1)

        task = orchestrator.submit_task("Call the service and report")

        assert task.replans == 1
        assert [s.index for s in task.plan] == [0, 1]
        assert task.plan[1].output == "done"
        assert task.status == TaskStatus.COMPLETED

    def test_failed_replan_request_keeps_plan(self, make_orchestrator, provider):
        provider.queue(
            plan(step("Call the broken service", "broken"), step("Say done", "echo", text="done")),
            ProviderError("rate limited", provider="fake", status_code=429),
            "Done.",
        )
        orchestrator = make_orchestrator(max_retries=0, max_replans=1)

        task = orchestrator.submit_task("Call the service and report")

        assert task.status == TaskStatus.COMPLETED
        assert [s.index for s in task.plan] == [0, 1]

    def test_replan_budget_is_bounded(self, make_orchestrator, provider):
        provider.queue(
            plan(step("Call the broken service", "broken")),
            plan(step("Try again", "broken")),
            plan(step("And again", "broken")),
        )
        orchestrator = make_orchestrator(max_retries=0, max_replans=2)

        task = orchestrator.submit_task("Call the service and report")

        assert task.replans == 2
        assert [s.index for s in task.plan] == [0, 1, 2]
        assert all(s.status == StepStatus.FAILED for s in task.plan)
        assert task.status == TaskStatus.COMPLETED
        assert task.result == NO_RESULTS


class TestDeadline:
    """Task-level wall-clock deadline."""

    def test_deadline_fails_task(self, make_orchestrator, provider, registry, clock):
        registry.register(FunctionTool(
            "slow", "Takes a while.", ToolCategory.COMPUTE,
            lambda: clock.advance(2) or "slow result",
        ))
        provider.queue(plan(step("First", "slow"), step("Second", "slow")))
        orchestrator = make_orchestrator(task_timeout_ms=1000)

        task = orchestrator.submit_task("Do two slow things")

        assert task.status == TaskStatus.FAILED
        assert task.error == "Task timed out after 1s (1 steps succeeded)"
        assert task.plan[0].status == StepStatus.SUCCESS
        assert task.plan[1].status == StepStatus.PENDING
        assert orchestrator.metrics.tasks_failed.get() == 1


class TestStepFeatures:
    """Placeholders, user injection, think and note steps."""

    def test_placeholders_resolve_earlier_outputs(self, make_orchestrator, provider, registry):
        registry.register(FunctionTool(
            "lookup", "Returns a record.", ToolCategory.RESEARCH,
            lambda: {"city": "Paris", "country": "France"},
        ))
        provider.queue(
            plan(
                step("Look it up", "lookup"),
                step("Echo it", "echo", text="City: {{step_1.city}}, all: {{step_1}}, missing: {{step_9}}"),
            ),
            "Paris, France.",
        )
        orchestrator = make_orchestrator()

        task = orchestrator.submit_task("Find the city and echo it")

        assert task.plan[1].output == (
            'City: Paris, all: {"city": "Paris", "country": "France"}, missing: {{step_9}}'
        )

    def test_unknown_placeholder_key_left_intact(self, make_orchestrator, provider, registry):
        registry.register(FunctionTool(
            "lookup", "Returns a record.", ToolCategory.RESEARCH, lambda: {"city": "Paris"},
        ))
        provider.queue(
            plan(step("Look it up", "lookup"), step("Echo it", "echo", text="{{step_1.zip}}")),
            "ok",
        )
        orchestrator = make_orchestrator()

        task = orchestrator.submit_task("Find the zip and echo it")

        assert task.plan[1].output == "{{step_1.zip}}"

    def test_user_id_injected(self, make_orchestrator, provider):
        provider.queue(plan(step("Who am I", "whoami")), "You are alice.")
        orchestrator = make_orchestrator()

        task = orchestrator.submit_task("Tell me who I am", user_id="alice")

        assert task.plan[0].output == "alice"

    def test_explicit_user_id_not_overridden(self, make_orchestrator, provider):
        provider.queue(plan(step("Who am I", "whoami", user_id="bob")), "You are bob.")
        orchestrator = make_orchestrator()

        task = orchestrator.submit_task("Tell me who I am", user_id="alice")

        assert task.plan[0].output == "bob"

    def test_think_step_calls_provider(self, make_orchestrator, provider):
        provider.queue(
            plan(step("Compare the options", "think")),
            "Option A is better.",
            "Go with option A.",
        )
        orchestrator = make_orchestrator()

        task = orchestrator.submit_task("Compare option A and B")

        assert task.plan[0].status == StepStatus.SUCCESS
        assert task.plan[0].output == "Option A is better."
        assert provider.system_prompts() == [PLANNER_SYSTEM, THINKER_SYSTEM, SYNTHESIZER_SYSTEM]
        assert task.result == "Go with option A."

    def test_think_step_resolves_placeholders(self, make_orchestrator, provider):
        provider.queue(
            plan(
                step("Fetch the reading", "echo", text="PARIS-18C"),
                step("Judge the reading", "think", question="Is {{step_1}} warm?"),
            ),
            "Yes, mild.",
            "It is mild in Paris.",
        )
        orchestrator = make_orchestrator()

        task = orchestrator.submit_task("Is Paris warm today?")

        think_messages, _ = provider.calls[1]
        assert think_messages[0].content == THINKER_SYSTEM
        assert "CURRENT STEP: Is PARIS-18C warm?" in think_messages[1].content
        assert "{{step_1}}" not in think_messages[1].content
        assert task.plan[1].output == "Yes, mild."

    def test_note_step_has_no_tool_call(self, make_orchestrator, provider):
        provider.queue(plan(step("Remember to be polite")))
        orchestrator = make_orchestrator()

        task = orchestrator.submit_task("Be polite")

        assert task.plan[0].status == StepStatus.SUCCESS
        assert task.observations[0].content == "Reasoning: Remember to be polite"
        assert task.result == NO_RESULTS
        assert len(provider.calls) == 1


class TestChat:
    """Conversational entry point."""

    def test_plain_chat(self, make_orchestrator, provider, store):
        store.save_memory("default", "preference", "User likes short answers")
        provider.queue("Hello! How can I help?")
        orchestrator = make_orchestrator()

        reply = orchestrator.chat(
            "hello there, how are you doing today?",
            history=[{"role": "user", "content": "hi"}, {"role": "assistant", "content": "hey"}],
        )

        assert reply == {
            "response": "Hello! How can I help?",
            "autonomous": False,
            "model": "fake-model",
            "tokens_used": 15,
        }
        messages = provider.calls[0][0]
        assert [m.role for m in messages] == ["system", "user", "assistant", "user"]
        assert messages[-1].content == "hello there, how are you doing today?"

    def test_task_like_message_runs_task(self, make_orchestrator, provider):
        provider.queue(plan(step("Get the weather", "get_weather", location="Rome")), "Sunny in Rome.")
        orchestrator = make_orchestrator()

        reply = orchestrator.chat("what is the weather in Rome")

        assert reply["autonomous"] is True
        assert reply["status"] == "completed"
        assert reply["response"] == "Sunny in Rome."
        assert reply["steps"][0]["tool"] == "get_weather"

    def test_empty_message_rejected(self, make_orchestrator):
        with pytest.raises(ValidationError):
            make_orchestrator().chat("   ")


class TestBackgroundTasks:
    """start_task, get_task and status reporting."""

    def test_start_task_runs_in_background(self, make_orchestrator, provider):
        provider.queue(plan(step("Say hi", "echo", text="hi")), "hi")
        orchestrator = make_orchestrator()

        task_id = orchestrator.start_task("Say hi to me")
        assert orchestrator.get_task(task_id) is not None

        orchestrator.shutdown(wait=True)

        task = orchestrator.get_task(task_id)
        assert task.status == TaskStatus.COMPLETED
        assert task.result == "hi"

    def test_get_task_unknown(self, make_orchestrator):
        assert make_orchestrator().get_task("task_missing") is None

    def test_status_and_summary(self, make_orchestrator, provider, registry):
        provider.queue(plan(step("Say hi", "echo", text="hi")), "hi")
        orchestrator = make_orchestrator(max_retries=1)

        task = orchestrator.submit_task("Say hi to me")
        status = orchestrator.get_status()
        summary = orchestrator.summarize_task(task)

        assert status["tasks_completed"] == 1
        assert status["running"] == 0
        assert status["provider"] == "fake"
        assert status["tools"] == len(registry)
        assert status["limits"]["max_retries"] == 1

        assert summary["task_id"] == task.id
        assert summary["status"] == "completed"
        assert summary["steps"] == [{
            "index": 0,
            "action": "Say hi",
            "tool": "echo",
            "status": "success",
            "retries": 0,
            "output": "hi",
            "error": None,
        }]


class TestFactory:
    """Building orchestrators from configuration."""

    def test_each_call_builds_its_own_orchestrator(self, provider, store, tmp_path):
        guard = ResourceGuard("browser", lock_dir=str(tmp_path), terminator=lambda: None)
        first = create_orchestrator(provider=provider, store=store, guard=guard, workspace=str(tmp_path / "ws"))
        second = create_orchestrator(provider=provider, store=store, guard=guard, workspace=str(tmp_path / "ws"))

        try:
            assert first is not second
            assert first.registry is not second.registry
            assert first.provider is provider
            assert first.store is store
            assert "get_weather" in first.registry.list_tools()
        finally:
            first.shutdown(wait=False)
            second.shutdown(wait=False)
