from __future__ import annotations

import asyncio
import json
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence, Tuple

import pytest

from relaymind_ai.agent_core.errors import AgentNotFound, StaleResumption
from relaymind_ai.agent_core.factory import build_engine_deps
from relaymind_ai.agent_core.providers.base import GenerationOptions, GenerationProvider, GenerationResult
from relaymind_ai.agent_core.repos.memory import InMemoryAgentContextRepository
from relaymind_ai.agent_core.schemas.domain import AgentContext, AgentState, HumanInLoop, LlmMessage
from relaymind_ai.agent_core.service import AgentConfig, AgentService
from relaymind_ai.core.config import EngineSettings


class _GatedProvider(GenerationProvider):
    """Scripted provider whose calls block until ``gate`` is set."""

    def __init__(self, script: Sequence[str], gated: bool = False) -> None:
        self._script = list(script)
        self.gate = asyncio.Event()
        if not gated:
            self.gate.set()
        self.entered = asyncio.Event()
        self.prompts: List[List[LlmMessage]] = []

    @property
    def provider_id(self) -> str:
        return "gated"

    def is_configured(self) -> bool:
        return True

    async def generate_text(
        self, messages: List[LlmMessage], options: Optional[GenerationOptions] = None
    ) -> GenerationResult:
        self.prompts.append(list(messages))
        self.entered.set()
        await self.gate.wait()
        if not self._script:
            raise RuntimeError("script exhausted")
        return GenerationResult(text=self._script.pop(0), cost=0.01, provider_id="gated")


def _calls(*calls: Tuple[str, Dict[str, Any]]) -> str:
    return json.dumps({"function_calls": [{"name": n, "parameters": p} for n, p in calls]})


def _done(note: str = "done") -> str:
    return _calls(("Agent.completed", {"note": note}))


def _remember(n: int) -> str:
    return _calls(("Agent.save_memory", {"key": f"k{n}", "content": str(n)}))


def _service(provider: GenerationProvider, settings: EngineSettings) -> AgentService:
    deps = build_engine_deps(providers=[provider], engine_settings=settings)
    return AgentService(deps=deps, settings=settings)


def _config(**kwargs: Any) -> AgentConfig:
    kwargs.setdefault("prompt", "do the task")
    kwargs.setdefault("agent_id", "a1")
    return AgentConfig(**kwargs)


@pytest.mark.asyncio
async def test_start_runs_to_completion(engine_settings) -> None:
    service = _service(_GatedProvider([_done("finished")]), engine_settings)

    execution = await service.start(_config(capabilities=["Files", "Ghost"]))
    ctx = await execution.wait()

    assert ctx.state == AgentState.completed
    assert ctx.capabilities == ["Agent", "Files"]
    assert service.get_execution("a1") is None
    status = await service.get_status("a1")
    assert status.output == "finished"
    assert status.human_in_loop == HumanInLoop(count=engine_settings.hil_count, budget=engine_settings.hil_budget)


@pytest.mark.asyncio
async def test_start_rejects_existing_agent(engine_settings) -> None:
    service = _service(_GatedProvider([_done()]), engine_settings)
    await (await service.start(_config())).wait()

    with pytest.raises(ValueError):
        await service.start(_config())


@pytest.mark.asyncio
async def test_unknown_agent_raises(engine_settings) -> None:
    service = _service(_GatedProvider([]), engine_settings)

    with pytest.raises(AgentNotFound):
        await service.get_status("ghost")
    with pytest.raises(AgentNotFound):
        await service.resume_error("ghost", "exec")


@pytest.mark.asyncio
async def test_resume_hil_extends_reached_thresholds(engine_settings) -> None:
    provider = _GatedProvider([_remember(1), _remember(2), _done()])
    service = _service(provider, engine_settings)
    first = await service.start(_config(human_in_loop=HumanInLoop(count=2, budget=100.0)))
    paused = await first.wait()
    assert paused.state == AgentState.hitl_threshold

    resumed = await service.resume_hil("a1", paused.execution_id, note="keep going")
    ctx = await resumed.wait()

    assert resumed.execution_id != paused.execution_id
    assert ctx.state == AgentState.completed
    assert ctx.human_in_loop.count == 2 + engine_settings.hil_count
    assert ctx.human_in_loop.budget == 100.0
    assert LlmMessage(role="user", content="keep going") in provider.prompts[2]


@pytest.mark.asyncio
async def test_resume_hil_with_explicit_thresholds(engine_settings) -> None:
    service = _service(_GatedProvider([_remember(1), _remember(2)]), engine_settings)
    paused = await (await service.start(_config(human_in_loop=HumanInLoop(count=1, budget=100.0)))).wait()

    ctx = await (await service.resume_hil("a1", paused.execution_id, count=2, budget=50.0)).wait()

    assert ctx.state == AgentState.hitl_threshold
    assert ctx.iterations == 2
    assert ctx.human_in_loop == HumanInLoop(count=2, budget=50.0)


@pytest.mark.asyncio
async def test_resume_with_stale_execution_id_is_rejected(engine_settings) -> None:
    service = _service(_GatedProvider([_remember(1)]), engine_settings)
    paused = await (await service.start(_config(human_in_loop=HumanInLoop(count=1, budget=100.0)))).wait()

    with pytest.raises(StaleResumption):
        await service.resume_hil("a1", "not-the-current-execution")
    assert (await service.get_status("a1")).execution_id == paused.execution_id


@pytest.mark.asyncio
async def test_resume_from_wrong_state_is_rejected(engine_settings) -> None:
    service = _service(_GatedProvider([_done()]), engine_settings)
    ctx = await (await service.start(_config())).wait()

    with pytest.raises(StaleResumption):
        await service.provide_feedback("a1", ctx.execution_id, "yes")


@pytest.mark.asyncio
async def test_feedback_answer_becomes_next_message(engine_settings) -> None:
    provider = _GatedProvider([_calls(("Agent.request_feedback", {"request": "which db?"})), _done()])
    service = _service(provider, engine_settings)
    paused = await (await service.start(_config())).wait()
    assert paused.state == AgentState.hitl_feedback
    assert (await service.get_status("a1")).feedback_request == "which db?"

    ctx = await (await service.resume("a1", AgentState.hitl_feedback, paused.execution_id, "postgres")).wait()

    assert ctx.state == AgentState.completed
    assert ctx.feedback_request is None
    assert LlmMessage(role="user", content="postgres") in provider.prompts[1]


@pytest.mark.asyncio
async def test_resume_error_with_corrective_prompt(engine_settings) -> None:
    provider = _GatedProvider([])
    service = _service(provider, engine_settings)
    failed = await (await service.start(_config())).wait()
    assert failed.state == AgentState.error

    provider._script.append(_done("recovered"))
    ctx = await (await service.resume_error("a1", failed.execution_id, "try again")).wait()

    assert ctx.state == AgentState.completed
    assert ctx.error is None
    assert ctx.output == "recovered"


@pytest.mark.asyncio
async def test_resume_completed_keeps_history(engine_settings) -> None:
    provider = _GatedProvider([_done("one"), _done("two")])
    service = _service(provider, engine_settings)
    first = await (await service.start(_config())).wait()

    ctx = await (await service.resume_completed("a1", first.execution_id, "one more thing")).wait()

    assert ctx.output == "two"
    assert ctx.iterations == 2
    assert [r.function_name for r in ctx.function_call_history] == ["Agent.completed", "Agent.completed"]


@pytest.mark.asyncio
async def test_hitl_tool_resume_runs_pending_call(engine_settings, tmp_path: Path) -> None:
    text = _calls(("Files.write", {"path": "out.txt", "content": "ok"}), ("Agent.completed", {"note": "written"}))
    service = _service(_GatedProvider([text]), engine_settings)
    paused = await (await service.start(_config(capabilities=["Files"]))).wait()
    assert paused.state == AgentState.hitl_tool
    assert (await service.get_status("a1")).pending_calls == ["Files.write", "Agent.completed"]

    ctx = await (await service.resume("a1", AgentState.hitl_tool, paused.execution_id)).wait()

    assert ctx.state == AgentState.completed
    assert (tmp_path / "out.txt").read_text() == "ok"


@pytest.mark.asyncio
async def test_cancel_running_agent_stops_at_checkpoint(engine_settings) -> None:
    provider = _GatedProvider([_remember(1), _remember(2)], gated=True)
    service = _service(provider, engine_settings)
    execution = await service.start(_config())
    await provider.entered.wait()

    await service.cancel("a1", "no longer needed")
    provider.gate.set()
    ctx = await execution.wait()

    assert ctx.state == AgentState.error
    assert ctx.error == "AgentCancelled: Cancelled by operator: no longer needed"
    assert len(provider.prompts) == 1
    assert (await service.get_status("a1")).state == AgentState.error


@pytest.mark.asyncio
async def test_cancel_idle_agent_moves_to_error(engine_settings) -> None:
    service = _service(_GatedProvider([_remember(1)]), engine_settings)
    await (await service.start(_config(human_in_loop=HumanInLoop(count=1, budget=100.0)))).wait()

    await service.cancel("a1", "abandoned")

    status = await service.get_status("a1")
    assert status.state == AgentState.error
    assert status.error == "AgentCancelled: Cancelled by operator: abandoned"


@pytest.mark.asyncio
async def test_message_to_busy_agent_is_merged_next_iteration(engine_settings) -> None:
    provider = _GatedProvider([_remember(1), _done()], gated=True)
    service = _service(provider, engine_settings)
    execution = await service.start(_config())
    await provider.entered.wait()

    returned = await service.submit_message("a1", "use tabs")
    assert returned is execution
    assert (await service.get_status("a1")).pending_message_count == 1
    provider.gate.set()
    ctx = await execution.wait()

    assert ctx.state == AgentState.completed
    assert ctx.pending_messages == []
    assert LlmMessage(role="user", content="use tabs") in provider.prompts[1]


@pytest.mark.asyncio
async def test_message_to_completed_agent_reopens_it(engine_settings) -> None:
    provider = _GatedProvider([_done("first"), _done("second")])
    service = _service(provider, engine_settings)
    first = await (await service.start(_config())).wait()

    execution = await service.submit_message("a1", "and another thing")
    assert execution is not None
    assert execution.execution_id != first.execution_id
    ctx = await execution.wait()

    assert ctx.output == "second"
    assert LlmMessage(role="user", content="and another thing") in provider.prompts[1]


@pytest.mark.asyncio
async def test_message_to_paused_agent_waits_for_resume(engine_settings) -> None:
    service = _service(_GatedProvider([_remember(1)]), engine_settings)
    paused = await (await service.start(_config(human_in_loop=HumanInLoop(count=1, budget=100.0)))).wait()

    assert await service.submit_message("a1", "later") is None

    status = await service.get_status("a1")
    assert status.state == AgentState.hitl_threshold
    assert status.pending_message_count == 1
    assert status.execution_id == paused.execution_id


@pytest.mark.asyncio
async def test_update_capabilities_of_idle_agent(engine_settings) -> None:
    service = _service(_GatedProvider([_done()]), engine_settings)
    await (await service.start(_config(capabilities=["Files"]))).wait()

    names = await service.update_capabilities("a1", add=["LiveFiles"], remove=["Files", "Agent"])

    assert names == ["Agent", "LiveFiles"]
    assert (await service.get_status("a1")).capabilities == ["Agent", "LiveFiles"]


@pytest.mark.asyncio
async def test_update_capabilities_of_running_agent_updates_live_registry(engine_settings) -> None:
    provider = _GatedProvider([_calls(("Files.list_directory", {})), _done()], gated=True)
    service = _service(provider, engine_settings)
    execution = await service.start(_config(capabilities=["Files"]))
    await provider.entered.wait()

    await service.update_capabilities("a1", remove=["Files"])
    assert execution.registry.has("Files") is False
    provider.gate.set()
    ctx = await execution.wait()

    listing = ctx.function_call_history[0]
    assert listing.stderr is not None and listing.stderr.startswith("UnknownCapability")


@pytest.mark.asyncio
async def test_list_agents_filters_by_state(engine_settings) -> None:
    service = _service(_GatedProvider([_done(), _remember(1)]), engine_settings)
    await (await service.start(_config(agent_id="done"))).wait()
    await (await service.start(_config(agent_id="paused", human_in_loop=HumanInLoop(count=1, budget=9.0)))).wait()

    everything = await service.list_agents()
    paused = await service.list_agents(states=[AgentState.hitl_threshold])

    assert {s.agent_id for s in everything} == {"done", "paused"}
    assert [s.agent_id for s in paused] == ["paused"]


@pytest.mark.asyncio
async def test_delete_clears_agent_cache_and_skips_running(engine_settings, tmp_path: Path) -> None:
    (tmp_path / "a.txt").write_text("alpha")
    provider = _GatedProvider([_calls(("Files.read", {"path": "a.txt"})), _done(), _remember(1)])
    service = _service(provider, engine_settings)
    await (await service.start(_config(capabilities=["Files"]))).wait()
    cache = service.deps.cache
    assert cache is not None and cache.size() == 1

    provider.gate.clear()
    busy = await service.start(_config(agent_id="busy"))
    await provider.entered.wait()

    assert await service.delete(["a1", "busy", "ghost"]) == 1
    assert cache.size() == 0
    assert service.get_execution("busy") is busy
    provider.gate.set()
    await busy.wait()
    with pytest.raises(AgentNotFound):
        await service.get_status("a1")


async def _store_interrupted_agent(service: AgentService) -> AgentContext:
    ctx = AgentContext(
        agent_id="a1",
        messages=[LlmMessage(role="user", content="do the task")],
        capabilities=["Agent"],
        human_in_loop=HumanInLoop(count=5, budget=100.0),
        iterations=2,
        memory={"k1": "1"},
    )
    await service.deps.store.save(ctx)
    return ctx


@pytest.mark.asyncio
async def test_recover_reenters_loop_after_restart(engine_settings) -> None:
    repository = InMemoryAgentContextRepository()
    crashed = AgentService(
        deps=build_engine_deps(providers=[_GatedProvider([])], engine_settings=engine_settings, repository=repository),
        settings=engine_settings,
    )
    stored = await _store_interrupted_agent(crashed)

    provider = _GatedProvider([_done("recovered")])
    restarted = AgentService(
        deps=build_engine_deps(providers=[provider], engine_settings=engine_settings, repository=repository),
        settings=engine_settings,
    )
    execution = await restarted.recover("a1", stored.execution_id)
    ctx = await execution.wait()

    assert execution.execution_id != stored.execution_id
    assert ctx.state == AgentState.completed
    assert ctx.output == "recovered"
    assert ctx.iterations == 3
    assert ctx.memory == {"k1": "1"}


@pytest.mark.asyncio
async def test_resume_from_running_state_recovers(engine_settings) -> None:
    service = _service(_GatedProvider([_done()]), engine_settings)
    stored = await _store_interrupted_agent(service)

    ctx = await (await service.resume("a1", AgentState.running, stored.execution_id)).wait()

    assert ctx.state == AgentState.completed


@pytest.mark.asyncio
async def test_recover_rejects_agent_with_live_execution(engine_settings) -> None:
    provider = _GatedProvider([_done()], gated=True)
    service = _service(provider, engine_settings)
    execution = await service.start(_config())
    await provider.entered.wait()

    with pytest.raises(StaleResumption):
        await service.recover("a1", execution.execution_id)
    provider.gate.set()
    assert (await execution.wait()).state == AgentState.completed


@pytest.mark.asyncio
async def test_recover_interrupted_skips_paused_agents(engine_settings) -> None:
    service = _service(_GatedProvider([_done(), _remember(1)]), engine_settings)
    await _store_interrupted_agent(service)
    await service.deps.store.save(
        AgentContext(agent_id="paused", state=AgentState.hitl_threshold, human_in_loop=HumanInLoop(count=1, budget=1.0))
    )

    recovered = await service.recover_interrupted()

    assert [e.agent_id for e in recovered] == ["a1"]
    assert (await recovered[0].wait()).state == AgentState.completed
    assert (await service.get_status("paused")).state == AgentState.hitl_threshold


@pytest.mark.asyncio
async def test_request_hil_pauses_running_agent_after_iteration(engine_settings) -> None:
    provider = _GatedProvider([_remember(1), _remember(2), _done()], gated=True)
    service = _service(provider, engine_settings)
    execution = await service.start(_config())
    await provider.entered.wait()

    assert await service.request_hil("a1", "check the plan") is True
    provider.gate.set()
    ctx = await execution.wait()

    assert ctx.state == AgentState.hitl_threshold
    assert ctx.iterations == 1
    assert ctx.memory == {"k1": "1"}
    assert len(provider.prompts) == 1

    resumed = await (await service.resume_hil("a1", ctx.execution_id)).wait()
    assert resumed.human_in_loop.count == 30
    assert resumed.iterations == 3
    assert resumed.state == AgentState.completed


@pytest.mark.asyncio
async def test_request_hil_on_idle_agent_is_a_no_op(engine_settings) -> None:
    service = _service(_GatedProvider([_done()]), engine_settings)
    await (await service.start(_config())).wait()

    assert await service.request_hil("a1") is False
    assert (await service.get_status("a1")).state == AgentState.completed
    with pytest.raises(AgentNotFound):
        await service.request_hil("ghost")
