from __future__ import annotations

from pathlib import Path

from relaymind_ai.agent_core.capabilities.builtin import AgentCapability, FilesCapability
from relaymind_ai.agent_core.runtime.prompt import DefaultPromptBuilder, render_call
from relaymind_ai.agent_core.schemas.domain import (
    AgentContext,
    FunctionCallResult,
    HumanInLoop,
    LlmMessage,
)
from relaymind_ai.core.config import EngineSettings

_SCHEMAS = [AgentCapability().schema(), FilesCapability().schema()]


def _agent(**kwargs) -> AgentContext:
    return AgentContext(human_in_loop=HumanInLoop(count=5, budget=1.0), **kwargs)


def test_system_message_lists_functions_and_memory(engine_settings: EngineSettings) -> None:
    ctx = _agent(system_prompt="You are a builder.", memory={"plan": "ship it"})

    messages = DefaultPromptBuilder(engine_settings).build(ctx, _SCHEMAS)
    system = messages[0]

    assert system.role == "system"
    assert system.content.startswith("You are a builder.")
    assert '"name": "Files.write"' in system.content
    assert '"name": "Agent.completed"' in system.content
    assert '<entry key="plan">ship it</entry>' in system.content
    assert "function_calls" in system.content


def test_conversation_ends_with_user_turn(engine_settings: EngineSettings) -> None:
    ctx = _agent(messages=[LlmMessage(role="user", content="build it")])

    messages = DefaultPromptBuilder(engine_settings).build(ctx, _SCHEMAS)

    assert [m.role for m in messages] == ["system", "user"]
    assert messages[-1].content == "build it"


def test_continue_prompt_after_assistant_turn(engine_settings: EngineSettings) -> None:
    ctx = _agent(
        messages=[LlmMessage(role="user", content="build it"), LlmMessage(role="assistant", content="thinking")]
    )

    messages = DefaultPromptBuilder(engine_settings).build(ctx, _SCHEMAS)

    assert messages[-1] == LlmMessage(role="user", content="Continue with the task.")


def test_history_uses_summaries_and_marks_errors(engine_settings: EngineSettings) -> None:
    ok = FunctionCallResult(iteration=1, function_name="Files.read", stdout="x" * 50, stdout_summary="short")
    failed = FunctionCallResult(iteration=1, function_name="Files.read", stderr="FileNotFoundError: nope")
    ctx = _agent(messages=[LlmMessage(role="user", content="go")], function_call_history=[ok, failed])

    messages = DefaultPromptBuilder(engine_settings).build(ctx, _SCHEMAS)
    last = messages[-1].content

    assert last.startswith("<function_call_history>")
    assert "<output>short</output>" in last
    assert "x" * 50 not in last
    assert "<error>FileNotFoundError: nope</error>" in last
    assert last.endswith("Continue with the task.")


def test_live_files_are_inlined(engine_settings: EngineSettings, tmp_path: Path) -> None:
    (tmp_path / "main.py").write_text("print('hi')")
    ctx = _agent(tool_state={"LiveFiles": ["main.py", "missing.py"]})

    system = DefaultPromptBuilder(engine_settings).build(ctx, _SCHEMAS)[0].content

    assert '<file path="main.py">\nprint(\'hi\')\n</file>' in system
    assert '<file path="missing.py">\n(unavailable:' in system


def test_live_files_outside_the_root_are_not_read(tmp_path: Path) -> None:
    work = tmp_path / "work"
    work.mkdir()
    secret = tmp_path / "secret.txt"
    secret.write_text("TOP-SECRET")
    (work / "notes.txt").write_text("visible")
    ctx = _agent(tool_state={"LiveFiles": [str(secret), "../secret.txt", "notes.txt"]})

    system = DefaultPromptBuilder(EngineSettings(file_system_root=str(work))).build(ctx, _SCHEMAS)[0].content

    assert "TOP-SECRET" not in system
    assert "../secret.txt" not in system
    assert '<file path="notes.txt">\nvisible\n</file>' in system


def test_no_live_files_section_when_every_entry_is_outside_the_root(engine_settings: EngineSettings) -> None:
    ctx = _agent(tool_state={"LiveFiles": ["/etc/hostname"]})

    system = DefaultPromptBuilder(engine_settings).build(ctx, _SCHEMAS)[0].content

    assert "<live-files>" not in system


def test_render_call_includes_parameters() -> None:
    text = render_call(FunctionCallResult(iteration=2, function_name="Agent.completed", parameters={"note": "ok"}))

    assert 'iteration="2"' in text
    assert '<parameters>{"note": "ok"}</parameters>' in text
    assert "<output></output>" in text
