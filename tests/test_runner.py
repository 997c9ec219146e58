import asyncio
import json

import pytest

from pyagx.events.bus import EventBus
from pyagx.llm.base import Final, ProviderError, ReasoningDelta, TextDelta, ToolCallItem
from pyagx.runner import (
    FEEDBACK,
    INTERRUPTED,
    REJECTED,
    SKIPPED_FEEDBACK,
    SKIPPED_INTERRUPTED,
    SKIPPED_REJECTED,
    TurnEngine,
    format_tokens,
)
from pyagx.session.models import Message, Reasoning, Text, ToolCall, unanswered_tool_calls
from pyagx.session.store import TranscriptStore, load_transcript
from pyagx.tools.command_pattern import ApprovedCommands, CommandPattern
from pyagx.tools.permissions import PermissionGate, PermissionRecord, PermissionStore

HANG = object()


class ScriptedProvider:
    """Plays back one list of stream items per completion request."""

    provider_name = "fake"
    model = "fake-model"

    def __init__(self, *rounds):
        self.rounds = list(rounds)
        self.requests = []

    async def stream(self, prompt, history, *, preamble, tools):
        self.requests.append((prompt, list(history)))
        items = self.rounds.pop(0) if self.rounds else [Final()]
        for item in items:
            if item is HANG:
                await asyncio.sleep(3600)
            if isinstance(item, BaseException):
                raise item
            yield item


class ScriptedPrompter:
    def __init__(self, *answers):
        self.answers = list(answers)
        self.prompts = []

    async def __call__(self, text):
        self.prompts.append(text)
        return self.answers.pop(0)


def call(id, name, **arguments):
    return ToolCallItem(ToolCall(id=id, name=name, arguments=arguments))


def make_engine(tmp_path, provider, *answers, approved=(), max_round_trips=30):
    store = PermissionStore(PermissionRecord(approved_commands=ApprovedCommands(approved)), cwd=tmp_path)
    prompter = ScriptedPrompter(*answers)
    bus = EventBus(capacity=256)
    engine = TurnEngine(
        provider,
        cwd=tmp_path,
        permissions=store,
        gate=PermissionGate(store, prompter=prompter),
        bus=bus,
        transcript=TranscriptStore(cwd=tmp_path, root=tmp_path / "state"),
        max_round_trips=max_round_trips,
        cmd_timeout=30,
    )
    return engine, prompter


def kinds(sub):
    out = []
    while sub.pending():
        out.append(sub.get_nowait().kind)
    return out


def results_of(msg):
    return [r.content for r in msg.results()]


@pytest.mark.asyncio
async def test_plain_answer(tmp_path):
    provider = ScriptedProvider([ReasoningDelta("let me think"), TextDelta("Hel"), TextDelta("lo"), Final({"total_tokens": 1234})])
    engine, _ = make_engine(tmp_path, provider)
    sub = engine.bus.subscribe()

    await engine.run_turn("hi")

    assert engine.history == [
        Message.user("hi"),
        Message(role="assistant", content=[Reasoning("let me think"), Text("Hello")]),
    ]
    assert engine.tokens_in_context == 1234
    assert kinds(sub) == ["llm_request", "reasoning", "assistant_text", "stream_complete", "turn_complete"]

    saved = engine.transcript.session_dir / "turn-0001.json"
    assert load_transcript(saved) == engine.history


@pytest.mark.asyncio
async def test_preamble_carries_prompt_and_directory(tmp_path):
    provider = ScriptedProvider([Final()])
    engine, _ = make_engine(tmp_path, provider)
    assert engine.preamble().startswith(engine.system_prompt)
    assert f"Current directory: {tmp_path}" in engine.preamble()


@pytest.mark.asyncio
async def test_tool_round_trip(tmp_path):
    (tmp_path / "a.txt").write_text("content", encoding="utf-8")
    provider = ScriptedProvider(
        [TextDelta("Looking."), call("c1", "read_file", path="a.txt"), Final()],
        [TextDelta("It says content."), Final()],
    )
    engine, prompter = make_engine(tmp_path, provider)

    await engine.run_turn("what is in a.txt?")

    assert prompter.prompts == []
    assert len(provider.requests) == 2
    assert results_of(provider.requests[1][0]) == ["content"]
    assert [m.role for m in engine.history] == ["user", "assistant", "user", "assistant"]
    assert engine.history[1].content == [Text("Looking."), ToolCall(id="c1", name="read_file", arguments={"path": "a.txt"})]
    assert unanswered_tool_calls(engine.history) == []


@pytest.mark.asyncio
async def test_rejection_skips_rest_and_ends_turn(tmp_path):
    provider = ScriptedProvider([
        call("a", "create_file", path="x.txt", contents="x"),
        call("b", "run_cmd", command="ls"),
        call("c", "read_file", path="x.txt"),
        Final(),
    ])
    engine, prompter = make_engine(tmp_path, provider, "n")

    await engine.run_turn("make x")

    assert len(provider.requests) == 1
    assert len(prompter.prompts) == 1
    assert not (tmp_path / "x.txt").exists()
    assert results_of(engine.history[-1]) == [REJECTED, SKIPPED_REJECTED, SKIPPED_REJECTED]
    assert unanswered_tool_calls(engine.history) == []


@pytest.mark.asyncio
async def test_feedback_goes_back_to_model(tmp_path):
    provider = ScriptedProvider(
        [call("a", "create_file", path="x.txt", contents="x"), call("b", "read_file", path="x.txt"), Final()],
        [TextDelta("ok, using y.txt"), Final()],
    )
    engine, _ = make_engine(tmp_path, provider, "call it y.txt")

    await engine.run_turn("make x")

    assert len(provider.requests) == 2
    assert results_of(provider.requests[1][0]) == [FEEDBACK.format("call it y.txt"), SKIPPED_FEEDBACK]
    assert engine.history[-1].text() == "ok, using y.txt"
    assert not (tmp_path / "x.txt").exists()


@pytest.mark.asyncio
async def test_parse_and_validation_errors_continue_the_batch(tmp_path):
    provider = ScriptedProvider(
        [
            call("a", "no_such_tool"),
            call("b", "run_cmd", command="rm -rf build"),
            call("c", "read_file", path="../secret"),
            call("d", "read_dir", path=""),
            Final(),
        ],
        [TextDelta("done"), Final()],
    )
    engine, prompter = make_engine(tmp_path, provider)

    await engine.run_turn("go")

    assert prompter.prompts == []
    results = results_of(provider.requests[1][0])
    assert results[0] == "failed to parse tool call: unknown tool: no_such_tool"
    assert results[1] == "error: command contains a forbidden pattern: rm -rf"
    assert results[2].startswith("error: path must be relative")
    assert json.loads(results[3]) == []


@pytest.mark.asyncio
async def test_deny_list_wins_over_approval(tmp_path):
    provider = ScriptedProvider([call("a", "run_cmd", command="rm -rf x"), Final()], [Final()])
    engine, prompter = make_engine(tmp_path, provider, approved=[CommandPattern("rm")])

    await engine.run_turn("clean")

    assert results_of(provider.requests[1][0]) == ["error: command contains a forbidden pattern: rm -rf"]
    assert prompter.prompts == []


@pytest.mark.asyncio
async def test_interrupt_during_command(tmp_path):
    provider = ScriptedProvider([
        call("a", "run_cmd", command="touch started; sleep 30"),
        call("b", "read_dir", path="."),
        Final(),
    ])
    engine, _ = make_engine(tmp_path, provider, "y")
    sub = engine.bus.subscribe()

    async def interrupt_when_started():
        while not (tmp_path / "started").exists():
            await asyncio.sleep(0.02)
        assert engine.interrupt() is True
        assert engine.interrupt() is False

    interrupter = asyncio.ensure_future(interrupt_when_started())
    await asyncio.wait_for(engine.run_turn("run it"), timeout=20)
    await interrupter

    assert len(provider.requests) == 1
    assert results_of(engine.history[-1]) == [INTERRUPTED, SKIPPED_INTERRUPTED]
    assert engine.history[-1].results()[0].content == "tool call interrupted by user"
    assert "interrupted" in kinds(sub)
    assert unanswered_tool_calls(engine.history) == []


@pytest.mark.asyncio
async def test_interrupt_during_stream_discards_turn(tmp_path):
    provider = ScriptedProvider([TextDelta("partial"), HANG])
    engine, _ = make_engine(tmp_path, provider)
    sub = engine.bus.subscribe()

    async def interrupt_soon():
        while not provider.requests:
            await asyncio.sleep(0.01)
        await asyncio.sleep(0.05)
        engine.interrupt()

    asyncio.ensure_future(interrupt_soon())
    await asyncio.wait_for(engine.run_turn("hi"), timeout=5)

    assert engine.history == []
    assert "interrupted" in kinds(sub)


@pytest.mark.asyncio
async def test_cancel_flag_resets_on_next_turn(tmp_path):
    provider = ScriptedProvider([TextDelta("one"), Final()], [TextDelta("two"), Final()])
    engine, _ = make_engine(tmp_path, provider)
    engine.interrupt()

    await engine.run_turn("first")
    await engine.run_turn("second")

    assert [m.text() for m in engine.history if m.role == "assistant"] == ["one", "two"]


@pytest.mark.asyncio
async def test_stream_failure_discards_partial_answer(tmp_path):
    provider = ScriptedProvider([TextDelta("partial"), ProviderError("connection reset")])
    engine, _ = make_engine(tmp_path, provider)

    await engine.run_turn("hi")

    assert engine.history == []
    assert not engine.running


@pytest.mark.asyncio
async def test_stream_failure_after_tools_keeps_results_paired(tmp_path):
    provider = ScriptedProvider(
        [call("a", "read_dir", path="."), Final()],
        [TextDelta("half"), ProviderError("boom")],
    )
    engine, _ = make_engine(tmp_path, provider)

    await engine.run_turn("look around")

    assert [m.role for m in engine.history] == ["user", "assistant", "user"]
    assert engine.history[-1].results()[0].id == "a"
    assert unanswered_tool_calls(engine.history) == []


@pytest.mark.asyncio
async def test_interrupt_during_stream_after_tools_keeps_results_paired(tmp_path):
    provider = ScriptedProvider(
        [call("a", "read_dir", path="."), Final()],
        [TextDelta("half"), HANG],
    )
    engine, _ = make_engine(tmp_path, provider)

    async def interrupt_in_second_round():
        while len(provider.requests) < 2:
            await asyncio.sleep(0.01)
        await asyncio.sleep(0.05)
        engine.interrupt()

    asyncio.ensure_future(interrupt_in_second_round())
    await asyncio.wait_for(engine.run_turn("look around"), timeout=5)

    assert [m.role for m in engine.history] == ["user", "assistant", "user"]
    assert engine.history[-1].results()[0].id == "a"
    assert unanswered_tool_calls(engine.history) == []


@pytest.mark.asyncio
async def test_interrupt_while_confirming_skips_execution(tmp_path):
    provider = ScriptedProvider([
        call("a", "create_file", path="x.txt", contents="x"),
        call("b", "read_file", path="x.txt"),
        Final(),
    ])
    engine, _ = make_engine(tmp_path, provider)

    async def interrupt_then_approve(text):
        engine.interrupt()
        return "y"

    engine.gate.prompter = interrupt_then_approve
    await engine.run_turn("make x")

    assert len(provider.requests) == 1
    assert results_of(engine.history[-1]) == [INTERRUPTED, SKIPPED_INTERRUPTED]
    assert not (tmp_path / "x.txt").exists()


@pytest.mark.asyncio
async def test_chained_command_is_not_covered_by_approved_binary(tmp_path):
    provider = ScriptedProvider([call("a", "run_cmd", command="ls && touch pwned"), Final()])
    engine, prompter = make_engine(tmp_path, provider, "n", approved=[CommandPattern("ls")])

    await engine.run_turn("list")

    assert len(prompter.prompts) == 1
    assert not (tmp_path / "pwned").exists()
    assert results_of(engine.history[-1]) == [REJECTED]


@pytest.mark.asyncio
async def test_unexpected_error_keeps_outputs_of_calls_that_ran(tmp_path):
    (tmp_path / "a.txt").write_text("content", encoding="utf-8")
    provider = ScriptedProvider([
        call("a", "read_file", path="a.txt"),
        call("b", "create_file", path="x.txt", contents="x"),
        call("c", "read_dir", path="."),
        Final(),
    ])
    engine, _ = make_engine(tmp_path, provider)

    async def broken_terminal(text):
        raise RuntimeError("terminal went away")

    engine.gate.prompter = broken_terminal
    await engine.run_turn("go")

    assert not engine.running
    assert results_of(engine.history[-1]) == [
        "content",
        "error: terminal went away",
        "error: terminal went away",
    ]
    assert unanswered_tool_calls(engine.history) == []


@pytest.mark.asyncio
async def test_round_trip_cap(tmp_path):
    rounds = [[call(f"c{i}", "read_dir", path="."), Final()] for i in range(5)]
    provider = ScriptedProvider(*rounds)
    engine, _ = make_engine(tmp_path, provider, max_round_trips=3)

    await engine.run_turn("loop forever")

    assert len(provider.requests) == 3
    assert engine.history[-1].role == "user"
    assert unanswered_tool_calls(engine.history) == []


@pytest.mark.asyncio
async def test_always_allow_then_auto_approve(tmp_path):
    provider = ScriptedProvider(
        [call("a", "run_cmd", command="echo one"), Final()],
        [call("b", "run_cmd", command="echo one more"), Final()],
        [Final()],
    )
    engine, prompter = make_engine(tmp_path, provider, "a")

    await engine.run_turn("echo twice")

    assert len(prompter.prompts) == 1
    outputs = [json.loads(r.content)["stdout"] for m in engine.history for r in m.results()]
    assert outputs == ["one\n", "one more\n"]
    assert "echo one .*" in engine.approvals_summary()


@pytest.mark.asyncio
async def test_new_session(tmp_path):
    provider = ScriptedProvider([TextDelta("hi"), Final({"total_tokens": 10})])
    engine, _ = make_engine(tmp_path, provider)
    await engine.run_turn("hello")
    old_dir = engine.transcript.session_dir
    sub = engine.bus.subscribe()

    engine.new_session()

    assert engine.history == []
    assert engine.tokens_in_context is None
    assert engine.transcript.session_dir != old_dir
    assert kinds(sub) == ["new_session"]


def test_format_tokens():
    assert format_tokens(None) == "~0 tokens"
    assert format_tokens(950) == "~950 tokens"
    assert format_tokens(1234) == "~1.2k tokens"
