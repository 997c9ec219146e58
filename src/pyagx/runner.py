from __future__ import annotations

import logging
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, AsyncIterator

from rich.console import Console
from rich.markup import escape

from .events.bus import EventBus
from .events.models import DebugEvent
from .llm.base import CompletionProvider, Final, ReasoningDelta, TextDelta, ToolCallItem
from .session.models import Message, Reasoning, Text, ToolCall, ToolResult, unanswered_tool_calls
from .session.store import TranscriptStore
from .tools.base import ToolCallParseError, ToolContext, ToolError
from .tools.builtin import default_registry
from .tools.invocation import ToolInvocation, execute, parse_tool_call, validate
from .tools.permissions import Decision, PermissionGate, PermissionStore
from .tools.registry import ToolRegistry
from .util.cancel import CancelToken, Interrupted

logger = logging.getLogger(__name__)

console = Console()

MAX_ROUND_TRIPS = 30

SYSTEM_PROMPT = """You are pyagx, a coding assistant working inside the user's project directory.
Rules:
- Use the provided tools to inspect files and run commands when needed.
- Prefer read_dir / read_file before editing files.
- Use edit_file for targeted changes and create_file only for new files.
- All paths are relative to the project directory; never use absolute paths or '..'.
- Do not fabricate file contents or command outputs: use tools.
- Keep tool arguments minimal and correct.
"""

PARSE_FAILED = "failed to parse tool call: {}"
REJECTED = "user rejected tool call"
SKIPPED_REJECTED = "tool call skipped because user rejected a previous tool call"
FEEDBACK = "user rejected tool call with feedback: {}"
SKIPPED_FEEDBACK = "tool call skipped because user provided feedback on a previous tool call"
INTERRUPTED = "tool call interrupted by user"
SKIPPED_INTERRUPTED = "tool call skipped because user interrupted a previous tool call"


async def _next_item(it: AsyncIterator[Any]) -> Any:
    # StopAsyncIteration must not escape a Task, so map end-of-stream to None.
    try:
        return await it.__anext__()
    except StopAsyncIteration:
        return None


async def _aclose(it: AsyncIterator[Any]) -> None:
    aclose = getattr(it, "aclose", None)
    if aclose is None:
        return
    try:
        await aclose()
    except RuntimeError:
        logger.debug("couldn't close completion stream", exc_info=True)


def format_tokens(n: int | None) -> str:
    if not n:
        return "~0 tokens"
    if n < 1000:
        return f"~{n} tokens"
    return f"~{n / 1000:.1f}k tokens"


class TurnEngine:
    """Owns the conversation history and drives one exchange at a time.

    ``run_turn`` never raises for ordinary failures: provider errors, tool
    errors, rejections and interrupts all end the turn with a message and
    leave every issued tool call paired with exactly one result.
    """

    def __init__(
        self,
        provider: CompletionProvider,
        *,
        cwd: Path,
        permissions: PermissionStore,
        gate: PermissionGate | None = None,
        bus: EventBus | None = None,
        transcript: TranscriptStore | None = None,
        registry: ToolRegistry | None = None,
        system_prompt: str = SYSTEM_PROMPT,
        max_round_trips: int = MAX_ROUND_TRIPS,
        cmd_timeout: float = 120,
    ):
        self.provider = provider
        self.cwd = cwd
        self.permissions = permissions
        self.gate = gate or PermissionGate(permissions)
        self.bus = bus or EventBus()
        self.transcript = transcript
        self.registry = registry or default_registry()
        self.system_prompt = system_prompt
        self.max_round_trips = max_round_trips
        self.tool_ctx = ToolContext(cwd=str(cwd), cmd_timeout=cmd_timeout)

        self.history: list[Message] = []
        self.cancel = CancelToken()
        self.tokens_in_context: int | None = None
        self._running = False
        # Results of the batch currently being resolved.
        self._batch_results: list[ToolResult] = []

    # ---- session-level entry points ----

    @property
    def running(self) -> bool:
        return self._running

    def interrupt(self) -> bool:
        """Request cancellation of the in-flight turn.

        Returns False if a cancellation was already pending.
        """
        return self.cancel.cancel()

    def new_session(self) -> Path | None:
        self.history.clear()
        self.tokens_in_context = None
        session_dir = self.transcript.new_session() if self.transcript else None
        self.bus.publish(DebugEvent.new_session())
        logger.info("new session started (%s)", session_dir)
        return session_dir

    def approvals_summary(self) -> str:
        return str(self.permissions.record)

    def preamble(self) -> str:
        now = datetime.now(timezone.utc).strftime("%A, %B %d, %Y %H:%M UTC")
        return (
            f"{self.system_prompt}\n\n---\nExtra information for you\n"
            f"Current directory: {self.cwd}\n"
            f"Current date/time: {now}\n"
        )

    async def run_turn(self, user_text: str) -> None:
        if self._running:
            raise RuntimeError("a turn is already in progress")
        self._running = True
        self.cancel.reset()
        self._batch_results = []
        logger.info("turn started (%d messages in history)", len(self.history))
        try:
            await self._run(Message.user(user_text))
        except Exception as e:
            logger.exception("turn failed")
            console.print(f"[red]error: {escape(str(e))}[/red]")
            self._close_unanswered(f"error: {e}")
        finally:
            self._running = False
            self.bus.publish(DebugEvent.turn_complete(self.history))
            if self.transcript is not None:
                self.transcript.save(self.history)

    # ---- turn algorithm ----

    async def _run(self, prompt: Message) -> None:
        for _ in range(self.max_round_trips):
            streamed = await self._stream_round(prompt)
            if streamed is None:
                # Results already handed out for issued calls must stay in history.
                if prompt.results():
                    self.history.append(prompt)
                return

            text, reasoning, calls = streamed
            self.history.append(prompt)
            content: list[Any] = []
            if reasoning:
                content.append(Reasoning(reasoning))
            if text:
                content.append(Text(text))
            content.extend(calls)
            if text or calls:
                self.history.append(Message(role="assistant", content=content))

            if not calls:
                return

            results, proceed = await self._run_batch(calls)
            if not proceed:
                self.history.append(Message.tool_results(results))
                return
            prompt = Message.tool_results(results)

        logger.warning("round-trip limit (%d) reached", self.max_round_trips)
        console.print(f"[yellow]stopping: reached the limit of {self.max_round_trips} model round-trips for one turn[/yellow]")
        self.history.append(prompt)

    async def _stream_round(self, prompt: Message) -> tuple[str, str, list[ToolCall]] | None:
        """Stream one completion. Returns None if the round was aborted."""
        self.bus.publish(DebugEvent.llm_request(prompt, self.history))

        text_parts: list[str] = []
        reasoning_parts: list[str] = []
        calls: list[ToolCall] = []
        stream = self.provider.stream(
            prompt,
            list(self.history),
            preamble=self.preamble(),
            tools=self.registry.to_openai(),
        ).__aiter__()
        try:
            while True:
                item = await self.cancel.race(_next_item(stream))
                if item is None:
                    break
                if isinstance(item, TextDelta):
                    if reasoning_parts and not text_parts:
                        console.print()
                    text_parts.append(item.text)
                    console.print(item.text, end="", markup=False, highlight=False)
                elif isinstance(item, ReasoningDelta):
                    reasoning_parts.append(item.reasoning)
                    console.print(item.reasoning, end="", style="dim italic", markup=False, highlight=False)
                elif isinstance(item, ToolCallItem):
                    calls.append(item.tool_call)
                    self.bus.publish(DebugEvent.tool_call(item.tool_call))
                elif isinstance(item, Final):
                    if item.total_tokens is not None:
                        self.tokens_in_context = item.total_tokens
                    break
        except Interrupted:
            console.print()
            console.print("[yellow]interrupted[/yellow]")
            logger.info("stream interrupted by user")
            self.bus.publish(DebugEvent.interrupted())
            return None
        except Exception as e:
            console.print()
            logger.exception("completion stream failed")
            console.print(f"[red]error: {escape(str(e))}[/red]")
            return None
        finally:
            await _aclose(stream)

        if text_parts or reasoning_parts:
            console.print()
        text = "".join(text_parts)
        reasoning = "".join(reasoning_parts)
        if reasoning:
            self.bus.publish(DebugEvent.reasoning(Reasoning(reasoning)))
        if text:
            self.bus.publish(DebugEvent.assistant_text(text))
        self.bus.publish(DebugEvent.stream_complete())
        return text, reasoning, calls

    async def _run_batch(self, calls: list[ToolCall]) -> tuple[list[ToolResult], bool]:
        """Resolve every call in ``calls`` to exactly one result.

        The flag says whether the results go back to the model.
        """
        results: list[ToolResult] = []
        self._batch_results = results
        for i, call in enumerate(calls):
            remaining = calls[i + 1:]

            if self.cancel.is_cancelled():
                self._abort_batch(results, call, remaining, INTERRUPTED, SKIPPED_INTERRUPTED)
                return results, False

            try:
                inv = parse_tool_call(call, self.registry)
            except ToolCallParseError as e:
                console.print(f"[red]{escape(PARSE_FAILED.format(e))}[/red]")
                results.append(self._result(call, PARSE_FAILED.format(e)))
                continue

            try:
                validate(inv)
                confirmation = await self.gate.confirm(inv, self.tool_ctx)
            except ToolError as e:
                console.print(f"[red]error: {escape(str(e))}[/red]")
                results.append(self._result(call, f"error: {e}"))
                continue

            if confirmation.decision is Decision.REJECTED:
                self._abort_batch(results, call, remaining, REJECTED, SKIPPED_REJECTED)
                return results, False
            if confirmation.decision is Decision.FEEDBACK:
                self._abort_batch(
                    results, call, remaining, FEEDBACK.format(confirmation.feedback), SKIPPED_FEEDBACK,
                )
                return results, True
            if self.cancel.is_cancelled():
                self._abort_batch(results, call, remaining, INTERRUPTED, SKIPPED_INTERRUPTED)
                return results, False

            try:
                output = await self._execute(inv)
            except Interrupted:
                console.print("[yellow]interrupted[/yellow]")
                logger.info("tool call %s interrupted by user", call.id)
                self.bus.publish(DebugEvent.interrupted())
                self._abort_batch(results, call, remaining, INTERRUPTED, SKIPPED_INTERRUPTED)
                return results, False
            results.append(self._result(call, output))

        return results, True

    async def _execute(self, inv: ToolInvocation) -> str:
        console.print(f"[cyan]> {escape(inv.summary())}[/cyan]")
        try:
            output = await self.cancel.race(execute(inv, self.tool_ctx))
        except Interrupted:
            raise
        except Exception as e:
            logger.exception("tool %s raised", inv.summary())
            output = f"error: {e}"
        if output.startswith("error: "):
            console.print(f"[red]{escape(output)}[/red]")
        return output

    def _result(self, call: ToolCall, content: str) -> ToolResult:
        r = ToolResult(id=call.id, content=content, call_id=call.call_id)
        self.bus.publish(DebugEvent.tool_result(r))
        return r

    def _abort_batch(
        self,
        results: list[ToolResult],
        call: ToolCall,
        remaining: list[ToolCall],
        text: str,
        skipped_text: str,
    ) -> None:
        results.append(self._result(call, text))
        for other in remaining:
            results.append(self._result(other, skipped_text))

    def _close_unanswered(self, text: str) -> None:
        pending = unanswered_tool_calls(self.history)
        if pending:
            # Calls that already ran keep their real output.
            done = {r.id: r for r in self._batch_results}
            self.history.append(Message.tool_results([done.get(tc.id) or self._result(tc, text) for tc in pending]))
        self._batch_results = []
