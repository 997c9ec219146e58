from __future__ import annotations

import asyncio
import json
import logging
import threading
import urllib.error
import urllib.request
import uuid
from dataclasses import dataclass, field
from typing import Any, AsyncIterator

from .base import Final, ProviderError, ReasoningDelta, StreamItem, TextDelta, ToolCallItem
from ..session.models import Message, Reasoning, Text, ToolCall, ToolResult

logger = logging.getLogger(__name__)


def _decode_arguments(arg_str: str) -> Any:
    # Invalid JSON is kept raw so the engine can report a parse error for it.
    if not arg_str.strip():
        return {}
    try:
        return json.loads(arg_str)
    except json.JSONDecodeError:
        return arg_str


class SSEAccumulator:
    """Incremental decoder for OpenAI-compatible ``data:`` lines.

    Text and reasoning deltas are returned as soon as they are seen; tool calls
    are streamed as fragments keyed by index and only handed out by
    :meth:`finish`, complete and in index order, followed by ``Final``.
    """

    def __init__(self) -> None:
        self.done = False
        self.usage: dict[str, Any] = {}
        self._tc_by_index: dict[int, dict[str, str]] = {}

    def feed(self, raw_line: bytes | str) -> list[StreamItem]:
        line = raw_line.decode("utf-8", errors="replace") if isinstance(raw_line, bytes) else raw_line
        line = line.strip()
        if not line.startswith("data:"):
            return []
        data_str = line[len("data:"):].strip()
        if data_str == "[DONE]":
            self.done = True
            return []
        try:
            ev = json.loads(data_str)
        except json.JSONDecodeError:
            logger.debug("skipping undecodable SSE line: %.200s", data_str)
            return []
        if not isinstance(ev, dict):
            return []
        if ev.get("error"):
            raise ProviderError(f"provider error: {ev['error']}")
        if isinstance(ev.get("usage"), dict):
            self.usage = ev["usage"]

        out: list[StreamItem] = []
        choices = ev.get("choices") or []
        if not choices:
            return out
        delta = choices[0].get("delta") or {}
        if delta.get("reasoning_content"):
            out.append(ReasoningDelta(str(delta["reasoning_content"])))
        if delta.get("content"):
            out.append(TextDelta(str(delta["content"])))
        for tc in delta.get("tool_calls") or []:
            idx = int(tc.get("index", 0))
            cur = self._tc_by_index.setdefault(idx, {"id": "", "name": "", "arguments": ""})
            if tc.get("id"):
                cur["id"] = tc["id"]
            fn = tc.get("function") or {}
            if fn.get("name"):
                cur["name"] = fn["name"]
            if fn.get("arguments"):
                cur["arguments"] += str(fn["arguments"])
        return out

    def finish(self) -> list[StreamItem]:
        out: list[StreamItem] = []
        for idx in sorted(self._tc_by_index):
            tc = self._tc_by_index[idx]
            call_id = tc["id"] or f"call_{uuid.uuid4().hex[:24]}"
            out.append(ToolCallItem(ToolCall(id=call_id, name=tc["name"], arguments=_decode_arguments(tc["arguments"]))))
        self._tc_by_index.clear()
        out.append(Final(usage=dict(self.usage)))
        return out


def message_to_wire(msg: Message, *, include_reasoning: bool = False) -> list[dict[str, Any]]:
    if msg.role == "user":
        out: list[dict[str, Any]] = []
        texts = [c.text for c in msg.content if isinstance(c, Text)]
        if texts:
            out.append({"role": "user", "content": "".join(texts)})
        for r in msg.content:
            if isinstance(r, ToolResult):
                out.append({"role": "tool", "tool_call_id": r.id, "content": r.content})
        return out

    wire: dict[str, Any] = {"role": "assistant", "content": msg.text() or None}
    calls = msg.tool_calls()
    if calls:
        wire["tool_calls"] = [
            {
                "id": tc.id,
                "type": "function",
                "function": {
                    "name": tc.name,
                    "arguments": tc.arguments if isinstance(tc.arguments, str) else json.dumps(tc.arguments, ensure_ascii=False),
                },
            }
            for tc in calls
        ]
    if include_reasoning:
        reasoning = "".join(c.reasoning for c in msg.content if isinstance(c, Reasoning))
        if reasoning:
            wire["reasoning_content"] = reasoning
    return [wire]


def build_messages(
    preamble: str,
    history: list[Message],
    prompt: Message,
    *,
    include_reasoning: bool = False,
) -> list[dict[str, Any]]:
    messages: list[dict[str, Any]] = [{"role": "system", "content": preamble}]
    for m in [*history, prompt]:
        messages.extend(message_to_wire(m, include_reasoning=include_reasoning))
    return messages


@dataclass
class OpenAICompatProvider:
    """
    Streaming OpenAI-compatible Chat Completions client.
    Works with OpenAI and many compatible gateways (OpenRouter, vLLM, LM Studio, etc.)
    """
    model: str
    base_url: str
    api_key: str
    provider_name: str = "openai"
    temperature: float = 0.2
    timeout: float = 120
    extra_headers: dict[str, str] = field(default_factory=dict)

    @property
    def include_reasoning(self) -> bool:
        # deepseek rejects follow-up requests that drop reasoning_content.
        return "deepseek" in self.provider_name.lower() or "deepseek" in self.model.lower()

    def _request(self, messages: list[dict[str, Any]], tools: list[dict[str, Any]]) -> urllib.request.Request:
        url = self.base_url.rstrip("/") + "/chat/completions"
        payload: dict[str, Any] = {
            "model": self.model,
            "messages": messages,
            "temperature": self.temperature,
            "stream": True,
            "stream_options": {"include_usage": True},
        }
        if tools:
            payload["tools"] = tools
            payload["tool_choice"] = "auto"
        headers = {
            "Content-Type": "application/json",
            "Accept": "text/event-stream",
            "Authorization": f"Bearer {self.api_key}",
            **self.extra_headers,
        }
        return urllib.request.Request(url, data=json.dumps(payload).encode("utf-8"), headers=headers, method="POST")

    async def stream(
        self,
        prompt: Message,
        history: list[Message],
        *,
        preamble: str,
        tools: list[dict[str, Any]],
    ) -> AsyncIterator[StreamItem]:
        if not self.api_key:
            raise ProviderError("Missing API key. Set PYAGX_API_KEY (or --api-key).")

        messages = build_messages(preamble, history, prompt, include_reasoning=self.include_reasoning)
        req = self._request(messages, tools)
        logger.info("POST %s model=%s messages=%d tools=%d", req.full_url, self.model, len(messages), len(tools))

        loop = asyncio.get_running_loop()
        queue: asyncio.Queue[tuple[str, Any]] = asyncio.Queue()
        stop = threading.Event()
        holder: dict[str, Any] = {}

        def put(kind: str, value: Any) -> None:
            try:
                loop.call_soon_threadsafe(queue.put_nowait, (kind, value))
            except RuntimeError:
                # loop already closed; nobody is listening any more
                pass

        def reader() -> None:
            try:
                with urllib.request.urlopen(req, timeout=self.timeout) as resp:
                    holder["resp"] = resp
                    for raw_line in resp:
                        if stop.is_set():
                            return
                        put("line", raw_line)
                put("end", None)
            except urllib.error.HTTPError as e:
                body = e.read().decode("utf-8", errors="replace") if hasattr(e, "read") else ""
                put("error", ProviderError(f"Provider HTTPError {e.code}: {e.reason}\n{body}"))
            except urllib.error.URLError as e:
                put("error", ProviderError(f"Provider URLError: {e}"))
            except (OSError, ValueError) as e:
                if not stop.is_set():
                    put("error", ProviderError(f"Provider stream failed: {e}"))

        thread = threading.Thread(target=reader, name="pyagx-sse-reader", daemon=True)
        thread.start()

        acc = SSEAccumulator()
        try:
            while not acc.done:
                kind, value = await queue.get()
                if kind == "error":
                    raise value
                if kind == "end":
                    break
                for item in acc.feed(value):
                    yield item
            for item in acc.finish():
                yield item
        finally:
            stop.set()
            resp = holder.get("resp")
            if resp is not None:
                try:
                    resp.close()
                except OSError:
                    logger.debug("error closing provider response", exc_info=True)
