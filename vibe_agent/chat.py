import json
import logging
from dataclasses import dataclass, field
from typing import Any, AsyncIterator, Dict, List, Optional, Union

from openai import AsyncOpenAI

logger = logging.getLogger(__name__)


@dataclass
class FunctionCall:
    id: str
    name: str
    arguments: str = ""

    def parsed_args(self) -> Any:
        try:
            return json.loads(self.arguments) if self.arguments else {}
        except json.JSONDecodeError:
            return self.arguments


@dataclass
class TurnChunk:
    text: str = ""
    function_calls: List[FunctionCall] = field(default_factory=list)


@dataclass
class ToolResult:
    call_id: str
    name: str
    response: Dict[str, Any]


TurnInput = Union[str, List[ToolResult]]


class ChatSession:
    """Persistent conversation with the model: system prompt, tools and history.

    Chat completions are stateless, so the session keeps the message history
    itself and replays it on every turn.
    """

    def __init__(
        self,
        model: str,
        system_instruction: str,
        tools: List[dict],
        client: Optional[AsyncOpenAI] = None,
        api_key: Optional[str] = None,
    ):
        self.model = model
        self.tools = tools
        self.api_key = api_key
        self._client = client
        self.history: List[dict] = [{"role": "system", "content": system_instruction}]
        self._pending_calls: List[FunctionCall] = []

    async def connect(self):
        self._client = AsyncOpenAI(api_key=self.api_key)

    async def close(self):
        if self._client is not None:
            await self._client.close()
        self._client = None

    async def __aenter__(self):
        await self.connect()
        return self

    async def __aexit__(self, exc_type, exc, tb):
        await self.close()

    def _append_input(self, message: TurnInput):
        if isinstance(message, str):
            # a cancelled turn may have left calls without answers
            for call in self._pending_calls:
                self._append_result(ToolResult(call.id, call.name, {"error": "Cancelled by user"}))
            self._pending_calls = []
            self.history.append({"role": "user", "content": message})
            return

        answered = {r.call_id for r in message}
        for result in message:
            self._append_result(result)
        for call in self._pending_calls:
            if call.id not in answered:
                self._append_result(ToolResult(call.id, call.name, {"error": "Cancelled by user"}))
        self._pending_calls = []

    def _append_result(self, result: ToolResult):
        self.history.append({
            "role": "tool",
            "tool_call_id": result.call_id,
            "content": json.dumps(result.response),
        })

    def _record_reply(self, text: str, calls: List[FunctionCall]):
        message: Dict[str, Any] = {"role": "assistant", "content": text or None}
        if calls:
            message["tool_calls"] = [
                {
                    "id": call.id,
                    "type": "function",
                    "function": {"name": call.name, "arguments": call.arguments or "{}"},
                }
                for call in calls
            ]
        if text or calls:
            self.history.append(message)
        self._pending_calls = list(calls)

    async def send_stream(self, message: TurnInput) -> AsyncIterator[TurnChunk]:
        """Submit one turn and yield text increments, then any function calls."""
        if self._client is None:
            await self.connect()

        self._append_input(message)
        stream = await self._client.chat.completions.create(
            model=self.model,
            messages=self.history,
            tools=self.tools,
            tool_choice="auto",
            stream=True,
        )

        text_parts: List[str] = []
        pending: Dict[int, FunctionCall] = {}
        recorded = False
        try:
            async for chunk in stream:
                if not chunk.choices:
                    continue
                delta = chunk.choices[0].delta
                for tc in delta.tool_calls or []:
                    call = pending.setdefault(tc.index, FunctionCall(id="", name=""))
                    if tc.id:
                        call.id = tc.id
                    if tc.function is not None:
                        call.name += tc.function.name or ""
                        call.arguments += tc.function.arguments or ""
                if delta.content:
                    text_parts.append(delta.content)
                    yield TurnChunk(text=delta.content)

            calls = [pending[i] for i in sorted(pending)]
            self._record_reply("".join(text_parts), calls)
            recorded = True
            if calls:
                logger.debug("Model requested %d tool call(s)", len(calls))
                yield TurnChunk(function_calls=calls)
        finally:
            if not recorded:
                # stopped mid-stream: keep the partial text, drop half-built calls
                self._record_reply("".join(text_parts), [])
            await stream.close()
