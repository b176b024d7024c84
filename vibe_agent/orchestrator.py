"""Tool-calling conversation loop.

One user message drives an explicit loop: stream a model turn, run any tool
calls it asked for in order, send the results back as the next turn, and stop
when a turn asks for no tools (or the round cap is hit, or the user cancels).

Each turn owns its cancel event. A message sent right after `stop()` waits
for the stopped turn to unwind instead of sharing its chat history.
"""

import asyncio
import logging
import time
from contextlib import aclosing
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Dict, List, Optional

from vibe_agent.assist import PromptAssistant
from vibe_agent.chat import ChatSession, ToolResult, TurnInput
from vibe_agent.system_prompt import SYSTEM_PROMPT
from vibe_agent.tools import ToolExecutor, tool_catalog
from vibeprompt.errors import AgentBusy

logger = logging.getLogger(__name__)

DEFAULT_MAX_TOOL_ROUNDS = 20


class AgentState(str, Enum):
    IDLE = "idle"
    THINKING = "thinking"
    EXECUTING_TOOL = "tool"


@dataclass
class AgentActivity:
    state: AgentState = AgentState.IDLE
    tool_name: Optional[str] = None
    description: Optional[str] = None


@dataclass
class ChatMessage:
    role: str
    text: str
    timestamp: float = field(default_factory=time.time)
    is_error: bool = False
    tool_calls: List[Dict[str, Any]] = field(default_factory=list)
    tool_results: List[Dict[str, Any]] = field(default_factory=list)


@dataclass
class AgentEvent:
    kind: str  # "message_added" | "message_updated" | "activity"
    message: Optional[ChatMessage] = None
    activity: Optional[AgentActivity] = None


class ToolRoundLimitExceeded(RuntimeError):
    pass


class AgentOrchestrator:
    def __init__(
        self,
        executor: ToolExecutor,
        session_factory: Callable[[], ChatSession],
        max_tool_rounds: int = DEFAULT_MAX_TOOL_ROUNDS,
        on_event: Optional[Callable[[AgentEvent], None]] = None,
    ):
        self.executor = executor
        self.session_factory = session_factory
        self.max_tool_rounds = max_tool_rounds
        self.on_event = on_event
        self.messages: List[ChatMessage] = []
        self.activity = AgentActivity()
        self._session: Optional[ChatSession] = None
        self._cancel: Optional[asyncio.Event] = None
        # set by the running turn, cleared only when it has fully unwound
        self._in_flight: Optional[asyncio.Event] = None

    @property
    def state(self) -> AgentState:
        return self.activity.state

    @property
    def in_flight(self) -> bool:
        return self._in_flight is not None

    def _emit(self, kind: str, message: Optional[ChatMessage] = None):
        if self.on_event is not None:
            self.on_event(AgentEvent(kind=kind, message=message, activity=self.activity))

    def _append(self, message: ChatMessage) -> ChatMessage:
        self.messages.append(message)
        self._emit("message_added", message)
        return message

    def _set_activity(self, state: AgentState, tool_name: Optional[str] = None):
        description = f"Running {tool_name}..." if tool_name else None
        self.activity = AgentActivity(state=state, tool_name=tool_name, description=description)
        self._emit("activity")

    async def start(self, initial_message: Optional[str] = None):
        self._session = self.session_factory()
        self.messages = []
        if initial_message:
            await self.send_message(initial_message)

    async def send_message(self, text: str) -> None:
        if self.state is not AgentState.IDLE:
            raise AgentBusy("The agent is still working on the previous message")
        while self._in_flight is not None:
            await self._in_flight.wait()

        done = asyncio.Event()
        cancel = asyncio.Event()
        self._in_flight = done
        self._cancel = cancel
        project = self.executor.session
        try:
            with project.operation():
                await self._run_turn(text, cancel)
        finally:
            self._cancel = None
            self._in_flight = None
            done.set()

    async def _run_turn(self, text: str, cancel: asyncio.Event) -> None:
        self._append(ChatMessage(role="user", text=text))
        self._set_activity(AgentState.THINKING)
        reply: Optional[ChatMessage] = None

        try:
            if self._session is None:
                self._session = self.session_factory()

            turn_input: TurnInput = text
            rounds = 0
            while True:
                if reply is None:
                    reply = self._append(ChatMessage(role="model", text=""))
                calls = await self._consume_turn(turn_input, reply, cancel)
                if cancel.is_set() or not calls:
                    break

                rounds += 1
                if rounds > self.max_tool_rounds:
                    raise ToolRoundLimitExceeded(
                        f"Agent stopped after {self.max_tool_rounds} tool rounds without finishing."
                    )

                reply.tool_calls.extend({"name": c.name, "args": c.parsed_args()} for c in calls)
                self._emit("message_updated", reply)

                results = await self._run_tools(calls, reply, cancel)
                if cancel.is_set():
                    break
                turn_input = results
        except Exception as e:
            logger.exception("Agent turn failed")
            if reply is not None and not reply.text and not reply.tool_calls:
                self.messages.remove(reply)
            self._append(ChatMessage(role="model", text=f"Error: {e}", is_error=True))
        finally:
            self._set_activity(AgentState.IDLE)

    async def _consume_turn(self, turn_input: TurnInput, reply: ChatMessage, cancel: asyncio.Event):
        calls = []
        async with aclosing(self._session.send_stream(turn_input)) as stream:
            async for chunk in stream:
                if cancel.is_set():
                    break
                if chunk.text:
                    reply.text += chunk.text
                    self._emit("message_updated", reply)
                calls.extend(chunk.function_calls)
        return calls

    async def _run_tools(self, calls, reply: ChatMessage, cancel: asyncio.Event) -> List[ToolResult]:
        results = []
        for call in calls:
            if cancel.is_set():
                logger.info("Skipping %s: agent stopped", call.name)
                break
            self._set_activity(AgentState.EXECUTING_TOOL, call.name)
            response = await self.executor.run(call.name, call.arguments)
            results.append(ToolResult(call_id=call.id, name=call.name, response=response))
            reply.tool_results.append({"name": call.name, "result": response})
            self._emit("message_updated", reply)
            if not cancel.is_set():
                self._set_activity(AgentState.THINKING)
        return results

    def stop(self):
        if self._cancel is not None:
            self._cancel.set()
        self._set_activity(AgentState.IDLE)

    def clear(self):
        self.messages = []
        self._session = None

    def last_reply(self) -> Optional[ChatMessage]:
        for message in reversed(self.messages):
            if message.role == "model":
                return message
        return None

    async def close(self):
        if self._session is not None:
            await self._session.close()
        self._session = None


def create_agent(session, settings, on_event: Optional[Callable[[AgentEvent], None]] = None) -> AgentOrchestrator:
    """Wire an orchestrator to a project session using the loaded settings."""
    assistant = PromptAssistant(model=settings.model, fast_model=settings.fast_model,
                                api_key=settings.openai_api_key)
    executor = ToolExecutor(session, assistant=assistant, read_limit=settings.read_limit)

    def session_factory():
        return ChatSession(
            model=settings.model,
            system_instruction=SYSTEM_PROMPT,
            tools=tool_catalog(),
            client=assistant.client,
        )

    return AgentOrchestrator(
        executor,
        session_factory,
        max_tool_rounds=settings.max_tool_rounds,
        on_event=on_event,
    )
