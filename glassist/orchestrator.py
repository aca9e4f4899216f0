"""
TurnOrchestrator: runs one chat turn from request to stored transcript.

A turn moves through a fixed sequence of states:

    RESOLVING_CHAT → LOADING_HISTORY → VALIDATING → STREAMING → PERSISTING → DONE

with FAILED as the absorbing error state. All per-turn data lives on a
Turn object, so one orchestrator can serve any number of concurrent
requests.

Usage (async generator, yields dicts):

    orch = TurnOrchestrator(store, registry, backend)
    chat_id = orch.resolve_chat(body.get("chatId"))
    async for event in orch.run_turn(chat_id, messages):
        print(event)   # {type: "start"|"text-delta"|"tool-call"|"tool-result"|"finish-step"|"finish"|"error", ...}
"""
from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import AsyncGenerator

from pydantic import ValidationError

from glassist.backends.base import BaseBackend
from glassist.config import get_config
from glassist.errors import ChatNotFoundError, HistoryValidationError
from glassist.storage.models import ROLES, Message, ToolCall
from glassist.storage.sqlite_store import SQLiteStore
from glassist.tools.registry import ToolRegistry

logger = logging.getLogger(__name__)

MAX_STEPS = 5

DEFAULT_SYSTEM_PROMPT = (
    "You are Xmasih, a helpful assistant for managing GitLab projects, groups "
    "and README files. Use the available tools to act on the user's behalf and "
    "report results clearly."
)


class TurnState(str, Enum):
    RESOLVING_CHAT = "resolving_chat"
    LOADING_HISTORY = "loading_history"
    VALIDATING = "validating"
    STREAMING = "streaming"
    PERSISTING = "persisting"
    DONE = "done"
    FAILED = "failed"


@dataclass
class Turn:
    """Transient state for a single request. Never shared between requests."""
    chat_id: str
    new_messages: list[Message]
    state: TurnState = TurnState.RESOLVING_CHAT
    working: list[Message] = field(default_factory=list)
    history_discarded: bool = False
    steps: int = 0
    capped: bool = False
    persisted: bool = False


def _ev(type_: str, **kw) -> dict:
    return {"type": type_, **kw}


# ── History validation ────────────────────────────────────────────────────────

def validate_messages(messages: list[Message], registry: ToolRegistry):
    """
    Check a candidate transcript against the closed role set and the
    tool input schemas. Raises HistoryValidationError on the first problem.
    Calls recorded as errors are not schema-checked; their input is
    whatever the model sent, which may never have been valid.
    """
    for i, msg in enumerate(messages):
        if msg.role not in ROLES:
            raise HistoryValidationError(f"message {i}: unknown role {msg.role!r}")
        if not isinstance(msg.content, str):
            raise HistoryValidationError(f"message {i}: content must be text")
        if msg.metadata is not None and not isinstance(msg.metadata, dict):
            raise HistoryValidationError(f"message {i}: metadata must be an object")
        if msg.tool_calls and msg.role != "assistant":
            raise HistoryValidationError(f"message {i}: only assistant messages carry tool calls")
        for call in msg.tool_calls:
            if not isinstance(call, ToolCall):
                raise HistoryValidationError(f"message {i}: malformed tool call")
            if call.is_error:
                continue
            try:
                registry.validate_input(call.name, call.input)
            except ValidationError as e:
                raise HistoryValidationError(
                    f"message {i}: tool call {call.name} has invalid input: {e}"
                ) from e


def to_model_messages(messages: list[Message]) -> list[dict]:
    """
    Convert stored messages to chat-completions messages. An assistant
    message with tool calls expands to the call request, one tool result
    per call, then the assistant's text.
    """
    out: list[dict] = []
    for msg in messages:
        if msg.role == "assistant" and msg.tool_calls:
            out.append({
                "role": "assistant",
                "content": None,
                "tool_calls": [
                    {
                        "id": call.id,
                        "type": "function",
                        "function": {"name": call.name, "arguments": json.dumps(call.input)},
                    }
                    for call in msg.tool_calls
                ],
            })
            for call in msg.tool_calls:
                out.append({"role": "tool", "tool_call_id": call.id, "content": call.output or ""})
            if msg.content:
                out.append({"role": "assistant", "content": msg.content})
        else:
            out.append({"role": msg.role, "content": msg.content})
    return out


def _parse_arguments(raw: str) -> dict | None:
    """Streamed tool arguments arrive as a JSON string; None when it is not an object."""
    if not raw.strip():
        return {}
    try:
        args = json.loads(raw)
    except json.JSONDecodeError:
        return None
    return args if isinstance(args, dict) else None


# ── Orchestrator ──────────────────────────────────────────────────────────────

class TurnOrchestrator:
    """
    Loads history, merges and validates it, runs a step-bounded
    model/tool exchange and persists the result.
    """

    def __init__(
        self,
        store: SQLiteStore,
        registry: ToolRegistry,
        backend: BaseBackend,
        max_steps: int = MAX_STEPS,
        system_prompt: str = DEFAULT_SYSTEM_PROMPT,
    ):
        self.store = store
        self.registry = registry
        self.backend = backend
        self.max_steps = max_steps
        self.system_prompt = system_prompt

    @classmethod
    def from_config(cls, store: SQLiteStore, registry: ToolRegistry, backend: BaseBackend) -> TurnOrchestrator:
        llm_cfg = get_config().get("llm", {})
        return cls(
            store,
            registry,
            backend,
            max_steps=llm_cfg.get("max_steps", MAX_STEPS),
            system_prompt=llm_cfg.get("system_prompt") or DEFAULT_SYSTEM_PROMPT,
        )

    def resolve_chat(self, chat_id: str | None) -> str:
        """Return the given chat id, or create a new chat. Store errors propagate."""
        if chat_id:
            return chat_id
        chat_id = self.store.create_chat()
        logger.info("Created chat %s for new turn", chat_id)
        return chat_id

    def load_history(self, turn: Turn) -> list[Message]:
        """Stored messages for the turn's chat. Unreadable history is discarded for this turn."""
        try:
            return self.store.load_chat(turn.chat_id)
        except ChatNotFoundError:
            logger.debug("Chat %s has no stored history", turn.chat_id)
            return []
        except HistoryValidationError as e:
            logger.warning("Chat %s: stored history is unreadable (%s); using only the new messages", turn.chat_id, e)
            turn.history_discarded = True
            return []

    def prepare(self, turn: Turn, history: list[Message]) -> list[Message]:
        """Prior history first, then the new messages. Falls back to the new messages alone."""
        merged = history + turn.new_messages
        try:
            validate_messages(merged, self.registry)
            return merged
        except HistoryValidationError as e:
            logger.warning(
                "Chat %s: history failed validation (%s); using only the %d new message(s)",
                turn.chat_id, e, len(turn.new_messages),
            )
            turn.history_discarded = True
        validate_messages(turn.new_messages, self.registry)
        return list(turn.new_messages)

    def new_turn(self, chat_id: str, messages: list[Message]) -> Turn:
        for msg in messages:
            msg.chat_id = chat_id
        return Turn(chat_id=chat_id, new_messages=messages)

    async def run_turn(self, chat_id: str, messages: list[Message]) -> AsyncGenerator[dict, None]:
        async for event in self.run(self.new_turn(chat_id, messages)):
            yield event

    async def run(self, turn: Turn) -> AsyncGenerator[dict, None]:
        """Drive one turn, yielding stream events."""
        turn.state = TurnState.LOADING_HISTORY
        history = self.load_history(turn)

        turn.state = TurnState.VALIDATING
        try:
            turn.working = self.prepare(turn, history)
        except HistoryValidationError as e:
            logger.warning("Chat %s: new messages rejected: %s", turn.chat_id, e)
            turn.state = TurnState.FAILED
            yield _ev("error", message=f"Invalid messages: {e}")
            return

        turn.state = TurnState.STREAMING
        assistant = Message(chat_id=turn.chat_id, role="assistant")
        yield _ev("start", chatId=turn.chat_id, messageId=assistant.id)

        model_messages = [{"role": "system", "content": self.system_prompt}]
        model_messages += to_model_messages(turn.working)
        tools = self.registry.definitions()
        text_parts: list[str] = []

        try:
            while turn.steps < self.max_steps:
                turn.steps += 1
                step_text = ""
                pending: dict[int, dict] = {}

                async for chunk in self.backend.stream_completion(
                    {"messages": model_messages, "tools": tools}
                ):
                    for choice in chunk.get("choices") or []:
                        delta = choice.get("delta") or {}
                        text = delta.get("content")
                        if text:
                            step_text += text
                            yield _ev("text-delta", delta=text)
                        for tc in delta.get("tool_calls") or []:
                            slot = pending.setdefault(
                                tc.get("index", 0), {"id": "", "name": "", "arguments": ""}
                            )
                            if tc.get("id"):
                                slot["id"] = tc["id"]
                            fn = tc.get("function") or {}
                            slot["name"] += fn.get("name") or ""
                            slot["arguments"] += fn.get("arguments") or ""

                if step_text:
                    text_parts.append(step_text)

                if not pending:
                    yield _ev("finish-step", step=turn.steps, toolCalls=0)
                    break

                calls = []
                for index in sorted(pending):
                    slot = pending[index]
                    args = _parse_arguments(slot["arguments"])
                    call = ToolCall(name=slot["name"], input=args if args is not None else {})
                    if slot["id"]:
                        call.id = slot["id"]
                    calls.append((call, args))

                model_messages.append({
                    "role": "assistant",
                    "content": step_text or None,
                    "tool_calls": [
                        {
                            "id": call.id,
                            "type": "function",
                            "function": {"name": call.name, "arguments": pending[i]["arguments"] or "{}"},
                        }
                        for i, (call, _) in zip(sorted(pending), calls)
                    ],
                })

                # Sequential: later calls may depend on earlier side effects.
                for call, args in calls:
                    yield _ev("tool-call", toolCallId=call.id, toolName=call.name, input=call.input)
                    result = await self.registry.run_tool(call.name, args)
                    call.output = result.output
                    call.is_error = result.is_error
                    assistant.tool_calls.append(call)
                    model_messages.append(
                        {"role": "tool", "tool_call_id": call.id, "content": result.output}
                    )
                    yield _ev(
                        "tool-result",
                        toolCallId=call.id,
                        toolName=call.name,
                        output=result.output,
                        isError=result.is_error,
                    )

                yield _ev("finish-step", step=turn.steps, toolCalls=len(calls))
                if turn.steps >= self.max_steps:
                    turn.capped = True
                    logger.info("Chat %s: step budget of %d reached", turn.chat_id, self.max_steps)
        except Exception as e:
            logger.exception("Chat %s: completion failed at step %d", turn.chat_id, turn.steps)
            turn.state = TurnState.FAILED
            yield _ev("error", message=str(e))
            return

        assistant.content = "".join(text_parts)
        assistant.metadata = {
            "model": self.backend.model,
            "steps": turn.steps,
            "capped": turn.capped,
        }
        transcript = turn.working + [assistant]

        turn.state = TurnState.PERSISTING
        turn.persisted = self._persist(turn.chat_id, transcript)
        turn.state = TurnState.DONE

        yield _ev(
            "finish",
            chatId=turn.chat_id,
            messageId=assistant.id,
            steps=turn.steps,
            capped=turn.capped,
            persisted=turn.persisted,
            messages=[m.to_dict() for m in transcript],
        )

    def _persist(self, chat_id: str, transcript: list[Message]) -> bool:
        try:
            self.store.save_chat(chat_id, transcript)
        except Exception as e:
            logger.error("Failed to save chat %s: %s", chat_id, e)
            return False
        return True
