"""Prompt orchestrator: runs one ``session/prompt`` end to end.

Phases per prompt::

    preparing -> executing -> completed | cancelled | error

The cancellation token is checked before the engine is invoked and after
every streamed chunk. A cancelled prompt stops consuming the engine
stream (closing it) and reports ``stopReason: "cancelled"``. Engine
failures are classified and reported as ``stopReason: "error"``; they
are never raised to the dispatcher.
"""
from __future__ import annotations

import contextlib
import logging
import time
import uuid
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from acpd.shared.models.content import ContentBlock, parse_content, render_block
from acpd.shared.models.session import Session, SessionMode, SessionState
from acpd.shared.models.workspace import WorkspaceDescriptor
from acpd.shared.services.git import github_clone_url, redact_url

from .config import NotificationSink, fire_event
from .error_classifier import ClassifiedError, ErrorKind, classify_error
from .errors import EngineInternalError
from .operations import CancellationToken
from .prompts import (
    PromptSegment,
    build_composite_prompt,
    build_prompt_from_content,
    estimate_tokens,
    extract_message_summary,
)
from .providers.base import ExecutionGateway
from .runtime import AcpRuntime

logger = logging.getLogger(__name__)

UPDATE_METHOD = "session/update"
STDERR_LIMIT = 4000
PROGRESS_TOTAL = 3


class PromptPhase(str, Enum):
    PREPARING = "preparing"
    EXECUTING = "executing"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    ERROR = "error"


@dataclass
class RepositoryTarget:
    """Repository the prompt wants checked out in its workspace."""
    clone_url: str | None = None
    default_branch: str | None = None
    working_branch: str | None = None

    @classmethod
    def from_agent_context(
        cls,
        agent_context: dict[str, Any],
        github_token: str | None = None,
    ) -> RepositoryTarget | None:
        repo = agent_context.get("repository")
        if not isinstance(repo, dict):
            return None
        clone_url = repo.get("cloneUrl") or None
        owner, name = repo.get("owner"), repo.get("name")
        if not clone_url and owner and name:
            clone_url = github_clone_url(owner, name, github_token)
        return cls(
            clone_url=clone_url,
            default_branch=repo.get("defaultBranch") or None,
            working_branch=repo.get("workingBranch") or None,
        )


@dataclass
class PromptRequest:
    session_id: str
    content: list[ContentBlock]
    context_files: list[str] = field(default_factory=list)
    agent_context: dict[str, Any] = field(default_factory=dict)
    model: str | None = None
    # Out-of-band credentials from the request context.
    api_key: str | None = field(default=None, repr=False)
    github_token: str | None = field(default=None, repr=False)
    operation_id: str | None = None


@dataclass
class PromptOutcome:
    operation_id: str
    phase: PromptPhase
    input_tokens: int = 0
    output_tokens: int = 0
    summary: str = ""
    error: ClassifiedError | None = None
    duration_ms: int = 0
    workspace: WorkspaceDescriptor | None = None
    changed_files: list[str] | None = None
    exit_code: int | None = None
    stderr_tail: str = ""

    @property
    def stop_reason(self) -> str:
        return self.phase.value

    def to_result(self) -> dict[str, Any]:
        meta: dict[str, Any] = {
            "operationId": self.operation_id,
            "durationMs": self.duration_ms,
        }
        if self.workspace is not None:
            ws: dict[str, Any] = {
                "path": self.workspace.path,
                "isEphemeral": self.workspace.is_ephemeral,
            }
            if self.workspace.git_info and self.workspace.git_info.current_branch:
                ws["gitBranch"] = self.workspace.git_info.current_branch
            if self.changed_files is not None:
                ws["changedFiles"] = self.changed_files
            meta["workspace"] = ws

        result: dict[str, Any] = {
            "stopReason": self.stop_reason,
            "usage": {
                "inputTokens": self.input_tokens,
                "outputTokens": self.output_tokens,
            },
            "summary": self.summary,
            "meta": meta,
        }
        if self.phase is PromptPhase.ERROR and self.error is not None:
            result["errorCode"] = self.error.code.value
            meta["diagnostics"] = {
                "classification": self.error.to_dict(),
                "exitCode": self.exit_code,
                "stderr": self.stderr_tail[:STDERR_LIMIT],
            }
        return result


def new_operation_id() -> str:
    return f"prompt-{uuid.uuid4().hex[:12]}"


class PromptOrchestrator:
    """Drives prompts through workspace, composer and gateway."""

    def __init__(
        self,
        runtime: AcpRuntime,
        gateway: ExecutionGateway,
        notify: NotificationSink | None = None,
    ) -> None:
        self._runtime = runtime
        self._gateway = gateway
        self._notify_sink = notify

    @property
    def gateway(self) -> ExecutionGateway:
        return self._gateway

    def _notify(
        self,
        session_id: str,
        operation_id: str,
        status: str,
        message: str,
        progress: tuple[int, str] | None = None,
        **extra: Any,
    ) -> None:
        if self._notify_sink is None:
            return
        params: dict[str, Any] = {
            "sessionId": session_id,
            "operationId": operation_id,
            "status": status,
            "message": message,
        }
        if progress is not None:
            params["progress"] = {
                "current": progress[0],
                "total": PROGRESS_TOTAL,
                "message": progress[1],
            }
        params.update(extra)
        try:
            self._notify_sink(UPDATE_METHOD, params)
        except Exception:
            logger.exception("Notification sink failed for session %s", session_id)

    async def process(self, request: PromptRequest) -> PromptOutcome:
        """Run *request* to a terminal phase.

        Raises SessionNotFoundError before any work starts; every later
        failure ends in an outcome.
        """
        runtime = self._runtime
        session = await runtime.sessions.require(request.session_id)
        session_id = session.session_id
        operation_id = request.operation_id or new_operation_id()

        # Registered before any await so a cancel can always find it.
        token = runtime.operations.start(session_id, operation_id)
        # Index of this prompt's batch; later arrivals append after it.
        history_index = session.history_length
        session.append_history([block.to_dict() for block in request.content])
        session.touch()
        if session.state is SessionState.PAUSED:
            runtime.sessions.set_state(session_id, SessionState.ACTIVE)
        if request.agent_context:
            runtime.sessions.merge_agent_context(session_id, request.agent_context)

        started = time.monotonic()
        outcome = PromptOutcome(operation_id=operation_id, phase=PromptPhase.PREPARING)
        logger.info(
            "Prompt %s started in session %s (%d block(s))",
            operation_id, session_id, len(request.content),
        )
        try:
            await self._run(session, request, token, outcome, history_index)
        except Exception as exc:
            self._fail(session_id, outcome, exc)
        finally:
            runtime.operations.complete(session_id, operation_id)
            outcome.duration_ms = int((time.monotonic() - started) * 1000)
            session.touch()
            await runtime.sessions.persist(session)

        logger.info(
            "Prompt %s in session %s finished: %s (%d ms, in=%d out=%d)",
            operation_id, session_id, outcome.stop_reason,
            outcome.duration_ms, outcome.input_tokens, outcome.output_tokens,
        )
        await fire_event(runtime.config.event_callback, {
            "event": "prompt_finished",
            "session_id": session_id,
            "operation_id": operation_id,
            "stop_reason": outcome.stop_reason,
        })
        return outcome

    async def _run(
        self,
        session: Session,
        request: PromptRequest,
        token: CancellationToken,
        outcome: PromptOutcome,
        history_index: int,
    ) -> None:
        session_id = session.session_id
        op_id = outcome.operation_id
        self._notify(session_id, op_id, "working", "Preparing workspace", (0, "Preparing"))

        outcome.workspace = await self._prepare_workspace(session, request)
        prompt = self._compose(session, request, history_index)
        outcome.input_tokens = estimate_tokens(prompt)

        if token.cancelled:
            self._cancelled(session_id, outcome)
            return

        outcome.phase = PromptPhase.EXECUTING
        self._notify(session_id, op_id, "working", "Processing with Claude...", (1, "Queued"))

        parts: list[str] = []
        result_text = ""
        stream = self._gateway.execute(
            prompt,
            working_directory=outcome.workspace.path,
            cancellation_token=token,
            model=request.model or self._runtime.config.default_model,
            api_key=request.api_key or self._runtime.config.anthropic_api_key,
        )
        async with contextlib.aclosing(stream):
            async for chunk in stream:
                if chunk.is_result:
                    result_text = chunk.text
                    if chunk.input_tokens is not None:
                        outcome.input_tokens = chunk.input_tokens
                    if chunk.output_tokens is not None:
                        outcome.output_tokens = chunk.output_tokens
                    if chunk.is_error:
                        raise EngineInternalError(chunk.text or "engine reported an error")
                elif chunk.text:
                    parts.append(chunk.text)
                    self._notify(
                        session_id, op_id, "working", "Claude streaming...",
                        (2, "Streaming"),
                        content={"type": "text", "text": chunk.text},
                    )
                if token.cancelled:
                    self._cancelled(session_id, outcome)
                    return

        if token.cancelled:
            self._cancelled(session_id, outcome)
            return

        full_text = result_text or (parts[-1] if parts else "")
        if not outcome.output_tokens:
            outcome.output_tokens = estimate_tokens("".join(parts) or result_text)
        outcome.summary = extract_message_summary(
            full_text, self._runtime.config.summary_chars,
        )

        if session.options.enable_git_ops:
            outcome.changed_files = await self._runtime.git.changed_files(outcome.workspace.path)
        outcome.phase = PromptPhase.COMPLETED
        self._notify(session_id, op_id, "completed", "Completed", (PROGRESS_TOTAL, "Completed"))

    async def _prepare_workspace(
        self, session: Session, request: PromptRequest,
    ) -> WorkspaceDescriptor:
        runtime = self._runtime
        session_id = session.session_id
        git_ops = session.options.enable_git_ops
        async with runtime.workspaces.lock_for(session_id):
            ws = await runtime.workspaces.prepare(
                session_id, session.workspace_uri, git_ops_enabled=git_ops,
            )
            if not git_ops:
                return ws
            git = runtime.git
            try:
                repo = RepositoryTarget.from_agent_context(
                    session.agent_context, request.github_token,
                )
                if repo is None:
                    return ws
                action = await git.ensure_repo(
                    ws.path, default_branch=repo.default_branch, clone_url=repo.clone_url,
                )
                logger.info(
                    "Session %s repository %s: %s",
                    session_id, redact_url(repo.clone_url or ws.path), action.value,
                )
                if repo.working_branch:
                    resolution = await git.resolve_working_branch(
                        ws.path, repo.working_branch, default_branch=repo.default_branch,
                    )
                    logger.info(
                        "Session %s branch %s: %s",
                        session_id, repo.working_branch, resolution.value,
                    )
            except ValueError as exc:
                logger.warning("Session %s: skipping repository setup: %s", session_id, exc)
            await runtime.workspaces.refresh_git_info(session_id, detailed=True)
            return ws

    def _compose(
        self, session: Session, request: PromptRequest, history_index: int,
    ) -> str:
        current = build_prompt_from_content(
            request.content, request.context_files, session.agent_context, session,
        )
        segments = [PromptSegment(content=current)]
        if session.mode is SessionMode.CONVERSATION:
            # Newest first: earlier turns are lower priority than the
            # current request and than each other in reverse order.
            earlier = session.message_history[:history_index]
            for index in range(len(earlier) - 1, -1, -1):
                text = "".join(render_block(b) for b in parse_content(earlier[index])).strip()
                if text:
                    segments.append(PromptSegment(
                        content=text, label=f"Earlier message {index + 1}", role="history",
                    ))
        assembled = build_composite_prompt(segments, self._runtime.config.max_prompt_tokens)
        if assembled.truncated_segments:
            logger.info(
                "Session %s prompt cut to %d tokens (%d segment(s) dropped)",
                session.session_id, assembled.total_estimated_tokens,
                assembled.dropped_segments,
            )
        return assembled.prompt

    def _cancelled(self, session_id: str, outcome: PromptOutcome) -> None:
        outcome.phase = PromptPhase.CANCELLED
        self._notify(session_id, outcome.operation_id, "cancelled", "Cancelled")

    def _fail(self, session_id: str, outcome: PromptOutcome, exc: Exception) -> None:
        classified = classify_error(exc)
        if classified.code is ErrorKind.CANCELLED:
            self._cancelled(session_id, outcome)
            return
        outcome.phase = PromptPhase.ERROR
        outcome.error = classified
        outcome.summary = f"({classified.code.value}) {classified.message}"
        if isinstance(exc, EngineInternalError):
            outcome.exit_code = exc.exit_code
            outcome.stderr_tail = exc.stderr
        logger.warning(
            "Prompt %s in session %s failed: %s (%s)",
            outcome.operation_id, session_id, classified.code.value,
            classified.meta.get("matched"),
            exc_info=classified.code in (ErrorKind.UNKNOWN, ErrorKind.INTERNAL),
        )
        self._notify(
            session_id, outcome.operation_id, "error", classified.message,
            errorCode=classified.code.value,
        )
