"""
Quest run API: start runs in the background, stream their events as SSE, cancel.

POST /                - start a run (questId + query in body)
GET  /stream/{id}     - SSE stream of run events
POST /cancel/{id}     - set the run's cancel signal
"""

from __future__ import annotations

import asyncio
import logging
import uuid

from fastapi import APIRouter, HTTPException
from fastapi.responses import StreamingResponse
from pydantic import BaseModel, Field

from quest_runner.runner_config import get_runner_config
from quest_runner.schemas.events import AgentEvent, EventSink
from quest_runner.services.browser import PlaywrightBrowser
from quest_runner.services.llm import DspyLlmClient
from quest_runner.services.orchestrator import QuestRunner
from quest_runner.storage.knowledge_base import KnowledgeBase
from quest_runner.storage.quest_definitions_repo import QuestDefinitionsRepo
from quest_runner.storage.quest_log_repo import QuestLogRepo
from quest_runner.storage.script_store import ScriptStore

logger = logging.getLogger(__name__)

router = APIRouter()

# ── active runs registry ──────────────────────────

class _ActiveRun:
    def __init__(self, quest_id: str):
        self.quest_id = quest_id
        self.task: asyncio.Task | None = None
        self.lines: list[str] = []
        self.done = asyncio.Event()
        self.cancel_event = asyncio.Event()
        self.subscribers: list[asyncio.Queue[str | None]] = []

    def publish(self, event: AgentEvent) -> None:
        line = event.model_dump_json()
        self.lines.append(line)
        for q in self.subscribers:
            q.put_nowait(line)

    def finish(self) -> None:
        for q in self.subscribers:
            q.put_nowait(None)
        self.done.set()

_active_runs: dict[str, _ActiveRun] = {}


def build_runner(events: EventSink) -> QuestRunner:
    """Wire a runner with a fresh browser session and the file-backed stores."""
    config = get_runner_config()
    definitions = QuestDefinitionsRepo(config.definitions_file)
    return QuestRunner(
        browser=PlaywrightBrowser(config.headless, config.viewport_width, config.viewport_height),
        llm=DspyLlmClient(),
        scripts=ScriptStore(config.scripts_dir, definitions=definitions),
        knowledge=KnowledgeBase(config.knowledge_file),
        logs=QuestLogRepo(config.logs_dir),
        config=config,
        events=events,
        definitions=definitions,
    )


# ── request / response models ─────────────────────

class StartRunRequest(BaseModel):
    quest_id: str = Field(alias="questId")
    query: str

    model_config = {"populate_by_name": True}


class RunStartResponse(BaseModel):
    runId: str


# ── background task ───────────────────────────────

async def _execute(run_id: str, run: _ActiveRun, query: str) -> None:
    try:
        runner = build_runner(run.publish)
        await runner.run(run.quest_id, query, cancel_event=run.cancel_event)
    except Exception:
        # the runner has already reported and logged the failure
        logger.exception("Run %s ended with an unhandled error", run_id)
    finally:
        run.finish()
        _active_runs.pop(run_id, None)


# ── endpoints ──────────────────────────────────────

@router.post("", response_model=RunStartResponse)
async def start_run(req: StartRunRequest) -> RunStartResponse:
    run_id = f"run-{uuid.uuid4().hex[:12]}"
    run = _ActiveRun(req.quest_id)
    _active_runs[run_id] = run
    run.task = asyncio.create_task(_execute(run_id, run, req.query))
    logger.info("Started run %s for quest %s", run_id, req.quest_id)
    return RunStartResponse(runId=run_id)


@router.get("/stream/{run_id}")
async def stream_run(run_id: str) -> StreamingResponse:
    run = _active_runs.get(run_id)
    if run is None:
        raise HTTPException(404, f"Run {run_id} not found or already finished")

    queue: asyncio.Queue[str | None] = asyncio.Queue()

    # Replay buffered events
    for line in run.lines:
        queue.put_nowait(line)

    if run.done.is_set():
        queue.put_nowait(None)
    else:
        run.subscribers.append(queue)

    async def event_generator():
        try:
            while True:
                line = await queue.get()
                if line is None:
                    break
                yield f"data: {line}\n\n"
        finally:
            if queue in run.subscribers:
                run.subscribers.remove(queue)

    return StreamingResponse(
        event_generator(),
        media_type="text/event-stream",
        headers={
            "Cache-Control": "no-cache",
            "Connection": "keep-alive",
            "X-Accel-Buffering": "no",
        },
    )


@router.post("/cancel/{run_id}")
async def cancel_run(run_id: str) -> dict[str, str]:
    run = _active_runs.get(run_id)
    if run is None:
        raise HTTPException(404, f"Run {run_id} not found or already finished")
    run.cancel_event.set()
    return {"status": "cancelled", "runId": run_id}
