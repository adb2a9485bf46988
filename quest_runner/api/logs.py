from fastapi import APIRouter

from quest_runner.runner_config import get_runner_config
from quest_runner.storage.quest_log_repo import QuestLogRepo

router = APIRouter()

_log_repo = QuestLogRepo(get_runner_config().logs_dir)


@router.get("")
async def list_logs(quest_id: str | None = None):
    logs = _log_repo.list()
    if quest_id:
        logs = [log for log in logs if log.quest_id == quest_id]
    return {"logs": [log.model_dump(by_alias=True, exclude_none=True) for log in logs]}


@router.get("/{quest_id}/average-steps")
async def average_steps(quest_id: str):
    return {"questId": quest_id, "averageSteps": _log_repo.average_steps(quest_id)}
