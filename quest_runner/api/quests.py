from fastapi import APIRouter, HTTPException

from quest_runner.runner_config import get_runner_config
from quest_runner.schemas.quest_schema import QuestDefinition
from quest_runner.storage.quest_definitions_repo import QuestDefinitionsRepo
from quest_runner.storage.script_store import ScriptStore

router = APIRouter()

_definitions_repo = QuestDefinitionsRepo(get_runner_config().definitions_file)
_script_store = ScriptStore(get_runner_config().scripts_dir, definitions=_definitions_repo)


@router.get("")
async def list_quests():
    quests = _definitions_repo.list()
    return {"quests": [q.model_dump(by_alias=True, exclude_none=True) for q in quests]}


@router.get("/{quest_id}")
async def get_quest(quest_id: str):
    definition = _definitions_repo.get(quest_id)
    if definition is None:
        raise HTTPException(status_code=404, detail=f"Quest {quest_id} not found")
    return definition.model_dump(by_alias=True, exclude_none=True)


@router.put("/{quest_id}")
async def save_quest(quest_id: str, definition: QuestDefinition):
    if definition.id != quest_id:
        raise HTTPException(status_code=400, detail="Quest id in body does not match path")
    _definitions_repo.save(definition)
    return definition.model_dump(by_alias=True, exclude_none=True)


@router.delete("/{quest_id}")
async def delete_quest(quest_id: str):
    if not _definitions_repo.delete(quest_id):
        raise HTTPException(status_code=404, detail=f"Quest {quest_id} not found")
    _script_store.delete(quest_id)
    return {"status": "deleted", "questId": quest_id}


@router.get("/{quest_id}/script")
async def get_quest_script(quest_id: str):
    script = _script_store.get(quest_id)
    if script is None:
        raise HTTPException(status_code=404, detail=f"No cached script for quest {quest_id}")
    return script.model_dump(by_alias=True, exclude_none=True)
