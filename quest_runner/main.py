from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from quest_runner.api import llm_settings, logs, quests, runs

app = FastAPI(title="Quest Runner Service", version="0.1.0")

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(runs.router, prefix="/runs", tags=["runs"])
app.include_router(quests.router, prefix="/quests", tags=["quests"])
app.include_router(logs.router, prefix="/logs", tags=["logs"])
app.include_router(llm_settings.router, prefix="/llm-settings", tags=["llm"])


@app.get("/health")
async def health():
    return {"status": "ok"}
