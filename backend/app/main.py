# backend/app/main.py
import os
import sys

backend_root = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
project_root = os.path.dirname(backend_root)

for path in (project_root, backend_root):
    if path not in sys.path:
        sys.path.insert(0, path)

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from app.core.config import BOT_PATH, CORS_ORIGINS, HOST, PORT
from app.api import sessions
from app.utils.logger_api import api_logger
from logic.bot_loader import load_bot_project


app = FastAPI(title="Bot Gateway API")

app.add_middleware(
    CORSMiddleware,
    allow_origins=CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(sessions.router, tags=["Bot Sessions"])

@app.on_event("startup")
async def startup_event():
    api_logger.info("Application startup...")
    if getattr(app.state, "bot_project", None) is not None:
        api_logger.info(f"Bot project already loaded: {app.state.bot_project.path}")
        return
    # an unreadable bot path aborts startup
    app.state.bot_project = load_bot_project(BOT_PATH)
    project = app.state.bot_project
    api_logger.info(
        f"Serving bot '{project.name}' from {BOT_PATH} "
        f"({sum(len(t.states) for t in project.bot.themes.values())} states, {len(project.errors)} parse issue(s))"
    )


@app.get("/")
async def root():
    api_logger.info("Root endpoint accessed.")
    return {"message": "Bot gateway is running. Connect a chat client to /ws", "bot": getattr(getattr(app.state, "bot_project", None), "name", None)}


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host=HOST, port=PORT)
