# File: backend\app\core\config.py
import os
from pathlib import Path
from dotenv import load_dotenv

load_dotenv()

APP_DIR = Path(__file__).resolve().parent.parent # backend/app/
BACKEND_ROOT_DIR = APP_DIR.parent # backend/
PROJECT_ROOT_DIR = BACKEND_ROOT_DIR.parent

# --- Bot project served by the gateway ---
BOT_PATH = Path(os.getenv("BOT_PATH", PROJECT_ROOT_DIR / "bots" / "pizza_bot"))

# --- Server ---
HOST = os.getenv("BOT_HOST", "127.0.0.1")
PORT = int(os.getenv("BOT_PORT", 3001))
CORS_ORIGINS = [o.strip() for o in os.getenv("BOT_CORS_ORIGINS", "*").split(",") if o.strip()]

API_LOGGER_NAME = "BotGatewayAPI"
