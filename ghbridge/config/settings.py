from pathlib import Path

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    # Cola (SQLite)
    DB_PATH: Path = Field(default=Path("./git-helper-queue.db"))
    DB_BUSY_TIMEOUT: float = 5.0  # segundos esperando el lock de escritura

    # Servidor de herramientas (JSON-RPC sobre SSE)
    MCP_HOST: str = "0.0.0.0"
    PORT: int = 8080
    MCP_SSE_URL: str = "http://localhost:8080/mcp/sse"
    MCP_TIMEOUT: float = 60.0
    MCP_FIRST_EVENT_TIMEOUT: float = 10.0

    # Gemini
    GEMINI_API_KEY: str | None = None
    GEMINI_API_URL: str = (
        "https://generativelanguage.googleapis.com/v1beta/models/"
        "gemini-2.5-flash:generateContent"
    )
    GEMINI_TIMEOUT: float = 60.0

    # Agente HTTP
    AGENT_HOST: str = "127.0.0.1"
    AGENT_PORT: int = 3000
    AGENT_URL: str = "http://127.0.0.1:3000/api/agent"

    # Worker
    WORKER_POLL_SECS: float = 2.0
    WORKER_CONTENDED_SECS: float = 0.5
    WORKER_MARK_RETRIES: int = 10

    LOG_LEVEL: str = "INFO"
    LOG_DIR: Path = Field(default=Path("./logs"))


settings = Settings()
