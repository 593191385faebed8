"""Application configuration using Pydantic settings."""
from pydantic_settings import BaseSettings
from typing import List, Optional


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Database
    database_url: str

    environment: str = "development"
    log_level: str = ""  # Empty: DEBUG in development, INFO otherwise

    # CORS
    allowed_origins: str = "http://localhost:3000,http://localhost:3001"

    # Port pool for dev-server processes (inclusive range)
    port_range_start: int = 4000
    port_range_end: int = 4999
    port_probe_enabled: bool = True  # Skip ports already bound by foreign processes

    # Preview addressing
    preview_host: str = "127.0.0.1"
    public_base_url: str = "http://localhost:8000"

    # Build workspace and commands
    workspace_root: str = "/tmp/website-builds"
    install_command: str = "npm install --no-audit --no-fund"
    vite_dev_command: str = "npm run dev -- --host {host} --port {port} --strictPort"
    react_dev_command: str = "npm start"
    build_ready_markers: str = "ready in,Local:,Compiled successfully,webpack compiled"
    # TypeScript check: declared scripts tried in order until one passes
    type_check_command: str = "npm run {script}"
    type_check_scripts: str = "type-check,tsc,type,lint,build"

    # Supervisor timing
    build_startup_timeout_seconds: float = 45
    install_timeout_seconds: float = 240
    type_check_timeout_seconds: float = 120
    stop_grace_seconds: float = 8
    kill_wait_seconds: float = 5
    build_output_max_lines: int = 200
    max_concurrent_builds: int = 10

    # Idle reclamation
    idle_timeout_minutes: int = 30
    idle_sweep_interval_seconds: int = 60

    # AI edit provider (OpenRouter-compatible chat completions)
    ai_api_key: Optional[str] = None
    ai_model: str = "openai/gpt-4o-mini"
    ai_base_url: str = "https://openrouter.ai/api/v1/chat/completions"
    ai_edit_timeout_seconds: float = 60
    ai_confidence_threshold: float = 0.5

    @property
    def cors_origins(self) -> List[str]:
        """Parse CORS origins from comma-separated string."""
        return [origin.strip() for origin in self.allowed_origins.split(",")]

    @property
    def ready_markers(self) -> List[str]:
        """Parse dev-server ready markers from comma-separated string."""
        return [marker.strip() for marker in self.build_ready_markers.split(",") if marker.strip()]

    @property
    def type_check_script_names(self) -> List[str]:
        """Parse type check script names from comma-separated string."""
        return [name.strip() for name in self.type_check_scripts.split(",") if name.strip()]

    class Config:
        env_file = ".env"
        case_sensitive = False


settings = Settings()
