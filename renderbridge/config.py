"""Application configuration via environment variables."""

import os
import tempfile
from typing import Optional

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    # Job storage
    jobs_dir: str = os.path.join(tempfile.gettempdir(), "renderbridge_renders")
    output_dir: Optional[str] = None  # defaults to <jobs_dir>/outputs
    output_ttl_hours: int = 24

    # Rendering backend process
    backend_python: str = "python"
    backend_script: str = "diffusion_service.py"
    render_timeout_seconds: float = 600.0

    # Worker pool
    max_concurrent_renders: int = 2

    # Submission defaults
    default_prompt: str = "architectural visualization"
    default_style_preset: str = "photorealistic"
    default_backend: str = "automatic1111"
    default_backend_url: str = "http://localhost:7860"

    # Service
    service_port: int = 8001
    log_level: str = "INFO"

    model_config = {
        "env_prefix": "RENDER_",
        "env_file": ".env",
        "env_file_encoding": "utf-8",
    }

    @property
    def resolved_output_dir(self) -> str:
        return self.output_dir or os.path.join(self.jobs_dir, "outputs")


settings = Settings()
