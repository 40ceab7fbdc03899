# FILE: backend/fileconvert/core/config.py
# CONFIGURATION
# 1. Handles comma-separated CORS strings (for Docker/Production) and JSON strings.
# 2. Credentials have empty defaults; the cloud backend refuses to start without a key.
# 3. The Settings instance is passed explicitly into the component factories.

from pydantic_settings import BaseSettings, SettingsConfigDict
from typing import Dict, List, Literal, Union
from pydantic import Field, field_validator
import json


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file='.env', env_file_encoding='utf-8', extra='ignore')

    # --- API Setup ---
    PROJECT_NAME: str = "File Conversion API"
    API_PREFIX: str = "/api"
    LOG_LEVEL: str = "INFO"

    # --- CORS Configuration ---
    BACKEND_CORS_ORIGINS: List[str] = ["http://localhost:3000", "http://localhost:5173"]

    @field_validator("BACKEND_CORS_ORIGINS", mode="before")
    @classmethod
    def assemble_cors_origins(cls, v: Union[str, List[str]]) -> List[str]:
        if isinstance(v, str) and not v.startswith("["):
            # Handle comma-separated string: "http://localhost,https://myapp.com"
            return [i.strip() for i in v.split(",") if i.strip()]
        elif isinstance(v, str):
            return json.loads(v)
        return v

    # --- Uploads / Scratch ---
    UPLOAD_DIR: str = "./uploads"
    MAX_UPLOAD_MB: int = 50

    # --- Backend Selection ---
    CONVERSION_BACKEND: Literal["libreoffice", "cloud"] = "libreoffice"
    IMAGE_TO_PDF_BACKEND: Literal["local", "external"] = "local"

    # --- Headless Office Suite ---
    SOFFICE_BINARY: str = "soffice"
    SOFFICE_TIMEOUT_SEC: int = 120

    # --- Cloud Conversion API ---
    CLOUD_API_URL: str = ""
    CLOUD_API_KEY: str = ""
    CLOUD_REQUEST_TIMEOUT_SEC: float = 60.0
    CLOUD_PROCESS_TIMEOUT_SEC: float = 300.0
    CLOUD_TOOLS: Dict[str, str] = Field(default_factory=lambda: {
        "word-to-pdf": "officepdf",
        "pdf-to-word": "pdfdocx",
        "image-to-pdf": "imagepdf",
    })

    # --- Retry Policy ---
    RETRY_COUNT: int = 2
    RETRY_DELAY_SEC: float = 1.0
    RETRY_BACKOFF: float = 2.0

    # --- OCR ---
    OCR_LANGUAGE: str = "eng"
    OCR_POOL_SIZE: int = 2
    OCR_ACQUIRE_TIMEOUT_SEC: float = 60.0
    TESSERACT_CMD: str = ""

    # --- Document Building ---
    PDF_FONT_PATH: str = ""

    # --- History ---
    DATABASE_URI: str = ""
    RECORD_HISTORY: bool = True


settings = Settings()
