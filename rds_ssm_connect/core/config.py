from pydantic_settings import BaseSettings
from typing import List
import os

class Settings(BaseSettings):
    # Debug settings
    DEBUG: bool = False
    LOG_LEVEL: str = "INFO"

    # API settings
    API_V1_STR: str = "/api/v1"
    PROJECT_NAME: str = "RDS SSM Connect"
    HOST: str = "127.0.0.1"
    PORT: int = 8765
    BACKEND_CORS_ORIGINS: List[str] = [
        "http://localhost",
        "http://localhost:1420",
        "tauri://localhost",
    ]

    # Local files
    PROJECTS_CONFIG_PATH: str = os.path.join(
        os.path.expanduser("~"), ".rds-ssm-connect", "projects.json"
    )
    AWS_CONFIG_PATH: str = os.path.join(os.path.expanduser("~"), ".aws", "config")

    # External tools
    IDENTITY_WRAPPER: str = "aws-vault"
    AWS_CLI: str = "aws"
    COMMAND_TIMEOUT: float = 60.0

    # Retry policy defaults
    MAX_RECOVERY_ATTEMPTS: int = 3
    MAX_RECONNECT_ATTEMPTS: int = 20
    RECONNECT_BACKOFF_SECONDS: float = 5.0
    BASTION_WAIT_MAX_RETRIES: int = 20
    BASTION_WAIT_RETRY_DELAY_SECONDS: float = 15.0
    AGENT_READY_MAX_ATTEMPTS: int = 20
    AGENT_READY_POLL_SECONDS: float = 5.0
    SSM_AGENT_READY_WAIT_SECONDS: float = 10.0  # agent reports Online before it accepts sessions
    STABLE_SESSION_SECONDS: float = 60.0

    # Keepalive: SSM closes idle sessions after 20 minutes
    KEEPALIVE_INTERVAL_SECONDS: float = 240.0
    KEEPALIVE_CONNECT_TIMEOUT: float = 3.0

    # Process teardown
    KILL_GRACE_SECONDS: float = 3.0

    class Config:
        env_file = ".env"
        case_sensitive = True

settings = Settings()
