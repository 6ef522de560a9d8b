from pydantic_settings import BaseSettings
from dotenv import load_dotenv
from pathlib import Path


load_dotenv()


class Settings(BaseSettings):
    app_name: str = "Lot Quality Control API"
    debug: bool = False
    database_url: str = "sqlite:///./lotcontrol.db"
    host: str = "127.0.0.1"
    port: int = 8000
    secret_key: str = ""
    access_token_expire_minutes: int = 15
    refresh_token_expire_minutes: int = 60 * 24 * 7
    bcrypt_rounds: int = 12
    allowed_hosts: str = ""
    log_file: Path = Path(__file__).parent.parent.parent / \
        "logs" / "application.log"

    # Roles at or above this level are administrative and protected.
    admin_role_level: int = 80

    rate_limit_requests: int = 120
    rate_limit_window_seconds: int = 60
    rate_limit_storage_uri: str = "memory://"

    # Bootstrap administrator created by seed.py
    admin_email: str = "admin@lotcontrol.io"
    admin_password: str = ""
    admin_full_name: str = "Administrador"

    # When enabled, a record must have its controls submitted before approval.
    require_controls_before_approval: bool = False


settings = Settings()

if not settings.secret_key:
    raise RuntimeError("Secret key not configured.")
