import os
from typing import Dict

from dotenv import load_dotenv
from pydantic import BaseModel, ConfigDict
from sqlalchemy.orm import Session

load_dotenv()

BASE_DIR = os.path.dirname(os.path.dirname(__file__))

DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///" + os.path.join(BASE_DIR, "exams.db"))

JWT_SECRET_KEY = os.getenv("JWT_SECRET_KEY", "CHANGE_ME_SECRET_KEY")
ALGORITHM = "HS256"
ACCESS_TOKEN_EXPIRE_MINUTES = int(os.getenv("ACCESS_TOKEN_EXPIRE_MINUTES", "60"))

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")

# an in-progress attempt younger than this is handed back instead of creating a new one
ATTEMPT_REUSE_WINDOW_SECONDS = int(os.getenv("ATTEMPT_REUSE_WINDOW_SECONDS", "120"))

CERMAT_TOTAL_SESSIONS = int(os.getenv("CERMAT_TOTAL_SESSIONS", "10"))
CERMAT_QUESTIONS_PER_SESSION = int(os.getenv("CERMAT_QUESTIONS_PER_SESSION", "60"))
CERMAT_SESSION_SECONDS = int(os.getenv("CERMAT_SESSION_SECONDS", "60"))
CERMAT_BREAK_SECONDS = int(os.getenv("CERMAT_BREAK_SECONDS", "5"))
CERMAT_SEQUENCE_LENGTH = int(os.getenv("CERMAT_SEQUENCE_LENGTH", "4"))
CERMAT_SESSION_IDLE_SECONDS = int(os.getenv("CERMAT_SESSION_IDLE_SECONDS", "1800"))

BLOCK_SETTING_KEYS = {
    "practice_enabled": "exam_block_practice_enabled",
    "tryout_enabled": "exam_block_tryout_enabled",
    "exam_enabled": "exam_block_exam_enabled",
}
CONFIG_VERSION_KEY = "exam_config_version"


class BlockConfig(BaseModel):
    model_config = ConfigDict(frozen=True)

    practice_enabled: bool = True
    tryout_enabled: bool = True
    exam_enabled: bool = True


class CermatConfig(BaseModel):
    model_config = ConfigDict(frozen=True)

    total_sessions: int = CERMAT_TOTAL_SESSIONS
    questions_per_session: int = CERMAT_QUESTIONS_PER_SESSION
    session_seconds: int = CERMAT_SESSION_SECONDS
    break_seconds: int = CERMAT_BREAK_SECONDS
    sequence_length: int = CERMAT_SEQUENCE_LENGTH


class EngineConfig(BaseModel):
    """
    Snapshot of every tunable the engine consults.

    Built per request by ``load_engine_config`` and handed to the service
    functions, so nothing below reads settings from global state.
    """

    model_config = ConfigDict(frozen=True)

    version: int = 0
    blocks: BlockConfig = BlockConfig()
    cermat: CermatConfig = CermatConfig()
    attempt_reuse_window_seconds: int = ATTEMPT_REUSE_WINDOW_SECONDS


def _settings_map(db: Session) -> Dict[str, str]:
    from db.models.site_settings import SiteSetting

    keys = list(BLOCK_SETTING_KEYS.values()) + [CONFIG_VERSION_KEY]
    rows = db.query(SiteSetting).filter(SiteSetting.key.in_(keys)).all()
    return {row.key: row.value for row in rows}


def _bool_setting(values: Dict[str, str], key: str, fallback: bool) -> bool:
    if key not in values:
        return fallback
    return values[key] == "true"


def load_engine_config(db: Session) -> EngineConfig:
    values = _settings_map(db)
    blocks = BlockConfig(
        **{
            field: _bool_setting(values, key, True)
            for field, key in BLOCK_SETTING_KEYS.items()
        }
    )
    return EngineConfig(
        version=int(values.get(CONFIG_VERSION_KEY, "0")),
        blocks=blocks,
    )


def update_block_config(db: Session, blocks: BlockConfig) -> EngineConfig:
    from db.models.site_settings import SiteSetting

    current = load_engine_config(db)
    updates = {key: str(getattr(blocks, field)).lower() for field, key in BLOCK_SETTING_KEYS.items()}
    updates[CONFIG_VERSION_KEY] = str(current.version + 1)

    try:
        for key, value in updates.items():
            row = db.query(SiteSetting).filter(SiteSetting.key == key).first()
            if row:
                row.value = value
            else:
                db.add(SiteSetting(key=key, value=value))
        db.commit()
    except Exception:
        db.rollback()
        raise

    return load_engine_config(db)
