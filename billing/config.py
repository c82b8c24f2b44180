from __future__ import annotations
import json
import logging
import os
from pathlib import Path
from typing import Any, Optional, Union

from pydantic import BaseModel, Field, ValidationError

logger = logging.getLogger(__name__)

ROOT_DIR = Path(__file__).resolve().parents[1]
DEFAULT_DATA_DIR = ROOT_DIR / "data"

ENV_DATA_DIR = "BILLING_DATA_DIR"
ENV_LOG_LEVEL = "BILLING_LOG_LEVEL"

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


class NumberingSettings(BaseModel):
    invoice_prefix: str = "INV"
    quote_prefix: str = "QTN"
    max_attempts: int = Field(default=3, ge=1)


class StorageSettings(BaseModel):
    backup_enabled: bool = True
    backup_keep: int = Field(default=5, ge=0)


class Settings(BaseModel):
    data_dir: Path = DEFAULT_DATA_DIR
    numbering: NumberingSettings = Field(default_factory=NumberingSettings)
    storage: StorageSettings = Field(default_factory=StorageSettings)
    log_level: str = "INFO"

    @property
    def settings_json(self) -> Path:
        return self.data_dir / "settings.json"

    @property
    def invoices_json(self) -> Path:
        return self.data_dir / "invoices.json"

    @property
    def quotes_json(self) -> Path:
        return self.data_dir / "quotes.json"

    @property
    def counters_json(self) -> Path:
        return self.data_dir / "counters.json"


def _load_json(path: Path) -> Any:
    if not path.exists():
        return None
    try:
        return json.loads(path.read_text(encoding="utf-8"))
    except (OSError, json.JSONDecodeError) as e:
        logger.warning("settings.json illisible (%s), valeurs par défaut utilisées", e)
        return None


def resolve_data_dir(data_dir: Optional[Union[str, Path]] = None) -> Path:
    if data_dir:
        return Path(data_dir)
    env = os.environ.get(ENV_DATA_DIR)
    if env:
        return Path(env.strip().strip('"').strip("'"))
    return DEFAULT_DATA_DIR


def load_settings(data_dir: Optional[Union[str, Path]] = None) -> Settings:
    """
    Charge data/settings.json :
    - dossier de données : argument, sinon BILLING_DATA_DIR, sinon ./data
    - clés 'numbering', 'storage', 'log_level' (les autres sont ignorées)
    - BILLING_LOG_LEVEL prime sur le fichier
    """
    base = resolve_data_dir(data_dir)
    raw = _load_json(base / "settings.json")
    raw = raw if isinstance(raw, dict) else {}

    payload = {k: raw[k] for k in ("numbering", "storage", "log_level") if isinstance(raw.get(k), (dict, str))}
    try:
        settings = Settings(data_dir=base, **payload)
    except ValidationError as e:
        logger.warning("settings.json invalide, valeurs par défaut utilisées: %s", e)
        settings = Settings(data_dir=base)

    env_level = os.environ.get(ENV_LOG_LEVEL)
    if env_level:
        settings.log_level = env_level.strip().upper()
    return settings


def configure_logging(level: str = "INFO") -> None:
    handler = logging.StreamHandler()
    handler.setFormatter(logging.Formatter(LOG_FORMAT))
    root = logging.getLogger("billing")
    # évite les handlers en double si appelé plusieurs fois
    for h in list(root.handlers):
        root.removeHandler(h)
    root.addHandler(handler)
    root.setLevel(getattr(logging, str(level).upper(), logging.INFO))
