from __future__ import annotations
import json
import logging
import os
from pathlib import Path
from shutil import which
from typing import Any, Dict, Optional

from pydantic import ValidationError

from invoicing.models.client import BusinessProfile
from invoicing.models.settings import CurrencySettings

logger = logging.getLogger(__name__)

# --- Base paths ---
PACKAGE_DIR = Path(__file__).resolve().parent  # invoicing/
ROOT_DIR = PACKAGE_DIR.parent
TEMPLATES_DIR = PACKAGE_DIR / "templates" / "pdf"

DEFAULT_DUE_DAYS = 15


def data_dir() -> Path:
    return Path(os.environ.get("INVOICING_DATA_DIR") or ROOT_DIR / "data")


def exports_dir() -> Path:
    return Path(os.environ.get("INVOICING_EXPORTS_DIR") or ROOT_DIR / "exports")


def settings_path(base: Optional[os.PathLike | str] = None) -> Path:
    return Path(base) / "settings.json" if base else data_dir() / "settings.json"


# ---------- settings.json ----------
def load_settings(path: Optional[os.PathLike | str] = None) -> Dict[str, Any]:
    p = Path(path) if path else settings_path()
    if not p.exists():
        return {}
    try:
        data = json.loads(p.read_text(encoding="utf-8"))
    except json.JSONDecodeError as e:
        logger.warning("Ignoring unreadable settings file %s: %s", p, e)
        return {}
    return data if isinstance(data, dict) else {}


def save_settings(settings: Dict[str, Any], path: Optional[os.PathLike | str] = None) -> None:
    p = Path(path) if path else settings_path()
    p.parent.mkdir(parents=True, exist_ok=True)
    p.write_text(json.dumps(settings, ensure_ascii=False, indent=2), encoding="utf-8")


def currency_settings(settings: Optional[Dict[str, Any]] = None) -> CurrencySettings:
    s = load_settings() if settings is None else settings
    try:
        return CurrencySettings.model_validate(s.get("currency") or {})
    except ValidationError as e:
        logger.warning("Invalid currency settings, using defaults: %s", e)
        return CurrencySettings()


def business_profile(settings: Optional[Dict[str, Any]] = None) -> BusinessProfile:
    s = load_settings() if settings is None else settings
    try:
        return BusinessProfile.model_validate(s.get("company") or {})
    except ValidationError as e:
        logger.warning("Invalid company profile, using defaults: %s", e)
        return BusinessProfile()


def due_days(settings: Optional[Dict[str, Any]] = None) -> int:
    s = load_settings() if settings is None else settings
    try:
        return int(s.get("due_days", DEFAULT_DUE_DAYS))
    except (TypeError, ValueError):
        return DEFAULT_DUE_DAYS


# ---------- PDF engine ----------
def _clean_path(p: str) -> str:
    """Turns 'C\\:\\Program Files\\...' back into 'C:\\Program Files\\...' and normalizes."""
    if not p:
        return ""
    p = p.strip().strip('"').strip("'")
    p = p.replace("\\:", ":")
    return os.path.normpath(p)


def find_wkhtmltopdf(settings: Optional[Dict[str, Any]] = None) -> Optional[str]:
    """
    Locate the wkhtmltopdf binary:
    - env (WKHTMLTOPDF, WKHTMLTOPDF_CMD)
    - settings.json -> pdf.wkhtmltopdf_path or wkhtmltopdf_path
    - usual Windows install paths
    - PATH
    """
    for env_key in ("WKHTMLTOPDF", "WKHTMLTOPDF_CMD"):
        val = os.environ.get(env_key)
        if val:
            path = _clean_path(val)
            if Path(path).is_file():
                return path

    s = load_settings() if settings is None else settings
    pdf_conf = s.get("pdf", {}) if isinstance(s.get("pdf"), dict) else {}
    wk = pdf_conf.get("wkhtmltopdf_path") or s.get("wkhtmltopdf_path")
    if wk:
        path = _clean_path(wk)
        if Path(path).is_file():
            return path

    for c in (
        r"C:\Program Files\wkhtmltopdf\bin\wkhtmltopdf.exe",
        r"C:\Program Files (x86)\wkhtmltopdf\bin\wkhtmltopdf.exe",
    ):
        if Path(c).is_file():
            return c

    found = which("wkhtmltopdf")
    if found:
        return _clean_path(found)
    return None
