from __future__ import annotations

import os
import shutil
import tempfile
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml
from pydantic import AliasChoices, Field
from pydantic_settings import BaseSettings, SettingsConfigDict

# Engine presets: (executable, args). Args name the source file main.tex.
ENGINE_PRESETS: Dict[str, tuple] = {
    "tectonic": ("tectonic", ["main.tex", "--outfmt", "pdf"]),
    "pdflatex": ("pdflatex", ["-interaction=nonstopmode", "-halt-on-error", "-no-shell-escape", "main.tex"]),
}


class Settings(BaseSettings):
    """Cấu hình service; đọc từ conf/texbox.yaml + override bằng TEXBOX_* env."""

    # ---- job root ----
    jobs_dir: Path = Path(tempfile.gettempdir()) / "latex-jobs"

    # ---- compiler ----
    engine: str = "tectonic"
    compiler: Optional[str] = None          # None -> preset theo engine
    compiler_args: Optional[List[str]] = None
    source_filename: str = "main.tex"
    artifact_filename: str = "main.pdf"
    download_filename: str = "output.pdf"

    # ---- limits ----
    timeout_s: float = 15.0
    kill_grace_s: float = 2.0
    max_source_bytes: int = 1024 * 1024
    max_pdf_bytes: int = 20 * 1024 * 1024

    # ---- diagnostics ----
    max_summary_errors: int = 3
    lookahead_lines: int = 3

    # ---- auth ----
    jwt_secret: Optional[str] = Field(
        default=None, validation_alias=AliasChoices("TEXBOX_JWT_SECRET", "JWT_SECRET", "jwt_secret")
    )
    jwt_algorithms: List[str] = ["HS256"]
    jwt_leeway_s: int = 0

    # ---- http ----
    # chỉ origin của editor; "*" cùng allow_credentials là quá rộng
    cors_origins: List[str] = ["http://localhost:5173", "http://127.0.0.1:5173"]
    host: str = "127.0.0.1"
    port: int = 3001
    log_level: str = "INFO"

    model_config = SettingsConfigDict(env_prefix="TEXBOX_", extra="ignore", populate_by_name=True)

    def command(self) -> List[str]:
        preset = ENGINE_PRESETS.get(self.engine.lower())
        if preset is None and self.compiler is None:
            raise ValueError(f"unknown engine '{self.engine}' and no compiler configured")
        exe = self.compiler or preset[0]
        args = self.compiler_args if self.compiler_args is not None else (preset[1] if preset else [])
        return [exe, *args]

    def compiler_found(self) -> bool:
        try:
            exe = self.command()[0]
        except ValueError:
            return False
        return shutil.which(exe) is not None


def _read_yaml(path: Path) -> Dict[str, Any]:
    try:
        with open(path, "r", encoding="utf-8") as f:
            data = yaml.safe_load(f) or {}
    except FileNotFoundError:
        return {}
    if not isinstance(data, dict):
        raise ValueError(f"{path}: expected a mapping at top level")
    return data


def load_settings(conf_path: Optional[Path] = None) -> Settings:
    """env TEXBOX_* > YAML > default."""
    # 0) env
    env = Settings()

    # 1) YAML (TEXBOX_CONF hoặc conf/texbox.yaml)
    path = Path(conf_path or os.environ.get("TEXBOX_CONF", "conf/texbox.yaml"))
    data = _read_yaml(path)

    # 2) merge: chỉ các field đã biết; giá trị env đè lên YAML
    merged = {k: v for k, v in data.items() if k in Settings.model_fields}
    merged.update({k: getattr(env, k) for k in env.model_fields_set})
    return Settings(**merged)
