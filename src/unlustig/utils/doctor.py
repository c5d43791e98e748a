from __future__ import annotations

import importlib
import sys
import tempfile
from pathlib import Path

from unlustig import __version__ as unlustig_version
from unlustig.config.settings import Settings


def _run_cmd(cmd: list[str]) -> tuple[int, str]:
    import subprocess

    try:
        proc = subprocess.run(cmd, capture_output=True, text=True)
    except FileNotFoundError:
        return 1, ""
    return proc.returncode, proc.stdout.strip() or proc.stderr.strip()


def _module_available(name: str) -> bool:
    try:
        importlib.import_module(name)
    except Exception:
        return False
    return True


def _check_writable(path: Path) -> bool:
    try:
        path.mkdir(parents=True, exist_ok=True)
        with tempfile.NamedTemporaryFile(dir=path, delete=True):
            return True
    except Exception:
        return False


def _get_version() -> str:
    return unlustig_version or "unknown"


def _pillow_info() -> tuple[str, bool]:
    import PIL
    from PIL import features

    return PIL.__version__, bool(features.check("freetype2"))


def _status_line(ok: bool, label: str, detail: str = "") -> str:
    icon = "✅" if ok else "❌"
    return f"{icon} {label}{detail}"


def _warn_line(label: str, detail: str = "") -> str:
    return f"⚠️ {label}{detail}"


def _install_hint(tool: str) -> str:
    if sys.platform.startswith("win"):
        return f"Windows: install {tool} (e.g. `winget install {tool}`) or add it to PATH."
    if sys.platform.startswith("darwin"):
        return f"macOS: install via Homebrew (`brew install {tool}`) and restart your shell."
    return f"Linux: install via your package manager (e.g., `sudo apt-get install {tool}`)."


def _tool_line(binary: str, package: str, *, required: bool) -> tuple[bool, list[str]]:
    code, out = _run_cmd([binary, "--version" if package == "gifsicle" else "-version"])
    if code != 0:
        if required:
            return False, [
                _status_line(False, binary, " (not found)"),
                _warn_line(f"{binary} install hint", f": {_install_hint(package)}"),
            ]
        return True, [_warn_line(binary, " (not found; optimization disabled)")]
    first_line = out.splitlines()[0] if out else "available"
    return True, [_status_line(True, binary, f": {first_line}")]


def run_doctor(settings: Settings) -> int:
    required_ok = True
    lines: list[str] = []

    lines.append("unlustig doctor")
    lines.append("")

    python_version = sys.version.split()[0]
    lines.append(_status_line(True, "Python", f": {python_version}"))
    lines.append(_status_line(True, "unlustig version", f": {_get_version()}"))

    if _module_available("PIL"):
        pillow_version, freetype = _pillow_info()
        lines.append(_status_line(True, "Pillow", f": {pillow_version}"))
        if freetype:
            lines.append(_status_line(True, "FreeType", " (available)"))
        else:
            lines.append(_warn_line("FreeType", " (missing; only the bitmap font can be used)"))
    else:
        required_ok = False
        lines.append(_status_line(False, "Pillow", " (not installed)"))

    output_dir = Path(settings.output_dir).expanduser().resolve()
    writable = _check_writable(output_dir)
    if not writable:
        required_ok = False
    lines.append(_status_line(writable, "Output dir writable", f": {output_dir}"))

    for binary, package, required in (
        (settings.ffmpeg_binary, "ffmpeg", True),
        (settings.ffprobe_binary, "ffmpeg", True),
        (settings.gifsicle_binary, "gifsicle", False),
    ):
        ok, tool_lines = _tool_line(binary, package, required=required)
        required_ok = required_ok and ok
        lines.extend(tool_lines)

    print("\n".join(lines))
    return 0 if required_ok else 1
