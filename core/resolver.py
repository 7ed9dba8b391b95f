import logging
import os
import shutil
import subprocess
import sys
from pathlib import Path
from typing import List, Mapping, Optional, Tuple

from config import (
    ENV_WHISPER_PATH, ENV_WHISPER_MODEL, ENV_FFMPEG_PATH,
    BANNED_FFMPEG_FLAGS, PROJECT_ROOT,
)
from core.errors import NotFoundError, LicenseViolation, ProcessFailed
from core.model_manager import model_filename

logger = logging.getLogger(__name__)

WHISPER_BIN_NAMES = ("whisper", "main", "whisper-cli")
PARENT_DEPTH = 4

_MACHO_MAGICS = {0xFEEDFACE, 0xFEEDFACF, 0xCAFEBABE, 0xBEBAFECA, 0xCEFAEDFE, 0xCFFAEDFE}


def _exe(name: str) -> str:
    return f"{name}.exe" if os.name == "nt" else name


def is_native_executable(path: Path) -> bool:
    """True if the file starts with a Mach-O, ELF or PE magic number."""
    try:
        with open(path, "rb") as f:
            head = f.read(4)
    except OSError:
        return False
    if len(head) < 4:
        return head[:2] == b"MZ"
    if head == b"\x7fELF" or head[:2] == b"MZ":
        return True
    return int.from_bytes(head, "big") in _MACHO_MAGICS or int.from_bytes(head, "little") in _MACHO_MAGICS


def ensure_lgpl_ffmpeg(path: Path) -> Path:
    """Rejects ffmpeg builds whose -version banner shows GPL/nonfree configure flags."""
    try:
        result = subprocess.run([str(path), "-version"], stdout=subprocess.PIPE,
                                stderr=subprocess.PIPE, text=True, errors="replace")
    except OSError as e:
        raise ProcessFailed(f"Failed to run ffmpeg: {e}") from e
    banner = result.stdout or ""
    for flag in BANNED_FFMPEG_FLAGS:
        if flag in banner:
            raise LicenseViolation(
                f"FFmpeg build at {path} contains {flag}; please use an LGPL build."
            )
    return path


def bundled_resource_dir() -> Path:
    # PyInstaller unpacks bundled files under sys._MEIPASS
    if getattr(sys, "frozen", False):
        return Path(sys._MEIPASS)
    return PROJECT_ROOT / "resources"


class BinaryResolver:
    """Locates ffmpeg, the whisper.cpp binary and ggml models.

    Candidate directories are probed in a fixed order: working directory tree,
    bundled resources, per-user data directory, then the running executable's
    directory. Every probed path is reported when nothing usable is found.
    """

    def __init__(self, data_dir: Path,
                 resource_dir: Optional[Path] = None,
                 cwd: Optional[Path] = None,
                 exe_dir: Optional[Path] = None,
                 env: Optional[Mapping[str, str]] = None):
        self.data_dir = Path(data_dir)
        self.resource_dir = Path(resource_dir) if resource_dir else bundled_resource_dir()
        self.cwd = Path(cwd) if cwd else Path.cwd()
        self.exe_dir = Path(exe_dir) if exe_dir else Path(sys.executable).resolve().parent
        self.env = os.environ if env is None else env

    def _cwd_tree(self) -> List[Path]:
        dirs = [self.cwd]
        dirs.extend(list(self.cwd.parents)[:PARENT_DEPTH])
        return dirs

    # -- candidates --

    def whisper_bin_candidates(self) -> List[Path]:
        names = [_exe(n) for n in WHISPER_BIN_NAMES]
        out: List[Path] = []
        for root in self._cwd_tree():
            out.extend(root / "third_party" / "whisper" / "bin" / n for n in names)
        out.extend(self.resource_dir / "whisper" / "bin" / n for n in names)
        out.extend(self.data_dir / "whisper" / "bin" / n for n in names)
        out.extend(self.exe_dir / n for n in names)
        return out

    def model_candidates(self, model_size: str) -> List[Path]:
        name = model_filename(model_size)
        out = [root / "third_party" / "whisper" / "models" / name for root in self._cwd_tree()]
        out.append(self.resource_dir / "whisper" / "models" / name)
        out.append(self.data_dir / "models" / name)
        out.append(self.exe_dir / ".." / "Resources" / "whisper" / "models" / name)
        return out

    def ffmpeg_candidates(self) -> List[Path]:
        name = _exe("ffmpeg")
        out = [root / "third_party" / "ffmpeg" / "bin" / name for root in self._cwd_tree()]
        out.append(self.resource_dir / "ffmpeg" / "bin" / name)
        out.append(self.resource_dir / "third_party" / "ffmpeg" / "bin" / name)
        out.append(self.data_dir / "ffmpeg" / "bin" / name)
        out.append(self.exe_dir / ".." / "Resources" / "ffmpeg" / "bin" / name)
        return out

    # -- resolution --

    def resolve_whisper(self, model_size: str) -> Tuple[Path, Path]:
        bin_env = self.env.get(ENV_WHISPER_PATH)
        model_env = self.env.get(ENV_WHISPER_MODEL)
        if bin_env and model_env:
            bin_path, model_path = Path(bin_env), Path(model_env)
            if bin_path.exists() and model_path.exists():
                return bin_path, model_path

        bin_candidates = self.whisper_bin_candidates()
        model_candidates = self.model_candidates(model_size)
        binary = next((p for p in bin_candidates if p.is_file() and is_native_executable(p)), None)
        model = next((p for p in model_candidates if p.is_file()), None)
        if binary and model:
            logger.info(f"Using whisper binary {binary} with model {model}")
            return binary, model

        probed: List[Path] = []
        if bin_env and model_env:
            probed.extend([Path(bin_env), Path(model_env)])
        if binary is None:
            probed.extend(bin_candidates)
        if model is None:
            probed.extend(model_candidates)
        raise NotFoundError(
            "Whisper binary/model not found. Install whisper.cpp and "
            f"ggml-{model_size}.bin, or set {ENV_WHISPER_PATH} and {ENV_WHISPER_MODEL}.",
            probed=probed,
        )

    def resolve_ffmpeg(self) -> Path:
        probed: List[Path] = []
        explicit = self.env.get(ENV_FFMPEG_PATH)
        if explicit:
            path = Path(explicit)
            if path.exists():
                return ensure_lgpl_ffmpeg(path)
            probed.append(path)

        candidates = self.ffmpeg_candidates()
        on_path = shutil.which("ffmpeg", path=self.env.get("PATH", ""))
        if on_path:
            candidates.append(Path(on_path))
        probed.extend(candidates)

        for candidate in candidates:
            if candidate.is_file() and is_native_executable(candidate):
                logger.info(f"Using ffmpeg at {candidate}")
                return ensure_lgpl_ffmpeg(candidate)

        raise NotFoundError(
            f"FFmpeg not found. Provide an LGPL build at third_party/ffmpeg/bin/ffmpeg "
            f"or set {ENV_FFMPEG_PATH}.",
            probed=probed,
        )

    # -- installed checks --

    def is_model_installed(self, model_size: str) -> bool:
        return any(p.is_file() for p in self.model_candidates(model_size))

    def is_whisper_installed(self) -> bool:
        return any(p.is_file() for p in self.whisper_bin_candidates())

    def is_ffmpeg_installed(self) -> bool:
        bundle = self.data_dir / "ffmpeg" / "bin"
        if (bundle / _exe("ffmpeg")).is_file() and (bundle / _exe("ffprobe")).is_file():
            return True
        return any(p.is_file() for p in self.ffmpeg_candidates() if bundle not in p.parents)
