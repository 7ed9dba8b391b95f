import logging
import os
import shutil
import stat
import zipfile
import zlib
from pathlib import Path
from typing import Iterable, Optional

from core.errors import FormatError, StorageError

logger = logging.getLogger(__name__)

WHISPER_ENTRY_NAMES = ("whisper", "main", "whisper-cli")


def _entry_matches(entry_name: str, names: Iterable[str]) -> bool:
    # Upstream archives nest the binary under different folders per release
    base = entry_name.rstrip("/").rsplit("/", 1)[-1]
    if base.lower().endswith(".exe"):
        base = base[:-4]
    return not entry_name.endswith("/") and base in names


def _open_zip(zip_path: Path) -> zipfile.ZipFile:
    try:
        return zipfile.ZipFile(zip_path)
    except zipfile.BadZipFile as e:
        raise FormatError(f"Invalid zip: {e}") from e
    except OSError as e:
        raise StorageError(f"Failed to open zip: {e}") from e


def _extract_entry(archive: zipfile.ZipFile, info: zipfile.ZipInfo, dest_path: Path):
    try:
        dest_path.parent.mkdir(parents=True, exist_ok=True)
        with archive.open(info) as src, open(dest_path, "wb") as out:
            shutil.copyfileobj(src, out)
    except (zipfile.BadZipFile, zlib.error, EOFError) as e:
        # Central directory was readable but the member data is corrupt
        raise FormatError(f"Corrupt zip entry {info.filename}: {e}") from e
    except OSError as e:
        raise StorageError(f"Failed to extract {info.filename}: {e}") from e


def make_executable(path: Path):
    """Zip extraction drops mode bits, so set rwxr-xr-x explicitly."""
    try:
        mode = os.stat(path).st_mode
        os.chmod(path, mode | stat.S_IRWXU | stat.S_IRGRP | stat.S_IXGRP | stat.S_IROTH | stat.S_IXOTH)
    except OSError as e:
        raise StorageError(f"Failed to mark {path.name} executable: {e}") from e


def find_entry(archive: zipfile.ZipFile, names: Iterable[str]) -> Optional[zipfile.ZipInfo]:
    names = tuple(names)
    return next((i for i in archive.infolist() if _entry_matches(i.filename, names)), None)


def extract_whisper_zip(zip_path: Path, dest_path: Path) -> Path:
    """Extracts the first whisper.cpp CLI binary found in the archive to dest_path."""
    with _open_zip(zip_path) as archive:
        info = find_entry(archive, WHISPER_ENTRY_NAMES)
        if info is None:
            raise FormatError("Whisper binary not found in zip.")
        logger.info(f"Extracting {info.filename} → {dest_path}")
        _extract_entry(archive, info, dest_path)
    make_executable(dest_path)
    return dest_path


def extract_ffmpeg_zip(zip_path: Path, dest_dir: Path) -> Path:
    """Installs ffmpeg and ffprobe from a bundle into dest_dir/bin. Both must be present."""
    with _open_zip(zip_path) as archive:
        ffmpeg = find_entry(archive, ("ffmpeg",))
        ffprobe = find_entry(archive, ("ffprobe",))
        if ffmpeg is None:
            raise FormatError("ffmpeg binary not found in zip.")
        if ffprobe is None:
            raise FormatError("ffprobe binary not found in zip.")
        bin_dir = dest_dir / "bin"
        suffix = ".exe" if os.name == "nt" else ""
        _extract_entry(archive, ffmpeg, bin_dir / f"ffmpeg{suffix}")
        _extract_entry(archive, ffprobe, bin_dir / f"ffprobe{suffix}")
    make_executable(bin_dir / f"ffmpeg{suffix}")
    make_executable(bin_dir / f"ffprobe{suffix}")
    return bin_dir / f"ffmpeg{suffix}"
