"""Filesystem and process helpers shared by service collaborators.

Functions raise CommandError/OSError on failure; services turn those into
``Result`` values at their boundary.
"""

from __future__ import annotations

import logging
import os
import shutil
import subprocess
import tempfile
from pathlib import Path

from hostpanel.errors import CommandError

log = logging.getLogger(__name__)


def run_command(
    cmd: list[str],
    *,
    timeout: float,
    input_text: str | None = None,
    cwd: str | None = None,
) -> str:
    """Run an external command, bounded by ``timeout`` seconds.

    Returns stdout.  Raises CommandError on non-zero exit, missing binary, or
    timeout.
    """
    log.debug("Running %s", cmd)
    try:
        proc = subprocess.run(
            cmd,
            input=input_text,
            cwd=cwd,
            check=True,
            capture_output=True,
            text=True,
            timeout=timeout,
        )
    except subprocess.CalledProcessError as e:
        detail = (e.stderr or e.stdout or "").strip() or f"exit status {e.returncode}"
        raise CommandError(cmd, detail) from None
    except subprocess.TimeoutExpired:
        raise CommandError(cmd, f"timed out after {timeout:g}s") from None
    except OSError as e:
        raise CommandError(cmd, e.strerror or str(e)) from None
    return proc.stdout


def write_file_atomic(
    path: Path,
    content: str,
    *,
    mode: int = 0o644,
    owner: str | None = None,
    group: str | None = None,
) -> bool:
    """Replace ``path`` with ``content`` via a temp file and rename.

    Returns False when the file already held exactly this content (nothing
    written), True otherwise.
    """
    try:
        if path.read_text() == content:
            if (path.stat().st_mode & 0o7777) != mode:
                path.chmod(mode)
            return False
    except (FileNotFoundError, UnicodeDecodeError):
        pass

    path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp_name = tempfile.mkstemp(prefix=f".{path.name}.", dir=str(path.parent))
    try:
        with os.fdopen(fd, "w") as f:
            f.write(content)
        os.chmod(tmp_name, mode)
        if owner or group:
            shutil.chown(tmp_name, user=owner, group=group)
        os.replace(tmp_name, path)
    except BaseException:
        Path(tmp_name).unlink(missing_ok=True)
        raise
    return True


def ensure_dir(
    path: Path,
    *,
    mode: int = 0o755,
    owner: str | None = None,
    group: str | None = None,
) -> None:
    path.mkdir(parents=True, exist_ok=True)
    path.chmod(mode)
    if owner or group:
        shutil.chown(path, user=owner, group=group)


def remove_path(path: Path) -> bool:
    """Remove a file or directory tree.  Returns False if it was already gone."""
    if path.is_symlink() or path.is_file():
        path.unlink()
        return True
    if path.is_dir():
        shutil.rmtree(path)
        return True
    return False


def read_map(path: Path) -> dict[str, str]:
    """Read a ``key value`` lookup table (postfix/proftpd style)."""
    entries: dict[str, str] = {}
    try:
        text = path.read_text()
    except FileNotFoundError:
        return entries
    for line in text.splitlines():
        stripped = line.strip()
        if not stripped or stripped.startswith("#"):
            continue
        key, _, value = stripped.partition(" ")
        entries[key] = value.strip()
    return entries


def write_map(path: Path, entries: dict[str, str], *, mode: int = 0o640) -> bool:
    """Write a lookup table sorted by key so repeated writes are stable."""
    lines = [f"{key} {value}".rstrip() for key, value in sorted(entries.items())]
    return write_file_atomic(path, "\n".join(lines) + "\n" if lines else "", mode=mode)
