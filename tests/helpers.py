"""Audio payloads and a fake encoder shared by the unit and integration tests."""

import threading
from pathlib import Path
from abt.infrastructure.ffmpeg import EncodeResult

FLAC_BYTES = b"fLaC" + b"\x00\x00\x00\x22" + b"\x00" * 200
MP3_BYTES = b"\xff\xfb\x90\x64" + b"\x00" * 4096
ID3_MP3_BYTES = b"ID3\x03\x00\x00\x00\x00\x00\x00" + b"\xff\xfb\x90\x64" + b"\x00" * 4096


def write_flac(path: Path, payload: bytes = FLAC_BYTES) -> Path:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_bytes(payload)
    return path


def write_mp3(path: Path, payload: bytes = MP3_BYTES) -> Path:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_bytes(payload)
    return path


class FakeEncoder:
    """Stands in for FFmpegAdapter: writes a valid MP3 header to the temp path."""

    def __init__(self, fail_names=None, payload: bytes = MP3_BYTES):
        self.fail_names = set(fail_names or [])
        self.payload = payload
        self.calls = []
        self._lock = threading.Lock()

    def encode(self, source, temp_output, quality, shutdown_event=None):
        with self._lock:
            self.calls.append((Path(source), Path(temp_output), quality))
        if Path(source).name in self.fail_names:
            Path(temp_output).write_bytes(b"partial")
            return EncodeResult(success=False, diagnostics=f"{source}: Invalid data found", returncode=1)
        Path(temp_output).write_bytes(self.payload)
        return EncodeResult(success=True, returncode=0)
