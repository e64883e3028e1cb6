import logging
import queue
import shutil
import subprocess
import threading
import time
from pathlib import Path
from typing import List, Optional

from pydantic import BaseModel

from abt.config.quality import ConstantBitrate, VariableQuality
from abt.domain.exceptions import EncoderUnavailableError


class EncodeResult(BaseModel):
    success: bool
    diagnostics: str = ""
    returncode: Optional[int] = None
    interrupted: bool = False


class FFmpegAdapter:
    """Wrapper around ffmpeg for FLAC -> MP3 encoding.

    The output format is inferred by ffmpeg from the output file name, so the
    temporary path handed to encode() must already carry the target extension.
    """

    def __init__(self, binary: str = "ffmpeg", debug: bool = False):
        self.binary = binary
        self.debug = debug
        self.logger = logging.getLogger(__name__)

    def check_available(self) -> str:
        """Returns the resolved encoder path or raises EncoderUnavailableError."""
        resolved = shutil.which(self.binary)
        if not resolved:
            raise EncoderUnavailableError(f"{self.binary} is not installed")
        return resolved

    def _build_command(self, source: Path, temp_output: Path, quality) -> List[str]:
        """Constructs the ffmpeg command line arguments."""
        cmd = [
            self.binary,
            "-nostdin",
            "-hide_banner",
            "-loglevel", "error",
            "-i", str(source),
        ]
        cmd.extend(quality.encoder_args())
        # Keep tags, written as ID3v2.3 for wide player support
        cmd.extend(["-map_metadata", "0", "-id3v2_version", "3"])
        cmd.extend(["-y", str(temp_output)])
        return cmd

    def encode(
        self,
        source: Path,
        temp_output: Path,
        quality,
        shutdown_event: Optional[threading.Event] = None,
    ) -> EncodeResult:
        """Encodes source into temp_output. Never raises for encoder failures."""
        if not isinstance(quality, (ConstantBitrate, VariableQuality)):
            raise TypeError(f"Unsupported quality directive: {quality!r}")

        filename = source.name
        start_time = time.monotonic() if self.debug else None
        cmd = self._build_command(source, temp_output, quality)
        if self.debug:
            self.logger.debug(f"FFMPEG_CMD: {' '.join(cmd)}")

        try:
            process = subprocess.Popen(
                cmd,
                stdout=subprocess.DEVNULL,
                stderr=subprocess.PIPE,
                universal_newlines=True,
                errors="replace",
            )
        except OSError as e:
            return EncodeResult(success=False, diagnostics=f"Failed to start {self.binary}: {e}")

        # Drain stderr on a side thread so a chatty encoder never blocks on a full pipe
        stderr_lines: "queue.Queue[str]" = queue.Queue()

        def _reader():
            if not process.stderr:
                return
            try:
                for line in process.stderr:
                    stderr_lines.put(line)
            except (OSError, ValueError):
                # Pipe closed under us after an interrupt
                return

        reader_thread = threading.Thread(target=_reader, daemon=True)
        reader_thread.start()

        try:
            while True:
                if shutdown_event and shutdown_event.is_set():
                    self.logger.info(f"FFMPEG_INTERRUPTED: {filename} (shutdown signal)")
                    self._terminate(process)
                    self._close_stderr(process, reader_thread, timeout=1.0)
                    return EncodeResult(success=False, diagnostics="Interrupted", interrupted=True)
                try:
                    process.wait(timeout=0.1)
                    break
                except subprocess.TimeoutExpired:
                    continue
        except KeyboardInterrupt:
            self.logger.info(f"FFMPEG_INTERRUPTED: {filename} (KeyboardInterrupt)")
            self._terminate(process)
            self._close_stderr(process, reader_thread, timeout=1.0)
            raise

        # The process has exited, so the pipe reaches EOF and the reader finishes
        self._close_stderr(process, reader_thread)
        diagnostics = "".join(stderr_lines.queue).strip()

        if self.debug and start_time is not None:
            elapsed = time.monotonic() - start_time
            self.logger.info(f"FFMPEG_END: {filename} code={process.returncode} elapsed={elapsed:.2f}s")

        if process.returncode != 0:
            if not diagnostics:
                diagnostics = f"{self.binary} exited with code {process.returncode}"
            return EncodeResult(success=False, diagnostics=diagnostics, returncode=process.returncode)
        return EncodeResult(success=True, diagnostics=diagnostics, returncode=0)

    @staticmethod
    def _close_stderr(process: subprocess.Popen, reader_thread: threading.Thread, timeout: Optional[float] = None) -> None:
        reader_thread.join(timeout)
        if process.stderr:
            process.stderr.close()

    @staticmethod
    def _terminate(process: subprocess.Popen) -> None:
        process.terminate()
        try:
            process.wait(timeout=3)
        except subprocess.TimeoutExpired:
            process.kill()
            process.wait()
