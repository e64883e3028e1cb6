"""Content-signature checks for source (FLAC) and output (MP3) files.

File names are never trusted: a ``.flac`` that is really a JPEG, or a
half-written ``.mp3`` left behind by a crashed run, must both be rejected.
"""

import logging
from pathlib import Path
from typing import Optional

from abt.domain.models import FileKind

logger = logging.getLogger(__name__)

FLAC_MARKER = b"fLaC"
ID3_MARKER = b"ID3"
ID3_HEADER_SIZE = 10
ID3_FOOTER_FLAG = 0x10
DEFAULT_MIN_OUTPUT_BYTES = 1024


def _synchsafe_to_int(data: bytes) -> int:
    value = 0
    for byte in data:
        value = (value << 7) | (byte & 0x7F)
    return value


def _id3_tag_length(header: bytes) -> Optional[int]:
    """Total ID3v2 tag length (header, body, footer) or None if no tag."""
    if len(header) < ID3_HEADER_SIZE or not header.startswith(ID3_MARKER):
        return None
    length = ID3_HEADER_SIZE + _synchsafe_to_int(header[6:10])
    if header[5] & ID3_FOOTER_FLAG:
        length += ID3_HEADER_SIZE
    return length


def is_mpeg_layer3_sync(data: bytes) -> bool:
    """True for an MPEG audio frame header declaring Layer III (FF FB, FF FA, FF F3, ...)."""
    if len(data) < 2 or data[0] != 0xFF or (data[1] & 0xE0) != 0xE0:
        return False
    version_bits = (data[1] >> 3) & 0x03
    layer_bits = (data[1] >> 1) & 0x03
    return version_bits != 0x01 and layer_bits == 0x01


def _read_at(handle, offset: int, size: int) -> bytes:
    handle.seek(offset)
    return handle.read(size)


def classify(path: Path, min_output_bytes: int = DEFAULT_MIN_OUTPUT_BYTES) -> FileKind:
    """Classifies a file by its leading bytes: genuine FLAC, plausible MP3, or neither."""
    try:
        if not path.is_file():
            return FileKind.INVALID
        size = path.stat().st_size
        with open(path, "rb") as handle:
            header = handle.read(ID3_HEADER_SIZE)
            tag_length = _id3_tag_length(header)
            if tag_length is not None:
                after_tag = _read_at(handle, tag_length, len(FLAC_MARKER))
                if after_tag == FLAC_MARKER:
                    return FileKind.SOURCE
    except OSError as e:
        logger.debug(f"Cannot read {path}: {e}")
        return FileKind.INVALID

    if header.startswith(FLAC_MARKER):
        return FileKind.SOURCE

    if tag_length is not None or is_mpeg_layer3_sync(header):
        if size > min_output_bytes:
            return FileKind.OUTPUT
        logger.debug(f"Output too small to be complete: {path} ({size} bytes)")
    return FileKind.INVALID


def is_valid_output(path: Path, min_output_bytes: int = DEFAULT_MIN_OUTPUT_BYTES) -> bool:
    return classify(path, min_output_bytes) is FileKind.OUTPUT
