"""Quality directive parsing for the MP3 encoder.

Two modes are supported, mirroring LAME's own split:

- constant bitrate, written as digits followed by ``k`` (``320k``, ``192k``)
- variable quality, written as ``V`` followed by a single digit (``V0`` best,
  ``V9`` smallest)
"""

import re
from typing import Annotated, List, Literal, Union

from pydantic import BaseModel, ConfigDict, Field

DEFAULT_BITRATE = "320k"

_CBR_PATTERN = re.compile(r"^(?P<rate>\d+)k$")
_VBR_PATTERN = re.compile(r"^[Vv](?P<level>[0-9])$")


class ConstantBitrate(BaseModel):
    model_config = ConfigDict(frozen=True)

    mode: Literal["cbr"] = "cbr"
    rate_kbps: int = Field(gt=0)

    def encoder_args(self) -> List[str]:
        return ["-b:a", f"{self.rate_kbps}k"]

    @property
    def label(self) -> str:
        return f"CBR {self.rate_kbps}k"


class VariableQuality(BaseModel):
    model_config = ConfigDict(frozen=True)

    mode: Literal["vbr"] = "vbr"
    level: int = Field(ge=0, le=9)

    def encoder_args(self) -> List[str]:
        return ["-q:a", str(self.level)]

    @property
    def label(self) -> str:
        return f"VBR V{self.level}"


QualityDirective = Annotated[Union[ConstantBitrate, VariableQuality], Field(discriminator="mode")]


def parse_quality(raw_value: str) -> Union[ConstantBitrate, VariableQuality]:
    """Parses a ``--bitrate`` token into a quality directive.

    Raises ValueError for anything that is neither ``<digits>k`` nor ``V<digit>``.
    """
    text = str(raw_value).strip()
    match = _VBR_PATTERN.fullmatch(text)
    if match:
        return VariableQuality(level=int(match.group("level")))
    match = _CBR_PATTERN.fullmatch(text)
    if match and int(match.group("rate")) > 0:
        return ConstantBitrate(rate_kbps=int(match.group("rate")))
    raise ValueError(
        f"Invalid bitrate format '{text}'. Use CBR (320k, 256k) or VBR (V0, V2, V4, V6)"
    )
