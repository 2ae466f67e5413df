"""Technical audio metadata extraction using mutagen.

Reports container format, sample rate, bit depth, duration and channel
count. Compressed formats (MP3, AAC, Ogg) have no bit depth and report
``None`` for it.
"""

import logging
from dataclasses import asdict, dataclass
from pathlib import Path

import mutagen

from phonica.errors import AnalysisError

logger = logging.getLogger(__name__)

UNKNOWN_FORMAT = "UNKNOWN"

# mutagen FileType class name -> catalogue format label
_FORMAT_BY_TYPE: dict[str, str] = {
    "WAVE": "WAV",
    "MP3": "MP3",
    "EasyMP3": "MP3",
    "AIFF": "AIFF",
    "FLAC": "FLAC",
    "OggVorbis": "OGG",
    "OggFLAC": "FLAC",
    "OggOpus": "OPUS",
    "MP4": "M4A",
    "EasyMP4": "M4A",
    "AAC": "AAC",
    "ASF": "WMA",
}

# File extension fallback for types missing from the table above
_FORMAT_BY_EXTENSION: dict[str, str] = {
    "wav": "WAV",
    "wave": "WAV",
    "mp3": "MP3",
    "aif": "AIFF",
    "aiff": "AIFF",
    "flac": "FLAC",
    "ogg": "OGG",
    "opus": "OPUS",
    "m4a": "M4A",
    "aac": "AAC",
    "wma": "WMA",
}


@dataclass
class AudioMetadata:
    """Container for extracted audio metadata."""

    file_format: str | None
    sample_rate: int | None = None
    bit_depth: int | None = None
    duration_seconds: float | None = None
    channels: int | None = None

    def as_dict(self) -> dict[str, str | int | float | None]:
        return asdict(self)


def normalize_file_format(audio_file: mutagen.FileType, file_path: Path) -> str:
    """Map a mutagen file type to an upper-case format label, or ``"UNKNOWN"``."""
    label = _FORMAT_BY_TYPE.get(type(audio_file).__name__)
    if label is not None:
        return label
    suffix = file_path.suffix.lower().lstrip(".")
    return _FORMAT_BY_EXTENSION.get(suffix, UNKNOWN_FORMAT)


def detect_bit_depth(info: object) -> int | None:
    """Return bits per sample for PCM-style streams.

    WAV, AIFF and FLAC report ``bits_per_sample``; ALAC in MP4 reports it
    too. Lossy codecs report 0 or nothing at all.
    """
    bits = getattr(info, "bits_per_sample", None)
    if isinstance(bits, int) and bits > 0:
        return bits
    return None


def extract_metadata(file_path: Path) -> AudioMetadata:
    """Read container metadata from an audio file with mutagen.

    Args:
        file_path: Path to the audio file.

    Returns:
        AudioMetadata with the technical fields populated.

    Raises:
        FileNotFoundError: If *file_path* does not exist.
        AnalysisError: If mutagen cannot identify an audio stream.
    """
    file_path = Path(file_path)
    if not file_path.is_file():
        raise FileNotFoundError(file_path)

    try:
        audio_file = mutagen.File(str(file_path))
    except mutagen.MutagenError as exc:
        logger.warning("mutagen could not parse file %s: %s", file_path, exc)
        raise AnalysisError("Failed to extract metadata: unsupported or corrupt audio") from exc

    if audio_file is None or audio_file.info is None:
        logger.warning("mutagen found no audio stream in %s", file_path)
        raise AnalysisError("Failed to extract metadata: no audio stream found")

    info = audio_file.info
    sample_rate = getattr(info, "sample_rate", None)
    channels = getattr(info, "channels", None)
    length = getattr(info, "length", None)

    return AudioMetadata(
        file_format=normalize_file_format(audio_file, file_path),
        sample_rate=int(sample_rate) if sample_rate else None,
        bit_depth=detect_bit_depth(info),
        duration_seconds=float(length) if length is not None else None,
        channels=int(channels) if channels else None,
    )
