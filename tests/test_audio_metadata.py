"""Tests for phonica.audio.metadata."""

from pathlib import Path

import pytest

from phonica.audio.metadata import AudioMetadata, detect_bit_depth, extract_metadata
from phonica.errors import AnalysisError


@pytest.fixture
def wav_file(tmp_path: Path, wav_factory) -> Path:
    """Create a 1-second 48 kHz stereo 16-bit WAV file and return its path."""
    audio_path = tmp_path / "take1.wav"
    audio_path.write_bytes(wav_factory(duration_seconds=1.0, sample_rate=48000, channels=2))
    return audio_path


@pytest.fixture
def empty_file(tmp_path: Path) -> Path:
    p = tmp_path / "empty.bin"
    p.write_bytes(b"")
    return p


class TestExtractMetadata:
    def test_wav_metadata(self, wav_file: Path) -> None:
        meta = extract_metadata(wav_file)
        assert isinstance(meta, AudioMetadata)
        assert meta.file_format == "WAV"
        assert meta.sample_rate == 48000
        assert meta.channels == 2
        assert meta.bit_depth == 16

    def test_wav_duration(self, wav_file: Path) -> None:
        meta = extract_metadata(wav_file)
        assert meta.duration_seconds is not None
        assert abs(meta.duration_seconds - 1.0) < 0.05

    def test_24_bit_mono(self, tmp_path: Path, wav_factory) -> None:
        path = tmp_path / "mono24.wav"
        path.write_bytes(wav_factory(sample_rate=44100, channels=1, sample_width=3))

        meta = extract_metadata(path)
        assert meta.bit_depth == 24
        assert meta.channels == 1
        assert meta.sample_rate == 44100

    def test_as_dict_keys(self, wav_file: Path) -> None:
        assert set(extract_metadata(wav_file).as_dict()) == {
            "file_format",
            "sample_rate",
            "bit_depth",
            "duration_seconds",
            "channels",
        }

    def test_missing_file_raises(self, tmp_path: Path) -> None:
        with pytest.raises(FileNotFoundError):
            extract_metadata(tmp_path / "nope.wav")

    def test_empty_file_raises_analysis_error(self, empty_file: Path) -> None:
        with pytest.raises(AnalysisError):
            extract_metadata(empty_file)

    def test_text_file_raises_analysis_error(self, tmp_path: Path) -> None:
        path = tmp_path / "notes.txt"
        path.write_text("definitely not audio")
        with pytest.raises(AnalysisError) as exc_info:
            extract_metadata(path)
        assert exc_info.value.status_code == 422


class TestDetectBitDepth:
    def test_positive_bits(self) -> None:
        class Info:
            bits_per_sample = 24

        assert detect_bit_depth(Info()) == 24

    def test_zero_bits_is_none(self) -> None:
        class Info:
            bits_per_sample = 0

        assert detect_bit_depth(Info()) is None

    def test_missing_attribute_is_none(self) -> None:
        assert detect_bit_depth(object()) is None
