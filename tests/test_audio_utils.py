"""
Tests for audio processing utilities.
"""

import io
import wave
from unittest.mock import AsyncMock, MagicMock, patch

import httpx
import pytest

from voicegate.utils.audio_utils import (
    AudioDownloadError,
    AudioProcessingError,
    convert_to_16khz_mono,
    download_audio_file,
    get_audio_duration,
    recording_media_url,
    validate_audio_format,
)


def make_wav(seconds: float = 1.0, sample_rate: int = 16000, channels: int = 1) -> bytes:
    """Silent 16-bit PCM WAV."""
    buffer = io.BytesIO()
    with wave.open(buffer, 'wb') as wav_file:
        wav_file.setnchannels(channels)
        wav_file.setsampwidth(2)
        wav_file.setframerate(sample_rate)
        wav_file.writeframes(b'\x00\x00' * channels * int(sample_rate * seconds))
    return buffer.getvalue()


class TestRecordingMediaUrl:

    def test_twilio_recording_gets_wav_extension(self):
        url = "https://api.twilio.com/2010-04-01/Accounts/AC1/Recordings/RE1"

        assert recording_media_url(url) == f"{url}.wav"

    def test_explicit_extension_kept(self):
        url = "https://api.twilio.com/2010-04-01/Accounts/AC1/Recordings/RE1.mp3"

        assert recording_media_url(url) == url

    def test_other_hosts_untouched(self):
        assert recording_media_url("https://cdn.example.com/a") == "https://cdn.example.com/a"

    def test_rejects_non_http_reference(self):
        with pytest.raises(AudioDownloadError, match="Unsupported audio reference"):
            recording_media_url("file:///etc/passwd")


class TestAudioUtils:
    """Test cases for audio utility functions."""

    def test_validate_audio_format_valid_wav(self):
        """16kHz mono 16-bit WAV is accepted."""
        is_valid, description = validate_audio_format(make_wav())

        assert is_valid
        assert "Valid 16kHz mono WAV format" in description

    def test_validate_audio_format_wrong_sample_rate(self):
        is_valid, description = validate_audio_format(make_wav(sample_rate=8000))

        assert not is_valid
        assert "Expected 16kHz sample rate" in description

    def test_validate_audio_format_stereo(self):
        is_valid, description = validate_audio_format(make_wav(channels=2))

        assert not is_valid
        assert "Expected mono" in description

    def test_validate_audio_format_invalid_header(self):
        is_valid, description = validate_audio_format(b'INVALID_HEADER' + b'\x00' * 40)

        assert not is_valid
        assert "Not a valid WAV file" in description

    def test_validate_audio_format_too_short(self):
        is_valid, description = validate_audio_format(b'short')

        assert not is_valid
        assert "too short" in description

    def test_get_audio_duration(self):
        """Duration is derived from the WAV header."""
        assert abs(get_audio_duration(make_wav(seconds=2.0)) - 2.0) < 0.01

    def test_get_audio_duration_invalid(self):
        with pytest.raises(AudioProcessingError):
            get_audio_duration(b'not a wav file at all, definitely not forty four bytes')

    @pytest.mark.asyncio
    async def test_download_audio_file_success(self):
        """Test successful audio file download."""
        mock_response = MagicMock()
        mock_response.content = b'fake_audio_data'
        mock_response.raise_for_status = MagicMock()

        with patch('httpx.AsyncClient') as mock_client:
            mock_client.return_value.__aenter__.return_value.get = AsyncMock(return_value=mock_response)

            result = await download_audio_file("https://example.com/audio.wav", auth=("AC1", "token"))

            assert result == b'fake_audio_data'
            assert mock_client.call_args.kwargs["auth"] == ("AC1", "token")

    @pytest.mark.asyncio
    async def test_download_audio_file_empty_response(self):
        """Test audio file download with empty response."""
        mock_response = MagicMock()
        mock_response.content = b''
        mock_response.raise_for_status = MagicMock()

        with patch('httpx.AsyncClient') as mock_client:
            mock_client.return_value.__aenter__.return_value.get = AsyncMock(return_value=mock_response)

            with pytest.raises(AudioDownloadError, match="Downloaded audio file is empty"):
                await download_audio_file("https://example.com/audio.wav")

    @pytest.mark.asyncio
    async def test_download_audio_file_transport_error(self):
        """Test audio file download with a connection error."""
        with patch('httpx.AsyncClient') as mock_client:
            mock_client.return_value.__aenter__.return_value.get = AsyncMock(
                side_effect=httpx.ConnectError("connection refused")
            )

            with pytest.raises(AudioDownloadError, match="Failed to download audio"):
                await download_audio_file("https://example.com/audio.wav")

    def test_convert_to_16khz_mono_success(self):
        """Test successful audio conversion using ffmpeg."""
        input_data = b'fake_input_audio'
        expected_output = b'fake_converted_audio'

        with patch('ffmpeg.input') as mock_input, \
             patch('ffmpeg.output') as mock_output, \
             patch('ffmpeg.run') as mock_run, \
             patch('tempfile.NamedTemporaryFile') as mock_temp:

            mock_input_file = MagicMock()
            mock_output_file = MagicMock()
            mock_output_file.read.return_value = expected_output

            mock_temp.return_value.__enter__.side_effect = [mock_input_file, mock_output_file]

            result = convert_to_16khz_mono(input_data)

            assert result == expected_output
            mock_input_file.write.assert_called_once_with(input_data)
            assert mock_output.call_args.kwargs["ar"] == 16000
            assert mock_output.call_args.kwargs["ac"] == 1
            mock_run.assert_called_once()

    def test_convert_to_16khz_mono_empty_input(self):
        """Test audio conversion with empty input."""
        with pytest.raises(AudioProcessingError, match="Audio data is empty"):
            convert_to_16khz_mono(b'')
