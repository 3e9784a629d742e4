"""
Audio utilities for call recordings.

Provider recordings arrive as URLs. This module fetches them (with the
provider's credentials when required), normalises them to 16kHz mono WAV
with ffmpeg, and reads basic properties from the WAV header.
"""

import logging
import struct
import tempfile
from typing import Optional, Tuple

import ffmpeg
import httpx

logger = logging.getLogger(__name__)

TWILIO_RECORDING_HOST = "api.twilio.com"


class AudioProcessingError(Exception):
    """Raised when audio processing operations fail."""
    pass


class AudioDownloadError(Exception):
    """Raised when audio download operations fail."""
    pass


def recording_media_url(audio_reference: str) -> str:
    """
    Resolve a recording reference to a downloadable media URL.

    Twilio recording URLs point at a resource without an extension; the WAV
    media is served when ``.wav`` is appended.
    """
    if not audio_reference.startswith(('http://', 'https://')):
        raise AudioDownloadError(f"Unsupported audio reference: {audio_reference}")

    if TWILIO_RECORDING_HOST in audio_reference and not audio_reference.endswith(('.wav', '.mp3')):
        return f"{audio_reference}.wav"
    return audio_reference


async def download_audio_file(
    url: str,
    auth: Optional[Tuple[str, str]] = None,
    timeout: int = 30
) -> bytes:
    """
    Download an audio file using httpx.

    Args:
        url: URL to download audio from
        auth: Optional basic auth credentials
        timeout: Request timeout in seconds

    Returns:
        Audio file content as bytes

    Raises:
        AudioDownloadError: If download fails
    """
    try:
        async with httpx.AsyncClient(timeout=timeout, auth=auth, follow_redirects=True) as client:
            logger.info(f"Downloading recording from URL: {url}")
            response = await client.get(url)
            response.raise_for_status()

            content_length = len(response.content)
            logger.info(f"Downloaded {content_length} bytes of audio data")

            if content_length == 0:
                raise AudioDownloadError("Downloaded audio file is empty")

            return response.content

    except httpx.TimeoutException as e:
        logger.error(f"Timeout downloading audio from {url}: {e}")
        raise AudioDownloadError(f"Timeout downloading audio: {e}")
    except httpx.HTTPStatusError as e:
        logger.error(f"HTTP error downloading audio from {url}: {e}")
        raise AudioDownloadError(f"HTTP error downloading audio: {e.response.status_code}")
    except httpx.HTTPError as e:
        logger.error(f"Transport error downloading audio from {url}: {e}")
        raise AudioDownloadError(f"Failed to download audio: {e}")


def convert_to_16khz_mono(audio_data: bytes, input_format: Optional[str] = None) -> bytes:
    """
    Convert audio to 16kHz mono 16-bit WAV using ffmpeg.

    Blocking; callers on the event loop should run it in a worker thread.

    Raises:
        AudioProcessingError: If conversion fails
    """
    if not audio_data:
        raise AudioProcessingError("Audio data is empty")

    try:
        with tempfile.NamedTemporaryFile(suffix=f'.{input_format or "audio"}') as input_file, \
             tempfile.NamedTemporaryFile(suffix='.wav') as output_file:

            input_file.write(audio_data)
            input_file.flush()

            stream = ffmpeg.input(input_file.name)
            stream = ffmpeg.output(
                stream,
                output_file.name,
                acodec='pcm_s16le',
                ac=1,
                ar=16000,
                f='wav'
            )
            ffmpeg.run(stream, overwrite_output=True, quiet=True)

            output_file.seek(0)
            converted_data = output_file.read()

            if not converted_data:
                raise AudioProcessingError("ffmpeg conversion produced empty output")

            logger.info(f"Converted {len(audio_data)} bytes to {len(converted_data)} bytes (16kHz mono WAV)")
            return converted_data

    except ffmpeg.Error as e:
        error_msg = e.stderr.decode() if e.stderr else str(e)
        logger.error(f"ffmpeg conversion failed: {error_msg}")
        raise AudioProcessingError(f"Audio conversion failed: {error_msg}")
    except OSError as e:
        logger.error(f"ffmpeg could not be run: {e}")
        raise AudioProcessingError(f"Audio conversion failed: {e}")


def _wav_format(audio_data: bytes) -> Tuple[int, int, int]:
    """Return (channels, sample_rate, bits_per_sample) from a canonical WAV header."""
    if len(audio_data) < 44:
        raise AudioProcessingError("Audio data too short to contain WAV header")
    if audio_data[:4] != b'RIFF' or audio_data[8:12] != b'WAVE':
        raise AudioProcessingError("Not a valid WAV file")

    channels = struct.unpack('<H', audio_data[22:24])[0]
    sample_rate = struct.unpack('<I', audio_data[24:28])[0]
    bits_per_sample = struct.unpack('<H', audio_data[34:36])[0]
    return channels, sample_rate, bits_per_sample


def validate_audio_format(audio_data: bytes) -> Tuple[bool, str]:
    """Check that audio is 16kHz mono 16-bit WAV."""
    try:
        channels, sample_rate, bits_per_sample = _wav_format(audio_data)
    except (AudioProcessingError, struct.error) as e:
        return False, str(e)

    if channels != 1:
        return False, f"Expected mono (1 channel), got {channels} channels"
    if sample_rate != 16000:
        return False, f"Expected 16kHz sample rate, got {sample_rate}Hz"
    if bits_per_sample != 16:
        return False, f"Expected 16-bit samples, got {bits_per_sample}-bit"

    return True, "Valid 16kHz mono WAV format"


def get_audio_duration(audio_data: bytes) -> float:
    """
    Duration of WAV audio data in seconds.

    Raises:
        AudioProcessingError: If unable to determine duration
    """
    try:
        channels, sample_rate, bits_per_sample = _wav_format(audio_data)
        bytes_per_second = sample_rate * channels * (bits_per_sample // 8)
        return (len(audio_data) - 44) / bytes_per_second
    except (struct.error, ZeroDivisionError) as e:
        raise AudioProcessingError(f"Failed to determine audio duration: {e}")
