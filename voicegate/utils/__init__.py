# Utilities module

from .audio_utils import (
    AudioDownloadError,
    AudioProcessingError,
    convert_to_16khz_mono,
    download_audio_file,
    get_audio_duration,
    recording_media_url,
    validate_audio_format,
)
from .privacy import mask_phone

__all__ = [
    "AudioDownloadError",
    "AudioProcessingError",
    "convert_to_16khz_mono",
    "download_audio_file",
    "get_audio_duration",
    "mask_phone",
    "recording_media_url",
    "validate_audio_format",
]
