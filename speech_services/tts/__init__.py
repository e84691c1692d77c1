"""Text-to-speech engines: xfyun (socket) and Azure (SSML over REST).

Baidu synthesis lives with the other baidu endpoints in
``speech_services.baidu.services``.
"""

from __future__ import annotations

from speech_services.tts.azure_tts import AzureAPIError, AzureTTSEngine, DialogLine, assign_voices
from speech_services.tts.base import AudioFormat, Gender, TTSEngine
from speech_services.tts.xfyun_tts import XFYunTTSEngine, XFYunTTSOptions

__all__ = [
    "AudioFormat",
    "AzureAPIError",
    "AzureTTSEngine",
    "DialogLine",
    "Gender",
    "TTSEngine",
    "XFYunTTSEngine",
    "XFYunTTSOptions",
    "assign_voices",
]
