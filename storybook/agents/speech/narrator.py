from typing import Optional

from elevenlabs import AsyncElevenLabs, VoiceSettings

from storybook.core.errors import GenerationError, ValidationError
from storybook.core.logger import log_agent_action

# One narrator for every book
VOICE_ID = "21m00Tcm4TlvDq8ikWAM"  # Rachel
TTS_MODEL = "eleven_turbo_v2"
VOICE_SETTINGS = VoiceSettings(stability=0.5, similarity_boost=0.75)

AUDIO_MIME_TYPE = "audio/mpeg"


class Narrator:
    """Reads page text aloud with ElevenLabs."""

    def __init__(self, api_key: str, client: Optional[AsyncElevenLabs] = None):
        self.client = client or AsyncElevenLabs(api_key=api_key)

    async def narrate(self, text: str) -> bytes:
        """
        Convert one page of text into an mp3 clip.

        Raises:
            ValidationError: if the text is empty.
            GenerationError: on any ElevenLabs failure or an empty stream.
        """
        if not text or not text.strip():
            raise ValidationError("Text is required for audio generation.")

        try:
            chunks = []
            async for chunk in self.client.text_to_speech.convert(
                text=text,
                voice_id=VOICE_ID,
                model_id=TTS_MODEL,
                voice_settings=VOICE_SETTINGS,
            ):
                chunks.append(chunk)
        except Exception as e:
            log_agent_action("narrator", "narrate", str(e), success=False)
            raise GenerationError("Failed to generate audio.") from e

        audio = b"".join(chunks)
        if not audio:
            log_agent_action("narrator", "narrate", "empty audio stream", success=False)
            raise GenerationError("Failed to generate audio.")

        log_agent_action("narrator", "narrate", f"{len(audio)} bytes")
        return audio
