"""
Voice scripts for the enrollment and verification calls.

Renders provider call-flow XML (TwiML verbs: Say, Pause, Record, Hangup).
The orchestrator only decides what to say; this module decides how the
provider is told to say it.
"""

import xml.etree.ElementTree as ET
from typing import Optional

from voicegate.config import settings


def spell_digits(code: str) -> str:
    """Space out digits so text-to-speech reads them one by one."""
    return " ".join(code)


class VoiceScript:
    """Builds scripted prompt sequences for one call."""

    def __init__(
        self,
        voice: Optional[str] = None,
        language: Optional[str] = None,
        company_name: Optional[str] = None
    ):
        self.voice = voice or settings.tts_voice
        self.language = language or settings.tts_language
        self.company_name = company_name or settings.company_name
        self._root = ET.Element("Response")

    def say(self, text: str) -> "VoiceScript":
        element = ET.SubElement(self._root, "Say", voice=self.voice, language=self.language)
        element.text = text
        return self

    def pause(self, seconds: int = 1) -> "VoiceScript":
        ET.SubElement(self._root, "Pause", length=str(seconds))
        return self

    def record(self, action: str, max_length: int, transcribe: bool = False) -> "VoiceScript":
        attributes = {
            "action": action,
            "method": "POST",
            "maxLength": str(max_length),
            "trim": "trim-silence",
            "playBeep": "true",
        }
        if transcribe:
            attributes["transcribe"] = "true"
        ET.SubElement(self._root, "Record", **attributes)
        return self

    def hangup(self) -> "VoiceScript":
        ET.SubElement(self._root, "Hangup")
        return self

    def render(self) -> str:
        return '<?xml version="1.0" encoding="UTF-8"?>' + ET.tostring(self._root, encoding="unicode")

    # Scripted sequences

    def enrollment_prompt(self, session_id: str) -> str:
        return (
            self.say(f"Bienvenido al sistema de seguridad biométrica de {self.company_name}.")
            .pause(1)
            .say(
                "Para crear su perfil de voz, necesitamos grabar una muestra. "
                "Por favor, después del tono, diga claramente: "
                f"Mi voz es mi contraseña, autorizo a {self.company_name}."
            )
            .record(action=f"/biometric/process-enrollment/{session_id}", max_length=10, transcribe=True)
            .render()
        )

    def verification_prompt(self, session_id: str, challenge_code: str) -> str:
        return (
            self.say(f"Sistema de verificación {self.company_name}. Por seguridad, necesitamos verificar su identidad.")
            .say(f"Por favor, después del tono, diga: Mi código de verificación es {spell_digits(challenge_code)}")
            .record(action=f"/biometric/process-verification/{session_id}", max_length=8)
            .render()
        )

    def enrollment_confirmed(self, confirmation_code: str) -> str:
        spoken = spell_digits(confirmation_code)
        return (
            self.say(f"Perfil creado exitosamente. Su código de confirmación es: {spoken}. Repito: {spoken}")
            .say(f"Gracias por confiar en {self.company_name}. Su voz está ahora protegida.")
            .hangup()
            .render()
        )

    def verification_succeeded(self) -> str:
        return self.say("Verificación exitosa. Su transacción ha sido autorizada.").hangup().render()

    def verification_failed(self) -> str:
        return (
            self.say("No pudimos verificar su identidad. Por seguridad, la transacción ha sido bloqueada.")
            .hangup()
            .render()
        )

    def locked_out(self) -> str:
        return (
            self.say("No pudimos verificar su identidad. Por seguridad, la transacción ha sido bloqueada.")
            .say("Su cuenta ha sido bloqueada temporalmente. Contacte a soporte.")
            .hangup()
            .render()
        )

    def apology(self) -> str:
        return self.say("Error en el sistema. Por favor, intente más tarde.").hangup().render()
