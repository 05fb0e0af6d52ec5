"""
AI Service - Groq-based generation of newsletter introductions.

The board protocol (Vorstandsprotokoll) is first condensed into topics,
then the intro is written from the top themes, those topics and the
previous intro. Prompts come from the newsletter settings with German
defaults.
"""

import asyncio
import logging

import groq
from groq import Groq

from kvportal.core.config import settings
from kvportal.core.errors import AppError, ErrorType
from kvportal.newsletter.schemas import ConversationMessage
from kvportal.newsletter.settings_service import NewsletterConfig

logger = logging.getLogger(__name__)

NO_PREVIOUS_INTRO = "Kein vorheriger Newsletter verfügbar."

DEFAULT_AI_SYSTEM_PROMPT = """Schreibe ein motivierendes Intro für den Newsletter der Partei DIE LINKE im Kreisverband Frankfurt. Der Text soll ansprechend, solidarisch und positiv formuliert sein und einen einladenden Ton anschlagen, der die Genoss*innen ermutigt, sich aktiv einzubringen. Nutze dazu folgende Informationen:

Top-Themen für die aktuelle Ausgabe:
\"\"\"
{{topThemes}}
\"\"\"
Die Top-Themen sollen höchste Priorität in den ersten 1-2 Absätzen des Intros einnehmen.

Weiter gebe ich dir das letzte Intro aus dem Newsletter als Kontext. Nutze den Text, um die selben Formulierungen zu vermeiden und Themen erneut zu wiederholen. Nutze Inhalt aus dem vorherigen Newsletter ausschließlich, wenn du explizit aufgefordert wirst. Sonst sollten alle Dinge nicht erneut benannt werden. Der vorherige Newsletter:

\"\"\"
{{previousIntro}}
\"\"\"

Wichtige Eigenschaften die dein Text haben soll:
- Gendergerechte Sprache (z. B. Genossinnen, Unterstützerinnen)
- Positiver Ton: Nur erfreuliche Nachrichten und motivierende Botschaften einbauen.
- Fließtext ohne Überschriften. Der Text soll kurz und prägnant sein, dabei aber die wichtigsten Punkte hervorheben und abdecken.
- Der Text soll nicht länger als 10-15 Zeilen lang sein. Verzichte auf Prosa und konzentriere dich auf die Top-Themen.
- WICHTIG: Füge keine Absätze hinzu, die die nicht auf das Protokoll oder Top Themen bezogen sind."""

DEFAULT_TOPIC_EXTRACTION_PROMPT = """Analysiere das folgende Vorstandsprotokoll der Partei DIE LINKE im Kreisverband Frankfurt und extrahiere die wichtigsten Themen und Beschlüsse, die für den Newsletter relevant sind.

Vorstandsprotokoll:
\"\"\"
{{boardProtocol}}
\"\"\"

Bitte extrahiere und strukturiere die Informationen wie folgt:

1. **Beschlossene Themen und Projekte**: Konkrete Beschlüsse, neue Initiativen, geplante Aktionen
2. **Positive Entwicklungen**: Erfolge, erreichte Meilensteine, erfreuliche Nachrichten
3. **Ankündigungen**: Geplante Veranstaltungen, Termine, Mitgliederversammlungen
4. **Neue Personen/Rollen**: Neubesetzungen, neue Sprecher*innen, Arbeitsgruppen

Wichtige Richtlinien:
- Konzentriere dich nur auf positive, motivierende Informationen
- Übergehe kontroverse, unentschlossene oder interne Diskussionspunkte
- Formuliere prägnant und mitgliederfreundlich
- Verwende gendergerechte Sprache
- Strukturiere die Ausgabe als kurze, klar getrennte Punkte
- Falls keine relevanten Informationen vorhanden sind, gib "Keine newsletter-relevanten Themen gefunden" zurück

Format der Antwort:
- Nutze Stichpunkte mit "•" als Aufzählungszeichen
- Maximal 8-10 Punkte insgesamt
- Jeder Punkt sollte 1-2 Sätze lang sein"""

EXTRACTED_TOPICS_SECTION = """

Aus der Kreisvorstandssitzung sind folgende relevante Themen hervorgegangen:

\"\"\"
{topics}
\"\"\"

Integriere diese Informationen sinnvoll in das Intro, falls sie das Newsletter-Intro bereichern."""


def build_intro_prompt(
    template: str, top_themes: str, extracted_topics: str | None, previous_intro: str | None
) -> str:
    prompt = template.replace("{{topThemes}}", top_themes)
    if extracted_topics and extracted_topics.strip():
        prompt += EXTRACTED_TOPICS_SECTION.format(topics=extracted_topics)
    return prompt.replace("{{previousIntro}}", previous_intro or NO_PREVIOUS_INTRO)


def build_topic_prompt(template: str, board_protocol: str) -> str:
    return template.replace("{{boardProtocol}}", board_protocol)


class AIService:
    """AI Service using the Groq API."""

    def __init__(self):
        self._client: Groq | None = None

    @property
    def client(self) -> Groq:
        """Get Groq client (lazy initialization)."""
        api_key = settings.groq_api_key
        if not api_key:
            raise AppError("KI-Service nicht verfügbar", ErrorType.EXTERNAL_SERVICE, 503)
        if self._client is None:
            self._client = Groq(api_key=api_key)
        return self._client

    def _call_groq_sync(
        self,
        messages: list[dict[str, str]],
        model: str | None = None,
        temperature: float = 0.7,
        max_tokens: int = 1000,
    ) -> str:
        client = self.client
        try:
            completion = client.chat.completions.create(
                model=model or settings.groq_model,
                messages=messages,
                temperature=temperature,
                max_completion_tokens=max_tokens,
                top_p=1,
                stream=False,
            )
        except groq.AuthenticationError as e:
            logger.error("Groq rejected the API key: %s", e)
            raise AppError(
                "Ungültiger API-Schlüssel für den KI-Service", ErrorType.EXTERNAL_SERVICE, 502
            ) from e
        except groq.RateLimitError as e:
            logger.warning("Groq rate limit reached: %s", e)
            raise AppError(
                "API-Ratenlimit erreicht. Bitte versuchen Sie es später erneut.",
                ErrorType.EXTERNAL_SERVICE,
                429,
            ) from e
        except groq.APIError as e:
            logger.error("Groq request failed: %s", e)
            raise AppError(f"KI-Fehler: {e}", ErrorType.EXTERNAL_SERVICE, 502) from e
        return completion.choices[0].message.content or ""

    async def _call_groq(
        self,
        messages: list[dict[str, str]],
        model: str | None = None,
        temperature: float = 0.7,
        max_tokens: int = 1000,
    ) -> str:
        """Call the Groq API (runs sync call in thread)."""
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(
            None, lambda: self._call_groq_sync(messages, model, temperature, max_tokens)
        )

    async def extract_topics(self, board_protocol: str, config: NewsletterConfig) -> str:
        prompt = build_topic_prompt(
            config.ai_topic_extraction_prompt or DEFAULT_TOPIC_EXTRACTION_PROMPT, board_protocol
        )
        logger.info("Extracting topics from board protocol (%d chars)", len(board_protocol))
        return await self._call_groq(
            [{"role": "user", "content": prompt}],
            model=config.ai_model,
            temperature=0.3,
        )

    async def generate(
        self,
        top_themes: str,
        previous_intro: str | None,
        board_protocol: str | None,
        config: NewsletterConfig,
    ) -> tuple[str, str | None]:
        """Return the generated intro and the topics extracted from the protocol."""
        topics = None
        if board_protocol and board_protocol.strip():
            topics = await self.extract_topics(board_protocol, config)

        prompt = build_intro_prompt(
            config.ai_system_prompt or DEFAULT_AI_SYSTEM_PROMPT, top_themes, topics, previous_intro
        )
        text = await self._call_groq([{"role": "user", "content": prompt}], model=config.ai_model)
        logger.info("Newsletter intro generated (%d chars)", len(text))
        return text, topics

    async def refine(
        self,
        generated_text: str,
        refinement_request: str,
        history: list[ConversationMessage],
        config: NewsletterConfig,
    ) -> str:
        messages = []
        if config.ai_refinement_prompt:
            messages.append({"role": "system", "content": config.ai_refinement_prompt})
        messages.extend({"role": m.role, "content": m.content} for m in history[-10:])
        if not history or history[-1].content != generated_text:
            messages.append({"role": "assistant", "content": generated_text})
        messages.append({"role": "user", "content": refinement_request})

        text = await self._call_groq(messages, model=config.ai_model)
        logger.info("Newsletter intro refined (%d chars)", len(text))
        return text


# Singleton instance
ai_service = AIService()
