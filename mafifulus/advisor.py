"""
advisor.py
----------
Merrit, the voice financial advisor.

The persona is a system instruction built from the user's reviewed
transactions.  Conversations run over the Gemini Live API: microphone audio
goes up as 16 kHz PCM16 and the model answers with 24 kHz PCM16 speech plus
transcripts of both sides.
"""

from __future__ import annotations

import asyncio
import logging
import os
from typing import AsyncIterator, Iterable, List, Optional

from dotenv import load_dotenv
from google import genai
from google.genai import types

from mafifulus.audio import (
    INPUT_MIME_TYPE,
    OUTPUT_SAMPLE_RATE,
    decode,
    downsample_to_16k,
    encode,
    pcm16_to_wav,
    pcm_duration,
    wav_to_float,
)
from mafifulus.dashboard import summarize
from mafifulus.insights import LifeObjective, compute_ratios, generate_insights

load_dotenv()

logger = logging.getLogger(__name__)

GEMINI_API_KEY = os.getenv("GEMINI_API_KEY", "")
GEMINI_LIVE_MODEL = os.getenv("GEMINI_LIVE_MODEL", "gemini-2.5-flash-native-audio-preview-09-2025")
GEMINI_VOICE = os.getenv("GEMINI_VOICE", "Kore")

# Samples per upload, matching a 4096-frame browser capture buffer
CHUNK_SAMPLES = 4096
OUTPUT_MIME_TYPE = f"audio/pcm;rate={OUTPUT_SAMPLE_RATE}"


class AdvisorUnavailable(Exception):
    """The live session cannot be started (no key or the vendor refused)."""


def build_system_instruction(
    transactions: Iterable[dict],
    user_name: str,
    objectives: Optional[List[LifeObjective]] = None,
    active_section: str = "",
) -> str:
    transactions = list(transactions)
    objectives = objectives or []
    summary = summarize(transactions)
    ratios = compute_ratios(transactions, summary)
    insights = generate_insights(ratios, summary, objectives)

    income = summary["total_income"]
    expenses = summary["total_expenses"]
    surplus = summary["monthly_surplus"]

    category_breakdown = ", ".join(
        f"{row['category']}: AED {row['total']:.0f} ({row['percentage']:.1f}% of expenses)"
        for row in summary["expense_summary"]
    )
    objectives_list = ", ".join(f"{o.title} (AED {o.estimated_cost:,.0f})" for o in objectives)

    intro_script = f"Hello {user_name}. I'm Merrit. "
    if active_section == "reports":
        intro_script += (
            "I see you're looking at your Reports. Let's analyze your top vendors and subscriptions "
            "- would you like me to break down the biggest one?"
        )
    else:
        intro_script += "Are you ready for my full review of your actual expenses category-wise versus best practices?"

    return f"""
You are 'Merrit', an assertive, expert AI Financial Advisor who drives the conversation with actionable insights.

USER DATA:
- Name: {user_name}
- Income: AED {income:,.2f}
- Expenses: AED {expenses:,.2f}
- Net Savings: AED {surplus:,.2f}
- Savings Rate: {ratios['savings_rate']:.1f}%
- Housing Ratio: {ratios['housing_ratio']:.1f}% (benchmark: 30%)
- Groceries Ratio: {ratios['groceries_ratio']:.1f}% (benchmark: 10-15%)
- ACTIVE SECTION: {active_section or 'Dashboard Overview'}

CATEGORY BREAKDOWN: {category_breakdown or 'No expenses recorded'}

GOALS: {objectives_list or 'None set'}

KEY INSIGHTS: {' '.join(insights)}

INSTRUCTIONS:
1. ALWAYS use "AED" (UAE Dirhams) when mentioning any currency amounts - NEVER use dollars ($)
2. Start with: "{intro_script}"
3. If ACTIVE SECTION is 'reports', focus immediately on Top Vendors and Subscriptions.
4. Otherwise, provide category-wise analysis comparing actual vs benchmarks
5. Give specific, actionable recommendations like:
   - "Cut spending on [category]"
   - "You have room to spend on [category]"
   - "Add your objectives to the Goals section"
   - "Increase savings by reducing [specific category]"
6. Be direct, assertive, and drive the conversation
7. Focus on concrete numbers and percentages
8. Always end with a specific action the user should take
""".strip()


def live_config(system_instruction: str) -> types.LiveConnectConfig:
    return types.LiveConnectConfig(
        response_modalities=[types.Modality.AUDIO],
        system_instruction=system_instruction,
        speech_config=types.SpeechConfig(
            voice_config=types.VoiceConfig(
                prebuilt_voice_config=types.PrebuiltVoiceConfig(voice_name=GEMINI_VOICE)
            )
        ),
        input_audio_transcription=types.AudioTranscriptionConfig(),
        output_audio_transcription=types.AudioTranscriptionConfig(),
    )


class LiveAdvisorSession:
    """
    Async context manager around one Gemini Live conversation.

    ``speaking`` follows the model's audio: it turns on with the first
    chunk of a reply and off when the turn completes or the user barges in.
    """

    def __init__(self, system_instruction: str, client: Optional[genai.Client] = None):
        if client is None:
            if not GEMINI_API_KEY:
                raise AdvisorUnavailable("API Key is missing")
            client = genai.Client(api_key=GEMINI_API_KEY)
        self.client = client
        self.system_instruction = system_instruction
        self.speaking = False
        self._connection = None
        self.session = None

    async def __aenter__(self) -> "LiveAdvisorSession":
        self._connection = self.client.aio.live.connect(
            model=GEMINI_LIVE_MODEL, config=live_config(self.system_instruction)
        )
        self.session = await self._connection.__aenter__()
        logger.info("[Live] Live session connected")
        return self

    async def __aexit__(self, exc_type, exc, tb):
        try:
            return await self._connection.__aexit__(exc_type, exc, tb)
        finally:
            self.session = None
            logger.info("[Live] Live session closed")

    async def send_audio(self, samples, sample_rate: float):
        pcm = downsample_to_16k(samples, sample_rate)
        if pcm.size == 0:
            return
        await self.session.send_realtime_input(
            audio=types.Blob(data=pcm.astype("<i2").tobytes(), mime_type=INPUT_MIME_TYPE)
        )

    async def end_audio(self):
        await self.session.send_realtime_input(audio_stream_end=True)

    def translate(self, message) -> List[dict]:
        """Flatten one server message into relay events."""
        content = getattr(message, "server_content", None)
        if content is None:
            return []

        events: List[dict] = []
        parts = content.model_turn.parts if content.model_turn and content.model_turn.parts else []
        for part in parts:
            blob = part.inline_data
            if blob is None or not blob.data:
                continue
            if not self.speaking:
                self.speaking = True
                events.append({"type": "speaking", "value": True})
            events.append({
                "type": "audio",
                "data": encode(blob.data),
                "mimeType": OUTPUT_MIME_TYPE,
                "duration": pcm_duration(blob.data),
            })

        if content.input_transcription and content.input_transcription.text:
            events.append({"type": "transcript", "role": "user", "text": content.input_transcription.text})
        if content.output_transcription and content.output_transcription.text:
            events.append({"type": "transcript", "role": "model", "text": content.output_transcription.text})

        if content.interrupted:
            events.append({"type": "interrupted"})
        if content.interrupted or content.turn_complete:
            if content.turn_complete:
                events.append({"type": "turn_complete"})
            if self.speaking:
                self.speaking = False
                events.append({"type": "speaking", "value": False})
        return events

    async def turn_events(self) -> AsyncIterator[dict]:
        async for message in self.session.receive():
            for event in self.translate(message):
                yield event

    async def events(self) -> AsyncIterator[dict]:
        # receive() ends after each completed turn
        while self.session is not None:
            async for event in self.turn_events():
                yield event


async def _ask(system_instruction: str, wav_bytes: bytes, client: Optional[genai.Client]) -> dict:
    samples, rate = wav_to_float(wav_bytes)
    reply = bytearray()
    heard: List[str] = []
    said: List[str] = []

    async with LiveAdvisorSession(system_instruction, client=client) as advisor:
        for start in range(0, len(samples), CHUNK_SAMPLES):
            await advisor.send_audio(samples[start:start + CHUNK_SAMPLES], rate)
        await advisor.end_audio()

        async for event in advisor.turn_events():
            if event["type"] == "audio":
                reply.extend(decode(event["data"]))
            elif event["type"] == "transcript":
                (heard if event["role"] == "user" else said).append(event["text"])
            elif event["type"] == "interrupted":
                break

    return {
        "audio": pcm16_to_wav(bytes(reply)) if reply else None,
        "user_text": "".join(heard).strip(),
        "model_text": "".join(said).strip(),
    }


def ask_by_voice(system_instruction: str, wav_bytes: bytes, client: Optional[genai.Client] = None) -> dict:
    """One spoken question in, Merrit's spoken answer (WAV) and transcripts out."""
    return asyncio.run(_ask(system_instruction, wav_bytes, client))
