import io
import wave
from types import SimpleNamespace

import numpy as np

from mafifulus.advisor import GEMINI_LIVE_MODEL, LiveAdvisorSession, ask_by_voice, build_system_instruction
from mafifulus.audio import decode, float_to_wav
from mafifulus.insights import LifeObjective


def server_message(audio=None, heard=None, said=None, interrupted=None, turn_complete=None):
    parts = [SimpleNamespace(inline_data=SimpleNamespace(data=audio))] if audio else None
    return SimpleNamespace(
        server_content=SimpleNamespace(
            model_turn=SimpleNamespace(parts=parts) if parts else None,
            input_transcription=SimpleNamespace(text=heard) if heard else None,
            output_transcription=SimpleNamespace(text=said) if said else None,
            interrupted=interrupted,
            turn_complete=turn_complete,
        )
    )


class FakeSession:
    def __init__(self, messages):
        self.messages = messages
        self.sent = []

    async def send_realtime_input(self, **kwargs):
        self.sent.append(kwargs)

    async def receive(self):
        for message in self.messages:
            yield message


class FakeConnection:
    def __init__(self, session):
        self.session = session

    async def __aenter__(self):
        return self.session

    async def __aexit__(self, *exc):
        return False


def fake_client(session):
    connects = []

    def connect(model, config):
        connects.append((model, config))
        return FakeConnection(session)

    return SimpleNamespace(aio=SimpleNamespace(live=SimpleNamespace(connect=connect)), connects=connects)


def test_instruction_uses_user_numbers(transactions):
    text = build_system_instruction(transactions, "Sara", [LifeObjective(title="Car", estimated_cost=50000)])
    assert 'Start with: "Hello Sara. I\'m Merrit. Are you ready' in text
    assert "- Income: AED 10,000.00" in text
    assert "Housing: AED 4000 (80.0% of expenses)" in text
    assert "GOALS: Car (AED 50,000)" in text
    assert "ACTIVE SECTION: Dashboard Overview" in text


def test_instruction_for_reports_section(transactions):
    text = build_system_instruction(transactions, "Sara", active_section="reports")
    assert "Let's analyze your top vendors and subscriptions" in text
    assert "GOALS: None set" in text


def test_translate_tracks_speaking():
    advisor = LiveAdvisorSession("hi", client=object())
    pcm = b"\x00\x00" * 240

    events = advisor.translate(server_message(audio=pcm, said="Hello"))
    assert [e["type"] for e in events] == ["speaking", "audio", "transcript"]
    assert events[0]["value"] is True
    assert decode(events[1]["data"]) == pcm
    assert events[1]["mimeType"] == "audio/pcm;rate=24000"
    assert events[1]["duration"] == 0.01
    assert events[2] == {"type": "transcript", "role": "model", "text": "Hello"}

    events = advisor.translate(server_message(audio=pcm))
    assert [e["type"] for e in events] == ["audio"]

    events = advisor.translate(server_message(turn_complete=True))
    assert events == [{"type": "turn_complete"}, {"type": "speaking", "value": False}]


def test_translate_interruption():
    advisor = LiveAdvisorSession("hi", client=object())
    advisor.translate(server_message(audio=b"\x01\x00"))
    events = advisor.translate(server_message(interrupted=True, heard="wait"))
    assert events == [
        {"type": "transcript", "role": "user", "text": "wait"},
        {"type": "interrupted"},
        {"type": "speaking", "value": False},
    ]


def test_translate_ignores_other_messages():
    advisor = LiveAdvisorSession("hi", client=object())
    assert advisor.translate(SimpleNamespace(server_content=None)) == []


def test_ask_by_voice_streams_and_collects_reply():
    reply_pcm = np.array([100, -100, 200], dtype="<i2").tobytes()
    session = FakeSession([
        server_message(heard="How am I doing?"),
        server_message(audio=reply_pcm, said="You are saving "),
        server_message(said="well.", turn_complete=True),
    ])
    client = fake_client(session)

    result = ask_by_voice("be Merrit", float_to_wav(np.zeros(5000), 16000), client=client)

    audio_sends = [s for s in session.sent if "audio" in s]
    assert len(audio_sends) == 2
    assert audio_sends[0]["audio"].mime_type == "audio/pcm;rate=16000"
    assert len(audio_sends[0]["audio"].data) == 4096 * 2
    assert session.sent[-1] == {"audio_stream_end": True}
    assert client.connects[0][0] == GEMINI_LIVE_MODEL

    assert result["user_text"] == "How am I doing?"
    assert result["model_text"] == "You are saving well."
    with wave.open(io.BytesIO(result["audio"]), "rb") as wav:
        assert wav.getframerate() == 24000
        assert wav.readframes(wav.getnframes()) == reply_pcm


def test_ask_by_voice_without_reply_audio():
    session = FakeSession([server_message(said="Hmm", turn_complete=True)])
    result = ask_by_voice("x", float_to_wav(np.zeros(10), 16000), client=fake_client(session))
    assert result["audio"] is None
    assert result["model_text"] == "Hmm"
