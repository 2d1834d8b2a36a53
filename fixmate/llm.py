from __future__ import annotations

import asyncio
import codecs
import logging
from abc import ABC, abstractmethod
from typing import AsyncIterator, Dict, List, Optional, Sequence, Tuple

import google.generativeai as genai

from .errors import ProviderError
from .prompts import demo_reply

logger = logging.getLogger(__name__)

History = Sequence[Tuple[str, str]]


class ModelStreamBridge(ABC):
    """Turns (system instruction, history, prompt) into a stream of reply fragments.

    The returned iterator is lazy and single-use. It may raise at any point,
    including after fragments were already produced; those fragments are
    real output and are never retracted.
    """

    name = "abstract"

    @abstractmethod
    def stream(self, system_instruction: str, history: History, prompt: str) -> AsyncIterator[str]:
        ...


def to_gemini_history(history: History) -> List[Dict[str, object]]:
    """Provider-format history. Entries come in user/assistant pairs; a pair
    with an empty side is dropped whole so roles keep alternating."""
    gemini_hist = []
    entries = iter(history)
    for (_, question), (_, answer) in zip(entries, entries):
        if question and answer:
            gemini_hist.append({"role": "user", "parts": [question]})
            gemini_hist.append({"role": "model", "parts": [answer]})
    return gemini_hist


class GeminiStreamBridge(ModelStreamBridge):
    name = "gemini"

    def __init__(self, api_key: Optional[str], model_name: str) -> None:
        self.api_key = api_key
        self.model_name = model_name
        if api_key:
            genai.configure(api_key=api_key)

    async def stream(self, system_instruction: str, history: History, prompt: str) -> AsyncIterator[str]:
        if not self.api_key:
            raise ProviderError("Missing GEMINI_API_KEY. Set environment variable GEMINI_API_KEY.")

        model = genai.GenerativeModel(self.model_name, system_instruction=system_instruction)
        chat_session = model.start_chat(history=to_gemini_history(history))
        try:
            response = await chat_session.send_message_async(prompt, stream=True)
            async for chunk in response:
                if chunk.text:
                    yield chunk.text
        except Exception as e:
            raise ProviderError(f"Gemini call failed: {e}") from e


def build_prompt(instructions: str, history: History, user_message: str) -> str:
    hist = ""
    for role, content in history:
        hist += f"{role.upper()}: {content}\n"

    return (
        f"{instructions}\n\n"
        f"CHAT HISTORY:\n{hist}\n"
        f"USER: {user_message}\n"
        f"ASSISTANT:"
    )


class OllamaStreamBridge(ModelStreamBridge):
    """Runs the local ``ollama`` binary and relays its stdout as it is produced."""

    name = "ollama"
    read_size = 256

    def __init__(self, model: str, ollama_path: str = "ollama") -> None:
        self.model = model
        self.ollama_path = ollama_path

    async def stream(self, system_instruction: str, history: History, prompt: str) -> AsyncIterator[str]:
        full_prompt = build_prompt(system_instruction, history, prompt)
        try:
            proc = await asyncio.create_subprocess_exec(
                self.ollama_path,
                "run",
                self.model,
                full_prompt,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except OSError as e:
            raise ProviderError(f"Ollama local call failed: {e}") from e

        stderr_task = asyncio.ensure_future(proc.stderr.read())
        decoder = codecs.getincrementaldecoder("utf-8")(errors="ignore")
        try:
            while True:
                raw = await proc.stdout.read(self.read_size)
                if not raw:
                    break
                text = decoder.decode(raw)
                if text:
                    yield text
            tail = decoder.decode(b"", final=True)
            if tail:
                yield tail

            returncode = await proc.wait()
            if returncode != 0:
                err = (await stderr_task).decode("utf-8", errors="ignore").strip()
                raise ProviderError(err or "ollama failed")
        finally:
            if proc.returncode is None:
                proc.kill()
                await proc.wait()
            if not stderr_task.done():
                stderr_task.cancel()


class DemoStreamBridge(ModelStreamBridge):
    """Canned support answers streamed in small slices; no network needed."""

    name = "demo"

    def __init__(self, slice_size: int = 10) -> None:
        self.slice_size = slice_size

    async def stream(self, system_instruction: str, history: History, prompt: str) -> AsyncIterator[str]:
        text = demo_reply(prompt)
        for i in range(0, len(text), self.slice_size):
            yield text[i : i + self.slice_size]
            await asyncio.sleep(0)


def build_bridge(settings) -> ModelStreamBridge:
    if settings.local_only:
        bridge: ModelStreamBridge = OllamaStreamBridge(settings.ollama_model, settings.ollama_path)
    elif settings.demo:
        bridge = DemoStreamBridge()
    else:
        bridge = GeminiStreamBridge(settings.gemini_api_key, settings.gemini_model)
    logger.info("Model backend: %s", bridge.name)
    return bridge
