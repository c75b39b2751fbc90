from __future__ import annotations

import asyncio
import json
import re
from dataclasses import dataclass
from typing import List, Optional, Protocol

from echoflow.core.logging import get_logger
from echoflow.services.upstream import ChatCompletion, ChatMessage
from echoflow.types import RequestContext, TokenUsage


logger = get_logger(__name__)

DEFAULT_SYSTEM_PROMPT = """You are a dictation post-processor. You receive raw speech-to-text output and return clean text ready to be typed into an application.

Your job:
- Remove filler words (um, uh, you know, like) unless they carry meaning.
- Fix spelling, grammar, and punctuation errors.
- When the transcript already contains a word that is a close misspelling of a name or term from the context or custom vocabulary, correct the spelling. Never insert names or terms from context that the speaker did not say.
- Preserve the speaker's intent, tone, and meaning exactly.

Output rules:
- Return ONLY the cleaned transcript text, nothing else.
- If the transcription is empty, return exactly: EMPTY
- Do not add words, names, or content that are not in the transcription. The context is only for correcting spelling of words already spoken.
- Do not change the meaning of what was said."""

VOCABULARY_PROMPT = """The following vocabulary must be treated as high-priority terms while rewriting.
Use these spellings exactly in the output when relevant:
{terms}"""

USER_MESSAGE = """Instructions: Clean up RAW_TRANSCRIPTION and return only the cleaned transcript text without surrounding quotes. Return EMPTY if there should be no result.

CONTEXT: {context}

RAW_TRANSCRIPTION: {transcript}"""

EMPTY_MARKER = "EMPTY"


class ChatClient(Protocol):
    async def chat_completion(
        self, ctx: RequestContext, model: str, temperature: float, messages: List[ChatMessage]
    ) -> ChatCompletion: ...


@dataclass(frozen=True)
class PostProcessResult:
    transcript: str
    usage: Optional[TokenUsage] = None


class PostProcessService:
    def __init__(self, client: ChatClient, default_model: str, timeout: float) -> None:
        self.client = client
        self.default_model = default_model.strip()
        self.timeout = timeout

    async def process(
        self,
        ctx: RequestContext,
        transcript: str,
        context_summary: str = "",
        vocabulary: str = "",
        custom_system_prompt: Optional[str] = None,
        model: Optional[str] = None,
        include_debug_prompt: bool = False,
    ) -> PostProcessResult:
        # include_debug_prompt is a deprecated flag; prompts are never returned to callers.
        selected_model = (model or "").strip() or self.default_model
        messages = [
            ChatMessage(role="system", content=build_system_prompt(custom_system_prompt, vocabulary)),
            ChatMessage(role="user", content=build_user_message(context_summary, transcript)),
        ]

        completion = await asyncio.wait_for(
            self.client.chat_completion(ctx, selected_model, 0.0, messages),
            timeout=self.timeout,
        )

        usage = None
        if completion.usage is not None:
            usage = TokenUsage(
                prompt_tokens=completion.usage.prompt_tokens,
                completion_tokens=completion.usage.completion_tokens,
                total_tokens=completion.usage.total_tokens,
            )
        result = PostProcessResult(transcript=sanitize_post_processed_transcript(completion.content), usage=usage)
        logger.info(
            "post-processing complete",
            extra={
                "component": "postprocess",
                "request_id": ctx.request_id,
                "model": selected_model,
                "text_len": len(result.transcript),
                "usage_reported": usage is not None,
            },
        )
        return result


def build_system_prompt(custom_system_prompt: Optional[str], vocabulary: str) -> str:
    prompt = (custom_system_prompt or "").strip() or DEFAULT_SYSTEM_PROMPT
    terms = merged_vocabulary_terms(vocabulary)
    if terms:
        prompt += "\n\n" + VOCABULARY_PROMPT.format(terms=", ".join(terms))
    return prompt


def build_user_message(context_summary: str, transcript: str) -> str:
    return USER_MESSAGE.format(
        context=json.dumps(context_summary, ensure_ascii=False),
        transcript=json.dumps(transcript, ensure_ascii=False),
    )


_VOCABULARY_SEPARATORS = re.compile(r"[\n,;]")


def merged_vocabulary_terms(raw_vocabulary: str) -> List[str]:
    """Split a free-text vocabulary list and drop case-insensitive duplicates.

    The first spelling seen for a term wins, and input order is preserved:
    ``"Alice, bob\\nALICE; Bob; Carol"`` yields ``["Alice", "bob", "Carol"]``.
    """
    seen = set()
    terms: List[str] = []
    for field in _VOCABULARY_SEPARATORS.split(raw_vocabulary or ""):
        term = field.strip()
        if not term:
            continue
        key = term.lower()
        if key in seen:
            continue
        seen.add(key)
        terms.append(term)
    return terms


def sanitize_post_processed_transcript(value: str) -> str:
    result = value.strip()
    if not result:
        return ""
    if len(result) > 1 and result.startswith('"') and result.endswith('"'):
        result = result[1:-1].strip()
    if result == EMPTY_MARKER:
        return ""
    return result
