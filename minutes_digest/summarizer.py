import logging

from minutes_digest.config import GEMINI_MAX_OUTPUT_TOKENS, GEMINI_TEMPERATURE
from minutes_digest.lexicon import (
    ERROR_MARKER,
    NO_TOPIC_SENTINEL,
    PROMPT_TOPICS,
    is_no_topic_sentinel,
)
from minutes_digest.llm_provider import ProviderError
from minutes_digest.models import RelevantExcerpt


logger = logging.getLogger("minutes-summarizer")

SUMMARY_ERROR = f"{ERROR_MARKER} Could not generate summary."


def build_summary_prompt(excerpt_text: str, body_name: str = "City Council") -> str:
    topics = ", ".join(PROMPT_TOPICS[:-1]) + f", or {PROMPT_TOPICS[-1]}"
    return (
        "You are an expert assistant specialized in analyzing municipal government documents.\n"
        f"Your task is to review the following excerpts from {body_name} meeting minutes and extract "
        f"a concise summary of any discussions, debates, or decisions related to {topics}.\n\n"
        "If the excerpts contain information on these topics, provide a clear, neutral summary of 1-3 sentences.\n"
        "If the excerpts do not contain any mention of these topics, your entire response must be exactly: "
        f"\"{NO_TOPIC_SENTINEL}\"\n\n"
        "Here are the excerpts:\n"
        "---\n"
        f"{excerpt_text}\n"
        "---\n"
    )


def is_error_summary(summary: str) -> bool:
    return (summary or "").startswith(ERROR_MARKER)


def is_reportable_summary(summary: str) -> bool:
    """
    True when a summary should reach the caller: non-empty, not the
    sentinel and not error-marked.
    """
    text = (summary or "").strip()
    return bool(text) and not is_no_topic_sentinel(text) and not is_error_summary(text)


class SummarizerClient:
    def __init__(self, provider, temperature=GEMINI_TEMPERATURE, max_tokens=GEMINI_MAX_OUTPUT_TOKENS):
        self.provider = provider
        self.temperature = temperature
        self.max_tokens = max_tokens

    def summarize(self, excerpt: RelevantExcerpt) -> str:
        """
        Summarize an excerpt. Never raises: provider failures come back as
        an error-marked string the aggregator will drop.
        """
        if not excerpt:
            return NO_TOPIC_SENTINEL
        prompt = build_summary_prompt(excerpt.text)
        try:
            text = self.provider.generate(prompt, temperature=self.temperature, max_tokens=self.max_tokens)
        except ProviderError as exc:
            logger.error(f"Summarization failed: {exc}")
            return SUMMARY_ERROR
        return (text or "").strip()
