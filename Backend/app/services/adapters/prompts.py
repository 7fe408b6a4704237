"""
Prompt construction for the three adapter steps.

Prompts live as Jinja2 templates under app/templates/prompts/ so they can be
edited without touching code. Source text is capped to a token budget with
tiktoken before it is sent anywhere.
"""
import logging
import os

import tiktoken
from jinja2 import Environment, FileSystemLoader

logger = logging.getLogger(__name__)

# ─── Jinja2 Template Environment ─────────────────────────────────────────────
TEMPLATE_DIR = os.path.join(
    os.path.dirname(os.path.dirname(os.path.dirname(__file__))), "templates", "prompts"
)
_jinja_env = Environment(loader=FileSystemLoader(TEMPLATE_DIR), trim_blocks=True, lstrip_blocks=True)

PREVIEW_FONT = "Palatino Linotype"

try:
    _ENCODER = tiktoken.get_encoding("cl100k_base")
except Exception as e:  # encoding files are fetched on first use
    logger.warning(f"tiktoken encoding unavailable ({e}); using character estimate for token budget.")
    _ENCODER = None

TRUNCATION_MARKER = "\n[...truncated for token budget...]"


def count_tokens(text: str) -> int:
    """Count tokens using tiktoken. Falls back to ~4 characters per token."""
    if _ENCODER:
        return len(_ENCODER.encode(text))
    return len(text) // 4 + 1


def truncate_to_budget(text: str, max_tokens: int) -> str:
    """Truncate text to fit within token budget."""
    if _ENCODER:
        tokens = _ENCODER.encode(text)
        if len(tokens) <= max_tokens:
            return text
        logger.info(f"Source text truncated from {len(tokens)} to {max_tokens} tokens.")
        return _ENCODER.decode(tokens[:max_tokens]) + TRUNCATION_MARKER
    max_chars = max_tokens * 4
    if len(text) <= max_chars:
        return text
    return text[:max_chars] + TRUNCATION_MARKER


def build_cv_prompt() -> str:
    return _jinja_env.get_template("cv_extraction.txt").render()


def build_registration_prompt() -> str:
    return _jinja_env.get_template("registration_extraction.txt").render()


def build_preview_prompt() -> str:
    return _jinja_env.get_template("preview_markup.txt").render(font=PREVIEW_FONT)
