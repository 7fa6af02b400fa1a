"""Token estimates for tokens-per-minute quota requests.

TPM quota has to be acquired before text is sent to the provider, so the
count is an estimate made with tiktoken. The provider's own tokenizer differs
slightly; the prompt overhead absorbs the difference.
"""

from functools import lru_cache
from typing import Iterable, List

import tiktoken

# Closest general-purpose encoding to the Gemini tokenizer
DEFAULT_ENCODING = "cl100k_base"

# Tokens spent on the fixed instructions wrapped around every request
DEFAULT_PROMPT_OVERHEAD = 200


@lru_cache(maxsize=8)
def get_encoding(encoding_name: str = DEFAULT_ENCODING) -> "tiktoken.Encoding":
    """Load a tiktoken encoding once per process."""
    return tiktoken.get_encoding(encoding_name)


def count_tokens(text: str, encoding_name: str = DEFAULT_ENCODING) -> int:
    """Number of tokens in ``text``; blank text counts as zero."""
    if not text or text.isspace():
        return 0
    return len(get_encoding(encoding_name).encode(text))


def count_tokens_batch(texts: Iterable[str], encoding_name: str = DEFAULT_ENCODING) -> List[int]:
    """Token counts for several texts, in order."""
    return [count_tokens(text, encoding_name) for text in texts]


def estimate_request_tokens(
    content: str,
    context_tokens: int = 0,
    prompt_overhead: int = DEFAULT_PROMPT_OVERHEAD,
    encoding_name: str = DEFAULT_ENCODING,
) -> int:
    """Estimate the TPM units one provider call will consume.

    Args:
        content: Text sent for processing
        context_tokens: Tokens of surrounding context, already counted by the caller
        prompt_overhead: Tokens of fixed prompt instructions
        encoding_name: tiktoken encoding used for ``content``

    Returns:
        content tokens + context tokens + prompt overhead
    """
    return count_tokens(content, encoding_name) + context_tokens + prompt_overhead
