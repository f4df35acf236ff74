from pairbridge.prompts.pair_prompt import (
    DEFAULT_PAIR_PROMPT,
    build_pair_prompt,
    load_pair_prompt,
)

__all__ = ["DEFAULT_PAIR_PROMPT", "build_pair_prompt", "load_pair_prompt"]
