"""
Token counting and usage tracking.

Holds the token counts carried by a single log entry.
"""

from dataclasses import dataclass


@dataclass(frozen=True)
class TokenUsage:
    """Token usage reported by one log entry.

    Contains exact token counts as written by the producing tool, without
    estimation or model-specific logic.
    """
    input_tokens: int
    output_tokens: int

    def __post_init__(self):
        """Validate token counts are not negative."""
        if self.input_tokens < 0:
            raise ValueError("input_tokens cannot be negative")
        if self.output_tokens < 0:
            raise ValueError("output_tokens cannot be negative")

    @property
    def total_tokens(self) -> int:
        """Total tokens used (input + output)."""
        return self.input_tokens + self.output_tokens
