"""Protocol for chat generation backends."""

from typing import Callable, Optional, Protocol, runtime_checkable

from citepack.utils.cancel import CancelToken


@runtime_checkable
class ChatProvider(Protocol):
    """Single-turn chat completion with a system and a user message."""

    def chat(
        self,
        model: str,
        system_prompt: str,
        user_prompt: str,
        *,
        stream: bool = False,
        json_mode: bool = False,
        num_ctx: int = 3072,
        on_token: Optional[Callable[[str], None]] = None,
        token: Optional[CancelToken] = None,
    ) -> str:
        """Return the full assistant text; streamed deltas go to ``on_token``."""
        ...
