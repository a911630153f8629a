from typing import AsyncIterator, Callable, Optional


class ModelAdaptor:
    """Prompt in, token stream out.

    Subclasses implement ``stream`` and keep the status flags current so the
    agent can refuse work before it starts.
    """

    is_loaded: bool = True
    is_loading: bool = False
    is_busy: bool = False

    def __init__(self):
        self.stop_requested = False

    def stream(self, prompt: str, **kwargs) -> AsyncIterator[str]:
        """Yield generated text pieces for ``prompt``."""
        raise NotImplementedError

    def stop(self) -> None:
        """Ask the running generation to end early."""
        self.stop_requested = True

    async def generate(
        self, prompt: str, on_token: Optional[Callable[[str], None]] = None, **kwargs
    ) -> str:
        pieces = []
        async for piece in self.stream(prompt, **kwargs):
            pieces.append(piece)
            if on_token is not None:
                on_token(piece)
        return "".join(pieces)
