from __future__ import annotations


class FetchError(RuntimeError):
    """A single upstream read (HTTP, subgraph or chain) could not produce a value."""

    def __init__(self, source: str, message: str):
        super().__init__(f"{source}: {message}")
        self.source = source


class ChainReadError(FetchError):
    def __init__(self, contract: str, method: str, message: str):
        super().__init__(f"{contract}.{method}", message)
        self.contract = contract
        self.method = method
