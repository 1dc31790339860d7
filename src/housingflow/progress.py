# src/housingflow/progress.py
from __future__ import annotations

from tqdm.auto import tqdm

__all__ = ["Prog", "say"]


class Prog:
    """Tiny progress helper."""
    def __init__(self, enabled: bool, total: int, desc: str):
        self.enabled = enabled
        self.t = tqdm(total=total, desc=desc, leave=True) if self.enabled else None

    def step(self, msg: str):
        if self.t:
            # show the latest substep; keep it short so it fits in one line
            self.t.set_postfix_str(str(msg)[:60], refresh=True)
            self.t.update(1)

    def close(self):
        if self.t:
            self.t.close()


def say(msg: str) -> None:
    """Print a status line without breaking an active progress bar."""
    tqdm.write(msg)
