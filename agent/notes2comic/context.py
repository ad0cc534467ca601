from typing import List, Optional


class NarrativeContext:
    """Running summary of the panels generated so far in one comic run.

    Entries are kept in order. When either bound is exceeded the oldest entries are
    dropped first, so the newest panel summary always survives.
    """

    def __init__(self, max_entries: int = 6, max_chars: int = 1500, entries: Optional[List[str]] = None):
        if max_entries < 1 or max_chars < 1:
            raise ValueError("NarrativeContext bounds must be positive")
        self.max_entries = max_entries
        self.max_chars = max_chars
        self._entries: List[str] = []
        self.dropped = 0
        for entry in entries or []:
            self.append(entry)

    def append(self, summary: str) -> "NarrativeContext":
        summary = " ".join((summary or "").split())
        if not summary:
            return self
        if len(summary) > self.max_chars:
            summary = summary[: self.max_chars - 3].rstrip() + "..."
        self._entries.append(summary)
        self._truncate()
        return self

    def _truncate(self):
        while len(self._entries) > self.max_entries or (
            len(self._entries) > 1 and self.char_count > self.max_chars
        ):
            self._entries.pop(0)
            self.dropped += 1

    @property
    def entries(self) -> List[str]:
        return list(self._entries)

    @property
    def char_count(self) -> int:
        return len(self.render())

    def render(self) -> str:
        return " | ".join(self._entries)

    def __bool__(self) -> bool:
        return bool(self._entries)

    def __len__(self) -> int:
        return len(self._entries)

    def __str__(self) -> str:
        return self.render()
