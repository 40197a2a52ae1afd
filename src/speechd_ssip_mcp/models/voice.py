"""Synthesis voice model."""

from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True)
class SynthesisVoice:
    """A voice offered by the current output module."""

    name: str
    language: str = ""
    variant: str = ""

    def to_dict(self) -> dict:
        return {
            "name": self.name,
            "language": self.language,
            "variant": self.variant,
        }

    @classmethod
    def from_line(cls, line: str) -> SynthesisVoice:
        """Parse one ``LIST SYNTHESIS_VOICES`` data line.

        Servers separate the fields with tabs; older ones use single spaces.
        """
        if "\t" in line:
            parts = line.split("\t")
        else:
            parts = line.split()
        parts += [""] * (3 - len(parts))
        name, language, variant = parts[0], parts[1], " ".join(parts[2:]).strip()
        return cls(name=name, language=language, variant=variant)

    def __str__(self) -> str:
        return f"{self.name} {self.language} {self.variant}".rstrip()
