# services/grading/parser.py
from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Optional, Pattern

# "Shininess: 4/5", "**Smoothness:** 3 / 5", "combined - 7/10"
_SHININESS = re.compile(r"shininess[^\d\n]*?(\d+)\s*/\s*5\b", re.IGNORECASE)
_SMOOTHNESS = re.compile(r"smoothness[^\d\n]*?(\d+)\s*/\s*5\b", re.IGNORECASE)
_COMBINED = re.compile(r"combined[^\d\n]*?(\d+)\s*/\s*10\b", re.IGNORECASE)

COMPONENT_MAX = 5
COMBINED_MAX = 10

COMBINED_FROM_MODEL = "model"
COMBINED_DERIVED = "derived"


@dataclass(frozen=True)
class ParsedScores:
    shininess: int
    smoothness: int
    combined: int
    combined_source: str
    shininess_found: bool = True
    smoothness_found: bool = True

    @property
    def complete(self) -> bool:
        return self.shininess_found and self.smoothness_found


class ResponseParser:
    """
    Extracts the three labelled scores from the grader's free-text reply.

    Grammar: three "Label: X/Y" lines (Shininess /5, Smoothness /5, Combined /10),
    in any order, anywhere in the text. The first match of each label wins.

    Fallback policy:
      - an unparsed or out-of-range component score becomes 0
      - the model's own Combined line is preferred when present and within 0-10;
        otherwise combined = shininess + smoothness
    """

    @staticmethod
    def _first_int(pattern: Pattern[str], text: str, ceiling: int) -> Optional[int]:
        m = pattern.search(text)
        if not m:
            return None
        value = int(m.group(1))
        return value if value <= ceiling else None

    def parse(self, text: Optional[str]) -> ParsedScores:
        text = text or ""
        shininess = self._first_int(_SHININESS, text, COMPONENT_MAX)
        smoothness = self._first_int(_SMOOTHNESS, text, COMPONENT_MAX)
        combined = self._first_int(_COMBINED, text, COMBINED_MAX)

        shin = shininess if shininess is not None else 0
        smooth = smoothness if smoothness is not None else 0

        if combined is None:
            return ParsedScores(
                shininess=shin,
                smoothness=smooth,
                combined=shin + smooth,
                combined_source=COMBINED_DERIVED,
                shininess_found=shininess is not None,
                smoothness_found=smoothness is not None,
            )

        return ParsedScores(
            shininess=shin,
            smoothness=smooth,
            combined=combined,
            combined_source=COMBINED_FROM_MODEL,
            shininess_found=shininess is not None,
            smoothness_found=smoothness is not None,
        )
