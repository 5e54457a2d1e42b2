from __future__ import annotations

from typing import List, Optional

from storymine.core.cancellation import CancellationToken
from storymine.core.config import ExtractionConfig
from storymine.core.models import DecodedTextFragment, ExtractionUnit
from storymine.core.string_engine import StringExtractionEngine
from storymine.plugins.base import SourceKind, SourceParser


class TextLikeSource(SourceParser):
    name = "text_like"
    kind = SourceKind.TEXT_LIKE

    def __init__(self, engine: Optional[StringExtractionEngine] = None) -> None:
        self.engine = engine or StringExtractionEngine()

    def parse(
        self,
        unit: ExtractionUnit,
        config: ExtractionConfig,
        token: Optional[CancellationToken] = None,
    ) -> List[DecodedTextFragment]:
        return self.engine.extract_unit(unit, config, token)
