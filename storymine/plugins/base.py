from __future__ import annotations

from abc import ABC, abstractmethod
from enum import Enum
from typing import Dict, List, Optional, Tuple

from storymine.core.cancellation import CancellationToken
from storymine.core.config import ExtractionConfig
from storymine.core.errors import UnsupportedFormat
from storymine.core.models import DecodedTextFragment, ExtractionUnit, FileKind


class SourceKind(str, Enum):
    TEXT_LIKE = "text_like"
    STRUCTURED_RECORD = "structured_record"
    PROGRAM_ASSEMBLY = "program_assembly"


SOURCES_BY_FILE_KIND: Dict[FileKind, Tuple[SourceKind, ...]] = {
    FileKind.SERIALIZED_CONTAINER: (SourceKind.TEXT_LIKE, SourceKind.STRUCTURED_RECORD),
    FileKind.RESOURCE_BUNDLE: (SourceKind.TEXT_LIKE, SourceKind.STRUCTURED_RECORD),
    FileKind.BOOTSTRAP_DESCRIPTOR: (SourceKind.TEXT_LIKE,),
    FileKind.RESOURCE_STREAM: (SourceKind.TEXT_LIKE,),
    FileKind.PROGRAM_ASSEMBLY: (SourceKind.PROGRAM_ASSEMBLY,),
    FileKind.OTHER: (SourceKind.TEXT_LIKE,),
}


class SourceParser(ABC):
    name: str
    kind: SourceKind

    def enabled(self, config: ExtractionConfig) -> bool:
        return True

    @abstractmethod
    def parse(
        self,
        unit: ExtractionUnit,
        config: ExtractionConfig,
        token: Optional[CancellationToken] = None,
    ) -> List[DecodedTextFragment]:
        raise NotImplementedError


class SourceRegistry:
    def __init__(self) -> None:
        self.parsers: Dict[SourceKind, SourceParser] = {}

    def register(self, parser: SourceParser) -> None:
        self.parsers[parser.kind] = parser

    def sources_for(self, kind: FileKind) -> List[SourceParser]:
        source_kinds = SOURCES_BY_FILE_KIND.get(kind)
        if not source_kinds:
            raise UnsupportedFormat(f"no source kind handles {kind.value}")
        return [self.parsers[k] for k in source_kinds if k in self.parsers]
