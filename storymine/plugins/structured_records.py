from __future__ import annotations

from typing import List, Optional

from storymine.core.cancellation import CancellationToken
from storymine.core.config import ExtractionConfig
from storymine.core.models import DecodedTextFragment, ExtractionUnit
from storymine.core.records import find_serialized_string_arrays
from storymine.plugins.base import SourceKind, SourceParser


class StructuredRecordSource(SourceParser):
    name = "structured_record"
    kind = SourceKind.STRUCTURED_RECORD

    def enabled(self, config: ExtractionConfig) -> bool:
        return config.extract_structured_records

    def parse(
        self,
        unit: ExtractionUnit,
        config: ExtractionConfig,
        token: Optional[CancellationToken] = None,
    ) -> List[DecodedTextFragment]:
        fragments: List[DecodedTextFragment] = []
        for array in find_serialized_string_arrays(unit.data, token):
            for item in array.strings:
                fragments.append(
                    DecodedTextFragment(
                        text=item.text,
                        codec=item.codec,
                        offset=item.offset + unit.base_offset,
                        length=item.length,
                        label=array.field_name,
                    )
                )
        return fragments
