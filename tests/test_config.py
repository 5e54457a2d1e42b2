import base64
import json
from pathlib import Path

import pytest

from storymine.core.config import ExtractionConfig, decode_key, load_config
from storymine.core.errors import ConfigurationError


def test_defaults_are_valid() -> None:
    config = ExtractionConfig()
    config.validate()
    assert config.worker_count == 2
    assert config.min_text_length == 2
    assert "*.png" in config.exclude_patterns


def test_camel_case_mapping_and_key() -> None:
    key = base64.b64encode(b"0123456789abcdef").decode("ascii")
    config = ExtractionConfig.from_mapping(
        {"minTextLength": 4, "useParallelProcessing": False, "decryptionKey": key, "keywords": ["king"]}
    )
    assert config.min_text_length == 4
    assert config.worker_count == 1
    assert config.decryption_key == b"0123456789abcdef"
    assert config.keywords == ["king"]


def test_unknown_option_is_rejected() -> None:
    with pytest.raises(ConfigurationError):
        ExtractionConfig.from_mapping({"turboMode": True})


@pytest.mark.parametrize(
    "overrides",
    [
        {"min_text_length": 0},
        {"min_text_length": 10, "max_text_length": 5},
        {"max_parallelism": 0},
        {"streaming_chunk_size_bytes": 0},
        {"file_timeout_seconds": -1},
    ],
)
def test_invalid_values(overrides) -> None:
    with pytest.raises(ConfigurationError):
        ExtractionConfig(**overrides).validate()


def test_bad_base64_key() -> None:
    with pytest.raises(ConfigurationError):
        decode_key("not base64!!")


def test_load_config(tmp_path: Path) -> None:
    assert load_config(tmp_path / "missing.json") == ExtractionConfig()
    path = tmp_path / "storymine.json"
    path.write_text(json.dumps({"maxParallelism": 4, "prioritizeCjkText": False}), encoding="utf-8")
    config = load_config(path)
    assert config.max_parallelism == 4
    assert not config.prioritize_cjk_text


def test_load_config_requires_object(tmp_path: Path) -> None:
    path = tmp_path / "storymine.json"
    path.write_text("[1, 2]", encoding="utf-8")
    with pytest.raises(ConfigurationError):
        load_config(path)


def test_malformed_config_file(tmp_path: Path) -> None:
    path = tmp_path / "storymine.json"
    path.write_text("{not json", encoding="utf-8")
    with pytest.raises(ConfigurationError):
        load_config(path)
