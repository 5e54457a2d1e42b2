import json
import logging

from storymine.core.models import Provenance
from storymine.infra.logging_utils import JsonFormatter


def _record(thread_name: str) -> logging.LogRecord:
    record = logging.LogRecord("storymine", logging.INFO, __file__, 1, "File extracted", None, None)
    record.threadName = thread_name
    record.extra_data = {"file": "level0", "provenance": Provenance.CONTAINER_TEXT, "message": "shadowed"}
    return record


def test_extra_fields_are_merged() -> None:
    payload = json.loads(JsonFormatter().format(_record("storymine_0")))
    assert payload["message"] == "File extracted"
    assert payload["file"] == "level0"
    assert payload["provenance"] == "container_text"
    assert payload["worker"] == "storymine_0"
    assert payload["timestamp"].endswith("Z")


def test_main_thread_has_no_worker_field() -> None:
    payload = json.loads(JsonFormatter().format(_record("MainThread")))
    assert "worker" not in payload
