from __future__ import annotations

import json
from dataclasses import dataclass
from functools import lru_cache
from pathlib import Path
from typing import Any, Literal

import jsonschema  # type: ignore[import-untyped]


OutputFormat = Literal["json_envelope", "jsonl_events"]


class BackendDescriptorError(RuntimeError):
    """Raised when a backend descriptor file is missing or malformed."""


@dataclass(frozen=True)
class BackendDescriptor:
    name: str
    command: str
    base_args: tuple[str, ...]
    output_format: OutputFormat
    resume_args: tuple[str, ...] | None = None
    resume_flag: str | None = None
    session_id_flag: str | None = None
    model_flag: str | None = None
    system_prompt_flag: str | None = None
    skip_permissions_flag: str | None = None
    allowed_tools_flag: str | None = None
    interactive_args: tuple[str, ...] = ()

    @property
    def interactive_command(self) -> list[str]:
        return [self.command, *self.interactive_args]


@lru_cache(maxsize=4)
def _load_schema(schema_path: str) -> dict[str, Any]:
    path = Path(schema_path)
    if not path.exists():
        raise BackendDescriptorError(f"Backend descriptor schema not found: {path}")
    return json.loads(path.read_text(encoding="utf-8"))


def _optional_tuple(value: Any) -> tuple[str, ...] | None:
    if value is None:
        return None
    return tuple(str(item) for item in value)


def descriptor_from_payload(payload: dict[str, Any], schema_path: str, *, source: str = "<inline>") -> BackendDescriptor:
    schema = _load_schema(schema_path)
    try:
        jsonschema.validate(instance=payload, schema=schema)
    except jsonschema.ValidationError as exc:
        raise BackendDescriptorError(f"Backend descriptor invalid ({source}): {exc.message}") from exc
    return BackendDescriptor(
        name=payload["name"],
        command=payload["command"],
        base_args=tuple(payload["base_args"]),
        output_format=payload["output_format"],
        resume_args=_optional_tuple(payload.get("resume_args")),
        resume_flag=payload.get("resume_flag"),
        session_id_flag=payload.get("session_id_flag"),
        model_flag=payload.get("model_flag"),
        system_prompt_flag=payload.get("system_prompt_flag"),
        skip_permissions_flag=payload.get("skip_permissions_flag"),
        allowed_tools_flag=payload.get("allowed_tools_flag"),
        interactive_args=tuple(payload.get("interactive_args") or ()),
    )


def load_backend_descriptor(path: Path, schema_path: str) -> BackendDescriptor:
    if not path.exists():
        raise BackendDescriptorError(f"Backend descriptor not found: {path}")
    try:
        payload = json.loads(path.read_text(encoding="utf-8"))
    except json.JSONDecodeError as exc:
        raise BackendDescriptorError(f"Backend descriptor is not valid JSON: {path}") from exc
    if not isinstance(payload, dict):
        raise BackendDescriptorError(f"Backend descriptor must be a JSON object: {path}")
    return descriptor_from_payload(payload, schema_path, source=str(path))
