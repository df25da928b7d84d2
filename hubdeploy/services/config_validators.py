from __future__ import annotations

import copy
import re
from typing import Any


FieldError = dict[str, str]


PROPERTY_OBJECT_TYPES = ("contacts", "companies", "deals", "tickets")
PIPELINE_OBJECT_TYPES = ("deals", "tickets")
PROPERTY_TYPES = {
    "string",
    "number",
    "date",
    "datetime",
    "enumeration",
    "bool",
    "phone_number",
}
PROPERTY_NAME_PATTERN = re.compile(r"^[a-z][a-z0-9_]*[a-z0-9]$")
PROPERTY_NAME_MAX_LENGTH = 50


def empty_config() -> dict[str, Any]:
    return {
        "properties": {object_type: [] for object_type in PROPERTY_OBJECT_TYPES},
        "pipelines": {object_type: [] for object_type in PIPELINE_OBJECT_TYPES},
        "lifecycleStages": {"stages": []},
        "propertyGroups": [],
    }


def _add_error(errors: list[FieldError], field: str, message: str) -> None:
    errors.append({"field": field, "message": message})


def _is_non_empty_string(value: Any) -> bool:
    return isinstance(value, str) and bool(value.strip())


def _validate_required_string(
    *,
    errors: list[FieldError],
    payload: dict[str, Any],
    key: str,
    path: str,
) -> str:
    value = payload.get(key)
    if _is_non_empty_string(value):
        return str(value).strip()
    _add_error(errors, f"{path}.{key}", f"{key} must be a non-empty string")
    return ""


def _validate_display_order(
    *,
    errors: list[FieldError],
    payload: dict[str, Any],
    path: str,
    required: bool,
) -> None:
    if "displayOrder" not in payload or payload.get("displayOrder") is None:
        if required:
            _add_error(errors, f"{path}.displayOrder", "displayOrder is required")
        return
    value = payload.get("displayOrder")
    if isinstance(value, bool) or not isinstance(value, int) or value < 0:
        _add_error(errors, f"{path}.displayOrder", "displayOrder must be a non-negative integer")


def _list_section(
    *,
    errors: list[FieldError],
    section: dict[str, Any],
    key: str,
    path: str,
) -> list:
    value = section.get(key)
    if value is None:
        section[key] = []
        return []
    if not isinstance(value, list):
        _add_error(errors, f"{path}.{key}", f"{key} must be a list")
        return []
    return value


def _validate_property(prop: dict[str, Any], path: str, errors: list[FieldError]) -> None:
    name = _validate_required_string(errors=errors, payload=prop, key="name", path=path)
    if name:
        if len(name) > PROPERTY_NAME_MAX_LENGTH:
            _add_error(
                errors,
                f"{path}.name",
                f"name must be at most {PROPERTY_NAME_MAX_LENGTH} characters",
            )
        elif not PROPERTY_NAME_PATTERN.match(name):
            _add_error(
                errors,
                f"{path}.name",
                "name must contain only lowercase letters, numbers, and underscores",
            )
    _validate_required_string(errors=errors, payload=prop, key="label", path=path)
    _validate_required_string(errors=errors, payload=prop, key="fieldType", path=path)

    prop_type = _validate_required_string(errors=errors, payload=prop, key="type", path=path)
    if prop_type and prop_type not in PROPERTY_TYPES:
        allowed = ", ".join(sorted(PROPERTY_TYPES))
        _add_error(errors, f"{path}.type", f"Invalid property type '{prop_type}'. Must be one of: {allowed}")
        return

    options = prop.get("options")
    if prop_type == "enumeration":
        if not isinstance(options, list) or not options:
            _add_error(errors, f"{path}.options", "Enumeration properties require at least one option")
            return
        seen: set[str] = set()
        for index, option in enumerate(options):
            option_path = f"{path}.options[{index}]"
            if not isinstance(option, dict):
                _add_error(errors, option_path, "option must be an object")
                continue
            _validate_required_string(errors=errors, payload=option, key="label", path=option_path)
            value = _validate_required_string(errors=errors, payload=option, key="value", path=option_path)
            if value in seen:
                _add_error(errors, f"{option_path}.value", f"Duplicate option value '{value}'")
            seen.add(value)
    elif options is not None:
        _add_error(errors, f"{path}.options", "options are only allowed on enumeration properties")


def _validate_pipeline(pipeline: dict[str, Any], path: str, errors: list[FieldError]) -> None:
    _validate_required_string(errors=errors, payload=pipeline, key="label", path=path)
    _validate_display_order(errors=errors, payload=pipeline, path=path, required=False)

    stages = pipeline.get("stages")
    if not isinstance(stages, list) or not stages:
        _add_error(errors, f"{path}.stages", "Pipeline stages must be a non-empty list")
        return
    for index, stage in enumerate(stages):
        stage_path = f"{path}.stages[{index}]"
        if not isinstance(stage, dict):
            _add_error(errors, stage_path, "stage entry must be an object")
            continue
        _validate_required_string(errors=errors, payload=stage, key="label", path=stage_path)
        _validate_display_order(errors=errors, payload=stage, path=stage_path, required=True)
        metadata = stage.get("metadata")
        if metadata is not None and not isinstance(metadata, dict):
            _add_error(errors, f"{stage_path}.metadata", "metadata must be an object when provided")


def _validate_lifecycle_stage(stage: dict[str, Any], path: str, errors: list[FieldError]) -> None:
    _validate_required_string(errors=errors, payload=stage, key="name", path=path)
    _validate_required_string(errors=errors, payload=stage, key="label", path=path)
    _validate_display_order(errors=errors, payload=stage, path=path, required=True)


def _validate_property_group(group: dict[str, Any], path: str, errors: list[FieldError]) -> None:
    object_type = _validate_required_string(errors=errors, payload=group, key="objectType", path=path)
    if object_type and object_type not in PROPERTY_OBJECT_TYPES:
        _add_error(
            errors,
            f"{path}.objectType",
            f"objectType must be one of: {', '.join(PROPERTY_OBJECT_TYPES)}",
        )
    _validate_required_string(errors=errors, payload=group, key="name", path=path)
    _validate_required_string(errors=errors, payload=group, key="label", path=path)
    _validate_display_order(errors=errors, payload=group, path=path, required=False)


def normalize_template_config(config: Any) -> tuple[dict[str, Any], list[FieldError]]:
    """Validate a template config document and fill in missing sections.

    Returns the normalized copy together with every validation error found.
    The copy always carries all top-level keys, with empty lists where the
    input omitted a section. Callers must not use it when errors is
    non-empty.
    """
    errors: list[FieldError] = []
    if not isinstance(config, dict):
        return empty_config(), [{"field": "config", "message": "Config must be an object"}]

    normalized = copy.deepcopy(config)

    properties = normalized.setdefault("properties", {})
    if not isinstance(properties, dict):
        _add_error(errors, "properties", "properties must be an object")
        properties = normalized["properties"] = {}
    for object_type in PROPERTY_OBJECT_TYPES:
        entries = _list_section(errors=errors, section=properties, key=object_type, path="properties")
        for index, prop in enumerate(entries):
            path = f"properties.{object_type}[{index}]"
            if not isinstance(prop, dict):
                _add_error(errors, path, "property entry must be an object")
                continue
            _validate_property(prop, path, errors)
    for unknown in sorted(set(properties) - set(PROPERTY_OBJECT_TYPES)):
        _add_error(errors, f"properties.{unknown}", "Unknown property object type")

    pipelines = normalized.setdefault("pipelines", {})
    if not isinstance(pipelines, dict):
        _add_error(errors, "pipelines", "pipelines must be an object")
        pipelines = normalized["pipelines"] = {}
    for object_type in PIPELINE_OBJECT_TYPES:
        entries = _list_section(errors=errors, section=pipelines, key=object_type, path="pipelines")
        for index, pipeline in enumerate(entries):
            path = f"pipelines.{object_type}[{index}]"
            if not isinstance(pipeline, dict):
                _add_error(errors, path, "pipeline entry must be an object")
                continue
            _validate_pipeline(pipeline, path, errors)
    for unknown in sorted(set(pipelines) - set(PIPELINE_OBJECT_TYPES)):
        _add_error(errors, f"pipelines.{unknown}", "Unknown pipeline object type")

    lifecycle = normalized.setdefault("lifecycleStages", {})
    if not isinstance(lifecycle, dict):
        _add_error(errors, "lifecycleStages", "lifecycleStages must be an object")
        lifecycle = normalized["lifecycleStages"] = {}
    for index, stage in enumerate(
        _list_section(errors=errors, section=lifecycle, key="stages", path="lifecycleStages")
    ):
        path = f"lifecycleStages.stages[{index}]"
        if not isinstance(stage, dict):
            _add_error(errors, path, "stage entry must be an object")
            continue
        _validate_lifecycle_stage(stage, path, errors)

    groups = normalized.get("propertyGroups")
    if groups is None:
        normalized["propertyGroups"] = []
    elif not isinstance(groups, list):
        _add_error(errors, "propertyGroups", "propertyGroups must be a list")
    else:
        for index, group in enumerate(groups):
            path = f"propertyGroups[{index}]"
            if not isinstance(group, dict):
                _add_error(errors, path, "property group entry must be an object")
                continue
            _validate_property_group(group, path, errors)

    return normalized, errors
