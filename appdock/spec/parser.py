"""Parse and validate declarative application specs (YAML)."""

import logging
import math
import re

import yaml

from appdock.errors import ValidationError
from appdock.spec.pluralize import pluralize
from appdock.spec.types import FIELD_TYPES, AppSpec, EntitySpec, FieldConstraints, SpecField

logger = logging.getLogger(__name__)

IDENTIFIER_RE = re.compile(r"^[A-Za-z][A-Za-z0-9_]*$")
FIELD_NAME_RE = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")

# Paths and names the generated application already uses
RESERVED_RESOURCES = {"health", "api", "docs", "redoc", "openapi", "static"}
RESERVED_FIELDS = {"id", "createdAt", "updatedAt"}

NAME_MIN_LENGTH = 3
NAME_MAX_LENGTH = 50


def parse_spec(source: str) -> tuple[AppSpec, list[str]]:
    """Parse YAML spec text.

    Returns:
        (AppSpec, warnings) where warnings lists non-fatal degradations
        such as unknown field types mapped to ``text``.

    Raises:
        ValidationError: unparsable or semantically invalid spec.
    """
    try:
        data = yaml.safe_load(source)
    except yaml.YAMLError as e:
        mark = getattr(e, "problem_mark", None)
        location = f"line {mark.line + 1}" if mark is not None else "spec"
        raise ValidationError(f"invalid YAML: {getattr(e, 'problem', None) or e}", location=location) from e
    return spec_from_dict(data)


def spec_from_dict(data) -> tuple[AppSpec, list[str]]:
    """Validate an already-loaded spec document."""
    if not isinstance(data, dict):
        raise ValidationError("spec must be a mapping", location="spec")

    warnings = []
    name = data.get("name")
    if not isinstance(name, str) or not name.strip():
        raise ValidationError("missing application name", location="name")
    name = name.strip()
    if not NAME_MIN_LENGTH <= len(name) <= NAME_MAX_LENGTH:
        raise ValidationError(
            f"application name must be {NAME_MIN_LENGTH}-{NAME_MAX_LENGTH} characters", location="name"
        )

    raw_entities = _entity_items(data.get("entities"))
    if not raw_entities:
        raise ValidationError("spec must define at least one entity", location="entities")

    entities = []
    seen_names = {}
    seen_resources = {}
    for index, (entity_name, raw_fields) in enumerate(raw_entities):
        location = f"entities[{index}]"
        if not isinstance(entity_name, str) or not IDENTIFIER_RE.match(entity_name):
            raise ValidationError(f"invalid entity name {entity_name!r}", location=f"{location}.name")

        key = entity_name.lower()
        if key in seen_names:
            raise ValidationError(
                f"duplicate entity name '{entity_name}' (conflicts with '{seen_names[key]}')", location=f"{location}.name"
            )
        resource = pluralize(key)
        if key in RESERVED_RESOURCES or resource in RESERVED_RESOURCES:
            raise ValidationError(f"entity name '{entity_name}' is reserved", location=f"{location}.name")
        if resource in seen_resources:
            raise ValidationError(
                f"entity '{entity_name}' maps to resource '/{resource}' already used by '{seen_resources[resource]}'",
                location=f"{location}.name",
            )
        seen_names[key] = entity_name
        seen_resources[resource] = entity_name

        fields = _parse_fields(entity_name, raw_fields, location, warnings)
        entities.append(EntitySpec(name=entity_name, fields=fields, resource=resource))

    names = {e.name for e in entities}
    for ei, entity in enumerate(entities):
        for fi, f in enumerate(entity.fields):
            if f.type == "reference" and f.reference not in names:
                raise ValidationError(
                    f"field '{f.name}' references unknown entity '{f.reference}'",
                    location=f"entities[{ei}].fields[{fi}].reference",
                )

    version = data.get("version", "1.0.0")
    description = data.get("description") or ""
    spec = AppSpec(name=name, entities=entities, version=str(version), description=str(description))
    for w in warnings:
        logger.warning(w)
    return spec, warnings


def _entity_items(raw) -> list[tuple]:
    """Accept a list of ``{name, fields}`` or a ``{name: fields}`` mapping."""
    if raw is None:
        return []
    if isinstance(raw, dict):
        return [(k, v.get("fields") if isinstance(v, dict) and "fields" in v else v) for k, v in raw.items()]
    if isinstance(raw, list):
        items = []
        for index, item in enumerate(raw):
            if not isinstance(item, dict):
                raise ValidationError("entity must be a mapping", location=f"entities[{index}]")
            items.append((item.get("name"), item.get("fields")))
        return items
    raise ValidationError("entities must be a list or mapping", location="entities")


def _field_items(raw, location) -> list[dict]:
    """Accept a list of field mappings or a ``{field: type | mapping}`` mapping."""
    if isinstance(raw, list):
        for index, item in enumerate(raw):
            if not isinstance(item, dict):
                raise ValidationError("field must be a mapping", location=f"{location}.fields[{index}]")
        return raw
    if isinstance(raw, dict):
        items = []
        for fname, value in raw.items():
            if isinstance(value, str):
                items.append({"name": fname, "type": value})
            elif isinstance(value, dict):
                items.append({"name": fname, **value})
            elif value is None:
                items.append({"name": fname})
            else:
                raise ValidationError(f"invalid definition for field '{fname}'", location=f"{location}.fields")
        return items
    raise ValidationError("entity must define at least one field", location=f"{location}.fields")


def _number(value, name, location):
    if value is None:
        return None
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise ValidationError(f"'{name}' must be a number", location=location)
    if not math.isfinite(value):
        raise ValidationError(f"'{name}' must be a finite number", location=location)
    return value


def _has_non_finite(value) -> bool:
    if isinstance(value, float):
        return not math.isfinite(value)
    if isinstance(value, (list, tuple)):
        return any(_has_non_finite(v) for v in value)
    if isinstance(value, dict):
        return any(_has_non_finite(v) for v in value.values())
    return False


def _parse_fields(entity_name, raw, location, warnings) -> list[SpecField]:
    items = _field_items(raw, location)
    if not items:
        raise ValidationError("entity must define at least one field", location=f"{location}.fields")

    fields = []
    seen = set()
    for index, item in enumerate(items):
        floc = f"{location}.fields[{index}]"
        fname = item.get("name")
        if not isinstance(fname, str) or not FIELD_NAME_RE.match(fname):
            raise ValidationError(f"invalid field name {fname!r} in entity '{entity_name}'", location=f"{floc}.name")
        if fname in RESERVED_FIELDS:
            raise ValidationError(f"field name '{fname}' is reserved (managed automatically)", location=f"{floc}.name")
        if fname in seen:
            raise ValidationError(f"duplicate field '{fname}' in entity '{entity_name}'", location=f"{floc}.name")
        seen.add(fname)

        ftype = item.get("type", "text")
        if ftype not in FIELD_TYPES:
            warnings.append(f"{entity_name}.{fname}: unknown type '{ftype}', using 'text'")
            ftype = "text"

        values = item.get("enumValues", item.get("values")) or []
        if ftype == "enum":
            if not isinstance(values, list) or not values or not all(isinstance(v, str) for v in values):
                raise ValidationError(f"enum field '{fname}' needs a non-empty list of string values", location=floc)

        constraints = FieldConstraints(
            unique=bool(item.get("unique", False)),
            min=_number(item.get("min"), "min", floc),
            max=_number(item.get("max"), "max", floc),
            min_length=_number(item.get("minLength"), "minLength", floc),
            max_length=_number(item.get("maxLength"), "maxLength", floc),
            pattern=item.get("pattern"),
            values=list(values) if ftype == "enum" else [],
        )
        if constraints.min is not None and constraints.max is not None and constraints.min > constraints.max:
            raise ValidationError(f"field '{fname}': min is greater than max", location=floc)
        if (
            constraints.min_length is not None
            and constraints.max_length is not None
            and constraints.min_length > constraints.max_length
        ):
            raise ValidationError(f"field '{fname}': minLength is greater than maxLength", location=floc)
        if constraints.pattern is not None:
            try:
                re.compile(constraints.pattern)
            except (re.error, TypeError) as e:
                raise ValidationError(f"field '{fname}': invalid pattern ({e})", location=floc) from e

        reference = item.get("reference")
        if ftype == "reference" and not isinstance(reference, str):
            raise ValidationError(f"reference field '{fname}' must name a target entity", location=floc)

        has_default = "defaultValue" in item or "default" in item
        default = item.get("defaultValue", item.get("default"))
        if _has_non_finite(default):
            raise ValidationError(f"field '{fname}': default must not contain inf or nan", location=floc)
        if has_default and ftype == "enum" and default is not None and default not in constraints.values:
            raise ValidationError(f"field '{fname}': default '{default}' is not one of the enum values", location=floc)

        fields.append(
            SpecField(
                name=fname,
                type=ftype,
                required=bool(item.get("required", False)),
                constraints=constraints,
                default=default,
                has_default=has_default,
                reference=reference if ftype == "reference" else None,
                description=str(item.get("description") or ""),
            )
        )
    return fields
