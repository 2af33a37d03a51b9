"""Declarative application specs: types, parsing, pluralization, templates."""

from appdock.spec.parser import parse_spec, spec_from_dict
from appdock.spec.pluralize import pluralize
from appdock.spec.templates import TEMPLATES, SpecTemplate, get_template, list_templates
from appdock.spec.types import FIELD_TYPES, AppSpec, EntitySpec, FieldConstraints, SpecField

__all__ = [
    "FIELD_TYPES",
    "TEMPLATES",
    "AppSpec",
    "EntitySpec",
    "FieldConstraints",
    "SpecField",
    "SpecTemplate",
    "get_template",
    "list_templates",
    "parse_spec",
    "pluralize",
    "spec_from_dict",
]
