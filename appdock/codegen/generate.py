"""Spec -> application file set."""

import logging

from appdock.codegen.app import render_main, render_storage
from appdock.codegen.docs import render_env, render_readme, render_requirements
from appdock.project.files import FileSet
from appdock.spec.parser import parse_spec

logger = logging.getLogger(__name__)


def generate(spec_source: str, generated_at=None, port: int = 8000) -> FileSet:
    """Generate a complete FastAPI backend from spec YAML text.

    Deterministic: the same input always yields byte-identical files. The
    only time-dependent content is the README stamp, written only when
    *generated_at* is passed.

    Raises:
        ValidationError: the spec is unparsable or invalid.
    """
    spec, warnings = parse_spec(spec_source)

    files = FileSet(warnings=list(warnings))
    files.add("requirements.txt", render_requirements())
    files.add("main.py", render_main(spec))
    files.add("storage.py", render_storage())
    files.add(".env", render_env(spec, port))
    files.add("README.md", render_readme(spec, generated_at))

    routes = ", ".join(f"/{e.resource}" for e in spec.entities)
    logger.info(f"Generated {len(files)} files for '{spec.name}' ({len(spec.entities)} entities: {routes})")
    return files
