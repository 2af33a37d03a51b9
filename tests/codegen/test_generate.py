"""Unit tests for spec -> file set generation."""

import ast
from datetime import datetime, timezone

import pytest

from appdock.codegen import generate
from appdock.errors import ValidationError
from appdock.project.files import FileEntry, FileSet, merge_files
from appdock.spec import get_template, list_templates


def test_generates_expected_files(task_spec):
    files = generate(task_spec)
    assert files.paths() == ["requirements.txt", "main.py", "storage.py", ".env", "README.md"]
    assert "fastapi" in files.get("requirements.txt")
    assert "PORT=8000" in files.get(".env")


def test_generation_is_deterministic(task_spec):
    first = generate(task_spec)
    second = generate(task_spec)
    assert first.as_dict() == second.as_dict()


def test_timestamp_only_when_requested(task_spec):
    plain = generate(task_spec).get("README.md")
    assert "Generated at" not in plain

    stamp = datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc)
    stamped = generate(task_spec, generated_at=stamp)
    assert "Generated at: 2024-05-01T12:00:00+00:00" in stamped.get("README.md")
    assert stamped.get("main.py") == generate(task_spec).get("main.py")


def test_port_written_to_env(task_spec):
    assert "PORT=9000" in generate(task_spec, port=9000).get(".env")


def test_routes_per_entity(task_spec):
    main = generate(task_spec).get("main.py")
    assert '@app.get("/tasks")' in main
    assert '@app.post("/tasks", status_code=201)' in main
    assert '@app.get("/tasks/{record_id}")' in main
    assert '@app.put("/tasks/{record_id}")' in main
    assert '@app.delete("/tasks/{record_id}")' in main


@pytest.mark.parametrize("template", [t.id for t in list_templates()])
def test_generated_sources_are_valid_python(template):
    files = generate(get_template(template).source)
    for path in ("main.py", "storage.py"):
        ast.parse(files.get(path), filename=path)


def test_readme_documents_routes(task_spec):
    readme = generate(task_spec).get("README.md")
    assert "# Task Tracker" in readme
    assert "| POST | `/tasks` |" in readme
    assert "`title`" in readme


def test_unknown_type_reported_as_warning():
    source = "name: Notes\nentities:\n  - name: Note\n    fields:\n      - {name: body, type: markdown}\n"
    files = generate(source)
    assert files.warnings == ["Note.body: unknown type 'markdown', using 'text'"]


def test_invalid_spec_raises_validation_error():
    with pytest.raises(ValidationError):
        generate("name: Broken\nentities: []\n")


def test_user_files_override_generated(task_spec):
    generated = generate(task_spec)
    user = FileSet([FileEntry("manifest.yaml", task_spec), FileEntry("README.md", "# mine\n")])
    merged = merge_files(generated, user)
    assert merged.get("README.md") == "# mine\n"
    assert merged.paths()[:2] == ["manifest.yaml", "README.md"]
    assert "main.py" in merged
