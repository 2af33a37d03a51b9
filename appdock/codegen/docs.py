"""Render the generated application's README, .env template and requirements."""

from appdock.spec.types import AppSpec, EntitySpec

REQUIREMENTS_TXT = """\
fastapi>=0.110
uvicorn[standard]>=0.29
"""

_EXAMPLE_VALUES = {
    "text": '"example"',
    "longtext": '"Longer example text"',
    "number": "1",
    "boolean": "true",
    "date": '"2024-01-31"',
    "datetime": '"2024-01-31T12:00:00Z"',
    "email": '"user@example.com"',
    "url": '"https://example.com"',
    "array": "[]",
    "reference": '"<id>"',
}


def render_env(spec: AppSpec, port: int = 8000) -> str:
    return f"PORT={port}\nAPP_NAME={spec.name}\nDATA_FILE=data.json\n"


def render_requirements() -> str:
    return REQUIREMENTS_TXT


def _example_body(entity: EntitySpec) -> str:
    lines = []
    for f in entity.fields:
        if f.type == "enum":
            value = f'"{f.constraints.values[0]}"'
        else:
            value = _EXAMPLE_VALUES[f.type]
        lines.append(f'  "{f.name}": {value}')
    return "{\n" + ",\n".join(lines) + "\n}"


def _field_rows(entity: EntitySpec) -> str:
    rows = ["| Field | Type | Required | Notes |", "|---|---|---|---|"]
    for f in entity.fields:
        notes = []
        c = f.constraints
        if f.type == "enum":
            notes.append("one of " + ", ".join(f"`{v}`" for v in c.values))
        if f.type == "reference":
            notes.append(f"id of a {f.reference}")
        if c.unique:
            notes.append("unique")
        if c.min is not None:
            notes.append(f"min {c.min}")
        if c.max is not None:
            notes.append(f"max {c.max}")
        if c.min_length is not None:
            notes.append(f"min length {c.min_length}")
        if c.max_length is not None:
            notes.append(f"max length {c.max_length}")
        if c.pattern is not None:
            notes.append(f"pattern `{c.pattern}`")
        if f.has_default:
            notes.append(f"default `{f.default}`")
        if f.description:
            notes.append(f.description)
        rows.append(f"| `{f.name}` | {f.type} | {'yes' if f.required else 'no'} | {'; '.join(notes)} |")
    return "\n".join(rows)


def _entity_section(entity: EntitySpec) -> str:
    r = entity.resource
    n = entity.name
    required = ", ".join(f"`{name}`" for name in entity.required_fields) or "none"
    return f"""\
## {n}

{_field_rows(entity)}

Every record also carries `id`, `createdAt` and `updatedAt`.

| Method | Path | Description | Success |
|---|---|---|---|
| GET | `/{r}` | List all {r} | 200 `{{"data": [...], "count": n, "success": true}}` |
| GET | `/{r}/{{id}}` | Get one {n} | 200 `{{"data": {{...}}, "success": true}}` |
| POST | `/{r}` | Create a {n} | 201 `{{"data": {{...}}, "success": true, "message": "{n} created successfully"}}` |
| PUT | `/{r}/{{id}}` | Update a {n} (partial) | 200 `{{"data": {{...}}, "success": true, "message": "{n} updated successfully"}}` |
| DELETE | `/{r}/{{id}}` | Delete a {n} | 200 `{{"success": true, "message": "{n} deleted successfully"}}` |

Required on create: {required}.

Example request body:

```json
{_example_body(entity)}
```
"""


def render_readme(spec: AppSpec, generated_at=None) -> str:
    sections = "\n".join(_entity_section(e) for e in spec.entities)
    stamp = f"\nGenerated at: {generated_at.isoformat()}\n" if generated_at is not None else ""
    description = f"\n{spec.description}\n" if spec.description else ""
    return f"""\
# {spec.name}
{description}
Version {spec.version}.
{stamp}
## Running

```bash
pip install -r requirements.txt
uvicorn main:app --host 0.0.0.0 --port 8000
```

Data is stored in the JSON file named by `DATA_FILE` (default `data.json`).

## Common endpoints

| Method | Path | Description |
|---|---|---|
| GET | `/health` | Health check |
| GET | `/api` | Application info and resource index |

## Errors

- 400 `{{"error": "Missing required fields", "missingFields": [...], "success": false}}`
- 400 `{{"error": "Invalid field values", "invalidFields": {{...}}, "success": false}}`
- 404 `{{"error": "<Entity> not found", "success": false}}`
- 409 `{{"error": "Duplicate values for unique fields", "conflictingFields": [...], "success": false}}`

{sections}"""
