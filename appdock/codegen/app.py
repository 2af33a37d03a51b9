"""Render the generated application's Python sources (main.py, storage.py)."""

import datetime
import pprint

from appdock.spec.types import AppSpec, EntitySpec

STORAGE_PY = '''\
"""JSON file storage with auto-managed id and timestamps."""

import copy
import json
import os
import threading
import uuid
from datetime import datetime, timezone


def _now():
    return datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")


class JsonStore:
    """Collections of records keyed by id, persisted to a single JSON file."""

    def __init__(self, path, collections=()):
        self.path = path
        self._lock = threading.Lock()
        self._data = {name: {} for name in collections}
        if os.path.exists(path):
            with open(path) as f:
                loaded = json.load(f)
            for name, records in loaded.items():
                self._data[name] = records

    def _save(self):
        tmp = f"{self.path}.tmp"
        with open(tmp, "w") as f:
            json.dump(self._data, f, indent=2)
        os.replace(tmp, self.path)

    def list(self, collection):
        with self._lock:
            return [copy.deepcopy(r) for r in self._data.get(collection, {}).values()]

    def get(self, collection, record_id):
        with self._lock:
            record = self._data.get(collection, {}).get(record_id)
            return copy.deepcopy(record) if record is not None else None

    def find(self, collection, field, value):
        with self._lock:
            return [copy.deepcopy(r) for r in self._data.get(collection, {}).values() if r.get(field) == value]

    def create(self, collection, values):
        now = _now()
        record = {"id": str(uuid.uuid4()), **values, "createdAt": now, "updatedAt": now}
        with self._lock:
            self._data.setdefault(collection, {})[record["id"]] = record
            self._save()
            return copy.deepcopy(record)

    def update(self, collection, record_id, values):
        with self._lock:
            record = self._data.get(collection, {}).get(record_id)
            if record is None:
                return None
            record.update({k: v for k, v in values.items() if k not in ("id", "createdAt", "updatedAt")})
            record["updatedAt"] = _now()
            self._save()
            return copy.deepcopy(record)

    def delete(self, collection, record_id):
        with self._lock:
            removed = self._data.get(collection, {}).pop(record_id, None)
            if removed is not None:
                self._save()
            return removed is not None
'''

MAIN_HELPERS = '''\
EMAIL_RE = re.compile(r"^[^@\\s]+@[^@\\s]+\\.[^@\\s]+$")
STRING_TYPES = ("text", "longtext", "email", "url", "enum", "reference", "date", "datetime")

store = JsonStore(os.environ.get("DATA_FILE", "data.json"), collections=[e["resource"] for e in ENTITIES.values()])

app = FastAPI(title=APP_NAME, version=APP_VERSION, description=APP_DESCRIPTION)


def _error(status_code, message, **extra):
    return JSONResponse(status_code=status_code, content={"error": message, **extra, "success": False})


def _missing(value):
    return value is None or (isinstance(value, str) and value == "")


def _check_value(spec, value):
    """Return a problem description for *value*, or None if it is valid."""
    ftype = spec["type"]
    if ftype in STRING_TYPES and not isinstance(value, str):
        return "must be a string"
    if ftype == "number":
        if isinstance(value, bool) or not isinstance(value, (int, float)):
            return "must be a number"
        if "min" in spec and value < spec["min"]:
            return f"must be at least {spec['min']}"
        if "max" in spec and value > spec["max"]:
            return f"must be at most {spec['max']}"
    elif ftype == "boolean" and not isinstance(value, bool):
        return "must be a boolean"
    elif ftype == "array" and not isinstance(value, list):
        return "must be an array"
    elif ftype == "email" and not EMAIL_RE.match(value):
        return "must be a valid email address"
    elif ftype == "url":
        parts = urlsplit(value)
        if parts.scheme not in ("http", "https") or not parts.netloc:
            return "must be a valid http(s) URL"
    elif ftype == "enum" and value not in spec["values"]:
        return f"must be one of: {', '.join(spec['values'])}"
    elif ftype == "date":
        try:
            date.fromisoformat(value)
        except ValueError:
            return "must be an ISO date (YYYY-MM-DD)"
    elif ftype == "datetime":
        try:
            datetime.fromisoformat(value.replace("Z", "+00:00"))
        except ValueError:
            return "must be an ISO datetime"
    elif ftype == "reference" and store.get(spec["referenceResource"], value) is None:
        return f"references unknown {spec['reference']}"

    if isinstance(value, str):
        if "minLength" in spec and len(value) < spec["minLength"]:
            return f"must be at least {spec['minLength']} characters"
        if "maxLength" in spec and len(value) > spec["maxLength"]:
            return f"must be at most {spec['maxLength']} characters"
        if "pattern" in spec and not re.search(spec["pattern"], value):
            return f"must match pattern {spec['pattern']}"
    return None


def _validate(entity, body, record_id=None, partial=False):
    """Validate a request body. Returns (values, error_response)."""
    fields = ENTITIES[entity]["fields"]
    if partial:
        missing = [n for n, s in fields.items() if s["required"] and n in body and _missing(body[n])]
    else:
        missing = [n for n, s in fields.items() if s["required"] and _missing(body.get(n))]
    if missing:
        return None, _error(400, "Missing required fields", missingFields=missing)

    values = {}
    for name, spec in fields.items():
        if name in body and body[name] is not None:
            values[name] = body[name]
        elif name in body or not partial:
            values[name] = copy.deepcopy(spec["default"])

    invalid = {}
    for name, value in values.items():
        if value is None or (name not in body):
            continue
        problem = _check_value(fields[name], value)
        if problem:
            invalid[name] = problem
    if invalid:
        return None, _error(400, "Invalid field values", invalidFields=invalid)

    resource = ENTITIES[entity]["resource"]
    conflicts = [
        name
        for name, spec in fields.items()
        if spec.get("unique") and values.get(name) is not None
        and any(r["id"] != record_id for r in store.find(resource, name, values[name]))
    ]
    if conflicts:
        return None, _error(409, "Duplicate values for unique fields", conflictingFields=conflicts)
    return values, None


async def _read_body(request):
    try:
        body = await request.json()
    except ValueError:
        return None
    return body if isinstance(body, dict) else None


def _list_records(entity):
    try:
        records = store.list(ENTITIES[entity]["resource"])
        return JSONResponse(content={"data": records, "count": len(records), "success": True})
    except Exception:
        logger.exception(f"Failed to list {entity}")
        return _error(500, "Internal server error")


def _get_record(entity, record_id):
    try:
        record = store.get(ENTITIES[entity]["resource"], record_id)
        if record is None:
            return _error(404, f"{entity} not found")
        return JSONResponse(content={"data": record, "success": True})
    except Exception:
        logger.exception(f"Failed to get {entity} {record_id}")
        return _error(500, "Internal server error")


async def _create_record(entity, request):
    try:
        body = await _read_body(request)
        if body is None:
            return _error(400, "Request body must be a JSON object")
        values, error = _validate(entity, body)
        if error is not None:
            return error
        record = store.create(ENTITIES[entity]["resource"], values)
        return JSONResponse(
            status_code=201,
            content={"data": record, "success": True, "message": f"{entity} created successfully"},
        )
    except Exception:
        logger.exception(f"Failed to create {entity}")
        return _error(500, "Internal server error")


async def _update_record(entity, record_id, request):
    try:
        resource = ENTITIES[entity]["resource"]
        if store.get(resource, record_id) is None:
            return _error(404, f"{entity} not found")
        body = await _read_body(request)
        if body is None:
            return _error(400, "Request body must be a JSON object")
        values, error = _validate(entity, body, record_id=record_id, partial=True)
        if error is not None:
            return error
        record = store.update(resource, record_id, values)
        if record is None:
            return _error(404, f"{entity} not found")
        return JSONResponse(content={"data": record, "success": True, "message": f"{entity} updated successfully"})
    except Exception:
        logger.exception(f"Failed to update {entity} {record_id}")
        return _error(500, "Internal server error")


def _delete_record(entity, record_id):
    try:
        if not store.delete(ENTITIES[entity]["resource"], record_id):
            return _error(404, f"{entity} not found")
        return JSONResponse(content={"success": True, "message": f"{entity} deleted successfully"})
    except Exception:
        logger.exception(f"Failed to delete {entity} {record_id}")
        return _error(500, "Internal server error")


@app.get("/health")
async def health():
    return {"status": "ok", "app": APP_NAME, "version": APP_VERSION}


@app.get("/api")
async def api_index():
    return {
        "name": APP_NAME,
        "version": APP_VERSION,
        "endpoints": {name: f"/{e['resource']}" for name, e in ENTITIES.items()},
        "success": True,
    }
'''


def _literal(value):
    """Make YAML-loaded values safe to embed as Python literals."""
    if isinstance(value, (datetime.date, datetime.datetime)):
        return value.isoformat()
    if isinstance(value, list):
        return [_literal(v) for v in value]
    if isinstance(value, dict):
        return {str(k): _literal(v) for k, v in value.items()}
    return value


def entity_schema(entity: EntitySpec, spec: AppSpec) -> dict:
    fields = {}
    for f in entity.fields:
        field_schema = {"type": f.type, "required": f.required, "default": _literal(f.default_value)}
        field_schema.update(f.constraints.to_dict())
        if f.type == "reference":
            field_schema["reference"] = f.reference
            field_schema["referenceResource"] = spec.entity(f.reference).resource
        fields[f.name] = field_schema
    return {"resource": entity.resource, "fields": fields}


def _routes(entity: EntitySpec) -> str:
    name = entity.name
    singular = name.lower()
    resource = entity.resource
    return f'''

# ── {name} ──


@app.get("/{resource}")
async def list_{resource}():
    return _list_records("{name}")


@app.get("/{resource}/{{record_id}}")
async def get_{singular}(record_id: str):
    return _get_record("{name}", record_id)


@app.post("/{resource}", status_code=201)
async def create_{singular}(request: Request):
    return await _create_record("{name}", request)


@app.put("/{resource}/{{record_id}}")
async def update_{singular}(record_id: str, request: Request):
    return await _update_record("{name}", record_id, request)


@app.delete("/{resource}/{{record_id}}")
async def delete_{singular}(record_id: str):
    return _delete_record("{name}", record_id)
'''


def render_main(spec: AppSpec) -> str:
    schemas = {e.name: entity_schema(e, spec) for e in spec.entities}
    entities_literal = pprint.pformat(schemas, width=100, sort_dicts=False)
    docstring = repr(f"{spec.name} REST API.")
    header = f'''\
{docstring}

import copy
import logging
import os
import re
from datetime import date, datetime
from urllib.parse import urlsplit

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from storage import JsonStore

logger = logging.getLogger(__name__)

APP_NAME = {spec.name!r}
APP_VERSION = {spec.version!r}
APP_DESCRIPTION = {spec.description!r}

ENTITIES = {entities_literal}

'''
    routes = "".join(_routes(e) for e in spec.entities)
    footer = '''

if __name__ == "__main__":
    import uvicorn

    uvicorn.run(app, host="0.0.0.0", port=int(os.environ.get("PORT", "8000")))
'''
    return header + MAIN_HELPERS + routes + footer


def render_storage() -> str:
    return STORAGE_PY
