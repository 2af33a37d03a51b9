"""Project classification: declarative spec vs. runtime project, framework, complexity."""

import json
import logging
import tomllib
from dataclasses import dataclass, field

logger = logging.getLogger(__name__)

SPEC_FILENAMES = ("manifest.yaml", "manifest.yml", "appspec.yaml", "appspec.yml")

# Checked in order; first dependency hit wins
_NODE_FRAMEWORKS = ("next", "react", "vue", "express", "fastify", "koa")
_PYTHON_FRAMEWORKS = ("fastapi", "flask", "django")

ENTERPRISE_FILES = 50
COMPLEX_FILES = 20
ENTERPRISE_DEPS = 10


@dataclass
class ProjectClassification:
    kind: str  # "spec" | "runtime"
    framework: str
    complexity: str = "simple"
    evidence: list[str] = field(default_factory=list)
    spec_path: str | None = None
    dependency_count: int = 0

    @property
    def is_spec(self) -> bool:
        return self.kind == "spec"


def _as_mapping(files) -> dict:
    if isinstance(files, dict):
        return files
    return {e.path: e.content for e in files}


def _requirement_names(text: str) -> list[str]:
    names = []
    for line in text.splitlines():
        line = line.split("#", 1)[0].strip()
        if not line or line.startswith("-"):
            continue
        name = line
        for sep in ("[", "=", "<", ">", "~", "!", ";", " "):
            name = name.split(sep, 1)[0]
        if name:
            names.append(name.lower())
    return names


def _pyproject_names(text: str, evidence: list[str]) -> list[str]:
    try:
        data = tomllib.loads(text)
    except tomllib.TOMLDecodeError as e:
        evidence.append(f"pyproject.toml is not valid TOML ({e})")
        return []
    project = data.get("project")
    deps = project.get("dependencies", []) if isinstance(project, dict) else []
    if not isinstance(deps, list):
        return []
    return _requirement_names("\n".join(str(d) for d in deps))


def _package_json_names(text: str, evidence: list[str]) -> list[str]:
    try:
        data = json.loads(text)
    except ValueError as e:
        evidence.append(f"package.json is not valid JSON ({e})")
        return []
    if not isinstance(data, dict):
        evidence.append("package.json is not an object")
        return []
    names = []
    for key in ("dependencies", "devDependencies"):
        section = data.get(key)
        if isinstance(section, dict):
            names.extend(str(n).lower() for n in section)
    return names


def _complexity(file_count: int, dep_count: int, has_framework: bool) -> str:
    if file_count > ENTERPRISE_FILES or dep_count > ENTERPRISE_DEPS:
        return "enterprise"
    if file_count > COMPLEX_FILES or has_framework:
        return "complex"
    return "simple"


def classify(files) -> ProjectClassification:
    """Classify a file set. Pure and total: never raises on malformed content.

    A spec file at the root wins over any runtime manifest.
    """
    mapping = _as_mapping(files)
    evidence = []

    spec_path = next((name for name in SPEC_FILENAMES if name in mapping), None)
    if spec_path is not None:
        evidence.append(f"found spec file {spec_path}")
        others = [m for m in ("package.json", "requirements.txt", "pyproject.toml") if m in mapping]
        if others:
            evidence.append(f"spec file takes precedence over {', '.join(others)}")
        return ProjectClassification(
            kind="spec",
            framework="fastapi",
            complexity=_complexity(len(mapping), 0, True),
            evidence=evidence,
            spec_path=spec_path,
        )

    framework = None
    deps = []
    if "package.json" in mapping:
        evidence.append("found package.json")
        deps = _package_json_names(mapping["package.json"], evidence)
        framework = next((fw for fw in _NODE_FRAMEWORKS if fw in deps), "node")
    elif "requirements.txt" in mapping or "pyproject.toml" in mapping:
        if "requirements.txt" in mapping:
            evidence.append("found requirements.txt")
            deps = _requirement_names(mapping["requirements.txt"])
        if "pyproject.toml" in mapping:
            evidence.append("found pyproject.toml")
            deps += _pyproject_names(mapping["pyproject.toml"], evidence)
        framework = next((fw for fw in _PYTHON_FRAMEWORKS if fw in deps), "python")

    if framework is None:
        evidence.append("no spec file or runtime manifest")
        framework = "unstructured"
    else:
        evidence.append(f"framework: {framework}")

    has_framework = framework not in ("node", "python", "unstructured")
    return ProjectClassification(
        kind="runtime",
        framework=framework,
        complexity=_complexity(len(mapping), len(deps), has_framework),
        evidence=evidence,
        dependency_count=len(deps),
    )


def _package_json_has_start(text: str) -> bool:
    try:
        data = json.loads(text)
    except ValueError:
        return False
    return isinstance(data, dict) and isinstance(data.get("scripts"), dict) and "start" in data["scripts"]


def start_command(classification: ProjectClassification, files, port: int) -> str:
    """Build-and-run command for the classified project, listening on *port*."""
    mapping = _as_mapping(files)
    fw = classification.framework

    if classification.is_spec or fw == "fastapi":
        install = "pip install -r requirements.txt && " if "requirements.txt" in mapping else ""
        module = "main" if "main.py" in mapping else "app"
        return f"{install}uvicorn {module}:app --host 0.0.0.0 --port {port}"
    if fw == "flask":
        module = "app" if "app.py" in mapping else "main"
        return f"pip install -r requirements.txt && flask --app {module} run --host 0.0.0.0 --port {port}"
    if fw == "django":
        return f"pip install -r requirements.txt && python manage.py runserver 0.0.0.0:{port}"
    if fw == "python":
        install = "pip install -r requirements.txt && " if "requirements.txt" in mapping else ""
        entry = next((e for e in ("main.py", "app.py") if e in mapping), None)
        if entry:
            return f"{install}PORT={port} python {entry}"
        return f"python -m http.server {port}"
    if fw == "next":
        return f"npm install && npm run build && npx next start -p {port}"
    if fw in _NODE_FRAMEWORKS or fw == "node":
        if _package_json_has_start(mapping.get("package.json", "")):
            return f"npm install && PORT={port} npm start"
        entry = next((e for e in ("index.js", "server.js", "app.js") if e in mapping), "index.js")
        return f"npm install && PORT={port} node {entry}"
    return f"python3 -m http.server {port}"
