"""Project classification and structure analysis for uploaded websites."""
import json
import posixpath
from typing import Any, Dict, List, Optional, Sequence

from app.constants import DEPENDENCY_MANIFEST, FORBIDDEN_PACKAGE_SCRIPTS, ProjectType
from app.utils.exceptions import ValidationError
from app.utils.logger import logger

# Extension -> declared content type
CONTENT_TYPES: Dict[str, str] = {
    ".html": "text/html",
    ".htm": "text/html",
    ".css": "text/css",
    ".js": "application/javascript",
    ".mjs": "application/javascript",
    ".jsx": "text/jsx",
    ".ts": "application/typescript",
    ".tsx": "text/tsx",
    ".json": "application/json",
    ".svg": "image/svg+xml",
    ".md": "text/markdown",
    ".txt": "text/plain",
}

VITE_CONFIG_NAMES = ("vite.config.js", "vite.config.ts", "vite.config.mjs", "vite.config.mts")
TSCONFIG_NAME = "tsconfig.json"


def normalize_file_name(raw_name: str) -> str:
    """
    Normalize an uploaded file name into a safe relative path.

    Raises:
        ValidationError: If the name is empty or escapes the project root
    """
    cleaned = (raw_name or "").replace("\\", "/").strip().lstrip("/")
    parts: List[str] = []
    for part in cleaned.split("/"):
        if not part or part == ".":
            continue
        if part == "..":
            raise ValidationError(f"Path traversal is not allowed: {raw_name}")
        parts.append(part)
    if not parts:
        raise ValidationError("File name is required")
    if parts[0] == "node_modules":
        raise ValidationError(f"Path is not editable: {raw_name}")
    return "/".join(parts)


def detect_content_type(file_name: str) -> str:
    """Map a file name to its declared content type."""
    _, ext = posixpath.splitext(file_name.lower())
    return CONTENT_TYPES.get(ext, "text/plain")


def parse_package_manifest(content: str) -> Dict[str, Any]:
    """Parse package.json content, raising ValidationError on malformed JSON."""
    try:
        manifest = json.loads(content)
    except json.JSONDecodeError as e:
        raise ValidationError(f"package.json is not valid JSON: {e}")
    if not isinstance(manifest, dict):
        raise ValidationError("package.json must contain a JSON object")
    return manifest


def validate_package_manifest(content: str) -> Dict[str, Any]:
    """
    Check an uploaded package.json before dependencies are installed.

    Raises:
        ValidationError: If the manifest is malformed or declares install lifecycle scripts
    """
    manifest = parse_package_manifest(content)
    scripts = manifest.get("scripts") or {}
    forbidden = [name for name in FORBIDDEN_PACKAGE_SCRIPTS if name in scripts]
    if forbidden:
        raise ValidationError(
            f"package.json contains disallowed lifecycle scripts: {', '.join(forbidden)}"
        )
    return manifest


def _dependencies(manifest: Dict[str, Any]) -> Dict[str, Any]:
    merged: Dict[str, Any] = {}
    for key in ("dependencies", "devDependencies"):
        section = manifest.get(key)
        if isinstance(section, dict):
            merged.update(section)
    return merged


def classify_project(files: Dict[str, str]) -> str:
    """
    Decide the project archetype from a name -> content mapping.

    No package.json means a static site. A vite config or vite dependency
    means vite, upgraded to react-vite when react is also a dependency.
    """
    names = {name.lower() for name in files}
    manifest_content = files.get(DEPENDENCY_MANIFEST)
    if manifest_content is None:
        return ProjectType.STATIC

    try:
        deps = _dependencies(parse_package_manifest(manifest_content))
    except ValidationError as e:
        logger.warning(f"Could not classify project from package.json: {e}")
        deps = {}

    has_vite = (
        any(name in names for name in VITE_CONFIG_NAMES)
        or "vite" in deps
        or "@vitejs/plugin-react" in deps
    )
    has_react = "react" in deps

    if has_vite and has_react:
        return ProjectType.REACT_VITE
    if has_vite:
        return ProjectType.VITE
    if has_react:
        return ProjectType.REACT
    return ProjectType.STATIC


def has_typescript(files: Dict[str, str]) -> bool:
    """A tsconfig.json at the root and typescript declared as a dependency."""
    if TSCONFIG_NAME not in files or DEPENDENCY_MANIFEST not in files:
        return False
    try:
        return "typescript" in _dependencies(parse_package_manifest(files[DEPENDENCY_MANIFEST]))
    except ValidationError:
        return False


def find_index_file(file_names: Sequence[str]) -> Optional[str]:
    """Pick the entry HTML file: index.html, then main.html, then the first .html."""
    lowered = {name.lower(): name for name in file_names}
    for candidate in ("index.html", "index.htm", "main.html"):
        if candidate in lowered:
            return lowered[candidate]
    for name in file_names:
        if name.lower().endswith((".html", ".htm")):
            return name
    return None


def analyze_structure(files: Dict[str, str]) -> Dict[str, Any]:
    """Summarize an uploaded project for display and diagnostics."""
    structure: Dict[str, Any] = {
        "total_files": len(files),
        "file_types": {},
        "entry_points": [],
        "has_package_json": DEPENDENCY_MANIFEST in files,
        "has_config": False,
    }

    for name, content in files.items():
        content_type = detect_content_type(name)
        structure["file_types"][content_type] = structure["file_types"].get(content_type, 0) + 1
        base = posixpath.basename(name).lower()
        if base in ("index.html", "index.htm"):
            structure["entry_points"].append(name)
        if "config" in base:
            structure["has_config"] = True
        if name == DEPENDENCY_MANIFEST:
            try:
                manifest = parse_package_manifest(content)
            except ValidationError:
                continue
            structure["package_info"] = {
                "name": manifest.get("name"),
                "version": manifest.get("version"),
                "scripts": manifest.get("scripts") or {},
            }

    return structure
