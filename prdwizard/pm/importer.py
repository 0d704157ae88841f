"""
Import PRD document stories into the markdown issue queue.

Each story becomes one issue file with a header block, objective,
acceptance criteria and a PRD Context section. Stories already present
in the queue (matched by story_id) are skipped, so a document can be
imported repeatedly.
"""

import json
import logging
from dataclasses import dataclass, field
from pathlib import Path

from prdwizard.lib.config import PRDPaths
from prdwizard.lib.constants import DEFAULT_PRIORITY
from prdwizard.lib.text import compact_single_line
from prdwizard.pm.errors import PRDError, SerializationError
from prdwizard.pm.models import is_supported_role, utc_now, utc_timestamp

logger = logging.getLogger(__name__)

ISSUE_ID_TIME_FORMAT = "%Y%m%dT%H%M%SZ"
FALLBACK_ROLE = "developer"

DEFAULT_CRITERIA = [
    "- [ ] Required changes are implemented.",
    "- [ ] Validation command passes if this role requires validation.",
]

GLOBAL_CONTEXT_FIELDS = ("problem", "goal", "in_scope", "out_of_scope", "acceptance", "constraints")


@dataclass
class ImportResult:
    source_path: str = ""
    total: int = 0
    imported: int = 0
    skipped_existing: int = 0
    skipped_invalid: int = 0
    skipped_passed: int = 0
    dry_run: bool = False
    created_paths: list[str] = field(default_factory=list)


# --- Issue files ---

def read_issue_headers(path: Path) -> dict[str, str]:
    """Header block of an issue file: "key: value" lines up to the first blank line."""
    headers: dict[str, str] = {}
    with open(path, encoding="utf-8", errors="replace") as f:
        for line in f:
            if not line.strip():
                break
            key, sep, value = line.partition(":")
            key = key.strip()
            if not sep or not key:
                continue
            headers[key] = value.strip()
    return headers


def index_story_ids(paths: PRDPaths) -> dict[str, str]:
    """story_id -> issue path across all queue dirs. Unreadable files are skipped."""
    out: dict[str, str] = {}
    for queue_dir in paths.queue_scan_dirs:
        for issue in sorted(queue_dir.glob("I-*.md")):
            try:
                story_id = read_issue_headers(issue).get("story_id", "").strip()
            except OSError as e:
                logger.debug(f"[PRD] Skipping unreadable issue {issue}: {e}")
                continue
            if story_id and story_id not in out:
                out[story_id] = str(issue)
    return out


def normalize_criteria(items: list[str]) -> list[str]:
    """Render criteria as markdown checkboxes."""
    out = []
    for raw in items:
        item = str(raw).strip()
        if not item:
            continue
        if item.startswith(("- [ ]", "- [x]", "- [X]")):
            out.append(item)
        elif item.startswith("- "):
            out.append("- [ ] " + item[2:].strip())
        else:
            out.append("- [ ] " + item)
    return out


def _first_string(item: dict) -> str:
    for key in ("text", "title", "description", "name"):
        value = item.get(key)
        if isinstance(value, str):
            return value
    return ""


def parse_acceptance_criteria(raw) -> list[str]:
    """acceptanceCriteria given as a string, a list of strings, or a list of objects."""
    if raw is None:
        return []
    if isinstance(raw, str):
        return [raw] if raw.strip() else []
    if not isinstance(raw, list):
        return []
    out = []
    for item in raw:
        if isinstance(item, dict):
            item = _first_string(item)
        if isinstance(item, str) and item.strip():
            out.append(item)
    return out


def build_global_context(metadata: dict) -> str:
    """One-line "key=value; ..." summary of the document's product context."""
    context = metadata.get("context") or {}
    parts = []
    product = str(metadata.get("product") or "").strip()
    if product:
        parts.append(f"product={compact_single_line(product)}")
    for name in GLOBAL_CONTEXT_FIELDS:
        value = str(context.get(name) or "").strip()
        if value:
            parts.append(f"{name}={compact_single_line(value)}")
    return "; ".join(parts)


def render_issue(issue_id: str, role: str, title: str, priority: int, story_id: str,
                 source_name: str, objective: str, criteria: list[str],
                 description: str, global_context: str) -> str:
    now = utc_timestamp()
    headers = [
        f"id: {issue_id}",
        f"role: {role}",
        "status: ready",
        f"title: {title}",
        f"created_at_utc: {now}",
        f"priority: {priority}",
        f"story_id: {story_id}",
        f"story_source: {source_name}",
    ]
    body = ["## Objective", f"- {objective}", "", "## Acceptance Criteria"]
    body.extend(normalize_criteria(criteria) or DEFAULT_CRITERIA)

    prd_context = [
        "",
        "## PRD Context",
        f"- story_id: {story_id}",
        f"- source: {source_name}",
        f"- priority: {priority}",
        f"- imported_at_utc: {now}",
    ]
    desc = compact_single_line(description)
    if desc:
        prd_context.append(f"- story_description: {desc}")
    if global_context:
        prd_context.append(f"- global_context: {global_context}")

    return "\n".join(headers) + "\n\n" + "\n".join(body) + "\n" + "\n".join(prd_context) + "\n"


def _new_issue_path(paths: PRDPaths) -> tuple[str, Path]:
    """Fresh I-<timestamp>-NNNN id that does not collide with an existing file."""
    while True:
        now = utc_now()
        issue_id = f"I-{now.strftime(ISSUE_ID_TIME_FORMAT)}-{now.microsecond % 10000:04d}"
        path = paths.issues_dir / f"{issue_id}.md"
        if not path.exists():
            return issue_id, path


# --- Import ---

def load_document(path: Path) -> dict:
    """Read and decode a PRD document.

    Raises:
        SerializationError: Unreadable or malformed JSON
        PRDError: Document without userStories
    """
    try:
        data = json.loads(Path(path).read_text(encoding="utf-8"))
    except OSError as e:
        raise SerializationError(f"read prd file: {e}") from e
    except json.JSONDecodeError as e:
        raise SerializationError(f"parse prd json: {e}") from e
    if not isinstance(data, dict) or not data.get("userStories"):
        raise PRDError("prd json has no userStories")
    return data


def import_prd_stories(paths: PRDPaths, path, default_role: str = FALLBACK_ROLE,
                       dry_run: bool = False) -> ImportResult:
    """Create one ready issue per importable story in the document at path.

    Returns:
        ImportResult with per-outcome counts and the created issue paths
    """
    source = Path(path)
    if not source.is_absolute():
        source = paths.project_dir / source
    source = source.resolve()
    result = ImportResult(source_path=str(source), dry_run=dry_run)

    doc = load_document(source)
    role_fallback = (default_role or "").strip().lower()
    if not is_supported_role(role_fallback):
        role_fallback = FALLBACK_ROLE

    if not dry_run:
        paths.issues_dir.mkdir(parents=True, exist_ok=True)
    existing = index_story_ids(paths)
    source_name = source.name
    global_context = build_global_context(doc.get("metadata") or {})

    for story in doc["userStories"]:
        result.total += 1
        if not isinstance(story, dict):
            result.skipped_invalid += 1
            continue
        if story.get("passes") or story.get("passed"):
            result.skipped_passed += 1
            continue

        story_id = str(story.get("id") or "").strip()
        title = str(story.get("title") or "").strip()
        if not story_id or not title:
            result.skipped_invalid += 1
            continue
        if story_id in existing:
            result.skipped_existing += 1
            continue

        role = str(story.get("role") or "").strip().lower()
        if not is_supported_role(role):
            role = role_fallback
        priority = story.get("priority")
        if not isinstance(priority, int) or priority <= 0:
            priority = DEFAULT_PRIORITY
        description = str(story.get("description") or "")

        result.imported += 1
        if dry_run:
            existing[story_id] = "(dry-run)"
            continue

        issue_id, issue_path = _new_issue_path(paths)
        content = render_issue(
            issue_id, role, title, priority, story_id, source_name,
            objective=description.strip() or title,
            criteria=parse_acceptance_criteria(story.get("acceptanceCriteria")),
            description=description,
            global_context=global_context,
        )
        try:
            issue_path.write_text(content, encoding="utf-8")
        except OSError as e:
            raise SerializationError(f"write issue file {issue_path}: {e}") from e
        existing[story_id] = str(issue_path)
        result.created_paths.append(str(issue_path))
        logger.info(f"[PRD] Imported story {story_id} as {issue_id} ({role}, {priority})")

    return result
