"""
Diff Engine: field-level comparison of two decision snapshots.

``diff_snapshots`` is a pure function.  Collections are matched by stable
entity id, never by list position, so reordering objects only shows up as
``order_index`` changes.

Change record::

    {"field": "title", "path": "title",
     "oldValue": "Kitchen Finishes", "newValue": "Kitchen Finishes v2",
     "type": "modified"}

Buckets:
    fields          top-level scalars (title, description, category, owner_id,
                    due_date, tags)
    metadata_diffs  decision metadata keys and object metadata keys
    options_diffs   decision objects and their options
    media_diffs     option media_url changes
    comments_diffs  snapshot comments, when a snapshot carries them
"""

import copy

from decision_trail.core.exceptions import InvalidArgumentError
from decision_trail.models.decision import SNAPSHOT_SCALAR_FIELDS
from decision_trail.services import snapshot_store

_MISSING = object()

OBJECT_FIELDS = ("title", "description", "order_index", "status")
OPTION_FIELDS = ("label", "cost", "dependencies", "order_index", "is_recommended")
COMMENT_FIELDS = ("author_id", "author_name", "body", "resolved")


def _change(field, path, old, new):
    if old is _MISSING:
        kind, old = "added", None
    elif new is _MISSING:
        kind, new = "removed", None
    else:
        kind = "modified"
    return {
        "field": field,
        "path": path,
        "oldValue": copy.deepcopy(old),
        "newValue": copy.deepcopy(new),
        "type": kind,
    }


def _compare(field, path, old, new, out):
    if old != new:
        out.append(_change(field, path, old, new))


def _diff_map(prefix, old_map, new_map, out):
    old_map = old_map or {}
    new_map = new_map or {}
    for key in sorted(set(old_map) | set(new_map), key=str):
        _compare(key, f"{prefix}.{key}", old_map.get(key, _MISSING), new_map.get(key, _MISSING), out)


def _ordered_ids(from_items, to_items):
    """Ids in ``to`` order_index order, then removed ids in ``from`` order."""
    def _sorted(items):
        return sorted(items, key=lambda i: (i.get("order_index", 0), str(i.get("id"))))

    to_ids = [i["id"] for i in _sorted(to_items)]
    seen = set(to_ids)
    removed = [i["id"] for i in _sorted(from_items) if i["id"] not in seen]
    return to_ids + removed


def _diff_options(obj_path, from_opts, to_opts, result):
    old_by_id = {o["id"]: o for o in from_opts or []}
    new_by_id = {o["id"]: o for o in to_opts or []}
    for opt_id in _ordered_ids(from_opts or [], to_opts or []):
        path = f"{obj_path}.options[{opt_id}]"
        old, new = old_by_id.get(opt_id, _MISSING), new_by_id.get(opt_id, _MISSING)
        if old is _MISSING or new is _MISSING:
            result["options_diffs"].append(_change("option", path, old, new))
            continue
        for field in OPTION_FIELDS:
            _compare(field, f"{path}.{field}", old.get(field), new.get(field), result["options_diffs"])
        _compare("media_url", f"{path}.media_url", old.get("media_url"), new.get("media_url"),
                 result["media_diffs"])


def _diff_objects(from_objs, to_objs, result):
    old_by_id = {o["id"]: o for o in from_objs or []}
    new_by_id = {o["id"]: o for o in to_objs or []}
    for obj_id in _ordered_ids(from_objs or [], to_objs or []):
        path = f"decision_objects[{obj_id}]"
        old, new = old_by_id.get(obj_id, _MISSING), new_by_id.get(obj_id, _MISSING)
        if old is _MISSING or new is _MISSING:
            result["options_diffs"].append(_change("decision_object", path, old, new))
            continue
        for field in OBJECT_FIELDS:
            _compare(field, f"{path}.{field}", old.get(field), new.get(field), result["options_diffs"])
        _diff_map(f"{path}.metadata", old.get("metadata"), new.get("metadata"), result["metadata_diffs"])
        _diff_options(path, old.get("options"), new.get("options"), result)


def _diff_comments(from_comments, to_comments, out):
    old_by_id = {c["id"]: c for c in from_comments or []}
    new_by_id = {c["id"]: c for c in to_comments or []}
    order = [c["id"] for c in to_comments or []]
    order += [c["id"] for c in from_comments or [] if c["id"] not in new_by_id]
    for comment_id in order:
        path = f"comments[{comment_id}]"
        old, new = old_by_id.get(comment_id, _MISSING), new_by_id.get(comment_id, _MISSING)
        if old is _MISSING or new is _MISSING:
            out.append(_change("comment", path, old, new))
            continue
        for field in COMMENT_FIELDS:
            _compare(field, f"{path}.{field}", old.get(field), new.get(field), out)


def diff_snapshots(from_snapshot: dict, to_snapshot: dict) -> dict:
    """Structured diff of two snapshots (no ids attached)."""
    result = {
        "fields": [],
        "metadata_diffs": [],
        "options_diffs": [],
        "media_diffs": [],
        "comments_diffs": [],
    }

    for field in SNAPSHOT_SCALAR_FIELDS:
        _compare(
            field, field,
            from_snapshot.get(field, _MISSING), to_snapshot.get(field, _MISSING),
            result["fields"],
        )

    _diff_map("metadata", from_snapshot.get("metadata"), to_snapshot.get("metadata"),
              result["metadata_diffs"])
    _diff_objects(from_snapshot.get("decision_objects"), to_snapshot.get("decision_objects"), result)

    if "comments" in from_snapshot or "comments" in to_snapshot:
        _diff_comments(from_snapshot.get("comments"), to_snapshot.get("comments"),
                       result["comments_diffs"])

    return result


def diff_versions(decision_id: str, from_version_id: str, to_version_id: str) -> dict:
    """VersionDiff between two versions of the same decision."""
    if not from_version_id or not to_version_id:
        raise InvalidArgumentError(
            "Both 'from' and 'to' version ids are required",
            details={"from": from_version_id, "to": to_version_id},
        )
    if from_version_id == to_version_id:
        raise InvalidArgumentError(
            "Cannot diff a version against itself",
            details={"from": from_version_id, "to": to_version_id},
        )
    old = snapshot_store.get_version(decision_id, from_version_id)
    new = snapshot_store.get_version(decision_id, to_version_id)

    diff = diff_snapshots(old.snapshot, new.snapshot)
    return {
        "from_version_id": old.id,
        "to_version_id": new.id,
        "from_version_number": old.version_number,
        "to_version_number": new.version_number,
        **diff,
    }
