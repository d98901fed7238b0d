"""
Tests: Diff Engine: field-level diffs between decision snapshots.
"""

import pytest

from decision_trail.core.exceptions import InvalidArgumentError, NotFoundError
from decision_trail.services import decision_service, version_diff


def _snapshot(**overrides):
    snap = {
        "title": "Kitchen Finishes",
        "description": "Finishes",
        "category": "Interior",
        "owner_id": None,
        "due_date": None,
        "tags": ["kitchen"],
        "metadata": {"room": "kitchen"},
        "decision_objects": [
            {
                "id": "obj-a",
                "title": "Countertop Material",
                "description": None,
                "order_index": 0,
                "status": "draft",
                "metadata": {},
                "options": [
                    {"id": "opt-1", "label": "Quartz", "media_url": None, "cost": "$2,500",
                     "dependencies": {}, "order_index": 0, "is_recommended": False},
                    {"id": "opt-2", "label": "Granite", "media_url": None, "cost": "$3,200",
                     "dependencies": {}, "order_index": 1, "is_recommended": False},
                ],
            },
            {
                "id": "obj-b",
                "title": "Cabinet Hardware",
                "description": None,
                "order_index": 1,
                "status": "draft",
                "metadata": {},
                "options": [],
            },
        ],
    }
    snap.update(overrides)
    return snap


# ── Pure snapshot diffs ──────────────────────────────────────────────────────


class TestDiffSnapshots:
    def test_identical_snapshots_have_no_changes(self):
        diff = version_diff.diff_snapshots(_snapshot(), _snapshot())
        assert all(diff[k] == [] for k in diff)

    def test_title_change_is_single_modified_field(self):
        diff = version_diff.diff_snapshots(
            _snapshot(), _snapshot(title="Kitchen Finishes - Countertops")
        )
        assert diff["fields"] == [{
            "field": "title",
            "path": "title",
            "oldValue": "Kitchen Finishes",
            "newValue": "Kitchen Finishes - Countertops",
            "type": "modified",
        }]
        assert diff["metadata_diffs"] == []
        assert diff["options_diffs"] == []
        assert diff["media_diffs"] == []
        assert diff["comments_diffs"] == []

    def test_scalar_fields_reported_in_declared_order(self):
        diff = version_diff.diff_snapshots(
            _snapshot(),
            _snapshot(tags=["kitchen", "stone"], title="T2", due_date="2026-01-01", category="C"),
        )
        assert [c["field"] for c in diff["fields"]] == ["title", "category", "due_date", "tags"]

    def test_tags_compared_by_value(self):
        diff = version_diff.diff_snapshots(_snapshot(tags=["a", "b"]), _snapshot(tags=["a", "b"]))
        assert diff["fields"] == []

    def test_metadata_key_changes(self):
        diff = version_diff.diff_snapshots(
            _snapshot(metadata={"room": "kitchen", "budget": 100}),
            _snapshot(metadata={"room": "pantry", "style": "modern"}),
        )
        assert [(c["path"], c["type"]) for c in diff["metadata_diffs"]] == [
            ("metadata.budget", "removed"),
            ("metadata.room", "modified"),
            ("metadata.style", "added"),
        ]

    def test_option_label_and_media_changes_split_by_bucket(self):
        new = _snapshot()
        opt = new["decision_objects"][0]["options"][0]
        opt["label"] = "Quartz (polished)"
        opt["media_url"] = "https://cdn.test/quartz.jpg"
        diff = version_diff.diff_snapshots(_snapshot(), new)

        assert [c["path"] for c in diff["options_diffs"]] == [
            "decision_objects[obj-a].options[opt-1].label",
        ]
        assert diff["media_diffs"] == [{
            "field": "media_url",
            "path": "decision_objects[obj-a].options[opt-1].media_url",
            "oldValue": None,
            "newValue": "https://cdn.test/quartz.jpg",
            "type": "modified",
        }]

    def test_object_added_and_removed(self):
        new = _snapshot()
        removed = new["decision_objects"].pop(1)
        new["decision_objects"].append({
            "id": "obj-c", "title": "Backsplash", "description": None, "order_index": 1,
            "status": "draft", "metadata": {}, "options": [],
        })
        diff = version_diff.diff_snapshots(_snapshot(), new)
        changes = [(c["path"], c["type"]) for c in diff["options_diffs"]]
        assert changes == [
            ("decision_objects[obj-c]", "added"),
            ("decision_objects[obj-b]", "removed"),
        ]
        assert diff["options_diffs"][1]["oldValue"]["title"] == removed["title"]
        assert diff["options_diffs"][1]["newValue"] is None

    def test_reorder_is_not_add_remove(self):
        new = _snapshot()
        new["decision_objects"][0]["order_index"] = 1
        new["decision_objects"][1]["order_index"] = 0
        diff = version_diff.diff_snapshots(_snapshot(), new)
        assert {c["type"] for c in diff["options_diffs"]} == {"modified"}
        assert [c["path"] for c in diff["options_diffs"]] == [
            "decision_objects[obj-b].order_index",
            "decision_objects[obj-a].order_index",
        ]

    def test_symmetry_swaps_types_and_values(self):
        old = _snapshot()
        new = _snapshot(title="New title", metadata={"style": "modern"})
        new["decision_objects"].pop(1)
        new["decision_objects"][0]["options"][1]["cost"] = "$3,000"

        forward = version_diff.diff_snapshots(old, new)
        backward = version_diff.diff_snapshots(new, old)

        swap = {"added": "removed", "removed": "added", "modified": "modified"}
        for bucket in forward:
            fwd = {(c["path"], c["type"], repr(c["oldValue"]), repr(c["newValue"])) for c in forward[bucket]}
            back = {(c["path"], swap[c["type"]], repr(c["newValue"]), repr(c["oldValue"])) for c in backward[bucket]}
            assert fwd == back

    def test_deterministic(self):
        new = _snapshot(title="x", metadata={"a": 1, "b": 2})
        assert version_diff.diff_snapshots(_snapshot(), new) == version_diff.diff_snapshots(_snapshot(), new)

    def test_comments_bucket(self):
        old = _snapshot(comments=[{"id": "c1", "body": "Looks good", "resolved": False}])
        new = _snapshot(comments=[{"id": "c1", "body": "Looks good", "resolved": True},
                                  {"id": "c2", "body": "Approved"}])
        diff = version_diff.diff_snapshots(old, new)
        assert {(c["path"], c["type"]) for c in diff["comments_diffs"]} == {
            ("comments[c1].resolved", "modified"),
            ("comments[c2]", "added"),
        }

    def test_result_does_not_alias_inputs(self):
        new = _snapshot(metadata={"room": {"name": "kitchen"}})
        diff = version_diff.diff_snapshots(_snapshot(), new)
        diff["metadata_diffs"][0]["newValue"]["name"] = "garage"
        assert new["metadata"]["room"] == {"name": "kitchen"}


# ── Versions through the façade ──────────────────────────────────────────────


class TestDiffVersions:
    def test_title_diff_between_versions(self, decision):
        v2 = decision_service.create_version(decision["id"], {"title": "Kitchen Finishes - Countertops"})
        diff = decision_service.diff(decision["id"], decision["current_version_id"], v2["id"])

        assert diff["from_version_id"] == decision["current_version_id"]
        assert diff["to_version_id"] == v2["id"]
        assert diff["fields"] == [{
            "field": "title",
            "path": "title",
            "oldValue": "Kitchen Finishes",
            "newValue": "Kitchen Finishes - Countertops",
            "type": "modified",
        }]
        for bucket in ("metadata_diffs", "options_diffs", "media_diffs", "comments_diffs"):
            assert diff[bucket] == []

    def test_diff_accepts_version_numbers(self, decision):
        decision_service.create_version(decision["id"], {"category": "Kitchen"})
        diff = decision_service.diff(decision["id"], "1", 2)
        assert [c["field"] for c in diff["fields"]] == ["category"]

    def test_diff_same_version_rejected(self, decision):
        with pytest.raises(InvalidArgumentError):
            decision_service.diff(decision["id"], decision["current_version_id"], decision["current_version_id"])

    def test_diff_same_version_by_number_and_id_rejected(self, decision):
        with pytest.raises(InvalidArgumentError):
            decision_service.diff(decision["id"], 1, decision["current_version_id"])

    def test_diff_version_of_other_decision(self, decision):
        other = decision_service.create_decision({"project_id": "proj-1", "title": "Flooring"})
        with pytest.raises(NotFoundError):
            version_diff.diff_versions(decision["id"], decision["current_version_id"], other["current_version_id"])

    def test_diff_requires_both_refs(self, decision):
        with pytest.raises(InvalidArgumentError):
            decision_service.diff(decision["id"], decision["current_version_id"], None)

    def test_object_mutation_visible_after_save(self, decision, actor):
        obj_id = decision["decision_objects"][0]["id"]
        decision_service.update_object(decision["id"], obj_id, {"title": "Countertops"}, **actor)
        v2 = decision_service.create_version(decision["id"], note="rename object")
        diff = decision_service.diff(decision["id"], 1, v2["id"])
        assert diff["fields"] == []
        assert [(c["path"], c["newValue"]) for c in diff["options_diffs"]] == [
            (f"decision_objects[{obj_id}].title", "Countertops"),
        ]
