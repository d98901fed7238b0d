"""
Tests: Decision API + share-link portal: HTTP surface and error envelope.
"""

import pytest

from decision_trail.utils.errors import _DEFAULT_STATUS, E

HEADERS = {"X-User-Id": "user-9", "X-User-Name": "Sam Client"}


def _create(client, **extra):
    payload = {
        "project_id": "proj-1",
        "title": "Countertops",
        "decision_objects": [
            {"title": "Material", "options": [{"label": "Quartz"}, {"label": "Marble"}]},
        ],
    }
    payload.update(extra)
    res = client.post("/api/v1/decisions", json=payload, headers=HEADERS)
    assert res.status_code == 201
    return res.get_json()


@pytest.fixture()
def created(client):
    return _create(client)


# ── Decisions ────────────────────────────────────────────────────────────────


class TestDecisionEndpoints:
    def test_create_uses_header_identity(self, client, created):
        assert created["owner_id"] == "user-9"
        assert created["current_version"]["author_name"] == "Sam Client"
        res = client.get(f"/api/v1/decisions/{created['id']}/audit")
        [entry] = res.get_json()
        assert entry["user_id"] == "user-9"
        assert entry["user_name"] == "Sam Client"

    def test_create_missing_title_is_400(self, client):
        res = client.post("/api/v1/decisions", json={"project_id": "p"})
        assert res.status_code == 400
        body = res.get_json()
        assert body["code"] == "ERR_VALIDATION_INVALID"
        assert body["details"] == {"title": "required"}
        assert "error" in body

    def test_get_unknown_is_404(self, client):
        res = client.get("/api/v1/decisions/does-not-exist")
        assert res.status_code == 404
        assert res.get_json()["code"] == "ERR_NOT_FOUND"

    def test_patch_updates_live_fields(self, client, created):
        res = client.patch(f"/api/v1/decisions/{created['id']}", json={"category": "Stone"})
        assert res.status_code == 200
        assert res.get_json()["category"] == "Stone"
        assert res.get_json()["current_version_number"] == 1

    def test_status_transition(self, client, created):
        res = client.post(f"/api/v1/decisions/{created['id']}/status", json={"action": "submit"})
        assert res.status_code == 200
        assert res.get_json()["status"] == "pending"

    def test_status_requires_action(self, client, created):
        res = client.post(f"/api/v1/decisions/{created['id']}/status", json={})
        assert res.status_code == 400
        assert res.get_json()["code"] == "ERR_VALIDATION_REQUIRED"

    def test_invalid_transition_is_409(self, client, created):
        res = client.post(f"/api/v1/decisions/{created['id']}/status", json={"action": "approve"})
        assert res.status_code == 409
        body = res.get_json()
        assert body["code"] == "ERR_CONFLICT_STATE"
        assert body["details"] == {"current_status": "draft", "attempted": "approve"}

    def test_admin_revoke_approval(self, client, created):
        url = f"/api/v1/decisions/{created['id']}/status"
        client.post(url, json={"action": "submit"})
        client.post(url, json={"action": "approve"})
        res = client.post(
            f"/api/v1/decisions/{created['id']}/admin/revoke-approval",
            json={"reason": "budget changed"}, headers=HEADERS,
        )
        assert res.status_code == 200
        assert res.get_json()["status"] == "draft"
        entry = client.get(f"/api/v1/decisions/{created['id']}/audit?limit=1").get_json()[0]
        assert entry["details"]["note"] == "budget changed"


# ── Versions / diffs / audit ─────────────────────────────────────────────────


class TestVersionEndpoints:
    def test_create_and_fetch_version(self, client, created):
        res = client.post(
            f"/api/v1/decisions/{created['id']}/versions",
            json={"snapshot": {"title": "Countertops Final"}, "note": "final"},
        )
        assert res.status_code == 201
        v2 = res.get_json()
        assert v2["version_number"] == 2

        by_number = client.get(f"/api/v1/decisions/{created['id']}/versions/2").get_json()
        by_id = client.get(f"/api/v1/decisions/{created['id']}/versions/{v2['id']}").get_json()
        assert by_number == by_id
        listing = client.get(f"/api/v1/decisions/{created['id']}/versions").get_json()
        assert [v["version_number"] for v in listing] == [1, 2]

    def test_version_overlay_rejects_objects(self, client, created):
        res = client.post(
            f"/api/v1/decisions/{created['id']}/versions",
            json={"snapshot": {"decision_objects": []}},
        )
        assert res.status_code == 400

    def test_unknown_version_number_is_404(self, client, created):
        res = client.get(f"/api/v1/decisions/{created['id']}/versions/9")
        assert res.status_code == 404

    def test_diff_endpoint(self, client, created):
        client.post(f"/api/v1/decisions/{created['id']}/versions",
                    json={"snapshot": {"title": "Countertops Final"}})
        res = client.get(f"/api/v1/decisions/{created['id']}/diffs?from=1&to=2")
        assert res.status_code == 200
        body = res.get_json()
        assert body["from_version_number"] == 1
        assert body["to_version_number"] == 2
        assert [(c["field"], c["newValue"]) for c in body["fields"]] == [("title", "Countertops Final")]

    def test_diff_requires_both_params(self, client, created):
        res = client.get(f"/api/v1/decisions/{created['id']}/diffs?from=1")
        assert res.status_code == 400
        assert res.get_json()["code"] == "ERR_VALIDATION_REQUIRED"

    def test_diff_same_version_is_400(self, client, created):
        res = client.get(f"/api/v1/decisions/{created['id']}/diffs?from=1&to=1")
        assert res.status_code == 400

    def test_audit_filter_and_bad_limit(self, client, created):
        client.post(f"/api/v1/decisions/{created['id']}/versions", json={})
        res = client.get(f"/api/v1/decisions/{created['id']}/audit?filter=version_created")
        assert [e["action"] for e in res.get_json()] == ["version_created"]
        res = client.get(f"/api/v1/decisions/{created['id']}/audit?limit=abc")
        assert res.status_code == 400


# ── Objects ──────────────────────────────────────────────────────────────────


class TestObjectEndpoints:
    def test_add_update_remove(self, client, created):
        base = f"/api/v1/decisions/{created['id']}/objects"
        res = client.post(base, json={"title": "Edge Profile"})
        assert res.status_code == 201
        obj = res.get_json()

        res = client.put(f"{base}/{obj['id']}", json={"title": "Edge"})
        assert res.get_json()["title"] == "Edge"

        res = client.delete(f"{base}/{obj['id']}")
        assert [o["id"] for o in res.get_json()["decision_objects"]] == [created["decision_objects"][0]["id"]]

    def test_reorder_requires_ids(self, client, created):
        res = client.post(f"/api/v1/decisions/{created['id']}/objects/reorder", json={})
        assert res.status_code == 400

    def test_recommend_option(self, client, created):
        obj = created["decision_objects"][0]
        opt = obj["options"][1]
        res = client.patch(
            f"/api/v1/decisions/{created['id']}/objects/{obj['id']}/options/{opt['id']}",
            json={"is_recommended": True},
        )
        assert res.status_code == 200
        flags = {o["label"]: o["is_recommended"] for o in res.get_json()["options"]}
        assert flags == {"Quartz": False, "Marble": True}


# ── Share links + portal ─────────────────────────────────────────────────────


class TestShareAndPortal:
    def test_share_verify_consume(self, client, created):
        res = client.post(f"/api/v1/decisions/{created['id']}/share", json={"access_scope": "read"})
        assert res.status_code == 201
        token = res.get_json()["url"].rsplit("/", 1)[-1]

        verify = client.get(f"/api/v1/links/{token}/verify").get_json()
        assert verify["valid"] is True
        assert verify["decision_id"] == created["id"]

        res = client.post(f"/api/v1/links/{token}/consume")
        assert res.status_code == 200
        body = res.get_json()
        assert body["usage_count"] == 1
        assert body["decision"]["title"] == "Countertops"
        assert "owner_id" not in body["decision"]

    def test_unknown_token(self, client):
        assert client.get("/api/v1/links/nope/verify").get_json() == {"valid": False, "reason": "not_found"}
        res = client.post("/api/v1/links/nope/consume")
        assert res.status_code == 404
        assert res.get_json()["code"] == "ERR_NOT_FOUND"

    def test_revoked_token_cannot_be_consumed(self, client, created):
        link = client.post(f"/api/v1/decisions/{created['id']}/share", json={}).get_json()
        token = link["url"].rsplit("/", 1)[-1]
        res = client.post(f"/api/v1/share-links/{link['id']}/revoke")
        assert res.get_json()["is_active"] is False
        assert client.post(f"/api/v1/links/{token}/consume").status_code == 404

    def test_list_active_links(self, client, created):
        base = f"/api/v1/decisions/{created['id']}"
        client.post(f"{base}/share", json={"access_scope": "read"})
        second = client.post(f"{base}/share", json={"access_scope": "read"}).get_json()
        assert len(client.get(f"{base}/share-links").get_json()) == 2
        active = client.get(f"{base}/share-links?active=true").get_json()
        assert [link["id"] for link in active] == [second["id"]]

    def test_extend_requires_expiry(self, client, created):
        link = client.post(f"/api/v1/decisions/{created['id']}/share", json={}).get_json()
        res = client.post(f"/api/v1/share-links/{link['id']}/extend", json={})
        assert res.status_code == 400
        assert res.get_json()["code"] == "ERR_VALIDATION_REQUIRED"

    def _portal_token(self, client, decision_id, scope):
        client.post(f"/api/v1/decisions/{decision_id}/status", json={"action": "submit"})
        link = client.post(f"/api/v1/decisions/{decision_id}/share", json={"access_scope": scope}).get_json()
        return link["url"].rsplit("/", 1)[-1]

    def test_read_token_cannot_approve(self, client, created):
        token = self._portal_token(client, created["id"], "read")
        res = client.post(f"/api/v1/links/{token}/approve", json={"note": "ok"})
        assert res.status_code == 403
        body = res.get_json()
        assert body["code"] == "ERR_FORBIDDEN"
        assert body["details"] == {"access_scope": "read", "required": "approve"}
        assert client.get(f"/api/v1/decisions/{created['id']}").get_json()["status"] == "pending"

    def test_approve_token_approves(self, client, created):
        token = self._portal_token(client, created["id"], "approve")
        assert client.get(f"/api/v1/links/{token}/verify").get_json()["allowed_actions"] == [
            "view", "approve", "request_changes",
        ]
        res = client.post(f"/api/v1/links/{token}/approve", json={"client_name": "Sam Client"})
        assert res.status_code == 200
        assert res.get_json()["status"] == "approved"
        entry = client.get(f"/api/v1/decisions/{created['id']}/audit?limit=1").get_json()[0]
        assert entry["details"]["via"] == "portal"
        assert entry["user_name"] == "Sam Client"

    def test_request_changes(self, client, created):
        token = self._portal_token(client, created["id"], "approve")
        res = client.post(f"/api/v1/links/{token}/request-changes", json={"note": "Warmer tones"})
        assert res.status_code == 200
        assert res.get_json()["status"] == "rejected"

    def test_approve_on_draft_is_409(self, client, created):
        link = client.post(f"/api/v1/decisions/{created['id']}/share", json={"access_scope": "approve"}).get_json()
        res = client.post(f"/api/v1/links/{link['url'].rsplit('/', 1)[-1]}/approve")
        assert res.status_code == 409
        assert res.get_json()["code"] == "ERR_CONFLICT_STATE"

    def test_bad_scope_is_400(self, client, created):
        res = client.post(f"/api/v1/decisions/{created['id']}/share", json={"access_scope": "owner"})
        assert res.status_code == 400


# ── Health / middleware ──────────────────────────────────────────────────────


class TestHealth:
    def test_ready(self, client):
        res = client.get("/api/v1/health/ready")
        assert res.status_code == 200
        assert res.get_json() == {"status": "ok"}

    def test_live_reports_database(self, client):
        body = client.get("/api/v1/health/live").get_json()
        assert body["status"] == "healthy"
        assert body["checks"]["database"]["status"] == "ok"

    def test_request_id_header(self, client):
        res = client.get("/api/v1/health/ready")
        assert res.headers.get("X-Request-ID")

    def test_unknown_route_is_json_404(self, client):
        res = client.get("/api/v1/nothing-here")
        assert res.status_code == 404
        assert res.get_json()["error"] == "Not found"


class TestErrorCodes:
    def test_every_code_has_a_status(self):
        codes = [v for k, v in vars(E).items() if not k.startswith("_")]
        assert set(codes) == set(_DEFAULT_STATUS)
        assert _DEFAULT_STATUS[E.FORBIDDEN] == 403
