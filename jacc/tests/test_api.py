"""End-to-end tests through the HTTP API."""

import json

import pytest

from knowledge.models import Role

TEXT = "text/plain"


def upload(name: str, data: bytes, content_type: str = TEXT):
    return ("files", (name, data, content_type))


# ── auth ─────────────────────────────────────────────────────────


@pytest.mark.asyncio
async def test_health(client):
    response = await client.get("/health")
    assert response.status_code == 200
    assert response.json() == {"status": "ok"}


@pytest.mark.asyncio
async def test_requests_need_a_live_session(client):
    assert (await client.get("/v0/documents")).status_code == 401
    response = await client.get("/v0/documents", headers={"Authorization": "Bearer nope"})
    assert response.status_code == 401
    assert response.headers["WWW-Authenticate"] == "Bearer"


@pytest.mark.asyncio
async def test_role_gates(client, headers):
    response = await client.post(
        "/v0/ingest/stage", files=[upload("a.txt", b"a")], headers=headers[Role.AGENT]
    )
    assert response.status_code == 403

    response = await client.get("/v0/admin/faq", headers=headers[Role.MANAGER])
    assert response.status_code == 403

    response = await client.get("/v0/admin/reviews", headers=headers[Role.AGENT])
    assert response.status_code == 403


# ── ingestion ────────────────────────────────────────────────────


@pytest.mark.asyncio
async def test_stage_then_place(client, headers):
    manager = headers[Role.MANAGER]
    response = await client.post(
        "/v0/ingest/stage",
        files=[
            upload("Clover Rates.txt", b"Clover qualified rate is 1.69%."),
            upload("setup.exe", b"MZ", "application/octet-stream"),
        ],
        data={"upload_mode": "files"},
        headers=manager,
    )
    assert response.status_code == 200
    staged = response.json()
    assert [s["name"] for s in staged["staged"]] == ["Clover Rates.txt"]
    assert staged["rejected"][0]["name"] == "setup.exe"
    assert staged["rejected"][0]["reason"] == "invalid-type"

    place = {"ticket_id": staged["ticket_id"], "permissions": {"admin_only": True}}
    response = await client.post("/v0/ingest/place", json=place, headers=manager)
    assert response.status_code == 200
    [placed] = response.json()["placed"]
    assert placed["display_name"] == "Clover Rates"
    assert placed["vectorization_status"] == "pending"

    # A ticket is consumed once
    response = await client.post("/v0/ingest/place", json=place, headers=manager)
    assert response.status_code == 409

    # Admin-only documents are invisible to the uploading manager
    response = await client.get("/v0/documents", headers=manager)
    assert response.json()["total"] == 0
    response = await client.get(f"/v0/documents/{placed['document_id']}", headers=manager)
    assert response.status_code == 404

    response = await client.get("/v0/documents", headers=headers[Role.ADMIN])
    [document] = response.json()["documents"]
    assert document["permissions"]["admin_only"] is True
    assert document["permissions"]["agent_access"] is False


@pytest.mark.asyncio
async def test_place_unknown_ticket(client, headers):
    response = await client.post(
        "/v0/ingest/place",
        json={"ticket_id": "00000000-0000-0000-0000-000000000000"},
        headers=headers[Role.MANAGER],
    )
    assert response.status_code == 404


@pytest.mark.asyncio
async def test_one_shot_ingest(client, headers):
    manager = headers[Role.MANAGER]
    response = await client.post(
        "/v0/ingest",
        files=[upload("tsys.txt", b"TSYS rates")],
        data={"permissions": json.dumps({"training_data": False})},
        headers=manager,
    )
    assert response.status_code == 200
    [placed] = response.json()["placed"]

    response = await client.get(f"/v0/documents/{placed['document_id']}", headers=manager)
    assert response.json()["permissions"]["training_data"] is False

    response = await client.post(
        "/v0/ingest",
        files=[upload("tsys.txt", b"TSYS rates")],
        data={"permissions": "not json"},
        headers=manager,
    )
    assert response.status_code == 422


@pytest.mark.asyncio
async def test_check_duplicates(client, headers, session, make_document):
    await make_document(session, "Rates.pdf")
    response = await client.post(
        "/v0/ingest/check-duplicates",
        json={"names": ["rates.pdf", "new.pdf"]},
        headers=headers[Role.MANAGER],
    )
    [warning] = response.json()["duplicates"]
    assert warning["name"] == "rates.pdf"
    assert warning["kind"] == "same-name"


# ── documents ────────────────────────────────────────────────────


@pytest.mark.asyncio
async def test_only_owner_or_admin_edits(client, headers, session, make_document):
    document = await make_document(session, "rates.pdf", owner_id="manager-1")
    url = f"/v0/documents/{document.id}"

    response = await client.patch(url, json={"display_name": "x"}, headers=headers[Role.AGENT])
    assert response.status_code == 403

    response = await client.patch(
        url, json={"display_name": "Q3 Rates"}, headers=headers[Role.MANAGER]
    )
    assert response.status_code == 200
    assert response.json()["display_name"] == "Q3 Rates"

    response = await client.patch(url, json={"owner_id": "x"}, headers=headers[Role.MANAGER])
    assert response.status_code == 403

    response = await client.patch(
        f"{url}/permissions", json={"view_all": True}, headers=headers[Role.ADMIN]
    )
    assert response.json()["permissions"]["view_all"] is True

    response = await client.post(f"{url}/vectorize", headers=headers[Role.MANAGER])
    assert response.json()["vectorization_status"] == "pending"
    assert response.json()["job_id"] is not None

    response = await client.delete(url, headers=headers[Role.ADMIN])
    assert response.status_code == 204
    assert (await client.get(url, headers=headers[Role.ADMIN])).status_code == 404


@pytest.mark.asyncio
async def test_bulk_permissions(client, headers, session, make_document):
    first = await make_document(session, "a.pdf")
    second = await make_document(session, "b.pdf")

    response = await client.patch(
        "/v0/documents/permissions",
        json={
            "document_ids": [str(first.id), str(second.id)],
            "permissions": {"admin_only": True},
        },
        headers=headers[Role.ADMIN],
    )
    assert response.status_code == 200

    response = await client.get("/v0/documents", headers=headers[Role.AGENT])
    assert response.json()["total"] == 0


# ── query & review loop ──────────────────────────────────────────


@pytest.mark.asyncio
async def test_query_correct_promote_loop(client, headers):
    admin, agent = headers[Role.ADMIN], headers[Role.AGENT]
    question = "What is the qualified rate for Clover?"

    response = await client.post(
        "/v0/admin/faq",
        json={"question": question, "answer": "1.5%", "category": "pricing"},
        headers=admin,
    )
    assert response.status_code == 200

    chat = (await client.post("/v0/chats", json={"title": "Rates"}, headers=agent)).json()
    response = await client.post(
        "/v0/query", json={"query": question, "chat_id": chat["id"]}, headers=agent
    )
    answer = response.json()
    assert answer["provenance"] == "faq"
    assert answer["answer"] == "1.5%"
    assert answer["from_internal_memory"] is True
    assert answer["message_id"] is not None

    messages = (await client.get(f"/v0/chats/{chat['id']}/messages", headers=agent)).json()
    assert [m["role"] for m in messages] == ["user", "assistant"]

    # Another agent cannot read the chat
    response = await client.get(
        f"/v0/chats/{chat['id']}/messages", headers=headers[Role.MANAGER]
    )
    assert response.status_code == 404

    pending = (await client.get("/v0/admin/reviews?status=pending", headers=admin)).json()
    assert [r["chat_id"] for r in pending["reviews"]] == [chat["id"]]

    response = await client.post(
        f"/v0/admin/reviews/{chat['id']}/corrections",
        json={"message_id": answer["message_id"], "corrected_content": "1.69% + 10c"},
        headers=admin,
    )
    assert response.status_code == 201
    correction = response.json()
    assert correction["original_content"] == "1.5%"

    response = await client.put(
        f"/v0/admin/reviews/{chat['id']}",
        json={"review_status": "needs_correction"},
        headers=admin,
    )
    assert response.json()["corrections_made"] == 1

    response = await client.post(
        f"/v0/admin/corrections/{correction['id']}/promote", json={}, headers=admin
    )
    assert response.status_code == 200
    assert response.json()["category"] == "pricing"

    again = (await client.post("/v0/query", json={"query": question}, headers=agent)).json()
    assert again["answer"] == "1.69% + 10c"
    assert again["message_id"] is None

    faq = (await client.get("/v0/admin/faq", headers=admin)).json()
    assert faq["total"] == 1

    stats = (await client.get("/v0/admin/reviews/stats", headers=admin)).json()
    assert stats["needs_correction"] == 1
    assert stats["total_corrections"] == 1


@pytest.mark.asyncio
async def test_web_answers_await_review(client, headers, web):
    web.content = "Gateway fees are usually $10 a month."
    answer = (
        await client.post("/v0/query", json={"query": "gateway fees?"}, headers=headers[Role.AGENT])
    ).json()
    assert answer["provenance"] == "web"
    assert answer["from_internal_memory"] is False

    admin = headers[Role.ADMIN]
    pending = (await client.get("/v0/admin/interactions?pending_review=true", headers=admin)).json()
    assert [i["id"] for i in pending["interactions"]] == [answer["interaction_id"]]

    response = await client.post(
        f"/v0/admin/interactions/{answer['interaction_id']}/reviewed", headers=admin
    )
    assert response.json()["admin_reviewed"] is True

    stats = (await client.get("/v0/admin/interactions/stats", headers=admin)).json()
    assert stats["total"] == 1
    assert stats["pending_review"] == 0


@pytest.mark.asyncio
async def test_query_when_web_is_down(client, headers):
    response = await client.post(
        "/v0/query", json={"query": "anything new?"}, headers=headers[Role.AGENT]
    )
    assert response.status_code == 200
    assert response.json()["provenance"] == "none"
    assert response.json()["notice"] == "web-unavailable"


# ── admin: folders & import ──────────────────────────────────────


@pytest.mark.asyncio
async def test_folder_admin(client, headers):
    admin = headers[Role.ADMIN]
    provisioned = (await client.post("/v0/admin/folders/provision", headers=admin)).json()
    assert provisioned["folders"][0]["name"] == "TSYS Documents"

    response = await client.post(
        "/v0/admin/folders", json={"name": "Archive", "priority": 1}, headers=admin
    )
    assert response.status_code == 201
    folder_id = response.json()["id"]

    response = await client.delete(f"/v0/admin/folders/{folder_id}", headers=admin)
    assert response.json() == {"id": folder_id, "documents_unassigned": 0}


@pytest.mark.asyncio
async def test_faq_import_endpoint(client, headers):
    sheet = "Q\tA\nHow do I contact customer support?\tCall us.\nbroken line\n"
    response = await client.post(
        "/v0/admin/faq/import",
        files={"file": ("faq.tsv", sheet.encode(), "text/tab-separated-values")},
        headers=headers[Role.ADMIN],
    )
    assert response.json() == {"imported": 1, "skipped_lines": [3]}
