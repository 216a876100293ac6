from __future__ import annotations

import json

from course_assistant.models import MessageRole

COURSE_ID = "course-101"
LECTURE = (
    "Photosynthesis happens in the chloroplast and turns light energy into glucose. "
    "The light reactions produce ATP and NADPH for the Calvin cycle."
)


def _frames(body: str) -> list[dict]:
    return [json.loads(line[len("data: "):]) for line in body.splitlines() if line.startswith("data: ")]


def _upload(client, services, name="notes.txt", data=LECTURE.encode(), mime="text/plain"):
    response = client.post(
        "/documents", files={"file": (name, data, mime)}, data={"course_id": COURSE_ID}
    )
    assert services.worker.wait_idle(timeout=10)
    return response


def test_healthcheck(client) -> None:
    assert client.get("/").text == "ok"
    assert client.get("/healthz").text == "ok"
    assert client.get("/healthz/model").json()["provider"] == "scripted"


def test_requests_without_identity_are_rejected(client) -> None:
    response = client.get("/documents", headers={"X-User-Id": ""})

    assert response.status_code == 401
    assert response.json() == {"error": "Authentication required", "code": "unauthorized"}


def test_upload_then_poll_until_completed(client, services) -> None:
    response = _upload(client, services)

    assert response.status_code == 201
    payload = response.json()
    assert payload["status"] == "PROCESSING"
    assert response.headers["X-RateLimit-Limit"] == "5"

    detail = client.get(f"/documents/{payload['id']}", params={"include_chunks": True}).json()
    assert detail["status"] == "COMPLETED"
    assert detail["chunk_count"] == len(detail["chunks"]) >= 1
    assert detail["extracted_text"].startswith("Photosynthesis happens")
    assert detail["metadata"]["chunk_statistics"]["total_chunks"] == detail["chunk_count"]

    listing = client.get("/documents", params={"course_id": COURSE_ID}).json()
    assert listing["pagination"]["total"] == 1
    assert listing["documents"][0]["id"] == payload["id"]


def test_unsupported_and_oversize_uploads(client, services) -> None:
    unsupported = _upload(client, services, name="x.zip", data=b"PK", mime="application/zip")
    oversize = _upload(
        client, services, name="big.txt", data=b"a" * (services.settings.max_upload_bytes + 1)
    )

    assert unsupported.status_code == 415
    assert unsupported.json()["code"] == "unsupported_format"
    assert oversize.status_code == 413
    assert client.get("/documents").json()["pagination"]["total"] == 0


def test_upload_rate_limit(client, services) -> None:
    statuses = [_upload(client, services).status_code for _ in range(6)]

    assert statuses == [201] * 5 + [429]


def test_document_access_is_per_user(client, services) -> None:
    document_id = _upload(client, services).json()["id"]

    other = client.get(f"/documents/{document_id}", headers={"X-User-Id": "student-2"})
    missing = client.get("/documents/does-not-exist")

    assert other.status_code == 403
    assert missing.status_code == 404


def test_reprocess_and_delete(client, services) -> None:
    document_id = _upload(client, services).json()["id"]

    conflict = client.post(f"/documents/{document_id}/reprocess")
    forced = client.post(f"/documents/{document_id}/reprocess", params={"force": True})
    services.worker.wait_idle(timeout=10)

    assert conflict.status_code == 409
    assert forced.status_code == 202
    assert client.get(f"/documents/{document_id}").json()["status"] == "COMPLETED"

    assert client.delete(f"/documents/{document_id}").status_code == 204
    assert client.get(f"/documents/{document_id}").status_code == 404


def test_search_matches_chunk_text(client, services) -> None:
    _upload(client, services)

    payload = client.get("/documents/search", params={"q": "calvin cycle"}).json()

    assert len(payload["matches"]) == 1
    assert payload["matches"][0]["document_name"] == "notes.txt"


def test_chat_post_then_stream(client, services, provider) -> None:
    posted = client.post(f"/courses/{COURSE_ID}/chat", json={"content": "What is ATP?"})
    assert posted.status_code == 201
    assert posted.headers["X-RateLimit-Remaining"] == "19"
    session_id = posted.json()["session_id"]

    streamed = client.post(f"/courses/{COURSE_ID}/chat/stream", json={"session_id": session_id})

    assert streamed.status_code == 200
    assert streamed.headers["content-type"].startswith("text/event-stream")
    frames = _frames(streamed.text)
    assert "".join(frame["delta"] for frame in frames[:-1]) == "".join(provider.pieces)
    assert frames[-1]["done"] is True and frames[-1]["finishReason"] == "stop"

    again = client.post(f"/courses/{COURSE_ID}/chat/stream", json={"session_id": session_id})
    assert again.status_code == 409

    messages = client.get(f"/chat/sessions/{session_id}/messages").json()
    assert [m["role"] for m in messages["messages"]] == ["USER", "ASSISTANT"]
    assert [m["error"] for m in messages["messages"]] == [None, None]


def test_chat_send_streams_with_identity_headers(client, services) -> None:
    response = client.post(f"/courses/{COURSE_ID}/chat/send", json={"content": "Explain osmosis"})

    assert response.status_code == 200
    session_id = response.headers["X-Session-Id"]
    user_message_id = response.headers["X-User-Message-Id"]
    assert _frames(response.text)[-1]["done"] is True

    stored = services.store.list_messages(session_id)
    assert stored[0].id == user_message_id
    assert [m.role for m in stored] == [MessageRole.USER, MessageRole.ASSISTANT]


def test_upstream_failure_streams_error_frame(client, services, provider) -> None:
    provider.fail_after = 1

    response = client.post(f"/courses/{COURSE_ID}/chat/send", json={"content": "Explain osmosis"})

    frames = _frames(response.text)
    assert frames[-1]["done"] is True and "error" in frames[-1]
    stored = services.store.list_messages(response.headers["X-Session-Id"])
    assert [m.role for m in stored] == [MessageRole.USER]


def test_sessions_are_listed_and_deleted(client) -> None:
    session_id = client.post(f"/courses/{COURSE_ID}/chat", json={"content": "First question"}).json()[
        "session_id"
    ]

    sessions = client.get(f"/courses/{COURSE_ID}/chat/sessions").json()["sessions"]
    assert [(s["id"], s["title"], s["message_count"]) for s in sessions] == [
        (session_id, "First question", 1)
    ]

    assert client.delete(f"/chat/sessions/{session_id}").status_code == 204
    assert client.get(f"/chat/sessions/{session_id}/messages").status_code == 404


def test_unknown_course_and_foreign_session(client) -> None:
    assert client.post("/courses/nope/chat", json={"content": "hi"}).status_code == 404

    session_id = client.post(f"/courses/{COURSE_ID}/chat", json={"content": "hi"}).json()["session_id"]
    foreign = client.post(
        f"/courses/{COURSE_ID}/chat/stream",
        json={"session_id": session_id},
        headers={"X-User-Id": "student-2"},
    )
    assert foreign.status_code == 403


def test_three_page_pdf_grounds_the_reply(client, services, provider, make_pdf) -> None:
    pages = [
        "Page one explains that chloroplasts capture sunlight for the plant cell.",
        "Page two explains that stomata regulate gas exchange through the leaf.",
        "Page three explains that xylem carries water upward from the roots.",
    ]
    upload = _upload(client, services, name="botany.pdf", data=make_pdf(pages), mime="application/pdf")
    document_id = upload.json()["id"]

    detail = client.get(f"/documents/{document_id}").json()
    assert detail["status"] == "COMPLETED"
    assert detail["metadata"]["page_count"] == 3
    assert detail["chunk_count"] >= 1

    response = client.post(
        f"/courses/{COURSE_ID}/chat/send",
        json={"content": "What do stomata do?", "document_ids": [document_id]},
    )
    frames = _frames(response.text)
    assert frames[-1]["done"] is True and frames[-1]["finishReason"] == "stop"

    system_prompt = provider.prompts[-1][0]["content"]
    assert system_prompt.count("=== botany.pdf ===") == 1
    assert "stomata regulate gas exchange" in system_prompt
    assert "stomata regulate gas exchange" in detail["extracted_text"]

    stored = services.store.list_messages(response.headers["X-Session-Id"])
    assert [m.role for m in stored] == [MessageRole.USER, MessageRole.ASSISTANT]
    assert stored[1].content == "".join(provider.pieces)


def test_scanned_pdf_completes_without_chunks(client, services, make_pdf) -> None:
    upload = _upload(client, services, name="scan.pdf", data=make_pdf(["", "", ""]), mime="application/pdf")

    detail = client.get(f"/documents/{upload.json()['id']}").json()

    assert detail["status"] == "COMPLETED"
    assert detail["error_message"] is None
    assert detail["extracted_text"] == ""
    assert detail["chunk_count"] == 0
    assert detail["metadata"]["page_count"] == 3
    assert detail["metadata"]["chunk_statistics"] == {
        "total_chunks": 0,
        "average_length": 0,
        "min_length": 0,
        "max_length": 0,
        "estimated_tokens": 0,
    }


def test_documents_of_other_users_cannot_be_referenced(client, services, provider) -> None:
    secret = "Answer key for the midterm: question one is mitochondria and question two is ribosomes."
    private_id = client.post(
        "/documents", files={"file": ("secret.txt", secret.encode(), "text/plain")}
    ).json()["id"]
    assert services.worker.wait_idle(timeout=10)
    shared_id = _upload(client, services, name="syllabus.txt").json()["id"]
    as_other = {"X-User-Id": "student-2"}

    foreign = client.post(
        f"/courses/{COURSE_ID}/chat/send",
        json={"content": "Summarise this", "document_ids": [private_id]},
        headers=as_other,
    )
    missing = client.post(
        f"/courses/{COURSE_ID}/chat/send",
        json={"content": "Summarise this", "document_ids": ["no-such-document"]},
        headers=as_other,
    )

    assert foreign.status_code == 403
    assert foreign.json()["code"] == "access_denied"
    assert missing.status_code == 404
    assert provider.prompts == []
    assert client.get(f"/courses/{COURSE_ID}/chat/sessions", headers=as_other).json()["sessions"] == []

    course_material = client.post(
        f"/courses/{COURSE_ID}/chat/send",
        json={"content": "Summarise this", "document_ids": [shared_id]},
        headers=as_other,
    )
    assert course_material.status_code == 200
    assert "=== syllabus.txt ===" in provider.prompts[-1][0]["content"]
    assert "midterm" not in provider.prompts[-1][0]["content"]
