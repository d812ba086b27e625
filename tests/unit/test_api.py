"""Tests for the Quart HTTP API."""
import io

import pytest
from werkzeug.datastructures import FileStorage

from kortex import config, db
from kortex import main
from kortex.activity import ActivityLogger
from kortex.rag.chunker import get_chunk_metadata
from kortex.rag.ingest import IngestPipeline
from kortex.rag.models import ChunkRecord
from kortex.rag.orchestrator import RAGOrchestrator
from kortex.rag.prompts import NO_RESULTS_ANSWER
from kortex.rag.retriever import Retriever


@pytest.fixture
def activity_entries(monkeypatch):
    entries = []
    monkeypatch.setattr(
        main, "activity_logger", ActivityLogger(writer=lambda *args: entries.append(args))
    )
    return entries


@pytest.fixture
def client(monkeypatch, library, extractor, embedder, generator, activity_entries):
    monkeypatch.setattr(main, "library", library)
    monkeypatch.setattr(main, "pipeline", IngestPipeline(
        extractor=extractor,
        embedder=embedder,
        repository=library,
        activity_log=main.activity_logger,
        embedding_dimension=4,
    ))
    monkeypatch.setattr(main, "orchestrator", RAGOrchestrator(
        retriever=Retriever(embedder, library, embedding_dimension=4),
        generator=generator,
        activity_log=main.activity_logger,
    ))
    return main.app.test_client()


def pdf_upload(name="bio.pdf", content_type="application/pdf", data=b"%PDF-1.4 test"):
    return {"file": FileStorage(io.BytesIO(data), filename=name, content_type=content_type)}


class TestSubjects:
    @pytest.mark.asyncio
    async def test_create_list_rename_delete(self, client, activity_entries):
        response = await client.post("/api/subjects", json={"user_id": "alice", "name": " Biology "})
        assert response.status_code == 201
        subject = (await response.get_json())["subject"]
        assert subject["name"] == "Biology"

        response = await client.get("/api/subjects?user_id=alice")
        subjects = (await response.get_json())["subjects"]
        assert [s["id"] for s in subjects] == [subject["id"]]

        response = await client.patch(f"/api/subjects/{subject['id']}", json={"name": "Bio 101"})
        assert (await response.get_json())["subject"]["name"] == "Bio 101"

        response = await client.delete(f"/api/subjects/{subject['id']}")
        assert response.status_code == 200
        assert db.get_subject(subject["id"]) is None

        await main.activity_logger.drain()
        assert [e[1] for e in activity_entries] == [
            "create_subject", "update_subject", "delete_subject",
        ]

    @pytest.mark.asyncio
    async def test_invalid_body(self, client):
        response = await client.post("/api/subjects", json={"user_id": "alice", "name": "   "})

        assert response.status_code == 400
        assert (await response.get_json())["success"] is False

    @pytest.mark.asyncio
    async def test_unknown_subject(self, client):
        response = await client.patch("/api/subjects/missing", json={"name": "x"})

        assert response.status_code == 404
        assert "not found" in (await response.get_json())["error"]

    @pytest.mark.asyncio
    async def test_list_requires_user(self, client):
        response = await client.get("/api/subjects")
        assert response.status_code == 400


class TestUpload:
    @pytest.mark.asyncio
    async def test_upload_then_chat(self, client, library, generator):
        subject = library.create_subject("alice", "Biology")

        response = await client.post(
            "/api/upload",
            form={"subject_id": subject.id, "user_id": "alice"},
            files=pdf_upload(),
        )
        assert response.status_code == 200
        body = await response.get_json()
        assert body["success"] is True
        assert body["chunks_generated"] == 1
        assert body["title"] == "bio.pdf"

        response = await client.get(f"/api/documents?subject_id={subject.id}")
        documents = (await response.get_json())["documents"]
        assert documents[0]["id"] == body["document_id"]

        response = await client.post(
            "/api/chat",
            json={"message": "Where does photosynthesis happen?", "subject_id": subject.id},
        )
        assert response.status_code == 200
        chat = await response.get_json()
        assert chat["outcome"] == "generated"
        assert chat["answer"] == generator.answer.text
        assert chat["xray_context"]["chunk_count"] == 1
        assert chat["xray_context"]["retrieved_chunks"][0]["source"] == "Chunk 1/1"
        assert chat["tokens_used"]["total"] == 150

        await main.activity_logger.drain()

    @pytest.mark.asyncio
    async def test_rejects_non_pdf(self, client, library):
        subject = library.create_subject("alice", "Biology")

        response = await client.post(
            "/api/upload",
            form={"subject_id": subject.id, "user_id": "alice"},
            files=pdf_upload(name="notes.txt", content_type="text/plain"),
        )

        assert response.status_code == 415

    @pytest.mark.asyncio
    async def test_rejects_large_file(self, client, library, monkeypatch):
        subject = library.create_subject("alice", "Biology")
        monkeypatch.setattr(config, "MAX_UPLOAD_BYTES", 4)

        response = await client.post(
            "/api/upload",
            form={"subject_id": subject.id, "user_id": "alice"},
            files=pdf_upload(),
        )

        assert response.status_code == 413

    @pytest.mark.asyncio
    async def test_requires_fields(self, client):
        response = await client.post("/api/upload", form={"user_id": "alice"}, files=pdf_upload())
        assert response.status_code == 400

    @pytest.mark.asyncio
    async def test_other_users_subject(self, client, library):
        subject = library.create_subject("alice", "Biology")

        response = await client.post(
            "/api/upload",
            form={"subject_id": subject.id, "user_id": "mallory"},
            files=pdf_upload(),
        )

        assert response.status_code == 404

    @pytest.mark.asyncio
    async def test_empty_document(self, client, library, extractor):
        subject = library.create_subject("alice", "Biology")
        extractor.text = "   "

        response = await client.post(
            "/api/upload",
            form={"subject_id": subject.id, "user_id": "alice"},
            files=pdf_upload(),
        )

        assert response.status_code == 422
        body = await response.get_json()
        assert body["error"] == "Document contains no extractable text"
        assert library.list_documents(subject.id) == []

    @pytest.mark.asyncio
    async def test_embedding_failure_reports_document(self, client, library, embedder):
        subject = library.create_subject("alice", "Biology")
        embedder.error = RuntimeError("upstream down")

        response = await client.post(
            "/api/upload",
            form={"subject_id": subject.id, "user_id": "alice"},
            files=pdf_upload(),
        )

        assert response.status_code == 502
        body = await response.get_json()
        assert body["detail"] == "upstream down"
        assert body["document_id"] == library.list_documents(subject.id)[0]["id"]


class TestChat:
    @pytest.mark.asyncio
    async def test_empty_subject_is_gated(self, client, library, generator):
        subject = library.create_subject("alice", "Biology")

        response = await client.post(
            "/api/chat",
            json={"message": "What is osmosis?", "subject_id": subject.id, "user_id": "alice"},
        )

        body = await response.get_json()
        assert response.status_code == 200
        assert body["outcome"] == "gated_empty"
        assert body["answer"] == NO_RESULTS_ANSWER
        assert body["tokens_used"] is None
        assert generator.messages is None

        await main.activity_logger.drain()

    @pytest.mark.asyncio
    async def test_other_users_subject(self, client, library):
        subject = library.create_subject("alice", "Biology")

        response = await client.post(
            "/api/chat",
            json={"message": "q", "subject_id": subject.id, "user_id": "mallory"},
        )

        assert response.status_code == 404

    @pytest.mark.asyncio
    async def test_empty_message(self, client, library):
        subject = library.create_subject("alice", "Biology")

        response = await client.post("/api/chat", json={"message": "  ", "subject_id": subject.id})

        assert response.status_code == 400

    @pytest.mark.asyncio
    async def test_generation_failure(self, client, library, generator):
        subject = library.create_subject("alice", "Biology")
        document = library.create_document(subject.id, "alice", "bio.pdf")
        library.insert_chunks(document.id, subject.id, "alice", [
            ChunkRecord("Leaves hold chloroplasts.", [1.0, 0.0, 0.0, 0.0], get_chunk_metadata(0, 1)),
        ])
        generator.error = RuntimeError("rate limited")

        response = await client.post("/api/chat", json={"message": "q", "subject_id": subject.id})

        assert response.status_code == 502
        assert (await response.get_json())["error"] == "Failed to generate answer"


class TestDashboard:
    @pytest.mark.asyncio
    async def test_stats(self, client, library):
        subject = library.create_subject("alice", "Biology")
        library.create_document(subject.id, "alice", "bio.pdf")
        library.create_subject("bob", "History")
        db.insert_activity_log("alice", "chat_query", subject.id, {"outcome": "generated"})
        db.insert_activity_log("alice", "chat_query", subject.id, {"outcome": "gated_empty"})
        db.insert_activity_log("alice", "create_subject", subject.id, {"name": "Biology"})
        db.insert_activity_log("bob", "chat_query", "other-subject")

        response = await client.get("/api/dashboard/stats?user_id=alice")

        assert response.status_code == 200
        assert (await response.get_json())["stats"] == {
            "subjects": 1,
            "documents": 1,
            "queries": 2,
        }

    @pytest.mark.asyncio
    async def test_activity_shaped_for_display(self, client, library):
        subject = library.create_subject("alice", "Biology")
        db.insert_activity_log("alice", "create_subject", subject.id, {"name": "Biology"})
        db.insert_activity_log(
            "alice", "upload_document", "doc-1",
            {"title": "bio.pdf", "subject_id": subject.id, "chunk_count": 3},
        )
        db.insert_activity_log("alice", "chat_query", subject.id, {"outcome": "generated"})

        response = await client.get("/api/dashboard/activity?user_id=alice")

        activities = (await response.get_json())["activities"]
        assert [a["topic"] for a in activities] == [
            "Chat Query", "Uploaded bio.pdf", "Created Subject",
        ]
        assert [a["subject"] for a in activities] == ["Biology", "Biology", "Biology"]
        assert all(a["time"] for a in activities)

    @pytest.mark.asyncio
    async def test_activity_keeps_latest_ten(self, client):
        for n in range(12):
            db.insert_activity_log("alice", "chat_query", f"subject-{n}")

        response = await client.get("/api/dashboard/activity?user_id=alice")

        activities = (await response.get_json())["activities"]
        assert len(activities) == 10
        assert activities[0]["subject"] == "Study Session"

    @pytest.mark.asyncio
    async def test_chat_queries_are_counted(self, client, library, monkeypatch):
        monkeypatch.setattr(main.orchestrator, "activity_log", ActivityLogger())
        subject = library.create_subject("alice", "Biology")

        await client.post(
            "/api/chat",
            json={"message": "What is osmosis?", "subject_id": subject.id, "user_id": "alice"},
        )
        await main.orchestrator.activity_log.drain()

        response = await client.get("/api/dashboard/stats?user_id=alice")
        assert (await response.get_json())["stats"]["queries"] == 1

    @pytest.mark.asyncio
    @pytest.mark.parametrize("path", ["/api/dashboard/stats", "/api/dashboard/activity"])
    async def test_requires_user(self, client, path):
        response = await client.get(path)
        assert response.status_code == 400


class TestHealth:
    @pytest.mark.asyncio
    async def test_live(self, client):
        response = await client.get("/health/live")
        assert response.status_code == 200

    @pytest.mark.asyncio
    async def test_ready_needs_credentials(self, client, monkeypatch):
        monkeypatch.setattr(config, "GROQ_API_KEY", "")
        response = await client.get("/health/ready")
        assert response.status_code == 503

        monkeypatch.setattr(config, "GROQ_API_KEY", "key")
        monkeypatch.setattr(config, "CLOUDFLARE_ACCOUNT_ID", "acct")
        monkeypatch.setattr(config, "CLOUDFLARE_API_TOKEN", "token")
        response = await client.get("/health/ready")
        assert response.status_code == 200
