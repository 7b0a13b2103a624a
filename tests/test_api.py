"""Tests for the FastAPI alignment job API.

HOW: FastAPI TestClient with the background runner patched out, so no
transcription happens; tests that need finished jobs set job state
directly through the store. The pipeline runner itself is tested
separately with a fake transcriber.

RULES:
- The job store is cleared before and after each test
- No test reaches a real transcription service
"""

from __future__ import annotations

import asyncio
import io
import json
import shutil
from unittest.mock import patch

import pytest
from conftest import FakeTranscriber
from fastapi.testclient import TestClient

from audiobook_aligner.server.app import _run_alignment_pipeline, app, job_store
from audiobook_aligner.server.jobs import JobStatus


@pytest.fixture(autouse=True)
def _reset_job_store():
    job_store._jobs.clear()
    yield
    for job in list(job_store._jobs.values()):
        shutil.rmtree(job.work_dir, ignore_errors=True)
    job_store._jobs.clear()


@pytest.fixture
def client():
    with patch(
        "audiobook_aligner.server.app._run_alignment_sync",
        new=lambda job_id, store: None,
    ):
        yield TestClient(app)


def _book_file(book_dict):
    return ("book", ("book.json", io.BytesIO(json.dumps(book_dict).encode()), "application/json"))


def _audio_file(name="part1.mp3", content=b"fake audio"):
    return ("audio", (name, io.BytesIO(content), "audio/mpeg"))


def _submit(client, book_dict, audio=None, **data):
    files = [_book_file(book_dict)] + (audio or [_audio_file()])
    return client.post("/alignments", files=files, data=data)


# ---------------------------------------------------------------------------
# POST /alignments
# ---------------------------------------------------------------------------


class TestCreateAlignment:
    def test_submit_returns_201(self, client, book_dict):
        resp = _submit(client, book_dict)
        assert resp.status_code == 201
        body = resp.json()
        assert body["status"] == "pending"
        assert body["book_id"] == "moby"
        assert body["audio_files"] == ["part1.mp3"]

    def test_saves_book_and_audio_in_order(self, client, book_dict):
        resp = _submit(client, book_dict, audio=[
            _audio_file("part2.mp3", b"two"),
            _audio_file("part1.mp3", b"one"),
        ])
        job = job_store.get_job(resp.json()["id"])
        assert job.audio_files == ["part2.mp3", "part1.mp3"]
        assert (job.work_dir / "part2.mp3").read_bytes() == b"two"
        assert json.loads((job.work_dir / "book.json").read_text())["id"] == "moby"

    def test_provider_and_tolerance_stored(self, client, book_dict):
        resp = _submit(client, book_dict, provider="soniox", tolerance="0.2")
        job = job_store.get_job(resp.json()["id"])
        assert job.config == {"provider": "soniox", "tolerance": 0.2}

    def test_audio_urls_stored_in_order(self, client, book_dict):
        resp = _submit(client, book_dict, audio=[
            _audio_file("part1.mp3"),
            _audio_file("part2.mp3"),
        ], audio_url=["https://cdn.example/1.mp3", "https://cdn.example/2.mp3"])
        job = job_store.get_job(resp.json()["id"])
        assert job.config["audio_urls"] == ["https://cdn.example/1.mp3", "https://cdn.example/2.mp3"]

    def test_audio_url_count_must_match(self, client, book_dict):
        resp = _submit(client, book_dict, audio=[
            _audio_file("part1.mp3"),
            _audio_file("part2.mp3"),
        ], audio_url=["https://cdn.example/1.mp3"])
        assert resp.status_code == 400
        assert "audio_url" in resp.json()["detail"]

    def test_invalid_book_rejected(self, client):
        resp = _submit(client, {"id": "x", "chapters": [{"id": "c"}]})
        assert resp.status_code == 400
        assert "Invalid book" in resp.json()["detail"]
        assert job_store.list_jobs() == []

    def test_unparsable_book_rejected(self, client):
        files = [("book", ("book.json", io.BytesIO(b"{nope"), "application/json")), _audio_file()]
        resp = client.post("/alignments", files=files)
        assert resp.status_code == 400

    def test_unsupported_audio_rejected(self, client, book_dict):
        resp = _submit(client, book_dict, audio=[_audio_file("notes.txt")])
        assert resp.status_code == 400
        assert "Unsupported audio type" in resp.json()["detail"]

    def test_duplicate_audio_names_rejected(self, client, book_dict):
        resp = _submit(client, book_dict, audio=[_audio_file(), _audio_file()])
        assert resp.status_code == 400

    def test_unknown_provider_rejected(self, client, book_dict):
        resp = _submit(client, book_dict, provider="deepgram")
        assert resp.status_code == 400

    def test_tolerance_out_of_range(self, client, book_dict):
        resp = _submit(client, book_dict, tolerance="1.5")
        assert resp.status_code == 400

    def test_too_many_jobs(self, client, book_dict):
        with patch.object(job_store, "max_jobs", 1):
            assert _submit(client, book_dict).status_code == 201
            assert _submit(client, book_dict).status_code == 429


# ---------------------------------------------------------------------------
# GET / DELETE /alignments/{id}
# ---------------------------------------------------------------------------


class TestAlignmentStatus:
    def test_get_status(self, client, book_dict):
        job_id = _submit(client, book_dict).json()["id"]
        resp = client.get("/alignments/{}".format(job_id))
        assert resp.status_code == 200
        body = resp.json()
        assert body["status"] == "pending"
        assert body["summary"] is None

    def test_unknown_job(self, client):
        assert client.get("/alignments/nope").status_code == 404

    def test_result_conflict_until_completed(self, client, book_dict):
        job_id = _submit(client, book_dict).json()["id"]
        assert client.get("/alignments/{}/result".format(job_id)).status_code == 409

    def test_result_when_completed(self, client, book_dict):
        job_id = _submit(client, book_dict).json()["id"]
        result = {
            "book_id": "moby",
            "passages": [],
            "processed_chapters": ["c1"],
            "report": {"summary": {"chapter": {"aligned": 1}}, "outcomes": []},
        }
        job_store.update_job(job_id, status=JobStatus.COMPLETED, result=result)

        assert client.get("/alignments/{}/result".format(job_id)).json() == result
        status = client.get("/alignments/{}".format(job_id)).json()
        assert status["summary"] == {"chapter": {"aligned": 1}}

    def test_failed_job_shows_error(self, client, book_dict):
        job_id = _submit(client, book_dict).json()["id"]
        job_store.update_job(job_id, status=JobStatus.FAILED, error="Audio asset part1.mp3 is unusable")
        body = client.get("/alignments/{}".format(job_id)).json()
        assert body["status"] == "failed"
        assert "unusable" in body["error"]

    def test_delete(self, client, book_dict):
        job_id = _submit(client, book_dict).json()["id"]
        work_dir = job_store.get_job(job_id).work_dir
        assert client.delete("/alignments/{}".format(job_id)).status_code == 204
        assert not work_dir.exists()
        assert client.delete("/alignments/{}".format(job_id)).status_code == 404


# ---------------------------------------------------------------------------
# Providers, health
# ---------------------------------------------------------------------------


class TestMisc:
    def test_providers(self, client, monkeypatch):
        monkeypatch.setenv("OPENAI_API_KEY", "sk-test")
        monkeypatch.delenv("SONIOX_API_KEY", raising=False)
        providers = {p["key"]: p for p in client.get("/providers").json()}
        assert providers["whisper"]["configured"] is True
        assert providers["soniox"]["configured"] is False

    def test_health(self, client):
        assert client.get("/health").json() == {"status": "ok", "version": "0.1.0"}


# ---------------------------------------------------------------------------
# Background runner
# ---------------------------------------------------------------------------


class TestBackgroundRunner:
    def _job(self, book_dict):
        job = job_store.create_job(book_id="moby", audio_files=["part1.mp3"], config={"provider": "whisper"})
        (job.work_dir / "book.json").write_text(json.dumps(book_dict), encoding="utf-8")
        (job.work_dir / "part1.mp3").write_bytes(b"\x00" * 16)
        return job

    def test_completes_with_result(self, book_dict, three_passage_segments):
        job = self._job(book_dict)
        fake = FakeTranscriber([three_passage_segments])
        with patch("audiobook_aligner.server.app.create_transcriber", return_value=fake), \
                patch("audiobook_aligner.core.chunker.probe_duration", return_value=6.0):
            asyncio.run(_run_alignment_pipeline(job.id, job_store))

        done = job_store.get_job(job.id)
        assert done.status == JobStatus.COMPLETED
        assert {p["passage_id"] for p in done.result["passages"]} == {"p1", "p2", "p3"}
        assert sorted(done.result["processed_chapters"]) == ["c1", "c2"]
        assert done.progress

    def _run_with_fake(self, job, segments):
        fake = FakeTranscriber([segments])
        with patch("audiobook_aligner.server.app.create_transcriber", return_value=fake), \
                patch("audiobook_aligner.core.chunker.probe_duration", return_value=6.0):
            asyncio.run(_run_alignment_pipeline(job.id, job_store))
        return job_store.get_job(job.id)

    def test_audio_url_left_unset_without_form_value(self, book_dict, three_passage_segments):
        done = self._run_with_fake(self._job(book_dict), three_passage_segments)
        assert all(p["audio_url"] is None for p in done.result["passages"])

    def test_audio_url_from_job_config(self, book_dict, three_passage_segments):
        job = self._job(book_dict)
        job.config["audio_urls"] = ["https://cdn.example/part1.mp3"]
        done = self._run_with_fake(job, three_passage_segments)
        assert {p["audio_url"] for p in done.result["passages"]} == {"https://cdn.example/part1.mp3"}

    def test_failure_marks_job_failed(self, book_dict):
        job = self._job(book_dict)
        with patch(
            "audiobook_aligner.server.app.create_transcriber",
            side_effect=ValueError("Whisper API key not configured."),
        ):
            asyncio.run(_run_alignment_pipeline(job.id, job_store))

        failed = job_store.get_job(job.id)
        assert failed.status == JobStatus.FAILED
        assert "not configured" in failed.error

    def test_deleted_job_is_ignored(self):
        asyncio.run(_run_alignment_pipeline("gone", job_store))
