"""FastAPI application exposing alignment jobs over HTTP.

WHY: The application that owns books and narration files needs to hand
an alignment off and collect the word timestamps later, without holding
a connection open for the whole run. FastAPI gives request validation,
multipart uploads, background tasks, and OpenAPI docs.

HOW: POST /alignments stores the uploaded book JSON and audio files in a
job work directory and schedules the pipeline with BackgroundTasks.
Clients poll GET /alignments/{id} and fetch GET /alignments/{id}/result
when the job has completed. Finished jobs expire via a periodic cleanup
task started in the app lifespan.

RULES:
- The book is validated (BOOK_SCHEMA) before a job is created
- Audio files keep their upload order and must have supported extensions
- Optional audio_url form values (one per file) become the result's
  audio URLs; without them the URL is left unset
- Errors use the ErrorResponse schema (400 bad input, 404 unknown job,
  409 result not ready, 429 too many jobs)
- The background runner marks the job failed on any exception
"""

from __future__ import annotations

import asyncio
import dataclasses
import json
import logging
from contextlib import asynccontextmanager
from pathlib import Path
from typing import Annotated, List, Optional

from fastapi import BackgroundTasks, FastAPI, File, Form, HTTPException, UploadFile
from fastapi.responses import Response

from audiobook_aligner import __version__
from audiobook_aligner.config import (
    DEFAULT_PROVIDER,
    MATCH_TOLERANCE,
    SUPPORTED_AUDIO_FORMATS,
    AlignerSettings,
    load_api_key,
)
from audiobook_aligner.core.ir import AudioAsset
from audiobook_aligner.persistence import BookFormatError, JsonResultSink, book_from_dict, load_book
from audiobook_aligner.pipeline import AlignmentPipeline
from audiobook_aligner.server.jobs import Job, JobStatus, JobStore
from audiobook_aligner.server.models import (
    ErrorResponse,
    HealthResponse,
    JobCreatedResponse,
    JobResponse,
    ProviderInfo,
)
from audiobook_aligner.transcription import TRANSCRIBERS, create_transcriber

logger = logging.getLogger(__name__)

_CLEANUP_INTERVAL_S = 300

job_store = JobStore()


async def _periodic_cleanup() -> None:
    while True:
        await asyncio.sleep(_CLEANUP_INTERVAL_S)
        job_store.cleanup_expired()


@asynccontextmanager
async def lifespan(app: FastAPI):
    task = asyncio.create_task(_periodic_cleanup())
    yield
    task.cancel()
    try:
        await task
    except asyncio.CancelledError:
        pass


app = FastAPI(
    lifespan=lifespan,
    title="Audiobook Aligner API",
    description=(
        "Align an audiobook's text passages to its narration. Submit a book "
        "JSON and its audio files, poll the job, and download per-word "
        "timestamps for every aligned passage."
    ),
    version=__version__,
    docs_url="/docs",
    redoc_url="/redoc",
)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _job_to_response(job: Job) -> JobResponse:
    summary = None
    if job.result is not None:
        summary = job.result.get("report", {}).get("summary")
    return JobResponse(
        id=job.id,
        status=job.status.value,
        book_id=job.book_id,
        audio_files=job.audio_files,
        created_at=job.created_at,
        provider=job.config.get("provider", DEFAULT_PROVIDER),
        tolerance=job.config.get("tolerance", MATCH_TOLERANCE),
        progress=job.progress,
        error=job.error,
        summary=summary,
    )


def _audio_filename(upload: UploadFile) -> str:
    """Sanitized upload name; raises 400 for unsupported extensions."""
    filename = Path(upload.filename or "audio").name
    ext = Path(filename).suffix.lower()
    if ext not in SUPPORTED_AUDIO_FORMATS:
        raise HTTPException(
            status_code=400,
            detail="Unsupported audio type '{}'. Supported formats: {}".format(
                ext, ", ".join(sorted(SUPPORTED_AUDIO_FORMATS))
            ),
        )
    return filename


async def _run_alignment_pipeline(job_id: str, store: JobStore) -> None:
    """Run one stored job through AlignmentPipeline and record the result."""
    job = store.get_job(job_id)
    if job is None:
        return

    try:
        store.update_job(job_id, status=JobStatus.RUNNING)
        book = load_book(job.book_path)
        urls = job.config.get("audio_urls") or [None] * len(job.audio_files)
        assets = [
            AudioAsset(data=path.read_bytes(), filename=path.name, url=url)
            for path, url in zip(job.audio_paths, urls)
        ]
        settings = dataclasses.replace(
            AlignerSettings.from_env(),
            tolerance=job.config.get("tolerance", MATCH_TOLERANCE),
        )
        transcriber = create_transcriber(job.config.get("provider", DEFAULT_PROVIDER))
        sink = JsonResultSink(book.id)
        pipeline = AlignmentPipeline(
            transcriber,
            settings=settings,
            sink=sink,
            on_status=lambda msg: store.update_job(job_id, progress=msg),
        )
        alignment = await pipeline.run(book, assets)
        store.update_job(job_id, status=JobStatus.COMPLETED, result=sink.to_dict(alignment))
        logger.info("Job %s completed: %s", job_id, alignment.report.summary())
    except Exception as exc:
        logger.exception("Alignment failed for job %s", job_id)
        store.update_job(job_id, status=JobStatus.FAILED, error=str(exc))


def _run_alignment_sync(job_id: str, store: JobStore) -> None:
    """BackgroundTasks entry point; runs the async pipeline in its own loop."""
    asyncio.run(_run_alignment_pipeline(job_id, store))


# ---------------------------------------------------------------------------
# Endpoints: Alignments
# ---------------------------------------------------------------------------


@app.post(
    "/alignments",
    response_model=JobCreatedResponse,
    status_code=201,
    tags=["alignments"],
    summary="Submit an alignment job",
    description=(
        "Upload a book JSON and its narration audio files (in playback "
        "order). Returns a job id immediately; poll GET /alignments/{id}."
    ),
    responses={
        400: {"model": ErrorResponse, "description": "Invalid book, audio, or parameters"},
        429: {"model": ErrorResponse, "description": "Too many concurrent jobs"},
    },
)
async def create_alignment(
    background_tasks: BackgroundTasks,
    book: Annotated[
        UploadFile,
        File(description="Book JSON with chapters and passages."),
    ],
    audio: Annotated[
        List[UploadFile],
        File(description="Narration audio files in playback order."),
    ],
    audio_url: Annotated[
        Optional[List[str]],
        Form(description="Public URL of each audio file, in the same order (optional)."),
    ] = None,
    provider: Annotated[
        Optional[str],
        Form(description="Transcription provider ('whisper' or 'soniox')."),
    ] = None,
    tolerance: Annotated[
        Optional[float],
        Form(description="Accepted edit distance as a fraction of passage length, in [0, 1)."),
    ] = None,
) -> JobCreatedResponse:
    provider = provider or DEFAULT_PROVIDER
    if provider not in TRANSCRIBERS:
        raise HTTPException(
            status_code=400,
            detail="Unknown provider '{}'. Available: {}".format(
                provider, ", ".join(sorted(TRANSCRIBERS))
            ),
        )
    if tolerance is None:
        tolerance = MATCH_TOLERANCE
    if not 0.0 <= tolerance < 1.0:
        raise HTTPException(status_code=400, detail="Tolerance must be in [0, 1).")

    raw_book = await book.read()
    try:
        parsed = book_from_dict(json.loads(raw_book))
    except (ValueError, UnicodeDecodeError) as exc:
        # json.JSONDecodeError and BookFormatError are both ValueErrors
        raise HTTPException(status_code=400, detail="Invalid book: {}".format(exc))

    filenames = [_audio_filename(upload) for upload in audio]
    if len(set(filenames)) != len(filenames):
        raise HTTPException(status_code=400, detail="Audio filenames must be unique.")
    if audio_url is not None and len(audio_url) != len(audio):
        raise HTTPException(
            status_code=400,
            detail="Expected {} audio_url value(s), got {}.".format(len(audio), len(audio_url)),
        )

    config = {"provider": provider, "tolerance": tolerance}
    if audio_url is not None:
        config["audio_urls"] = list(audio_url)

    try:
        job = job_store.create_job(
            book_id=parsed.id,
            audio_files=filenames,
            config=config,
        )
    except ValueError as exc:
        raise HTTPException(status_code=429, detail=str(exc))

    job.book_path.write_bytes(raw_book)
    for upload, path in zip(audio, job.audio_paths):
        path.write_bytes(await upload.read())

    background_tasks.add_task(_run_alignment_sync, job.id, job_store)

    return JobCreatedResponse(
        id=job.id,
        status=job.status.value,
        book_id=job.book_id,
        audio_files=job.audio_files,
    )


@app.get(
    "/alignments/{job_id}",
    response_model=JobResponse,
    tags=["alignments"],
    summary="Get alignment job status",
    responses={404: {"model": ErrorResponse, "description": "Job not found"}},
)
async def get_alignment(job_id: str) -> JobResponse:
    job = job_store.get_job(job_id)
    if job is None:
        raise HTTPException(status_code=404, detail="Job not found: {}".format(job_id))
    return _job_to_response(job)


@app.get(
    "/alignments/{job_id}/result",
    tags=["alignments"],
    summary="Download the alignment result",
    description=(
        "Word timestamps per passage, processed chapter ids, and the "
        "per-unit report. Available once the job has completed."
    ),
    responses={
        404: {"model": ErrorResponse, "description": "Job not found"},
        409: {"model": ErrorResponse, "description": "Job not yet completed"},
    },
)
async def get_alignment_result(job_id: str) -> dict:
    job = job_store.get_job(job_id)
    if job is None:
        raise HTTPException(status_code=404, detail="Job not found: {}".format(job_id))
    if job.status != JobStatus.COMPLETED or job.result is None:
        raise HTTPException(
            status_code=409,
            detail="Job is not completed (current status: {}).".format(job.status.value),
        )
    return job.result


@app.delete(
    "/alignments/{job_id}",
    status_code=204,
    tags=["alignments"],
    summary="Delete an alignment job",
    responses={404: {"model": ErrorResponse, "description": "Job not found"}},
)
async def delete_alignment(job_id: str) -> Response:
    if not job_store.delete_job(job_id):
        raise HTTPException(status_code=404, detail="Job not found: {}".format(job_id))
    return Response(status_code=204)


# ---------------------------------------------------------------------------
# Endpoints: Providers, Health
# ---------------------------------------------------------------------------


def _is_configured(provider: str) -> bool:
    try:
        load_api_key(provider)
    except ValueError:
        return False
    return True


@app.get(
    "/providers",
    response_model=List[ProviderInfo],
    tags=["providers"],
    summary="List transcription providers",
)
async def list_providers() -> List[ProviderInfo]:
    return [
        ProviderInfo(key=key, name=cls.__name__, configured=_is_configured(key))
        for key, cls in sorted(TRANSCRIBERS.items())
    ]


@app.get(
    "/health",
    response_model=HealthResponse,
    tags=["health"],
    summary="Health check",
)
async def health_check() -> HealthResponse:
    return HealthResponse(status="ok", version=__version__)


def run_api():
    """Entry point for the audiobook-aligner-api console script."""
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8000)
