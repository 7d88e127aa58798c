"""TDF interchange endpoints.

Upload, preview, background import and export of Tournament Director Files:

  POST   /api/tournaments/{id}/files                     upload a .tdf
  GET    /api/tournaments/{id}/files                     list uploads
  POST   /api/tournaments/{id}/files/{file_id}/preview   decode + match, no writes
  POST   /api/tournaments/{id}/process                   start an import job
  GET    /api/tournaments/{id}/jobs[/{job_id}]           job status
  DELETE /api/tournaments/{id}/jobs/{job_id}             cancel a job
  GET    /api/tournaments/{id}/tdf-download              export roster as .tdf

No authentication happens here; the caller's identity arrives in X-User-Id
from the gateway and is only recorded.
"""

import logging
import os
from datetime import datetime
from typing import List, Optional

from fastapi import APIRouter, Depends, File, Header, HTTPException, Query, Response, UploadFile
from pydantic import BaseModel, ConfigDict
from sqlmodel import Session, select

from tdfbridge.config import TDF_ALLOWED_EXTENSIONS, TDF_ID_MAX_ATTEMPTS, TDF_MAX_UPLOAD_BYTES
from tdfbridge.database import get_session
from tdfbridge.exceptions import (
    BlobNotFoundError,
    IdentifierExhaustedError,
    TDFConfigurationError,
    TDFConsistencyError,
    TDFStructureError,
)
from tdfbridge.models.participant import ParticipantStatus, TournamentParticipant
from tdfbridge.models.tournament import Tournament
from tdfbridge.models.tournament_file import TournamentFile
from tdfbridge.services.blob_store import BlobStore, build_upload_key, get_blob_store
from tdfbridge.services.import_report import ImportReport
from tdfbridge.services.job_manager import BackgroundJob, JobManager, JobOptions, JobState, get_job_manager
from tdfbridge.services.reconciler import ParticipantReconciler, assign_missing_player_ids, ensure_organizer_popid
from tdfbridge.services.tdf_decoder import compare_with_tournament, decode_tdf, extract_tournament_summary
from tdfbridge.services.tdf_encoder import (
    ensure_valid_export,
    generate_filename,
    generate_from_scratch,
    regenerate_with_players,
)
from tdfbridge.services.tdf_schema import TDFTournamentInfo, TournamentSummary

logger = logging.getLogger(__name__)

router = APIRouter(tags=["tdf"])

EXPORTED_STATUSES = (ParticipantStatus.registered.value, ParticipantStatus.confirmed.value)


# ---------------------------------------------------------------------------
# Request / Response models
# ---------------------------------------------------------------------------


class TournamentFileResponse(BaseModel):
    id: int
    tournament_id: int
    file_name: str
    file_type: str
    file_size: int
    uploaded_by: Optional[str]
    uploaded_at: datetime

    model_config = ConfigDict(from_attributes=True)


class InvalidEntry(BaseModel):
    player_name: str
    player_id: str
    errors: List[str]


class PreviewResponse(BaseModel):
    file_id: int
    summary: TournamentSummary
    discrepancies: List[str]
    warnings: List[str]
    invalid_entries: List[InvalidEntry]
    report: ImportReport  # Dry-run match results


class ProcessRequest(BaseModel):
    file_id: int
    generate_report: bool = True
    update_data: bool = True


class ProcessResponse(BaseModel):
    job_id: str
    state: JobState


class CancelResponse(BaseModel):
    job_id: str
    cancelled: bool


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _get_tournament_or_404(session: Session, tournament_id: int) -> Tournament:
    tournament = session.get(Tournament, tournament_id)
    if not tournament:
        raise HTTPException(status_code=404, detail="Tournament not found")
    return tournament


def _get_file_or_404(session: Session, tournament_id: int, file_id: int) -> TournamentFile:
    record = session.get(TournamentFile, file_id)
    if not record or record.tournament_id != tournament_id:
        raise HTTPException(status_code=404, detail="File not found")
    return record


def _get_job_or_error(manager: JobManager, tournament_id: int, job_id: str) -> BackgroundJob:
    job = manager.get_job(job_id)
    if job is None:
        raise HTTPException(status_code=404, detail="Job not found")
    if job.tournament_id != tournament_id:
        raise HTTPException(status_code=403, detail="Job belongs to a different tournament")
    return job


def _structure_error(exc: TDFStructureError) -> HTTPException:
    return HTTPException(status_code=400, detail={"message": "Invalid TDF file", "errors": exc.errors})


def _exported_participants(session: Session, tournament_id: int) -> List[TournamentParticipant]:
    return session.exec(
        select(TournamentParticipant)
        .where(TournamentParticipant.tournament_id == tournament_id)
        .where(TournamentParticipant.status.in_(EXPORTED_STATUSES))
        .order_by(TournamentParticipant.registration_date, TournamentParticipant.id)
    ).all()


# ---------------------------------------------------------------------------
# Files
# ---------------------------------------------------------------------------


@router.post("/tournaments/{tournament_id}/files", response_model=TournamentFileResponse, status_code=201)
def upload_tdf_file(
    tournament_id: int,
    file: UploadFile = File(...),
    x_user_id: Optional[str] = Header(default=None),
    session: Session = Depends(get_session),
    blob_store: BlobStore = Depends(get_blob_store),
):
    """Store an uploaded TDF. Parsing happens at preview or import time."""
    _get_tournament_or_404(session, tournament_id)

    file_name = file.filename or ""
    extension = os.path.splitext(file_name)[1].lower()
    if extension not in TDF_ALLOWED_EXTENSIONS:
        raise HTTPException(
            status_code=400,
            detail=f"Unsupported file type '{extension or file_name}'. Allowed: {', '.join(TDF_ALLOWED_EXTENSIONS)}",
        )

    content = file.file.read(TDF_MAX_UPLOAD_BYTES + 1)
    if len(content) > TDF_MAX_UPLOAD_BYTES:
        raise HTTPException(status_code=413, detail=f"File exceeds {TDF_MAX_UPLOAD_BYTES} bytes")
    if not content:
        raise HTTPException(status_code=400, detail="File is empty")

    key = blob_store.upload(build_upload_key(tournament_id, file_name), content)
    record = TournamentFile(
        tournament_id=tournament_id,
        file_name=file_name,
        file_path=key,
        file_type=extension.lstrip("."),
        file_size=len(content),
        uploaded_by=x_user_id,
    )
    session.add(record)
    session.commit()
    session.refresh(record)

    logger.info("Uploaded %s (%d bytes) to tournament %s as file %s", file_name, len(content), tournament_id, record.id)
    return record


@router.get("/tournaments/{tournament_id}/files", response_model=List[TournamentFileResponse])
def list_tdf_files(tournament_id: int, session: Session = Depends(get_session)):
    """List uploaded files, newest first"""
    _get_tournament_or_404(session, tournament_id)
    return session.exec(
        select(TournamentFile)
        .where(TournamentFile.tournament_id == tournament_id)
        .order_by(TournamentFile.uploaded_at.desc(), TournamentFile.id.desc())
    ).all()


@router.post("/tournaments/{tournament_id}/files/{file_id}/preview", response_model=PreviewResponse)
def preview_tdf_file(
    tournament_id: int,
    file_id: int,
    session: Session = Depends(get_session),
    blob_store: BlobStore = Depends(get_blob_store),
):
    """Decode a stored file and show what an import would do, without writing anything."""
    tournament = _get_tournament_or_404(session, tournament_id)
    record = _get_file_or_404(session, tournament_id, file_id)

    try:
        document = decode_tdf(blob_store.read(record.file_path))
    except BlobNotFoundError:
        raise HTTPException(status_code=404, detail="File content missing from storage")
    except TDFStructureError as e:
        raise _structure_error(e)

    summary = extract_tournament_summary(document)
    return PreviewResponse(
        file_id=record.id,
        summary=summary,
        discrepancies=compare_with_tournament(summary, tournament),
        warnings=document.warnings,
        invalid_entries=[
            InvalidEntry(player_name=p.name, player_id=p.userid, errors=p.errors) for p in document.invalid_players
        ],
        report=ParticipantReconciler(session).verify(document.players),
    )


# ---------------------------------------------------------------------------
# Import jobs
# ---------------------------------------------------------------------------


@router.post("/tournaments/{tournament_id}/process", response_model=ProcessResponse, status_code=202)
def process_tdf_file(
    tournament_id: int,
    request: ProcessRequest,
    x_user_id: Optional[str] = Header(default=None),
    session: Session = Depends(get_session),
    manager: JobManager = Depends(get_job_manager),
):
    """Queue a background import of an uploaded file"""
    _get_tournament_or_404(session, tournament_id)
    _get_file_or_404(session, tournament_id, request.file_id)

    job_id = manager.create_job(
        tournament_id,
        request.file_id,
        x_user_id,
        JobOptions(generate_report=request.generate_report, update_data=request.update_data),
    )
    job = manager.get_job(job_id)
    return ProcessResponse(job_id=job_id, state=job.state)


@router.get("/tournaments/{tournament_id}/jobs", response_model=List[BackgroundJob])
def list_jobs(tournament_id: int, manager: JobManager = Depends(get_job_manager)):
    """Jobs for a tournament, newest first"""
    return manager.get_jobs_for_tournament(tournament_id)


@router.get("/tournaments/{tournament_id}/jobs/{job_id}", response_model=BackgroundJob)
def get_job_status(tournament_id: int, job_id: str, manager: JobManager = Depends(get_job_manager)):
    return _get_job_or_error(manager, tournament_id, job_id)


@router.delete("/tournaments/{tournament_id}/jobs/{job_id}", response_model=CancelResponse)
def cancel_job(tournament_id: int, job_id: str, manager: JobManager = Depends(get_job_manager)):
    _get_job_or_error(manager, tournament_id, job_id)
    return CancelResponse(job_id=job_id, cancelled=manager.cancel_job(job_id))


# ---------------------------------------------------------------------------
# Export
# ---------------------------------------------------------------------------


@router.get("/tournaments/{tournament_id}/tdf-download")
def download_tdf(
    tournament_id: int,
    from_original: bool = Query(default=False),
    session: Session = Depends(get_session),
    blob_store: BlobStore = Depends(get_blob_store),
):
    """
    Export registered and confirmed participants as a TDF.

    With from_original, the header of the latest uploaded file is reused;
    otherwise the header is built from the tournament record.
    """
    tournament = _get_tournament_or_404(session, tournament_id)

    try:
        if not from_original:
            ensure_organizer_popid(session, tournament)
        assign_missing_player_ids(session, tournament_id, TDF_ID_MAX_ATTEMPTS)
        participants = _exported_participants(session, tournament_id)

        if from_original:
            latest = session.exec(
                select(TournamentFile)
                .where(TournamentFile.tournament_id == tournament_id)
                .order_by(TournamentFile.uploaded_at.desc(), TournamentFile.id.desc())
            ).first()
            if latest is None:
                raise HTTPException(status_code=404, detail="No uploaded TDF to export from")
            document = decode_tdf(blob_store.read(latest.file_path))
            generated = regenerate_with_players(document, participants)
        else:
            generated = generate_from_scratch(TDFTournamentInfo.from_tournament(tournament), participants)

        ensure_valid_export(generated)
    except BlobNotFoundError:
        raise HTTPException(status_code=404, detail="File content missing from storage")
    except TDFStructureError as e:
        raise _structure_error(e)
    except TDFConsistencyError:
        raise HTTPException(status_code=500, detail="Generated TDF failed validation")
    except (TDFConfigurationError, IdentifierExhaustedError) as e:
        logger.error("TDF export for tournament %s failed: %s", tournament_id, e)
        raise HTTPException(status_code=500, detail=str(e))

    filename = generate_filename(generated.metadata)
    logger.info("Exported %d participants for tournament %s as %s", generated.player_count, tournament_id, filename)
    return Response(
        content=generated.xml_content,
        media_type="application/xml",
        headers={"Content-Disposition": f'attachment; filename="{filename}"'},
    )
