"""
Import Job Executor: the work behind one background TDF import.

Steps, strictly in order:
  1. load the file record and the tournament
  2. read the file bytes from the blob store
  3. decode and cross-check the header against the tournament
  4. reconcile (persisting when update_data) or verify (report only)

Faults propagate to the JobManager, which marks the job failed. Participants
committed before a fault or a cancellation stay committed.
"""

import logging
from typing import TYPE_CHECKING, List, Optional

from pydantic import BaseModel, Field
from sqlalchemy.engine import Engine
from sqlmodel import Session

from tdfbridge.models.tournament import Tournament
from tdfbridge.models.tournament_file import TournamentFile
from tdfbridge.services.blob_store import BlobStore
from tdfbridge.services.import_report import ImportReport, format_import_report
from tdfbridge.services.reconciler import ParticipantReconciler
from tdfbridge.services.tdf_decoder import compare_with_tournament, decode_tdf, extract_tournament_summary

if TYPE_CHECKING:
    from tdfbridge.services.job_manager import BackgroundJob, JobContext

logger = logging.getLogger(__name__)


class ImportJobResult(BaseModel):
    file_id: int
    file_name: str
    tdf_tournament_id: str
    player_count: int
    invalid_entries: int
    data_updated: bool
    warnings: List[str] = Field(default_factory=list)
    discrepancies: List[str] = Field(default_factory=list)
    report: Optional[ImportReport] = None
    report_text: Optional[str] = None


class ImportJobExecutor:
    def __init__(self, blob_store: BlobStore, engine: Engine):
        self.blob_store = blob_store
        self.engine = engine

    def execute(self, job: "BackgroundJob", context: "JobContext") -> ImportJobResult:
        """
        Run one import job to completion.

        Raises:
            ValueError: file or tournament record missing
            BlobNotFoundError: file bytes missing from the blob store
            TDFStructureError: document unusable
            JobCancelled: cancellation observed at a checkpoint
        """
        with Session(self.engine) as session:
            context.progress(10, "Loading file record")
            file_record = session.get(TournamentFile, job.file_id)
            if file_record is None or file_record.tournament_id != job.tournament_id:
                raise ValueError(f"File {job.file_id} not found for tournament {job.tournament_id}")
            tournament = session.get(Tournament, job.tournament_id)
            if tournament is None:
                raise ValueError(f"Tournament {job.tournament_id} not found")

            context.checkpoint()
            context.progress(20, "Reading file")
            content = self.blob_store.read(file_record.file_path)

            context.progress(30, "Decoding TDF")
            document = decode_tdf(content)
            discrepancies = compare_with_tournament(extract_tournament_summary(document), tournament)

            context.checkpoint()
            report: Optional[ImportReport] = None
            reconciler = ParticipantReconciler(session)
            if job.options.update_data:
                context.progress(50, "Registering participants")
                report = reconciler.reconcile(tournament.id, document.players, checkpoint=context.checkpoint)
            elif job.options.generate_report:
                context.progress(50, "Matching participants")
                report = reconciler.verify(document.players, checkpoint=context.checkpoint)

            context.checkpoint()
            context.progress(90, "Building report")
            include_report = job.options.generate_report and report is not None
            result = ImportJobResult(
                file_id=file_record.id,
                file_name=file_record.file_name,
                tdf_tournament_id=document.header.id,
                player_count=document.player_count,
                invalid_entries=len(document.invalid_players),
                data_updated=job.options.update_data,
                warnings=list(document.warnings) + (list(report.warnings) if report is not None else []),
                discrepancies=discrepancies,
                report=report if include_report else None,
                report_text=format_import_report(report) if include_report else None,
            )

        if report is not None:
            logger.info(
                "Job %s imported %d of %d participants into tournament %s",
                job.id,
                report.imported_participants,
                report.total_participants,
                job.tournament_id,
            )
        return result
