from __future__ import annotations
from typing import Optional

import structlog

from ..core.errors import EmptySourceError, SourceTooLargeError
from ..core.models import CompileOutcome, Job, Status
from ..core.settings import Settings
from ..runner.latex_runner import LatexRunner
from .packager import ResultPackager
from .workspace import WorkspaceManager

log = structlog.get_logger(__name__)


class CompileService:
    """
    Orchestrator: validate -> workspace -> compiler -> PDF hoặc diagnostic -> xoá workspace.
    Mọi lỗi trong lúc chạy job đều được chuyển thành CompileOutcome.
    """

    def __init__(
        self,
        settings: Settings,
        workspaces: Optional[WorkspaceManager] = None,
        runner: Optional[LatexRunner] = None,
        packager: Optional[ResultPackager] = None,
    ):
        self.settings = settings
        self.workspaces = workspaces or WorkspaceManager(settings.jobs_dir)
        self.runner = runner or LatexRunner(settings.command(), source_filename=settings.source_filename)
        self.packager = packager or ResultPackager(
            artifact_filename=settings.artifact_filename,
            download_filename=settings.download_filename,
            max_pdf_bytes=settings.max_pdf_bytes,
            max_errors=settings.max_summary_errors,
            lookahead=settings.lookahead_lines,
        )

    def validate(self, source: Optional[str]) -> str:
        if not isinstance(source, str) or not source.strip():
            raise EmptySourceError()
        size = len(source.encode("utf-8"))
        if size > self.settings.max_source_bytes:
            raise SourceTooLargeError(size, self.settings.max_source_bytes)
        return source

    def _internal_failure(self, job: Job, exc: Exception) -> CompileOutcome:
        raw_log = job.raw_log or f"internal error: {type(exc).__name__}: {exc}"
        outcome = self.packager.fail(job, Status.FAILED, "internal_error", raw_log)
        outcome.diagnostic.summary = (
            "An internal error occurred while compiling the document. Please try again.\n"
            + outcome.diagnostic.summary
        )
        job.diagnostic = outcome.diagnostic.summary
        return outcome

    def compile(self, source: Optional[str], user: Optional[str] = None) -> CompileOutcome:
        # client error -> raise trước khi cấp workspace
        job = Job(source=self.validate(source))
        bound = log.bind(job_id=job.job_id, user=user)
        bound.info("compile_started", source_bytes=len(job.source))

        with self.workspaces.workspace(job.job_id) as ws:
            job.workspace = ws
            try:
                job.mark_running()
                result = self.runner.run(job, timeout_s=self.settings.timeout_s, kill_grace_s=self.settings.kill_grace_s)
                outcome = self.packager.package(job, result)
            except Exception as e:
                bound.exception("compile_crashed", error=str(e))
                if job.status in (Status.PENDING, Status.RUNNING):
                    if job.status == Status.PENDING:
                        job.mark_running()
                    outcome = self._internal_failure(job, e)
                else:
                    raise

        bound.info(
            "compile_finished",
            status=outcome.status.value,
            reason=outcome.reason,
            duration_s=job.duration_s,
            pdf_bytes=len(outcome.pdf) if outcome.pdf else 0,
        )
        return outcome
