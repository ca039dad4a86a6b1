from __future__ import annotations
from typing import Optional

import structlog

from ..core.models import CompileOutcome, Job, RunResult, Status
from .diagnostics import NO_OUTPUT_TEXT, OUTPUT_MARKER, extract

log = structlog.get_logger(__name__)


class ResultPackager:
    def __init__(
        self,
        artifact_filename: str = "main.pdf",
        download_filename: str = "output.pdf",
        max_pdf_bytes: int = 20 * 1024 * 1024,
        max_errors: int = 3,
        lookahead: int = 3,
    ):
        self.artifact_filename = artifact_filename
        self.download_filename = download_filename
        self.max_pdf_bytes = max_pdf_bytes
        self.max_errors = max_errors
        self.lookahead = lookahead

    def _read_artifact(self, job: Job) -> tuple[Optional[bytes], Optional[str], Optional[str]]:
        """Trả về (pdf, reason, log_note). Không sửa file, chỉ đọc."""
        pdf_path = job.workspace / self.artifact_filename
        # symlink có thể trỏ ra ngoài workspace
        if pdf_path.is_symlink() or not pdf_path.is_file():
            return None, "no_output", f"{OUTPUT_MARKER} {NO_OUTPUT_TEXT}"
        size = pdf_path.stat().st_size
        if size == 0:
            return None, "no_output", f"{OUTPUT_MARKER} {NO_OUTPUT_TEXT} (empty file)"
        if size > self.max_pdf_bytes:
            return None, "output_too_large", (
                f"{OUTPUT_MARKER} PDF output exceeds {self.max_pdf_bytes} bytes ({size} bytes)"
            )
        with open(pdf_path, "rb") as f:
            return f.read(self.max_pdf_bytes + 1), None, None

    def fail(self, job: Job, status: Status, reason: Optional[str], raw_log: str) -> CompileOutcome:
        diag = extract(raw_log, reason=reason, max_errors=self.max_errors, lookahead=self.lookahead)
        job.raw_log = raw_log
        job.diagnostic = diag.summary
        job.finish(status, reason=reason)
        return CompileOutcome(job_id=job.job_id, status=job.status, reason=reason, diagnostic=diag)

    def package(self, job: Job, result: RunResult) -> CompileOutcome:
        raw_log = result.raw_log
        if not result.exit_ok:
            return self.fail(job, result.status, result.reason, raw_log)

        # một số toolchain exit 0 mà không sinh PDF
        pdf, reason, note = self._read_artifact(job)
        if pdf is None:
            log.warning("artifact_missing", job_id=job.job_id, reason=reason)
            raw_log = f"{raw_log}\n{note}" if raw_log else note
            return self.fail(job, Status.FAILED, reason, raw_log)

        job.raw_log = raw_log
        job.finish(Status.SUCCEEDED)
        return CompileOutcome(
            job_id=job.job_id,
            status=job.status,
            pdf=pdf,
            filename=self.download_filename,
        )
