from __future__ import annotations
import os
import signal
import subprocess
import tempfile
import time
from typing import Dict, List, Optional

import structlog

from ..core.errors import EmptySourceError
from ..core.models import Job, RunResult, Status

log = structlog.get_logger(__name__)

TIMEOUT_MARKER = "[timeout]"
SPAWN_MARKER = "[spawn]"
EXIT_MARKER = "[exit]"


class LatexRunner:
    def __init__(self, command: List[str], source_filename: str = "main.tex", env: Optional[Dict[str, str]] = None):
        if not command:
            raise ValueError("compiler command is empty")
        self.command = list(command)
        self.source_filename = source_filename
        # openout_any=p: TeX không được ghi file ngoài cwd
        self.env = {"openout_any": "p", **(env or {})}

    def write_source(self, job: Job) -> None:
        if not job.source or not job.source.strip():
            raise EmptySourceError()
        if job.workspace is None:
            raise ValueError(f"job {job.job_id} has no workspace")
        (job.workspace / self.source_filename).write_text(job.source, encoding="utf-8")

    @staticmethod
    def _kill_group(proc: subprocess.Popen) -> None:
        try:
            os.killpg(proc.pid, signal.SIGKILL)
        except ProcessLookupError:
            pass

    @staticmethod
    def _read_back(f) -> str:
        f.seek(0)
        return f.read().decode("utf-8", errors="replace")

    def run(self, job: Job, timeout_s: float, kill_grace_s: float = 2.0) -> RunResult:
        """
        Chạy compiler trong workspace của job, giới hạn bằng wall-clock timeout.
        Hết giờ -> SIGKILL cả process group (tectonic/pdflatex có thể sinh tiến trình con).

        stdout/stderr ghi vào file tạm không tên trong workspace thay vì pipe:
        tiến trình con đã thoát khỏi group có thể vẫn giữ fd, nhưng đọc lại file
        không cần chờ EOF nên log dở dang vẫn được trả về.
        """
        self.write_source(job)

        with tempfile.TemporaryFile(dir=job.workspace) as out_f, tempfile.TemporaryFile(dir=job.workspace) as err_f:
            start = time.monotonic()
            try:
                proc = subprocess.Popen(
                    self.command,
                    stdout=out_f,
                    stderr=err_f,
                    stdin=subprocess.DEVNULL,
                    cwd=str(job.workspace),
                    env={**os.environ, **self.env},
                    start_new_session=True,
                )
            except OSError as e:
                # không có executable, không có quyền chạy...
                log.error("compiler_spawn_failed", job_id=job.job_id, cmd=self.command[0], error=str(e))
                return RunResult(
                    status=Status.FAILED,
                    rc=-1,
                    reason="spawn_error",
                    stdout="",
                    stderr=f"{SPAWN_MARKER} could not start '{self.command[0]}': {e}",
                    duration_s=time.monotonic() - start,
                )

            try:
                rc = proc.wait(timeout=timeout_s)
            except subprocess.TimeoutExpired:
                self._kill_group(proc)
                try:
                    proc.wait(timeout=kill_grace_s)
                except subprocess.TimeoutExpired:
                    log.error("compiler_unkillable", job_id=job.job_id, pid=proc.pid)
                log.warning("compiler_timeout", job_id=job.job_id, timeout_s=timeout_s, pid=proc.pid)
                out = self._read_back(out_f)
                err = self._read_back(err_f) + f"\n{TIMEOUT_MARKER} exceeded {timeout_s:g}s"
                return RunResult(
                    status=Status.TIMEOUT,
                    rc=-signal.SIGKILL,
                    reason=f"timeout_{timeout_s:g}s",
                    stdout=out,
                    stderr=err,
                    duration_s=time.monotonic() - start,
                )
            except BaseException:
                self._kill_group(proc)
                proc.wait()
                raise

            dur = time.monotonic() - start
            out = self._read_back(out_f)
            err = self._read_back(err_f)

        if rc == 0:
            return RunResult(status=Status.SUCCEEDED, rc=0, reason=None, stdout=out, stderr=err, duration_s=dur)

        err = err + f"\n{EXIT_MARKER} compiler exited with status {rc}"
        return RunResult(status=Status.FAILED, rc=rc, reason=f"exit_{rc}", stdout=out, stderr=err, duration_s=dur)
