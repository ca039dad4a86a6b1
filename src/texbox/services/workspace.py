from __future__ import annotations
import shutil
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator, List

import structlog

from ..core.utils import is_job_id

log = structlog.get_logger(__name__)


class WorkspaceManager:
    """
    Thư mục làm việc theo job, tất cả nằm dưới một job root:
      <jobs_dir>/<job_id>/
        ├─ main.tex      (source user gửi)
        └─ main.pdf, main.log, ... (do compiler sinh ra)
    Mỗi job chỉ đọc/ghi trong thư mục của nó; thư mục bị xoá khi job kết thúc.
    """

    def __init__(self, jobs_dir: Path):
        # đảm bảo là absolute path
        self.jobs_dir = Path(jobs_dir).expanduser().resolve()
        self.jobs_dir.mkdir(mode=0o700, parents=True, exist_ok=True)

    def _inside_root(self, path: Path) -> bool:
        return Path(path).resolve().parent == self.jobs_dir

    def acquire(self, job_id: str) -> Path:
        if not is_job_id(job_id):
            raise ValueError(f"invalid job id: {job_id!r}")
        p = self.jobs_dir / job_id
        # job root có thể bị dọn (tmpfiles.d, thao tác tay) khi service đang chạy
        self.jobs_dir.mkdir(mode=0o700, parents=True, exist_ok=True)
        # exist_ok=False: trùng tên là bug, không được dùng lại thư mục của job khác
        p.mkdir(mode=0o700)
        log.debug("workspace_acquired", job_id=job_id, path=str(p))
        return p

    def release(self, path: Path) -> None:
        path = Path(path)
        if not self._inside_root(path):
            raise ValueError(f"refusing to remove {path}: outside job root {self.jobs_dir}")

        # đã bị xoá một phần hoặc toàn bộ -> không lỗi, xoá tiếp phần còn lại
        for _ in range(3):
            try:
                shutil.rmtree(path)
                break
            except FileNotFoundError:
                if not path.exists():
                    break
            except OSError:
                log.error("workspace_release_failed", path=str(path), exc_info=True)
                raise
        log.debug("workspace_released", path=str(path))

    @contextmanager
    def workspace(self, job_id: str) -> Iterator[Path]:
        p = self.acquire(job_id)
        try:
            yield p
        finally:
            self.release(p)

    def active(self) -> List[Path]:
        return sorted(p for p in self.jobs_dir.iterdir() if p.is_dir() and is_job_id(p.name))
