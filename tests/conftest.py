import sys
from pathlib import Path

import pytest
from fastapi.testclient import TestClient

from texbox.api import create_app
from texbox.auth import issue_token
from texbox.core.models import Job
from texbox.core.settings import Settings
from texbox.runner.latex_runner import LatexRunner
from texbox.services.job_service import CompileService
from texbox.services.workspace import WorkspaceManager

FAKE_LATEX = Path(__file__).parent / "fake_latex.py"
SECRET = "test-secret"

DOC = "\\documentclass{article}\n\\begin{document}\nHello\n\\end{document}\n"


def _alive(pid: int) -> bool:
    # zombie (Z) hoặc không còn /proc/<pid> -> đã chết
    try:
        stat = Path(f"/proc/{pid}/stat").read_text()
    except FileNotFoundError:
        return False
    return stat.rsplit(")", 1)[1].split()[0] != "Z"


@pytest.fixture
def jobs_dir(tmp_path):
    return tmp_path / "jobs"


@pytest.fixture
def settings(jobs_dir):
    return Settings(
        jobs_dir=jobs_dir,
        compiler=sys.executable,
        compiler_args=[str(FAKE_LATEX)],
        timeout_s=5,
        kill_grace_s=2,
        jwt_secret=SECRET,
        log_level="WARNING",
    )


@pytest.fixture
def workspaces(jobs_dir):
    return WorkspaceManager(jobs_dir)


@pytest.fixture
def runner(settings):
    return LatexRunner(settings.command())


@pytest.fixture
def service(settings):
    return CompileService(settings)


@pytest.fixture
def make_job(workspaces):
    made = []

    def _make(source=DOC):
        job = Job(source=source)
        job.workspace = workspaces.acquire(job.job_id)
        made.append(job)
        return job

    yield _make
    for job in made:
        workspaces.release(job.workspace)


@pytest.fixture
def client(settings):
    with TestClient(create_app(settings)) as c:
        yield c


@pytest.fixture
def auth_headers():
    return {"Authorization": f"Bearer {issue_token(SECRET, 1, 'alice')}"}
