"""Progress persistence (save/load job checkpoints to disk)."""

from __future__ import annotations

import json
import logging
import os
from datetime import datetime
from pathlib import Path
from typing import TYPE_CHECKING, Any

from .exceptions import InvalidCheckpointError

if TYPE_CHECKING:
    from .models import JobInfo, JobProgress

logger = logging.getLogger(__name__)

# Progress file format version
FORMAT_VERSION = "1.0"

JOB_STATUSES = ("in_progress", "completed")


def save_progress(
    progress_path: Path,
    jobs: dict[str, "JobProgress"],
) -> None:
    """Save all job progress to disk in JSON format.

    The file is written next to its destination and renamed into place, so
    a crash mid-write never leaves a half-written checkpoint behind.

    Args:
        progress_path: Where to save the progress file
        jobs: Dictionary mapping job_id to JobProgress
    """
    data = {
        "format_version": FORMAT_VERSION,
        "jobs": {
            job_id: {
                "url": job.url,
                "location": job.location.to_dict(),
                "status": job.status,
                "created_at": job.created_at,
                "last_checkpoint_at": job.last_checkpoint_at,
                "completed_at": job.completed_at,
            }
            for job_id, job in jobs.items()
        },
    }

    progress_path = Path(progress_path)
    tmp_path = progress_path.with_name(progress_path.name + ".tmp")
    with open(tmp_path, "w", encoding="utf-8") as f:
        json.dump(data, f, separators=(",", ":"))
    os.replace(tmp_path, progress_path)


def read_progress(progress_path: Path) -> dict[str, "JobProgress"] | None:
    """Load job progress from disk, refusing anything malformed.

    Args:
        progress_path: Path to the progress file

    Returns:
        Dictionary mapping job_id to JobProgress, or None if the file is missing

    Raises:
        InvalidCheckpointError: If the file is not a progress file of this
            format version, or any job entry in it is malformed
    """
    try:
        with open(progress_path, "r", encoding="utf-8") as f:
            data = json.load(f)
    except FileNotFoundError:
        return None
    except (json.JSONDecodeError, UnicodeDecodeError) as e:
        raise InvalidCheckpointError(f"{progress_path} is not valid JSON: {e}") from e

    if not isinstance(data, dict):
        raise InvalidCheckpointError(f"{progress_path} is not a progress file")
    if data.get("format_version") != FORMAT_VERSION:
        raise InvalidCheckpointError(
            f"{progress_path} has unsupported format version {data.get('format_version')!r}"
        )

    jobs_data = data.get("jobs", {})
    if not isinstance(jobs_data, dict):
        raise InvalidCheckpointError(f"{progress_path}: 'jobs' must be an object")
    return {
        job_id: _parse_job(job_id, job_data, progress_path)
        for job_id, job_data in jobs_data.items()
    }


def _parse_job(job_id: str, job_data: Any, progress_path: Path) -> "JobProgress":
    from .models import FileLocation, JobProgress

    where = f"Job {job_id!r} in {progress_path}"
    if not isinstance(job_data, dict):
        raise InvalidCheckpointError(f"{where} must be an object")
    if not isinstance(job_data.get("url"), str):
        raise InvalidCheckpointError(f"{where} has no valid 'url'")
    for key in ("created_at", "last_checkpoint_at", "completed_at"):
        value = job_data.get(key)
        if value is None and key == "completed_at":
            continue
        try:
            datetime.fromisoformat(value)
        except (TypeError, ValueError) as e:
            raise InvalidCheckpointError(f"{where} has no valid {key!r}") from e
    if job_data.get("status") not in JOB_STATUSES:
        raise InvalidCheckpointError(f"{where} has unknown status {job_data.get('status')!r}")
    if "location" not in job_data:
        raise InvalidCheckpointError(f"{where} has no location")
    try:
        location = FileLocation.from_dict(job_data["location"])
    except InvalidCheckpointError as e:
        raise InvalidCheckpointError(f"{where}: {e}") from e

    return JobProgress(
        job_id=job_id,
        url=job_data["url"],
        location=location,
        status=job_data["status"],
        created_at=job_data["created_at"],
        last_checkpoint_at=job_data["last_checkpoint_at"],
        completed_at=job_data.get("completed_at"),
    )


def load_progress(progress_path: Path) -> dict[str, "JobProgress"] | None:
    """Load job progress from disk for display.

    Args:
        progress_path: Path to the progress file

    Returns:
        Dictionary mapping job_id to JobProgress, or None if the file is
        missing or unreadable (the latter is logged)
    """
    try:
        return read_progress(progress_path)
    except InvalidCheckpointError as e:
        logger.warning("Ignoring unreadable progress file: %s", e)
        return None


def update_job_progress(progress_path: Path, job: "JobProgress") -> None:
    """Update a single job's progress.

    Performs a read-modify-write operation to update one job while
    preserving all other jobs in the progress file.

    Args:
        progress_path: Path to the progress file
        job: The job progress to update

    Raises:
        InvalidCheckpointError: If the existing file cannot be read; it is
            left untouched
    """
    jobs = read_progress(progress_path) or {}
    jobs[job.job_id] = job
    save_progress(progress_path, jobs)


def delete_job_progress(progress_path: Path, job_id: str) -> bool:
    """Delete a job's progress from the file.

    Args:
        progress_path: Path to the progress file
        job_id: The job ID to delete

    Returns:
        True if the job was found and deleted, False otherwise

    Raises:
        InvalidCheckpointError: If the existing file cannot be read; it is
            left untouched
    """
    jobs = read_progress(progress_path)
    if jobs is None or job_id not in jobs:
        return False

    del jobs[job_id]
    save_progress(progress_path, jobs)
    return True


def list_jobs(progress_path: Path) -> list["JobInfo"]:
    """List all jobs recorded in a progress file.

    Args:
        progress_path: Path to the progress file

    Returns:
        List of JobInfo objects, empty if the file is missing or unreadable
    """
    from .models import JobInfo

    jobs = load_progress(progress_path)
    if not jobs:
        return []
    return [JobInfo.from_progress(job) for job in jobs.values()]
