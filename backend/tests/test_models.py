import pytest

from models.batch import Batch, BatchProgress, BatchStatus
from models.job import Job, JobStatus, VideoResult, is_valid_status_transition
from models.provider import RemoteJob

EDGES = {
    (JobStatus.PENDING, JobStatus.PROCESSING),
    (JobStatus.PENDING, JobStatus.CANCELLED),
    (JobStatus.PROCESSING, JobStatus.COMPLETED),
    (JobStatus.PROCESSING, JobStatus.FAILED),
    (JobStatus.PROCESSING, JobStatus.CANCELLED),
}


def test_only_the_five_edges_are_valid():
    for current in JobStatus:
        for target in JobStatus:
            assert is_valid_status_transition(current, target) == ((current, target) in EDGES)


@pytest.mark.parametrize(
    "counts, percentage",
    [
        ({"total": 8, "completed": 1}, 13),
        ({"total": 3, "completed": 1}, 33),
        ({"total": 3, "completed": 2}, 67),
        ({"total": 5, "completed": 3, "failed": 2}, 100),
        ({"total": 4, "pending": 4}, 0),
        ({"total": 0}, 0),
    ],
)
def test_percentage_rounds_half_up(counts, percentage):
    assert BatchProgress.calculate(**counts).percentage == percentage


@pytest.mark.parametrize(
    "counts, current, expected",
    [
        ({"completed": 5}, BatchStatus.PROCESSING, BatchStatus.COMPLETED),
        ({"completed": 3, "failed": 2}, BatchStatus.PROCESSING, BatchStatus.PARTIAL),
        ({"completed": 1, "cancelled": 4}, BatchStatus.PROCESSING, BatchStatus.PARTIAL),
        ({"failed": 3, "cancelled": 2}, BatchStatus.PROCESSING, BatchStatus.FAILED),
        ({"pending": 5}, BatchStatus.PENDING, BatchStatus.PENDING),
        ({"pending": 4, "processing": 1}, BatchStatus.PENDING, BatchStatus.PROCESSING),
        ({"pending": 4, "failed": 1}, BatchStatus.PENDING, BatchStatus.PROCESSING),
        ({"completed": 5}, BatchStatus.CANCELLED, BatchStatus.CANCELLED),
        ({"pending": 5}, BatchStatus.FAILED, BatchStatus.FAILED),
    ],
)
def test_derive_status(counts, current, expected):
    assert BatchProgress.calculate(total=5, **counts).derive_status(current) == expected


def test_new_batch_and_serialisation():
    batch = Batch.new(["job_a", "job_b"], name="promo")
    data = batch.to_dict()

    assert batch.status == BatchStatus.PENDING
    assert data["job_ids"] == ["job_a", "job_b"]
    assert data["progress"]["pending"] == 2
    assert data["completed_at"] is None
    assert data["created_at"].endswith("+00:00")


def test_job_serialisation_includes_result():
    job = Job.new("a calm lake")
    job.result = VideoResult(video_url="https://cdn.test/a.mp4", duration=5, width=1280, height=720)
    data = job.to_dict()

    assert data["id"].startswith("job_")
    assert data["status"] == "pending"
    assert data["priority"] == "normal"
    assert data["result"]["resolution"] == "1280x720"
    assert data["result"]["format"] == "mp4"


def test_remote_job_accepts_either_seconds_field():
    assert RemoteJob.from_dict({"id": "v", "status": "queued", "n_seconds": 4}).seconds == 4
    assert RemoteJob.from_dict({"id": "v", "status": "queued", "seconds": "6"}).seconds == 6
    assert RemoteJob.from_dict({"id": "v", "status": "queued"}).generations == []
