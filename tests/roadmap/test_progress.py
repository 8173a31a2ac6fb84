from datetime import date

from core.roadmap.models import FeatureNode, FeatureStatus, MilestoneNode, TaskNode, TaskStatus
from core.roadmap.progress import (
    completed_task_count,
    feature_progress,
    feature_progress_from_tasks,
    milestone_progress,
    milestone_summary,
)


def _task(task_id: str, status: TaskStatus) -> TaskNode:
    return TaskNode(id=task_id, feature_id="f", title=task_id, status=status)


def _feature(feature_id: str, *, deliverable: bool = True, status=FeatureStatus.IN_PROGRESS, tasks=None) -> FeatureNode:
    return FeatureNode(
        id=feature_id,
        roadmap_id="r1",
        epic_id="e1",
        title=feature_id,
        status=status,
        is_deliverable=deliverable,
        tasks=tasks or [],
    )


def test_feature_progress_uses_status_weights() -> None:
    tasks = [
        _task("t1", TaskStatus.TODO),
        _task("t2", TaskStatus.IN_PROGRESS),
        _task("t3", TaskStatus.IN_REVIEW),
        _task("t4", TaskStatus.DONE),
    ]
    # (0 + 50 + 80 + 100) / 4 = 57.5
    assert feature_progress_from_tasks(tasks) == 58
    assert completed_task_count(tasks) == 1


def test_feature_progress_without_tasks_is_zero() -> None:
    assert feature_progress_from_tasks([]) == 0
    assert feature_progress(_feature("f1")) == 0


def test_completed_feature_counts_as_full() -> None:
    feature = _feature("f1", status=FeatureStatus.COMPLETED, tasks=[_task("t1", TaskStatus.TODO)])
    assert feature_progress(feature) == 100


def test_milestone_progress_ignores_non_deliverable_features() -> None:
    done = _feature("f1", status=FeatureStatus.COMPLETED)
    hidden = _feature("f2", deliverable=False, tasks=[_task("t1", TaskStatus.TODO)])
    half = _feature("f3", tasks=[_task("t2", TaskStatus.DONE), _task("t3", TaskStatus.TODO)])
    milestone = MilestoneNode(
        id="m1",
        roadmap_id="r1",
        title="Beta",
        target_date=date(2026, 12, 1),
        feature_ids=["f1", "f2", "f3"],
    )

    assert milestone_progress(milestone, [done, hidden, half]) == 75
    summary = milestone_summary(milestone, [done, hidden, half])
    assert summary == {"progress": 75, "deliverable_count": 2, "completed_count": 1}


def test_milestone_with_only_non_deliverable_links_is_zero() -> None:
    hidden = _feature("f2", deliverable=False, status=FeatureStatus.COMPLETED)
    milestone = MilestoneNode(
        id="m1", roadmap_id="r1", title="Beta", target_date=date(2026, 12, 1), feature_ids=["f2"]
    )
    assert milestone_progress(milestone, [hidden]) == 0
