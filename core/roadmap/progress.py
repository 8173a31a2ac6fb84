from __future__ import annotations

from core.roadmap.models import FeatureNode, FeatureStatus, MilestoneNode, TaskNode, TaskStatus

TASK_STATUS_PROGRESS_WEIGHT = {
    TaskStatus.TODO: 0,
    TaskStatus.IN_PROGRESS: 50,
    TaskStatus.IN_REVIEW: 80,
    TaskStatus.DONE: 100,
    TaskStatus.BLOCKED: 0,
}


def _round_half_up(value: float) -> int:
    return int(value + 0.5)


def feature_progress_from_tasks(tasks: list[TaskNode] | None) -> int:
    if not tasks:
        return 0
    total = sum(TASK_STATUS_PROGRESS_WEIGHT.get(task.status, 0) for task in tasks)
    return _round_half_up(total / len(tasks))


def completed_task_count(tasks: list[TaskNode] | None) -> int:
    return sum(1 for task in tasks or [] if task.status == TaskStatus.DONE)


def feature_progress(feature: FeatureNode) -> int:
    if feature.status == FeatureStatus.COMPLETED:
        return 100
    return feature_progress_from_tasks(feature.tasks)


def deliverable_features(features: list[FeatureNode]) -> list[FeatureNode]:
    return [feature for feature in features if feature.is_deliverable]


def milestone_progress(milestone: MilestoneNode, features: list[FeatureNode]) -> int:
    # Only deliverable features count; non-deliverable links are ignored even if present.
    linked = set(milestone.feature_ids)
    counted = [feature for feature in deliverable_features(features) if feature.id in linked]
    if not counted:
        return 0
    return _round_half_up(sum(feature_progress(feature) for feature in counted) / len(counted))


def milestone_summary(milestone: MilestoneNode, features: list[FeatureNode]) -> dict[str, int]:
    linked = set(milestone.feature_ids)
    counted = [feature for feature in deliverable_features(features) if feature.id in linked]
    return {
        "progress": milestone_progress(milestone, features),
        "deliverable_count": len(counted),
        "completed_count": sum(1 for feature in counted if feature.status == FeatureStatus.COMPLETED),
    }
