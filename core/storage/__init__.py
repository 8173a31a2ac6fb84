from core.storage.schema import (
    Base,
    MilestoneFeature,
    Profile,
    Roadmap,
    RoadmapComment,
    RoadmapEpic,
    RoadmapFeature,
    RoadmapMilestone,
    RoadmapShare,
    RoadmapTask,
    create_roadmap_engine,
    create_session_factory,
)

__all__ = [
    "Base",
    "MilestoneFeature",
    "Profile",
    "Roadmap",
    "RoadmapComment",
    "RoadmapEpic",
    "RoadmapFeature",
    "RoadmapMilestone",
    "RoadmapShare",
    "RoadmapTask",
    "create_roadmap_engine",
    "create_session_factory",
]
