from .jobs import OUTLINE_PRIORITY, SCENE_PRIORITY, SCENE_SORT_STRIDE, CreditLedger, WritingJob
from .progress import ProgressEvent, ProgressSnapshot
from .project import Chapter, ContentBlock, Project, SceneStub, utcnow

__all__ = [
    "Chapter",
    "ContentBlock",
    "CreditLedger",
    "OUTLINE_PRIORITY",
    "Project",
    "ProgressEvent",
    "ProgressSnapshot",
    "SCENE_PRIORITY",
    "SCENE_SORT_STRIDE",
    "SceneStub",
    "WritingJob",
    "utcnow",
]
