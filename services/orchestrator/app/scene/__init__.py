from .worker import SceneWorker

__all__ = ["SceneWorker"]
