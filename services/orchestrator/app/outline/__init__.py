from .worker import OutlineWorker, parse_outline

__all__ = ["OutlineWorker", "parse_outline"]
