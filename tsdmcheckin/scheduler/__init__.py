from .service import SchedulerService, build_loops

__all__ = ["SchedulerService", "build_loops"]
