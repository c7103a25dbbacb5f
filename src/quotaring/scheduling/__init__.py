from quotaring.scheduling.scheduler import RefreshScheduler

__all__ = ["RefreshScheduler"]
