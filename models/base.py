import enum


# ============================================================================
# ENUMS
# ============================================================================

class BulkOperationStatus(str, enum.Enum):
    """Remote bulk operation status"""
    CREATED = "CREATED"
    RUNNING = "RUNNING"
    COMPLETED = "COMPLETED"
    CANCELING = "CANCELING"
    CANCELED = "CANCELED"
    EXPIRED = "EXPIRED"
    FAILED = "FAILED"


class BulkState(str, enum.Enum):
    """Local state of one bulk puller invocation"""
    IDLE = "idle"
    SUBMITTING = "submitting"
    POLLING = "polling"
    BLOCKED = "blocked"
    THROTTLED = "throttled"
    DOWNLOADING = "downloading"
    FAILED = "failed"


class RunStage(str, enum.Enum):
    """Pull run stage"""
    SETUP = "setup"
    PULLING = "pulling"
    FINAL_OUTPUT = "final_output"
    COMPLETE = "complete"
