"""Error taxonomy for trigger resolution"""


class TriggerError(Exception):
    """Base class for trigger engine errors"""
    pass


class ConfigurationError(TriggerError):
    """Workflow graph references an unknown job/pipeline or contains a cycle"""
    pass


class PipelineDefinitionError(ConfigurationError):
    """Raised when a pipeline definition is invalid"""
    pass


class ConcurrencyConflict(TriggerError):
    """Another caller already claimed the join"""
    pass


class StorageError(TriggerError):
    """A persistence backend failed"""
    pass


class LockTimeout(StorageError):
    """A join lock could not be acquired in time"""
    pass


class ValidationError(TriggerError):
    """A factory rejected its input"""
    pass


class Forbidden(TriggerError):
    """The destination pipeline does not trust the source pipeline"""
    pass
