class WorkbenchError(Exception):
    """Base class for every recoverable workbench condition."""


class ConfigError(WorkbenchError):
    pass


class DirectoryAccessUnsupported(WorkbenchError):
    """Native directory traversal is not available for the given source.

    Callers fall back to flat-list reconstruction (archive upload).
    """


class RemoteError(WorkbenchError):
    pass


class InvalidRepositoryUrl(RemoteError):
    pass


class RepositoryNotFound(RemoteError):
    pass


class RateLimited(RemoteError):
    pass


class Unauthorized(RemoteError):
    pass


class RemoteFetchError(RemoteError):
    pass


class FetchFailed(WorkbenchError):
    def __init__(self, message: str, status_text: str = ""):
        super().__init__(message)
        self.status_text = status_text


class NoProjectLoaded(WorkbenchError):
    def __init__(self, message: str = "No project loaded"):
        super().__init__(message)


class AgentBusy(WorkbenchError):
    pass


class ContentSourceMissing(RuntimeError):
    # a File node with no source is a programming error, not a workbench condition
    pass
