class RecallBotError(Exception):

    def __init__(self, message: str = "Unexpected recallbot error."):
        self.message = message
        super().__init__(self.message)


# --- Backend-facing -------------------------------------------------------

class BackendError(RecallBotError):
    """Raised when an LLM or embedding backend call fails."""


class BackendConnectionRefused(BackendError):
    pass


class BackendTimeout(BackendError):
    pass


class BackendBadStatus(BackendError):

    def __init__(self, status_code: int, message: str = None):
        self.status_code = status_code
        super().__init__(message or f"Backend returned HTTP status {status_code}.")


class MalformedResponse(BackendError):
    pass


class ProviderUnavailableError(BackendError):
    pass


class EmbeddingFormatError(MalformedResponse):
    pass


# --- Store-facing ---------------------------------------------------------

class StorageError(RecallBotError):
    pass


class StorageInitError(StorageError):
    pass


class StorageWriteError(StorageError):
    pass


class DimensionMismatchError(StorageError):

    def __init__(self, expected: int, actual: int):
        self.expected = expected
        self.actual = actual
        super().__init__(
            f"Embedding dimension mismatch: expected {expected}, got {actual}."
        )


# --- Lifecycle ------------------------------------------------------------

class NotInitializedError(RecallBotError):

    def __init__(self, message: str = "Memory manager is not initialized. Call initialize() first."):
        super().__init__(message)


class InitializationError(RecallBotError):
    pass


# --- Orchestration-facing -------------------------------------------------

class CompletionError(RecallBotError):

    def __init__(self, message: str, phase: str = None):
        self.phase = phase
        super().__init__(message)


class MemoryWriteError(RecallBotError):
    pass
