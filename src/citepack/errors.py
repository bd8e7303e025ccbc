"""Error taxonomy with stable codes.

Every error raised by the core carries a ``code`` that callers (CLI, MCP
tools, job events) can surface without parsing messages. ``retryable``
separates transient network failures from configuration problems.
"""


class CitepackError(Exception):
    """Base class for all citepack errors."""

    code = "CITEPACK_ERROR"
    retryable = False

    def to_payload(self) -> dict:
        return {"code": self.code, "message": str(self)}


# Inference service


class InferenceError(CitepackError):
    code = "OLLAMA_ERROR"


class ServiceUnreachable(InferenceError):
    code = "OLLAMA_UNREACHABLE"
    retryable = True


class RequestTimeout(InferenceError):
    code = "OLLAMA_TIMEOUT"
    retryable = True


class InferenceHttpError(InferenceError):
    code = "OLLAMA_HTTP_ERROR"


class ModelMissing(InferenceError):
    code = "MODEL_MISSING"


class ModelNotFound(InferenceError):
    code = "MODEL_NOT_FOUND"


class InvalidEmbeddingPayload(InferenceError):
    code = "INVALID_EMBEDDING_PAYLOAD"


class InvalidBaseUrl(InferenceError):
    code = "OLLAMA_INVALID_BASE_URL"


class NonLocalEndpointRejected(InferenceError):
    code = "OLLAMA_NON_LOCAL_BASE_URL"


class GenerationFailed(InferenceError):
    code = "GENERATION_FAILED"


# Cancellation


class Cancelled(CitepackError):
    code = "CANCELLED"


class IndexCancelled(Cancelled):
    code = "INDEX_CANCELLED"


class AskCancelled(Cancelled):
    code = "ASK_CANCELLED"


# Ask validation (internal: triggers repair, never surfaced raw)


class SchemaValidationFailed(CitepackError):
    code = "SCHEMA_VALIDATION_FAILED"


# Jobs


class JobAlreadyRunning(CitepackError):
    code = "JOB_ALREADY_RUNNING"


class WorkerCrashed(CitepackError):
    code = "WORKER_CRASHED"


class WorkerExited(CitepackError):
    code = "WORKER_EXITED"


# Caller input


class InvalidRequest(CitepackError):
    code = "INVALID_REQUEST"
