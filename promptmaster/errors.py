from enum import Enum


class ErrorCode(Enum):
    RECORD_NOT_FOUND = "record_not_found"
    INVALID_IMPORT = "invalid_import"
    MISSING_VARIABLES = "missing_variables"
    SCHEMA_VERSION = "schema_version"
    STORAGE = "storage"
    SYNC = "sync"
    CLOUD_NOT_CONFIGURED = "cloud_not_configured"
    INVALID_CLOUD_URL = "invalid_cloud_url"
    GENERATION = "generation"


class PromptMasterError(Exception):
    def __init__(self, code: ErrorCode, message: str):
        self.code = code
        self.message = message
        super().__init__(message)

    @classmethod
    def record_not_found(cls, record_id: str) -> "PromptMasterError":
        return cls(ErrorCode.RECORD_NOT_FOUND, f"Prompt not found: {record_id}")

    @classmethod
    def invalid_import(cls, detail: str) -> "PromptMasterError":
        return cls(ErrorCode.INVALID_IMPORT, f"Import format error: {detail}")

    @classmethod
    def missing_variables(cls, variables: list[str]) -> "PromptMasterError":
        return cls(
            ErrorCode.MISSING_VARIABLES,
            f"Missing variables: {', '.join(variables)}",
        )

    @classmethod
    def schema_version(cls, expected: int, got: int) -> "PromptMasterError":
        return cls(
            ErrorCode.SCHEMA_VERSION,
            f"Schema version mismatch: expected {expected}, got {got}",
        )

    @classmethod
    def storage(cls, detail: str) -> "PromptMasterError":
        return cls(ErrorCode.STORAGE, f"Storage error: {detail}")

    @classmethod
    def sync(cls, detail: str) -> "PromptMasterError":
        return cls(ErrorCode.SYNC, f"Cloud sync error: {detail}")

    @classmethod
    def cloud_not_configured(cls) -> "PromptMasterError":
        return cls(
            ErrorCode.CLOUD_NOT_CONFIGURED,
            "Cloud sync is not configured (set SUPABASE_URL and SUPABASE_ANON_KEY)",
        )

    @classmethod
    def invalid_cloud_url(cls, url: str) -> "PromptMasterError":
        return cls(
            ErrorCode.INVALID_CLOUD_URL,
            f"Cloud URL must use HTTPS (got {url}). Use localhost for local development.",
        )

    @classmethod
    def generation(cls, detail: str) -> "PromptMasterError":
        return cls(ErrorCode.GENERATION, f"Generation error: {detail}")
