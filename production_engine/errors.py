# Custom exception hierarchy for the production progress engine.
# Version: 1.0.0
# Provides structured error handling with field-level context and user-friendly messages.

from typing import Any


class ProductionEngineError(Exception):
    """Base exception for all production engine errors.

    All custom exceptions inherit from this class to allow catching
    any engine-related error with a single except clause.

    Attributes:
        message: Human-readable error description.
        details: Additional context for debugging.
    """

    def __init__(self, message: str, details: dict[str, Any] | None = None) -> None:
        """Initialize the engine error.

        Args:
            message: Human-readable error description.
            details: Optional dictionary of additional context.
        """
        self.message = message
        self.details = details or {}
        super().__init__(self.message)

    def __str__(self) -> str:
        """Return formatted error message with details."""
        if self.details:
            detail_str = ", ".join(f"{k}={v}" for k, v in self.details.items())
            return f"{self.message} [{detail_str}]"
        return self.message


class ValidationError(ProductionEngineError):
    """Raised when a job, workflow, run or history record fails validation.

    Used for invalid field values, type mismatches, out-of-range values,
    and missing required fields in records handed over by the collaborator layer.

    Attributes:
        field: Name of the field that failed validation.
        value: The invalid value that was provided.
        reason: Explanation of why the value is invalid.
        row: Optional row number in the data source.
    """

    def __init__(
        self,
        field: str,
        value: Any,
        reason: str,
        row: int | None = None
    ) -> None:
        """Initialize the validation error.

        Args:
            field: Name of the field that failed validation.
            value: The invalid value provided.
            reason: Explanation of why validation failed.
            row: Optional row number (1-indexed) for spreadsheet errors.
        """
        self.field = field
        self.value = value
        self.reason = reason
        self.row = row

        details = {"field": field, "value": repr(value)}
        if row is not None:
            details["row"] = row

        location = f" in row {row}" if row else ""
        message = f"Invalid {field}{location}: {reason}. Got: {repr(value)}"
        super().__init__(message, details)


class ConfigurationError(ProductionEngineError):
    """Raised when engine configuration is invalid or missing.

    Used for errors in constants.yaml such as non-numeric thresholds,
    negative buffers or conversion entries with an unknown operation.

    Attributes:
        config_source: Name of the configuration source (file, key, etc.).
        issue: Description of the configuration problem.
    """

    def __init__(self, config_source: str, issue: str) -> None:
        """Initialize the configuration error.

        Args:
            config_source: Name of the configuration source.
            issue: Description of what's wrong with the configuration.
        """
        self.config_source = config_source
        self.issue = issue

        message = f"Configuration error in {config_source}: {issue}"
        super().__init__(message, {"source": config_source})


class FileLoadError(ProductionEngineError):
    """Raised when a required file cannot be loaded.

    Covers file not found, permission denied, corrupted files, and
    unexpected file format issues.

    Attributes:
        filepath: Path to the file that failed to load.
        cause: The underlying exception that caused the failure.
    """

    def __init__(self, filepath: str, cause: Exception) -> None:
        """Initialize the file load error.

        Args:
            filepath: Path to the file that failed to load.
            cause: The underlying exception.
        """
        self.filepath = filepath
        self.cause = cause

        # Extract just the filename for cleaner messages
        filename = filepath.split("/")[-1].split("\\")[-1]
        cause_type = type(cause).__name__

        message = f"Failed to load {filename}: {cause_type} - {cause}"
        super().__init__(message, {"filepath": filepath, "cause_type": cause_type})


class UnknownConversionError(ProductionEngineError):
    """Raised when a strict conversion meets a UOM pairing with no registered rule.

    The default resolver passes such quantities through unconverted and
    reports a warning; strict callers get this error instead.

    Attributes:
        from_uom: Unit the quantity is expressed in.
        to_uom: Unit the quantity was to be converted into.
        stage_id: Stage whose planned quantity was being resolved, if known.
    """

    def __init__(
        self,
        from_uom: str,
        to_uom: str,
        stage_id: str | None = None
    ) -> None:
        """Initialize the unknown conversion error.

        Args:
            from_uom: Source unit token.
            to_uom: Target unit token.
            stage_id: Optional stage identifier for context.
        """
        self.from_uom = from_uom
        self.to_uom = to_uom
        self.stage_id = stage_id

        where = f" for stage {stage_id}" if stage_id else ""
        message = f"No conversion registered from '{from_uom}' to '{to_uom}'{where}"
        details = {"from_uom": from_uom, "to_uom": to_uom}
        if stage_id:
            details["stage_id"] = stage_id
        super().__init__(message, details)
