from typing import Optional, Dict, Any


class CloudTablesException(Exception):
    """Base exception for all cloudtables errors."""
    def __init__(
        self,
        message: str,
        code: str = "internal_error",
        status_code: int = 500,
        details: Optional[Dict[str, Any]] = None
    ):
        super().__init__(message)
        self.message = message
        self.code = code
        self.status_code = status_code
        self.details = details or {}


class ConfigurationError(CloudTablesException):
    """Raised when application or connection configuration is invalid."""
    def __init__(self, message: str, code: str = "config_error", details: Optional[Dict[str, Any]] = None):
        super().__init__(message, code=code, status_code=500, details=details)


class TableDefinitionError(ConfigurationError):
    """Raised at registry build time when a table definition is inconsistent."""
    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message, code="table_definition_error", details=details)


class TableNotFoundError(CloudTablesException):
    """Raised when a scan names a table that is not registered."""
    def __init__(self, table: str):
        super().__init__(
            f"Table '{table}' is not registered",
            code="table_not_found",
            status_code=404,
            details={"table": table},
        )


class MissingKeyColumnError(CloudTablesException):
    """Raised when a list operation requires a qual the caller did not supply."""
    def __init__(self, table: str, columns: list[str]):
        super().__init__(
            f"Table '{table}' requires an '=' qual on: {', '.join(columns)}",
            code="missing_key_column",
            status_code=400,
            details={"table": table, "columns": columns},
        )


class UnknownColumnError(CloudTablesException):
    """Raised when a projection or qual references a column the table lacks."""
    def __init__(self, table: str, column: str):
        super().__init__(
            f"Table '{table}' has no column '{column}'",
            code="unknown_column",
            status_code=400,
            details={"table": table, "column": column},
        )


class UnsupportedRegionError(CloudTablesException):
    """Raised when a service has no published endpoint in a region."""
    def __init__(self, service: str, region: str):
        super().__init__(
            f"Service '{service}' is not available in region '{region}'",
            code="unsupported_region",
            status_code=400,
            details={"service": service, "region": region},
        )


class ScanCancelledError(CloudTablesException):
    """Raised inside a scan when its cancel token fires. Never reaches callers."""
    def __init__(self, message: str = "Scan cancelled"):
        super().__init__(message, code="scan_cancelled", status_code=499)


class ScanAbortedError(CloudTablesException):
    """Terminal scan failure surfaced to the caller after partial emission."""
    def __init__(
        self,
        message: str,
        error_class: str = "fatal",
        provider_code: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ):
        merged = {"error_class": error_class, "provider_code": provider_code}
        merged.update(details or {})
        super().__init__(message, code="scan_aborted", status_code=502, details=merged)
        self.error_class = error_class
        self.provider_code = provider_code
