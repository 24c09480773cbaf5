"""Error taxonomy for rowform.

Configuration errors are raised before any SQL is issued. Integrity-guard
errors are raised from lifecycle hooks to veto a persistence operation.
Errors from the database driver are never wrapped and reach the caller as-is.
"""


class RowformError(Exception):
    """Base class for every error raised by rowform itself."""


class ConfigurationError(RowformError):
    """A builder, model or connector is missing something it needs."""


class TableRequiredError(ConfigurationError):
    def __init__(self) -> None:
        super().__init__("Table name is required")


class ModelFactoryMissingError(ConfigurationError):
    def __init__(self) -> None:
        super().__init__("Model factory not set. Provide a factory when building the query.")


class MissingPrimaryKeyError(ConfigurationError):
    def __init__(self, operation: str, model_name: str | None = None) -> None:
        target = f" on {model_name}" if model_name else ""
        super().__init__(f"Cannot {operation}{target} without a primary key value")
        self.operation = operation
        self.model_name = model_name


class ConnectorNotBoundError(ConfigurationError):
    def __init__(self, model_name: str) -> None:
        super().__init__(f"No connector bound for {model_name}. Call {model_name}.bind(connector) first.")
        self.model_name = model_name


class ConnectionNotOpenError(ConfigurationError):
    def __init__(self) -> None:
        super().__init__("Database not connected. Call connect() first.")


class SchemaDefinitionError(RowformError):
    """A declared schema set violates a structural invariant."""


class IntegrityGuardError(RowformError):
    """A lifecycle hook refused to let an operation proceed."""

    def __init__(self, message: str, model_name: str | None = None) -> None:
        super().__init__(message)
        self.model_name = model_name


class RelationshipError(RowformError):
    """A relationship is undefined or used in a way its type does not allow."""


class RegistryError(RowformError):
    """The metadata registry rejected a registration."""


class ModelNotRegisteredError(RegistryError, LookupError):
    def __init__(self, key: str) -> None:
        super().__init__(f"No model registered for '{key}'")
        self.key = key


class ModelNotFoundError(RowformError, LookupError):
    """A persisted model's row no longer exists."""


class ModelValidationError(RowformError, ValueError):
    """A model's field values do not satisfy its declared types."""

    def __init__(self, model_name: str, errors: list[str]) -> None:
        super().__init__(f"{model_name} failed validation: {'; '.join(errors)}")
        self.model_name = model_name
        self.errors = errors
