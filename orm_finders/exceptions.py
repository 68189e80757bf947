class EnvNotFoundError(Exception):
    """Raised when a required environment variable is not found."""

    def __init__(self, env_var_name: str):
        super().__init__(f"Environment variable '{env_var_name}' not found.")


class NoSessionError(Exception):
    """Raised when there is no active database session."""

    def __init__(self):
        super().__init__("No active database session found.")


class InvalidQueryArgumentError(TypeError):
    """Raised when a raw query is neither text, a sequence, nor a SQLAlchemy statement."""

    def __init__(self, method_name: str, received: object):
        super().__init__(
            f"#{method_name} requires a query of some kind to work "
            f"(text, [text, *bind_values] or a SQLAlchemy statement), got {type(received).__name__}."
        )


class UnsupportedStoreError(NotImplementedError):
    """Raised when a raw query, or a session for its records, is requested from a store without SQL support."""

    def __init__(self, method_name: str, store_name: str):
        super().__init__(
            f"#{method_name} is only available for stores served by a SQLAlchemy engine; "
            f"store '{store_name}' does not provide it."
        )


class BindingArityMismatchError(TypeError):
    """Raised when a dynamic finder gets a different number of arguments than attributes in its name."""

    def __init__(self, finder_name: str, expected: int, received: int):
        super().__init__(f"{finder_name}() takes {expected} positional argument(s) but {received} were given.")


class UnknownAttributeError(AttributeError):
    """Raised when a name does not refer to a mapped column attribute of a model."""

    def __init__(self, model_name: str, attribute_name: str):
        super().__init__(f"Model '{model_name}' has no mapped column attribute '{attribute_name}'.")


class UnknownStoreError(KeyError):
    """Raised when a store name is not registered."""

    def __init__(self, store_name: str):
        super().__init__(f"Store '{store_name}' is not registered.")

    def __str__(self) -> str:
        return str(self.args[0])


class StoreAlreadyRegisteredError(ValueError):
    """Raised when a store name is registered twice without replace=True."""

    def __init__(self, store_name: str):
        super().__init__(f"Store '{store_name}' is already registered. Use replace=True to overwrite.")
