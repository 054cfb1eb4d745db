"""Exception hierarchy shared by every stage of query evaluation."""


class QryEvalError(Exception):
    """Base class for errors raised by qryeval."""


class ConfigurationError(QryEvalError, ValueError):
    """A parameter is missing, malformed, or names an unknown component."""


class FormatError(QryEvalError, ValueError):
    """A line of an input file does not follow its expected format."""


class QuerySyntaxError(FormatError):
    """A query string cannot be parsed into an operator tree."""


class UnsupportedCombinatorError(QryEvalError):
    """An operator was asked to score a document under a model it does not support."""

    def __init__(self, operator: str, model: str):
        super().__init__(f"{model} doesn't support the {operator} operator.")
        self.operator = operator
        self.model = model


class RankerError(QryEvalError, RuntimeError):
    """The external rank-learning process failed."""
