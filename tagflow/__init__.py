from tagflow.tagflow_datatypes import (
    OPERATOR_KEY, REF_KEY, Scope, root_scope,
    TagflowError, ParameterValidationError, ValueNotFound, ValueShapeError,
    CyclicReferenceError, TransportError, RemoteError, ThrownError,
)
from tagflow.tagflow_operator import Catalogue, Computation, Operator, build, evaluate
from tagflow.tagflow_files import ResolvableFile, ReferenceResolver, resolve
from tagflow.tagflow_runtime import ConfigRunner, ExecutionResult, RuntimeSettings, create_catalogue

__all__ = [
    "OPERATOR_KEY", "REF_KEY", "Scope", "root_scope",
    "TagflowError", "ParameterValidationError", "ValueNotFound", "ValueShapeError",
    "CyclicReferenceError", "TransportError", "RemoteError", "ThrownError",
    "Catalogue", "Computation", "Operator", "build", "evaluate",
    "ResolvableFile", "ReferenceResolver", "resolve",
    "ConfigRunner", "ExecutionResult", "RuntimeSettings", "create_catalogue",
]
