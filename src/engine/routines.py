"""
Routine registry.

Jobs name their action by schema-qualified routine name. The registry maps
(schema, name, argument types) to an executable handler together with its
routine kind, so the execution driver can decide whether the action runs
as a function (inside the current transaction) or as a procedure (allowed
to commit on its own).
"""

import logging
import threading
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Optional

from .errors import NotFoundError


logger = logging.getLogger(__name__)


# Signature every job action is looked up with: (job_id, config)
JOB_ACTION_ARG_TYPES = ("integer", "jsonb")


class RoutineKind(str, Enum):
    """Routine kinds, matching the catalog's single-letter codes."""

    FUNCTION = "f"
    PROCEDURE = "p"
    AGGREGATE = "a"
    WINDOW = "w"


@dataclass(frozen=True)
class Routine:
    """A registered routine and its handler."""

    schema: str
    name: str
    arg_types: tuple
    kind: RoutineKind
    handler: Callable

    @property
    def qualified_name(self) -> str:
        return f"{self.schema}.{self.name}"

    @property
    def signature(self) -> str:
        return f"{self.qualified_name}({', '.join(self.arg_types)})"


class RoutineRegistry:
    """
    Thread-safe registry of callable routines.

    Lookup is exact on (schema, name, arg_types); there is no overload
    resolution beyond that.
    """

    def __init__(self):
        self._routines: dict[tuple, Routine] = {}
        self._lock = threading.Lock()

    def register(
        self,
        schema: str,
        name: str,
        handler: Callable,
        kind: RoutineKind = RoutineKind.FUNCTION,
        arg_types: tuple = JOB_ACTION_ARG_TYPES,
    ) -> Routine:
        """Register (or replace) a routine."""
        routine = Routine(
            schema=schema,
            name=name,
            arg_types=tuple(arg_types),
            kind=RoutineKind(kind),
            handler=handler,
        )
        with self._lock:
            self._routines[(schema, name, routine.arg_types)] = routine
        logger.debug(f"Registered routine {routine.signature} ({routine.kind.name})")
        return routine

    def register_procedure(
        self,
        schema: str,
        name: str,
        handler: Callable,
        arg_types: tuple = JOB_ACTION_ARG_TYPES,
    ) -> Routine:
        return self.register(schema, name, handler, RoutineKind.PROCEDURE, arg_types)

    def unregister(self, schema: str, name: str, arg_types: tuple = JOB_ACTION_ARG_TYPES) -> bool:
        with self._lock:
            return self._routines.pop((schema, name, tuple(arg_types)), None) is not None

    def find(
        self,
        schema: str,
        name: str,
        arg_types: tuple = JOB_ACTION_ARG_TYPES,
    ) -> Optional[Routine]:
        with self._lock:
            return self._routines.get((schema, name, tuple(arg_types)))

    def lookup(
        self,
        schema: str,
        name: str,
        arg_types: tuple = JOB_ACTION_ARG_TYPES,
    ) -> Routine:
        """
        Find a routine or fail.

        Raises:
            NotFoundError: If no routine matches the exact signature
        """
        routine = self.find(schema, name, arg_types)
        if routine is None:
            raise NotFoundError(
                f"function {schema}.{name}({', '.join(arg_types)}) does not exist"
            )
        return routine

    def exists(self, schema: str, name: str, arg_types: tuple = JOB_ACTION_ARG_TYPES) -> bool:
        return self.find(schema, name, arg_types) is not None
