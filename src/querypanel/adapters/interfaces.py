from abc import ABC, abstractmethod
from typing import Any, Dict, Iterable, Optional

from querypanel.adapters.models import Dialect, ExecutionResult, SchemaIntrospection
from querypanel.common.cancellation import CancellationToken

ParamRecord = Dict[str, Any]


class DatabaseAdapter(ABC):
    """Capability interface every dialect adapter implements."""

    @abstractmethod
    def execute(
        self,
        sql: str,
        params: Optional[ParamRecord] = None,
        cancel_token: Optional[CancellationToken] = None,
    ) -> ExecutionResult:
        """Execute the query and return normalized rows.

        Raises:
            AccessDenied: If the query references a table outside the allow-list.
            QueryExecutionFailed: If the database rejects the query.
        """
        pass

    @abstractmethod
    def validate(
        self,
        sql: str,
        params: Optional[ParamRecord] = None,
        cancel_token: Optional[CancellationToken] = None,
    ) -> None:
        """Dry-run the query via EXPLAIN.

        Raises:
            QueryInvalid: If the database rejects the plan.
        """
        pass

    @abstractmethod
    def introspect(
        self,
        tables: Optional[Iterable[str]] = None,
        cancel_token: Optional[CancellationToken] = None,
    ) -> SchemaIntrospection:
        """Return tables and columns, restricted to ``tables`` or the adapter allow-list."""
        pass

    @abstractmethod
    def get_dialect(self) -> Dialect:
        """Return the dialect tag of this adapter."""
        pass

    @abstractmethod
    def check_tables(self, sql: str) -> None:
        """Validate the tables referenced by ``sql`` against the allow-list."""
        pass

    def close(self) -> None:
        """Release resources. The underlying client is owned by the caller."""
        return None
