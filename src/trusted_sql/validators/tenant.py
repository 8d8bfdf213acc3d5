"""
Tenant Isolation Validator
==========================

Parses generated SQL and proves that every SELECT is scoped to exactly one
tenant before anything is executed.

The invariant is checked on the top-level conjunction of each WHERE clause:
nested ANDs are flattened, OR branches are never descended into. A tenant
equality that only appears inside an OR does not count, so
``WHERE tenantId = 'T1' OR 1=1`` is rejected.

This is a security boundary: any doubt rejects the query.
"""

import re

import sqlglot
import structlog
from sqlglot import exp
from sqlglot.errors import SqlglotError

from trusted_sql.config import DEFAULT_TENANT_COLUMNS, PipelineSettings
from trusted_sql.models import ValidationOutcome, ViolationType
from trusted_sql.validators.columns import extract_column_name, table_aliases

logger = structlog.get_logger(__name__)

_SET_OPERATIONS = (exp.Union, exp.Intersect, exp.Except)

_WRITE_NODES = (
    exp.Insert,
    exp.Update,
    exp.Delete,
    exp.Drop,
    exp.Create,
    exp.Merge,
    exp.Command,
)


class TenantIsolationValidator:
    """AST validator enforcing the tenant-scoping invariant on generated SQL."""

    DANGEROUS_FUNCTIONS = [
        (r"\bpg_sleep\b", "pg_sleep"),
        (r"\bpg_read_file\b", "pg_read_file"),
        (r"\bpg_ls_dir\b", "pg_ls_dir"),
        (r"\blo_import\b", "lo_import"),
        (r"\blo_export\b", "lo_export"),
        (r"\bcopy\s+", "COPY"),
        (r"\bdblink\b", "dblink"),
    ]

    def __init__(
        self,
        tenant_columns: tuple[str, ...] = DEFAULT_TENANT_COLUMNS,
        allowed_tables: tuple[str, ...] | None = None,
        max_depth: int = 3,
        strict_mode: bool = False,
        dialect: str = "postgres",
    ) -> None:
        """
        Initialize the validator.

        Args:
            tenant_columns: Column names that hold the tenant id (case-insensitive)
            allowed_tables: If set, the only tables a query may read
            max_depth: Maximum nesting depth for subqueries
            strict_mode: Treat suspicious WHERE patterns as errors
            dialect: sqlglot dialect used for parsing
        """
        self.tenant_columns = tuple(c.lower() for c in tenant_columns)
        self.allowed_tables = (
            {t.lower() for t in allowed_tables} if allowed_tables else None
        )
        self.max_depth = max_depth
        self.strict_mode = strict_mode
        self.dialect = dialect

    @property
    def name(self) -> str:
        return "TenantIsolationValidator"

    @classmethod
    def from_settings(cls, settings: PipelineSettings) -> "TenantIsolationValidator":
        return cls(
            tenant_columns=settings.tenant_columns,
            allowed_tables=settings.allowed_tables,
            max_depth=settings.max_subquery_depth,
            strict_mode=settings.strict_mode,
            dialect=settings.sql_dialect,
        )

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def validate(self, sql: str, required_tenant_id: str) -> ValidationOutcome:
        """
        Validate ``sql`` against the tenant-isolation invariant.

        Args:
            sql: Generated SQL text
            required_tenant_id: Tenant every SELECT must be scoped to

        Returns:
            ValidationOutcome; ``valid`` is True only if every check passed
        """
        statements = self._parse(sql)
        if statements is None:
            return ValidationOutcome.rejected(
                "Failed to parse SQL query", ViolationType.SQL_INJECTION_ATTEMPT
            )
        if len(statements) != 1:
            return ValidationOutcome.rejected(
                "Only a single SQL statement is allowed",
                ViolationType.SQL_INJECTION_ATTEMPT,
            )

        try:
            return self._validate_statement(statements[0], sql, required_tenant_id)
        except Exception as e:
            logger.exception("tenant_validation_crashed", sql=sql[:100])
            return ValidationOutcome.rejected(
                f"SQL validation failed: {e}", ViolationType.SQL_INJECTION_ATTEMPT
            )

    def quick_validate(self, sql: str) -> tuple[bool, str | None]:
        """Parse-only check: a single SELECT statement, nothing else."""
        statements = self._parse(sql)
        if statements is None:
            return False, "Failed to parse SQL"
        if len(statements) != 1 or not self._is_select(statements[0]):
            return False, "Only SELECT queries are allowed"
        return True, None

    # ------------------------------------------------------------------
    # Statement analysis
    # ------------------------------------------------------------------

    def _parse(self, sql: str) -> list[exp.Expression] | None:
        if not sql or not sql.strip():
            return None
        try:
            parsed = sqlglot.parse(sql, read=self.dialect)
        except SqlglotError as e:
            logger.warning("sql_parse_failed", error=str(e), sql=sql[:100])
            return None
        statements = [s for s in parsed if s is not None]
        return statements or None

    def _is_select(self, statement: exp.Expression) -> bool:
        if statement.find(*_WRITE_NODES) is not None:
            return False
        if isinstance(statement, exp.Select):
            return True
        if isinstance(statement, _SET_OPERATIONS):
            return all(self._is_select(branch) for branch in self._branches(statement))
        if isinstance(statement, (exp.Subquery, exp.Paren)):
            return self._is_select(statement.this)
        return False

    def _branches(self, statement: exp.Expression) -> list[exp.Expression]:
        return [
            b for b in (statement.args.get("this"), statement.args.get("expression"))
            if b is not None
        ]

    def _top_level_selects(self, statement: exp.Expression) -> list[exp.Select]:
        if isinstance(statement, exp.Select):
            return [statement]
        if isinstance(statement, (exp.Subquery, exp.Paren)):
            return self._top_level_selects(statement.this)
        if isinstance(statement, _SET_OPERATIONS):
            selects: list[exp.Select] = []
            for branch in self._branches(statement):
                selects.extend(self._top_level_selects(branch))
            return selects
        return []

    def _validate_statement(
        self, statement: exp.Expression, sql: str, required_tenant_id: str
    ) -> ValidationOutcome:
        errors: list[str] = []
        warnings: list[str] = []
        violation: ViolationType | None = None

        if not self._is_select(statement):
            return ValidationOutcome.rejected(
                "Query must be a SELECT statement", ViolationType.DANGEROUS_OPERATION
            )

        tables = self._extract_tables(statement)
        if self.allowed_tables is not None:
            unauthorized = [t for t in tables if t.lower() not in self.allowed_tables]
            if unauthorized:
                errors.append(f"Unauthorized access to tables: {', '.join(unauthorized)}")
                violation = ViolationType.UNAUTHORIZED_TABLE

        top_level = self._top_level_selects(statement)
        top_ids = {id(s) for s in top_level}
        nested = [s for s in statement.find_all(exp.Select) if id(s) not in top_ids]

        has_filter = False
        filter_value: str | None = None

        for position, select in enumerate(top_level):
            found, value, select_errors, select_violation = self._check_tenant_filter(
                select, required_tenant_id, label="Query"
            )
            if position == 0:
                has_filter, filter_value = found, value
            errors.extend(select_errors)
            violation = select_violation or violation

        for select in nested:
            depth = self._select_depth(select)
            if depth > self.max_depth:
                errors.append(f"Subquery depth exceeds maximum allowed ({self.max_depth})")
                violation = ViolationType.SQL_INJECTION_ATTEMPT
                continue
            _, _, select_errors, select_violation = self._check_tenant_filter(
                select, required_tenant_id, label="Subquery"
            )
            errors.extend(select_errors)
            violation = select_violation or violation

        suspicious: list[str] = []
        for select in top_level:
            where = select.args.get("where")
            if where is not None:
                suspicious.extend(self._suspicious_patterns(where.this))
        if suspicious:
            if self.strict_mode:
                errors.extend(suspicious)
                violation = ViolationType.SQL_INJECTION_ATTEMPT
            else:
                warnings.extend(suspicious)

        for select in [*top_level, *nested]:
            join_errors, join_warnings = self._check_joins(select)
            if join_errors:
                violation = ViolationType.DANGEROUS_OPERATION
            errors.extend(join_errors)
            warnings.extend(join_warnings)

        dangerous = self._detect_dangerous_functions(sql)
        if dangerous:
            errors.append(f"Dangerous SQL functions detected: {', '.join(dangerous)}")
            violation = ViolationType.SQL_INJECTION_ATTEMPT

        errors = _dedupe(errors)
        return ValidationOutcome(
            valid=not errors,
            errors=errors,
            has_tenant_filter=has_filter,
            tenant_filter_value=filter_value,
            warnings=_dedupe(warnings),
            violation_type=violation if errors else None,
            tables_accessed=tables,
            has_subqueries=bool(nested),
            has_joins=statement.find(exp.Join) is not None,
            suspicious_patterns=_dedupe(suspicious),
        )

    # ------------------------------------------------------------------
    # WHERE clause analysis
    # ------------------------------------------------------------------

    def _check_tenant_filter(
        self, select: exp.Select, required_tenant_id: str, label: str
    ) -> tuple[bool, str | None, list[str], ViolationType | None]:
        """Return (found, value, errors, violation) for one SELECT."""
        values = self._tenant_filter_values(select)

        if not values:
            return (
                False,
                None,
                [
                    f"{label} is missing the tenant filter: it MUST include "
                    f"WHERE {self.tenant_columns[0]} = '{required_tenant_id}' "
                    f"for tenant isolation"
                ],
                ViolationType.MISSING_TENANT_FILTER,
            )

        mismatched = [v for v in values if v != required_tenant_id]
        if mismatched:
            return (
                True,
                mismatched[0],
                [
                    f"Tenant filter value '{v}' does not match required "
                    f"'{required_tenant_id}'"
                    for v in mismatched
                ],
                ViolationType.CROSS_TENANT_ACCESS,
            )

        return True, required_tenant_id, [], None

    def _tenant_filter_values(self, select: exp.Select) -> list[str]:
        where = select.args.get("where")
        if where is None:
            return []

        aliases = table_aliases(select)
        values = []
        for predicate in self._conjuncts(where.this):
            if not isinstance(predicate, exp.EQ):
                continue
            column = extract_column_name(predicate.left, aliases)
            if column not in self.tenant_columns:
                continue
            value = _literal_value(predicate.right)
            if value is not None:
                values.append(value)
        return values

    def _conjuncts(self, condition: exp.Expression | None) -> list[exp.Expression]:
        """Flatten the top-level AND chain; OR subtrees are kept whole."""
        if condition is None:
            return []
        if isinstance(condition, exp.Paren):
            return self._conjuncts(condition.this)
        if isinstance(condition, exp.And):
            return self._conjuncts(condition.left) + self._conjuncts(condition.right)
        return [condition]

    def _suspicious_patterns(self, condition: exp.Expression | None) -> list[str]:
        if condition is None:
            return []

        suspicious = []
        if condition.find(exp.Or) is not None:
            suspicious.append("Query contains OR conditions which may bypass the tenant filter")

        for node in condition.find_all(exp.EQ, exp.Boolean, exp.In, exp.Not):
            if isinstance(node, exp.EQ):
                left, right = node.left, node.right
                if (
                    isinstance(left, exp.Literal)
                    and isinstance(right, exp.Literal)
                    and not left.is_string
                    and not right.is_string
                    and left.this == right.this
                ):
                    suspicious.append(
                        f"Always-true condition detected: {left.this}={right.this}"
                    )
            elif isinstance(node, exp.Boolean) and node.this is True:
                suspicious.append("Boolean TRUE literal detected in WHERE clause")
            elif isinstance(node, exp.In) and node.args.get("query") is not None:
                suspicious.append("IN clause with subquery detected - may bypass tenant filter")
            elif isinstance(node, exp.Not):
                suspicious.append("NOT operator detected - may negate tenant filter")

        return suspicious

    # ------------------------------------------------------------------
    # Structure checks
    # ------------------------------------------------------------------

    def _check_joins(self, select: exp.Select) -> tuple[list[str], list[str]]:
        errors: list[str] = []
        warnings: list[str] = []
        aliases = table_aliases(select)

        for join in select.args.get("joins") or []:
            on = join.args.get("on")
            using = join.args.get("using")
            target = join.this.name if isinstance(join.this, exp.Table) else "subquery"

            if on is None and not using:
                errors.append("JOIN without ON clause detected - cross joins are not allowed")
                continue
            if on is None:
                continue

            scoped = any(
                isinstance(p, exp.EQ)
                and (
                    extract_column_name(p.left, aliases) in self.tenant_columns
                    or extract_column_name(p.right, aliases) in self.tenant_columns
                )
                for p in self._conjuncts(on)
            )
            if not scoped:
                warnings.append(f"JOIN without tenant filter detected on table: {target}")

        return errors, warnings

    def _extract_tables(self, statement: exp.Expression) -> list[str]:
        cte_names = {cte.alias_or_name.lower() for cte in statement.find_all(exp.CTE)}
        tables: list[str] = []
        for table in statement.find_all(exp.Table):
            name = table.name
            if name and name.lower() not in cte_names and name not in tables:
                tables.append(name)
        return tables

    def _select_depth(self, select: exp.Select) -> int:
        depth = 0
        node = select.parent
        while node is not None:
            if isinstance(node, exp.Select):
                depth += 1
            node = node.parent
        return depth

    def _detect_dangerous_functions(self, sql: str) -> list[str]:
        return [
            name
            for pattern, name in self.DANGEROUS_FUNCTIONS
            if re.search(pattern, sql, re.IGNORECASE)
        ]


def _literal_value(node: exp.Expression | None) -> str | None:
    """Value of the right-hand side of a tenant equality, if it is a constant."""
    while isinstance(node, (exp.Cast, exp.Paren)):
        node = node.this
    if isinstance(node, exp.Literal):
        return node.this
    if node is None or isinstance(node, exp.Column):
        return None
    # Placeholders, functions and expressions cannot be proven equal
    return node.sql()


def _dedupe(items: list[str]) -> list[str]:
    return list(dict.fromkeys(items))


def validate_query(
    sql: str,
    required_tenant_id: str,
    validator: TenantIsolationValidator | None = None,
) -> dict:
    """
    Standalone validation entry point for tooling and tests.

    Args:
        sql: SQL to validate
        required_tenant_id: Tenant the query must be scoped to
        validator: Validator to use (defaults to one with default settings)

    Returns:
        Dict with ``valid``, ``errors``, ``warnings`` and ``details``
    """
    validator = validator or TenantIsolationValidator()
    outcome = validator.validate(sql, required_tenant_id)
    return {
        "valid": outcome.valid,
        "errors": list(outcome.errors),
        "warnings": list(outcome.warnings),
        "violationType": outcome.violation_type.value if outcome.violation_type else None,
        "details": {
            "hasVenueFilter": outcome.has_tenant_filter,
            "venueFilterValue": outcome.tenant_filter_value,
            "hasSubqueries": outcome.has_subqueries,
            "hasJoins": outcome.has_joins,
            "tablesAccessed": list(outcome.tables_accessed),
            "suspiciousPatterns": list(outcome.suspicious_patterns),
        },
    }
