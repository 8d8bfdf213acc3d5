"""
Column Reference Normalization
==============================

The SQL parser hands back column references in several shapes depending on
how the generated SQL was written. They are normalized into one of three
variants before any comparison:

- ``BareColumn``       -> ``tenantId``
- ``QualifiedColumn``  -> ``"Order".tenantId``
- ``AliasedColumn``    -> ``o.tenantId`` where ``o`` aliases a table

Anything else (function calls, literals, stars, arithmetic) is not a column
reference and normalizes to ``None``.
"""

from dataclasses import dataclass

from sqlglot import exp


@dataclass(frozen=True)
class BareColumn:
    name: str


@dataclass(frozen=True)
class QualifiedColumn:
    table: str
    name: str


@dataclass(frozen=True)
class AliasedColumn:
    alias: str
    table: str | None
    name: str


ColumnRef = BareColumn | QualifiedColumn | AliasedColumn


def table_aliases(select: exp.Expression) -> dict[str, str]:
    """Map lower-cased alias -> table name for tables referenced by a SELECT."""
    aliases: dict[str, str] = {}
    for table in select.find_all(exp.Table):
        if table.alias and table.name:
            aliases[table.alias.lower()] = table.name
    return aliases


def column_ref(node: object, aliases: dict[str, str] | None = None) -> ColumnRef | None:
    """
    Classify a parser node as one of the column-reference variants.

    Args:
        node: Any parser node (or arbitrary object)
        aliases: Alias map from ``table_aliases`` for the enclosing SELECT

    Returns:
        A ColumnRef variant, or None when the node is not a usable column
    """
    if isinstance(node, exp.Paren):
        return column_ref(node.this, aliases)
    if not isinstance(node, exp.Column):
        return None
    if not isinstance(node.this, exp.Identifier):
        return None

    name = node.this.name
    if not name:
        return None

    qualifier = node.table
    if not qualifier:
        return BareColumn(name=name)

    alias_target = (aliases or {}).get(qualifier.lower())
    if alias_target is not None and alias_target.lower() != qualifier.lower():
        return AliasedColumn(alias=qualifier, table=alias_target, name=name)
    return QualifiedColumn(table=qualifier, name=name)


def extract_column_name(node: object, aliases: dict[str, str] | None = None) -> str | None:
    """
    Return the lower-cased column name referenced by ``node``.

    Never raises: unrecognized shapes return None so callers treat them as
    non-matching.
    """
    ref = column_ref(node, aliases)
    if isinstance(ref, BareColumn):
        return ref.name.lower()
    if isinstance(ref, QualifiedColumn):
        return ref.name.lower()
    if isinstance(ref, AliasedColumn):
        return ref.name.lower()
    return None
