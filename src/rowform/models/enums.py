from enum import StrEnum


class ColumnType(StrEnum):
    INTEGER = "integer"
    TEXT = "text"
    REAL = "real"
    BOOLEAN = "boolean"
    DATETIME = "datetime"
    BLOB = "blob"


class RelationshipType(StrEnum):
    BELONGS_TO = "belongs_to"
    HAS_ONE = "has_one"
    HAS_MANY = "has_many"


class TrashedScope(StrEnum):
    EXCLUDE = "exclude"
    INCLUDE = "include"
    ONLY = "only"
