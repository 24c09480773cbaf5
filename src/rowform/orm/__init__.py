from rowform.orm.model import Model
from rowform.orm.relations import RelationshipResolver
from rowform.orm.soft_deletes import SoftDeletes

__all__ = [
    "Model",
    "RelationshipResolver",
    "SoftDeletes",
]
