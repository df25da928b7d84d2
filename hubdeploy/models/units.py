"""Typed configuration units resolved from a template config document.

A deployment applies its config as an ordered list of units, one remote
operation each. The order is fixed: property groups, properties per object
type, pipelines per object type, then lifecycle stages. Inside each list
the declared order is kept.
"""

from typing import Annotated, Any, Literal

from pydantic import BaseModel, ConfigDict, Field

from hubdeploy.services.config_validators import PIPELINE_OBJECT_TYPES, PROPERTY_OBJECT_TYPES


class _Spec(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="allow")

    def payload(self) -> dict[str, Any]:
        return self.model_dump(by_alias=True, exclude_none=True)


class PropertyGroupSpec(_Spec):
    object_type: str = Field(alias="objectType")
    name: str
    label: str
    display_order: int = Field(default=0, alias="displayOrder")

    def payload(self) -> dict[str, Any]:
        return {"name": self.name, "label": self.label, "displayOrder": self.display_order}


class PropertySpec(_Spec):
    name: str
    label: str
    type: str
    field_type: str = Field(alias="fieldType")
    group_name: str | None = Field(default=None, alias="groupName")
    description: str | None = None
    options: list[dict[str, Any]] | None = None


class PipelineSpec(_Spec):
    label: str
    display_order: int = Field(default=0, alias="displayOrder")
    stages: list[dict[str, Any]]


class LifecycleStageSpec(_Spec):
    name: str
    label: str
    display_order: int = Field(alias="displayOrder")


class PropertyGroupUnit(BaseModel):
    kind: Literal["property_group"] = "property_group"
    object_type: str
    spec: PropertyGroupSpec

    @property
    def unit_id(self) -> str:
        return f"property_group:{self.object_type}:{self.spec.name}"


class PropertyUnit(BaseModel):
    kind: Literal["property"] = "property"
    object_type: str
    spec: PropertySpec

    @property
    def unit_id(self) -> str:
        return f"property:{self.object_type}:{self.spec.name}"


class PipelineUnit(BaseModel):
    kind: Literal["pipeline"] = "pipeline"
    object_type: str
    spec: PipelineSpec

    @property
    def unit_id(self) -> str:
        return f"pipeline:{self.object_type}:{self.spec.label}"


class LifecycleStageUnit(BaseModel):
    kind: Literal["lifecycle_stage"] = "lifecycle_stage"
    object_type: str = "contacts"
    spec: LifecycleStageSpec

    @property
    def unit_id(self) -> str:
        return f"lifecycle_stage:{self.spec.name}"


Unit = Annotated[
    PropertyGroupUnit | PropertyUnit | PipelineUnit | LifecycleStageUnit,
    Field(discriminator="kind"),
]


class CreatedEntity(BaseModel):
    index: int
    remote_type: str
    remote_id: str
    object_type: str | None = None
    unit_id: str


def resolve_units(config: dict[str, Any]) -> list[Unit]:
    """Flatten a validated config document into its execution order."""
    units: list[Unit] = []

    for group in config.get("propertyGroups") or []:
        spec = PropertyGroupSpec.model_validate(group)
        units.append(PropertyGroupUnit(object_type=spec.object_type, spec=spec))

    properties = config.get("properties") or {}
    for object_type in PROPERTY_OBJECT_TYPES:
        for prop in properties.get(object_type) or []:
            units.append(PropertyUnit(object_type=object_type, spec=PropertySpec.model_validate(prop)))

    pipelines = config.get("pipelines") or {}
    for object_type in PIPELINE_OBJECT_TYPES:
        for pipeline in pipelines.get(object_type) or []:
            units.append(PipelineUnit(object_type=object_type, spec=PipelineSpec.model_validate(pipeline)))

    lifecycle = config.get("lifecycleStages") or {}
    for stage in lifecycle.get("stages") or []:
        units.append(LifecycleStageUnit(spec=LifecycleStageSpec.model_validate(stage)))

    return units


def duplicate_unit_ids(units: list[Unit]) -> list[str]:
    seen: set[str] = set()
    duplicates: list[str] = []
    for unit in units:
        if unit.unit_id in seen and unit.unit_id not in duplicates:
            duplicates.append(unit.unit_id)
        seen.add(unit.unit_id)
    return duplicates
