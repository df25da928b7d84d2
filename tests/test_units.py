from hubdeploy.models.units import (
    LifecycleStageUnit,
    PipelineUnit,
    PropertyGroupUnit,
    PropertyUnit,
    duplicate_unit_ids,
    resolve_units,
)
from hubdeploy.services.config_validators import normalize_template_config


def _prop(name):
    return {"name": name, "label": name.title(), "type": "string", "fieldType": "text"}


def test_units_follow_fixed_section_order():
    config, errors = normalize_template_config(
        {
            "lifecycleStages": {"stages": [{"name": "trial", "label": "Trial", "displayOrder": 0}]},
            "pipelines": {"tickets": [{"label": "Support", "stages": [{"label": "New", "displayOrder": 0}]}]},
            "properties": {"deals": [_prop("deal_source")], "contacts": [_prop("b_field"), _prop("a_field")]},
            "propertyGroups": [{"objectType": "contacts", "name": "onboarding", "label": "Onboarding"}],
        }
    )
    assert errors == []

    units = resolve_units(config)

    assert [unit.unit_id for unit in units] == [
        "property_group:contacts:onboarding",
        "property:contacts:b_field",
        "property:contacts:a_field",
        "property:deals:deal_source",
        "pipeline:tickets:Support",
        "lifecycle_stage:trial",
    ]
    assert [type(unit) for unit in units] == [
        PropertyGroupUnit,
        PropertyUnit,
        PropertyUnit,
        PropertyUnit,
        PipelineUnit,
        LifecycleStageUnit,
    ]


def test_property_payload_uses_hubspot_field_names():
    config, _ = normalize_template_config(
        {
            "properties": {
                "contacts": [
                    {
                        "name": "plan_tier",
                        "label": "Plan Tier",
                        "type": "enumeration",
                        "fieldType": "select",
                        "groupName": "contactinformation",
                        "options": [{"label": "Free", "value": "free"}],
                    }
                ]
            }
        }
    )

    (unit,) = resolve_units(config)

    assert unit.spec.payload() == {
        "name": "plan_tier",
        "label": "Plan Tier",
        "type": "enumeration",
        "fieldType": "select",
        "groupName": "contactinformation",
        "options": [{"label": "Free", "value": "free"}],
    }


def test_duplicate_unit_ids_are_reported_once():
    config, _ = normalize_template_config(
        {"properties": {"contacts": [_prop("dup"), _prop("dup"), _prop("dup"), _prop("unique")]}}
    )

    assert duplicate_unit_ids(resolve_units(config)) == ["property:contacts:dup"]
