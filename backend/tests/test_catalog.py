"""Tests for the permission catalog."""

import pytest

from roleforge.auth.catalog import (
    Action,
    SpecialPermission,
    all_permission_ids,
    catalog_by_entity,
    get_entity,
    is_known_permission,
    list_entities,
    permission_id_for,
    split_permission_id,
    unknown_permissions,
    virtual_entities_for_role,
)
from roleforge.errors import NotFoundError


class TestPermissionIds:
    def test_ids_follow_action_entity_pattern(self):
        assert permission_id_for("companies", Action.CREATE) == "CREATE_COMPANIES"
        assert permission_id_for(" gdpr ", "export") == "EXPORT_GDPR"

    def test_every_entity_action_is_in_catalog(self):
        ids = all_permission_ids()
        for entity in list_entities():
            for action in entity.actions:
                assert permission_id_for(entity.name, action) in ids

    def test_special_permissions_are_in_catalog(self):
        ids = all_permission_ids()
        for perm in SpecialPermission:
            assert perm.value in ids

    def test_crud_plus_extras(self):
        documents = get_entity("documents")
        assert documents.actions == (Action.VIEW, Action.CREATE, Action.EDIT, Action.DELETE, Action.DOWNLOAD)
        assert is_known_permission("DOWNLOAD_DOCUMENTS")
        assert not is_known_permission("DOWNLOAD_COMPANIES")

    def test_lookup_is_case_insensitive(self):
        assert is_known_permission("view_companies")
        assert split_permission_id("view_companies") == (Action.VIEW, "companies")

    def test_special_permission_has_no_entity(self):
        assert split_permission_id("ALL_PERMISSIONS") is None

    def test_unknown_permissions_sorted_and_normalized(self):
        assert unknown_permissions(["delete_everything", "VIEW_COMPANIES", "ABC"]) == ["ABC", "DELETE_EVERYTHING"]
        assert unknown_permissions([]) == []


class TestEntities:
    def test_get_unknown_entity_raises(self):
        with pytest.raises(NotFoundError):
            get_entity("spaceships")

    def test_field_ids(self):
        assert "fiscalCode" in get_entity("persons").field_ids
        assert "hourlyRate" in get_entity("trainers").field_ids

    def test_to_dict_shape(self):
        data = get_entity("reports").to_dict()
        assert data["name"] == "reports"
        assert data["virtual"] is False
        assert "EXPORT" in data["actions"]
        assert {"id", "displayName", "type", "sensitive"} <= set(data["fields"][0])


class TestVirtualEntities:
    def test_trainer_belongs_to_both_projections(self):
        assert virtual_entities_for_role("TRAINER") == ["employees", "trainers"]

    def test_external_trainer_is_only_a_trainer(self):
        assert virtual_entities_for_role("EXTERNAL_TRAINER") == ["trainers"]

    def test_admin_is_in_no_projection(self):
        assert virtual_entities_for_role("ADMIN") == []

    def test_virtual_entities_have_permissions(self):
        assert is_known_permission("VIEW_EMPLOYEES")
        assert is_known_permission("EDIT_TRAINERS")


class TestCatalogGrouping:
    def test_special_group(self):
        grouped = catalog_by_entity()
        assert "ALL_PERMISSIONS" in grouped["special"]["permissions"]
        assert grouped["employees"]["virtual"] is True

    def test_grouping_covers_whole_catalog(self):
        grouped = catalog_by_entity()
        flattened = {pid for group in grouped.values() for pid in group["permissions"]}
        assert flattened == set(all_permission_ids())
