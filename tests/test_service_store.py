"""
Tests for the file-based service store and the publish-time model inspector.
"""

from pathlib import Path
from typing import Any

import pytest

from spreadcalc.adapters.calamine_adapter import CalamineModelInspector
from spreadcalc.exceptions.calculation_exceptions import (
    InvalidServiceDefinitionError,
    ServiceNotFoundError,
)
from spreadcalc.models.parameter_models import ServiceDescriptor
from spreadcalc.services.service_store import (
    FileServiceStore,
    build_descriptor,
    is_valid_service_id,
)


@pytest.fixture
def changes() -> list[str]:
    """Service ids passed to the store's change hook."""
    return []


@pytest.fixture
def store(temp_dir: Path, changes: list[str]) -> FileServiceStore:
    """Create a FileServiceStore in a temporary directory."""
    return FileServiceStore(temp_dir / "services", on_change=changes.append)


class TestCalamineModelInspector:
    """Tests for checking descriptors against their model."""

    def test_sheet_bounds(self, loan_model: bytes) -> None:
        """Test the used area of each sheet."""
        bounds = CalamineModelInspector().sheet_bounds(loan_model)

        assert list(bounds) == ["Inputs", "Results"]
        assert bounds["Inputs"] == (5, 2)
        assert bounds["Results"] == (4, 2)

    def test_consistent_descriptor(self, loan_descriptor: ServiceDescriptor) -> None:
        """Test that the loan descriptor matches its model."""
        assert CalamineModelInspector().find_problems(loan_descriptor) == []

    def test_unknown_sheet_and_out_of_bounds_output(self, loan_model: bytes) -> None:
        """Test that inconsistent addresses are reported."""
        descriptor = ServiceDescriptor(
            service_id="broken",
            inputs=[{"name": "x", "address": "Missing!A1"}],
            outputs=[{"name": "y", "address": "Results!Z99"}],
            model_data=loan_model,
        )

        problems = CalamineModelInspector().find_problems(descriptor)

        assert len(problems) == 2
        assert "sheet not found" in problems[0]
        assert "outside the used area" in problems[1]

    def test_unqualified_address_uses_opening_sheet(self, report_model_factory) -> None:
        """Test that an address without a sheet is checked on the sheet the model opens on."""
        outputs = [{"name": "total", "address": "C3"}]
        opens_on_calc = ServiceDescriptor(
            service_id="report",
            outputs=outputs,
            model_data=report_model_factory("Calc"),
        )
        opens_on_cover = ServiceDescriptor(
            service_id="report",
            outputs=outputs,
            model_data=report_model_factory("Cover"),
        )

        assert CalamineModelInspector().find_problems(opens_on_calc) == []
        [problem] = CalamineModelInspector().find_problems(opens_on_cover)
        assert "'Cover'" in problem

    def test_unreadable_model(self) -> None:
        """Test that a model that is not a spreadsheet is rejected."""
        descriptor = ServiceDescriptor(service_id="junk", model_data=b"not a workbook")

        with pytest.raises(InvalidServiceDefinitionError):
            CalamineModelInspector().check_descriptor(descriptor)


class TestBuildDescriptor:
    """Tests for building descriptors from definitions."""

    def test_build(self, service_definition: dict[str, Any], loan_model: bytes) -> None:
        """Test a valid definition."""
        descriptor = build_descriptor("loan", service_definition, loan_model)

        assert descriptor.service_id == "loan"
        assert len(descriptor.inputs) == 5
        assert descriptor.outputs[1].address.is_range is True
        assert descriptor.use_caching is True

    @pytest.mark.parametrize("key", ["use_caching", "useCaching"])
    def test_caching_flag(self, service_definition: dict[str, Any], loan_model: bytes, key: str) -> None:
        """Test that a service can be published without model caching."""
        descriptor = build_descriptor("loan", {**service_definition, key: False}, loan_model)

        assert descriptor.use_caching is False

    def test_invalid_definition(self, loan_model: bytes) -> None:
        """Test that schema errors become InvalidServiceDefinitionError."""
        definition = {"inputs": [{"name": "rate", "address": "??"}]}

        with pytest.raises(InvalidServiceDefinitionError) as exc_info:
            build_descriptor("loan", definition, loan_model)

        assert exc_info.value.problems
        assert "inputs.0.address" in exc_info.value.problems[0]

    @pytest.mark.parametrize(
        "service_id, valid",
        [("loan", True), ("loan-v2_final", True), ("../etc", False), ("a b", False), ("", False)],
    )
    def test_service_id_rules(self, service_id: str, valid: bool) -> None:
        """Test which service ids are accepted."""
        assert is_valid_service_id(service_id) is valid


class TestFileServiceStore:
    """Tests for FileServiceStore."""

    def test_save_and_get(
        self,
        store: FileServiceStore,
        loan_descriptor: ServiceDescriptor,
        changes: list[str],
    ) -> None:
        """Test that a saved service is loaded back unchanged."""
        store.save(loan_descriptor)

        fresh = FileServiceStore(store.services_dir)
        loaded = fresh.get("loan")

        assert loaded.model_dump() == loan_descriptor.model_dump()
        assert loaded.model_data == loan_descriptor.model_data
        assert changes == ["loan"]

    def test_files_on_disk(self, store: FileServiceStore, loan_descriptor: ServiceDescriptor) -> None:
        """Test the stored file layout."""
        store.save(loan_descriptor)

        assert (store.services_dir / "loan.json").exists()
        assert (store.services_dir / "loan.xlsx").exists()

    def test_caching_flag_is_persisted(
        self,
        store: FileServiceStore,
        service_definition: dict[str, Any],
        loan_model: bytes,
    ) -> None:
        """Test that use_caching survives a save and reload."""
        store.save(build_descriptor("loan", {**service_definition, "use_caching": False}, loan_model))

        assert FileServiceStore(store.services_dir).get("loan").use_caching is False

    def test_get_missing(self, store: FileServiceStore) -> None:
        """Test loading an unknown service."""
        with pytest.raises(ServiceNotFoundError) as exc_info:
            store.get("nope")

        assert exc_info.value.error_code == "NOT_FOUND"

    def test_get_rejects_path_ids(self, store: FileServiceStore) -> None:
        """Test that ids are never used as paths."""
        with pytest.raises(ServiceNotFoundError):
            store.get("../loan")

    def test_save_rejects_inconsistent_model(
        self,
        store: FileServiceStore,
        loan_model: bytes,
        changes: list[str],
    ) -> None:
        """Test that the inspector runs before anything is written."""
        descriptor = ServiceDescriptor(
            service_id="broken",
            outputs=[{"name": "y", "address": "Nowhere!A1"}],
            model_data=loan_model,
        )

        with pytest.raises(InvalidServiceDefinitionError):
            store.save(descriptor)

        assert store.list_ids() == []
        assert changes == []

    def test_save_rejects_bad_id(self, store: FileServiceStore, loan_model: bytes) -> None:
        """Test that unsafe ids are rejected at publish time."""
        with pytest.raises(InvalidServiceDefinitionError):
            store.save(ServiceDescriptor(service_id="a/b", model_data=loan_model))

    def test_republish_replaces(
        self,
        store: FileServiceStore,
        loan_descriptor: ServiceDescriptor,
        changes: list[str],
    ) -> None:
        """Test that republishing replaces the cached descriptor."""
        store.save(loan_descriptor)
        store.get("loan")

        renamed = loan_descriptor.model_copy(update={"name": "Mortgage"})
        store.save(renamed)

        assert store.get("loan").name == "Mortgage"
        assert changes == ["loan", "loan"]

    def test_list_and_delete(
        self,
        store: FileServiceStore,
        loan_descriptor: ServiceDescriptor,
        changes: list[str],
    ) -> None:
        """Test listing and deleting services."""
        store.save(loan_descriptor)
        store.save(loan_descriptor.model_copy(update={"service_id": "a-loan"}))

        assert store.list_ids() == ["a-loan", "loan"]

        store.delete("loan")

        assert store.list_ids() == ["a-loan"]
        assert changes[-1] == "loan"
        with pytest.raises(ServiceNotFoundError):
            store.get("loan")

    def test_delete_missing(self, store: FileServiceStore) -> None:
        """Test deleting an unknown service."""
        with pytest.raises(ServiceNotFoundError):
            store.delete("nope")
