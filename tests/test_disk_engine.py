"""Tests for disk formats and image engine loading."""

import sys
import types

import pytest
from conftest import FakeEngine

from diskrun.disk.engine import EngineLoadError, ImageEngine, load_image_engine
from diskrun.disk.formats import FORMATS, GCP_ARCHIVE, RAW, align_up, get_format


@pytest.fixture
def engine_module(monkeypatch):
    """Register a throwaway module exposing engines in several shapes."""
    module = types.ModuleType("diskrun_test_engines")
    module.EngineClass = FakeEngine
    module.instance = FakeEngine()
    module.factory = lambda: FakeEngine()
    module.not_an_engine = object()
    monkeypatch.setitem(sys.modules, "diskrun_test_engines", module)
    return module


class TestFormats:
    """Tests for disk format lookup."""

    def test_known_formats(self):
        """All supported formats are registered."""
        assert set(FORMATS) == {
            "raw",
            "vmdk-sparse",
            "vmdk-stream-optimized",
            "vhd-fixed",
            "vhd-dynamic",
            "gcp-archive",
        }

    def test_get_format(self):
        """Lookup by name returns the descriptor."""
        assert get_format("raw") is RAW

    def test_unknown_format(self):
        """Unknown names raise ValueError listing valid names."""
        with pytest.raises(ValueError, match="vmdk-sparse"):
            get_format("qcow2")

    def test_gcp_defaults(self):
        """The GCP archive uses GCE's MTU and whole-GiB sizes."""
        assert GCP_ARCHIVE.default_mtu == 1460
        assert GCP_ARCHIVE.alignment == 1024**3

    def test_align_up(self):
        """Sizes round up to the next multiple."""
        assert align_up(1, 512) == 512
        assert align_up(1024, 512) == 1024


class TestLoadImageEngine:
    """Tests for load_image_engine."""

    def test_not_configured(self):
        """A missing reference explains how to configure one."""
        with pytest.raises(EngineLoadError) as exc_info:
            load_image_engine(None)
        assert exc_info.value.code == "engine_unavailable"
        assert "DISKRUN_IMAGE_ENGINE" in str(exc_info.value)

    def test_malformed_reference(self):
        """References need a module and an attribute."""
        with pytest.raises(EngineLoadError, match="module:attribute"):
            load_image_engine("diskrun_test_engines")

    def test_missing_module(self):
        """Unimportable modules are reported."""
        with pytest.raises(EngineLoadError, match="Cannot import"):
            load_image_engine("diskrun_no_such_module:Engine")

    def test_missing_attribute(self, engine_module):
        """A missing attribute is reported."""
        with pytest.raises(EngineLoadError, match="has no attribute"):
            load_image_engine("diskrun_test_engines:Missing")

    def test_class_is_instantiated(self, engine_module):
        """A class reference is instantiated."""
        engine = load_image_engine("diskrun_test_engines:EngineClass")
        assert isinstance(engine, FakeEngine)

    def test_instance_used_as_is(self, engine_module):
        """An engine instance is returned unchanged."""
        assert load_image_engine("diskrun_test_engines:instance") is engine_module.instance

    def test_factory_is_called(self, engine_module):
        """A factory function is called to produce the engine."""
        assert isinstance(load_image_engine("diskrun_test_engines:factory"), ImageEngine)

    def test_rejects_non_engine(self, engine_module):
        """Objects without the engine interface are rejected."""
        with pytest.raises(EngineLoadError, match="does not provide"):
            load_image_engine("diskrun_test_engines:not_an_engine")
