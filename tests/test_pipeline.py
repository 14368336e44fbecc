# -*- coding: utf-8 -*-
import pytest

from imagepipe.errors import ConfigError
from imagepipe.pipeline import (
    AlphaPremultiply,
    AlphaUnpremultiply,
    ApplyIccProfile,
    Dithering,
    Quantization,
    Resize,
    compile_pipeline,
)
from imagepipe.resize import DEFAULT_FILTER, Percentage


class TestCompilePipeline:
    """Tests for compiling ordered tokens into a PipelineSpec."""

    def test_empty_pipeline(self):
        spec = compile_pipeline([])
        assert len(spec) == 0
        assert spec.describe() == "(no preprocessing)"

    def test_declaration_order_is_kept(self):
        spec = compile_pipeline([("quantization", 50), ("resize", "50%"), ("icc", None)])
        assert [node.kind for node in spec] == ["quantization", "resize", "icc"]

        swapped = compile_pipeline([("resize", "50%"), ("quantization", 50), ("icc", None)])
        assert [node.kind for node in swapped] == ["resize", "quantization", "icc"]

    def test_default_filter(self):
        spec = compile_pipeline([("resize", "50%")])
        assert spec.nodes[0] == Resize(Percentage(50.0), DEFAULT_FILTER)

    @pytest.mark.parametrize("position", [0, 1, 2, 3])
    def test_filter_position_does_not_matter(self, position):
        tokens = [("resize", "50%"), ("quantization", 40), ("resize", "200x_")]
        tokens.insert(position, ("filter", "nearest"))
        spec = compile_pipeline(tokens)
        resizes = [node for node in spec if isinstance(node, Resize)]
        assert len(resizes) == 2
        assert all(node.filter == "nearest" for node in resizes)

    def test_node_kernel_overrides_global_filter(self):
        spec = compile_pipeline([("filter", "triangle"), ("resize", "50%:mitchell"), ("resize", "@2")])
        assert spec.nodes[0].filter == "mitchell"
        assert spec.nodes[1].filter == "triangle"

    def test_modifiers_mapping_and_tokens(self):
        spec = compile_pipeline([("resize", "50%"), ("filter", "box")], modifiers={"filter": "hamming", "upscale": False})
        node = spec.nodes[0]
        assert node.filter == "box"
        assert node.upscale is False
        assert node.downscale is True
        assert spec.modifiers["resize"]["filter"] == "box"

    def test_no_downscale_token(self):
        spec = compile_pipeline([("downscale", False), ("resize", "50%")])
        assert spec.nodes[0].downscale is False

    def test_quantization_default_quality(self):
        spec = compile_pipeline([("quantization", None)])
        assert spec.nodes == (Quantization(75),)

    def test_dithering_follows_every_quantization(self):
        spec = compile_pipeline([
            ("quantization", 80), ("resize", "50%"), ("quantization", 20), ("dithering", 40),
        ])
        assert [node.kind for node in spec] == ["quantization", "dithering", "resize", "quantization", "dithering"]
        assert all(node == Dithering(40) for node in spec if isinstance(node, Dithering))
        assert spec.modifiers["quantization"]["dithering"] == 40

    def test_dithering_default_level(self):
        spec = compile_pipeline([("dithering", None), ("quantization", None)])
        assert spec.nodes[1] == Dithering(75)

    def test_dithering_without_quantization(self):
        with pytest.raises(ConfigError, match="--dithering requires --quantization"):
            compile_pipeline([("resize", "50%"), ("dithering", 50)])

    @pytest.mark.parametrize("level", [0, 101])
    def test_dithering_level_out_of_range(self, level):
        with pytest.raises(ConfigError, match="between 1 and 100"):
            compile_pipeline([("quantization", 50), ("dithering", level)])

    def test_premultiply_wraps_the_next_operation(self):
        spec = compile_pipeline([("resize", "50%"), ("premultiply", None), ("resize", "@2"), ("icc", None)])
        assert [node.kind for node in spec] == ["resize", "premultiply", "resize", "unpremultiply", "icc"]
        assert spec.describe().startswith("resize(50%, lanczos3) -> premultiply -> resize(@2, lanczos3) -> unpremultiply")

    def test_premultiply_wraps_quantization_and_its_dithering(self):
        spec = compile_pipeline([("premultiply", None), ("quantization", 40), ("dithering", 20)])
        assert spec.nodes == (AlphaPremultiply(), Quantization(40), Dithering(20), AlphaUnpremultiply())

    def test_trailing_premultiply_is_ignored(self, caplog):
        with caplog.at_level("WARNING", logger="imagepipe"):
            spec = compile_pipeline([("resize", "50%"), ("premultiply", None)])
        assert [node.kind for node in spec] == ["resize"]
        assert "not followed by any operation" in caplog.text

    def test_unknown_operation(self):
        with pytest.raises(ConfigError, match="Unknown operation 'blur'"):
            compile_pipeline([("blur", 3)])

    def test_unknown_modifier_in_mapping(self):
        with pytest.raises(ConfigError):
            compile_pipeline([], modifiers={"sharpen": True})

    @pytest.mark.parametrize("value", ["0x100", "not-a-size", None])
    def test_bad_resize_expression(self, value):
        with pytest.raises(ConfigError):
            compile_pipeline([("resize", value)])

    def test_unknown_node_kernel(self):
        with pytest.raises(ConfigError):
            compile_pipeline([("resize", "50%:sinc")])

    @pytest.mark.parametrize("quality", [-1, 101, "high"])
    def test_quantization_out_of_range(self, quality):
        with pytest.raises(ConfigError):
            compile_pipeline([("quantization", quality)])

    def test_bad_boolean_modifier(self):
        with pytest.raises(ConfigError):
            compile_pipeline([("resize", "50%")], modifiers={"upscale": "maybe"})

    def test_icc_defaults_to_srgb(self):
        spec = compile_pipeline([("icc", None)])
        assert spec.nodes == (ApplyIccProfile(None, "sRGB"),)
        assert spec.describe() == "icc(sRGB)"

    def test_icc_missing_profile_file(self, tmp_path):
        with pytest.raises(ConfigError):
            compile_pipeline([("icc", str(tmp_path / "missing.icc"))])

    def test_icc_invalid_profile_file(self, tmp_path):
        bogus = tmp_path / "bogus.icc"
        bogus.write_bytes(b"definitely not a profile")
        with pytest.raises(ConfigError):
            compile_pipeline([("icc", str(bogus))])

    def test_spec_is_immutable(self):
        spec = compile_pipeline([("resize", "50%")])
        with pytest.raises(Exception):
            spec.nodes = ()
        with pytest.raises(TypeError):
            spec.modifiers["resize"]["filter"] = "box"
