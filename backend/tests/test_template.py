"""
Tests for template extraction, layer tree normalization and container resolution.
"""

import pytest

from procedural_remap.models.layers import LayerKind
from procedural_remap.models.template import RawLayer, ResolverStatus
from procedural_remap.services.template import (
    TemplateError,
    create_container_context,
    extract_template_metadata,
    find_layer_by_id,
    normalize_layer_tree,
    normalize_opacity,
    raw_bounds,
    resolve_container_layers,
    validate_layers,
)


def raw(name, left, top, right, bottom, children=None, **kwargs):
    return RawLayer(name=name, left=left, top=top, right=right, bottom=bottom, children=children, **kwargs)


@pytest.fixture
def document():
    """A 1000x800 document with two containers and matching design groups."""
    return [
        raw("!!TEMPLATE", 0, 0, 1000, 800, children=[
            raw("!!HERO", 0, 0, 1000, 400),
            raw("!!FOOTER", 0, 600, 1000, 800),
        ]),
        raw("HERO", 0, 0, 1000, 400, children=[
            raw("Background", 0, 0, 1000, 400),
            raw("Logo", 50, 50, 150, 150, opacity=128),
        ]),
        raw("footer", 0, 600, 1000, 800, children=[
            raw("Legal", 10, 610, 990, 1200),
        ]),
        raw("Empty", 0, 0, 10, 10, children=[]),
    ]


class TestNormalization:
    """Tests for raw layer normalization."""

    def test_ids_are_index_paths(self, document):
        tree = normalize_layer_tree(document)

        assert [n.id for n in tree] == ["1", "2", "3"]
        assert [c.id for c in tree[0].children] == ["1.0", "1.1"]

    def test_template_group_skipped(self, document):
        tree = normalize_layer_tree(document)

        assert all(n.name != "!!TEMPLATE" for n in tree)

    def test_group_iff_children_list(self, document):
        tree = normalize_layer_tree(document)

        empty = tree[2]
        assert empty.kind == LayerKind.GROUP
        assert empty.children == []
        assert tree[0].children[0].kind == LayerKind.PIXEL
        assert tree[0].children[0].children is None

    def test_edge_coordinates_become_rect(self):
        bounds = raw_bounds(raw("x", 10, 20, 110, 70))

        assert (bounds.x, bounds.y, bounds.w, bounds.h) == (10, 20, 100, 50)

    @pytest.mark.parametrize("value,expected", [
        (None, 1.0),
        (0, 1.0),
        (1, 1.0),
        (255, 1.0),
        (51, 0.2),
        (400, 1.0),
    ])
    def test_opacity_normalized(self, value, expected):
        assert normalize_opacity(value) == pytest.approx(expected)

    def test_hidden_flag(self):
        (node,) = normalize_layer_tree([raw("x", 0, 0, 1, 1, hidden=True)])

        assert node.visible is False

    def test_find_layer_by_id(self, document):
        tree = normalize_layer_tree(document)

        assert find_layer_by_id(tree, "1.1").name == "Logo"
        assert find_layer_by_id(tree, "2.0").name == "Legal"
        assert find_layer_by_id(tree, "9.9") is None


class TestTemplateMetadata:
    """Tests for container extraction."""

    def test_containers_extracted(self, document):
        template = extract_template_metadata(document, 1000, 800)

        assert [c.name for c in template.containers] == ["HERO", "FOOTER"]
        hero = template.containers[0]
        assert hero.id == "container-0-HERO"
        assert hero.original_name == "!!HERO"
        assert (hero.normalized.w, hero.normalized.h) == (1.0, 0.5)

    def test_missing_template_group(self):
        template = extract_template_metadata([raw("HERO", 0, 0, 10, 10)], 100, 100)

        assert template.containers == []
        assert template.canvas.width == 100

    def test_container_context(self, document):
        template = extract_template_metadata(document, 1000, 800)

        context = create_container_context(template, "FOOTER")

        assert context.container_name == "FOOTER"
        assert context.bounds.y == 600
        assert context.canvas_dimensions.height == 800

    def test_unknown_container_raises(self, document):
        template = extract_template_metadata(document, 1000, 800)

        with pytest.raises(TemplateError) as exc_info:
            create_container_context(template, "SIDEBAR")

        assert exc_info.value.code == "CONTAINER_NOT_FOUND"
        assert exc_info.value.details["available"] == ["HERO", "FOOTER"]


class TestValidation:
    """Tests for design validation against containers."""

    def test_layers_inside_container_valid(self, document):
        template = extract_template_metadata(document, 1000, 800)

        report = validate_layers(document[:2], template)

        assert report.is_valid is True
        assert report.issues == []

    def test_layer_outside_container_flagged(self, document):
        template = extract_template_metadata(document, 1000, 800)
        document[2] = document[2].model_copy(update={"name": "FOOTER"})

        report = validate_layers(document, template)

        assert report.is_valid is False
        (issue,) = report.issues
        assert issue.layer_name == "Legal"
        assert issue.container_name == "FOOTER"
        assert issue.type == "PROCEDURAL_VIOLATION"


class TestContainerResolution:
    """Tests for matching containers to design groups."""

    def test_resolved(self, document):
        tree = normalize_layer_tree(document)

        status, group, counts = resolve_container_layers("HERO", tree)

        assert status == ResolverStatus.RESOLVED
        assert group.id == "1"
        assert counts == {"pixel": 2, "generative": 0, "group": 0, "total": 2}

    def test_case_mismatch(self, document):
        tree = normalize_layer_tree(document)

        status, group, _ = resolve_container_layers("FOOTER", tree)

        assert status == ResolverStatus.CASE_MISMATCH
        assert group.name == "footer"

    def test_empty_group(self, document):
        tree = normalize_layer_tree(document)

        status, group, counts = resolve_container_layers("Empty", tree)

        assert status == ResolverStatus.EMPTY_GROUP
        assert counts["total"] == 0

    def test_not_found(self, document):
        tree = normalize_layer_tree(document)

        status, group, counts = resolve_container_layers("SIDEBAR", tree)

        assert status == ResolverStatus.NOT_FOUND
        assert group is None
        assert counts["total"] == 0
