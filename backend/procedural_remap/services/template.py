"""
Template service - turns parsed documents into layer trees and containers.

A document carries a special "!!TEMPLATE" group whose children are the
named containers ("!!HERO", "!!FOOTER", ...). Design content lives in
ordinary groups named after those containers.
"""

import logging
from typing import List, Optional, Tuple

from procedural_remap.config import settings
from procedural_remap.models.layers import LayerKind, LayerNode, Rect, count_leaves, find_layer
from procedural_remap.models.template import (
    CanvasSize,
    ContainerContext,
    ContainerDefinition,
    DesignValidationReport,
    RawLayer,
    ResolverStatus,
    TemplateMetadata,
    ValidationIssue,
)

logger = logging.getLogger(__name__)


class TemplateError(Exception):
    """Raised when a template lookup cannot be satisfied."""
    def __init__(self, code: str, message: str, details: dict = None):
        self.code = code
        self.message = message
        self.details = details or {}
        super().__init__(message)


# ============================================================
# RAW LAYER HELPERS
# ============================================================

def raw_bounds(raw: RawLayer) -> Rect:
    """Convert parser edge coordinates to an x/y/w/h rectangle."""
    left = raw.left or 0.0
    top = raw.top or 0.0
    right = raw.right if raw.right is not None else left
    bottom = raw.bottom if raw.bottom is not None else top
    return Rect(x=left, y=top, w=right - left, h=bottom - top)


def normalize_opacity(raw_opacity: Optional[float]) -> float:
    """
    Map a 0-255 parser opacity to [0, 1].

    Values of 1 or less are treated as fully opaque; some writers report
    visible layers that way.
    """
    if raw_opacity is None or raw_opacity <= 1:
        return 1.0
    return min(1.0, max(0.0, raw_opacity / 255.0))


def _strip_prefix(name: str) -> str:
    prefix = settings.container_name_prefix
    return name[len(prefix):] if name.startswith(prefix) else name


def _template_group(raw_layers: List[RawLayer]) -> Optional[RawLayer]:
    return next((layer for layer in raw_layers if layer.name == settings.template_group_name), None)


# ============================================================
# LAYER TREE
# ============================================================

def normalize_layer_tree(raw_layers: List[RawLayer], path: str = "") -> List[LayerNode]:
    """
    Build the LayerNode tree for a parsed document.

    Ids are dotted index paths into the full sibling list ("0", "0.3",
    "0.3.1"), so skipping the template group never shifts the ids of other
    layers. A node is a group iff the parser gave it a children list.
    """
    nodes = []
    for index, raw in enumerate(raw_layers):
        if raw.name == settings.template_group_name:
            continue

        layer_id = f"{path}.{index}" if path else str(index)
        is_group = raw.children is not None

        nodes.append(LayerNode(
            id=layer_id,
            name=raw.name or f"Layer {layer_id}",
            kind=LayerKind.GROUP if is_group else LayerKind.PIXEL,
            visible=not raw.hidden,
            opacity=normalize_opacity(raw.opacity),
            bounds=raw_bounds(raw),
            children=normalize_layer_tree(raw.children, layer_id) if is_group else None,
        ))
    return nodes


def find_layer_by_id(tree: List[LayerNode], layer_id: str) -> Optional[LayerNode]:
    """Look a layer up by its path id, walking only the path segments."""
    nodes = tree
    found = None
    prefix = ""
    for segment in layer_id.split("."):
        prefix = f"{prefix}.{segment}" if prefix else segment
        found = next((node for node in nodes if node.id == prefix), None)
        if found is None:
            return find_layer(tree, layer_id)
        nodes = found.children or []
    return found


# ============================================================
# TEMPLATE METADATA
# ============================================================

def extract_template_metadata(raw_layers: List[RawLayer], width: int, height: int) -> TemplateMetadata:
    """Collect the containers declared in a document's template group."""
    canvas = CanvasSize(width=width, height=height)
    group = _template_group(raw_layers)
    if group is None:
        logger.warning(f"No '{settings.template_group_name}' group found; document has no containers")
        return TemplateMetadata(canvas=canvas)

    containers = []
    for index, child in enumerate(group.children or []):
        original_name = child.name or f"Container {index}"
        name = _strip_prefix(original_name)
        bounds = raw_bounds(child)
        containers.append(ContainerDefinition(
            id=f"container-{index}-{name.replace(' ', '_')}",
            name=name,
            original_name=original_name,
            bounds=bounds,
            normalized=Rect(
                x=bounds.x / width,
                y=bounds.y / height,
                w=bounds.w / width,
                h=bounds.h / height,
            ),
        ))

    logger.info(f"Extracted {len(containers)} containers from {width}x{height} template")
    return TemplateMetadata(canvas=canvas, containers=containers)


def create_container_context(template: TemplateMetadata, container_name: str) -> ContainerContext:
    """
    Scope a template down to a single container.

    Raises:
        TemplateError: If the container does not exist
    """
    container = template.container(container_name)
    if container is None:
        raise TemplateError(
            code="CONTAINER_NOT_FOUND",
            message=f"Container '{container_name}' not found in template",
            details={"available": [c.name for c in template.containers]},
        )
    return ContainerContext(
        container_name=container.name,
        bounds=container.bounds,
        canvas_dimensions=template.canvas,
    )


# ============================================================
# DESIGN VALIDATION
# ============================================================

def validate_layers(raw_layers: List[RawLayer], template: TemplateMetadata) -> DesignValidationReport:
    """
    Check that design groups stay inside their containers.

    Each top-level group named after a container is checked child by child;
    any child whose bounds leave the container becomes a violation.
    """
    issues = []
    for group in raw_layers:
        if group.name == settings.template_group_name or group.children is None:
            continue
        container = template.container(group.name or "")
        if container is None:
            continue

        for child in group.children:
            bounds = raw_bounds(child)
            if not container.bounds.contains(bounds):
                issues.append(ValidationIssue(
                    layer_name=child.name or "",
                    container_name=container.name,
                    message=(
                        f"Layer '{child.name}' extends outside container '{container.name}'"
                    ),
                ))

    if issues:
        logger.warning(f"Design validation found {len(issues)} procedural violation(s)")
    return DesignValidationReport(is_valid=not issues, issues=issues)


# ============================================================
# CONTAINER RESOLUTION
# ============================================================

def resolve_container_layers(
    container_name: str,
    tree: List[LayerNode],
) -> Tuple[ResolverStatus, Optional[LayerNode], dict]:
    """
    Find the design group holding a container's content.

    Returns:
        Tuple of (status, group node or None, counts). Counts are taken
        recursively over the group's subtree.
    """
    empty_counts = {"pixel": 0, "generative": 0, "group": 0, "total": 0}

    group = next((n for n in tree if n.is_group and n.name == container_name), None)
    status = ResolverStatus.RESOLVED
    if group is None:
        lowered = container_name.lower()
        group = next((n for n in tree if n.is_group and n.name.lower() == lowered), None)
        if group is None:
            return ResolverStatus.NOT_FOUND, None, empty_counts
        status = ResolverStatus.CASE_MISMATCH

    counts = count_leaves(group.children or [])
    if not group.children:
        status = ResolverStatus.EMPTY_GROUP

    logger.debug(f"Resolved container '{container_name}': {status.value} {counts}")
    return status, group, counts
