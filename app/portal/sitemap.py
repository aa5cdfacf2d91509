"""
Site map driven navigation: menus filtered by authorization and breadcrumbs.
"""
from __future__ import annotations

import xml.etree.ElementTree as ET
from dataclasses import dataclass, field, replace
from pathlib import Path

from flask import Flask, current_app, request, url_for

from app.portal.authorization import (
    AuthorizationProvider,
    PermissionKey,
    authorization_provider,
    current_account_id,
    split_endpoint,
)


@dataclass(frozen=True)
class SiteMapNode:
    title: str
    icon: str | None = None
    area: str = ""
    controller: str = ""
    action: str | None = None
    is_menu: bool = True
    children: tuple["SiteMapNode", ...] = field(default_factory=tuple)

    @property
    def key(self) -> PermissionKey | None:
        if self.action is None:
            return None
        return PermissionKey.of(self.area, self.controller, self.action)

    @property
    def endpoint(self) -> str | None:
        if self.action is None:
            return None
        return ".".join(part for part in (self.area, self.controller, self.action) if part)


class SiteMapParser:
    def parse(self, path: Path) -> tuple[SiteMapNode, ...]:
        root = ET.parse(path).getroot()
        return tuple(self._node(el, "", "") for el in root.findall("node"))

    def _node(self, el: ET.Element, area: str, controller: str) -> SiteMapNode:
        area = el.get("area", area).strip().lower()
        controller = el.get("controller", controller).strip().lower()
        action = el.get("action")
        return SiteMapNode(
            title=el.get("title", ""),
            icon=el.get("icon") or None,
            area=area,
            controller=controller,
            action=action.strip().lower() if action else None,
            is_menu=el.get("menu", "true").strip().lower() != "false",
            children=tuple(self._node(child, area, controller) for child in el.findall("node")),
        )


class SiteMap:
    def __init__(self, nodes: tuple[SiteMapNode, ...], provider: AuthorizationProvider | None = None):
        self.nodes = nodes
        self.provider = provider

    def _can_access(self, node: SiteMapNode, account_id: int | None) -> bool:
        if self.provider is None or node.key is None:
            return True
        return self.provider.is_authorized_for(account_id, node.area, node.controller, node.action)

    def get_authorized_menus(self, account_id: int | None) -> list[SiteMapNode]:
        return self._menus(self.nodes, account_id)

    def _menus(self, nodes: tuple[SiteMapNode, ...], account_id: int | None) -> list[SiteMapNode]:
        menus = []
        for node in nodes:
            if not node.is_menu:
                continue
            children = tuple(self._menus(node.children, account_id))
            if node.action is None:
                if children:
                    menus.append(replace(node, children=children))
            elif self._can_access(node, account_id):
                menus.append(replace(node, children=children))
        return menus

    def get_breadcrumb(self, area: str | None, controller: str | None, action: str | None) -> list[SiteMapNode]:
        target = PermissionKey.of(area, controller, action)
        return self._path(self.nodes, target) or []

    def _path(self, nodes: tuple[SiteMapNode, ...], target: PermissionKey) -> list[SiteMapNode] | None:
        for node in nodes:
            if node.key == target:
                return [node]
            sub = self._path(node.children, target)
            if sub is not None:
                return [node] + sub
        return None

    def get_active(self, area: str | None, controller: str | None, action: str | None) -> set[PermissionKey | str]:
        """Keys (or titles, for groups) of every node on the path to the current page."""
        return {node.key or node.title for node in self.get_breadcrumb(area, controller, action)}


def _navigation() -> dict:
    sitemap: SiteMap | None = current_app.extensions.get("sitemap")
    if sitemap is None or request.endpoint is None:
        return {"menus": [], "breadcrumb": [], "active": set()}
    current = split_endpoint(request.endpoint)
    return {
        "menus": sitemap.get_authorized_menus(current_account_id()),
        "breadcrumb": sitemap.get_breadcrumb(current.area, current.controller, current.action),
        "active": sitemap.get_active(current.area, current.controller, current.action),
    }


def node_url(node: SiteMapNode) -> str | None:
    """Link for a node; nodes whose action needs route arguments are not linked."""
    if node.endpoint is None or node.endpoint not in current_app.view_functions:
        return None
    rule = next(iter(current_app.url_map.iter_rules(node.endpoint)), None)
    if rule is None or rule.arguments:
        return None
    return url_for(node.endpoint)


def init_sitemap(app: Flask) -> SiteMap:
    """Call after init_authorization so menus are filtered by the provider."""
    nodes = SiteMapParser().parse(Path(app.root_path) / "sitemap.xml")
    with app.app_context():
        sitemap = SiteMap(nodes, authorization_provider())
    app.extensions["sitemap"] = sitemap
    app.context_processor(lambda: {"navigation": _navigation, "node_url": node_url})
    return sitemap
