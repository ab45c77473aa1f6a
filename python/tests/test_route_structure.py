"""Structural tests for route code.

Verifies that routes follow the service/route separation rule:
- Routes may not contain domain logic or raw DB access
- Routes may only import from allowed modules
"""

import ast
from pathlib import Path

import pytest

ROUTES_DIR = Path(__file__).parent.parent / "polychat" / "api" / "routes"

ALLOWED_PREFIXES = (
    "collections.abc",
    "fastapi",
    "json",
    "pydantic",
    "sqlalchemy.orm",
    "typing",
    "uuid",
    "polychat.api",
    "polychat.auth.middleware",
    "polychat.config",
    "polychat.errors",
    "polychat.logging",
    "polychat.middleware",
    "polychat.responses",
    "polychat.schemas",
    "polychat.services",
)


def get_all_route_files() -> list[Path]:
    """All route modules except the package aggregator."""
    return sorted(f for f in ROUTES_DIR.glob("*.py") if f.name != "__init__.py")


def imported_modules(tree: ast.AST) -> list[tuple[str, list[str]]]:
    modules = []
    for node in ast.walk(tree):
        if isinstance(node, ast.Import):
            modules.extend((alias.name, []) for alias in node.names)
        elif isinstance(node, ast.ImportFrom) and node.module:
            modules.append((node.module, [alias.name for alias in node.names]))
    return modules


@pytest.fixture(params=get_all_route_files(), ids=lambda path: path.name)
def route_tree(request) -> tuple[str, ast.AST]:
    path = request.param
    return path.name, ast.parse(path.read_text())


class TestForbiddenImports:
    def test_route_files_exist(self):
        assert len(get_all_route_files()) > 0, "No route files found to test"

    def test_only_allowed_modules(self, route_tree):
        name, tree = route_tree
        for module, _ in imported_modules(tree):
            assert module.startswith(ALLOWED_PREFIXES), f"{name}: forbidden import '{module}'"

    def test_only_session_from_sqlalchemy(self, route_tree):
        name, tree = route_tree
        for module, names in imported_modules(tree):
            if module.startswith("sqlalchemy"):
                assert module == "sqlalchemy.orm" and names == ["Session"], (
                    f"{name}: only 'from sqlalchemy.orm import Session' is allowed"
                )

    def test_no_db_models_or_engine(self, route_tree):
        name, tree = route_tree
        for module, _ in imported_modules(tree):
            assert not module.startswith("polychat.db"), (
                f"{name}: routes reach the database through services only"
            )

    def test_no_raw_db_operations(self, route_tree):
        name, tree = route_tree
        for node in ast.walk(tree):
            if (
                isinstance(node, ast.Call)
                and isinstance(node.func, ast.Attribute)
                and isinstance(node.func.value, ast.Name)
                and node.func.value.id in ("db", "session")
            ):
                pytest.fail(
                    f"{name}: forbidden call '{node.func.value.id}.{node.func.attr}()'. "
                    "Route files must not perform DB operations."
                )


class TestRouteFileStructure:
    def test_defines_router(self, route_tree):
        name, tree = route_tree
        has_router = any(
            isinstance(node, ast.Assign)
            and any(isinstance(t, ast.Name) and t.id == "router" for t in node.targets)
            for node in ast.walk(tree)
        )
        assert has_router, f"{name} must define a 'router' object"
