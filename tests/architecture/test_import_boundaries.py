"""
Package boundary tests.

1. ledger_kernel/** may NOT import billing_modules, billing_services or
   billing_config.  The kernel never depends upward.
2. billing_modules/** may NOT import billing_services.  Modules are
   driven by the orchestrator, never the other way round.
3. billing_config/** depends on nothing but the standard library and YAML.
4. Only the engine's session_scope commits; services and modules flush.
5. The kernel invariants declaration is complete and non-empty.

These tests read source code via AST and import nothing they inspect.
"""

import ast
from pathlib import Path

from ledger_kernel.invariants import (
    ALL_LEDGER_INVARIANTS,
    FORBIDDEN_KERNEL_IMPORTS,
    LedgerInvariant,
)

REPO_ROOT = Path(__file__).resolve().parents[2]


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def _python_files(package: str) -> list[Path]:
    return sorted((REPO_ROOT / package).rglob("*.py"))


def _parse(path: Path) -> ast.AST:
    return ast.parse(path.read_text(), filename=str(path))


def _extract_imports(path: Path) -> list[tuple[int, str]]:
    """(line_number, module) for every import in a file."""
    results: list[tuple[int, str]] = []
    for node in ast.walk(_parse(path)):
        if isinstance(node, ast.Import):
            for alias in node.names:
                results.append((node.lineno, alias.name))
        elif isinstance(node, ast.ImportFrom) and node.module:
            results.append((node.lineno, node.module))
    return results


def _violations(package: str, forbidden: tuple[str, ...]) -> list[str]:
    found = []
    for path in _python_files(package):
        for lineno, module in _extract_imports(path):
            for prefix in forbidden:
                if module == prefix or module.startswith(f"{prefix}."):
                    found.append(f"  {path.relative_to(REPO_ROOT)}:{lineno} imports '{module}'")
    return found


# ---------------------------------------------------------------------------
# Import direction
# ---------------------------------------------------------------------------

class TestImportDirection:

    def test_packages_exist(self):
        for package in ("ledger_kernel", "billing_modules", "billing_services", "billing_config"):
            assert _python_files(package), f"{package} has no Python files"

    def test_kernel_does_not_import_upward(self):
        violations = _violations("ledger_kernel", FORBIDDEN_KERNEL_IMPORTS)
        assert not violations, (
            "ledger_kernel/** must not import outer packages:\n" + "\n".join(violations)
        )

    def test_modules_do_not_import_services(self):
        violations = _violations("billing_modules", ("billing_services",))
        assert not violations, (
            "billing_modules/** must not import billing_services:\n" + "\n".join(violations)
        )

    def test_config_is_standalone(self):
        violations = _violations(
            "billing_config", ("ledger_kernel", "billing_modules", "billing_services")
        )
        assert not violations, (
            "billing_config/** must not import other billing packages:\n" + "\n".join(violations)
        )


# ---------------------------------------------------------------------------
# Transaction ownership
# ---------------------------------------------------------------------------

class TestTransactionOwnership:

    ALLOWED = {Path("ledger_kernel/db/engine.py")}

    def test_only_session_scope_commits(self):
        violations = []
        for package in ("ledger_kernel", "billing_modules", "billing_services"):
            for path in _python_files(package):
                if path.relative_to(REPO_ROOT) in self.ALLOWED:
                    continue
                for node in ast.walk(_parse(path)):
                    if (
                        isinstance(node, ast.Call)
                        and isinstance(node.func, ast.Attribute)
                        and node.func.attr == "commit"
                    ):
                        violations.append(f"  {path.relative_to(REPO_ROOT)}:{node.lineno}")
        assert not violations, "commit() outside session_scope:\n" + "\n".join(violations)


# ---------------------------------------------------------------------------
# Invariants declaration
# ---------------------------------------------------------------------------

class TestInvariantsDeclaration:

    def test_invariants_declared(self):
        assert ALL_LEDGER_INVARIANTS == frozenset(LedgerInvariant)
        assert LedgerInvariant.APPEND_ONLY in ALL_LEDGER_INVARIANTS
        assert LedgerInvariant.PAYMENT_IDEMPOTENCY in ALL_LEDGER_INVARIANTS

    def test_forbidden_imports_cover_outer_packages(self):
        assert set(FORBIDDEN_KERNEL_IMPORTS) == {
            "billing_modules",
            "billing_services",
            "billing_config",
        }
