"""
Shared fixtures: an in-memory stand-in for the Graph directory client.
"""

import os
import re
import sys

import pytest

# Ensure scripts/ is on the import path
sys.path.insert(0, os.path.join(os.path.dirname(__file__), "..", "scripts"))

from msiApiPermission import (  # noqa: E402
    AppRole,
    AppRoleAssignment,
    RemoteCallError,
    ServicePrincipal,
)

GRAPH_APP_ID = "00000003-0000-0000-c000-000000000000"

_FILTER = re.compile(r"^(displayName|appId) eq '((?:[^']|'')*)'$")


class InMemoryDirectory:
    """Implements the directory client coroutines over plain lists."""

    def __init__(self, principals=()):
        self.principals = list(principals)
        self.assignments = []
        self.lookups = []
        self.mutations = []
        self.fail_create = None
        self.fail_delete = None
        self._next_id = 1

    async def find_service_principals(self, filter_expression):
        self.lookups.append(filter_expression)
        match = _FILTER.match(filter_expression)
        assert match, f"unexpected filter: {filter_expression}"
        attribute = "display_name" if match.group(1) == "displayName" else "app_id"
        value = match.group(2).replace("''", "'")
        return [sp for sp in self.principals if getattr(sp, attribute) == value]

    async def list_app_role_assignments(self, service_principal_id):
        self.lookups.append(f"assignments:{service_principal_id}")
        return [a for a in self.assignments if a.service_principal_id == service_principal_id]

    async def create_app_role_assignment(self, service_principal_id, principal_id, resource_id, app_role_id):
        self.mutations.append(("create", service_principal_id, principal_id, resource_id, app_role_id))
        if self.fail_create:
            raise self.fail_create
        assignment = AppRoleAssignment(
            id=f"A{self._next_id}",
            service_principal_id=service_principal_id,
            principal_id=principal_id,
            resource_id=resource_id,
            app_role_id=app_role_id,
        )
        self._next_id += 1
        self.assignments.append(assignment)
        return assignment

    async def delete_app_role_assignment(self, service_principal_id, assignment_id):
        self.mutations.append(("delete", service_principal_id, assignment_id))
        if self.fail_delete:
            raise self.fail_delete
        self.assignments = [
            a for a in self.assignments
            if not (a.service_principal_id == service_principal_id and a.id == assignment_id)
        ]


ADVANCED_QUERY = AppRole(
    id="R1",
    value="AdvancedQuery.Read.All",
    allowed_member_types=frozenset({"Application"}),
    display_name="Run advanced queries",
)
USER_READ_DELEGATED = AppRole(
    id="R2",
    value="User.Read",
    allowed_member_types=frozenset({"User"}),
)
MACHINE_READ = AppRole(
    id="R3",
    value="Machine.Read.All",
    allowed_member_types=frozenset({"Application", "User"}),
)
DISABLED_ROLE = AppRole(
    id="R4",
    value="Legacy.Read.All",
    allowed_member_types=frozenset({"Application"}),
    is_enabled=False,
)


@pytest.fixture
def identity():
    return ServicePrincipal(id="P1", display_name="LogicApp1", app_id="msi-app-1")


@pytest.fixture
def target_api():
    return ServicePrincipal(
        id="P2",
        display_name="Microsoft Graph",
        app_id=GRAPH_APP_ID,
        app_roles=(ADVANCED_QUERY, USER_READ_DELEGATED, MACHINE_READ, DISABLED_ROLE),
    )


@pytest.fixture
def directory(identity, target_api):
    return InMemoryDirectory([identity, target_api])


@pytest.fixture
def remote_error():
    return RemoteCallError(
        "Failed to grant permission: 403",
        status_code=403,
        details="Insufficient privileges to complete the operation.",
    )
