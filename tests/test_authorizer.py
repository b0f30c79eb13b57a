"""
Tests for the authorizers — role ordering, bindings, system admins, audit log.
Run: pytest tests/test_authorizer.py -v
"""
import pytest

from stage_service.auth.authorizer import (
    Caller, OpenAuthorizer, Resource, ResourceType, Role, RoleBasedAuthorizer,
)
from stage_service.errors import ForbiddenError

APP = Resource(name="app", type=ResourceType.ENV)
WEB = Resource(name="web", type=ResourceType.ENV)


class TestRoles:

    def test_ordering(self):
        assert Role.READER.rank < Role.PINGER.rank < Role.PUBLISHER.rank
        assert Role.PUBLISHER.rank < Role.OPERATOR.rank < Role.ADMIN.rank

    def test_covers(self):
        assert Role.ADMIN.covers(Role.OPERATOR)
        assert Role.OPERATOR.covers(Role.OPERATOR)
        assert not Role.PUBLISHER.covers(Role.OPERATOR)

    def test_resource_str(self):
        assert str(APP) == "ENV:app"
        assert str(Resource.system()) == "SYSTEM:*"


class TestRoleBasedAuthorizer:

    def test_grant_and_check(self):
        authz = RoleBasedAuthorizer()
        authz.grant("alice", APP, Role.OPERATOR)
        assert authz.check(Caller(name="alice"), APP, Role.OPERATOR)
        assert authz.check(Caller(name="alice"), APP, Role.READER)
        assert not authz.check(Caller(name="alice"), APP, Role.ADMIN)
        assert not authz.check(Caller(name="alice"), WEB, Role.READER)

    def test_authorize_raises(self):
        authz = RoleBasedAuthorizer()
        authz.grant("rita", APP, Role.READER)
        with pytest.raises(ForbiddenError, match="OPERATOR"):
            authz.authorize(Caller(name="rita"), APP, Role.OPERATOR)

    def test_forbidden_is_permission_error(self):
        with pytest.raises(PermissionError):
            RoleBasedAuthorizer().authorize(Caller(name="nobody"), APP, Role.READER)

    def test_revoke(self):
        authz = RoleBasedAuthorizer()
        authz.grant("alice", APP, Role.OPERATOR)
        assert authz.revoke("alice", APP) is True
        assert authz.revoke("alice", APP) is False
        assert authz.get_role("alice", APP) is None

    def test_system_admin_covers_everything(self):
        authz = RoleBasedAuthorizer(admin_operators=["root"])
        root = Caller(name="root")
        authz.authorize(root, APP, Role.ADMIN)
        authz.authorize(root, Resource(name="ops", type=ResourceType.GROUP), Role.OPERATOR)

    def test_env_admin_is_scoped(self):
        authz = RoleBasedAuthorizer()
        authz.grant("alice", APP, Role.ADMIN)
        with pytest.raises(ForbiddenError):
            authz.authorize(Caller(name="alice"), WEB, Role.READER)

    def test_audit_log(self):
        authz = RoleBasedAuthorizer(admin_operators=["root"])
        authz.grant("alice", APP, Role.OPERATOR, granted_by="root")
        authz.revoke("alice", APP, revoked_by="root")
        log = authz.get_audit_log()
        assert [e["action"] for e in log] == ["role_granted", "role_granted", "role_revoked"]
        assert log[0]["user_id"] == "bootstrap"
        assert log[-1]["details"] == {"user": "alice", "resource": "ENV:app", "role": "OPERATOR"}

    def test_audit_log_is_bounded(self):
        authz = RoleBasedAuthorizer(admin_operators=["root"], audit_log_size=3)
        for user in ("u1", "u2", "u3", "u4"):
            authz.grant(user, APP, Role.READER)
        log = authz.get_audit_log()
        assert len(log) == 3
        assert [e["details"]["user"] for e in log] == ["u2", "u3", "u4"]
        assert authz.get_audit_log(limit=1)[0]["details"]["user"] == "u4"


class TestOpenAuthorizer:

    def test_allows_everyone(self):
        OpenAuthorizer().authorize(Caller(name="anyone"), Resource.system(), Role.ADMIN)


class TestCaller:

    def test_empty_name_rejected(self):
        with pytest.raises(ValueError):
            Caller(name="")
