"""Authorization - roles on environments, groups, and the system."""
from .authorizer import Authorizer, Caller, OpenAuthorizer, Resource, ResourceType, Role, RoleBasedAuthorizer

__all__ = ["Authorizer", "Caller", "OpenAuthorizer", "Resource", "ResourceType", "Role", "RoleBasedAuthorizer"]
