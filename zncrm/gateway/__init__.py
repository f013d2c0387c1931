"""Backend access: PostgREST tables, media storage and auth sessions."""

from zncrm.gateway.supabase_client import SupabaseGateway, GatewayError, NotFoundError
from zncrm.gateway.auth import AuthClient, AuthError, Session, User

__all__ = [
    'SupabaseGateway',
    'GatewayError',
    'NotFoundError',
    'AuthClient',
    'AuthError',
    'Session',
    'User',
]
