"""Identity sync: keeps Keycloak identities and the local account table consistent.

To use the Flask app:
    from identity_sync.flask_app import create_app

To use Keycloak services:
    from identity_sync.core.keycloak import UserService, RoleService, KeycloakClient

To wire everything from settings:
    from identity_sync.container import build_container
"""
# Note: flask_app is not imported here so CLI scripts only pull in the core
