"""Core Business Logic Module

Provisioning logic independent of the HTTP layer.

Module Structure:
    - keycloak/               : Keycloak Admin API client (session cache, retries, users, roles)
    - saga.py                 : Ordered steps with compensation
    - provisioning_service.py : Provisioning / deprovisioning sagas, role changes
    - reconciliation.py       : Pending account activation scheduler
    - activation.py           : Self-service activation with a token
    - accounts.py             : Account model and in-memory repository
    - sql_accounts.py         : SQLAlchemy account repository
    - notifications.py        : Activation tokens and email delivery
    - validators.py           : Input validation

Import explicitly when needed:
    from identity_sync.core.provisioning_service import ProvisioningService, ProvisionRequest
    from identity_sync.core.reconciliation import ReconciliationService
"""
