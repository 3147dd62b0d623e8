"""
Core Application - Shared Infrastructure

Building blocks reused by the authentication and escrow apps. Nothing in
here knows about cases, disputes or payouts.

Models (import from core.models):
    - BaseModel: Abstract model with timestamps (created_at, updated_at)

Model Mixins (import from core.model_mixins):
    - UUIDPrimaryKeyMixin: UUID as primary key
    - MetadataMixin: Flexible JSON metadata storage

Services (import from core.services):
    - BaseService: Base class for service layer
    - ServiceResult: Standard result wrapper for success/failure handling

Exceptions (import from core.exceptions):
    - BaseApplicationError: Base exception with error codes and HTTP status
    - ValidationError: Bad input or invalid state transition (400)
    - PermissionDeniedError: Authorization failures (403)
    - NotFoundError: Resource not found (404)
    - ConflictError: Concurrent or duplicate writes (409)
    - ExternalServiceError: Payment gateway / object store failures (502)

DRF integration (import from core.exception_handler):
    - application_exception_handler: Renders BaseApplicationError responses

Helpers (import from core.helpers):
    - get_client_ip: Client IP extraction from request

Usage:
    from core.models import BaseModel
    from core.model_mixins import UUIDPrimaryKeyMixin
    from core.services import BaseService, ServiceResult
    from core.exceptions import ValidationError, NotFoundError
"""
